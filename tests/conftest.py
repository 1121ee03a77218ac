"""Shared fixtures for the doma-ingest test suite."""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Sequence
from typing import Any

import pytest

from doma_ingest.core.clock import ManualClock
from doma_ingest.core.config import PollApiConfig
from doma_ingest.core.events import PollResponse, RawEvent
from doma_ingest.storage.connection import (
    create_all,
    create_engine,
    create_session_factory,
    dispose,
)
from doma_ingest.storage.event_store import EventStore

_unique = itertools.count(1)


# ---------------------------------------------------------------------------
# Event factories
# ---------------------------------------------------------------------------

def make_api_event(
    event_id: int,
    event_type: str = "NAME_TOKEN_MINTED",
    *,
    unique_id: str | None = None,
    name: str = "example.doma",
    token_id: str = "1001",
    **event_data: Any,
) -> dict[str, Any]:
    """Build an upstream poll event object as the API returns it."""
    data: dict[str, Any] = {
        "type": event_type,
        "networkId": "eip155:97476",
        "finalized": True,
        "txHash": f"0x{event_id:064x}",
        "blockNumber": str(1_000_000 + event_id),
        "logIndex": 0,
        "tokenId": token_id,
    }
    data.update(event_data)
    return {
        "id": event_id,
        "name": name,
        "tokenId": token_id,
        "type": event_type,
        "uniqueId": unique_id or f"{event_id}-{next(_unique)}",
        "relayId": f"relay-{event_id}",
        "eventData": data,
    }


def make_event(event_id: int, event_type: str = "NAME_TOKEN_MINTED", **kwargs: Any) -> RawEvent:
    return RawEvent.from_api(make_api_event(event_id, event_type, **kwargs))


def make_response(
    events: Sequence[RawEvent],
    *,
    last_id: int | None = None,
    has_more: bool = False,
) -> PollResponse:
    if last_id is None:
        last_id = max((e.id for e in events), default=0)
    return PollResponse(events=list(events), last_id=last_id, has_more_events=has_more)


# ---------------------------------------------------------------------------
# Fake upstream
# ---------------------------------------------------------------------------

class FakeSource:
    """Scripted stand-in for the Doma poll API.

    ``responses`` are handed out one per ``poll``; an exception in the
    list is raised instead. Once exhausted, polls return an empty batch.
    """

    def __init__(self, responses: Sequence[PollResponse | Exception] = ()) -> None:
        self.responses: list[PollResponse | Exception] = list(responses)
        self.calls: list[tuple[str, int]] = []
        self.poll_kwargs: list[dict[str, Any]] = []
        self.ack_error: Exception | None = None
        self.reset_error: Exception | None = None
        self.poll_delay = 0.0

    async def poll(self, after_id, limit, event_types=None, finalized_only=True):
        self.calls.append(("poll", after_id))
        self.poll_kwargs.append({
            "after_id": after_id,
            "limit": limit,
            "event_types": event_types,
            "finalized_only": finalized_only,
        })
        if self.poll_delay:
            await asyncio.sleep(self.poll_delay)
        if not self.responses:
            return PollResponse()
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def acknowledge(self, last_id):
        self.calls.append(("ack", last_id))
        if self.ack_error is not None:
            raise self.ack_error

    async def reset(self, event_id):
        self.calls.append(("reset", event_id))
        if self.reset_error is not None:
            raise self.reset_error

    @property
    def polled_after(self) -> list[int]:
        return [arg for name, arg in self.calls if name == "poll"]

    @property
    def acked(self) -> list[int]:
        return [arg for name, arg in self.calls if name == "ack"]


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

@pytest.fixture
async def engine(tmp_path):
    eng = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'ingest.db'}")
    await create_all(eng)
    yield eng
    await dispose(eng)


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def store(session_factory) -> EventStore:
    return EventStore(session_factory)


# ---------------------------------------------------------------------------
# Misc
# ---------------------------------------------------------------------------

@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def poll_config() -> PollApiConfig:
    return PollApiConfig(interval_seconds=60.0, batch_size=10)


@pytest.fixture(name="make_event")
def make_event_fixture():
    """Factory fixture: ``make_event(event_id, event_type="...", **kwargs)``."""
    return make_event


@pytest.fixture(name="make_api_event")
def make_api_event_fixture():
    return make_api_event


@pytest.fixture(name="make_response")
def make_response_fixture():
    return make_response
