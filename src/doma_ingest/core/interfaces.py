"""Protocol interfaces for the ingestion pipeline.

Module boundaries are defined here as Protocol classes so the poller can
be driven by the HTTP client in production and by fakes in tests.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from .enums import EventType
from .events import PollResponse


@runtime_checkable
class IEventSource(Protocol):
    """Upstream poll-style event API."""

    async def poll(
        self,
        after_id: int,
        limit: int,
        event_types: Sequence[EventType] | None = None,
        finalized_only: bool = True,
    ) -> PollResponse:
        """Fetch the next batch. Raises ``TransportError``."""
        ...

    async def acknowledge(self, last_id: int) -> None:
        """Mark events up to *last_id* consumed. Raises ``AcknowledgmentError``."""
        ...

    async def reset(self, event_id: int) -> None:
        """Rewind the upstream position to *event_id*. Raises ``TransportError``."""
        ...
