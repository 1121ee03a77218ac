"""Business fan-out for a received batch.

Each known event is published to :attr:`Topic.ANY` and then routed to
exactly one type handler, which publishes the type sub-topic. Failures
are per event: they are logged and reported in the
:class:`DispatchResult`, never raised, and never stop the batch.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from doma_ingest.bus.event_bus import TOPIC_BY_TYPE, EventBus, Topic
from doma_ingest.core.enums import EventType
from doma_ingest.core.events import RawEvent
from doma_ingest.observability import metrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FailedEvent:
    event_id: int
    unique_id: str
    error: str


@dataclass
class DispatchResult:
    """Per-event outcomes, keyed by ``unique_id`` since upstream ids repeat."""

    processed: list[str] = field(default_factory=list)
    failed: list[FailedEvent] = field(default_factory=list)
    ignored: list[str] = field(default_factory=list)  # unknown event types

    @property
    def failures(self) -> list[tuple[str, str]]:
        return [(f.unique_id, f.error) for f in self.failed]


class EventProcessor:
    """Dispatches events to type handlers and bus subscribers."""

    def __init__(self, bus: EventBus | None = None) -> None:
        self._bus = bus or EventBus()
        self._handlers: dict[EventType, Callable[[RawEvent], Awaitable[None]]] = {
            EventType.NAME_TOKEN_MINTED: self._on_minted,
            EventType.NAME_TOKEN_TRANSFERRED: self._on_transferred,
            EventType.NAME_TOKEN_RENEWED: self._on_renewed,
            EventType.NAME_TOKEN_BURNED: self._on_burned,
            EventType.LOCK_STATUS_CHANGED: self._on_lock_changed,
            EventType.METADATA_UPDATED: self._on_metadata_updated,
        }

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def handled_types(self) -> frozenset[EventType]:
        return frozenset(self._handlers)

    async def dispatch(self, events: Sequence[RawEvent]) -> DispatchResult:
        """Process *events* in delivery order."""
        result = DispatchResult()
        for event in events:
            event_type = event.event_type
            if event_type is None:
                logger.warning(
                    "Unknown event type %r (event_id=%s unique_id=%s), ignoring",
                    event.type, event.id, event.unique_id,
                )
                result.ignored.append(event.unique_id)
                continue

            logger.info(
                "Processing event id=%s type=%s name=%s token_id=%s unique_id=%s",
                event.id, event.type, event.name, event.token_id, event.unique_id,
            )

            errors: list[str] = []
            try:
                await self._bus.publish(Topic.ANY, event)
            except Exception as exc:
                errors.append(str(exc))
            try:
                await self._handlers[event_type](event)
            except Exception as exc:
                errors.append(str(exc))

            if errors:
                message = " | ".join(errors)
                logger.error(
                    "Error processing event id=%s unique_id=%s: %s",
                    event.id, event.unique_id, message,
                )
                metrics.record_handler_failure(event.type)
                result.failed.append(
                    FailedEvent(event_id=event.id, unique_id=event.unique_id, error=message)
                )
            else:
                result.processed.append(event.unique_id)

        if result.failed or result.ignored:
            logger.info(
                "Dispatched batch: processed=%d failed=%d ignored=%d",
                len(result.processed), len(result.failed), len(result.ignored),
            )
        return result

    # ------------------------------------------------------------------
    # Type handlers
    # ------------------------------------------------------------------

    async def _publish_typed(self, event: RawEvent) -> None:
        event_type = event.event_type
        assert event_type is not None
        await self._bus.publish(TOPIC_BY_TYPE[event_type], event)

    async def _on_minted(self, event: RawEvent) -> None:
        logger.debug("Name token minted: %s (token %s)", event.name, event.token_id)
        await self._publish_typed(event)

    async def _on_transferred(self, event: RawEvent) -> None:
        logger.debug(
            "Name token transferred: %s from=%s to=%s",
            event.name,
            getattr(event.payload, "from_address", None),
            getattr(event.payload, "to_address", None),
        )
        await self._publish_typed(event)

    async def _on_renewed(self, event: RawEvent) -> None:
        logger.debug(
            "Name renewed: %s until %s",
            event.name, getattr(event.payload, "expires_at", None),
        )
        await self._publish_typed(event)

    async def _on_burned(self, event: RawEvent) -> None:
        logger.debug("Name token burned: %s (token %s)", event.name, event.token_id)
        await self._publish_typed(event)

    async def _on_lock_changed(self, event: RawEvent) -> None:
        logger.debug(
            "Transfer lock changed: %s locked=%s",
            event.name, getattr(event.payload, "is_transfer_locked", None),
        )
        await self._publish_typed(event)

    async def _on_metadata_updated(self, event: RawEvent) -> None:
        logger.debug("Token metadata updated: %s (token %s)", event.name, event.token_id)
        await self._publish_typed(event)
