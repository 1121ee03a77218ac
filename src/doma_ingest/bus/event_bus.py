"""Per-instance observer registry for ingested events.

Design goals
------------
1.  **Closed topic set**: subscribers register for a :class:`Topic`
    member, never a free-form string, so a typo is an ``AttributeError``
    at import time rather than a silent no-op.
2.  **Instance scoped**: every :class:`EventBus` owns its handler table.
    Two consumers in one process never see each other's subscribers.
3.  **Failure isolation**: every subscriber of a topic runs even when an
    earlier one raises. Failures are counted, kept in a bounded
    dead-letter buffer, and then surfaced to the publisher as a single
    :class:`HandlerError`.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

from doma_ingest.core.enums import EventType
from doma_ingest.core.errors import HandlerError
from doma_ingest.core.events import RawEvent

logger = logging.getLogger(__name__)

# Type alias for async event handlers.
EventHandler = Callable[[RawEvent], Awaitable[None]]


class Topic(str, Enum):
    ANY = "poll.event"
    MINTED = "token.minted"
    TRANSFERRED = "token.transferred"
    RENEWED = "token.renewed"
    BURNED = "token.burned"
    LOCK_CHANGED = "token.lock_changed"
    METADATA_UPDATED = "token.metadata_updated"


TOPIC_BY_TYPE: dict[EventType, Topic] = {
    EventType.NAME_TOKEN_MINTED: Topic.MINTED,
    EventType.NAME_TOKEN_TRANSFERRED: Topic.TRANSFERRED,
    EventType.NAME_TOKEN_RENEWED: Topic.RENEWED,
    EventType.NAME_TOKEN_BURNED: Topic.BURNED,
    EventType.LOCK_STATUS_CHANGED: Topic.LOCK_CHANGED,
    EventType.METADATA_UPDATED: Topic.METADATA_UPDATED,
}


@dataclass
class DeadLetter:
    """Record of a subscriber failure."""

    topic: str
    unique_id: str
    event_id: int
    error: str
    timestamp: float = field(default_factory=time.monotonic)


class EventBus:
    """In-process publish/subscribe keyed by :class:`Topic`."""

    def __init__(self, max_dead_letters: int = 1000) -> None:
        self._handlers: dict[Topic, list[EventHandler]] = defaultdict(list)
        self._error_counts: dict[str, int] = defaultdict(int)
        # Oldest entries drop first once full.
        self._dead_letters: deque[DeadLetter] = deque(maxlen=max_dead_letters)
        self._messages_processed: int = 0

    def subscribe(self, topic: Topic, handler: EventHandler) -> None:
        """Register *handler* for *topic*."""
        self._handlers[Topic(topic)].append(handler)

    def unsubscribe(self, topic: Topic, handler: EventHandler) -> None:
        handlers = self._handlers.get(Topic(topic), [])
        if handler in handlers:
            handlers.remove(handler)

    def subscriber_count(self, topic: Topic) -> int:
        return len(self._handlers.get(Topic(topic), []))

    async def publish(self, topic: Topic, event: RawEvent) -> None:
        """Deliver *event* to every subscriber of *topic*.

        Raises
        ------
        HandlerError
            After all subscribers ran, if at least one of them raised.
        """
        topic = Topic(topic)
        errors: list[Exception] = []
        for handler in list(self._handlers.get(topic, [])):
            try:
                await handler(event)
                self._messages_processed += 1
            except Exception as exc:
                errors.append(exc)
                self._error_counts[topic.value] += 1
                self._dead_letters.append(
                    DeadLetter(
                        topic=topic.value,
                        unique_id=event.unique_id,
                        event_id=event.id,
                        error=str(exc),
                    )
                )
                logger.exception(
                    "Subscriber error on topic=%s event_id=%s unique_id=%s",
                    topic.value,
                    event.id,
                    event.unique_id,
                )
        if errors:
            raise HandlerError(topic.value, errors)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def get_error_counts(self) -> dict[str, int]:
        """Return per-topic error counts."""
        return dict(self._error_counts)

    @property
    def dead_letters(self) -> list[DeadLetter]:
        return list(self._dead_letters)

    def clear_dead_letters(self) -> list[DeadLetter]:
        """Drain the dead-letter list and return all entries."""
        drained = list(self._dead_letters)
        self._dead_letters.clear()
        return drained

    @property
    def messages_processed(self) -> int:
        """Total successful subscriber invocations."""
        return self._messages_processed
