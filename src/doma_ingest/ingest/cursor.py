"""Single source of truth for ingestion progress.

The cursor only moves after the batch it covers is durable, and the local
copy only moves after upstream has accepted the acknowledgment. If the
upstream call fails the local cursor stays put and the same events are
fetched again next cycle; storage is idempotent so that is safe.

An operator :meth:`CursorManager.reset` bumps :attr:`CursorManager.epoch`.
A cycle that polled before the reset passes the epoch it saw to
:meth:`CursorManager.acknowledge`, which then refuses to advance, so a
stale batch can never undo the rewind.
"""

from __future__ import annotations

import asyncio
import logging

from doma_ingest.core.interfaces import IEventSource
from doma_ingest.storage.event_store import EventStore

logger = logging.getLogger(__name__)


class CursorManager:
    def __init__(self, store: EventStore, source: IEventSource) -> None:
        self._store = store
        self._source = source
        self._last_acknowledged_id = 0
        self._epoch = 0
        # Serializes acknowledge and reset against each other.
        self._lock = asyncio.Lock()

    @property
    def last_acknowledged_id(self) -> int:
        return self._last_acknowledged_id

    @property
    def epoch(self) -> int:
        """Incremented by every :meth:`reset`."""
        return self._epoch

    async def load(self) -> int:
        """Read the persisted cursor. Call once before polling starts."""
        self._last_acknowledged_id = await self._store.get_last_acknowledged_id()
        logger.info("Loaded poll cursor at %d", self._last_acknowledged_id)
        return self._last_acknowledged_id

    async def acknowledge(self, last_id: int, *, epoch: int | None = None) -> bool:
        """Commit progress up to *last_id*.

        Must only be called once ``insert_batch`` for those events has
        committed. When *epoch* is given and a reset happened since it was
        read, nothing is acknowledged.

        Returns:
            ``False`` if the acknowledgment was dropped because of a reset.

        Raises:
            AcknowledgmentError: Upstream ack failed; nothing was advanced.
            PersistenceError: Upstream accepted but the local write failed.
        """
        async with self._lock:
            if epoch is not None and epoch != self._epoch:
                logger.warning(
                    "Cursor reset since batch was polled, not acknowledging %d (cursor=%d)",
                    last_id, self._last_acknowledged_id,
                )
                return False
            await self._source.acknowledge(last_id)
            await self._store.update_last_acknowledged_id(last_id)
            self._last_acknowledged_id = max(self._last_acknowledged_id, last_id)
        logger.debug(
            "Acknowledged up to %d (cursor=%d)", last_id, self._last_acknowledged_id,
        )
        return True

    async def reset(self, event_id: int = 0) -> None:
        """Rewind upstream and local cursors to *event_id* for replay.

        Operator-invoked only. Waits for an acknowledgment in progress.
        """
        if event_id < 0:
            raise ValueError(f"event_id must be >= 0, got {event_id}")
        async with self._lock:
            self._epoch += 1
            await self._source.reset(event_id)
            await self._store.reset_last_acknowledged_id(event_id)
            previous = self._last_acknowledged_id
            self._last_acknowledged_id = event_id
        logger.warning("Poll cursor reset from %d to %d", previous, event_id)
