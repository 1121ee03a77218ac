"""Read-side aggregation of store counts and consumer progress."""

from __future__ import annotations

from doma_ingest.core.clock import IClock, WallClock
from doma_ingest.core.enums import PollerState
from doma_ingest.core.models import IngestStats, PollHealth
from doma_ingest.storage.event_store import EventStore

from .cursor import CursorManager
from .poll_client import PollClient


class StatsAggregator:
    def __init__(
        self,
        store: EventStore,
        cursor: CursorManager,
        poller: PollClient,
        clock: IClock | None = None,
    ) -> None:
        self._store = store
        self._cursor = cursor
        self._poller = poller
        self._clock = clock or WallClock()

    async def get_stats(self) -> IngestStats:
        """Store totals by type and status, plus cursor and poller state."""
        stats = await self._store.get_stats()
        return IngestStats(
            **stats.model_dump(),
            last_acknowledged_id=self._cursor.last_acknowledged_id,
            is_running=self._poller.is_running,
        )

    def health(self) -> PollHealth:
        state = PollerState.RUNNING if self._poller.is_running else PollerState.STOPPED
        return PollHealth(
            status=state.value,
            last_acknowledged_id=self._cursor.last_acknowledged_id,
            timestamp=self._clock.now(),
        )
