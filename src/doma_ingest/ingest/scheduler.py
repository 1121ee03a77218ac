"""Pure timing state machine for the poll loop.

:class:`PollScheduler` does no I/O. It tracks whether polling is on,
guards against overlapping cycles and decides what follows a finished
cycle. :class:`~doma_ingest.ingest.poll_client.PollClient` owns the
timer task and does the actual work.
"""

from __future__ import annotations

from datetime import datetime

from doma_ingest.core.clock import IClock, WallClock
from doma_ingest.core.enums import CycleOutcome, NextAction, PollerState

_FAILURES = frozenset({
    CycleOutcome.TRANSPORT_ERROR,
    CycleOutcome.PERSISTENCE_ERROR,
    CycleOutcome.ACK_ERROR,
    CycleOutcome.UNEXPECTED_ERROR,
})


class PollScheduler:
    def __init__(self, interval_seconds: float, clock: IClock | None = None) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")
        self.interval_seconds = interval_seconds
        self._clock = clock or WallClock()
        self._state = PollerState.STOPPED
        self._in_flight = False

        self.cycles = 0
        self.consecutive_failures = 0
        self.last_outcome: CycleOutcome | None = None
        self.last_success_at: datetime | None = None
        self.last_failure_at: datetime | None = None

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is PollerState.RUNNING

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def start(self) -> bool:
        """Enter RUNNING. Returns ``False`` if already running."""
        if self.is_running:
            return False
        self._state = PollerState.RUNNING
        return True

    def stop(self) -> bool:
        """Enter STOPPED. Returns ``False`` if already stopped."""
        if not self.is_running:
            return False
        self._state = PollerState.STOPPED
        return True

    def begin_cycle(self) -> bool:
        """Claim the cycle slot.

        Returns ``False`` when a cycle is already in flight; the caller
        must skip this tick.
        """
        if self._in_flight:
            return False
        self._in_flight = True
        return True

    def end_cycle(self, outcome: CycleOutcome, has_more: bool = False) -> NextAction:
        """Release the cycle slot and decide what happens next."""
        self._in_flight = False
        self.cycles += 1
        self.last_outcome = outcome

        if outcome in _FAILURES:
            self.consecutive_failures += 1
            self.last_failure_at = self._clock.now()
        else:
            self.consecutive_failures = 0
            self.last_success_at = self._clock.now()

        if not self.is_running:
            return NextAction.IDLE
        if outcome is CycleOutcome.COMPLETED and has_more:
            return NextAction.DRAIN_NOW
        return NextAction.WAIT_FOR_TICK
