"""Property test: PollScheduler invariants under random operation sequences.

Uses hypothesis to interleave start/stop/begin/end calls and verifies the
scheduler never reports overlapping cycles, never drains while stopped,
and keeps its failure counter consistent with the outcomes it saw.
"""

from hypothesis import given, settings, strategies as st

from doma_ingest.core.clock import ManualClock
from doma_ingest.core.enums import CycleOutcome, NextAction
from doma_ingest.ingest.scheduler import PollScheduler

FAILURES = {
    CycleOutcome.TRANSPORT_ERROR,
    CycleOutcome.PERSISTENCE_ERROR,
    CycleOutcome.ACK_ERROR,
    CycleOutcome.UNEXPECTED_ERROR,
}

operations = st.lists(
    st.one_of(
        st.just(("start",)),
        st.just(("stop",)),
        st.just(("begin",)),
        st.tuples(st.just("end"), st.sampled_from(list(CycleOutcome)), st.booleans()),
    ),
    max_size=60,
)


@given(ops=operations)
@settings(max_examples=200)
def test_scheduler_invariants(ops):
    clock = ManualClock()
    scheduler = PollScheduler(1.0, clock)
    in_flight = False
    streak = 0
    cycles = 0

    for op in ops:
        clock.advance(0.5)
        if op[0] == "start":
            was_running = scheduler.is_running
            assert scheduler.start() is (not was_running)
            assert scheduler.is_running
        elif op[0] == "stop":
            was_running = scheduler.is_running
            assert scheduler.stop() is was_running
            assert not scheduler.is_running
        elif op[0] == "begin":
            claimed = scheduler.begin_cycle()
            assert claimed is (not in_flight)
            in_flight = True
        else:
            if not in_flight:
                continue
            _, outcome, has_more = op
            action = scheduler.end_cycle(outcome, has_more)
            in_flight = False
            cycles += 1
            streak = streak + 1 if outcome in FAILURES else 0

            if not scheduler.is_running:
                assert action is NextAction.IDLE
            elif action is NextAction.DRAIN_NOW:
                assert outcome is CycleOutcome.COMPLETED and has_more

        assert scheduler.in_flight is in_flight
        assert scheduler.consecutive_failures == streak
        assert scheduler.cycles == cycles
