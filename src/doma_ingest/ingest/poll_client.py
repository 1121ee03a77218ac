"""Autonomous poll loop.

One cycle is::

    poll(after_id=cursor) -> insert_batch -> dispatch -> record_outcomes
        -> acknowledge(last_id)

The cursor only moves after the batch is durable. When upstream reports
``hasMoreEvents`` the next cycle is queued on the event loop right away
instead of waiting for the timer, so a backlog drains at full speed.
Errors never escape the loop: they end the cycle, are counted, and the
next tick retries. This module's own log entries carry the cycle's
``cycle_id``.
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter

from doma_ingest.core.clock import IClock
from doma_ingest.core.config import PollApiConfig
from doma_ingest.core.enums import CycleOutcome, NextAction
from doma_ingest.core.errors import AcknowledgmentError, PersistenceError, TransportError
from doma_ingest.core.interfaces import IEventSource
from doma_ingest.observability import metrics
from doma_ingest.observability.logger import clear_cycle_id, get_logger, new_cycle_id
from doma_ingest.storage.event_store import EventStore

from .cursor import CursorManager
from .processor import EventProcessor
from .scheduler import PollScheduler

logger = get_logger(__name__)


class PollClient:
    """Drives poll cycles on a timer, with greedy backlog drain.

    Usage::

        client = PollClient(source, store, processor, cursor, config)
        await client.start()   # first cycle runs before this returns
        ...
        await client.stop()
    """

    def __init__(
        self,
        source: IEventSource,
        store: EventStore,
        processor: EventProcessor,
        cursor: CursorManager,
        config: PollApiConfig,
        *,
        scheduler: PollScheduler | None = None,
        record_outcomes: bool = True,
        clock: IClock | None = None,
    ) -> None:
        self._source = source
        self._store = store
        self._processor = processor
        self._cursor = cursor
        self._config = config
        self._scheduler = scheduler or PollScheduler(config.interval_seconds, clock)
        self._record_outcomes = record_outcomes

        self._timer_task: asyncio.Task[None] | None = None
        self._cycle_tasks: set[asyncio.Task[CycleOutcome | None]] = set()
        self._drain_queued = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._scheduler.is_running

    @property
    def scheduler(self) -> PollScheduler:
        return self._scheduler

    async def start(self) -> None:
        """Start polling. A no-op when already running."""
        if not self._scheduler.start():
            logger.info("Poll client already running")
            return

        metrics.update_poller_running(True)
        logger.info(
            "Starting poll client",
            interval_seconds=self._scheduler.interval_seconds,
            batch_size=self._config.batch_size,
            after_id=self._cursor.last_acknowledged_id,
        )
        await self.run_cycle()
        if self._scheduler.is_running:
            self._timer_task = asyncio.create_task(
                self._timer_loop(), name="doma-poll-timer",
            )

    async def stop(self) -> None:
        """Stop polling. A cycle already in flight is allowed to finish."""
        if not self._scheduler.stop():
            return

        if self._timer_task is not None:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None

        await self.join()
        metrics.update_poller_running(False)
        logger.info("Poll client stopped", last_acknowledged_id=self._cursor.last_acknowledged_id)

    async def join(self) -> None:
        """Wait until no cycle is queued or running."""
        current = asyncio.current_task()
        while True:
            pending = [t for t in self._cycle_tasks if t is not current]
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            elif self._drain_queued:
                await asyncio.sleep(0)
            else:
                return

    async def _timer_loop(self) -> None:
        while self._scheduler.is_running:
            await asyncio.sleep(self._scheduler.interval_seconds)
            if self._scheduler.in_flight:
                logger.debug("Poll cycle still in flight, skipping tick")
                continue
            self._spawn_cycle()

    def _spawn_cycle(self) -> None:
        if not self._scheduler.is_running:
            return
        task = asyncio.create_task(self.run_cycle())
        self._cycle_tasks.add(task)
        task.add_done_callback(self._cycle_tasks.discard)

    def _queue_drain(self) -> None:
        self._drain_queued = True
        asyncio.get_running_loop().call_soon(self._run_queued_drain)

    def _run_queued_drain(self) -> None:
        self._drain_queued = False
        self._spawn_cycle()

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> CycleOutcome | None:
        """Run one poll cycle.

        Returns:
            The cycle outcome, or ``None`` when another cycle was already
            in flight and this one was skipped.
        """
        if not self._scheduler.begin_cycle():
            logger.debug("Poll cycle already in flight, skipping")
            return None

        new_cycle_id()
        started = time.monotonic()
        outcome = CycleOutcome.UNEXPECTED_ERROR
        has_more = False
        try:
            outcome, has_more = await self._execute_cycle()
        except AcknowledgmentError as exc:
            outcome = CycleOutcome.ACK_ERROR
            logger.error("Acknowledgment failed, cursor unchanged", last_id=exc.last_id, error=str(exc))
        except TransportError as exc:
            outcome = CycleOutcome.TRANSPORT_ERROR
            logger.error("Poll request failed", error=str(exc))
        except PersistenceError as exc:
            outcome = CycleOutcome.PERSISTENCE_ERROR
            logger.error("Persisting batch failed, not acknowledging", error=str(exc))
        except Exception:
            outcome = CycleOutcome.UNEXPECTED_ERROR
            logger.exception("Unexpected error in poll cycle")
        finally:
            next_action = self._scheduler.end_cycle(outcome, has_more)
            metrics.record_cycle(outcome.value, time.monotonic() - started)
            clear_cycle_id()

        if next_action is NextAction.DRAIN_NOW:
            self._queue_drain()
        return outcome

    async def _execute_cycle(self) -> tuple[CycleOutcome, bool]:
        after_id = self._cursor.last_acknowledged_id
        epoch = self._cursor.epoch
        response = await self._source.poll(
            after_id=after_id,
            limit=self._config.batch_size,
            event_types=self._config.event_types or None,
            finalized_only=self._config.finalized_only,
        )
        events = response.events
        if not events:
            logger.debug("No new events", after_id=after_id)
            return CycleOutcome.EMPTY, False

        for event_type, count in Counter(e.type for e in events).items():
            metrics.record_events_received(event_type, count)
        logger.info(
            "Received events",
            count=len(events),
            after_id=after_id,
            last_id=response.last_id,
            has_more=response.has_more_events,
        )

        inserted = await self._store.insert_batch(events)
        metrics.record_events_inserted(inserted)

        result = await self._processor.dispatch(events)
        if self._record_outcomes:
            await self._store.record_outcomes(result.processed, result.failures)

        if not await self._cursor.acknowledge(response.last_id, epoch=epoch):
            # Replay resumes from the reset position on the next cycle.
            return CycleOutcome.COMPLETED, False
        metrics.update_last_acknowledged_id(self._cursor.last_acknowledged_id)

        logger.info(
            "Poll cycle complete",
            inserted=inserted,
            processed=len(result.processed),
            failed=len(result.failed),
            ignored=len(result.ignored),
            last_acknowledged_id=self._cursor.last_acknowledged_id,
        )
        return CycleOutcome.COMPLETED, response.has_more_events
