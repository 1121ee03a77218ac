"""Durable, idempotent persistence for poll events and the poll cursor.

Design invariants
-----------------
1.  ``unique_id`` is the dedup key. :meth:`EventStore.insert` upserts and
    only refreshes ``event_data`` / ``finalized`` on conflict;
    :meth:`EventStore.insert_batch` is strictly additive and skips known
    ids, including repeats inside the same batch.
2.  A batch is one transaction. Any failure rolls back every row of it.
3.  Acknowledgment writes clamp the cursor to ``max(current, proposed)``
    in SQL, so concurrent writers can never move it backwards. Only the
    operator rewind :meth:`EventStore.reset_last_acknowledged_id` may.
4.  Rows are never deleted here.

Every SQLAlchemy failure is re-raised as
:class:`~doma_ingest.core.errors.PersistenceError`.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import ColumnElement, case, func, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from doma_ingest.core.enums import ProcessingStatus
from doma_ingest.core.errors import PersistenceError
from doma_ingest.core.events import RawEvent
from doma_ingest.core.models import EventFilters, EventStats, StoredEvent

from .connection import session_scope
from .models import CURSOR_ROW_ID, PollCursorRecord, PollEventRecord

logger = logging.getLogger(__name__)

_NO_SYNC = {"synchronize_session": False}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dialect_insert(dialect_name: str) -> Any:
    """Return the dialect ``insert`` construct that supports ON CONFLICT."""
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise PersistenceError(f"Unsupported database dialect: {dialect_name}")
    return insert


# ---------------------------------------------------------------------------
# Conversion helpers
# ---------------------------------------------------------------------------

def _event_to_values(event: RawEvent) -> dict[str, Any]:
    """Column values for a new ``poll_events`` row."""
    return {
        "event_id": event.id,
        "unique_id": event.unique_id,
        "correlation_id": event.correlation_id,
        "relay_id": event.relay_id,
        "event_type": event.type,
        "name": event.name,
        "token_id": event.token_id,
        "network_id": event.network_id,
        "chain_id": event.chain_id,
        "tx_hash": event.tx_hash,
        "block_number": event.block_number,
        "log_index": event.log_index,
        "finalized": event.finalized,
        "event_data": event.payload.to_json(),
    }


def _record_to_event(record: PollEventRecord) -> StoredEvent:
    return StoredEvent.model_validate(record)


# ---------------------------------------------------------------------------
# EventStore
# ---------------------------------------------------------------------------

class EventStore:
    """Repository for ``poll_events`` and ``poll_cursor``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with session_scope(self._factory) as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error("Database operation %s failed: %s", operation, exc)
            raise PersistenceError(f"{operation} failed: {exc}") from exc

    @staticmethod
    def _insert_for(session: AsyncSession) -> Any:
        return _dialect_insert(session.get_bind().dialect.name)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert(self, event: RawEvent) -> StoredEvent:
        """Insert *event*, or refresh its payload if ``unique_id`` exists.

        Returns:
            The current row after the upsert.
        """
        async with self._session("insert") as session:
            insert = self._insert_for(session)
            stmt = insert(PollEventRecord).values(**_event_to_values(event))
            stmt = stmt.on_conflict_do_update(
                index_elements=["unique_id"],
                set_={
                    "event_data": stmt.excluded.event_data,
                    "finalized": stmt.excluded.finalized,
                },
            ).returning(PollEventRecord)
            result = await session.scalars(
                stmt, execution_options={"populate_existing": True},
            )
            record = result.one()
            stored = _record_to_event(record)
        logger.debug("Upserted event %s (%s)", event.id, event.unique_id)
        return stored

    async def insert_batch(self, events: Sequence[RawEvent]) -> int:
        """Insert *events* in one transaction, skipping known ``unique_id``s.

        Returns:
            Number of rows newly created.

        Raises:
            PersistenceError: Nothing from the batch was written.
        """
        if not events:
            return 0

        inserted = 0
        async with self._session("insert_batch") as session:
            insert = self._insert_for(session)
            for event in events:
                stmt = (
                    insert(PollEventRecord)
                    .values(**_event_to_values(event))
                    .on_conflict_do_nothing(index_elements=["unique_id"])
                    .returning(PollEventRecord.id)
                )
                result = await session.execute(stmt)
                if result.scalar_one_or_none() is not None:
                    inserted += 1

        logger.info(
            "Inserted poll events batch: inserted=%d total=%d",
            inserted,
            len(events),
        )
        return inserted

    async def mark_processed(self, event_id: int) -> None:
        async with self._session("mark_processed") as session:
            await self._apply_processed(session, PollEventRecord.event_id == event_id)

    async def mark_failed(self, event_id: int, message: str) -> None:
        async with self._session("mark_failed") as session:
            await self._apply_failed(session, PollEventRecord.event_id == event_id, message)

    async def record_outcomes(
        self,
        processed_unique_ids: Sequence[str],
        failures: Sequence[tuple[str, str]],
    ) -> None:
        """Apply a batch of dispatch outcomes in one transaction.

        Outcomes are keyed by ``unique_id``: two events in one batch may
        share an upstream ``event_id`` and still end up in different states.
        """
        if not processed_unique_ids and not failures:
            return
        async with self._session("record_outcomes") as session:
            if processed_unique_ids:
                await self._apply_processed(
                    session, PollEventRecord.unique_id.in_(list(processed_unique_ids)),
                )
            for unique_id, message in failures:
                await self._apply_failed(
                    session, PollEventRecord.unique_id == unique_id, message,
                )

    @staticmethod
    async def _apply_processed(session: AsyncSession, match: ColumnElement[bool]) -> None:
        # processed is terminal: a later redelivery must not reset processed_at.
        await session.execute(
            update(PollEventRecord)
            .where(
                match,
                PollEventRecord.processing_status != ProcessingStatus.PROCESSED.value,
            )
            .values(
                processing_status=ProcessingStatus.PROCESSED.value,
                processed_at=_utcnow(),
            )
            .execution_options(**_NO_SYNC)
        )

    @staticmethod
    async def _apply_failed(
        session: AsyncSession, match: ColumnElement[bool], message: str,
    ) -> None:
        await session.execute(
            update(PollEventRecord)
            .where(
                match,
                PollEventRecord.processing_status != ProcessingStatus.PROCESSED.value,
            )
            .values(
                processing_status=ProcessingStatus.FAILED.value,
                error_message=message,
                retry_count=PollEventRecord.retry_count + 1,
            )
            .execution_options(**_NO_SYNC)
        )

    async def requeue_failed(self, max_retries: int) -> int:
        """Move failed rows with ``retry_count < max_retries`` back to pending.

        Returns:
            Number of rows requeued.
        """
        async with self._session("requeue_failed") as session:
            result = await session.execute(
                update(PollEventRecord)
                .where(
                    PollEventRecord.processing_status == ProcessingStatus.FAILED.value,
                    PollEventRecord.retry_count < max_retries,
                )
                .values(processing_status=ProcessingStatus.PENDING.value)
                .execution_options(**_NO_SYNC)
            )
            count = result.rowcount or 0
        if count:
            logger.info("Requeued %d failed events", count)
        return count

    # ------------------------------------------------------------------
    # Cursor
    # ------------------------------------------------------------------

    async def _ensure_cursor(self, session: AsyncSession) -> None:
        insert = self._insert_for(session)
        await session.execute(
            insert(PollCursorRecord)
            .values(id=CURSOR_ROW_ID, last_acknowledged_id=0)
            .on_conflict_do_nothing(index_elements=["id"])
        )

    async def get_last_acknowledged_id(self) -> int:
        async with self._session("get_last_acknowledged_id") as session:
            value = await session.scalar(
                select(PollCursorRecord.last_acknowledged_id).where(
                    PollCursorRecord.id == CURSOR_ROW_ID,
                )
            )
        return int(value) if value is not None else 0

    async def update_last_acknowledged_id(self, event_id: int) -> None:
        """Advance the cursor to *event_id* unless it is already further.

        Also stamps ``acknowledged_at`` on every unacknowledged row with
        ``event_id <= event_id``.
        """
        now = _utcnow()
        current = PollCursorRecord.last_acknowledged_id
        async with self._session("update_last_acknowledged_id") as session:
            await self._ensure_cursor(session)
            await session.execute(
                update(PollCursorRecord)
                .where(PollCursorRecord.id == CURSOR_ROW_ID)
                .values(
                    last_acknowledged_id=case(
                        (current < event_id, event_id), else_=current,
                    ),
                    updated_at=now,
                )
                .execution_options(**_NO_SYNC)
            )
            await session.execute(
                update(PollEventRecord)
                .where(
                    PollEventRecord.event_id <= event_id,
                    PollEventRecord.acknowledged_at.is_(None),
                )
                .values(acknowledged_at=now)
                .execution_options(**_NO_SYNC)
            )
        logger.debug("Cursor advanced to at least %d", event_id)

    async def reset_last_acknowledged_id(self, event_id: int) -> None:
        """Rewind (or move) the cursor to exactly *event_id*.

        Rows above the new position lose ``acknowledged_at`` since upstream
        will deliver them again.
        """
        async with self._session("reset_last_acknowledged_id") as session:
            await self._ensure_cursor(session)
            await session.execute(
                update(PollCursorRecord)
                .where(PollCursorRecord.id == CURSOR_ROW_ID)
                .values(last_acknowledged_id=event_id, updated_at=_utcnow())
                .execution_options(**_NO_SYNC)
            )
            await session.execute(
                update(PollEventRecord)
                .where(PollEventRecord.event_id > event_id)
                .values(acknowledged_at=None)
                .execution_options(**_NO_SYNC)
            )
        logger.info("Cursor reset to %d", event_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find(self, filters: EventFilters | None = None) -> list[StoredEvent]:
        """Return rows matching *filters*, newest ``event_id`` first."""
        f = filters or EventFilters()
        stmt = select(PollEventRecord)
        if f.event_type is not None:
            stmt = stmt.where(PollEventRecord.event_type == f.event_type)
        if f.name is not None:
            stmt = stmt.where(PollEventRecord.name == f.name)
        if f.token_id is not None:
            stmt = stmt.where(PollEventRecord.token_id == f.token_id)
        if f.processing_status is not None:
            stmt = stmt.where(
                PollEventRecord.processing_status == f.processing_status.value,
            )
        if f.from_event_id is not None:
            stmt = stmt.where(PollEventRecord.event_id >= f.from_event_id)
        if f.to_event_id is not None:
            stmt = stmt.where(PollEventRecord.event_id <= f.to_event_id)

        stmt = (
            stmt.order_by(PollEventRecord.event_id.desc(), PollEventRecord.id.desc())
            .limit(f.limit)
            .offset(f.offset)
        )
        async with self._session("find") as session:
            result = await session.scalars(stmt)
            return [_record_to_event(r) for r in result.all()]

    async def get_by_unique_id(self, unique_id: str) -> StoredEvent | None:
        async with self._session("get_by_unique_id") as session:
            record = await session.scalar(
                select(PollEventRecord).where(PollEventRecord.unique_id == unique_id)
            )
            return _record_to_event(record) if record is not None else None

    async def get_stats(self) -> EventStats:
        """Row count overall, per ``event_type`` and per ``processing_status``."""
        count = func.count(PollEventRecord.id)
        async with self._session("get_stats") as session:
            total = await session.scalar(select(count))
            by_type = await session.execute(
                select(PollEventRecord.event_type, count)
                .group_by(PollEventRecord.event_type)
                .order_by(count.desc())
            )
            by_status = await session.execute(
                select(PollEventRecord.processing_status, count)
                .group_by(PollEventRecord.processing_status)
                .order_by(count.desc())
            )
            return EventStats(
                total=int(total or 0),
                by_type={t: int(n) for t, n in by_type.all()},
                by_status={s: int(n) for s, n in by_status.all()},
            )

    async def ping(self) -> bool:
        async with self._session("ping") as session:
            await session.execute(text("SELECT 1"))
        return True
