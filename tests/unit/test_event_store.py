"""Test EventStore persistence, idempotency, cursor clamping and queries.

Runs against SQLite through aiosqlite; the ON CONFLICT paths are the
same constructs PostgreSQL uses.
"""

from __future__ import annotations

import pytest

from doma_ingest.core.enums import EventType, ProcessingStatus
from doma_ingest.core.errors import PersistenceError
from doma_ingest.core.models import EventFilters


class TestInsert:
    async def test_insert_returns_stored_row(self, store, make_event):
        event = make_event(10, unique_id="u-10")
        stored = await store.insert(event)

        assert stored.event_id == 10
        assert stored.unique_id == "u-10"
        assert stored.chain_id == "97476"
        assert stored.processing_status == ProcessingStatus.PENDING
        assert stored.retry_count == 0
        assert stored.event_data["type"] == "NAME_TOKEN_MINTED"

    async def test_insert_is_idempotent_on_unique_id(self, store, make_event):
        first = make_event(10, unique_id="u-10", finalized=False)
        await store.insert(first)
        again = make_event(10, unique_id="u-10", finalized=True, owner="0xnew")
        stored = await store.insert(again)

        assert stored.finalized is True
        assert stored.event_data["owner"] == "0xnew"
        rows = await store.find()
        assert len(rows) == 1

    async def test_reinsert_keeps_lifecycle_fields(self, store, make_event):
        event = make_event(10, unique_id="u-10")
        await store.insert(event)
        await store.mark_processed(10)

        stored = await store.insert(event)
        assert stored.processing_status == ProcessingStatus.PROCESSED
        assert stored.processed_at is not None


class TestInsertBatch:
    async def test_empty_batch_returns_zero(self, store):
        assert await store.insert_batch([]) == 0

    async def test_counts_only_new_rows(self, store, make_event):
        events = [make_event(i, unique_id=f"u-{i}") for i in (1, 2, 3)]
        assert await store.insert_batch(events) == 3

        events.append(make_event(4, unique_id="u-4"))
        assert await store.insert_batch(events) == 1
        assert (await store.get_stats()).total == 4

    async def test_duplicates_within_one_batch_are_skipped(self, store, make_event):
        events = [
            make_event(1, unique_id="dup"),
            make_event(2, unique_id="dup"),
            make_event(3, unique_id="other"),
        ]
        assert await store.insert_batch(events) == 2

    async def test_failure_rolls_back_whole_batch(self, store, make_event):
        good = make_event(1, unique_id="u-1")
        bad = make_event(2, unique_id="u-2").model_copy(update={"unique_id": None})

        with pytest.raises(PersistenceError):
            await store.insert_batch([good, bad])

        assert await store.get_by_unique_id("u-1") is None
        assert (await store.get_stats()).total == 0


class TestLifecycle:
    async def test_mark_processed(self, store, make_event):
        await store.insert_batch([make_event(1, unique_id="u-1")])
        await store.mark_processed(1)

        row = await store.get_by_unique_id("u-1")
        assert row.processing_status == ProcessingStatus.PROCESSED
        assert row.processed_at is not None

    async def test_mark_failed_counts_retries(self, store, make_event):
        await store.insert_batch([make_event(1, unique_id="u-1")])
        await store.mark_failed(1, "boom")
        await store.mark_failed(1, "boom again")

        row = await store.get_by_unique_id("u-1")
        assert row.processing_status == ProcessingStatus.FAILED
        assert row.error_message == "boom again"
        assert row.retry_count == 2

    async def test_processed_is_terminal(self, store, make_event):
        await store.insert_batch([make_event(1, unique_id="u-1")])
        await store.mark_processed(1)
        await store.mark_failed(1, "late failure")

        row = await store.get_by_unique_id("u-1")
        assert row.processing_status == ProcessingStatus.PROCESSED
        assert row.retry_count == 0

    async def test_record_outcomes(self, store, make_event):
        await store.insert_batch([make_event(i, unique_id=f"u-{i}") for i in (1, 2, 3)])
        await store.record_outcomes(["u-1", "u-3"], [("u-2", "handler exploded")])

        stats = await store.get_stats()
        assert stats.by_status == {"processed": 2, "failed": 1}
        failed = await store.get_by_unique_id("u-2")
        assert failed.error_message == "handler exploded"

    async def test_record_outcomes_for_rows_sharing_an_event_id(self, store, make_event):
        await store.insert_batch([
            make_event(7, "NAME_TOKEN_MINTED", unique_id="a"),
            make_event(7, "NAME_TOKEN_BURNED", unique_id="b"),
        ])
        await store.record_outcomes(["a"], [("b", "burn handler down")])

        ok = await store.get_by_unique_id("a")
        assert ok.processing_status == ProcessingStatus.PROCESSED
        assert ok.error_message is None
        bad = await store.get_by_unique_id("b")
        assert bad.processing_status == ProcessingStatus.FAILED
        assert bad.error_message == "burn handler down"
        assert bad.retry_count == 1
        assert await store.requeue_failed(max_retries=3) == 1

    async def test_requeue_failed_respects_max_retries(self, store, make_event):
        await store.insert_batch([make_event(i, unique_id=f"u-{i}") for i in (1, 2)])
        await store.mark_failed(1, "once")
        for _ in range(3):
            await store.mark_failed(2, "again")

        assert await store.requeue_failed(max_retries=3) == 1
        assert (await store.get_by_unique_id("u-1")).processing_status == ProcessingStatus.PENDING
        assert (await store.get_by_unique_id("u-2")).processing_status == ProcessingStatus.FAILED


class TestCursor:
    async def test_missing_cursor_reads_zero(self, store):
        assert await store.get_last_acknowledged_id() == 0

    async def test_cursor_never_moves_backwards(self, store):
        await store.update_last_acknowledged_id(100)
        await store.update_last_acknowledged_id(50)
        assert await store.get_last_acknowledged_id() == 100

        await store.update_last_acknowledged_id(150)
        assert await store.get_last_acknowledged_id() == 150

    async def test_update_stamps_acknowledged_at(self, store, make_event):
        await store.insert_batch([make_event(i, unique_id=f"u-{i}") for i in (5, 10, 15)])
        await store.update_last_acknowledged_id(10)

        assert (await store.get_by_unique_id("u-5")).acknowledged_at is not None
        assert (await store.get_by_unique_id("u-10")).acknowledged_at is not None
        assert (await store.get_by_unique_id("u-15")).acknowledged_at is None

    async def test_reset_rewinds_below_current(self, store, make_event):
        await store.insert_batch([make_event(i, unique_id=f"u-{i}") for i in (5, 10)])
        await store.update_last_acknowledged_id(10)

        await store.reset_last_acknowledged_id(5)

        assert await store.get_last_acknowledged_id() == 5
        assert (await store.get_by_unique_id("u-5")).acknowledged_at is not None
        assert (await store.get_by_unique_id("u-10")).acknowledged_at is None


class TestFind:
    @pytest.fixture
    async def populated(self, store, make_event):
        await store.insert_batch([
            make_event(1, "NAME_TOKEN_MINTED", unique_id="a", name="alice.doma", token_id="11"),
            make_event(2, "NAME_TOKEN_TRANSFERRED", unique_id="b", name="alice.doma", token_id="11"),
            make_event(3, "NAME_TOKEN_MINTED", unique_id="c", name="bob.doma", token_id="22"),
            make_event(4, "NAME_TOKEN_RENEWED", unique_id="d", name="bob.doma", token_id="22"),
            make_event(5, "NAME_TOKEN_BURNED", unique_id="e", name="carol.doma", token_id="33"),
        ])
        return store

    async def test_newest_first_with_default_limit(self, populated):
        rows = await populated.find()
        assert [r.event_id for r in rows] == [5, 4, 3, 2, 1]

    async def test_filter_by_type_enum(self, populated):
        rows = await populated.find(EventFilters(event_type=EventType.NAME_TOKEN_MINTED))
        assert [r.unique_id for r in rows] == ["c", "a"]

    async def test_filter_by_name_and_token(self, populated):
        rows = await populated.find(EventFilters(name="bob.doma", token_id="22"))
        assert {r.unique_id for r in rows} == {"c", "d"}

    async def test_inclusive_id_range(self, populated):
        rows = await populated.find(EventFilters(from_event_id=2, to_event_id=4))
        assert [r.event_id for r in rows] == [4, 3, 2]

    async def test_filter_by_status(self, populated):
        await populated.mark_processed(3)
        rows = await populated.find(EventFilters(processing_status=ProcessingStatus.PROCESSED))
        assert [r.unique_id for r in rows] == ["c"]

    async def test_limit_and_offset(self, populated):
        rows = await populated.find(EventFilters(limit=2, offset=1))
        assert [r.event_id for r in rows] == [4, 3]

    async def test_get_by_unique_id_missing(self, populated):
        assert await populated.get_by_unique_id("nope") is None


class TestStats:
    async def test_empty(self, store):
        stats = await store.get_stats()
        assert stats.total == 0
        assert stats.by_type == {}
        assert stats.by_status == {}

    async def test_counts_by_type_and_status(self, store, make_event):
        await store.insert_batch([
            make_event(1, "NAME_TOKEN_MINTED"),
            make_event(2, "NAME_TOKEN_MINTED"),
            make_event(3, "NAME_TOKEN_BURNED"),
        ])
        await store.mark_processed(1)

        stats = await store.get_stats()
        assert stats.total == 3
        assert stats.by_type == {"NAME_TOKEN_MINTED": 2, "NAME_TOKEN_BURNED": 1}
        assert stats.by_status == {"pending": 2, "processed": 1}

    async def test_ping(self, store):
        assert await store.ping() is True
