"""Test EventProcessor routing, failure isolation and unknown types."""

import pytest

from doma_ingest.bus.event_bus import EventBus, Topic
from doma_ingest.core.enums import EventType
from doma_ingest.ingest.processor import EventProcessor


@pytest.fixture
def processor():
    return EventProcessor(EventBus())


def _collect(processor, topic):
    seen = []

    async def handler(event):
        seen.append(event.unique_id)

    processor.bus.subscribe(topic, handler)
    return seen


class TestRouting:
    def test_every_event_type_has_a_handler(self, processor):
        assert processor.handled_types == frozenset(EventType)

    async def test_any_topic_sees_every_known_event(self, processor, make_event):
        seen = _collect(processor, Topic.ANY)
        events = [
            make_event(1, "NAME_TOKEN_MINTED", unique_id="a"),
            make_event(2, "NAME_TOKEN_BURNED", unique_id="b"),
        ]

        result = await processor.dispatch(events)

        assert seen == ["a", "b"]
        assert result.processed == ["a", "b"]
        assert result.failed == []

    @pytest.mark.parametrize(
        "event_type,topic",
        [
            ("NAME_TOKEN_MINTED", Topic.MINTED),
            ("NAME_TOKEN_TRANSFERRED", Topic.TRANSFERRED),
            ("NAME_TOKEN_RENEWED", Topic.RENEWED),
            ("NAME_TOKEN_BURNED", Topic.BURNED),
            ("LOCK_STATUS_CHANGED", Topic.LOCK_CHANGED),
            ("METADATA_UPDATED", Topic.METADATA_UPDATED),
        ],
    )
    async def test_exactly_one_sub_topic_per_event(self, processor, make_event, event_type, topic):
        seen = {t: _collect(processor, t) for t in Topic if t is not Topic.ANY}

        await processor.dispatch([make_event(1, event_type, unique_id="x")])

        for t, ids in seen.items():
            assert ids == (["x"] if t is topic else [])

    async def test_delivery_order_preserved(self, processor, make_event):
        seen = _collect(processor, Topic.ANY)
        events = [make_event(i, unique_id=f"u-{i}") for i in (3, 1, 2)]
        await processor.dispatch(events)
        assert seen == ["u-3", "u-1", "u-2"]


class TestFailures:
    async def test_failing_subscriber_recorded_and_batch_continues(self, processor, make_event):
        seen = _collect(processor, Topic.ANY)

        async def explode_on_burn(event):
            raise RuntimeError("burn handler down")

        processor.bus.subscribe(Topic.BURNED, explode_on_burn)
        events = [
            make_event(1, "NAME_TOKEN_MINTED", unique_id="a"),
            make_event(2, "NAME_TOKEN_BURNED", unique_id="b"),
            make_event(3, "NAME_TOKEN_MINTED", unique_id="c"),
        ]

        result = await processor.dispatch(events)

        assert seen == ["a", "b", "c"]
        assert result.processed == ["a", "c"]
        [failure] = result.failed
        assert failure.event_id == 2
        assert failure.unique_id == "b"
        assert "burn handler down" in failure.error
        assert result.failures == [("b", failure.error)]

    async def test_failure_on_any_still_runs_type_handler(self, processor, make_event):
        typed = _collect(processor, Topic.MINTED)

        async def bad(event):
            raise ValueError("generic subscriber broke")

        processor.bus.subscribe(Topic.ANY, bad)
        result = await processor.dispatch([make_event(1, unique_id="a")])

        assert typed == ["a"]
        assert [f.event_id for f in result.failed] == [1]

    async def test_outcomes_distinguish_events_sharing_an_id(self, processor, make_event):
        async def explode_on_burn(event):
            raise RuntimeError("burn handler down")

        processor.bus.subscribe(Topic.BURNED, explode_on_burn)
        result = await processor.dispatch([
            make_event(7, "NAME_TOKEN_MINTED", unique_id="a"),
            make_event(7, "NAME_TOKEN_BURNED", unique_id="b"),
        ])

        assert result.processed == ["a"]
        assert [f.unique_id for f in result.failed] == ["b"]


class TestUnknownTypes:
    async def test_unknown_type_ignored_without_publishing(self, processor, make_event):
        seen = _collect(processor, Topic.ANY)
        events = [
            make_event(1, "NAME_TOKEN_FRACTIONALIZED", unique_id="odd"),
            make_event(2, "NAME_TOKEN_MINTED", unique_id="ok"),
        ]

        result = await processor.dispatch(events)

        assert seen == ["ok"]
        assert result.ignored == ["odd"]
        assert result.processed == ["ok"]
        assert result.failed == []
