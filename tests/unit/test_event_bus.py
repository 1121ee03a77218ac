"""Test EventBus subscribe/publish, failure isolation and dead letters."""

import pytest

from doma_ingest.bus.event_bus import TOPIC_BY_TYPE, EventBus, Topic
from doma_ingest.core.enums import EventType
from doma_ingest.core.errors import HandlerError


@pytest.fixture
def bus():
    return EventBus()


class TestEventBusPublishSubscribe:
    async def test_publish_invokes_handler(self, bus, make_event):
        received = []

        async def handler(event):
            received.append(event)

        bus.subscribe(Topic.ANY, handler)
        event = make_event(1)
        await bus.publish(Topic.ANY, event)

        assert received == [event]
        assert bus.messages_processed == 1

    async def test_no_handler_for_topic(self, bus, make_event):
        received = []

        async def handler(event):
            received.append(event)

        bus.subscribe(Topic.MINTED, handler)
        await bus.publish(Topic.BURNED, make_event(1))

        assert received == []

    async def test_topic_value_is_accepted(self, bus, make_event):
        received = []

        async def handler(event):
            received.append(event)

        bus.subscribe(Topic.MINTED, handler)
        await bus.publish("token.minted", make_event(1))
        assert len(received) == 1

    async def test_unknown_topic_string_rejected(self, bus):
        async def handler(event):
            pass

        with pytest.raises(ValueError):
            bus.subscribe("token.mintd", handler)

    async def test_unsubscribe(self, bus, make_event):
        received = []

        async def handler(event):
            received.append(event)

        bus.subscribe(Topic.ANY, handler)
        bus.unsubscribe(Topic.ANY, handler)
        await bus.publish(Topic.ANY, make_event(1))

        assert received == []
        assert bus.subscriber_count(Topic.ANY) == 0

    async def test_instances_are_isolated(self, make_event):
        first, second = EventBus(), EventBus()
        received = []

        async def handler(event):
            received.append(event)

        first.subscribe(Topic.ANY, handler)
        await second.publish(Topic.ANY, make_event(1))
        assert received == []


class TestEventBusFailures:
    async def test_failing_handler_does_not_stop_others(self, bus, make_event):
        received = []

        async def bad(event):
            raise ValueError("boom")

        async def good(event):
            received.append(event)

        bus.subscribe(Topic.ANY, bad)
        bus.subscribe(Topic.ANY, good)

        with pytest.raises(HandlerError) as exc_info:
            await bus.publish(Topic.ANY, make_event(1))

        assert len(received) == 1
        assert exc_info.value.topic == "poll.event"
        assert len(exc_info.value.errors) == 1
        assert "boom" in str(exc_info.value)

    async def test_failures_counted_and_dead_lettered(self, bus, make_event):
        async def bad(event):
            raise RuntimeError("nope")

        bus.subscribe(Topic.RENEWED, bad)
        event = make_event(9, "NAME_TOKEN_RENEWED", unique_id="u-9")
        with pytest.raises(HandlerError):
            await bus.publish(Topic.RENEWED, event)

        assert bus.get_error_counts() == {"token.renewed": 1}
        [letter] = bus.dead_letters
        assert letter.unique_id == "u-9"
        assert letter.event_id == 9
        assert letter.error == "nope"

        drained = bus.clear_dead_letters()
        assert len(drained) == 1
        assert bus.dead_letters == []

    async def test_dead_letters_keep_only_the_newest(self, make_event):
        bus = EventBus(max_dead_letters=2)

        async def bad(event):
            raise RuntimeError("nope")

        bus.subscribe(Topic.ANY, bad)
        for i in (1, 2, 3):
            with pytest.raises(HandlerError):
                await bus.publish(Topic.ANY, make_event(i, unique_id=f"u-{i}"))

        assert [d.unique_id for d in bus.dead_letters] == ["u-2", "u-3"]
        assert bus.get_error_counts() == {"poll.event": 3}


def test_every_event_type_has_a_topic():
    assert set(TOPIC_BY_TYPE) == set(EventType)
    assert Topic.ANY not in TOPIC_BY_TYPE.values()
