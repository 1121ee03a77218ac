"""In-process fan-out of ingested events to subscribers."""

from doma_ingest.bus.event_bus import TOPIC_BY_TYPE, EventBus, Topic

__all__ = ["EventBus", "TOPIC_BY_TYPE", "Topic"]
