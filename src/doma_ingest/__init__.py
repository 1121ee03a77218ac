"""Doma poll-event ingestion pipeline.

Polls the Doma event API, persists events idempotently by ``uniqueId``,
fans them out to per-type subscribers and advances a monotonic cursor
once a batch is durable and acknowledged upstream.
"""

__version__ = "0.1.0"

from .core.enums import EventType, ProcessingStatus
from .core.events import RawEvent

__all__ = [
    "__version__",
    "EventType",
    "ProcessingStatus",
    "RawEvent",
]
