"""Enumerations used across the ingestion pipeline."""

from __future__ import annotations

from enum import Enum


class EventType(str, Enum):
    NAME_TOKEN_MINTED = "NAME_TOKEN_MINTED"
    NAME_TOKEN_TRANSFERRED = "NAME_TOKEN_TRANSFERRED"
    NAME_TOKEN_RENEWED = "NAME_TOKEN_RENEWED"
    NAME_TOKEN_BURNED = "NAME_TOKEN_BURNED"
    LOCK_STATUS_CHANGED = "LOCK_STATUS_CHANGED"
    METADATA_UPDATED = "METADATA_UPDATED"

    @classmethod
    def parse(cls, value: str) -> EventType | None:
        """Return the member for *value*, or ``None`` for unknown tags."""
        try:
            return cls(value)
        except ValueError:
            return None


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class PollerState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class NextAction(str, Enum):
    """What the poll loop should do once a cycle has finished."""

    DRAIN_NOW = "drain_now"  # backlog remains, poll again immediately
    WAIT_FOR_TICK = "wait_for_tick"
    IDLE = "idle"  # poller stopped


class CycleOutcome(str, Enum):
    EMPTY = "empty"
    COMPLETED = "completed"
    TRANSPORT_ERROR = "transport_error"
    PERSISTENCE_ERROR = "persistence_error"
    ACK_ERROR = "ack_error"
    UNEXPECTED_ERROR = "unexpected_error"
