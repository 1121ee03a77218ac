"""Read-side domain models.

These are what the store hands back to callers; ORM records never leak
past :mod:`doma_ingest.storage`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import EventType, ProcessingStatus


class StoredEvent(BaseModel):
    """A persisted poll event plus its lifecycle fields."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    event_id: int
    unique_id: str
    correlation_id: str | None = None
    relay_id: str | None = None
    event_type: str
    name: str | None = None
    token_id: str | None = None
    network_id: str | None = None
    chain_id: str | None = None
    tx_hash: str | None = None
    block_number: str | None = None
    log_index: int | None = None
    finalized: bool = False
    event_data: dict[str, Any] = Field(default_factory=dict)

    created_at: datetime | None = None
    processed_at: datetime | None = None
    acknowledged_at: datetime | None = None
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    error_message: str | None = None
    retry_count: int = 0


class EventFilters(BaseModel):
    """Predicates for :meth:`EventStore.find`. Unset fields do not filter."""

    event_type: str | None = None
    name: str | None = None
    token_id: str | None = None
    processing_status: ProcessingStatus | None = None
    from_event_id: int | None = None  # inclusive
    to_event_id: int | None = None  # inclusive
    limit: int = Field(default=100, ge=1)
    offset: int = Field(default=0, ge=0)

    @field_validator("event_type", mode="before")
    @classmethod
    def _enum_to_str(cls, v: object) -> object:
        if isinstance(v, EventType):
            return v.value
        return v


class EventStats(BaseModel):
    total: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)
    by_status: dict[str, int] = Field(default_factory=dict)


class IngestStats(EventStats):
    """Store aggregates plus consumer progress."""

    last_acknowledged_id: int = 0
    is_running: bool = False


class PollHealth(BaseModel):
    status: str  # "running" | "stopped"
    last_acknowledged_id: int
    timestamp: datetime


class ComponentHealth(BaseModel):
    component: str
    healthy: bool
    message: str = ""
    latency_ms: float = 0.0
    details: dict[str, Any] = Field(default_factory=dict)
