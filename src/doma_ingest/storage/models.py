"""SQLAlchemy ORM models for ingested poll events and the poll cursor.

``poll_events`` holds one row per ``unique_id`` (unique constraint is the
dedup key). ``event_id`` is the upstream sequence id; it is indexed but not
unique because upstream ids are not strictly increasing across polls.

``poll_cursor`` is a singleton table (check constraint ``id = 1``).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from doma_ingest.core.enums import ProcessingStatus

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
_PK = BigInteger().with_variant(Integer(), "sqlite")
_JSON = JSON().with_variant(JSONB(), "postgresql")

CURSOR_ROW_ID = 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# PollEventRecord
# ---------------------------------------------------------------------------

class PollEventRecord(Base):
    """Persisted poll event.

    Redelivery of a known ``unique_id`` only ever touches ``event_data`` and
    ``finalized``; lifecycle columns are owned by the processing path.
    """

    __tablename__ = "poll_events"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)

    # Doma identifiers
    event_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    unique_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    correlation_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    relay_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Event metadata
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    token_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Chain data
    network_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    chain_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    tx_hash: Mapped[str | None] = mapped_column(String(100), nullable=True)
    block_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    log_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    finalized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    event_data: Mapped[dict[str, Any]] = mapped_column(_JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(),
    )
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    acknowledged_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    processing_status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=ProcessingStatus.PENDING.value,
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_poll_events_event_id", "event_id"),
        Index("ix_poll_events_event_type", "event_type"),
        Index("ix_poll_events_name", "name"),
        Index("ix_poll_events_token_id", "token_id"),
        Index("ix_poll_events_tx_hash", "tx_hash"),
        Index("ix_poll_events_processing_status", "processing_status"),
        Index("ix_poll_events_created_at", "created_at"),
        Index("ix_poll_events_correlation_id", "correlation_id"),
        Index("ix_poll_events_type_status", "event_type", "processing_status"),
        Index("ix_poll_events_name_type", "name", "event_type"),
    )

    def __repr__(self) -> str:
        return (
            f"<PollEventRecord(event_id={self.event_id!r}, "
            f"unique_id={self.unique_id!r}, type={self.event_type!r}, "
            f"status={self.processing_status!r})>"
        )


# ---------------------------------------------------------------------------
# PollCursorRecord
# ---------------------------------------------------------------------------

class PollCursorRecord(Base):
    """Last acknowledged upstream event id. Exactly one row."""

    __tablename__ = "poll_cursor"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=CURSOR_ROW_ID)
    last_acknowledged_id: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(),
    )

    __table_args__ = (
        CheckConstraint(f"id = {CURSOR_ROW_ID}", name="single_cursor"),
    )

    def __repr__(self) -> str:
        return f"<PollCursorRecord(last_acknowledged_id={self.last_acknowledged_id!r})>"
