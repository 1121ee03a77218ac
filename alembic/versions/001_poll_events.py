"""Poll event ingestion: poll_events and poll_cursor.

Revision ID: 001_poll_events
Revises: None
Create Date: 2025-01-01 00:00:00.000000
"""
from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "001_poll_events"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Ingested events, deduplicated by unique_id
    op.create_table(
        "poll_events",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.BigInteger, nullable=False),
        sa.Column("unique_id", sa.String(255), nullable=False),
        sa.Column("correlation_id", sa.String(255), nullable=True),
        sa.Column("relay_id", sa.String(255), nullable=True),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("token_id", sa.String(100), nullable=True),
        sa.Column("network_id", sa.String(50), nullable=True),
        sa.Column("chain_id", sa.String(50), nullable=True),
        sa.Column("tx_hash", sa.String(100), nullable=True),
        sa.Column("block_number", sa.String(50), nullable=True),
        sa.Column("log_index", sa.Integer, nullable=True),
        sa.Column("finalized", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("event_data", JSONB, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_status", sa.String(50), nullable=False, server_default="pending"),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.UniqueConstraint("unique_id", name="uq_poll_events_unique_id"),
    )
    op.create_index("ix_poll_events_event_id", "poll_events", ["event_id"])
    op.create_index("ix_poll_events_event_type", "poll_events", ["event_type"])
    op.create_index("ix_poll_events_name", "poll_events", ["name"])
    op.create_index("ix_poll_events_token_id", "poll_events", ["token_id"])
    op.create_index("ix_poll_events_tx_hash", "poll_events", ["tx_hash"])
    op.create_index("ix_poll_events_processing_status", "poll_events", ["processing_status"])
    op.create_index("ix_poll_events_created_at", "poll_events", ["created_at"])
    op.create_index("ix_poll_events_correlation_id", "poll_events", ["correlation_id"])
    op.create_index("ix_poll_events_type_status", "poll_events", ["event_type", "processing_status"])
    op.create_index("ix_poll_events_name_type", "poll_events", ["name", "event_type"])

    # Singleton consumer cursor
    op.create_table(
        "poll_cursor",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("last_acknowledged_id", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("id = 1", name="single_cursor"),
    )
    op.execute("INSERT INTO poll_cursor (id, last_acknowledged_id) VALUES (1, 0)")


def downgrade() -> None:
    op.drop_table("poll_cursor")
    op.drop_table("poll_events")
