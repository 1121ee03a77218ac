"""Durable storage for poll events and the poll cursor."""

from doma_ingest.storage.event_store import EventStore

__all__ = ["EventStore"]
