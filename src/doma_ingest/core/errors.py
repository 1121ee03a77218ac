"""Custom exception hierarchy for the ingestion pipeline."""


class IngestError(Exception):
    """Base exception for all ingestion errors."""


# --- Configuration ---
class ConfigError(IngestError):
    """Invalid or missing configuration."""


# --- Upstream API ---
class TransportError(IngestError):
    """Network, timeout or protocol failure talking to the upstream API."""


class AcknowledgmentError(TransportError):
    """Upstream rejected or never received an acknowledgment."""

    def __init__(self, last_id: int, reason: str):
        self.last_id = last_id
        self.reason = reason
        super().__init__(f"Acknowledgment of event {last_id} failed: {reason}")


# --- Storage ---
class PersistenceError(IngestError):
    """Database failure. Any open transaction has been rolled back."""


# --- Dispatch ---
class HandlerError(IngestError):
    """One or more subscribers raised while handling an event."""

    def __init__(self, topic: str, errors: list[Exception]):
        self.topic = topic
        self.errors = errors
        detail = "; ".join(f"{type(e).__name__}: {e}" for e in errors)
        super().__init__(f"{len(errors)} handler(s) failed on {topic}: {detail}")
