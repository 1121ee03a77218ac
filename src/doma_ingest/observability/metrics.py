"""Prometheus metrics for the poll consumer."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    start_http_server,
)

from doma_ingest import __version__

SERVICE_INFO = Info("doma_ingest", "Doma poll consumer information")

# ---------------------------------------------------------------------------
# Poll loop
# ---------------------------------------------------------------------------

POLL_CYCLES_TOTAL = Counter(
    "doma_ingest_poll_cycles_total",
    "Poll cycles by outcome",
    ["outcome"],
)

POLL_CYCLE_LATENCY = Histogram(
    "doma_ingest_poll_cycle_seconds",
    "Wall time of a poll cycle",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

POLLER_RUNNING = Gauge(
    "doma_ingest_poller_running",
    "1 when the poll loop is running",
)

LAST_ACKNOWLEDGED_ID = Gauge(
    "doma_ingest_last_acknowledged_id",
    "Highest upstream event id acknowledged",
)

# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

EVENTS_RECEIVED_TOTAL = Counter(
    "doma_ingest_events_received_total",
    "Events returned by upstream polls",
    ["event_type"],
)

EVENTS_INSERTED_TOTAL = Counter(
    "doma_ingest_events_inserted_total",
    "Events newly written to the store",
)

HANDLER_FAILURES_TOTAL = Counter(
    "doma_ingest_handler_failures_total",
    "Events whose handlers raised",
    ["event_type"],
)


def start_metrics_server(port: int = 9090) -> None:
    """Start Prometheus metrics HTTP server in a background thread."""
    SERVICE_INFO.info({"version": __version__})
    start_http_server(port)


# ---------------------------------------------------------------------------
# Convenience helpers
# ---------------------------------------------------------------------------


def record_cycle(outcome: str, seconds: float) -> None:
    POLL_CYCLES_TOTAL.labels(outcome=outcome).inc()
    POLL_CYCLE_LATENCY.observe(seconds)


def record_events_received(event_type: str, count: int = 1) -> None:
    EVENTS_RECEIVED_TOTAL.labels(event_type=event_type).inc(count)


def record_events_inserted(count: int) -> None:
    if count > 0:
        EVENTS_INSERTED_TOTAL.inc(count)


def record_handler_failure(event_type: str) -> None:
    HANDLER_FAILURES_TOTAL.labels(event_type=event_type).inc()


def update_last_acknowledged_id(value: int) -> None:
    LAST_ACKNOWLEDGED_ID.set(value)


def update_poller_running(running: bool) -> None:
    POLLER_RUNNING.set(1 if running else 0)
