"""Component health checks.

Reports health status of the database and the poll loop.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable

from doma_ingest.core.models import ComponentHealth
from doma_ingest.ingest.scheduler import PollScheduler
from doma_ingest.storage.event_store import EventStore

logger = logging.getLogger(__name__)

# Async check returning (healthy, message).
HealthCheck = Callable[[], Awaitable[tuple[bool, str]]]


class HealthChecker:
    """Checks health of system components."""

    def __init__(self) -> None:
        self._checks: dict[str, HealthCheck] = {}

    def register_check(self, component: str, check_fn: HealthCheck) -> None:
        """Register a health check function for a component."""
        self._checks[component] = check_fn

    async def check_all(self) -> list[ComponentHealth]:
        """Run all health checks and return results."""
        results = []

        for component, check_fn in self._checks.items():
            start = time.monotonic()
            try:
                healthy, message = await check_fn()
            except Exception as e:
                logger.warning("Health check %s raised: %s", component, e)
                healthy, message = False, f"Check failed: {e}"
            results.append(
                ComponentHealth(
                    component=component,
                    healthy=healthy,
                    message=message,
                    latency_ms=(time.monotonic() - start) * 1000,
                )
            )

        return results

    async def is_healthy(self) -> bool:
        """Quick check: are all components healthy?"""
        results = await self.check_all()
        return all(r.healthy for r in results)


def database_check(store: EventStore) -> HealthCheck:
    async def check() -> tuple[bool, str]:
        await store.ping()
        return True, "Database reachable"

    return check


def poller_check(scheduler: PollScheduler, max_consecutive_failures: int = 5) -> HealthCheck:
    """Unhealthy when stopped or after a run of failed cycles."""

    async def check() -> tuple[bool, str]:
        if not scheduler.is_running:
            return False, "Poller stopped"
        if scheduler.consecutive_failures >= max_consecutive_failures:
            return False, (
                f"{scheduler.consecutive_failures} consecutive failed cycles "
                f"(last: {scheduler.last_outcome.value if scheduler.last_outcome else 'n/a'})"
            )
        return True, f"Running, {scheduler.cycles} cycles"

    return check
