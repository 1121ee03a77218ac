"""Application bootstrap.

Loads settings, configures logging and metrics, wires the service and
polls until SIGINT/SIGTERM.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Any

from .core.config import Settings, load_settings
from .observability.logger import setup_logging
from .service import IngestService

logger = logging.getLogger(__name__)


async def run(
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> None:
    """Main entry point. Load config, validate, wire modules, run."""

    # 1. Load settings
    settings = load_settings(config_path=config_path, overrides=overrides)

    # 2. Set up logging
    _setup_logging(settings)

    # 3. Fail fast on missing credentials
    settings.validate_runtime()

    logger.info(
        "Starting doma-ingest against %s (batch_size=%d interval=%.1fs)",
        settings.poll_api.base_url,
        settings.poll_api.batch_size,
        settings.poll_api.interval_seconds,
    )

    # 4. Metrics exporter
    if settings.observability.metrics_enabled:
        try:
            from .observability.metrics import start_metrics_server

            start_metrics_server(port=settings.observability.metrics_port)
            logger.info(
                "Prometheus metrics server started on port %d",
                settings.observability.metrics_port,
            )
        except OSError:
            logger.warning("Failed to start metrics server", exc_info=True)

    # 5. Graceful shutdown
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Received shutdown signal")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    # 6. Run until told to stop
    async with IngestService.from_settings(settings) as service:
        if settings.poll_api.enabled:
            await service.start()
        else:
            logger.warning("Polling disabled by configuration; idling")
        await stop_event.wait()

    logger.info("Shutdown complete")


def _setup_logging(settings: Settings) -> None:
    obs = settings.observability
    setup_logging(level=obs.log_level, format=obs.log_format)
