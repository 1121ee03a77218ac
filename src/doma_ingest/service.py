"""Service facade that wires the ingestion pipeline together.

Settings -> engine -> store -> upstream client -> cursor -> processor ->
poller. Callers (the CLI, an HTTP layer, tests) only talk to
:class:`IngestService`.

Usage::

    async with IngestService.from_settings(settings) as service:
        service.subscribe(Topic.MINTED, on_minted)
        await service.start()
        ...
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from .bus.event_bus import EventBus, EventHandler, Topic
from .clients.doma_api import DomaApiClient
from .core.clock import IClock, WallClock
from .core.config import Settings
from .core.interfaces import IEventSource
from .core.models import ComponentHealth, EventFilters, IngestStats, PollHealth, StoredEvent
from .ingest.cursor import CursorManager
from .ingest.poll_client import PollClient
from .ingest.processor import EventProcessor
from .ingest.stats import StatsAggregator
from .observability.health import HealthChecker, database_check, poller_check
from .storage.connection import create_all, create_engine, create_session_factory, dispose
from .storage.event_store import EventStore

logger = logging.getLogger(__name__)


class IngestService:
    def __init__(
        self,
        settings: Settings,
        engine: AsyncEngine,
        source: IEventSource,
        *,
        clock: IClock | None = None,
        owns_source: bool = False,
    ) -> None:
        self.settings = settings
        self._engine = engine
        self._source = source
        self._owns_source = owns_source
        self._clock = clock or WallClock()
        self._opened = False

        self.store = EventStore(create_session_factory(engine))
        self.bus = EventBus()
        self.cursor = CursorManager(self.store, source)
        self.processor = EventProcessor(self.bus)
        self.poller = PollClient(
            source,
            self.store,
            self.processor,
            self.cursor,
            settings.poll_api,
            record_outcomes=settings.processing.record_outcomes,
            clock=self._clock,
        )
        self.stats = StatsAggregator(self.store, self.cursor, self.poller, self._clock)

        self.health_checker = HealthChecker()
        self.health_checker.register_check("database", database_check(self.store))
        self.health_checker.register_check("poller", poller_check(self.poller.scheduler))

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        source: IEventSource | None = None,
        clock: IClock | None = None,
    ) -> IngestService:
        """Build a service from *settings*.

        When *source* is omitted an :class:`DomaApiClient` is created from
        ``settings.poll_api`` and its lifecycle is owned by the service.
        """
        db = settings.database
        engine = create_engine(
            db.url,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            echo=db.echo,
        )
        owns_source = source is None
        if source is None:
            api = settings.poll_api
            source = DomaApiClient(api.base_url, api.api_key, timeout=api.timeout_seconds)
        return cls(settings, engine, source, clock=clock, owns_source=owns_source)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Prepare storage, open the upstream client and load the cursor."""
        if self._opened:
            return
        if self.settings.database.create_tables:
            await create_all(self._engine)
        if self._owns_source and isinstance(self._source, DomaApiClient):
            await self._source.open()
        await self.cursor.load()
        self._opened = True

    async def close(self) -> None:
        await self.stop()
        if self._owns_source and isinstance(self._source, DomaApiClient):
            await self._source.close()
        await dispose(self._engine)
        self._opened = False

    async def __aenter__(self) -> IngestService:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def start(self) -> None:
        """Begin autonomous polling."""
        await self.open()
        await self.poller.start()

    async def stop(self) -> None:
        await self.poller.stop()

    @property
    def is_running(self) -> bool:
        return self.poller.is_running

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(self, topic: Topic, handler: EventHandler) -> None:
        """Register *handler* for *topic* on this service's bus."""
        self.bus.subscribe(topic, handler)

    def unsubscribe(self, topic: Topic, handler: EventHandler) -> None:
        self.bus.unsubscribe(topic, handler)

    # ------------------------------------------------------------------
    # Queries and operator actions
    # ------------------------------------------------------------------

    async def list_events(self, filters: EventFilters | None = None) -> list[StoredEvent]:
        return await self.store.find(filters)

    async def get_event(self, unique_id: str) -> StoredEvent | None:
        return await self.store.get_by_unique_id(unique_id)

    async def get_stats(self) -> IngestStats:
        return await self.stats.get_stats()

    def health(self) -> PollHealth:
        return self.stats.health()

    async def check_health(self) -> list[ComponentHealth]:
        return await self.health_checker.check_all()

    async def reset_cursor(self, event_id: int = 0) -> None:
        """Rewind upstream and local cursors so events after *event_id* replay."""
        await self.open()
        await self.cursor.reset(event_id)

    async def requeue_failed(self) -> int:
        """Return retryable failed rows to pending."""
        return await self.store.requeue_failed(self.settings.processing.max_retries)
