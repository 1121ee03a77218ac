"""CLI entry point for the Doma poll consumer."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click
from sqlalchemy.exc import SQLAlchemyError

from .core.config import load_settings
from .core.enums import EventType, ProcessingStatus
from .core.errors import IngestError
from .core.models import EventFilters
from .observability.logger import setup_logging
from .service import IngestService

T = TypeVar("T")


def _with_service(
    config: str | None,
    fn: Callable[[IngestService], Awaitable[T]],
) -> T:
    """Run *fn* against an opened service, turning pipeline errors into exit codes."""
    settings = load_settings(config_path=config)
    setup_logging(level=settings.observability.log_level, format="console")

    async def _go() -> T:
        async with IngestService.from_settings(settings) as service:
            return await fn(service)

    try:
        return asyncio.run(_go())
    except IngestError as exc:
        raise click.ClickException(str(exc)) from exc


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
def main() -> None:
    """Doma poll-event ingestion."""


@main.command()
@click.option("--config", default=None, help="Config file path")
@click.option("--interval", type=float, default=None, help="Poll interval override (seconds)")
@click.option("--batch-size", type=int, default=None, help="Events per poll override")
def run(config: str | None, interval: float | None, batch_size: int | None) -> None:
    """Poll continuously until interrupted."""
    from .main import run as run_main

    poll_api: dict[str, Any] = {}
    if interval is not None:
        poll_api["interval_seconds"] = interval
    if batch_size is not None:
        poll_api["batch_size"] = batch_size
    overrides = {"poll_api": poll_api} if poll_api else None

    try:
        asyncio.run(run_main(config_path=config, overrides=overrides))
    except IngestError as exc:
        raise click.ClickException(str(exc)) from exc


@main.command()
@click.option("--config", default=None, help="Config file path")
@click.option("--event-id", type=click.IntRange(min=0), default=0, show_default=True,
              help="Replay everything after this upstream event id")
@click.confirmation_option(prompt="Rewind the upstream and local poll cursors?")
def reset(config: str | None, event_id: int) -> None:
    """Rewind the poll cursor for replay."""
    _with_service(config, lambda s: s.reset_cursor(event_id))
    click.echo(f"Poll cursor reset to {event_id}")


@main.command()
@click.option("--config", default=None, help="Config file path")
def stats(config: str | None) -> None:
    """Show stored event counts and the cursor position."""
    result = _with_service(config, lambda s: s.get_stats())
    _echo_json(result.model_dump(mode="json"))


@main.command()
@click.option("--config", default=None, help="Config file path")
@click.option("--type", "event_type", type=click.Choice([t.value for t in EventType]), default=None)
@click.option("--name", default=None, help="Domain name")
@click.option("--token-id", default=None)
@click.option("--status", type=click.Choice([s.value for s in ProcessingStatus]), default=None)
@click.option("--from-id", type=int, default=None, help="Minimum upstream event id (inclusive)")
@click.option("--to-id", type=int, default=None, help="Maximum upstream event id (inclusive)")
@click.option("--limit", type=click.IntRange(min=1), default=100, show_default=True)
@click.option("--offset", type=click.IntRange(min=0), default=0, show_default=True)
def events(
    config: str | None,
    event_type: str | None,
    name: str | None,
    token_id: str | None,
    status: str | None,
    from_id: int | None,
    to_id: int | None,
    limit: int,
    offset: int,
) -> None:
    """List stored events, newest first."""
    filters = EventFilters(
        event_type=event_type,
        name=name,
        token_id=token_id,
        processing_status=status,
        from_event_id=from_id,
        to_event_id=to_id,
        limit=limit,
        offset=offset,
    )
    rows = _with_service(config, lambda s: s.list_events(filters))
    _echo_json([r.model_dump(mode="json") for r in rows])


@main.command()
@click.argument("unique_id")
@click.option("--config", default=None, help="Config file path")
def event(unique_id: str, config: str | None) -> None:
    """Show one stored event by its unique id."""
    row = _with_service(config, lambda s: s.get_event(unique_id))
    if row is None:
        raise click.ClickException(f"No event with unique id {unique_id}")
    _echo_json(row.model_dump(mode="json"))


@main.command()
@click.option("--config", default=None, help="Config file path")
def requeue(config: str | None) -> None:
    """Return retryable failed events to pending."""
    count = _with_service(config, lambda s: s.requeue_failed())
    click.echo(f"Requeued {count} failed events")


@main.command("init-db")
@click.option("--config", default=None, help="Config file path")
def init_db(config: str | None) -> None:
    """Create the poll tables if they do not exist."""
    from .storage.connection import create_all, create_engine, dispose

    settings = load_settings(config_path=config)

    async def _go() -> None:
        engine = create_engine(settings.database.url, use_null_pool=True)
        try:
            await create_all(engine)
        finally:
            await dispose(engine)

    try:
        asyncio.run(_go())
    except SQLAlchemyError as exc:
        raise click.ClickException(f"Creating tables failed: {exc}") from exc
    click.echo("Database tables created")


if __name__ == "__main__":
    main()
