"""
smartcat CLI - Click-based command line interface.

Usage:
    smartcat tick                       # Evaluate all seasonal categories now
    smartcat run --interval 600         # Keep evaluating on a fixed interval
    smartcat evaluate '{"solarMonth": 3}' --as-of 2025-02-24
    smartcat history ramadan            # Transition audit log
    smartcat categories --active        # Current statuses
    smartcat lunar 2025-03-01           # Gregorian -> tabular Hijri
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from collections.abc import Callable
from datetime import date
from functools import wraps
from pathlib import Path
from typing import Any, TypeVar

import click

from smartcat.calendar.converter import to_lunar
from smartcat.core.config import Config
from smartcat.core.events import EventBus, EventTypes
from smartcat.core.exceptions import SmartCatError
from smartcat.rules.evaluator import evaluate as evaluate_rule
from smartcat.rules.models import CategoryType
from smartcat.rules.parser import parse_rule
from smartcat.scheduler.scheduler import CategoryScheduler, calendar_today
from smartcat.store.storage import TransitionStore

T = TypeVar("T")


def async_command(f: Callable[..., T]) -> Callable[..., T]:
    """Decorator to convert async function to Click command."""

    @wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))

    return wrapper


def handle_errors(f: Callable[..., T]) -> Callable[..., T]:
    """Turn smartcat errors into a clean CLI failure."""

    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except SmartCatError as e:
            raise click.ClickException(str(e)) from e

    return wrapper


def _parse_date(ctx: click.Context, param: click.Parameter, value: str | None) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise click.BadParameter(f"expected YYYY-MM-DD, got {value!r}") from e


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, ensure_ascii=False, indent=2))


@click.group()
@click.option("-c", "--config", "config_path", type=click.Path(path_type=Path), help="YAML config file")
@click.option("--db", "db_path", type=click.Path(path_type=Path), help="SQLite database path")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging (default: warnings only)")
@click.pass_context
@handle_errors
def cli(ctx: click.Context, config_path: Path | None, db_path: Path | None, verbose: bool) -> None:
    """smartcat - seasonal category activation engine

    Categories of type "seasonal" with auto-activation on follow their
    lunar month, solar month or date range rule without manual toggling.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = Config(config_path)
    if db_path:
        config.set("store.db_path", db_path)
    ctx.obj = config


def _print_tick(result, as_json: bool) -> None:
    if as_json:
        _echo_json(result.to_dict())
        return

    click.echo(f"Evaluated for {result.as_of} ({len(result.evaluated)} categories)")
    for category_id in result.activated:
        click.echo(f"  + activated   {category_id}")
    for category_id in result.deactivated:
        click.echo(f"  - deactivated {category_id}")
    for category_id, error in result.failed.items():
        click.echo(f"  ! skipped     {category_id}: {error}")
    if not result.changed:
        click.echo("  no status changes")


@cli.command()
@click.option("--as-of", callback=_parse_date, help="Evaluate for this date (YYYY-MM-DD)")
@click.option("--json", "as_json", is_flag=True, help="JSON output")
@click.pass_obj
@handle_errors
@async_command
async def tick(config: Config, as_of: date | None, as_json: bool) -> None:
    """Evaluate every auto-managed category once, now."""
    async with TransitionStore(config.db_path) as store:
        scheduler = CategoryScheduler(store, EventBus(), config)
        result = await scheduler.trigger(as_of=as_of)
    _print_tick(result, as_json)


@cli.command()
@click.option("--interval", type=float, help="Seconds between ticks")
@click.pass_obj
@handle_errors
@async_command
async def run(config: Config, interval: float | None) -> None:
    """Evaluate on a fixed interval until interrupted."""
    if interval:
        config.set("scheduler.interval_seconds", interval)

    async with TransitionStore(config.db_path) as store:
        bus = EventBus()
        bus.subscribe(
            EventTypes.CATEGORIES_CHANGED,
            lambda data: click.echo(f"Changed: {', '.join(data['category_ids'])}"),
        )
        scheduler = CategoryScheduler(store, bus, config)

        loop = asyncio.get_running_loop()
        if sys.platform != "win32":
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, lambda: asyncio.create_task(scheduler.stop()))

        click.echo(f"Scheduler running every {config.tick_interval_seconds:.0f}s (Ctrl+C to stop)")
        try:
            await scheduler.start()
        except KeyboardInterrupt:
            await scheduler.stop()


@cli.command()
@click.argument("rule_json")
@click.option("--as-of", callback=_parse_date, help="Reference date (default: today)")
@click.pass_obj
@handle_errors
def evaluate(config: Config, rule_json: str, as_of: date | None) -> None:
    """Evaluate a rule payload without touching the database.

    Example:
        smartcat evaluate '{"lunarMonth": "month 9", "activateDaysBefore": 3}'
    """
    try:
        payload = json.loads(rule_json)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"invalid JSON: {e}", param_hint="RULE_JSON") from e

    rule = parse_rule(payload)
    if as_of is None:
        as_of = calendar_today(config.timezone)

    _echo_json({"rule": rule.to_dict(), "as_of": as_of.isoformat(), **evaluate_rule(rule, as_of).to_dict()})


@cli.command()
@click.argument("category_id", required=False)
@click.option("--limit", type=int, default=20, show_default=True)
@click.option("--json", "as_json", is_flag=True, help="JSON output")
@click.pass_obj
@handle_errors
@async_command
async def history(config: Config, category_id: str | None, limit: int, as_json: bool) -> None:
    """Show the transition audit log."""
    async with TransitionStore(config.db_path) as store:
        records = await store.get_transitions(category_id, limit=limit)

    if as_json:
        _echo_json([record.to_dict() for record in records])
        return
    if not records:
        click.echo("No transitions recorded.")
        return
    for record in records:
        click.echo(
            f"{record.evaluated_at.isoformat()}  {record.category_id}: "
            f"{record.from_status.value} -> {record.to_status.value}"
        )


@cli.command()
@click.option(
    "--type",
    "category_type",
    type=click.Choice([t.value for t in CategoryType]),
    help="Only this category type",
)
@click.option("--active", is_flag=True, help="Only active categories")
@click.option("--json", "as_json", is_flag=True, help="JSON output")
@click.pass_obj
@handle_errors
@async_command
async def categories(config: Config, category_type: str | None, active: bool, as_json: bool) -> None:
    """List categories and their status."""
    async with TransitionStore(config.db_path) as store:
        rows = await store.list_categories(
            type=category_type, status="active" if active else None
        )

    if as_json:
        _echo_json([category.to_dict() for category in rows])
        return
    for category in rows:
        auto = "auto" if category.auto_activate else "manual"
        click.echo(
            f"{category.status.value:<8}  {category.type.value:<8}  {auto:<6}  "
            f"{category.slug}  {category.name_ar}"
        )


@cli.command()
@click.argument("day", required=False, callback=_parse_date)
@click.pass_obj
@handle_errors
def lunar(config: Config, day: date | None) -> None:
    """Convert a Gregorian date (default: today) to the tabular Hijri date."""
    if day is None:
        day = calendar_today(config.timezone)
    converted = to_lunar(day)
    click.echo(f"{day.isoformat()} = {converted} ({converted.month_name})")


if __name__ == "__main__":
    cli()
