"""
CategoryScheduler - seasonal category activation loop

Each tick:
1. Load auto-managed seasonal categories from the store
2. Parse each rule and evaluate it for today's date (canonical time zone)
3. Apply the result through the store (idempotent, per category)
4. Publish one "categories changed" event with every flipped id

Only one tick runs at a time; a tick requested while another is running
is skipped, not queued. A failure on one category is logged and the rest
of the batch continues. A store (driver-level) failure aborts the tick;
the next tick starts again from scratch.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone, tzinfo
from typing import Any

from smartcat.core.config import Config
from smartcat.core.events import EventBus, EventTypes
from smartcat.core.exceptions import (
    CalendarConversionError,
    CategoryNotFoundError,
    StoreConflictError,
    ValidationError,
)
from smartcat.rules.evaluator import Evaluation, evaluate
from smartcat.store.storage import ManagedCategory, TransitionStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def calendar_today(tz: tzinfo, now: datetime | None = None) -> date:
    """Calendar date of `now` (default: current time) in the given time zone."""
    now = now or utc_now()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(tz).date()


@dataclass
class TickResult:
    """Summary of one evaluation pass."""
    as_of: date
    evaluated_at: datetime
    forced: bool = False
    skipped: bool = False
    evaluated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    deferred: list[str] = field(default_factory=list)
    activated: list[str] = field(default_factory=list)
    deactivated: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    error: str | None = None
    finished_at: datetime | None = None

    @property
    def changed(self) -> list[str]:
        return self.activated + self.deactivated

    def to_dict(self) -> dict[str, Any]:
        return {
            "as_of": self.as_of.isoformat(),
            "evaluated_at": self.evaluated_at.isoformat(),
            "forced": self.forced,
            "skipped": self.skipped,
            "evaluated": self.evaluated,
            "unchanged": self.unchanged,
            "deferred": self.deferred,
            "activated": self.activated,
            "deactivated": self.deactivated,
            "conflicts": self.conflicts,
            "failed": self.failed,
            "error": self.error,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass(frozen=True)
class _CachedEvaluation:
    as_of: date
    rule_snapshot: dict[str, Any]
    desired_active: bool
    next_check_at: date


class CategoryScheduler:
    """
    Runs rule evaluation over all auto-managed categories.

    Example:
        async with TransitionStore(config.db_path) as store:
            scheduler = CategoryScheduler(store, bus, config)
            result = await scheduler.trigger()      # re-evaluate now
            await scheduler.start()                 # fixed-interval loop
    """

    def __init__(
        self,
        store: TransitionStore,
        bus: EventBus | None = None,
        config: Config | None = None,
        clock: Clock | None = None,
    ):
        """
        Args:
            store: Connected transition store
            bus: Event bus for change / tick events (a private one if None)
            config: Scheduler settings (defaults if None)
            clock: Returns the current aware datetime; injectable for tests
        """
        self.store = store
        self.bus = bus or EventBus()
        self.config = config or Config()
        self.clock = clock or utc_now

        self._tick_lock = asyncio.Lock()
        self._cache: dict[str, _CachedEvaluation] = {}
        self._running = False
        self._loop_task: asyncio.Task | None = None
        self._wakeup = asyncio.Event()
        self._tick_count = 0
        self._last_result: TickResult | None = None

    def today(self, now: datetime | None = None) -> date:
        """Calendar date of `now` in the canonical time zone."""
        return calendar_today(self.config.timezone, now or self.clock())

    async def run_tick(self, force: bool = False, as_of: date | None = None) -> TickResult:
        """
        Run one evaluation pass.

        Args:
            force: Ignore the next-check cache and evaluate everything
            as_of: Evaluate for this date instead of today

        Returns:
            TickResult (skipped=True when another tick was already running)

        Raises:
            StoreError: persistence failed; nothing further was attempted
        """
        now = self.clock()
        result = TickResult(as_of=as_of or self.today(now), evaluated_at=now, forced=force)

        if self._tick_lock.locked():
            result.skipped = True
            logger.info("Tick skipped: previous tick still running")
            await self.bus.publish_async(EventTypes.TICK_SKIPPED, result.to_dict())
            return result

        async with self._tick_lock:
            await self.bus.publish_async(EventTypes.TICK_STARTED, result.to_dict())
            try:
                await self._evaluate_all(result, force)
            except Exception as e:
                result.error = str(e)
                logger.error("Tick aborted: %s", e, exc_info=True)
                await self.bus.publish_async(EventTypes.TICK_FAILED, result.to_dict())
                raise
            finally:
                result.finished_at = self.clock()
                self._tick_count += 1
                self._last_result = result

        if result.changed:
            await self.bus.publish_async(
                EventTypes.CATEGORIES_CHANGED,
                {
                    "category_ids": result.changed,
                    "activated": result.activated,
                    "deactivated": result.deactivated,
                    "as_of": result.as_of.isoformat(),
                    "evaluated_at": result.evaluated_at.isoformat(),
                },
            )

        logger.info(
            "Tick complete (%s): %d evaluated, %d activated, %d deactivated, %d failed",
            result.as_of,
            len(result.evaluated),
            len(result.activated),
            len(result.deactivated),
            len(result.failed),
        )
        await self.bus.publish_async(EventTypes.TICK_COMPLETED, result.to_dict())
        return result

    async def trigger(self, as_of: date | None = None) -> TickResult:
        """On-demand "re-evaluate now"."""
        return await self.run_tick(force=True, as_of=as_of)

    async def _evaluate_all(self, result: TickResult, force: bool) -> None:
        managed = await self.store.list_managed()
        skip_allowed = not force and self.config.skip_until_next_check

        for item in managed:
            category_id = item.category.id
            try:
                await self._evaluate_one(item, result, skip_allowed)
            except StoreConflictError:
                result.conflicts.append(category_id)
                logger.info("Category %s: concurrent writer won, leaving as is", category_id)
            except (ValidationError, CalendarConversionError, CategoryNotFoundError) as e:
                result.failed[category_id] = str(e)
                self._cache.pop(category_id, None)
                logger.warning(
                    "Category %s skipped this tick, status stays %s: %s",
                    category_id,
                    item.current_status.value,
                    e,
                )

    async def _evaluate_one(
        self, item: ManagedCategory, result: TickResult, skip_allowed: bool
    ) -> None:
        category_id = item.category.id
        rule = item.rule
        snapshot = rule.to_dict()

        cached = self._cache.get(category_id)
        if (
            skip_allowed
            and cached is not None
            and cached.rule_snapshot == snapshot
            and cached.desired_active == item.current_status.is_active
            and cached.as_of <= result.as_of < cached.next_check_at
        ):
            result.deferred.append(category_id)
            return

        evaluation: Evaluation = evaluate(rule, result.as_of)
        result.evaluated.append(category_id)

        outcome = await self.store.apply_transition(
            category_id, evaluation.desired_active, result.evaluated_at, snapshot
        )
        self._cache[category_id] = _CachedEvaluation(
            result.as_of, snapshot, evaluation.desired_active, evaluation.next_check_at
        )

        if not outcome.changed:
            result.unchanged.append(category_id)
        elif outcome.to_status.is_active:
            result.activated.append(category_id)
        else:
            result.deactivated.append(category_id)

    # ------------------------------------------------------------------
    # Interval loop
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Run ticks at the configured interval until stop() is called."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._running = True
        interval = self.config.tick_interval_seconds
        timeout = self.config.tick_timeout_seconds
        logger.info("Scheduler started (interval %.0fs, timeout %.0fs)", interval, timeout)

        while self._running:
            try:
                await asyncio.wait_for(self.run_tick(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.error("Tick timed out after %.0fs; retrying next interval", timeout)
            except Exception as e:
                logger.error("Tick failed, retrying next interval: %s", e)

            if not self._running:
                break
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Scheduler stopped")

    def start_background(self) -> asyncio.Task:
        """start() as a task on the running loop."""
        self._loop_task = asyncio.create_task(self.start())
        return self._loop_task

    async def stop(self) -> None:
        self._running = False
        self._wakeup.set()
        if self._loop_task:
            await self._loop_task
            self._loop_task = None

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "tick_in_progress": self._tick_lock.locked(),
            "tick_count": self._tick_count,
            "cached_categories": len(self._cache),
            "last_tick": self._last_result.to_dict() if self._last_result else None,
        }
