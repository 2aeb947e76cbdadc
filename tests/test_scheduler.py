"""
CategoryScheduler tests

Tick batching, failure isolation, skip-while-running and the
next-check cache.
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timezone

import pytest

from smartcat.core.config import Config
from smartcat.core.events import EventBus, EventTypes
from smartcat.core.exceptions import StoreError
from smartcat.rules.models import Category, CategoryStatus, CategoryType
from smartcat.scheduler.scheduler import CategoryScheduler, TickResult, calendar_today
from smartcat.store.storage import TransitionStore

FIXED_NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
    return TransitionStore(tmp_path / "smartcat.db")


@pytest.fixture
def config():
    return Config(overrides={"scheduler.timezone": "UTC", "scheduler.skip_until_next_check": True})


@pytest.fixture
def events():
    """EventBus that records every published event."""
    bus = EventBus()
    received = []

    async def record_changed(data):
        received.append((EventTypes.CATEGORIES_CHANGED, data))

    async def record_failed(data):
        received.append((EventTypes.TICK_FAILED, data))

    bus.subscribe(EventTypes.CATEGORIES_CHANGED, record_changed)
    bus.subscribe(EventTypes.TICK_FAILED, record_failed)
    bus.received = received
    return bus


def seasonal(category_id: str, rule: dict | None, **kwargs) -> Category:
    kwargs.setdefault("auto_activate", True)
    return Category(
        id=category_id,
        slug=category_id,
        name_ar=category_id,
        type=CategoryType.SEASONAL,
        rule_payload=rule,
        **kwargs,
    )


RAMADAN = {"lunarMonth": "رمضان", "activateDaysBefore": 3, "deactivateDaysAfter": 1}
MARCH = {"solarMonth": 3}
SUMMER = {"dateRange": {"start": "2025-06-01", "end": "2025-08-31"}}


class TestCalendarToday:
    """Clock -> calendar date in the configured zone."""

    def test_zone_shifts_date(self):
        from zoneinfo import ZoneInfo

        late = datetime(2025, 2, 28, 22, 30, tzinfo=timezone.utc)
        assert calendar_today(ZoneInfo("UTC"), late) == date(2025, 2, 28)
        assert calendar_today(ZoneInfo("Asia/Riyadh"), late) == date(2025, 3, 1)

    def test_naive_treated_as_utc(self):
        from zoneinfo import ZoneInfo

        assert calendar_today(ZoneInfo("UTC"), datetime(2025, 3, 1, 0, 0)) == date(2025, 3, 1)

    def test_scheduler_uses_config_zone(self, store):
        config = Config(overrides={"scheduler.timezone": "Asia/Riyadh"})
        scheduler = CategoryScheduler(store, config=config, clock=lambda: FIXED_NOW)
        assert scheduler.today(datetime(2025, 2, 28, 22, 30, tzinfo=timezone.utc)) == date(2025, 3, 1)


class TestRunTick:
    """One evaluation pass."""

    @pytest.mark.asyncio
    async def test_activates_and_publishes_once(self, store, config, events):
        async with store:
            await store.save_category(seasonal("ramadan", RAMADAN))
            await store.save_category(seasonal("march", MARCH))
            await store.save_category(seasonal("summer", SUMMER))

            scheduler = CategoryScheduler(store, events, config, clock=lambda: FIXED_NOW)
            result = await scheduler.run_tick()

            assert result.as_of == date(2025, 3, 1)
            assert sorted(result.activated) == ["march", "ramadan"]
            assert result.unchanged == ["summer"]
            assert result.failed == {}

            changed = [data for kind, data in events.received if kind == EventTypes.CATEGORIES_CHANGED]
            assert len(changed) == 1
            assert sorted(changed[0]["category_ids"]) == ["march", "ramadan"]

            ramadan = await store.get_category("ramadan")
            assert ramadan.status is CategoryStatus.ACTIVE
            assert len(await store.get_transitions()) == 2

    @pytest.mark.asyncio
    async def test_no_event_when_nothing_changes(self, store, config, events):
        async with store:
            await store.save_category(seasonal("summer", SUMMER))
            scheduler = CategoryScheduler(store, events, config, clock=lambda: FIXED_NOW)

            result = await scheduler.run_tick()

            assert result.changed == []
            assert events.received == []

    @pytest.mark.asyncio
    async def test_deactivates_after_window(self, store, config):
        async with store:
            await store.save_category(seasonal("march", MARCH, status=CategoryStatus.ACTIVE))
            scheduler = CategoryScheduler(store, config=config, clock=lambda: FIXED_NOW)

            result = await scheduler.run_tick(as_of=date(2025, 4, 1))

            assert result.deactivated == ["march"]
            assert (await store.get_category("march")).status is CategoryStatus.INACTIVE

    @pytest.mark.asyncio
    async def test_second_tick_same_day_is_noop(self, store, config):
        async with store:
            await store.save_category(seasonal("ramadan", RAMADAN))
            scheduler = CategoryScheduler(store, config=config, clock=lambda: FIXED_NOW)

            await scheduler.trigger()
            second = await scheduler.trigger()

            assert second.changed == []
            assert second.unchanged == ["ramadan"]
            assert len(await store.get_transitions()) == 1

    @pytest.mark.asyncio
    async def test_unmanaged_categories_ignored(self, store, config):
        async with store:
            await store.save_category(seasonal("manual", MARCH, auto_activate=False))
            await store.save_category(
                Category(id="food", slug="food", name_ar="طعام", type=CategoryType.CORE,
                         auto_activate=True, rule_payload=MARCH)
            )
            scheduler = CategoryScheduler(store, config=config, clock=lambda: FIXED_NOW)

            result = await scheduler.run_tick()

            assert result.evaluated == []
            assert (await store.get_category("manual")).status is CategoryStatus.INACTIVE


class TestFailureIsolation:
    """One bad category does not stop the batch."""

    @pytest.mark.asyncio
    async def test_malformed_persisted_rule_skipped(self, store, config):
        async with store:
            await store.save_category(seasonal("broken", MARCH))
            await store.save_category(seasonal("march", MARCH))
            # Bypass write-time validation, as a legacy row would
            conn = store._conn()
            await conn.execute(
                "UPDATE categories SET rule_json = ? WHERE id = ?",
                ('{"lunarMonth": 9, "solarMonth": 3}', "broken"),
            )
            await conn.commit()

            scheduler = CategoryScheduler(store, config=config, clock=lambda: FIXED_NOW)
            result = await scheduler.run_tick()

            assert "broken" in result.failed
            assert result.activated == ["march"]
            assert (await store.get_category("broken")).status is CategoryStatus.INACTIVE

    @pytest.mark.asyncio
    async def test_undecodable_rule_text_skipped(self, store, config):
        """Stored rule text that is not JSON fails only its own category."""
        async with store:
            await store.save_category(seasonal("broken", MARCH))
            await store.save_category(seasonal("march", MARCH))
            conn = store._conn()
            await conn.execute(
                "UPDATE categories SET rule_json = ? WHERE id = ?", ("{not json", "broken")
            )
            await conn.commit()

            scheduler = CategoryScheduler(store, config=config, clock=lambda: FIXED_NOW)
            result = await scheduler.run_tick()

            assert "broken" in result.failed
            assert "not valid JSON" in result.failed["broken"]
            assert result.activated == ["march"]
            assert (await store.get_category("march")).status is CategoryStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_calendar_error_keeps_status(self, store, config):
        """Lunar conversion past the supported range leaves status as is."""
        async with store:
            await store.save_category(seasonal("ramadan", RAMADAN, status=CategoryStatus.ACTIVE))
            await store.save_category(seasonal("march", MARCH))
            scheduler = CategoryScheduler(store, config=config, clock=lambda: FIXED_NOW)

            result = await scheduler.run_tick(as_of=date(2700, 3, 10))

            assert "ramadan" in result.failed
            assert result.activated == ["march"]
            assert (await store.get_category("ramadan")).status is CategoryStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_store_error_aborts_tick(self, store, config, events, monkeypatch):
        async with store:
            await store.save_category(seasonal("march", MARCH))
            await store.save_category(seasonal("ramadan", RAMADAN))

            async def broken_apply(*args, **kwargs):
                raise StoreError("disk I/O error")

            monkeypatch.setattr(store, "apply_transition", broken_apply)
            scheduler = CategoryScheduler(store, events, config, clock=lambda: FIXED_NOW)

            with pytest.raises(StoreError):
                await scheduler.run_tick()

            kinds = [kind for kind, _ in events.received]
            assert kinds == [EventTypes.TICK_FAILED]
            status = scheduler.get_status()
            assert status["last_tick"]["error"] == "disk I/O error"
            assert not status["tick_in_progress"]


class TestConcurrency:
    """Only one tick at a time."""

    @pytest.mark.asyncio
    async def test_overlapping_tick_skipped(self, store, config, monkeypatch):
        async with store:
            await store.save_category(seasonal("march", MARCH))

            release = asyncio.Event()
            entered = asyncio.Event()
            original_list = store.list_managed

            async def slow_list():
                entered.set()
                await release.wait()
                return await original_list()

            monkeypatch.setattr(store, "list_managed", slow_list)
            scheduler = CategoryScheduler(store, config=config, clock=lambda: FIXED_NOW)

            first = asyncio.create_task(scheduler.run_tick())
            await entered.wait()

            second = await scheduler.trigger()
            assert second.skipped
            assert second.evaluated == []

            release.set()
            first_result = await first
            assert not first_result.skipped
            assert first_result.activated == ["march"]
            assert len(await store.get_transitions()) == 1


class TestNextCheckCache:
    """Categories between window boundaries can be deferred."""

    @pytest.mark.asyncio
    async def test_cache_from_other_date_not_reused(self, store, config):
        """A look-ahead evaluation must not defer a tick for an earlier date."""
        async with store:
            await store.save_category(seasonal("march", MARCH))
            january = datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)
            scheduler = CategoryScheduler(store, config=config, clock=lambda: january)

            ahead = await scheduler.trigger(as_of=date(2025, 3, 10))
            assert ahead.activated == ["march"]

            today = await scheduler.run_tick()
            assert today.as_of == date(2025, 1, 15)
            assert today.deferred == []
            assert today.deactivated == ["march"]
            assert (await store.get_category("march")).status is CategoryStatus.INACTIVE

    @pytest.mark.asyncio
    async def test_deferred_until_next_check(self, store, config):
        async with store:
            await store.save_category(seasonal("march", MARCH))
            scheduler = CategoryScheduler(store, config=config, clock=lambda: FIXED_NOW)

            await scheduler.run_tick(as_of=date(2025, 3, 10))
            middle = await scheduler.run_tick(as_of=date(2025, 3, 20))
            assert middle.deferred == ["march"]
            assert middle.evaluated == []

            boundary = await scheduler.run_tick(as_of=date(2025, 4, 1))
            assert boundary.deactivated == ["march"]

    @pytest.mark.asyncio
    async def test_trigger_ignores_cache(self, store, config):
        async with store:
            await store.save_category(seasonal("march", MARCH))
            scheduler = CategoryScheduler(store, config=config, clock=lambda: FIXED_NOW)

            await scheduler.run_tick(as_of=date(2025, 3, 10))
            forced = await scheduler.trigger(as_of=date(2025, 3, 20))

            assert forced.forced
            assert forced.deferred == []
            assert forced.evaluated == ["march"]

    @pytest.mark.asyncio
    async def test_rule_edit_invalidates_cache(self, store, config):
        async with store:
            await store.save_category(seasonal("march", MARCH))
            scheduler = CategoryScheduler(store, config=config, clock=lambda: FIXED_NOW)
            await scheduler.run_tick(as_of=date(2025, 3, 10))

            await store.save_category(seasonal("march", {"solarMonth": 5}))
            result = await scheduler.run_tick(as_of=date(2025, 3, 20))

            assert result.deactivated == ["march"]

    @pytest.mark.asyncio
    async def test_manual_status_change_invalidates_cache(self, store, config):
        async with store:
            await store.save_category(seasonal("march", MARCH))
            scheduler = CategoryScheduler(store, config=config, clock=lambda: FIXED_NOW)
            await scheduler.run_tick(as_of=date(2025, 3, 10))

            conn = store._conn()
            await conn.execute("UPDATE categories SET status = 'inactive' WHERE id = 'march'")
            await conn.commit()

            result = await scheduler.run_tick(as_of=date(2025, 3, 20))
            assert result.activated == ["march"]

    @pytest.mark.asyncio
    async def test_cache_disabled_by_config(self, store):
        async with store:
            await store.save_category(seasonal("march", MARCH))
            config = Config(overrides={"scheduler.skip_until_next_check": False})
            scheduler = CategoryScheduler(store, config=config, clock=lambda: FIXED_NOW)

            await scheduler.run_tick(as_of=date(2025, 3, 10))
            result = await scheduler.run_tick(as_of=date(2025, 3, 20))
            assert result.evaluated == ["march"]


class TestIntervalLoop:
    """start() / stop()."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, store):
        async with store:
            await store.save_category(seasonal("march", MARCH))
            config = Config(overrides={"scheduler.interval_seconds": 60})
            bus = EventBus()
            completed = asyncio.Event()
            bus.subscribe(EventTypes.TICK_COMPLETED, lambda data: completed.set())

            scheduler = CategoryScheduler(store, bus, config, clock=lambda: FIXED_NOW)
            scheduler.start_background()
            await asyncio.wait_for(completed.wait(), timeout=5)

            assert scheduler.get_status()["running"]
            await asyncio.wait_for(scheduler.stop(), timeout=5)

            status = scheduler.get_status()
            assert not status["running"]
            assert status["tick_count"] == 1
            assert status["last_tick"]["activated"] == ["march"]


class TestTickResult:
    def test_to_dict(self):
        result = TickResult(as_of=date(2025, 3, 1), evaluated_at=FIXED_NOW)
        result.activated.append("ramadan")
        data = result.to_dict()
        assert data["as_of"] == "2025-03-01"
        assert data["activated"] == ["ramadan"]
        assert data["finished_at"] is None
        assert result.changed == ["ramadan"]
