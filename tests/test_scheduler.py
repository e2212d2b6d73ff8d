"""
Unit tests for timezone-aware scheduling.

Tests cover:
- Local time conversion and slot tolerance
- Daily/weekly due checks, weekdays-only
- Idempotent triggering across overlapping ticks
- Global vs per-target scope
"""

import asyncio
from datetime import datetime, timezone

from models.scan import Period
from models.schedule import Schedule
from scheduler import Scheduler, daily_due, local_now, monday_of_week, weekly_due

# 2025-01-06 is a Monday
MONDAY_0905 = datetime(2025, 1, 6, 9, 5, tzinfo=timezone.utc)
MONDAY_0915 = datetime(2025, 1, 6, 9, 15, tzinfo=timezone.utc)


def _scheduler(db, config):
    triggered = []

    async def trigger(request):
        triggered.append(request)

    return Scheduler(db, config, trigger=trigger), triggered


class TestLocalTime:

    def test_weekday_is_sunday_based(self):
        now = local_now("UTC", datetime(2025, 1, 5, 12, 0, tzinfo=timezone.utc))
        assert now.weekday == 0
        assert now.date_key == "2025-01-05"

    def test_timezone_conversion(self):
        now = local_now("America/New_York", datetime(2025, 1, 6, 14, 0, tzinfo=timezone.utc))
        assert (now.hour, now.minute) == (9, 0)

    def test_unknown_timezone_uses_utc(self):
        now = local_now("Mars/Olympus", MONDAY_0905)
        assert (now.hour, now.minute) == (9, 5)

    def test_monday_of_week(self):
        assert monday_of_week("2025-01-08") == "2025-01-06"
        assert monday_of_week("2025-01-12") == "2025-01-06"
        assert monday_of_week("2025-01-06") == "2025-01-06"


class TestDueChecks:

    def test_daily_within_tolerance(self):
        schedule = Schedule(daily_enabled=True, daily_hour=9, daily_minute=0)
        assert daily_due(schedule, local_now("UTC", MONDAY_0905), tolerance=20)
        assert not daily_due(schedule, local_now("UTC", datetime(2025, 1, 6, 9, 30, tzinfo=timezone.utc)), 20)

    def test_daily_already_ran_today(self):
        schedule = Schedule(daily_enabled=True, last_daily_run_date="2025-01-06")
        assert not daily_due(schedule, local_now("UTC", MONDAY_0905), tolerance=20)

    def test_weekdays_only_skips_saturday(self):
        schedule = Schedule(daily_enabled=True, weekdays_only=True)
        saturday = datetime(2025, 1, 4, 9, 0, tzinfo=timezone.utc)
        assert not daily_due(schedule, local_now("UTC", saturday), tolerance=20)

    def test_weekly_needs_matching_day_and_week_marker(self):
        schedule = Schedule(weekly_enabled=True, weekly_day_of_week=1)
        assert weekly_due(schedule, local_now("UTC", MONDAY_0905), tolerance=20)

        tuesday = datetime(2025, 1, 7, 9, 5, tzinfo=timezone.utc)
        assert not weekly_due(schedule, local_now("UTC", tuesday), tolerance=20)

        ran = Schedule(weekly_enabled=True, weekly_day_of_week=1, last_weekly_run_date="2025-01-06")
        assert not weekly_due(ran, local_now("UTC", MONDAY_0905), tolerance=20)


class TestScheduler:

    def test_daily_triggers_once_across_ticks(self, db, config, stored_targets):
        db.upsert_schedule(Schedule(daily_enabled=True, daily_hour=9, daily_minute=0))
        scheduler, triggered = _scheduler(db, config)

        asyncio.run(scheduler.check_and_trigger(MONDAY_0905))
        asyncio.run(scheduler.check_and_trigger(MONDAY_0915))

        assert len(triggered) == 1
        assert triggered[0].period == Period.DAILY
        assert triggered[0].target_ids == ["t-sema", "t-tirz"]
        assert db.list_schedules()[0].last_daily_run_date == "2025-01-06"

    def test_daily_and_weekly_in_same_tick(self, db, config, stored_targets):
        db.upsert_schedule(Schedule(daily_enabled=True, weekly_enabled=True, weekly_day_of_week=1))
        scheduler, triggered = _scheduler(db, config)

        asyncio.run(scheduler.check_and_trigger(MONDAY_0905))

        assert sorted(r.period.value for r in triggered) == ["daily", "weekly"]
        assert db.list_schedules()[0].last_weekly_run_date == "2025-01-06"

    def test_per_target_schedule_scopes_one_target(self, db, config, stored_targets):
        db.upsert_schedule(Schedule(watch_target_id="t-tirz", daily_enabled=True))
        scheduler, triggered = _scheduler(db, config)

        asyncio.run(scheduler.check_and_trigger(MONDAY_0905))

        assert [r.target_ids for r in triggered] == [["t-tirz"]]

    def test_no_active_targets_does_not_claim(self, db, config):
        db.upsert_schedule(Schedule(daily_enabled=True))
        scheduler, triggered = _scheduler(db, config)

        asyncio.run(scheduler.check_and_trigger(MONDAY_0905))

        assert triggered == []
        assert db.list_schedules()[0].last_daily_run_date is None

    def test_trigger_failure_is_logged_not_raised(self, db, config, stored_targets):
        db.upsert_schedule(Schedule(daily_enabled=True))

        async def failing(request):
            raise RuntimeError("orchestrator down")

        scheduler = Scheduler(db, config, trigger=failing)
        requests = asyncio.run(scheduler.check_and_trigger(MONDAY_0905))

        assert len(requests) == 1
