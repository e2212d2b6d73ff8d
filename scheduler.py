"""Timezone-aware scan scheduling.

Invoked on a fixed tick (every 15 minutes by default). For every schedule
row, "now" is computed in the row's timezone and compared with the daily
and weekly slots:

    daily:  enabled, |now_slot - daily_slot| < tolerance, not a weekend when
            weekdays_only, and last_daily_run_date != today
    weekly: enabled, today is weekly_day_of_week (0=Sunday), within
            tolerance, and last_weekly_run_date != Monday of this week

Idempotence:
    The last-run marker is claimed with a compare-and-swap update before the
    scan is triggered. Only the caller whose update changed the row triggers,
    so two overlapping ticks cannot both fire the same slot. Overlapping
    global and per-target schedules can still scan the same target twice.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Awaitable, Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import Config
from database import Database
from models.scan import Period, ScanMode, ScanRequest
from models.schedule import Schedule

logger = logging.getLogger(__name__)

Trigger = Callable[[ScanRequest], Awaitable[Any]]


@dataclass(frozen=True)
class LocalTime:
    """Wall-clock time in a schedule's timezone."""

    date_key: str  # YYYY-MM-DD
    weekday: int   # 0=Sunday
    hour: int
    minute: int

    @property
    def slot(self) -> int:
        return self.hour * 60 + self.minute


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone, using UTC | timezone=%s", name)
        return ZoneInfo("UTC")


def local_now(tz_name: str, now: datetime | None = None) -> LocalTime:
    """Current date, weekday, hour, and minute in an IANA timezone."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(_zone(tz_name))
    return LocalTime(
        date_key=local.date().isoformat(),
        weekday=local.isoweekday() % 7,
        hour=local.hour,
        minute=local.minute,
    )


def monday_of_week(date_key: str) -> str:
    """Date key of the Monday starting the week that contains date_key."""
    day = date.fromisoformat(date_key)
    return (day - timedelta(days=day.weekday())).isoformat()


def slot_matches(now_slot: int, hour: int, minute: int, tolerance: int) -> bool:
    return abs(now_slot - (hour * 60 + minute)) < tolerance


def daily_due(schedule: Schedule, now: LocalTime, tolerance: int) -> bool:
    if not schedule.daily_enabled:
        return False
    if not slot_matches(now.slot, schedule.daily_hour, schedule.daily_minute, tolerance):
        return False
    if schedule.weekdays_only and now.weekday in (0, 6):
        return False
    return schedule.last_daily_run_date != now.date_key


def weekly_due(schedule: Schedule, now: LocalTime, tolerance: int) -> bool:
    if not schedule.weekly_enabled or schedule.weekly_day_of_week != now.weekday:
        return False
    if not slot_matches(now.slot, schedule.weekly_hour, schedule.weekly_minute, tolerance):
        return False
    return schedule.last_weekly_run_date != monday_of_week(now.date_key)


class Scheduler:
    """Decides which schedules are due and triggers their scans.

    Example:
        >>> scheduler = Scheduler(db, config, trigger=orchestrator.run)
        >>> triggered = await scheduler.check_and_trigger()
    """

    def __init__(self, db: Database, config: Config, trigger: Trigger):
        self.db = db
        self.config = config
        self.trigger = trigger

    def _scope(self, schedule: Schedule) -> list[str]:
        """Target ids a schedule scans: one target, or the user's active ones."""
        if schedule.is_global:
            return [t.id for t in self.db.list_targets(user_id=schedule.user_id, active_only=True)]
        target = self.db.get_target(schedule.watch_target_id)
        return [target.id] if target and target.active else []

    def due_scans(self, now: datetime | None = None) -> list[ScanRequest]:
        """Claim every due slot and return the scans to run.

        A slot is returned only if this call moved its last-run marker.
        """
        tolerance = self.config.schedule_tolerance_minutes
        requests: list[ScanRequest] = []
        for schedule in self.db.list_schedules():
            local = local_now(schedule.timezone, now)
            daily = daily_due(schedule, local, tolerance)
            weekly = weekly_due(schedule, local, tolerance)
            if not (daily or weekly):
                continue

            target_ids = self._scope(schedule)
            if not target_ids:
                logger.debug("Schedule due but has no active targets | schedule=%s", schedule.id)
                continue

            if daily and self.db.claim_daily_run(schedule.id, local.date_key):
                requests.append(ScanRequest(period=Period.DAILY, target_ids=target_ids, mode=ScanMode.LATEST))
                logger.info(
                    "Daily scan due | schedule=%s date=%s targets=%d",
                    schedule.id, local.date_key, len(target_ids),
                )
            if weekly and self.db.claim_weekly_run(schedule.id, monday_of_week(local.date_key)):
                requests.append(ScanRequest(period=Period.WEEKLY, target_ids=target_ids, mode=ScanMode.LATEST))
                logger.info(
                    "Weekly scan due | schedule=%s week=%s targets=%d",
                    schedule.id, monday_of_week(local.date_key), len(target_ids),
                )
        return requests

    async def check_and_trigger(self, now: datetime | None = None) -> list[ScanRequest]:
        """One scheduler tick: claim due slots, then run their scans concurrently.

        Returns:
            The scan requests that were triggered
        """
        requests = self.due_scans(now)
        if not requests:
            logger.debug("Scheduler tick | due=0")
            return requests

        results = await asyncio.gather(*(self.trigger(r) for r in requests), return_exceptions=True)
        for request, result in zip(requests, results):
            if isinstance(result, Exception):
                logger.error(
                    "Scheduled scan failed | period=%s targets=%d error=%s",
                    request.period.value, len(request.target_ids or []), result,
                )
        logger.info("Scheduler tick | due=%d", len(requests))
        return requests

    async def run_continuous(self) -> None:
        """Tick forever at the configured interval."""
        interval = self.config.scheduler_interval_seconds
        ticks = 0
        logger.info("Scheduler started | interval=%ds", interval)
        try:
            while True:
                ticks += 1
                try:
                    await self.check_and_trigger()
                except Exception as e:
                    logger.error("Scheduler tick failed | tick=%d error=%s", ticks, e, exc_info=True)
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("Scheduler stopped | ticks=%d", ticks)
            raise
