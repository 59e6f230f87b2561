"""
Cron Primitive

Five-field cron expressions evaluated in a named timezone, driven by asyncio.

    ┌──────── minute        0-59
    │ ┌────── hour          0-23
    │ │ ┌──── day of month  1-31
    │ │ │ ┌── month         1-12
    │ │ │ │ ┌ day of week   0-6 (0 or 7 = Sunday)
    * * * * *

Each field accepts ``*``, single values, lists (``1,15``), ranges (``1-5``)
and steps (``*/15``, ``0-30/10``). When both day fields are restricted a day
matches if either does (standard cron semantics).

Author: System Architect
Date: 2025-12-14
"""

import asyncio
import inspect
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from feedcache.core.config.constants import DEFAULT_TIMEZONE, Stage
from feedcache.core.exceptions import InvalidCronExpression, SchedulerError
from feedcache.core.logging import get_logger, log_stage

logger = get_logger(__name__)

# (name, min, max)
_FIELDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day", 1, 31),
    ("month", 1, 12),
    ("weekday", 0, 7),
)

# Searching further than this many days means the expression never fires (e.g. "0 0 30 2 *")
_SEARCH_HORIZON_DAYS = 366 * 5


def _parse_field(text: str, name: str, low: int, high: int) -> frozenset[int]:
    values: set[int] = set()
    for part in text.split(","):
        if not part:
            raise InvalidCronExpression(f"Empty list element in {name} field: {text!r}")

        base, _, step_text = part.partition("/")
        step = 1
        if step_text:
            if not step_text.isdigit() or int(step_text) == 0:
                raise InvalidCronExpression(f"Invalid step in {name} field: {part!r}")
            step = int(step_text)

        if base == "*":
            start, end = low, high
        elif "-" in base:
            first, _, last = base.partition("-")
            if not (first.isdigit() and last.isdigit()):
                raise InvalidCronExpression(f"Invalid range in {name} field: {part!r}")
            start, end = int(first), int(last)
        elif base.isdigit():
            start = int(base)
            end = high if step_text else start
        else:
            raise InvalidCronExpression(f"Invalid value in {name} field: {part!r}")

        if start < low or end > high or start > end:
            raise InvalidCronExpression(f"{name} field out of range {low}-{high}: {part!r}")
        values.update(range(start, end + 1, step))
    return frozenset(values)


@dataclass(frozen=True)
class CronExpression:
    """Parsed cron expression."""

    source: str
    minutes: frozenset[int]
    hours: frozenset[int]
    days: frozenset[int]
    months: frozenset[int]
    weekdays: frozenset[int]
    day_restricted: bool
    weekday_restricted: bool

    @classmethod
    def parse(cls, expression: str) -> "CronExpression":
        """
        Raises:
            InvalidCronExpression: Wrong field count or an unparseable field
        """
        if not isinstance(expression, str):
            raise InvalidCronExpression(f"Cron expression must be a string: {expression!r}")
        parts = expression.split()
        if len(parts) != 5:
            raise InvalidCronExpression(
                f"Cron expression must have 5 fields, got {len(parts)}: {expression!r}"
            )

        minutes, hours, days, months, weekdays = (
            _parse_field(text, name, low, high) for text, (name, low, high) in zip(parts, _FIELDS)
        )
        # 7 is an alias for Sunday
        weekdays = frozenset(0 if d == 7 else d for d in weekdays)

        return cls(
            source=expression,
            minutes=minutes,
            hours=hours,
            days=days,
            months=months,
            weekdays=weekdays,
            day_restricted=not parts[2].startswith("*"),
            weekday_restricted=not parts[4].startswith("*"),
        )

    def _day_matches(self, dt: datetime) -> bool:
        # Python: Monday=0 .. Sunday=6; cron: Sunday=0 .. Saturday=6
        cron_weekday = (dt.weekday() + 1) % 7
        day_ok = dt.day in self.days
        weekday_ok = cron_weekday in self.weekdays
        if self.day_restricted and self.weekday_restricted:
            return day_ok or weekday_ok
        return day_ok and weekday_ok

    def matches(self, dt: datetime) -> bool:
        return (
            dt.minute in self.minutes
            and dt.hour in self.hours
            and dt.month in self.months
            and self._day_matches(dt)
        )

    def next_after(self, dt: datetime, tz: ZoneInfo | None = None) -> datetime:
        """
        First matching minute strictly after ``dt``.

        Args:
            dt: Reference instant (naive values are taken as UTC)
            tz: Timezone the expression is evaluated in (default: that of ``dt``)

        Returns:
            Aware datetime in ``tz``

        Raises:
            InvalidCronExpression: When no matching minute exists
        """
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        zone = tz or dt.tzinfo
        local = dt.astimezone(zone).replace(tzinfo=None, second=0, microsecond=0)
        candidate = local + timedelta(minutes=1)
        horizon = candidate + timedelta(days=_SEARCH_HORIZON_DAYS)

        while candidate < horizon:
            if candidate.month not in self.months:
                year = candidate.year + (candidate.month == 12)
                month = candidate.month % 12 + 1
                candidate = datetime(year, month, 1)
                continue
            if not self._day_matches(candidate):
                candidate = datetime(candidate.year, candidate.month, candidate.day) + timedelta(days=1)
                continue
            if candidate.hour not in self.hours:
                candidate = candidate.replace(minute=0) + timedelta(hours=1)
                continue
            if candidate.minute not in self.minutes:
                candidate += timedelta(minutes=1)
                continue
            return candidate.replace(tzinfo=zone)

        raise InvalidCronExpression(f"Cron expression never fires: {self.source!r}")

    def __str__(self) -> str:
        return self.source


def resolve_timezone(name: str) -> ZoneInfo:
    """
    Raises:
        SchedulerError: Unknown timezone name
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise SchedulerError(f"Unknown timezone: {name}") from e


# =============================================================================
# SCHEDULER
# =============================================================================


class CronHandle:
    """A registered trigger. ``stop()`` deregisters it."""

    def __init__(self, name: str, expression: CronExpression, tz: ZoneInfo):
        self.name = name
        self.expression = expression
        self.timezone = tz
        self.next_run: datetime | None = None
        self.fire_count = 0
        self._task: asyncio.Task | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            log_stage(logger, Stage.CRON.value, "Cron trigger stopped", name=self.name)
        self._task = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "cron": str(self.expression),
            "timezone": str(self.timezone),
            "active": self.active,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "fire_count": self.fire_count,
        }


class CronScheduler:
    """
    Runs callbacks on cron schedules.

    Usage:
        scheduler = CronScheduler()
        handle = scheduler.schedule("0 * * * *", refresh_scores, "Asia/Taipei", name="hot_score")
        ...
        handle.stop()

    Callbacks may be sync or async. Each firing runs in its own task, so a
    slow callback never delays the next trigger; overlap control is the
    caller's concern.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self._clock = clock
        self._sleep = sleep
        self._handles: dict[str, CronHandle] = {}
        self._inflight: set[asyncio.Task] = set()

    def schedule(
        self,
        expression: str | CronExpression,
        callback: Callable[[], Any],
        tz: str = DEFAULT_TIMEZONE,
        *,
        name: str | None = None,
    ) -> CronHandle:
        """
        Register ``callback`` and start its trigger loop.

        Raises:
            InvalidCronExpression: Unparseable expression
            SchedulerError: Unknown timezone
        """
        parsed = expression if isinstance(expression, CronExpression) else CronExpression.parse(expression)
        handle = CronHandle(name or parsed.source, parsed, resolve_timezone(tz))

        previous = self._handles.get(handle.name)
        if previous is not None:
            previous.stop()

        handle._task = asyncio.create_task(self._loop(handle, callback), name=f"cron-{handle.name}")
        self._handles[handle.name] = handle
        log_stage(logger, Stage.CRON.value, "Cron trigger registered", name=handle.name, cron=parsed.source, timezone=tz)
        return handle

    async def _loop(self, handle: CronHandle, callback: Callable[[], Any]) -> None:
        last_fired: datetime | None = None
        while True:
            now = self._clock()
            # A wake-up slightly before the fired minute must not select it again
            reference = now if last_fired is None else max(now, last_fired)
            handle.next_run = handle.expression.next_after(reference, handle.timezone)
            await self._sleep(max((handle.next_run - now).total_seconds(), 0.0))
            last_fired = handle.next_run

            handle.fire_count += 1
            log_stage(logger, Stage.CRON.value, "Cron trigger fired", name=handle.name, scheduled_for=handle.next_run.isoformat())
            task = asyncio.create_task(self._invoke(handle, callback))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _invoke(self, handle: CronHandle, callback: Callable[[], Any]) -> None:
        try:
            result = callback()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "Cron callback failed",
                stage=Stage.CRON.value,
                name=handle.name,
                error=str(e),
                error_type=type(e).__name__,
            )

    def get(self, name: str) -> CronHandle | None:
        return self._handles.get(name)

    def handles(self) -> list[CronHandle]:
        return list(self._handles.values())

    def stop_all(self) -> None:
        for handle in self._handles.values():
            handle.stop()
        self._handles.clear()
