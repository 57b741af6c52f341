"""Next-fire-time resolution and human readable time labels."""

import logging
import re
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from wake_puppy.scheduler.errors import ScheduleValidationError
from wake_puppy.scheduler.types import WEEKDAYS, ScheduleEntry, ScheduleType

logger = logging.getLogger(__name__)

_CLOCK_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

# pmset's wake schedule format
WAKE_TIME_FORMAT = "%m/%d/%y %H:%M:%S"


def resolve_location(name: str) -> Optional[tzinfo]:
    """Return the named IANA zone, or None for the system's local time.

    With None, every instant is localized by the system's rules for its own
    date, so a fire time across a DST change keeps its wall-clock time.
    """
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r, using local time", name)
    return None


def _localize(wall: datetime, loc: Optional[tzinfo]) -> datetime:
    """Attach ``loc`` to a naive wall-clock time, or the system zone when None."""
    if loc is None:
        return wall.astimezone()
    return wall.replace(tzinfo=loc)


def _in_zone(now: datetime, loc: Optional[tzinfo]) -> datetime:
    if loc is None:
        return now.astimezone()
    return now.astimezone(loc)


def _not_after(candidate: datetime, now: datetime) -> bool:
    return candidate.astimezone(timezone.utc) <= now.astimezone(timezone.utc)


def next_run(entry: ScheduleEntry, now: datetime) -> datetime:
    """Compute when ``entry`` should next fire, strictly after ``now``.

    Raises:
        ScheduleValidationError: for a one-time schedule at or before ``now``,
            an unknown schedule type or an unrecognized weekday.
    """
    loc = resolve_location(entry.timezone)
    if now.tzinfo is None:
        now = now.astimezone()
    local_now = _in_zone(now, loc)
    spec = entry.schedule

    if spec.type == ScheduleType.ONCE:
        parsed = _parse_date_time(spec.date or "", spec.time, loc)
        if _not_after(parsed, local_now):
            raise ScheduleValidationError("scheduled time is in the past")
        return parsed
    if spec.type == ScheduleType.DAILY:
        return _next_daily(spec.time, local_now, loc)
    if spec.type == ScheduleType.WEEKLY:
        return _next_weekly(spec.weekday or "", spec.time, local_now, loc)
    raise ScheduleValidationError(f"unknown schedule type: {spec.type}")


def _parse_date_time(date: str, clock: str, loc: Optional[tzinfo]) -> datetime:
    if not date or not clock:
        raise ScheduleValidationError("date/time required")
    try:
        parsed = datetime.strptime(f"{date} {clock}", "%Y-%m-%d %H:%M")
    except ValueError as exc:
        raise ScheduleValidationError(f"invalid date/time {date} {clock}: {exc}") from None
    return _localize(parsed, loc)


def _next_daily(clock: str, now: datetime, loc: Optional[tzinfo]) -> datetime:
    hour, minute = parse_clock(clock)
    wall = datetime(now.year, now.month, now.day, hour, minute)
    candidate = _localize(wall, loc)
    if _not_after(candidate, now):
        candidate = _localize(wall + timedelta(days=1), loc)
    return candidate


def _next_weekly(weekday: str, clock: str, now: datetime, loc: Optional[tzinfo]) -> datetime:
    target = parse_weekday(weekday)
    if target is None:
        raise ScheduleValidationError(f"invalid weekday: {weekday}")
    hour, minute = parse_clock(clock)
    current = (now.weekday() + 1) % 7  # Sunday = 0
    delta = (target - current + 7) % 7
    wall = datetime(now.year, now.month, now.day, hour, minute) + timedelta(days=delta)
    candidate = _localize(wall, loc)
    if _not_after(candidate, now):
        candidate = _localize(wall + timedelta(days=7), loc)
    return candidate


def parse_clock(clock: str) -> Tuple[int, int]:
    """Leniently parse an ``HH:MM`` string.

    Anything not shaped like ``HH:MM`` yields ``(0, 0)``. Each half keeps its
    leading digits only, and an hour above 23 or minute above 59 becomes 0.
    """
    if len(clock) != 5 or clock[2] != ":":
        return 0, 0
    hour = _leading_int(clock[0:2])
    minute = _leading_int(clock[3:5])
    if hour > 23:
        hour = 0
    if minute > 59:
        minute = 0
    return hour, minute


def _leading_int(value: str) -> int:
    n = 0
    for ch in value:
        if not ch.isdigit():
            return n
        n = n * 10 + int(ch)
    return n


def validate_clock(clock: str) -> str:
    """Strict ``HH:MM`` check used when a new schedule is built."""
    clock = (clock or "").strip()
    if not _CLOCK_RE.match(clock):
        raise ScheduleValidationError(f"invalid time (expected HH:MM): {clock!r}")
    return clock


def parse_weekday(name: str) -> Optional[int]:
    """Day index with Sunday = 0, or None for an unrecognized name."""
    try:
        return WEEKDAYS.index((name or "").strip().lower())
    except ValueError:
        return None


def weekday_number(name: str) -> int:
    """launchd ``Weekday`` value for ``name``."""
    day = parse_weekday(name)
    if day is None:
        raise ScheduleValidationError(f"invalid weekday: {name}")
    return day


def format_wake_time(when: datetime) -> str:
    return when.strftime(WAKE_TIME_FORMAT)


def relative_label(when: Optional[datetime], now: datetime) -> str:
    """Short label such as ``in 3h`` or ``2d ago``."""
    if when is None:
        return ""
    if when > now:
        seconds = (when - now).total_seconds()
        if seconds < 60:
            return "in <1m"
        if seconds < 3600:
            return f"in {int(seconds // 60)}m"
        if seconds < 86400:
            return f"in {int(seconds // 3600)}h"
        return f"in {int(seconds // 86400)}d"

    seconds = (now - when).total_seconds()
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{int(seconds // 60)}m ago"
    if seconds < 86400:
        return f"{int(seconds // 3600)}h ago"
    return f"{int(seconds // 86400)}d ago"


def relative_time(when: datetime, now: Optional[datetime] = None) -> str:
    """Age label for session listings; also reports months and years."""
    if now is None:
        now = datetime.now(when.tzinfo)
    if when > now:
        return "just now"
    seconds = (now - when).total_seconds()
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{int(seconds // 60)}m ago"
    if seconds < 86400:
        return f"{int(seconds // 3600)}h ago"
    days = int(seconds // 86400)
    if days < 30:
        return f"{days}d ago"
    months = days // 30
    if months < 12:
        return f"{months}mo ago"
    return f"{months // 12}y ago"
