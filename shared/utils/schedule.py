"""
shared/utils/schedule.py
Time-window helpers shared by hotpoint opening hours, route schedules,
and peak-hour pricing. All clock times are "HH:MM" strings in UTC.
"""

from datetime import datetime, time, timedelta, timezone
from typing import Iterable, Optional, Tuple


def as_utc(value: datetime) -> datetime:
    """Convert to UTC; a naive value is taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def window_contains(start: str, end: str, at: time) -> bool:
    """
    True when `at` falls in [start, end). A window whose end is earlier
    than its start wraps past midnight (e.g. 22:00-02:00).
    """
    start_t, end_t = parse_hhmm(start), parse_hhmm(end)
    at = at.replace(second=0, microsecond=0, tzinfo=None)
    if start_t == end_t:
        return True
    if start_t < end_t:
        return start_t <= at < end_t
    return at >= start_t or at < end_t


def is_open_at(operating_hours: Optional[dict], at: datetime) -> bool:
    """No configured hours means always open."""
    if not operating_hours:
        return True
    return window_contains(operating_hours["start"], operating_hours["end"], at.timetz())


def _allowed_day(days: Optional[Iterable[int]], at: datetime) -> bool:
    return not days or at.weekday() in days


def next_departure(schedule: dict, after: datetime) -> Optional[datetime]:
    """First scheduled departure strictly after `after`, looking a week ahead."""
    times = sorted(schedule.get("departure_times") or [])
    if not times:
        return None
    days = schedule.get("days")
    for offset in range(8):
        day = (after + timedelta(days=offset)).replace(second=0, microsecond=0)
        if not _allowed_day(days, day):
            continue
        for hhmm in times:
            t = parse_hhmm(hhmm)
            candidate = day.replace(hour=t.hour, minute=t.minute)
            if candidate > after:
                return candidate
    return None


def _next_opening(schedule: dict, after: datetime) -> Optional[datetime]:
    hours = schedule.get("operating_hours")
    days = schedule.get("days")
    start = parse_hhmm(hours["start"]) if hours else time(0, 0)
    for offset in range(8):
        day = after + timedelta(days=offset)
        candidate = day.replace(hour=start.hour, minute=start.minute, second=0, microsecond=0)
        if candidate > after and _allowed_day(days, candidate):
            return candidate
    return None


def check_operating_status(
    is_active: bool,
    schedule: Optional[dict],
    at: datetime,
) -> Tuple[bool, Optional[datetime], Optional[str]]:
    """
    Decide whether a route runs at `at`.
    Returns (is_available, next_departure, reason).

    Routes with departure_times only run at those exact minutes on the
    allowed days. Other routes run whenever the day and the optional
    operating_hours window allow.
    """
    if not is_active:
        return False, None, "Route is not active"

    schedule = schedule or {}
    days = schedule.get("days")

    if schedule.get("departure_times"):
        slot = at.strftime("%H:%M")
        if _allowed_day(days, at) and slot in schedule["departure_times"]:
            return True, None, None
        return False, next_departure(schedule, at), "No departure at the requested time"

    if not _allowed_day(days, at):
        return False, _next_opening(schedule, at), "Route does not operate on this day"

    if not is_open_at(schedule.get("operating_hours"), at):
        return False, _next_opening(schedule, at), "Outside route operating hours"

    return True, None, None
