"""Business-hours aware elapsed time.

Converts a wall-clock interval into the number of hours that fall inside
the business windows of a weekly schedule.
"""

import logging
from collections.abc import Mapping
from datetime import date, datetime, time, timedelta, timezone, tzinfo

from taskflow.models import DaySchedule

logger = logging.getLogger(__name__)

MS_PER_HOUR = 3_600_000


def parse_clock(value: str) -> tuple[int, int] | None:
    """Parse a zero-padded ``HH:MM`` clock time.

    ``24:00`` is accepted as the end of the day.

    Args:
        value: Clock string.

    Returns:
        (hours, minutes) or None if the value is not a valid clock time.
    """
    try:
        hours_str, minutes_str = value.split(":")
        hours, minutes = int(hours_str), int(minutes_str)
    except (AttributeError, ValueError):
        return None

    if not (0 <= minutes < 60):
        return None
    if 0 <= hours < 24 or (hours == 24 and minutes == 0):
        return hours, minutes
    return None


def schedule_weekday(day: date) -> int:
    """Weekday index used by schedules: 0=Sunday .. 6=Saturday."""
    return (day.weekday() + 1) % 7


def _clock_ms(day: date, hours: int, minutes: int, tz: tzinfo) -> float:
    # 24:00 is midnight of the following day
    if hours == 24:
        day, hours = day + timedelta(days=1), 0
    return datetime.combine(day, time(hours, minutes), tzinfo=tz).timestamp() * 1000


def _business_window(day: date, entry: DaySchedule | None, tz: tzinfo) -> tuple[float, float] | None:
    if entry is None or not entry.active:
        return None

    start = parse_clock(entry.start)
    end = parse_clock(entry.end)
    if start is None or end is None:
        logger.debug(f"Ignoring malformed schedule entry for {day}: {entry.start}-{entry.end}")
        return None

    return _clock_ms(day, *start, tz), _clock_ms(day, *end, tz)


def elapsed_working_hours(
    start: float,
    end: float,
    schedule: Mapping[int, DaySchedule],
    tz: tzinfo = timezone.utc,
) -> float:
    """Hours of ``[start, end]`` that fall inside business hours.

    Days are walked in ``tz``; each day's window comes from the schedule
    entry for that weekday. Inactive, missing or malformed entries
    contribute nothing, as does an entry whose start is not before its end.

    Args:
        start: Interval start, epoch milliseconds.
        end: Interval end, epoch milliseconds.
        schedule: Weekly schedule keyed 0=Sunday .. 6=Saturday.
        tz: Zone whose calendar days and clock times define the windows.

    Returns:
        Working hours as a float, not rounded. 0 when ``end <= start``.
    """
    if end <= start:
        return 0.0

    day = datetime.fromtimestamp(start / 1000, tz=tz).date()
    last_day = datetime.fromtimestamp(end / 1000, tz=tz).date()
    lower = start
    total_ms = 0.0

    while day <= last_day:
        window = _business_window(day, schedule.get(schedule_weekday(day)), tz)
        if window is not None:
            overlap_start = max(window[0], lower)
            overlap_end = min(window[1], end)
            if overlap_end > overlap_start:
                total_ms += overlap_end - overlap_start

        day += timedelta(days=1)
        lower = _clock_ms(day, 0, 0, tz)

    return total_ms / MS_PER_HOUR
