"""Weekly recurrence expansion for Timetable Lite."""

import logging
from datetime import date, datetime, time
from typing import Optional

from dateutil.rrule import WEEKLY, rrule

from .lite_models import RecurrencePattern

logger = logging.getLogger(__name__)


def _clip_range(
    pattern: RecurrencePattern, window_start: date, window_end: date
) -> Optional[tuple[date, date]]:
    """Intersect the pattern's active range with the window, or None if disjoint."""
    start = max(pattern.start_date, window_start)
    end = window_end if pattern.end_date is None else min(pattern.end_date, window_end)
    if start > end:
        return None
    return start, end


def pattern_overlaps(pattern: RecurrencePattern, window_start: date, window_end: date) -> bool:
    """Check whether a pattern can produce any date inside the window."""
    return pattern.has_weekdays() and _clip_range(pattern, window_start, window_end) is not None


def expand_occurrences(
    pattern: RecurrencePattern, window_start: date, window_end: date
) -> list[date]:
    """Expand a weekly pattern into the concrete dates it produces within a window.

    A date is produced when its weekday is flagged and it lies inside both the
    pattern's [start_date, end_date] range and the [window_start, window_end]
    window, all bounds inclusive.

    Args:
        pattern: Weekly recurrence pattern
        window_start: First date of the query window
        window_end: Last date of the query window

    Returns:
        Ascending list of unique dates; empty when the ranges do not overlap,
        the window is inverted, or no weekday is flagged
    """
    weekday_numbers = pattern.weekdays
    if not weekday_numbers:
        return []

    clipped = _clip_range(pattern, window_start, window_end)
    if clipped is None:
        return []
    start, end = clipped

    rule = rrule(
        WEEKLY,
        dtstart=datetime.combine(start, time.min),
        until=datetime.combine(end, time.min),
        byweekday=weekday_numbers,
    )
    dates = [occurrence.date() for occurrence in rule]
    logger.debug(
        "Expanded pattern %s over %s..%s into %d dates", pattern.id, start, end, len(dates)
    )
    return dates
