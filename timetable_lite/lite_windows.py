"""Week window arithmetic for timetable views."""

import math
from datetime import date, timedelta

from .lite_models import WindowKey

WEEKDAY_SPAN = 5
FULL_WEEK_SPAN = 7


def week_window(anchor: date, show_weekend: bool = False) -> tuple[date, date]:
    """Return the inclusive (start, end) dates of the week containing anchor.

    With weekends shown the week runs Sunday..Saturday; otherwise it runs
    Monday..Friday of the anchor's ISO week.
    """
    if show_weekend:
        # date.weekday(): Monday == 0 .. Sunday == 6
        start = anchor - timedelta(days=(anchor.weekday() + 1) % 7)
        return start, start + timedelta(days=FULL_WEEK_SPAN - 1)

    start = anchor - timedelta(days=anchor.weekday())
    return start, start + timedelta(days=WEEKDAY_SPAN - 1)


def focus_anchor(today: date, show_weekend: bool = False) -> date:
    """Pick the date whose week should be shown first.

    When weekends are hidden, a Saturday or Sunday moves on to the following
    Monday so the upcoming school week is shown.
    """
    if show_weekend or today.weekday() < 5:
        return today
    return today + timedelta(days=7 - today.weekday())


def adjacent_windows(key: WindowKey) -> tuple[WindowKey, WindowKey]:
    """Return the (previous, next) windows, shifted by whole weeks covering the span."""
    shift = timedelta(days=7 * max(1, math.ceil(key.span_days / 7)))
    previous = WindowKey(key.schedule_id, key.start - shift, key.end - shift)
    following = WindowKey(key.schedule_id, key.start + shift, key.end + shift)
    return previous, following


def next_date_for_weekday(base_date: date, weekday: int) -> date:
    """Return the first date on or after base_date that falls on weekday (Monday == 0)."""
    return base_date + timedelta(days=(weekday - base_date.weekday()) % 7)
