"""Per-date exception overlay for recurring timetable events - Timetable Lite.

This module turns a base event plus an optional per-date exception into the
occurrence shown for that date. Cancel exceptions suppress the date; modify
exceptions override individual fields with fallback to the series values.
"""

import logging
from datetime import date
from typing import Optional, Union

from .lite_models import (
    AcademyRef,
    BaseEvent,
    EventCategory,
    ExceptionType,
    RecurrenceException,
    RecurringOccurrence,
    SingleOccurrence,
)

logger = logging.getLogger(__name__)


def _present(value) -> bool:
    """Check whether an override value should replace the base value.

    Stored exceptions are normalized on construction, but rows built with
    model_construct() or written by older clients may still carry blanks.
    """
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def _pick(override, base):
    return override if _present(override) else base


def _resolve_academy(
    base_event: BaseEvent, exception: RecurrenceException
) -> Optional[AcademyRef]:
    # Academy overrides replace id, name and subject together
    if exception.modified_academy is not None:
        return exception.modified_academy
    if base_event.category == EventCategory.ACADEMY:
        return base_event.academy
    return None


def apply_exception(
    base_event: BaseEvent,
    on_date: date,
    exception: Optional[RecurrenceException] = None,
) -> Optional[Union[SingleOccurrence, RecurringOccurrence]]:
    """Build the occurrence of a base event on one date.

    Args:
        base_event: Stored single or recurring event definition
        on_date: Date the occurrence falls on
        exception: Exception stored for (base_event, on_date), if any

    Returns:
        The occurrence, or None when a cancel exception suppresses the date
    """
    if not base_event.is_recurring:
        if exception is not None:
            logger.debug("Ignoring exception for single event %s", base_event.id)
        return SingleOccurrence(
            occurrence_date=on_date,
            title=base_event.title,
            start_time=base_event.start_time,
            end_time=base_event.end_time,
            category=base_event.category,
            academy=base_event.academy,
            event_id=base_event.id,
        )

    if exception is None:
        return RecurringOccurrence(
            occurrence_date=on_date,
            title=base_event.title,
            start_time=base_event.start_time,
            end_time=base_event.end_time,
            category=base_event.category,
            academy=base_event.academy,
            event_id=base_event.id,
            pattern_id=base_event.pattern_id,
        )

    if exception.exception_type == ExceptionType.CANCEL:
        logger.debug("Occurrence of event %s on %s cancelled", base_event.id, on_date)
        return None

    return RecurringOccurrence(
        occurrence_date=on_date,
        title=_pick(exception.modified_title, base_event.title),
        start_time=_pick(exception.modified_start_time, base_event.start_time),
        end_time=_pick(exception.modified_end_time, base_event.end_time),
        category=_pick(exception.modified_category, base_event.category),
        academy=_resolve_academy(base_event, exception),
        event_id=base_event.id,
        pattern_id=base_event.pattern_id,
        override_applied=True,
        source_exception_id=exception.id,
    )
