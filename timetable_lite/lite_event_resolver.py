"""Window resolution for Timetable Lite.

Combines single events and expanded recurring events (with their per-date
exceptions applied) into one ordered list for a date window. Each store
fetch fails independently: a failed source is reported on the result while
the remaining sources still contribute occurrences.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Union

from .lite_exception_overlay import apply_exception
from .lite_models import (
    BaseEvent,
    DataIntegrityWarning,
    DegradedSource,
    RecurrencePattern,
    RecurringOccurrence,
    ResolvedWindow,
    SingleOccurrence,
)
from .lite_occurrence_expander import expand_occurrences, pattern_overlaps
from .lite_store import ScheduleStore, StoreResult
from .timetable_exceptions import TimetableValidationError

logger = logging.getLogger(__name__)

OccurrenceList = list[Union[SingleOccurrence, RecurringOccurrence]]


@dataclass
class _SourceResolution:
    """Occurrences and problems contributed by one source."""

    occurrences: OccurrenceList = field(default_factory=list)
    degraded: list[DegradedSource] = field(default_factory=list)
    warnings: list[DataIntegrityWarning] = field(default_factory=list)


class LiteEventResolver:
    """Resolves the occurrences of one schedule inside a date window."""

    def __init__(self, store: ScheduleStore):
        """Initialize resolver.

        Args:
            store: Store providing events, patterns and exceptions
        """
        self.store = store

    async def resolve(self, schedule_id: int, window_start: date, window_end: date) -> ResolvedWindow:
        """Resolve all occurrences of a schedule inside [window_start, window_end].

        Args:
            schedule_id: Schedule to resolve
            window_start: First date of the window (inclusive)
            window_end: Last date of the window (inclusive)

        Returns:
            ResolvedWindow ordered by start time; equal start times keep single
            events first (store order) followed by recurring events (store
            order, ascending date)

        Raises:
            TimetableValidationError: If window_start is after window_end
        """
        if window_start > window_end:
            raise TimetableValidationError(
                f"window start {window_start} is after window end {window_end}"
            )

        singles, recurring = await asyncio.gather(
            self._resolve_single_events(schedule_id, window_start, window_end),
            self._resolve_recurring_events(schedule_id, window_start, window_end),
        )

        occurrences = singles.occurrences + recurring.occurrences
        # list.sort is stable, so ties keep the merge order above
        occurrences.sort(key=lambda occurrence: occurrence.start_time)

        window = ResolvedWindow(
            schedule_id=schedule_id,
            start=window_start,
            end=window_end,
            occurrences=occurrences,
            degraded_sources=singles.degraded + recurring.degraded,
            integrity_warnings=singles.warnings + recurring.warnings,
        )

        if window.is_degraded:
            logger.warning(
                "Resolved schedule %s %s..%s with %d degraded sources",
                schedule_id,
                window_start,
                window_end,
                len(window.degraded_sources),
            )
        else:
            logger.debug(
                "Resolved schedule %s %s..%s: %d occurrences",
                schedule_id,
                window_start,
                window_end,
                len(occurrences),
            )
        return window

    async def _resolve_single_events(
        self, schedule_id: int, window_start: date, window_end: date
    ) -> _SourceResolution:
        resolution = _SourceResolution()
        result = await self.store.get_single_events(schedule_id, window_start, window_end)
        if not result.ok:
            resolution.degraded.append(
                DegradedSource(
                    source="single_events",
                    message=result.error_message or "failed to load single events",
                )
            )
            return resolution

        for event in result.value or []:
            occurrence = apply_exception(event, event.event_date)
            if occurrence is not None:
                resolution.occurrences.append(occurrence)
        return resolution

    async def _resolve_recurring_events(
        self, schedule_id: int, window_start: date, window_end: date
    ) -> _SourceResolution:
        resolution = _SourceResolution()
        result = await self.store.get_recurring_base_events(schedule_id)
        if not result.ok:
            resolution.degraded.append(
                DegradedSource(
                    source="recurring_events",
                    message=result.error_message or "failed to load recurring events",
                )
            )
            return resolution

        events = result.value or []
        if not events:
            return resolution

        # Many events can share one pattern; fetch each pattern once
        pattern_ids = list(dict.fromkeys(event.pattern_id for event in events))
        pattern_results = await asyncio.gather(
            *(self.store.get_pattern(pattern_id) for pattern_id in pattern_ids)
        )
        patterns = dict(zip(pattern_ids, pattern_results))

        per_event = await asyncio.gather(
            *(
                self._resolve_recurring_event(
                    event, patterns[event.pattern_id], window_start, window_end
                )
                for event in events
            )
        )
        for event_resolution in per_event:
            resolution.occurrences.extend(event_resolution.occurrences)
            resolution.degraded.extend(event_resolution.degraded)
            resolution.warnings.extend(event_resolution.warnings)
        return resolution

    async def _resolve_recurring_event(
        self,
        event: BaseEvent,
        pattern_result: StoreResult[RecurrencePattern],
        window_start: date,
        window_end: date,
    ) -> _SourceResolution:
        resolution = _SourceResolution()

        if pattern_result.not_found:
            logger.warning(
                "Recurring event %s references missing pattern %s, skipping",
                event.id,
                event.pattern_id,
            )
            resolution.warnings.append(
                DataIntegrityWarning(
                    event_id=event.id,
                    pattern_id=event.pattern_id,
                    message=f"event {event.id} references missing pattern {event.pattern_id}",
                )
            )
            return resolution

        if not pattern_result.ok:
            resolution.degraded.append(
                DegradedSource(
                    source="pattern",
                    event_id=event.id,
                    message=pattern_result.error_message or "failed to load pattern",
                )
            )
            return resolution

        pattern = pattern_result.value
        if not pattern_overlaps(pattern, window_start, window_end):
            return resolution

        dates = expand_occurrences(pattern, window_start, window_end)
        if not dates:
            return resolution

        exceptions_result = await self.store.get_exceptions_for_event(event.id, dates[0], dates[-1])
        if not exceptions_result.ok:
            # Without exceptions the cancelled dates are unknown, so none are shown
            resolution.degraded.append(
                DegradedSource(
                    source="exceptions",
                    event_id=event.id,
                    message=exceptions_result.error_message or "failed to load exceptions",
                )
            )
            return resolution

        by_date = {exception.exception_date: exception for exception in exceptions_result.value or []}
        for occurrence_date in dates:
            occurrence: Optional[Union[SingleOccurrence, RecurringOccurrence]] = apply_exception(
                event, occurrence_date, by_date.get(occurrence_date)
            )
            if occurrence is not None:
                resolution.occurrences.append(occurrence)
        return resolution
