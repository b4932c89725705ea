"""Transactional timetable mutations with cache invalidation.

Every command is validated before any write, applied in one store
transaction (academy lookup-or-create included) and, once committed,
invalidates all cached windows of the affected schedule.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import date, time
from typing import Any, Optional, Union

from .academy_resolver import AcademyResolver, StoreAcademyResolver
from .lite_models import (
    AcademyRef,
    BaseEvent,
    CancelOccurrence,
    CreateMultiDayEvents,
    CreateSeries,
    CreateSingleEvent,
    DeleteSeries,
    DeleteSingleEvent,
    EditOccurrence,
    EditSeries,
    EventCategory,
    EventFields,
    ExceptionType,
    MutationCommand,
    MutationOutcome,
    OccurrenceState,
    RecurrenceException,
    RecurrencePattern,
    RestoreOccurrence,
)
from .lite_occurrence_expander import expand_occurrences
from .lite_store import ScheduleStore, StoreResult, StoreTransaction
from .lite_windows import next_date_for_weekday
from .timetable_exceptions import (
    TimetableError,
    TimetableNotFoundError,
    TimetableStoreError,
    TimetableValidationError,
)
from .window_cache import WindowCache

logger = logging.getLogger(__name__)

NOTHING_TO_RESTORE = "nothing to restore"


def _validate_times(start_time: time, end_time: time) -> None:
    if start_time >= end_time:
        raise TimetableValidationError("start time must be before end time")


def _validate_weekdays(weekdays: list[int]) -> list[int]:
    if not weekdays:
        raise TimetableValidationError("select at least one weekday")
    invalid = [day for day in weekdays if not 0 <= day <= 6]
    if invalid:
        raise TimetableValidationError(f"invalid weekday numbers: {invalid}")
    return sorted(set(weekdays))


def _event_title(fields: EventFields) -> str:
    """Academy events are titled after their academy; others need a non-blank title."""
    if fields.category == EventCategory.ACADEMY:
        if not fields.academy_name:
            raise TimetableValidationError("academy name is required for academy events")
        return fields.academy_name.strip()
    title = fields.title.strip()
    if not title:
        raise TimetableValidationError("title must not be blank")
    return title


def _unwrap(result: StoreResult[Any], what: str) -> Any:
    if result.not_found:
        raise TimetableNotFoundError(result.error_message or f"{what} not found")
    if not result.ok:
        raise TimetableStoreError(result.error_message or f"failed to load {what}")
    return result.value


class MutationCoordinator:
    """Applies timetable commands against the store."""

    def __init__(
        self,
        store: ScheduleStore,
        cache: Optional[WindowCache] = None,
        academy_resolver: Optional[AcademyResolver] = None,
    ):
        """Initialize coordinator.

        Args:
            store: Transactional schedule store
            cache: Window cache to invalidate after successful writes
            academy_resolver: Academy lookup-or-create collaborator
        """
        self.store = store
        self.cache = cache
        self.academy_resolver = academy_resolver or StoreAcademyResolver()
        self._handlers: dict[type, Callable[[Any], Awaitable[tuple[list[int], int]]]] = {
            CreateSingleEvent: self._create_single_event,
            CreateMultiDayEvents: self._create_multi_day_events,
            CreateSeries: self._create_series,
            EditSeries: self._edit_series,
            EditOccurrence: self._edit_occurrence,
            CancelOccurrence: self._cancel_occurrence,
            RestoreOccurrence: self._restore_occurrence,
            DeleteSeries: self._delete_series,
            DeleteSingleEvent: self._delete_single_event,
        }

    async def mutate(self, command: MutationCommand) -> MutationOutcome:
        """Validate and apply one command.

        Returns:
            MutationOutcome; failures carry an error message and leave the store
            and cache untouched
        """
        handler = self._handlers.get(type(command))
        if handler is None:
            raise TypeError(f"unsupported command type: {type(command).__name__}")

        try:
            affected_ids, schedule_id = await handler(command)
        except TimetableValidationError as e:
            logger.info("Rejected %s: %s", command.command, e)
            return MutationOutcome(success=False, command=command.command, error_message=str(e))
        except TimetableNotFoundError as e:
            logger.info("%s failed: %s", command.command, e)
            return MutationOutcome(success=False, command=command.command, error_message=str(e))
        except TimetableError as e:
            logger.error("%s failed and was rolled back: %s", command.command, e)
            return MutationOutcome(success=False, command=command.command, error_message=str(e))

        if self.cache is not None:
            self.cache.invalidate(schedule_id=schedule_id)

        logger.debug("%s applied to schedule %s: %s", command.command, schedule_id, affected_ids)
        return MutationOutcome(
            success=True,
            command=command.command,
            affected_ids=affected_ids,
            invalidated_schedule_id=schedule_id,
        )

    async def occurrence_state(self, event_id: int, on_date: date) -> OccurrenceState:
        """Report whether one date of a series is unmodified, modified or cancelled.

        Raises:
            TimetableNotFoundError: If the series is missing or was deleted
            TimetableValidationError: If the event is not part of a series
            TimetableStoreError: If the event or its exceptions could not be loaded
        """
        event = await self._load_series_event(event_id)
        exceptions = _unwrap(
            await self.store.get_exceptions_for_event(event.id, on_date, on_date), "exceptions"
        )
        if not exceptions:
            return OccurrenceState.UNMODIFIED
        if exceptions[0].exception_type == ExceptionType.CANCEL:
            return OccurrenceState.CANCELLED
        return OccurrenceState.MODIFIED

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _load_event(self, event_id: int) -> BaseEvent:
        return _unwrap(await self.store.get_event(event_id), f"event {event_id}")

    async def _load_series_event(self, event_id: int) -> BaseEvent:
        event = await self._load_event(event_id)
        if not event.is_recurring:
            raise TimetableValidationError(f"event {event_id} is not part of a series")
        return event

    async def _load_pattern(self, pattern_id: int) -> RecurrencePattern:
        return _unwrap(await self.store.get_pattern(pattern_id), f"pattern {pattern_id}")

    async def _require_series_date(self, event: BaseEvent, on_date: date) -> None:
        pattern = await self._load_pattern(event.pattern_id)
        if not expand_occurrences(pattern, on_date, on_date):
            raise TimetableValidationError(f"{on_date} is not a date of series {event.pattern_id}")

    async def _academy_for(
        self,
        command: Union[EventFields, EditOccurrence],
        schedule_id: int,
        tx: StoreTransaction,
    ) -> Optional[AcademyRef]:
        """Resolve the academy of an academy-category command inside tx."""
        name = command.academy_name
        if command.category != EventCategory.ACADEMY or not name:
            return None
        academy_id = await self.academy_resolver.resolve_or_create_academy(
            name, command.academy_subject, schedule_id, tx
        )
        return AcademyRef(id=academy_id, name=name.strip(), subject=command.academy_subject)

    # ------------------------------------------------------------------
    # Command handlers: return (affected ids, schedule id)
    # ------------------------------------------------------------------

    async def _create_single_event(self, command: CreateSingleEvent) -> tuple[list[int], int]:
        title = _event_title(command)
        _validate_times(command.start_time, command.end_time)

        async with self.store.transaction() as tx:
            academy = await self._academy_for(command, command.schedule_id, tx)
            event_id = await tx.create_base_event(
                BaseEvent(
                    schedule_id=command.schedule_id,
                    title=title,
                    start_time=command.start_time,
                    end_time=command.end_time,
                    category=command.category,
                    academy=academy,
                    event_date=command.event_date,
                )
            )
        return [event_id], command.schedule_id

    async def _create_multi_day_events(
        self, command: CreateMultiDayEvents
    ) -> tuple[list[int], int]:
        title = _event_title(command)
        _validate_times(command.start_time, command.end_time)
        weekdays = _validate_weekdays(command.weekdays)
        dates = sorted(next_date_for_weekday(command.base_date, day) for day in weekdays)

        event_ids = []
        async with self.store.transaction() as tx:
            academy = await self._academy_for(command, command.schedule_id, tx)
            for event_date in dates:
                event_ids.append(
                    await tx.create_base_event(
                        BaseEvent(
                            schedule_id=command.schedule_id,
                            title=title,
                            start_time=command.start_time,
                            end_time=command.end_time,
                            category=command.category,
                            academy=academy,
                            event_date=event_date,
                        )
                    )
                )
        return event_ids, command.schedule_id

    async def _create_series(self, command: CreateSeries) -> tuple[list[int], int]:
        title = _event_title(command)
        _validate_times(command.start_time, command.end_time)
        weekdays = _validate_weekdays(command.weekdays)
        if command.end_date is not None and command.end_date < command.start_date:
            raise TimetableValidationError("series end date must not be before its start date")
        pattern = RecurrencePattern.from_weekdays(weekdays, command.start_date, command.end_date)

        async with self.store.transaction() as tx:
            academy = await self._academy_for(command, command.schedule_id, tx)
            pattern_id = await tx.create_pattern(pattern)
            event_id = await tx.create_base_event(
                BaseEvent(
                    schedule_id=command.schedule_id,
                    title=title,
                    start_time=command.start_time,
                    end_time=command.end_time,
                    category=command.category,
                    academy=academy,
                    pattern_id=pattern_id,
                )
            )
        return [event_id], command.schedule_id

    async def _edit_series(self, command: EditSeries) -> tuple[list[int], int]:
        title = _event_title(command)
        _validate_times(command.start_time, command.end_time)
        event = await self._load_series_event(command.event_id)

        updated_pattern: Optional[RecurrencePattern] = None
        if command.weekdays is not None or command.end_date is not None:
            pattern = await self._load_pattern(event.pattern_id)
            weekdays = (
                _validate_weekdays(command.weekdays)
                if command.weekdays is not None
                else list(pattern.weekdays)
            )
            end_date = command.end_date if command.end_date is not None else pattern.end_date
            if end_date is not None and end_date < pattern.start_date:
                raise TimetableValidationError("series end date must not be before its start date")
            updated_pattern = RecurrencePattern.from_weekdays(
                weekdays, pattern.start_date, end_date, pattern_id=pattern.id
            )

        async with self.store.transaction() as tx:
            academy = await self._academy_for(command, event.schedule_id, tx)
            await tx.update_base_event(
                BaseEvent(
                    id=event.id,
                    schedule_id=event.schedule_id,
                    title=title,
                    start_time=command.start_time,
                    end_time=command.end_time,
                    category=command.category,
                    academy=academy,
                    pattern_id=event.pattern_id,
                )
            )
            if updated_pattern is not None:
                await tx.update_pattern(updated_pattern)
        return [event.id], event.schedule_id

    async def _edit_occurrence(self, command: EditOccurrence) -> tuple[list[int], int]:
        event = await self._load_series_event(command.event_id)
        await self._require_series_date(event, command.occurrence_date)

        _validate_times(command.start_time or event.start_time, command.end_time or event.end_time)
        title = command.title
        if command.category == EventCategory.ACADEMY:
            if not command.academy_name:
                raise TimetableValidationError("academy name is required for academy events")
            title = command.academy_name.strip()
        if not any(
            value is not None
            for value in (title, command.start_time, command.end_time, command.category)
        ):
            raise TimetableValidationError("occurrence edit changes nothing")

        async with self.store.transaction() as tx:
            academy = await self._academy_for(command, event.schedule_id, tx)
            exception_id = await tx.upsert_exception(
                RecurrenceException(
                    event_id=event.id,
                    exception_date=command.occurrence_date,
                    exception_type=ExceptionType.MODIFY,
                    modified_title=title,
                    modified_start_time=command.start_time,
                    modified_end_time=command.end_time,
                    modified_category=command.category,
                    modified_academy=academy,
                )
            )
        return [exception_id], event.schedule_id

    async def _cancel_occurrence(self, command: CancelOccurrence) -> tuple[list[int], int]:
        event = await self._load_series_event(command.event_id)
        await self._require_series_date(event, command.occurrence_date)

        async with self.store.transaction() as tx:
            exception_id = await tx.upsert_exception(
                RecurrenceException(
                    event_id=event.id,
                    exception_date=command.occurrence_date,
                    exception_type=ExceptionType.CANCEL,
                )
            )
        return [exception_id], event.schedule_id

    async def _restore_occurrence(self, command: RestoreOccurrence) -> tuple[list[int], int]:
        event = await self._load_series_event(command.event_id)
        exceptions = _unwrap(
            await self.store.get_exceptions_for_event(
                event.id, command.occurrence_date, command.occurrence_date
            ),
            "exceptions",
        )
        if not exceptions:
            raise TimetableNotFoundError(NOTHING_TO_RESTORE)

        async with self.store.transaction() as tx:
            if not await tx.delete_exception(exceptions[0].id):
                raise TimetableNotFoundError(NOTHING_TO_RESTORE)
        return [exceptions[0].id], event.schedule_id

    async def _delete_series(self, command: DeleteSeries) -> tuple[list[int], int]:
        event = await self._load_series_event(command.event_id)
        async with self.store.transaction() as tx:
            event_ids = await tx.soft_delete_series(event.pattern_id)
        return event_ids, event.schedule_id

    async def _delete_single_event(self, command: DeleteSingleEvent) -> tuple[list[int], int]:
        event = await self._load_event(command.event_id)
        if event.is_recurring:
            raise TimetableValidationError(
                f"event {command.event_id} belongs to a series; delete the series instead"
            )
        async with self.store.transaction() as tx:
            if not await tx.soft_delete_event(event.id):
                raise TimetableNotFoundError(f"event {event.id} not found")
        return [event.id], event.schedule_id
