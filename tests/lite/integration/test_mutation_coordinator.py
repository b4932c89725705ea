"""Integration tests for MutationCoordinator against a real SQLite store."""

from datetime import date, time

import pytest

from tests.fixtures.timetable_data import (
    MONDAY,
    SCHEDULE_ID,
    StubResolver,
    count_rows,
    execute_sql,
)
from timetable_lite.lite_event_resolver import LiteEventResolver
from timetable_lite.lite_models import (
    AcademySubject,
    CancelOccurrence,
    CreateMultiDayEvents,
    CreateSeries,
    CreateSingleEvent,
    DeleteSeries,
    DeleteSingleEvent,
    EditOccurrence,
    EditSeries,
    EventCategory,
    OccurrenceState,
    RestoreOccurrence,
    WindowKey,
)
from timetable_lite.mutation_coordinator import NOTHING_TO_RESTORE, MutationCoordinator
from timetable_lite.timetable_exceptions import TimetableNotFoundError
from timetable_lite.window_cache import WindowCache

pytestmark = pytest.mark.integration

WEDNESDAY = date(2024, 1, 10)


def _series(**overrides) -> CreateSeries:
    values = {
        "schedule_id": SCHEDULE_ID,
        "title": "Math",
        "start_time": time(10, 0),
        "end_time": time(11, 0),
        "category": EventCategory.STUDY,
        "weekdays": [0, 2, 4],
        "start_date": date(2024, 1, 1),
    }
    values.update(overrides)
    return CreateSeries(**values)


async def _create(coordinator, command) -> int:
    outcome = await coordinator.mutate(command)
    assert outcome.success, outcome.error_message
    return outcome.affected_ids[0]


class TestCreateCommands:
    """Create single, multi-day and series events."""

    async def test_create_single_event(self, coordinator, sqlite_store):
        outcome = await coordinator.mutate(
            CreateSingleEvent(
                schedule_id=SCHEDULE_ID,
                title="  Dentist ",
                start_time=time(15, 0),
                end_time=time(16, 0),
                event_date=MONDAY,
            )
        )

        assert outcome.success
        assert outcome.invalidated_schedule_id == SCHEDULE_ID
        stored = (await sqlite_store.get_event(outcome.affected_ids[0])).value
        assert stored.title == "Dentist"
        assert stored.event_date == MONDAY

    async def test_create_multi_day_events_uses_next_date_per_weekday(self, coordinator, sqlite_store):
        outcome = await coordinator.mutate(
            CreateMultiDayEvents(
                schedule_id=SCHEDULE_ID,
                title="Swim",
                start_time=time(17, 0),
                end_time=time(18, 0),
                base_date=WEDNESDAY,
                weekdays=[0, 4, 2],
            )
        )

        assert outcome.success
        dates = [(await sqlite_store.get_event(i)).value.event_date for i in outcome.affected_ids]
        assert dates == [WEDNESDAY, date(2024, 1, 12), date(2024, 1, 15)]

    async def test_create_series_with_academy_titles_event_after_academy(
        self, coordinator, sqlite_store
    ):
        event_id = await _create(
            coordinator,
            _series(
                title="",
                category=EventCategory.ACADEMY,
                academy_name="Math Plus",
                academy_subject=AcademySubject.MATH,
            ),
        )

        stored = (await sqlite_store.get_event(event_id)).value
        assert stored.title == "Math Plus"
        assert stored.academy.name == "Math Plus"
        assert stored.academy.subject == AcademySubject.MATH

    async def test_create_series_reuses_existing_academy(self, coordinator, database_path):
        academy_series = _series(
            category=EventCategory.ACADEMY, academy_name="Math Plus", academy_subject=AcademySubject.MATH
        )
        await _create(coordinator, academy_series)
        await _create(coordinator, academy_series.model_copy(update={"weekdays": [1]}))

        assert await count_rows(database_path, "academies") == 1

    @pytest.mark.parametrize(
        ("overrides", "message"),
        [
            ({"weekdays": []}, "weekday"),
            ({"weekdays": [7]}, "weekday"),
            ({"start_time": time(11, 0)}, "start time"),
            ({"title": "   "}, "title"),
            ({"category": EventCategory.ACADEMY, "academy_name": ""}, "academy name"),
            ({"end_date": date(2023, 12, 1)}, "end date"),
        ],
    )
    async def test_create_series_validation_rejects_before_write(
        self, coordinator, database_path, overrides, message
    ):
        outcome = await coordinator.mutate(_series(**overrides))

        assert not outcome.success
        assert message in outcome.error_message
        assert await count_rows(database_path, "recurring_patterns") == 0
        assert await count_rows(database_path, "events") == 0

    async def test_create_series_failure_leaves_no_orphan_academy(self, coordinator, database_path):
        await execute_sql(
            database_path,
            """
            CREATE TRIGGER reject_events BEFORE INSERT ON events
            BEGIN SELECT RAISE(ABORT, 'events are read-only'); END
            """,
        )

        outcome = await coordinator.mutate(
            _series(category=EventCategory.ACADEMY, academy_name="Math Plus")
        )

        assert not outcome.success
        assert "read-only" in outcome.error_message
        assert await count_rows(database_path, "academies") == 0
        assert await count_rows(database_path, "recurring_patterns") == 0


class TestOccurrenceStateMachine:
    """unmodified -> modified/cancelled -> unmodified."""

    async def test_edit_cancel_restore_cycle(self, coordinator):
        event_id = await _create(coordinator, _series())
        state = coordinator.occurrence_state

        assert await state(event_id, WEDNESDAY) == OccurrenceState.UNMODIFIED

        edited = await coordinator.mutate(
            EditOccurrence(event_id=event_id, occurrence_date=WEDNESDAY, title="Math exam")
        )
        assert edited.success
        assert await state(event_id, WEDNESDAY) == OccurrenceState.MODIFIED

        cancelled = await coordinator.mutate(
            CancelOccurrence(event_id=event_id, occurrence_date=WEDNESDAY)
        )
        assert cancelled.success
        assert cancelled.affected_ids == edited.affected_ids
        assert await state(event_id, WEDNESDAY) == OccurrenceState.CANCELLED

        restored = await coordinator.mutate(
            RestoreOccurrence(event_id=event_id, occurrence_date=WEDNESDAY)
        )
        assert restored.success
        assert await state(event_id, WEDNESDAY) == OccurrenceState.UNMODIFIED

    @pytest.mark.parametrize(
        "change",
        [
            {"title": "Math exam", "start_time": time(9, 0)},
            None,
        ],
        ids=["edit", "cancel"],
    )
    async def test_restore_when_date_changed_then_base_occurrence_identical(
        self, coordinator, sqlite_store, change
    ):
        event_id = await _create(coordinator, _series())
        resolver = LiteEventResolver(sqlite_store)
        before = (await resolver.resolve(SCHEDULE_ID, WEDNESDAY, WEDNESDAY)).occurrences

        if change is None:
            command = CancelOccurrence(event_id=event_id, occurrence_date=WEDNESDAY)
        else:
            command = EditOccurrence(event_id=event_id, occurrence_date=WEDNESDAY, **change)
        assert (await coordinator.mutate(command)).success
        changed = (await resolver.resolve(SCHEDULE_ID, WEDNESDAY, WEDNESDAY)).occurrences
        assert changed != before

        restored = await coordinator.mutate(
            RestoreOccurrence(event_id=event_id, occurrence_date=WEDNESDAY)
        )
        after = (await resolver.resolve(SCHEDULE_ID, WEDNESDAY, WEDNESDAY)).occurrences

        assert restored.success
        assert len(before) == 1
        assert after == before
        assert [o.model_dump_json() for o in after] == [o.model_dump_json() for o in before]

    async def test_occurrence_state_when_series_deleted_then_not_found(self, coordinator):
        event_id = await _create(coordinator, _series())
        await coordinator.mutate(CancelOccurrence(event_id=event_id, occurrence_date=WEDNESDAY))
        await coordinator.mutate(
            EditOccurrence(event_id=event_id, occurrence_date=date(2024, 1, 12), title="Quiz")
        )

        assert (await coordinator.mutate(DeleteSeries(event_id=event_id))).success

        for occurrence_date in (WEDNESDAY, date(2024, 1, 12)):
            with pytest.raises(TimetableNotFoundError):
                await coordinator.occurrence_state(event_id, occurrence_date)

    async def test_restore_when_unmodified_then_nothing_to_restore(self, coordinator):
        event_id = await _create(coordinator, _series())

        outcome = await coordinator.mutate(
            RestoreOccurrence(event_id=event_id, occurrence_date=WEDNESDAY)
        )

        assert not outcome.success
        assert outcome.error_message == NOTHING_TO_RESTORE

    async def test_edit_occurrence_on_non_series_date_rejected(self, coordinator):
        event_id = await _create(coordinator, _series())

        outcome = await coordinator.mutate(
            EditOccurrence(event_id=event_id, occurrence_date=date(2024, 1, 9), title="Tuesday?")
        )

        assert not outcome.success
        assert "not a date of series" in outcome.error_message

    async def test_edit_occurrence_with_no_changes_rejected(self, coordinator):
        event_id = await _create(coordinator, _series())

        outcome = await coordinator.mutate(
            EditOccurrence(event_id=event_id, occurrence_date=WEDNESDAY, title="  ")
        )

        assert not outcome.success
        assert "changes nothing" in outcome.error_message

    async def test_edit_occurrence_with_inverted_effective_times_rejected(self, coordinator):
        event_id = await _create(coordinator, _series())

        outcome = await coordinator.mutate(
            EditOccurrence(event_id=event_id, occurrence_date=WEDNESDAY, start_time=time(11, 30))
        )

        assert not outcome.success
        assert "start time" in outcome.error_message

    async def test_edit_occurrence_academy_override(self, coordinator, sqlite_store):
        event_id = await _create(coordinator, _series())

        outcome = await coordinator.mutate(
            EditOccurrence(
                event_id=event_id,
                occurrence_date=WEDNESDAY,
                category=EventCategory.ACADEMY,
                academy_name="English Hub",
                academy_subject=AcademySubject.ENGLISH,
            )
        )

        assert outcome.success
        exceptions = (
            await sqlite_store.get_exceptions_for_event(event_id, WEDNESDAY, WEDNESDAY)
        ).value
        assert exceptions[0].modified_title == "English Hub"
        assert exceptions[0].modified_academy.subject == AcademySubject.ENGLISH

    async def test_cancel_on_single_event_rejected(self, coordinator):
        event_id = await _create(
            coordinator,
            CreateSingleEvent(
                schedule_id=SCHEDULE_ID,
                title="Dentist",
                start_time=time(15, 0),
                end_time=time(16, 0),
                event_date=WEDNESDAY,
            ),
        )

        outcome = await coordinator.mutate(CancelOccurrence(event_id=event_id, occurrence_date=WEDNESDAY))

        assert not outcome.success
        assert "not part of a series" in outcome.error_message


class TestSeriesEditsAndDeletes:
    """Edit and delete whole series or single events."""

    async def test_edit_series_updates_fields_and_pattern(self, coordinator, sqlite_store):
        event_id = await _create(coordinator, _series())

        outcome = await coordinator.mutate(
            EditSeries(
                event_id=event_id,
                title="Algebra",
                start_time=time(13, 0),
                end_time=time(14, 0),
                category=EventCategory.STUDY,
                weekdays=[1, 3],
                end_date=date(2024, 2, 29),
            )
        )

        assert outcome.success
        event = (await sqlite_store.get_event(event_id)).value
        pattern = (await sqlite_store.get_pattern(event.pattern_id)).value
        assert event.title == "Algebra"
        assert event.start_time == time(13, 0)
        assert pattern.weekdays == (1, 3)
        assert pattern.start_date == date(2024, 1, 1)
        assert pattern.end_date == date(2024, 2, 29)

    async def test_edit_series_keeps_existing_exceptions(self, coordinator):
        event_id = await _create(coordinator, _series())
        await coordinator.mutate(CancelOccurrence(event_id=event_id, occurrence_date=WEDNESDAY))

        await coordinator.mutate(
            EditSeries(event_id=event_id, title="Algebra", start_time=time(9, 0), end_time=time(10, 0))
        )

        assert await coordinator.occurrence_state(event_id, WEDNESDAY) == OccurrenceState.CANCELLED

    async def test_edit_series_when_event_deleted_then_not_found(self, coordinator):
        outcome = await coordinator.mutate(
            EditSeries(event_id=404, title="Ghost", start_time=time(9, 0), end_time=time(10, 0))
        )

        assert not outcome.success
        assert "404" in outcome.error_message

    async def test_delete_series_soft_deletes(self, coordinator, sqlite_store, database_path):
        event_id = await _create(coordinator, _series())

        outcome = await coordinator.mutate(DeleteSeries(event_id=event_id))

        assert outcome.success
        assert outcome.affected_ids == [event_id]
        assert (await sqlite_store.get_event(event_id)).not_found
        assert await count_rows(database_path, "events", "del_yn = 1") == 1

    async def test_delete_single_event_rejects_series_member(self, coordinator):
        event_id = await _create(coordinator, _series())

        outcome = await coordinator.mutate(DeleteSingleEvent(event_id=event_id))

        assert not outcome.success
        assert "delete the series" in outcome.error_message

    async def test_delete_single_event(self, coordinator, sqlite_store):
        event_id = await _create(
            coordinator,
            CreateSingleEvent(
                schedule_id=SCHEDULE_ID,
                title="Dentist",
                start_time=time(15, 0),
                end_time=time(16, 0),
                event_date=WEDNESDAY,
            ),
        )

        assert (await coordinator.mutate(DeleteSingleEvent(event_id=event_id))).success
        assert (await sqlite_store.get_event(event_id)).not_found


class TestCacheInvalidation:
    """Successful writes invalidate the schedule's cached windows."""

    async def test_mutate_success_invalidates_schedule(self, sqlite_store, clock):
        cache = WindowCache(StubResolver(), clock=clock)
        key = WindowKey(SCHEDULE_ID, MONDAY, date(2024, 1, 12))
        await cache.get(key)
        coordinator = MutationCoordinator(sqlite_store, cache)

        outcome = await coordinator.mutate(_series())

        assert outcome.success
        assert cache.peek(key) is None
        assert cache.stats["invalidations"] == 1

    async def test_mutate_failure_keeps_cache(self, sqlite_store, clock):
        cache = WindowCache(StubResolver(), clock=clock)
        key = WindowKey(SCHEDULE_ID, MONDAY, date(2024, 1, 12))
        await cache.get(key)
        coordinator = MutationCoordinator(sqlite_store, cache)

        outcome = await coordinator.mutate(_series(weekdays=[]))

        assert not outcome.success
        assert cache.peek(key) is not None
        assert cache.stats["invalidations"] == 0

    async def test_mutate_unknown_command_type_raises(self, coordinator):
        with pytest.raises(TypeError):
            await coordinator.mutate(object())
