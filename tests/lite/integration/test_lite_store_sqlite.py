"""Integration tests for the SQLite schedule store."""

from datetime import date, time

import pytest

from tests.fixtures.timetable_data import MONDAY, SCHEDULE_ID, count_rows, execute_sql
from timetable_lite.lite_models import (
    AcademySubject,
    BaseEvent,
    EventCategory,
    ExceptionType,
    RecurrenceException,
    RecurrencePattern,
)
from timetable_lite.lite_store import SQLiteScheduleStore, StoreStatus
from timetable_lite.timetable_exceptions import TimetableNotFoundError, TimetableStoreError

pytestmark = pytest.mark.integration


def _single(on_date: date, title: str = "Dentist", **overrides) -> BaseEvent:
    values = {
        "schedule_id": SCHEDULE_ID,
        "title": title,
        "start_time": time(15, 0),
        "end_time": time(16, 0),
        "event_date": on_date,
    }
    values.update(overrides)
    return BaseEvent(**values)


async def _create_series(store: SQLiteScheduleStore) -> tuple[int, int]:
    async with store.transaction() as tx:
        pattern_id = await tx.create_pattern(
            RecurrencePattern.from_weekdays([0, 2, 4], start_date=date(2024, 1, 1))
        )
        event_id = await tx.create_base_event(
            BaseEvent(
                schedule_id=SCHEDULE_ID,
                title="Math",
                start_time=time(10, 0),
                end_time=time(11, 0),
                category=EventCategory.STUDY,
                pattern_id=pattern_id,
            )
        )
    return pattern_id, event_id


class TestStoreReads:
    """Reads report values, not-found markers or failures."""

    async def test_initialize_creates_schema_once(self, database_path):
        store = SQLiteScheduleStore(database_path)

        assert await store.initialize()
        assert await store.initialize()
        assert database_path.exists()

    async def test_get_single_events_filters_window_schedule_and_deleted(self, sqlite_store):
        async with sqlite_store.transaction() as tx:
            inside = await tx.create_base_event(_single(MONDAY))
            await tx.create_base_event(_single(date(2024, 1, 20)))
            await tx.create_base_event(_single(MONDAY, schedule_id=SCHEDULE_ID + 1))
            deleted = await tx.create_base_event(_single(MONDAY, title="Gone"))
            await tx.soft_delete_event(deleted)

        result = await sqlite_store.get_single_events(SCHEDULE_ID, MONDAY, date(2024, 1, 14))

        assert result.ok
        assert [event.id for event in result.value] == [inside]
        assert result.value[0].start_time == time(15, 0)

    async def test_get_recurring_base_events_and_pattern(self, sqlite_store):
        pattern_id, event_id = await _create_series(sqlite_store)

        events = await sqlite_store.get_recurring_base_events(SCHEDULE_ID)
        pattern = await sqlite_store.get_pattern(pattern_id)

        assert [event.id for event in events.value] == [event_id]
        assert events.value[0].is_recurring
        assert pattern.value.weekdays == (0, 2, 4)
        assert pattern.value.end_date is None

    async def test_get_pattern_when_missing_then_not_found(self, sqlite_store):
        result = await sqlite_store.get_pattern(999)

        assert result.status == StoreStatus.NOT_FOUND
        assert result.value is None

    async def test_get_event_when_soft_deleted_then_not_found(self, sqlite_store):
        async with sqlite_store.transaction() as tx:
            event_id = await tx.create_base_event(_single(MONDAY))
            await tx.soft_delete_event(event_id)

        assert (await sqlite_store.get_event(event_id)).not_found

    async def test_read_when_row_is_corrupt_then_store_error(self, sqlite_store, database_path):
        async with sqlite_store.transaction() as tx:
            await tx.create_base_event(_single(MONDAY))
        await execute_sql(database_path, "UPDATE events SET start_time = 'noon'")

        result = await sqlite_store.get_single_events(SCHEDULE_ID, MONDAY, MONDAY)

        assert result.failed
        assert result.error_message


class TestStoreTransactions:
    """Write transactions commit together or not at all."""

    async def test_upsert_exception_replaces_row_for_same_date(self, sqlite_store, database_path):
        _, event_id = await _create_series(sqlite_store)

        async with sqlite_store.transaction() as tx:
            first = await tx.upsert_exception(
                RecurrenceException(
                    event_id=event_id,
                    exception_date=date(2024, 1, 10),
                    exception_type=ExceptionType.MODIFY,
                    modified_start_time=time(11, 0),
                    modified_end_time=time(12, 0),
                )
            )
        async with sqlite_store.transaction() as tx:
            second = await tx.upsert_exception(
                RecurrenceException(
                    event_id=event_id,
                    exception_date=date(2024, 1, 10),
                    exception_type=ExceptionType.CANCEL,
                )
            )

        result = await sqlite_store.get_exceptions_for_event(event_id, MONDAY, date(2024, 1, 14))

        assert first == second
        assert len(result.value) == 1
        assert result.value[0].exception_type == ExceptionType.CANCEL
        assert result.value[0].modified_start_time is None
        assert await count_rows(database_path, "recurrence_exceptions") == 1

    async def test_get_exceptions_for_event_filters_dates(self, sqlite_store):
        _, event_id = await _create_series(sqlite_store)
        async with sqlite_store.transaction() as tx:
            for day in (date(2024, 1, 3), date(2024, 1, 10)):
                await tx.upsert_exception(
                    RecurrenceException(
                        event_id=event_id, exception_date=day, exception_type=ExceptionType.CANCEL
                    )
                )

        result = await sqlite_store.get_exceptions_for_event(event_id, MONDAY, date(2024, 1, 14))

        assert [exception.exception_date for exception in result.value] == [date(2024, 1, 10)]

    async def test_transaction_when_body_raises_then_rolled_back(self, sqlite_store, database_path):
        with pytest.raises(RuntimeError):
            async with sqlite_store.transaction() as tx:
                await tx.create_base_event(_single(MONDAY))
                raise RuntimeError("abort")

        assert await count_rows(database_path, "events") == 0

    async def test_transaction_when_sqlite_fails_then_store_error(self, sqlite_store, database_path):
        with pytest.raises(TimetableStoreError):
            async with sqlite_store.transaction() as tx:
                await tx.create_pattern(
                    RecurrencePattern.from_weekdays([0], start_date=MONDAY)
                )
                # Violates the single-xor-recurring CHECK constraint
                await tx._db.execute(
                    "INSERT INTO events (schedule_id, title, start_time, end_time) "
                    "VALUES (1, 'x', '09:00', '10:00')"
                )

        assert await count_rows(database_path, "recurring_patterns") == 0

    async def test_update_base_event_when_missing_then_not_found(self, sqlite_store):
        with pytest.raises(TimetableNotFoundError):
            async with sqlite_store.transaction() as tx:
                await tx.update_base_event(_single(MONDAY, id=404))

    async def test_find_or_create_academy_reuses_live_match(self, sqlite_store, database_path):
        async with sqlite_store.transaction() as tx:
            first = await tx.find_or_create_academy("Math Plus", AcademySubject.MATH, SCHEDULE_ID)
            again = await tx.find_or_create_academy("Math Plus", AcademySubject.MATH, SCHEDULE_ID)
            other_subject = await tx.find_or_create_academy(
                "Math Plus", AcademySubject.ENGLISH, SCHEDULE_ID
            )

        assert first == again
        assert other_subject != first
        assert await count_rows(database_path, "academies") == 2

    async def test_soft_delete_series_hides_events_and_pattern(self, sqlite_store):
        pattern_id, event_id = await _create_series(sqlite_store)

        async with sqlite_store.transaction() as tx:
            deleted = await tx.soft_delete_series(pattern_id)

        assert deleted == [event_id]
        assert (await sqlite_store.get_recurring_base_events(SCHEDULE_ID)).value == []
        assert (await sqlite_store.get_pattern(pattern_id)).not_found

    async def test_soft_delete_series_when_unknown_then_not_found(self, sqlite_store):
        with pytest.raises(TimetableNotFoundError):
            async with sqlite_store.transaction() as tx:
                await tx.soft_delete_series(404)
