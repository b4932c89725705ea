"""SQLite persistence for timetable events, patterns, exceptions and academies."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from datetime import date, time
from enum import Enum
from pathlib import Path
from typing import Any, Generic, Optional, Protocol, TypeVar, Union

import aiosqlite

from .lite_models import (
    WEEKDAY_FIELDS,
    AcademyRef,
    AcademySubject,
    BaseEvent,
    RecurrenceException,
    RecurrencePattern,
)
from .timetable_exceptions import TimetableNotFoundError, TimetableStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Row conversion errors (pydantic.ValidationError is a ValueError) are reported
# as store failures alongside SQLite errors.
_READ_ERRORS = (aiosqlite.Error, TimetableStoreError, ValueError)


class StoreStatus(str, Enum):
    """Outcome classes of a store read."""

    OK = "ok"
    NOT_FOUND = "not_found"
    STORE_ERROR = "store_error"


@dataclass
class StoreResult(Generic[T]):
    """Typed outcome of a store read: a value, a not-found marker or an error."""

    status: StoreStatus
    value: Optional[T] = None
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == StoreStatus.OK

    @property
    def not_found(self) -> bool:
        return self.status == StoreStatus.NOT_FOUND

    @property
    def failed(self) -> bool:
        return self.status == StoreStatus.STORE_ERROR

    @classmethod
    def success(cls, value: T) -> "StoreResult[T]":
        return cls(status=StoreStatus.OK, value=value)

    @classmethod
    def missing(cls, message: str) -> "StoreResult[T]":
        return cls(status=StoreStatus.NOT_FOUND, error_message=message)

    @classmethod
    def failure(cls, message: str) -> "StoreResult[T]":
        return cls(status=StoreStatus.STORE_ERROR, error_message=message)


class ScheduleStore(Protocol):
    """Read and transactional write access to stored timetable data."""

    async def get_single_events(
        self, schedule_id: int, start: date, end: date
    ) -> StoreResult[list[BaseEvent]]: ...

    async def get_recurring_base_events(self, schedule_id: int) -> StoreResult[list[BaseEvent]]: ...

    async def get_pattern(self, pattern_id: int) -> StoreResult[RecurrencePattern]: ...

    async def get_exceptions_for_event(
        self, event_id: int, start: date, end: date
    ) -> StoreResult[list[RecurrenceException]]: ...

    async def get_event(self, event_id: int) -> StoreResult[BaseEvent]: ...

    def transaction(self) -> AbstractAsyncContextManager["StoreTransaction"]: ...


_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS academies (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        schedule_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        subject TEXT NOT NULL DEFAULT 'other',
        status TEXT NOT NULL DEFAULT 'active',
        del_yn INTEGER NOT NULL DEFAULT 0,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS recurring_patterns (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        monday INTEGER NOT NULL DEFAULT 0,
        tuesday INTEGER NOT NULL DEFAULT 0,
        wednesday INTEGER NOT NULL DEFAULT 0,
        thursday INTEGER NOT NULL DEFAULT 0,
        friday INTEGER NOT NULL DEFAULT 0,
        saturday INTEGER NOT NULL DEFAULT 0,
        sunday INTEGER NOT NULL DEFAULT 0,
        start_date TEXT NOT NULL,
        end_date TEXT,
        del_yn INTEGER NOT NULL DEFAULT 0,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        schedule_id INTEGER NOT NULL,
        title TEXT NOT NULL,
        start_time TEXT NOT NULL,
        end_time TEXT NOT NULL,
        category TEXT NOT NULL DEFAULT 'none',
        academy_id INTEGER,
        event_date TEXT,
        pattern_id INTEGER,
        del_yn INTEGER NOT NULL DEFAULT 0,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        CHECK ((event_date IS NULL) <> (pattern_id IS NULL)),
        FOREIGN KEY (academy_id) REFERENCES academies(id),
        FOREIGN KEY (pattern_id) REFERENCES recurring_patterns(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS recurrence_exceptions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        event_id INTEGER NOT NULL,
        exception_date TEXT NOT NULL,
        exception_type TEXT NOT NULL CHECK (exception_type IN ('modify', 'cancel')),
        modified_title TEXT,
        modified_start_time TEXT,
        modified_end_time TEXT,
        modified_category TEXT,
        modified_academy_id INTEGER,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (event_id, exception_date),
        FOREIGN KEY (event_id) REFERENCES events(id),
        FOREIGN KEY (modified_academy_id) REFERENCES academies(id)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_events_schedule_date
    ON events(schedule_id, event_date)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_events_pattern_id
    ON events(pattern_id)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_academies_lookup
    ON academies(schedule_id, name, subject)
    """,
)

_EVENT_SELECT = """
    SELECT e.id, e.schedule_id, e.title, e.start_time, e.end_time, e.category,
           e.event_date, e.pattern_id, e.academy_id,
           a.name AS academy_name, a.subject AS academy_subject
    FROM events e
    LEFT JOIN academies a ON a.id = e.academy_id
"""

_EXCEPTION_SELECT = """
    SELECT x.id, x.event_id, x.exception_date, x.exception_type, x.modified_title,
           x.modified_start_time, x.modified_end_time, x.modified_category,
           x.modified_academy_id AS academy_id,
           a.name AS academy_name, a.subject AS academy_subject
    FROM recurrence_exceptions x
    LEFT JOIN academies a ON a.id = x.modified_academy_id
"""


def _format_time(value: Optional[time]) -> Optional[str]:
    return value.isoformat(timespec="minutes") if value is not None else None


def _format_date(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _academy_from_row(row: aiosqlite.Row) -> Optional[AcademyRef]:
    if row["academy_id"] is None or row["academy_name"] is None:
        return None
    return AcademyRef(
        id=row["academy_id"],
        name=row["academy_name"],
        subject=row["academy_subject"] or AcademySubject.OTHER,
    )


def _event_from_row(row: aiosqlite.Row) -> BaseEvent:
    return BaseEvent(
        id=row["id"],
        schedule_id=row["schedule_id"],
        title=row["title"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        category=row["category"],
        academy=_academy_from_row(row),
        event_date=row["event_date"],
        pattern_id=row["pattern_id"],
    )


def _exception_from_row(row: aiosqlite.Row) -> RecurrenceException:
    return RecurrenceException(
        id=row["id"],
        event_id=row["event_id"],
        exception_date=row["exception_date"],
        exception_type=row["exception_type"],
        modified_title=row["modified_title"],
        modified_start_time=row["modified_start_time"],
        modified_end_time=row["modified_end_time"],
        modified_category=row["modified_category"],
        modified_academy=_academy_from_row(row),
    )


def _pattern_from_row(row: aiosqlite.Row) -> RecurrencePattern:
    flags = {name: bool(row[name]) for name in WEEKDAY_FIELDS}
    return RecurrencePattern(
        id=row["id"], start_date=row["start_date"], end_date=row["end_date"], **flags
    )


class StoreTransaction:
    """Write operations bound to one open SQLite transaction.

    Methods raise aiosqlite errors or TimetableNotFoundError; the owning
    transaction() context rolls back on any exception.
    """

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def create_pattern(self, pattern: RecurrencePattern) -> int:
        columns = ", ".join(WEEKDAY_FIELDS)
        placeholders = ", ".join("?" for _ in WEEKDAY_FIELDS)
        cursor = await self._db.execute(
            f"""
            INSERT INTO recurring_patterns ({columns}, start_date, end_date)
            VALUES ({placeholders}, ?, ?)
            """,
            (
                *(int(getattr(pattern, name)) for name in WEEKDAY_FIELDS),
                _format_date(pattern.start_date),
                _format_date(pattern.end_date),
            ),
        )
        return cursor.lastrowid

    async def update_pattern(self, pattern: RecurrencePattern) -> None:
        assignments = ", ".join(f"{name} = ?" for name in WEEKDAY_FIELDS)
        cursor = await self._db.execute(
            f"""
            UPDATE recurring_patterns
            SET {assignments}, start_date = ?, end_date = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND del_yn = 0
            """,
            (
                *(int(getattr(pattern, name)) for name in WEEKDAY_FIELDS),
                _format_date(pattern.start_date),
                _format_date(pattern.end_date),
                pattern.id,
            ),
        )
        if cursor.rowcount == 0:
            raise TimetableNotFoundError(f"pattern {pattern.id} not found")

    async def create_base_event(self, event: BaseEvent) -> int:
        cursor = await self._db.execute(
            """
            INSERT INTO events (schedule_id, title, start_time, end_time, category,
                                academy_id, event_date, pattern_id)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.schedule_id,
                event.title,
                _format_time(event.start_time),
                _format_time(event.end_time),
                event.category.value,
                event.academy.id if event.academy else None,
                _format_date(event.event_date),
                event.pattern_id,
            ),
        )
        return cursor.lastrowid

    async def update_base_event(self, event: BaseEvent) -> None:
        cursor = await self._db.execute(
            """
            UPDATE events
            SET title = ?, start_time = ?, end_time = ?, category = ?, academy_id = ?,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND del_yn = 0
            """,
            (
                event.title,
                _format_time(event.start_time),
                _format_time(event.end_time),
                event.category.value,
                event.academy.id if event.academy else None,
                event.id,
            ),
        )
        if cursor.rowcount == 0:
            raise TimetableNotFoundError(f"event {event.id} not found")

    async def upsert_exception(self, exception: RecurrenceException) -> int:
        """Insert or replace the single exception stored for (event, date)."""
        await self._db.execute(
            """
            INSERT INTO recurrence_exceptions (
                event_id, exception_date, exception_type, modified_title,
                modified_start_time, modified_end_time, modified_category, modified_academy_id
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (event_id, exception_date) DO UPDATE SET
                exception_type = excluded.exception_type,
                modified_title = excluded.modified_title,
                modified_start_time = excluded.modified_start_time,
                modified_end_time = excluded.modified_end_time,
                modified_category = excluded.modified_category,
                modified_academy_id = excluded.modified_academy_id,
                updated_at = CURRENT_TIMESTAMP
            """,
            (
                exception.event_id,
                _format_date(exception.exception_date),
                exception.exception_type.value,
                exception.modified_title,
                _format_time(exception.modified_start_time),
                _format_time(exception.modified_end_time),
                exception.modified_category.value if exception.modified_category else None,
                exception.modified_academy.id if exception.modified_academy else None,
            ),
        )
        # lastrowid is unreliable when the conflict branch ran
        cursor = await self._db.execute(
            "SELECT id FROM recurrence_exceptions WHERE event_id = ? AND exception_date = ?",
            (exception.event_id, _format_date(exception.exception_date)),
        )
        row = await cursor.fetchone()
        return row["id"]

    async def delete_exception(self, exception_id: int) -> bool:
        cursor = await self._db.execute(
            "DELETE FROM recurrence_exceptions WHERE id = ?", (exception_id,)
        )
        return cursor.rowcount > 0

    async def soft_delete_series(self, pattern_id: int) -> list[int]:
        """Soft-delete a pattern and every live base event referencing it.

        Returns:
            Ids of the events that were deleted
        """
        cursor = await self._db.execute(
            "SELECT id FROM events WHERE pattern_id = ? AND del_yn = 0 ORDER BY id",
            (pattern_id,),
        )
        event_ids = [row["id"] for row in await cursor.fetchall()]
        await self._db.execute(
            """
            UPDATE events SET del_yn = 1, updated_at = CURRENT_TIMESTAMP
            WHERE pattern_id = ? AND del_yn = 0
            """,
            (pattern_id,),
        )
        cursor = await self._db.execute(
            """
            UPDATE recurring_patterns SET del_yn = 1, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND del_yn = 0
            """,
            (pattern_id,),
        )
        if cursor.rowcount == 0 and not event_ids:
            raise TimetableNotFoundError(f"pattern {pattern_id} not found")
        return event_ids

    async def soft_delete_event(self, event_id: int) -> bool:
        cursor = await self._db.execute(
            """
            UPDATE events SET del_yn = 1, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND del_yn = 0
            """,
            (event_id,),
        )
        return cursor.rowcount > 0

    async def find_or_create_academy(
        self, name: str, subject: AcademySubject, schedule_id: int
    ) -> int:
        """Return the id of the live academy matching (name, subject), creating it if absent."""
        cursor = await self._db.execute(
            """
            SELECT id FROM academies
            WHERE schedule_id = ? AND name = ? AND subject = ? AND del_yn = 0
            ORDER BY id LIMIT 1
            """,
            (schedule_id, name, subject.value),
        )
        row = await cursor.fetchone()
        if row is not None:
            return row["id"]

        cursor = await self._db.execute(
            "INSERT INTO academies (schedule_id, name, subject, status) VALUES (?, ?, ?, 'active')",
            (schedule_id, name, subject.value),
        )
        logger.debug("Created academy %r (%s) for schedule %s", name, subject.value, schedule_id)
        return cursor.lastrowid


class SQLiteScheduleStore:
    """Timetable store backed by a SQLite file through aiosqlite.

    Each operation opens its own connection. In-memory databases are not
    supported because the schema would not survive between connections.
    """

    def __init__(self, database_path: Union[Path, str]):
        """Initialize the store (schema is created lazily on first use).

        Args:
            database_path: Path to SQLite database file
        """
        self.database_path = Path(database_path)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialized = False
        self._initialization_lock: Optional[asyncio.Lock] = None

        logger.info("Schedule store initialized (lazy): %s", self.database_path)

    async def _ensure_initialized(self) -> bool:
        """Ensure the schema exists before operations.

        Returns:
            True if initialization successful, False otherwise
        """
        if self._initialized:
            return True

        if self._initialization_lock is None:
            self._initialization_lock = asyncio.Lock()

        async with self._initialization_lock:
            # Double-check after acquiring lock
            if self._initialized:
                return True

            try:
                async with aiosqlite.connect(str(self.database_path)) as db:
                    await db.execute("PRAGMA journal_mode=WAL")
                    await db.execute("PRAGMA synchronous=NORMAL")
                    await db.execute("PRAGMA foreign_keys=ON")
                    for statement in _SCHEMA_STATEMENTS:
                        await db.execute(statement)
                    await db.commit()
            except aiosqlite.Error:
                logger.exception("Failed to initialize database")
                return False

            self._initialized = True
            logger.info("Database schema initialized successfully")
            return True

    async def initialize(self) -> bool:
        """Create the schema eagerly.

        Returns:
            True if initialization successful, False otherwise
        """
        return await self._ensure_initialized()

    async def _fetch_rows(self, query: str, params: tuple[Any, ...]) -> list[aiosqlite.Row]:
        if not await self._ensure_initialized():
            raise TimetableStoreError("database is not available")
        async with aiosqlite.connect(str(self.database_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(query, params)
            return list(await cursor.fetchall())

    async def get_single_events(
        self, schedule_id: int, start: date, end: date
    ) -> StoreResult[list[BaseEvent]]:
        """Get live single events dated inside [start, end], in record order."""
        try:
            rows = await self._fetch_rows(
                _EVENT_SELECT
                + """
                WHERE e.schedule_id = ? AND e.del_yn = 0 AND e.pattern_id IS NULL
                  AND e.event_date BETWEEN ? AND ?
                ORDER BY e.id
                """,
                (schedule_id, _format_date(start), _format_date(end)),
            )
            return StoreResult.success([_event_from_row(row) for row in rows])
        except _READ_ERRORS as e:
            logger.exception("Failed to load single events for schedule %s", schedule_id)
            return StoreResult.failure(str(e))

    async def get_recurring_base_events(self, schedule_id: int) -> StoreResult[list[BaseEvent]]:
        """Get live recurring base events of a schedule, in record order."""
        try:
            rows = await self._fetch_rows(
                _EVENT_SELECT
                + """
                WHERE e.schedule_id = ? AND e.del_yn = 0 AND e.pattern_id IS NOT NULL
                ORDER BY e.id
                """,
                (schedule_id,),
            )
            return StoreResult.success([_event_from_row(row) for row in rows])
        except _READ_ERRORS as e:
            logger.exception("Failed to load recurring events for schedule %s", schedule_id)
            return StoreResult.failure(str(e))

    async def get_pattern(self, pattern_id: int) -> StoreResult[RecurrencePattern]:
        try:
            rows = await self._fetch_rows(
                "SELECT * FROM recurring_patterns WHERE id = ? AND del_yn = 0", (pattern_id,)
            )
            if not rows:
                return StoreResult.missing(f"pattern {pattern_id} not found")
            return StoreResult.success(_pattern_from_row(rows[0]))
        except _READ_ERRORS as e:
            logger.exception("Failed to load pattern %s", pattern_id)
            return StoreResult.failure(str(e))

    async def get_exceptions_for_event(
        self, event_id: int, start: date, end: date
    ) -> StoreResult[list[RecurrenceException]]:
        """Get exceptions of one recurring event dated inside [start, end]."""
        try:
            rows = await self._fetch_rows(
                _EXCEPTION_SELECT
                + """
                WHERE x.event_id = ? AND x.exception_date BETWEEN ? AND ?
                ORDER BY x.exception_date
                """,
                (event_id, _format_date(start), _format_date(end)),
            )
            return StoreResult.success([_exception_from_row(row) for row in rows])
        except _READ_ERRORS as e:
            logger.exception("Failed to load exceptions for event %s", event_id)
            return StoreResult.failure(str(e))

    async def get_event(self, event_id: int) -> StoreResult[BaseEvent]:
        try:
            rows = await self._fetch_rows(
                _EVENT_SELECT + " WHERE e.id = ? AND e.del_yn = 0", (event_id,)
            )
            if not rows:
                return StoreResult.missing(f"event {event_id} not found")
            return StoreResult.success(_event_from_row(rows[0]))
        except _READ_ERRORS as e:
            logger.exception("Failed to load event %s", event_id)
            return StoreResult.failure(str(e))

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        """Open one SQLite transaction, committing on success and rolling back on error.

        Raises:
            TimetableStoreError: If the database is unavailable or SQLite reports an error
        """
        if not await self._ensure_initialized():
            raise TimetableStoreError("database is not available")

        try:
            async with aiosqlite.connect(str(self.database_path), isolation_level=None) as db:
                db.row_factory = aiosqlite.Row
                await db.execute("PRAGMA foreign_keys=ON")
                await db.execute("BEGIN IMMEDIATE")
                try:
                    yield StoreTransaction(db)
                except BaseException:
                    await db.execute("ROLLBACK")
                    logger.debug("Store transaction rolled back")
                    raise
                await db.execute("COMMIT")
        except aiosqlite.Error as e:
            logger.exception("Store transaction failed")
            raise TimetableStoreError(str(e)) from e
