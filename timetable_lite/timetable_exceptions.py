"""Custom exception hierarchy for timetable resolution and mutation errors.

This module provides specific exception types in place of generic Exception
handling, so callers can tell rejected input apart from storage failures and
report each per operation.
"""


class TimetableError(Exception):
    """Base exception for all timetable errors.

    All custom exceptions in the timetable engine inherit from this base
    class to enable centralized exception handling.
    """


class TimetableValidationError(TimetableError):
    """Input validation failed.

    Raised when:
    - A recurrence pattern has no weekday flag set
    - Start time is not before end time
    - A title (or academy name for academy events) is blank
    - A query window starts after it ends
    - An occurrence date is not produced by its series

    Always raised before any write reaches the store.
    """


class TimetableStoreError(TimetableError):
    """Persistent store operation failed.

    Raised inside store transactions when SQLite reports an error. The
    transaction is rolled back before this propagates.
    """


class TimetableNotFoundError(TimetableError):
    """A referenced row does not exist or has been soft-deleted.

    Raised when:
    - A mutation targets an event id that is unknown or deleted
    - A series operation targets a single event (or the reverse)
    - An update matched no rows
    """
