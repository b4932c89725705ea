"""Data models for weekly timetable resolution - Timetable Lite version."""

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Annotated, Iterable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

# Flag names ordered by date.weekday() (Monday == 0)
WEEKDAY_FIELDS: tuple[str, ...] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def normalize_blank(value):
    """Convert blank strings to None, leaving every other value untouched."""
    if isinstance(value, str) and not value.strip():
        return None
    return value


class EventCategory(str, Enum):
    """Kinds of timetable entries."""

    SCHOOL = "school"
    ACADEMY = "academy"
    STUDY = "study"
    REST = "rest"
    NONE = "none"


class AcademySubject(str, Enum):
    """Subjects an academy can teach."""

    KOREAN = "korean"
    MATH = "math"
    ENGLISH = "english"
    ARTS_PE = "arts_pe"
    SOCIAL_SCIENCE = "social_science"
    OTHER = "other"


class ExceptionType(str, Enum):
    """Per-date override kinds for recurring events."""

    MODIFY = "modify"
    CANCEL = "cancel"


class OccurrenceState(str, Enum):
    """State of one date of a recurring series."""

    UNMODIFIED = "unmodified"
    MODIFIED = "modified"
    CANCELLED = "cancelled"


class AcademyRef(BaseModel):
    """Academy reference joined onto events and exceptions."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    subject: AcademySubject = AcademySubject.OTHER


class RecurrencePattern(BaseModel):
    """Weekly recurrence rule shared by the base events of one series.

    The model accepts patterns without weekday flags so legacy rows can still
    be loaded; such patterns expand to nothing. Commands that create or edit a
    series reject them before any write.
    """

    id: Optional[int] = None
    monday: bool = False
    tuesday: bool = False
    wednesday: bool = False
    thursday: bool = False
    friday: bool = False
    saturday: bool = False
    sunday: bool = False
    start_date: date
    end_date: Optional[date] = Field(default=None, description="Inclusive, None = unbounded")

    @model_validator(mode="after")
    def _check_date_bounds(self) -> "RecurrencePattern":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

    @classmethod
    def from_weekdays(
        cls,
        weekdays: Iterable[int],
        start_date: date,
        end_date: Optional[date] = None,
        pattern_id: Optional[int] = None,
    ) -> "RecurrencePattern":
        """Build a pattern from weekday numbers (Monday == 0)."""
        selected = set(weekdays)
        flags = {name: index in selected for index, name in enumerate(WEEKDAY_FIELDS)}
        return cls(id=pattern_id, start_date=start_date, end_date=end_date, **flags)

    @property
    def weekdays(self) -> tuple[int, ...]:
        """Flagged weekday numbers in ascending order."""
        return tuple(i for i, name in enumerate(WEEKDAY_FIELDS) if getattr(self, name))

    def has_weekdays(self) -> bool:
        return bool(self.weekdays)


class BaseEvent(BaseModel):
    """Stored definition of a single or recurring timetable event."""

    id: Optional[int] = None
    schedule_id: int
    title: str
    start_time: time
    end_time: time
    category: EventCategory = EventCategory.NONE
    academy: Optional[AcademyRef] = None

    # Exactly one of these is set
    event_date: Optional[date] = None
    pattern_id: Optional[int] = None

    @model_validator(mode="after")
    def _check_single_or_recurring(self) -> "BaseEvent":
        if (self.event_date is None) == (self.pattern_id is None):
            raise ValueError("event requires exactly one of event_date or pattern_id")
        return self

    @property
    def is_recurring(self) -> bool:
        return self.pattern_id is not None


class RecurrenceException(BaseModel):
    """Per-date override of a recurring base event.

    Blank modified values are normalized to None on construction, so an empty
    title in an edit form means "keep the series title".
    """

    id: Optional[int] = None
    event_id: int
    exception_date: date
    exception_type: ExceptionType
    modified_title: Optional[str] = None
    modified_start_time: Optional[time] = None
    modified_end_time: Optional[time] = None
    modified_category: Optional[EventCategory] = None
    modified_academy: Optional[AcademyRef] = None

    @field_validator(
        "modified_title",
        "modified_start_time",
        "modified_end_time",
        "modified_category",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, value):
        return normalize_blank(value)

    @property
    def has_overrides(self) -> bool:
        return any(
            value is not None
            for value in (
                self.modified_title,
                self.modified_start_time,
                self.modified_end_time,
                self.modified_category,
                self.modified_academy,
            )
        )


class _OccurrenceBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    occurrence_date: date
    title: str
    start_time: time
    end_time: time
    category: EventCategory
    academy: Optional[AcademyRef] = None
    event_id: Optional[int] = None


class SingleOccurrence(_OccurrenceBase):
    """Occurrence produced by a dated single event."""

    kind: Literal["single"] = "single"


class RecurringOccurrence(_OccurrenceBase):
    """Occurrence produced by expanding a recurring series on one date."""

    kind: Literal["recurring"] = "recurring"
    pattern_id: int
    override_applied: bool = False
    source_exception_id: Optional[int] = None


Occurrence = Annotated[Union[SingleOccurrence, RecurringOccurrence], Field(discriminator="kind")]


@dataclass(frozen=True)
class WindowKey:
    """Cache key for one resolved window of one schedule."""

    schedule_id: int
    start: date
    end: date

    @property
    def span_days(self) -> int:
        return (self.end - self.start).days + 1


class DegradedSource(BaseModel):
    """A data source that failed while resolving a window."""

    source: Literal["single_events", "recurring_events", "pattern", "exceptions"]
    event_id: Optional[int] = None
    message: str


class DataIntegrityWarning(BaseModel):
    """Recorded when stored data is inconsistent, e.g. a dangling pattern reference."""

    event_id: Optional[int] = None
    pattern_id: Optional[int] = None
    message: str


DEGRADED_STATUS_MESSAGE = "unable to load schedule for this period"


class ResolvedWindow(BaseModel):
    """Ordered occurrences for a date window plus any partial-failure detail."""

    schedule_id: int
    start: date
    end: date
    occurrences: list[Occurrence] = Field(default_factory=list)
    degraded_sources: list[DegradedSource] = Field(default_factory=list)
    integrity_warnings: list[DataIntegrityWarning] = Field(default_factory=list)
    resolved_at: datetime = Field(default_factory=_now_utc)

    @property
    def is_degraded(self) -> bool:
        return bool(self.degraded_sources)

    @property
    def status_message(self) -> Optional[str]:
        """User-facing status when part of the window could not be loaded."""
        return DEGRADED_STATUS_MESSAGE if self.is_degraded else None

    def by_date(self) -> dict[date, list[Union[SingleOccurrence, RecurringOccurrence]]]:
        """Group occurrences by date, keeping their resolved order."""
        grouped: dict[date, list[Union[SingleOccurrence, RecurringOccurrence]]] = {}
        for occurrence in self.occurrences:
            grouped.setdefault(occurrence.occurrence_date, []).append(occurrence)
        return grouped

    def same_occurrences(self, other: "ResolvedWindow") -> bool:
        """Structural comparison of occurrences, ignoring resolution timestamps."""
        return self.occurrences == other.occurrences

    @field_serializer("resolved_at")
    def serialize_resolved_at(self, value: datetime) -> str:
        return value.isoformat()


class Holiday(BaseModel):
    """Public holiday supplied by an external provider."""

    holiday_date: date
    name: str


class WeekView(BaseModel):
    """A resolved week together with its holiday overlay."""

    window: ResolvedWindow
    holidays: dict[date, Holiday] = Field(default_factory=dict)
    holidays_available: bool = True
    show_weekend: bool = False


# ---------------------------------------------------------------------------
# Mutation commands
# ---------------------------------------------------------------------------


class EventFields(BaseModel):
    """Editable event fields shared by create and edit-series commands."""

    title: str = ""
    start_time: time
    end_time: time
    category: EventCategory = EventCategory.NONE
    academy_name: Optional[str] = None
    academy_subject: AcademySubject = AcademySubject.OTHER

    @field_validator("academy_name", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        return normalize_blank(value)


class CreateSingleEvent(EventFields):
    command: Literal["create_single_event"] = "create_single_event"
    schedule_id: int
    event_date: date


class CreateMultiDayEvents(EventFields):
    """One single event per weekday, each on its next date on/after base_date."""

    command: Literal["create_multi_day_events"] = "create_multi_day_events"
    schedule_id: int
    base_date: date
    weekdays: list[int]


class CreateSeries(EventFields):
    command: Literal["create_series"] = "create_series"
    schedule_id: int
    weekdays: list[int]
    start_date: date
    end_date: Optional[date] = None


class EditSeries(EventFields):
    """Edit every date of a series; weekdays/end_date of None keep the current rule."""

    command: Literal["edit_series"] = "edit_series"
    event_id: int
    weekdays: Optional[list[int]] = None
    end_date: Optional[date] = None


class EditOccurrence(BaseModel):
    """Override fields of one date of a series; None or blank keeps the series value."""

    command: Literal["edit_occurrence"] = "edit_occurrence"
    event_id: int
    occurrence_date: date
    title: Optional[str] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    category: Optional[EventCategory] = None
    academy_name: Optional[str] = None
    academy_subject: AcademySubject = AcademySubject.OTHER

    @field_validator("title", "start_time", "end_time", "category", "academy_name", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        return normalize_blank(value)


class CancelOccurrence(BaseModel):
    command: Literal["cancel_occurrence"] = "cancel_occurrence"
    event_id: int
    occurrence_date: date


class RestoreOccurrence(BaseModel):
    command: Literal["restore_occurrence"] = "restore_occurrence"
    event_id: int
    occurrence_date: date


class DeleteSeries(BaseModel):
    command: Literal["delete_series"] = "delete_series"
    event_id: int


class DeleteSingleEvent(BaseModel):
    command: Literal["delete_single_event"] = "delete_single_event"
    event_id: int


MutationCommand = Union[
    CreateSingleEvent,
    CreateMultiDayEvents,
    CreateSeries,
    EditSeries,
    EditOccurrence,
    CancelOccurrence,
    RestoreOccurrence,
    DeleteSeries,
    DeleteSingleEvent,
]


class MutationOutcome(BaseModel):
    """Result of applying one mutation command."""

    success: bool
    command: str
    affected_ids: list[int] = Field(default_factory=list)
    invalidated_schedule_id: Optional[int] = None
    error_message: Optional[str] = None
