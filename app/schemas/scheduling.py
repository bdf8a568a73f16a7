"""Scheduling schemas: slots, availability entries and practitioners."""

import datetime as dt
from datetime import date, datetime, time
from enum import Enum
from itertools import pairwise
from typing import Annotated, Any, Literal
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import (
    BaseModel,
    Field,
    TypeAdapter,
    ValidationError,
    field_serializer,
    field_validator,
    model_validator,
)

from app.core.exceptions import ValidationException


class Weekday(str, Enum):
    """Weekday names in calendar order (Monday first, as date.weekday())."""

    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def from_date(cls, day: date) -> "Weekday":
        """Weekday of a calendar date, without any timezone conversion."""
        return list(cls)[day.weekday()]


class UnavailableReason(str, Enum):
    """Why a day has no bookable slots."""

    DATE_IN_PAST = "date_in_past"
    NOT_WORKING = "not_working"
    FULLY_BOOKED = "fully_booked"


class TimeSlot(BaseModel):
    """A time-of-day interval."""

    start: time
    end: time

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_order(self) -> "TimeSlot":
        """Validate end is after start."""
        if self.end <= self.start:
            raise ValueError("Slot end must be after slot start")
        return self

    @field_serializer("start", "end")
    def serialize_time(self, value: time) -> str:
        """Render times as HH:MM."""
        return value.strftime("%H:%M")

    def label(self) -> str:
        """Human readable range, e.g. 09:00-09:30."""
        return f"{self.start:%H:%M}-{self.end:%H:%M}"


class AvailabilityWindow(TimeSlot):
    """A working window (or explicit slot) that can be switched off."""

    is_available: bool = True


class WeeklyEntry(BaseModel):
    """Recurring availability for a weekday."""

    kind: Literal["weekly"] = "weekly"
    day: Weekday
    is_available: bool = True
    windows: list[AvailabilityWindow] = Field(default_factory=list)


class DateOverrideEntry(BaseModel):
    """Availability for one exact date, replacing the weekly entry."""

    kind: Literal["date"] = "date"
    date: dt.date
    is_available: bool = True
    windows: list[AvailabilityWindow] = Field(default_factory=list)


AvailabilityEntry = Annotated[WeeklyEntry | DateOverrideEntry, Field(discriminator="kind")]

_entry_adapter: TypeAdapter[WeeklyEntry | DateOverrideEntry] = TypeAdapter(AvailabilityEntry)

_WINDOW_LIST_KEYS = ("windows", "timeSlots", "time_slots", "slots")
_DATE_KEYS = ("date", "specificDate", "specific_date")


def _first(raw: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    return default


def _normalize_window(raw: dict[str, Any]) -> dict[str, Any]:
    return {
        "start": _first(raw, "start", "startTime", "start_time"),
        "end": _first(raw, "end", "endTime", "end_time"),
        "is_available": _first(raw, "is_available", "isAvailable", "available", default=True),
    }


def _normalize_windows(raw: dict[str, Any]) -> list[dict[str, Any]]:
    windows = _first(raw, *_WINDOW_LIST_KEYS)
    if windows is not None:
        return [_normalize_window(window) for window in windows]
    if _first(raw, "start", "startTime", "start_time") is not None:
        return [_normalize_window({**raw, "is_available": True})]
    return []


def _normalize_entry(raw: dict[str, Any], day_key: str | None = None) -> dict[str, Any]:
    if "kind" in raw:
        return raw

    entry: dict[str, Any] = {
        "is_available": _first(raw, "is_available", "isAvailable", default=True),
        "windows": _normalize_windows(raw),
    }
    specific_date = _first(raw, *_DATE_KEYS)
    day = day_key or _first(raw, "day", "dayOfWeek", "day_of_week")

    if specific_date is not None:
        entry.update(kind="date", date=specific_date)
    elif day is not None:
        entry.update(kind="weekly", day=str(day).lower())
    else:
        raise ValidationException("Availability entry needs a weekday or a specific date")
    return entry


def _looks_like_date(key: str) -> bool:
    try:
        date.fromisoformat(key)
    except ValueError:
        return False
    return True


def normalize_availability(raw: Any) -> list[WeeklyEntry | DateOverrideEntry]:
    """
    Normalize loosely shaped availability input into tagged entries.

    Accepts a list of entries (weekly, date-specific or already tagged) or an
    object keyed by weekday name or ISO date.

    Raises:
        ValidationException: If the input cannot be interpreted
    """
    if isinstance(raw, dict):
        items = []
        for key, value in raw.items():
            if not isinstance(value, dict):
                raise ValidationException(f"Invalid availability for {key}")
            if _looks_like_date(key):
                items.append(_normalize_entry({**value, "date": key}))
            else:
                items.append(_normalize_entry(value, day_key=key.lower()))
    elif isinstance(raw, list):
        items = []
        for value in raw:
            if not isinstance(value, dict):
                raise ValidationException("Availability entries must be objects")
            items.append(_normalize_entry(value))
    else:
        raise ValidationException("Availability must be a list or an object keyed by weekday")

    try:
        entries = [_entry_adapter.validate_python(item) for item in items]
    except ValidationError as e:
        raise ValidationException(f"Invalid availability: {e.errors()[0]['msg']}") from e

    seen: set[str] = set()
    for entry in entries:
        key = entry.day.value if isinstance(entry, WeeklyEntry) else entry.date.isoformat()
        if key in seen:
            raise ValidationException(f"Duplicate availability entry for {key}")
        if entry.is_available and not any(window.is_available for window in entry.windows):
            raise ValidationException(f"Invalid availability for {key}: start and end times required")
        windows = sorted((window for window in entry.windows if window.is_available), key=lambda w: w.start)
        for previous, current in pairwise(windows):
            if current.start < previous.end:
                raise ValidationException(
                    f"Overlapping availability windows for {key}: {previous.label()} and {current.label()}"
                )
        seen.add(key)

    return entries


class DayAvailability(BaseModel):
    """Resolved bookable slots for one practitioner and date."""

    practitioner_id: UUID
    date: dt.date
    is_available: bool
    working_window: TimeSlot | None = None
    slots: list[TimeSlot] = Field(default_factory=list)
    reason: UnavailableReason | None = None
    consultation_duration_minutes: int

    def offers(self, start: time) -> TimeSlot | None:
        """Return the free slot starting at ``start``, if any."""
        for slot in self.slots:
            if slot.start == start:
                return slot
        return None


class AvailabilityRangeResponse(BaseModel):
    """Resolved availability for consecutive dates."""

    practitioner_id: UUID
    days: list[DayAvailability]


class PractitionerBase(BaseModel):
    """Base practitioner schema with common fields."""

    full_name: str = Field(..., min_length=1, max_length=200)
    specialization: str | None = Field(None, max_length=200)
    consultation_fee: int = Field(..., ge=0, le=10_000_000)
    consultation_duration_minutes: int = Field(default=30, gt=0, le=480)
    timezone: str = Field(default="UTC", max_length=64)
    consultation_modes: list[Literal["video", "in_person"]] = Field(
        default_factory=lambda: ["video"], min_length=1
    )

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate the timezone is a known IANA name."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v


class PractitionerCreate(PractitionerBase):
    """Schema for creating a practitioner profile."""

    id: UUID | None = None
    availability: Any = None


class PractitionerResponse(PractitionerBase):
    """Schema for practitioner response."""

    id: UUID
    is_active: bool
    rating_average: float
    rating_count: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AvailabilityResponse(BaseModel):
    """Stored availability of a practitioner."""

    practitioner_id: UUID
    entries: list[AvailabilityEntry]
