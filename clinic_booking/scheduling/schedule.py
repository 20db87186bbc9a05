"""
Weekly schedule templates.

A doctor's availability at a clinic is a fixed set of seven weekday entries,
each either a working day (start, end, slot duration) or a day off. Stored
JSON is parsed into this structure at the boundary; malformed shapes are
rejected instead of being read as loose dictionaries.
"""

import re
from datetime import date, time
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
    model_validator,
)

TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")


class Weekday(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"


# Index matches date.weekday(): Monday is 0
WEEKDAYS: List[Weekday] = list(Weekday)


def weekday_of(value: date) -> Weekday:
    """Return the weekday of a calendar date."""
    return WEEKDAYS[value.weekday()]


def parse_hhmm(value: str) -> time:
    """Parse an ``HH:MM`` string. Raises ValueError on anything else."""
    match = TIME_PATTERN.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    return time(int(match.group(1)), int(match.group(2)))


def format_hhmm(value: time) -> str:
    return value.strftime("%H:%M")


class WorkingDay(BaseModel):
    """A day the doctor sees patients between start_time and end_time."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    kind: Literal["working"] = "working"
    start_time: time = Field(alias="startTime")
    end_time: time = Field(alias="endTime")
    # None means the clinic's default slot duration applies
    slot_duration_minutes: Optional[int] = Field(default=None, gt=0, alias="slotDuration")

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _parse_time(cls, value: Any) -> time:
        if isinstance(value, time):
            return value.replace(second=0, microsecond=0, tzinfo=None)
        return parse_hhmm(value)

    @model_validator(mode="after")
    def _check_range(self) -> "WorkingDay":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self

    @field_serializer("start_time", "end_time")
    def _serialize_time(self, value: time) -> str:
        return format_hhmm(value)

    def contains(self, start: time, end: time) -> bool:
        """True when [start, end) lies inside the working hours."""
        return self.start_time <= start and end <= self.end_time


class DayOff(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["off"] = "off"


DaySchedule = Annotated[Union[WorkingDay, DayOff], Field(discriminator="kind")]

DAY_OFF = DayOff()


class InvalidScheduleError(ValueError):
    """Raised when a schedule template does not have the expected shape."""

    def __init__(self, errors: List[Dict[str, Any]]):
        super().__init__("Invalid schedule template")
        self.errors = errors


class ScheduleTemplate(BaseModel):
    """Recurring weekly availability for one doctor at one clinic.

    A weekday that is missing, or set to null, is a day off.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    monday: DaySchedule = DAY_OFF
    tuesday: DaySchedule = DAY_OFF
    wednesday: DaySchedule = DAY_OFF
    thursday: DaySchedule = DAY_OFF
    friday: DaySchedule = DAY_OFF
    saturday: DaySchedule = DAY_OFF
    sunday: DaySchedule = DAY_OFF

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if data is None:
            return {}
        if not isinstance(data, dict):
            return data

        normalized = {}
        for key, value in data.items():
            if value is None:
                value = {"kind": "off"}
            elif isinstance(value, dict) and "kind" not in value:
                # Legacy entries carry only startTime/endTime/slotDuration
                value = {"kind": "working", **value}
            normalized[key] = value
        return normalized

    @classmethod
    def parse(cls, raw: Any) -> "ScheduleTemplate":
        """Validate stored or submitted template data."""
        if isinstance(raw, cls):
            return raw
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            errors = [
                {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
                for error in exc.errors()
            ]
            raise InvalidScheduleError(errors) from exc

    def day(self, weekday: Weekday) -> Union[WorkingDay, DayOff]:
        return getattr(self, weekday.value)

    def for_date(self, value: date) -> Union[WorkingDay, DayOff]:
        return self.day(weekday_of(value))

    def working_days(self) -> Dict[Weekday, WorkingDay]:
        return {
            weekday: self.day(weekday)
            for weekday in WEEKDAYS
            if isinstance(self.day(weekday), WorkingDay)
        }

    def to_storage(self) -> Dict[str, Any]:
        """Tagged JSON form persisted on the doctor-clinic association."""
        return self.model_dump(mode="json", exclude_none=True)
