"""
Slot generation.

Expands one weekday of a schedule template into fixed-width slots for a
concrete date and marks the ones already taken. Slots are derived on every
query and never stored or cached: availability depends on the live set of
appointments.
"""

from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from .policy import ClinicPolicy
from .schedule import DayOff, ScheduleTemplate, WorkingDay, format_hhmm
from .state_machine import AppointmentStatus, is_blocking


@dataclass(frozen=True)
class CandidateSlot:
    start: time
    end: time
    available: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": format_hhmm(self.start),
            "end": format_hhmm(self.end),
            "available": self.available,
        }


@dataclass(frozen=True)
class BookedInterval:
    """Minimal view of an existing appointment used for overlap checks."""

    start_time: time
    end_time: time
    status: AppointmentStatus = AppointmentStatus.CONFIRMED
    id: Optional[int] = None


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


def overlaps(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    """Interval intersection; touching boundaries do not overlap."""
    return start_a < end_b and end_a > start_b


def generate_slots(
    day: Union[WorkingDay, DayOff, None],
    default_duration: int,
) -> Iterator[Tuple[time, time]]:
    """Yield (start, end) slots covering the working hours of ``day``.

    A trailing interval shorter than the slot duration is dropped. Days off
    yield nothing.
    """
    if not isinstance(day, WorkingDay):
        return

    duration = day.slot_duration_minutes or default_duration
    if duration <= 0:
        raise ValueError("Slot duration must be positive")

    current = to_minutes(day.start_time)
    end = to_minutes(day.end_time)
    while current + duration <= end:
        yield from_minutes(current), from_minutes(current + duration)
        current += duration


def find_conflicts(
    start: time,
    end: time,
    bookings: Iterable[Any],
    exclude_id: Optional[int] = None,
) -> List[Any]:
    """Slot-holding bookings that intersect [start, end)."""
    return [
        booking
        for booking in bookings
        if is_blocking(booking.status)
        and (exclude_id is None or booking.id != exclude_id)
        and overlaps(start, end, booking.start_time, booking.end_time)
    ]


def build_availability(
    template: ScheduleTemplate,
    target_date: date,
    bookings: Iterable[Any],
    policy: ClinicPolicy,
    now: Optional[datetime] = None,
) -> List[CandidateSlot]:
    """Slots for ``target_date`` with availability flags.

    ``bookings`` are the doctor's appointments on that date; anything with
    ``start_time``, ``end_time`` and ``status`` works. When ``now`` falls on
    ``target_date`` (in the clinic's timezone) slots that have already
    started are reported unavailable.
    """
    bookings = list(bookings)
    cutoff = None
    if now is not None and now.date() == target_date:
        cutoff = now.time().replace(second=0, microsecond=0, tzinfo=None)

    slots = []
    for start, end in generate_slots(template.for_date(target_date), policy.slot_duration):
        taken = bool(find_conflicts(start, end, bookings))
        started = cutoff is not None and start <= cutoff
        slots.append(CandidateSlot(start=start, end=end, available=not (taken or started)))
    return slots
