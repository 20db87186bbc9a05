"""
Booking validation.

Decides whether a requested slot may be booked before anything is written.
The overlap check here gives callers a precise error early; the unique index
used by the appointment writer is what actually prevents double booking.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Iterable, Optional, Tuple, Union
from zoneinfo import ZoneInfo

from ..core.clock import Clock, system_clock
from ..core.security import ActorRole, is_staff
from .errors import BookingError, ErrorKind
from .policy import ClinicPolicy
from .schedule import ScheduleTemplate, WorkingDay, format_hhmm, parse_hhmm
from .slots import find_conflicts, generate_slots

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotRequest:
    appointment_date: date
    start_time: Union[str, time]
    end_time: Union[str, time]


def _to_time(value: Union[str, time]) -> time:
    if isinstance(value, time):
        return value
    return parse_hhmm(value)


class BookingValidator:
    def __init__(self, clock: Clock = system_clock):
        self.clock = clock

    def validate_booking(
        self,
        request: Any,
        template: ScheduleTemplate,
        policy: ClinicPolicy,
        existing: Iterable[Any],
        strict: bool = True,
        exclude_id: Optional[int] = None,
    ) -> Tuple[time, time]:
        """Check a requested slot and return its parsed (start, end).

        Checks run in order and the first failure is raised:
        past date, advance window, time range, working hours, overlap.
        ``strict`` requires the interval to be one of the generated slots;
        otherwise it only has to lie within the working hours.
        """
        appointment_date = request.appointment_date
        now = self.clock.now(policy.timezone)
        today = now.date()

        if appointment_date < today:
            raise BookingError(
                ErrorKind.PAST_DATE,
                "Appointment date must not be in the past",
                {"appointment_date": appointment_date.isoformat(), "today": today.isoformat()},
            )

        if (appointment_date - today).days > policy.booking_advance_days:
            raise BookingError(
                ErrorKind.OUT_OF_ADVANCE_WINDOW,
                f"Appointments can be booked at most {policy.booking_advance_days} days ahead",
                {
                    "appointment_date": appointment_date.isoformat(),
                    "booking_advance_days": policy.booking_advance_days,
                },
            )

        try:
            start = _to_time(request.start_time)
            end = _to_time(request.end_time)
        except ValueError as exc:
            raise BookingError(ErrorKind.INVALID_TIME_RANGE, str(exc)) from exc

        if start >= end:
            raise BookingError(
                ErrorKind.INVALID_TIME_RANGE,
                "Start time must be before end time",
                {"start_time": format_hhmm(start), "end_time": format_hhmm(end)},
            )

        if appointment_date == today and start <= now.time():
            raise BookingError(
                ErrorKind.PAST_DATE,
                "Appointment start time has already passed",
                {"appointment_date": appointment_date.isoformat(), "start_time": format_hhmm(start)},
            )

        day = template.for_date(appointment_date)
        if strict:
            within_hours = (start, end) in set(generate_slots(day, policy.slot_duration))
        else:
            within_hours = isinstance(day, WorkingDay) and day.contains(start, end)

        if not within_hours:
            raise BookingError(
                ErrorKind.OUTSIDE_WORKING_HOURS,
                "Requested time is outside the doctor's working hours",
                {
                    "appointment_date": appointment_date.isoformat(),
                    "start_time": format_hhmm(start),
                    "end_time": format_hhmm(end),
                },
            )

        conflicts = find_conflicts(start, end, existing, exclude_id=exclude_id)
        if conflicts:
            logger.info(
                f"Slot {appointment_date} {format_hhmm(start)}-{format_hhmm(end)} "
                f"overlaps {len(conflicts)} existing appointment(s)"
            )
            raise BookingError(
                ErrorKind.SLOT_ALREADY_BOOKED,
                "This slot is no longer available",
                {
                    "appointment_date": appointment_date.isoformat(),
                    "start_time": format_hhmm(start),
                    "end_time": format_hhmm(end),
                },
            )

        return start, end

    def starts_at(self, appointment_date: date, start_time: time, policy: ClinicPolicy) -> datetime:
        """Start instant of an appointment in the clinic's timezone."""
        return datetime.combine(appointment_date, start_time, tzinfo=ZoneInfo(policy.timezone))

    def check_cancellation(
        self,
        appointment_date: date,
        start_time: time,
        policy: ClinicPolicy,
        role: ActorRole,
    ) -> None:
        """Reject patient cancellations inside the clinic's notice period.

        Staff cancellations are always allowed.
        """
        if is_staff(role):
            return

        starts_at = self.starts_at(appointment_date, start_time, policy)
        notice = starts_at - self.clock.now(policy.timezone)
        if notice < timedelta(hours=policy.cancel_before_hours):
            raise BookingError(
                ErrorKind.CANCELLATION_WINDOW_PASSED,
                f"Appointments must be cancelled at least {policy.cancel_before_hours} hours in advance",
                {
                    "cancel_before_hours": policy.cancel_before_hours,
                    "starts_at": starts_at.isoformat(),
                },
            )
