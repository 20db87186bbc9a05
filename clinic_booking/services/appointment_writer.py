"""
Appointment persistence.

The partial unique index on (doctor_id, appointment_date, start_time) over
PENDING/CONFIRMED rows is what prevents double booking. Two requests for the
same slot can both pass validation; only one insert commits. The other gets
an IntegrityError here, which is reported as SLOT_ALREADY_BOOKED and never
retried.
"""

import logging
from dataclasses import dataclass
from datetime import date, time
from enum import Enum
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.appointment import Appointment
from ..scheduling.errors import BookingError, ErrorKind
from ..scheduling.schedule import format_hhmm

logger = logging.getLogger(__name__)

class WriteOutcome(str, Enum):
    CREATED = "created"
    REPLAYED = "replayed"

@dataclass
class WriteResult:
    appointment: Appointment
    outcome: WriteOutcome

    @property
    def created(self) -> bool:
        return self.outcome == WriteOutcome.CREATED

def slot_taken(doctor_id: int, appointment_date: date, start_time: time) -> BookingError:
    return BookingError(
        ErrorKind.SLOT_ALREADY_BOOKED,
        "This slot is no longer available",
        {
            "doctor_id": doctor_id,
            "appointment_date": appointment_date.isoformat(),
            "start_time": format_hhmm(start_time),
        },
    )

class AppointmentWriter:
    def __init__(self, db: Session):
        self.db = db

    def find_by_idempotency_key(self, doctor_id: int, idempotency_key: Optional[str]) -> Optional[Appointment]:
        """Appointment previously created for the same doctor and key."""
        if not idempotency_key:
            return None

        return self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.idempotency_key == idempotency_key
        ).first()

    def create(self, appointment: Appointment) -> WriteResult:
        """Insert a validated appointment, or return the one its key already created."""
        doctor_id = appointment.doctor_id
        idempotency_key = appointment.idempotency_key
        appointment_date = appointment.appointment_date
        start_time = appointment.start_time

        existing = self.find_by_idempotency_key(doctor_id, idempotency_key)
        if existing:
            logger.info(f"Idempotent request: returning existing appointment {existing.id}")
            return WriteResult(existing, WriteOutcome.REPLAYED)

        self.db.add(appointment)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()

            # A concurrent request with the same key may have won the insert
            existing = self.find_by_idempotency_key(doctor_id, idempotency_key)
            if existing:
                logger.info(f"Idempotent request resolved after race: appointment {existing.id}")
                return WriteResult(existing, WriteOutcome.REPLAYED)

            logger.warning(
                f"Booking conflict for doctor {doctor_id} on "
                f"{appointment_date} at {format_hhmm(start_time)}: {e.orig}"
            )
            raise slot_taken(doctor_id, appointment_date, start_time) from e

        self.db.refresh(appointment)
        return WriteResult(appointment, WriteOutcome.CREATED)

    def move(self, appointment: Appointment, appointment_date: date, start_time: time, end_time: time) -> Appointment:
        """Reschedule an appointment to a new slot."""
        appointment_id = appointment.id
        doctor_id = appointment.doctor_id
        appointment.appointment_date = appointment_date
        appointment.start_time = start_time
        appointment.end_time = end_time

        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(
                f"Reschedule conflict for appointment {appointment_id} to "
                f"{appointment_date} {format_hhmm(start_time)}: {e.orig}"
            )
            raise slot_taken(doctor_id, appointment_date, start_time) from e

        self.db.refresh(appointment)
        return appointment

    def save_transition(self, appointment: Appointment) -> Appointment:
        """Commit a single-row change such as a status transition."""
        self.db.commit()
        self.db.refresh(appointment)
        return appointment
