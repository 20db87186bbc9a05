import logging
from datetime import date
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.clock import Clock, system_clock
from ..core.security import Actor, ActorRole, AuthorizationError
from ..models.appointment import Appointment
from ..models.clinic import Clinic, Specialist
from ..models.doctor import Doctor
from ..models.patient import Patient
from ..scheduling.errors import BookingError, ErrorKind, not_found
from ..scheduling.schedule import ScheduleTemplate
from ..scheduling.slots import CandidateSlot, build_availability
from ..scheduling.state_machine import (
    AppointmentStatus, BLOCKING_STATUSES, ensure_transition, is_blocking
)
from ..scheduling.validator import BookingValidator
from .appointment_writer import AppointmentWriter, WriteOutcome, WriteResult
from .events import AppointmentEvent, EventDispatcher, EventType, STATUS_EVENTS
from .schedule_service import ScheduleService

logger = logging.getLogger(__name__)

class AppointmentService:
    def __init__(
        self,
        db: Session,
        clock: Clock = system_clock,
        dispatcher: Optional[EventDispatcher] = None
    ):
        self.db = db
        self.clock = clock
        self.dispatcher = dispatcher or EventDispatcher()
        self.validator = BookingValidator(clock)
        self.writer = AppointmentWriter(db)
        self.schedules = ScheduleService(db)

    # Lookups

    def _get_clinic(self, clinic_id: int) -> Clinic:
        clinic = self.db.query(Clinic).filter(Clinic.id == clinic_id).first()
        if not clinic:
            raise not_found("Clinic", clinic_id)
        return clinic

    def _get_doctor(self, doctor_id: int) -> Doctor:
        doctor = self.db.query(Doctor).filter(Doctor.id == doctor_id).first()
        if not doctor:
            raise not_found("Doctor", doctor_id)
        return doctor

    def _get_patient(self, patient_id: int) -> Patient:
        patient = self.db.query(Patient).filter(Patient.id == patient_id).first()
        if not patient:
            raise not_found("Patient", patient_id)
        return patient

    def _get_specialist(self, specialist_id: int, clinic_id: int) -> Specialist:
        specialist = self.db.query(Specialist).filter(
            Specialist.id == specialist_id,
            Specialist.clinic_id == clinic_id
        ).first()
        if not specialist:
            raise not_found("Specialist", specialist_id)
        return specialist

    def _template_for(self, doctor: Doctor, clinic_id: int) -> ScheduleTemplate:
        """Weekly template for the pairing; inactive doctors have no hours."""
        template = self.schedules.get_schedule(doctor.id, clinic_id)
        if not doctor.is_active:
            return ScheduleTemplate()
        return template

    def _doctor_bookings(self, doctor_id: int, appointment_date: date) -> List[Appointment]:
        """Slot-holding appointments of a doctor on a date, across all clinics."""
        return self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.appointment_date == appointment_date,
            Appointment.status.in_(list(BLOCKING_STATUSES)),
            Appointment.deleted_at.is_(None)
        ).all()

    def get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.db.query(Appointment).filter(
            Appointment.id == appointment_id,
            Appointment.deleted_at.is_(None)
        ).first()
        if not appointment:
            raise not_found("Appointment", appointment_id)
        return appointment

    def list_appointments(
        self,
        clinic_id: Optional[int] = None,
        doctor_id: Optional[int] = None,
        patient_id: Optional[int] = None,
        status: Optional[AppointmentStatus] = None,
        appointment_date: Optional[date] = None,
        skip: int = 0,
        limit: int = 20
    ) -> List[Appointment]:
        query = self.db.query(Appointment).filter(Appointment.deleted_at.is_(None))

        if clinic_id is not None:
            query = query.filter(Appointment.clinic_id == clinic_id)
        if doctor_id is not None:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if patient_id is not None:
            query = query.filter(Appointment.patient_id == patient_id)
        if status is not None:
            query = query.filter(Appointment.status == status)
        if appointment_date is not None:
            query = query.filter(Appointment.appointment_date == appointment_date)

        return query.order_by(
            Appointment.appointment_date.asc(),
            Appointment.start_time.asc()
        ).offset(skip).limit(limit).all()

    # Availability

    def get_available_slots(self, clinic_id: int, doctor_id: int, target_date: date) -> List[CandidateSlot]:
        """Slots for a doctor at a clinic on a date, flagged with availability."""
        clinic = self._get_clinic(clinic_id)
        doctor = self._get_doctor(doctor_id)
        template = self._template_for(doctor, clinic_id)
        policy = clinic.policy

        bookings = self._doctor_bookings(doctor_id, target_date)
        return build_availability(
            template,
            target_date,
            bookings,
            policy,
            now=self.clock.now(policy.timezone)
        )

    # Booking

    def book(self, request, actor: Actor) -> WriteResult:
        """Validate and persist a booking request.

        A request repeating an idempotency key already used for the doctor
        returns the original appointment without validating again.
        """
        replay = self.writer.find_by_idempotency_key(request.doctor_id, request.idempotency_key)
        if replay:
            logger.info(f"Idempotent request: returning existing appointment {replay.id}")
            return WriteResult(replay, WriteOutcome.REPLAYED)

        clinic = self._get_clinic(request.clinic_id)
        doctor = self._get_doctor(request.doctor_id)
        self._get_patient(request.patient_id)
        if request.specialist_id is not None:
            self._get_specialist(request.specialist_id, clinic.id)

        template = self._template_for(doctor, clinic.id)
        policy = clinic.policy
        existing = self._doctor_bookings(doctor.id, request.appointment_date)

        start_time, end_time = self.validator.validate_booking(
            request,
            template,
            policy,
            existing,
            strict=not actor.is_staff
        )

        now = self.clock.now()
        status = AppointmentStatus.CONFIRMED if policy.auto_confirm else AppointmentStatus.PENDING
        appointment = Appointment(
            clinic_id=clinic.id,
            patient_id=request.patient_id,
            doctor_id=doctor.id,
            specialist_id=request.specialist_id,
            appointment_date=request.appointment_date,
            start_time=start_time,
            end_time=end_time,
            status=status,
            notes=request.notes,
            idempotency_key=request.idempotency_key,
            confirmed_at=now if status == AppointmentStatus.CONFIRMED else None
        )

        result = self.writer.create(appointment)
        if result.created:
            logger.info(
                f"Appointment created: {result.appointment.id} "
                f"(doctor {doctor.id}, {request.appointment_date} {request.start_time}, by {actor.role.value})"
            )
            self._emit(result.appointment, EventType.CREATED)
        return result

    # Lifecycle

    def transition(
        self,
        appointment_id: int,
        new_status: AppointmentStatus,
        actor: Actor,
        reason: Optional[str] = None
    ) -> Appointment:
        """Move an appointment to a new status."""
        if new_status == AppointmentStatus.CANCELLED:
            return self.cancel(appointment_id, actor, reason)

        appointment = self.get_appointment(appointment_id)
        previous = appointment.status
        ensure_transition(previous, new_status, actor.role)

        now = self.clock.now()
        appointment.status = new_status
        if new_status == AppointmentStatus.CONFIRMED:
            appointment.confirmed_at = now
        elif new_status in (AppointmentStatus.COMPLETED, AppointmentStatus.COMPLETED_OFFLINE):
            appointment.completed_at = now

        self.writer.save_transition(appointment)
        logger.info(f"Appointment {appointment_id} status updated {previous.value} -> {new_status.value}")

        event_type = STATUS_EVENTS.get(new_status)
        if event_type:
            self._emit(appointment, event_type)
        return appointment

    def cancel(self, appointment_id: int, actor: Actor, reason: Optional[str] = None) -> Appointment:
        """Cancel an appointment, enforcing the notice period for patients."""
        appointment = self.get_appointment(appointment_id)
        ensure_transition(appointment.status, AppointmentStatus.CANCELLED, actor.role)

        self.validator.check_cancellation(
            appointment.appointment_date,
            appointment.start_time,
            appointment.clinic.policy,
            actor.role
        )

        appointment.status = AppointmentStatus.CANCELLED
        appointment.cancelled_at = self.clock.now()
        appointment.cancelled_reason = reason
        appointment.cancelled_by_role = actor.role.value

        self.writer.save_transition(appointment)
        logger.info(f"Appointment {appointment_id} cancelled by {actor.role.value}")

        self._emit(appointment, EventType.CANCELLED)
        return appointment

    def reschedule(self, appointment_id: int, request, actor: Actor) -> Appointment:
        """Move an open appointment to another slot. Staff and doctors only."""
        if not actor.is_staff and actor.role != ActorRole.DOCTOR:
            raise AuthorizationError("Only clinic staff or doctors can reschedule appointments")

        appointment = self.get_appointment(appointment_id)
        if not is_blocking(appointment.status):
            raise BookingError(
                ErrorKind.INVALID_STATE_TRANSITION,
                f"Cannot reschedule an appointment in status {appointment.status.value}",
                {"current_status": appointment.status.value, "actor_role": actor.role.value}
            )

        clinic = appointment.clinic
        doctor = appointment.doctor
        template = self._template_for(doctor, clinic.id)
        existing = self._doctor_bookings(doctor.id, request.appointment_date)

        start_time, end_time = self.validator.validate_booking(
            request,
            template,
            clinic.policy,
            existing,
            strict=not actor.is_staff,
            exclude_id=appointment.id
        )

        self.writer.move(appointment, request.appointment_date, start_time, end_time)
        logger.info(f"Appointment {appointment_id} rescheduled to {request.appointment_date} {request.start_time}")
        return appointment

    def _emit(self, appointment: Appointment, event_type: EventType) -> None:
        event = AppointmentEvent.from_appointment(appointment, event_type, occurred_at=self.clock.now())
        self.dispatcher.dispatch(event)
