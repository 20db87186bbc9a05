from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Date, Time, Text, Index, Enum as SQLEnum, text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..core.database import Base
from ..scheduling.state_machine import AppointmentStatus

# Rows matching this predicate hold their slot
ACTIVE_SLOT_PREDICATE = "status IN ('PENDING', 'CONFIRMED') AND deleted_at IS NULL"

class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)

    # Relationships
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    specialist_id = Column(Integer, ForeignKey("specialists.id"), nullable=True)

    # Slot; times are stored independently of the date
    appointment_date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    status = Column(
        SQLEnum(AppointmentStatus, name="appointment_status"),
        nullable=False,
        default=AppointmentStatus.PENDING,
    )
    idempotency_key = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    # Lifecycle tracking
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_reason = Column(String(255), nullable=True)
    cancelled_by_role = Column(String(20), nullable=True)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime, nullable=True)

    # Relationships
    clinic = relationship("Clinic", back_populates="appointments")
    patient = relationship("Patient", back_populates="appointments")
    doctor = relationship("Doctor", back_populates="appointments")
    specialist = relationship("Specialist")

    __table_args__ = (
        Index("ix_appointments_doctor_date", "doctor_id", "appointment_date"),
        # One active booking per doctor, date and start time
        Index(
            "uq_appointments_doctor_slot_active",
            "doctor_id",
            "appointment_date",
            "start_time",
            unique=True,
            sqlite_where=text(ACTIVE_SLOT_PREDICATE),
            postgresql_where=text(ACTIVE_SLOT_PREDICATE),
        ),
        # Idempotency keys are unique per doctor; NULL keys never collide
        Index(
            "uq_appointments_doctor_idempotency_key",
            "doctor_id",
            "idempotency_key",
            unique=True,
        ),
    )

    def __repr__(self):
        return (
            f"<Appointment(id={self.id}, doctor_id={self.doctor_id}, "
            f"date='{self.appointment_date}', start='{self.start_time}', status='{self.status}')>"
        )
