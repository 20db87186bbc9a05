from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, JSON, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..core.database import Base
from ..scheduling.schedule import ScheduleTemplate

class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    # Account in the authentication service
    user_id = Column(Integer, unique=True, nullable=True, index=True)

    # Personal information
    name = Column(String(200), nullable=False)
    specialization = Column(String(100), nullable=True)

    # Contact information
    email = Column(String(255), nullable=True)
    phone_number = Column(String(20), nullable=True)

    # Availability
    is_active = Column(Boolean, default=True)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    clinics = relationship("DoctorClinic", back_populates="doctor")
    appointments = relationship("Appointment", back_populates="doctor")

    def __repr__(self):
        return f"<Doctor(id={self.id}, name='{self.name}', specialization='{self.specialization}')>"

class DoctorClinic(Base):
    """A doctor practicing at a clinic, with the weekly schedule kept there."""
    __tablename__ = "doctor_clinics"

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False)

    # Tagged weekly template, see ScheduleTemplate.to_storage()
    schedule = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    doctor = relationship("Doctor", back_populates="clinics")
    clinic = relationship("Clinic", back_populates="doctors")

    __table_args__ = (
        UniqueConstraint("doctor_id", "clinic_id", name="uq_doctor_clinics_pair"),
    )

    @property
    def template(self) -> ScheduleTemplate:
        return ScheduleTemplate.parse(self.schedule)

    def __repr__(self):
        return f"<DoctorClinic(doctor_id={self.doctor_id}, clinic_id={self.clinic_id})>"
