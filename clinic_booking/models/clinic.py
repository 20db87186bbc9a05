from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..core.config import settings
from ..core.database import Base
from ..scheduling.policy import ClinicPolicy

class Clinic(Base):
    __tablename__ = "clinics"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)

    # Contact information
    email = Column(String(255), nullable=True)
    phone_number = Column(String(20), nullable=True)
    address = Column(String(255), nullable=True)

    # Booking policy; NULL falls back to the configured defaults
    slot_duration = Column(Integer, nullable=True)
    booking_advance_days = Column(Integer, nullable=True)
    cancel_before_hours = Column(Integer, nullable=True)
    auto_confirm = Column(Boolean, default=False)
    timezone = Column(String(64), nullable=True)

    is_active = Column(Boolean, default=True)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    doctors = relationship("DoctorClinic", back_populates="clinic")
    specialists = relationship("Specialist", back_populates="clinic")
    appointments = relationship("Appointment", back_populates="clinic")

    @property
    def policy(self) -> ClinicPolicy:
        """Booking policy with configured defaults applied."""
        def pick(value, default):
            return default if value is None else value

        return ClinicPolicy(
            slot_duration=pick(self.slot_duration, settings.DEFAULT_SLOT_DURATION),
            booking_advance_days=pick(self.booking_advance_days, settings.DEFAULT_BOOKING_ADVANCE_DAYS),
            cancel_before_hours=pick(self.cancel_before_hours, settings.DEFAULT_CANCEL_BEFORE_HOURS),
            timezone=self.timezone or settings.DEFAULT_TIMEZONE,
            auto_confirm=bool(self.auto_confirm),
        )

    def __repr__(self):
        return f"<Clinic(id={self.id}, name='{self.name}')>"

class Specialist(Base):
    __tablename__ = "specialists"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)

    clinic = relationship("Clinic", back_populates="specialists")

    def __repr__(self):
        return f"<Specialist(id={self.id}, name='{self.name}')>"
