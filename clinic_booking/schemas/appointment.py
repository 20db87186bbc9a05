from datetime import date, datetime, time
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from ..scheduling.schedule import format_hhmm
from ..scheduling.state_machine import AppointmentStatus
from ..services.appointment_writer import WriteOutcome

class AppointmentCreate(BaseModel):
    """Booking request. Times are HH:MM strings checked by the booking validator."""
    clinic_id: int
    patient_id: int
    doctor_id: int
    specialist_id: Optional[int] = None
    appointment_date: date
    start_time: str = Field(..., max_length=8, examples=["10:00"])
    end_time: str = Field(..., max_length=8, examples=["10:30"])
    notes: Optional[str] = Field(None, max_length=2000)
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=255)

class AppointmentReschedule(BaseModel):
    appointment_date: date
    start_time: str = Field(..., max_length=8, examples=["11:00"])
    end_time: str = Field(..., max_length=8, examples=["11:30"])

class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus
    reason: Optional[str] = Field(None, max_length=255)

class AppointmentCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)

class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    clinic_id: int
    patient_id: int
    doctor_id: int
    specialist_id: Optional[int] = None
    appointment_date: date
    start_time: time
    end_time: time
    status: AppointmentStatus
    idempotency_key: Optional[str] = None
    notes: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_serializer("start_time", "end_time")
    def _serialize_time(self, value: time) -> str:
        return format_hhmm(value)

class BookingResponse(BaseModel):
    appointment: AppointmentResponse
    outcome: WriteOutcome

class SlotResponse(BaseModel):
    start: str
    end: str
    available: bool
