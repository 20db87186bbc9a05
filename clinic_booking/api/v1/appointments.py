from fastapi import APIRouter, Depends, Query, Response, status
from datetime import date
from typing import List, Optional

from ...api.deps import get_appointment_service, get_current_actor, rate_limit_check
from ...core.security import Actor
from ...scheduling.state_machine import AppointmentStatus
from ...schemas.appointment import (
    AppointmentCancel, AppointmentCreate, AppointmentReschedule, AppointmentResponse,
    AppointmentStatusUpdate, BookingResponse, SlotResponse
)
from ...services.appointment_service import AppointmentService

router = APIRouter(prefix="/appointments", tags=["Appointments"])

@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def book_appointment(
    booking: AppointmentCreate,
    response: Response,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service),
    _: None = Depends(rate_limit_check)
):
    """Book a slot. Repeating an idempotency key returns the original booking."""
    result = service.book(booking, actor)
    if not result.created:
        response.status_code = status.HTTP_200_OK

    return BookingResponse(
        appointment=AppointmentResponse.model_validate(result.appointment),
        outcome=result.outcome
    )

@router.get("/slots", response_model=List[SlotResponse])
def get_available_slots(
    clinic_id: int,
    doctor_id: int,
    date: date,
    service: AppointmentService = Depends(get_appointment_service)
):
    """Get bookable slots for a doctor on a date."""
    slots = service.get_available_slots(clinic_id, doctor_id, date)
    return [SlotResponse(**slot.to_dict()) for slot in slots]

@router.get("", response_model=List[AppointmentResponse])
def list_appointments(
    clinic_id: Optional[int] = None,
    doctor_id: Optional[int] = None,
    patient_id: Optional[int] = None,
    appointment_status: Optional[AppointmentStatus] = Query(None, alias="status"),
    appointment_date: Optional[date] = Query(None, alias="date"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """List appointments ordered by date and start time."""
    appointments = service.list_appointments(
        clinic_id=clinic_id,
        doctor_id=doctor_id,
        patient_id=patient_id,
        status=appointment_status,
        appointment_date=appointment_date,
        skip=skip,
        limit=limit
    )
    return [AppointmentResponse.model_validate(appointment) for appointment in appointments]

@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Get appointment details."""
    return AppointmentResponse.model_validate(service.get_appointment(appointment_id))

@router.patch("/{appointment_id}/status", response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    update: AppointmentStatusUpdate,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Move an appointment through its lifecycle."""
    appointment = service.transition(appointment_id, update.status, actor, reason=update.reason)
    return AppointmentResponse.model_validate(appointment)

@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    cancel: Optional[AppointmentCancel] = None,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Cancel an appointment. Patients must respect the clinic's notice period."""
    reason = cancel.reason if cancel else None
    appointment = service.cancel(appointment_id, actor, reason=reason)
    return AppointmentResponse.model_validate(appointment)

@router.put("/{appointment_id}/reschedule", response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    reschedule: AppointmentReschedule,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Move an appointment to another slot."""
    appointment = service.reschedule(appointment_id, reschedule, actor)
    return AppointmentResponse.model_validate(appointment)
