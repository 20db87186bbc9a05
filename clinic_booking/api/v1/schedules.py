from fastapi import APIRouter, Body, Depends
from typing import Any, Dict

from ...api.deps import get_current_actor, get_schedule_service
from ...core.security import Actor
from ...scheduling.schedule import ScheduleTemplate
from ...services.schedule_service import ScheduleService

router = APIRouter(prefix="/doctors", tags=["Schedules"])

@router.get(
    "/{doctor_id}/clinics/{clinic_id}/schedule",
    response_model=ScheduleTemplate,
    response_model_by_alias=False,
    response_model_exclude_none=True
)
def get_schedule(
    doctor_id: int,
    clinic_id: int,
    service: ScheduleService = Depends(get_schedule_service)
):
    """Get a doctor's weekly schedule at a clinic."""
    return service.get_schedule(doctor_id, clinic_id)

@router.put(
    "/{doctor_id}/clinics/{clinic_id}/schedule",
    response_model=ScheduleTemplate,
    response_model_by_alias=False,
    response_model_exclude_none=True
)
def update_schedule(
    doctor_id: int,
    clinic_id: int,
    template: Dict[str, Any] = Body(...),
    actor: Actor = Depends(get_current_actor),
    service: ScheduleService = Depends(get_schedule_service)
):
    """Replace a doctor's weekly schedule at a clinic. Malformed templates are rejected with INVALID_SCHEDULE."""
    return service.update_schedule(doctor_id, clinic_id, template, actor)
