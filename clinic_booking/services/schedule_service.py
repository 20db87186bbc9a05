import logging
from typing import Any, Dict, Union

from sqlalchemy.orm import Session

from ..core.security import Actor, ActorRole, AuthorizationError
from ..models.clinic import Clinic
from ..models.doctor import Doctor, DoctorClinic
from ..scheduling.errors import not_found
from ..scheduling.schedule import ScheduleTemplate

logger = logging.getLogger(__name__)

class ScheduleService:
    """Stores each doctor-clinic pairing's weekly template."""

    def __init__(self, db: Session):
        self.db = db

    def get_pairing(self, doctor_id: int, clinic_id: int) -> DoctorClinic:
        """Doctor-clinic association, or NOT_FOUND."""
        if not self.db.query(Clinic).filter(Clinic.id == clinic_id).first():
            raise not_found("Clinic", clinic_id)

        if not self.db.query(Doctor).filter(Doctor.id == doctor_id).first():
            raise not_found("Doctor", doctor_id)

        pairing = self.db.query(DoctorClinic).filter(
            DoctorClinic.doctor_id == doctor_id,
            DoctorClinic.clinic_id == clinic_id
        ).first()

        if not pairing:
            raise not_found("Doctor schedule", f"{doctor_id}@{clinic_id}")

        return pairing

    def get_schedule(self, doctor_id: int, clinic_id: int) -> ScheduleTemplate:
        return self.get_pairing(doctor_id, clinic_id).template

    def update_schedule(
        self,
        doctor_id: int,
        clinic_id: int,
        template: Union[ScheduleTemplate, Dict[str, Any]],
        actor: Actor
    ) -> ScheduleTemplate:
        """Replace the weekly template. Clinic staff or the doctor themself only."""
        pairing = self.get_pairing(doctor_id, clinic_id)

        is_own_schedule = (
            actor.role == ActorRole.DOCTOR
            and pairing.doctor.user_id is not None
            and pairing.doctor.user_id == actor.user_id
        )
        if not actor.is_staff and not is_own_schedule:
            raise AuthorizationError("Only clinic staff or the doctor can change this schedule")

        template = ScheduleTemplate.parse(template)
        pairing.schedule = template.to_storage()
        self.db.commit()
        self.db.refresh(pairing)

        logger.info(f"Schedule updated for doctor {doctor_id} at clinic {clinic_id} by {actor.role.value}")
        return pairing.template
