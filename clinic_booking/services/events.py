"""
Appointment domain events.

Created and status-changed appointments are announced to the notification
service (email / dashboard) and, on completion, to the feedback service.
Delivery never fails the request that produced the event.
"""

import logging
from datetime import date, datetime
from enum import Enum
from typing import Callable, Iterable, List, Optional

import httpx
from pydantic import BaseModel

from ..core.config import Settings
from ..scheduling.schedule import format_hhmm
from ..scheduling.state_machine import AppointmentStatus

logger = logging.getLogger(__name__)

class EventType(str, Enum):
    CREATED = "CREATED"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

# Status transitions that are announced; the rest stay internal
STATUS_EVENTS = {
    AppointmentStatus.CONFIRMED: EventType.CONFIRMED,
    AppointmentStatus.COMPLETED: EventType.COMPLETED,
    AppointmentStatus.CANCELLED: EventType.CANCELLED,
}

class PatientContact(BaseModel):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None

class AppointmentEvent(BaseModel):
    appointment_id: int
    event_type: EventType
    patient_contact: PatientContact
    doctor_name: str
    clinic_name: str
    appointment_date: date
    start_time: str
    occurred_at: datetime

    @classmethod
    def from_appointment(cls, appointment, event_type: EventType, occurred_at: datetime) -> "AppointmentEvent":
        """Snapshot an appointment and its related records."""
        patient = appointment.patient
        return cls(
            appointment_id=appointment.id,
            event_type=event_type,
            patient_contact=PatientContact(
                name=patient.name,
                email=patient.email,
                phone=patient.phone_number,
            ),
            doctor_name=appointment.doctor.name,
            clinic_name=appointment.clinic.name,
            appointment_date=appointment.appointment_date,
            start_time=format_hhmm(appointment.start_time),
            occurred_at=occurred_at,
        )

EventHandler = Callable[[AppointmentEvent], None]

class LoggingEventHandler:
    """Writes every event to the application log."""

    def __call__(self, event: AppointmentEvent) -> None:
        logger.info(
            f"Appointment event {event.event_type.value}: appointment={event.appointment_id} "
            f"date={event.appointment_date} start={event.start_time}"
        )

class WebhookEventHandler:
    """POSTs events as JSON to a collaborator's webhook."""

    def __init__(
        self,
        url: str,
        event_types: Optional[Iterable[EventType]] = None,
        timeout: float = 5.0,
        client: Optional[httpx.Client] = None,
    ):
        self.url = url
        self.event_types = frozenset(event_types) if event_types else None
        self.timeout = timeout
        self.client = client

    def handles(self, event: AppointmentEvent) -> bool:
        return self.event_types is None or event.event_type in self.event_types

    def __call__(self, event: AppointmentEvent) -> None:
        if not self.handles(event):
            return

        payload = event.model_dump(mode="json")
        if self.client is not None:
            response = self.client.post(self.url, json=payload)
        else:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.url, json=payload)
        response.raise_for_status()

    def __repr__(self):
        return f"<WebhookEventHandler(url='{self.url}')>"

class EventDispatcher:
    """Fans events out to handlers, isolating handler failures."""

    def __init__(self, handlers: Optional[List[EventHandler]] = None):
        self.handlers: List[EventHandler] = list(handlers or [])

    def register(self, handler: EventHandler) -> None:
        self.handlers.append(handler)

    def dispatch(self, event: AppointmentEvent) -> None:
        for handler in self.handlers:
            try:
                handler(event)
            except Exception:
                # Notifications are best effort; the appointment is already saved
                logger.exception(
                    f"Event handler {handler!r} failed for appointment {event.appointment_id} "
                    f"({event.event_type.value})"
                )

def build_dispatcher(settings: Settings) -> EventDispatcher:
    """Dispatcher wired to the webhooks named in configuration."""
    dispatcher = EventDispatcher([LoggingEventHandler()])

    if settings.NOTIFICATION_WEBHOOK_URL:
        dispatcher.register(WebhookEventHandler(
            settings.NOTIFICATION_WEBHOOK_URL,
            timeout=settings.WEBHOOK_TIMEOUT_SECONDS,
        ))

    if settings.FEEDBACK_WEBHOOK_URL:
        dispatcher.register(WebhookEventHandler(
            settings.FEEDBACK_WEBHOOK_URL,
            event_types=[EventType.COMPLETED],
            timeout=settings.WEBHOOK_TIMEOUT_SECONDS,
        ))

    return dispatcher
