import pytest
from datetime import time
from types import SimpleNamespace
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from clinic_booking.main import app
from clinic_booking.api.deps import get_clock, get_event_dispatcher
from clinic_booking.core.clock import FixedClock
from clinic_booking.core.database import Base, SessionLocal, engine, get_redis
from clinic_booking.core.security import ActorRole
from clinic_booking.models.appointment import Appointment
from clinic_booking.models.clinic import Clinic, Specialist
from clinic_booking.models.doctor import Doctor, DoctorClinic
from clinic_booking.models.patient import Patient
from clinic_booking.scheduling.policy import ClinicPolicy
from clinic_booking.scheduling.schedule import ScheduleTemplate
from clinic_booking.scheduling.state_machine import AppointmentStatus
from clinic_booking.services.events import EventDispatcher

from .data import (
    CLINIC_TZ, DOCTOR_USER_ID, NOW, PATIENT_USER_ID, STAFF_USER_ID, TOMORROW,
    WEEKLY_SCHEDULE, auth_headers
)

@pytest.fixture
def template():
    return ScheduleTemplate.parse(WEEKLY_SCHEDULE)

@pytest.fixture
def policy():
    return ClinicPolicy(
        slot_duration=30,
        booking_advance_days=30,
        cancel_before_hours=4,
        timezone=CLINIC_TZ,
    )

@pytest.fixture
def clock():
    return FixedClock(NOW)

class RecordingHandler:
    """Collects dispatched events for assertions."""

    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    def types(self):
        return [event.event_type.value for event in self.events]

@pytest.fixture
def recorder():
    return RecordingHandler()

@pytest.fixture
def dispatcher(recorder):
    return EventDispatcher([recorder])

@pytest.fixture(scope="function")
def test_db():
    # Create tables
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)

@pytest.fixture
def db(test_db):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()

@pytest.fixture
def seed(db):
    """One clinic, one doctor working there and one patient."""
    clinic = Clinic(
        name="Lakeside Clinic",
        email="front-desk@lakeside.example",
        slot_duration=30,
        booking_advance_days=30,
        cancel_before_hours=4,
        timezone=CLINIC_TZ,
    )
    doctor = Doctor(
        user_id=DOCTOR_USER_ID,
        name="Dr. Asha Rao",
        specialization="General Medicine",
        email="asha.rao@lakeside.example",
    )
    patient = Patient(
        user_id=PATIENT_USER_ID,
        name="Ravi Kumar",
        email="ravi@example.com",
        phone_number="+919800000001",
    )
    other_patient = Patient(name="Meera Iyer", phone_number="+919800000002")
    db.add_all([clinic, doctor, patient, other_patient])
    db.flush()

    specialist = Specialist(clinic_id=clinic.id, name="Physiotherapy")
    pairing = DoctorClinic(doctor_id=doctor.id, clinic_id=clinic.id, schedule=WEEKLY_SCHEDULE)
    db.add_all([specialist, pairing])
    db.commit()

    return SimpleNamespace(
        clinic_id=clinic.id,
        doctor_id=doctor.id,
        patient_id=patient.id,
        other_patient_id=other_patient.id,
        specialist_id=specialist.id,
    )

@pytest.fixture
def make_appointment(db, seed):
    """Insert an appointment row directly, bypassing validation."""
    def _make(**overrides):
        values = {
            "clinic_id": seed.clinic_id,
            "patient_id": seed.patient_id,
            "doctor_id": seed.doctor_id,
            "appointment_date": TOMORROW,
            "start_time": time(10, 0),
            "end_time": time(10, 30),
            "status": AppointmentStatus.CONFIRMED,
        }
        values.update(overrides)
        appointment = Appointment(**values)
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment
    return _make

@pytest.fixture
def redis_mock():
    redis_client = MagicMock()
    redis_client.get.return_value = None
    return redis_client

@pytest.fixture
def client(test_db, clock, dispatcher, redis_mock):
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_event_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_redis] = lambda: redis_mock

    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client

    app.dependency_overrides.clear()

@pytest.fixture
def patient_headers():
    return auth_headers(PATIENT_USER_ID, ActorRole.PATIENT)

@pytest.fixture
def doctor_headers():
    return auth_headers(DOCTOR_USER_ID, ActorRole.DOCTOR)

@pytest.fixture
def staff_headers():
    return auth_headers(STAFF_USER_ID, ActorRole.CLINIC_STAFF)

@pytest.fixture
def admin_headers():
    return auth_headers(1, ActorRole.ADMIN)
