import redis
from datetime import time
from jose import jwt

from clinic_booking.core.config import settings
from clinic_booking.core.security import ActorRole
from clinic_booking.models.clinic import Clinic
from clinic_booking.models.doctor import Doctor, DoctorClinic
from clinic_booking.scheduling.state_machine import AppointmentStatus

from .data import PATIENT_USER_ID, SUNDAY, TODAY, TOMORROW, WEEKLY_SCHEDULE, auth_headers

def booking_data(seed, **overrides):
    data = {
        "clinic_id": seed.clinic_id,
        "doctor_id": seed.doctor_id,
        "patient_id": seed.patient_id,
        "appointment_date": TOMORROW.isoformat(),
        "start_time": "10:00",
        "end_time": "10:30",
    }
    data.update(overrides)
    return data

def book(client, headers, seed, **overrides):
    return client.post("/api/v1/appointments", json=booking_data(seed, **overrides), headers=headers)

class TestBookAppointment:

    def test_book_appointment(self, client, seed, patient_headers, recorder):
        """Test booking a free slot."""
        response = book(client, patient_headers, seed, notes="Follow-up", specialist_id=seed.specialist_id)
        assert response.status_code == 201

        data = response.json()
        assert data["outcome"] == "created"
        appointment = data["appointment"]
        assert appointment["status"] == "PENDING"
        assert appointment["start_time"] == "10:00"
        assert appointment["end_time"] == "10:30"
        assert appointment["appointment_date"] == "2026-03-03"
        assert appointment["specialist_id"] == seed.specialist_id
        assert appointment["notes"] == "Follow-up"

        assert recorder.types() == ["CREATED"]
        event = recorder.events[0]
        assert event.appointment_id == appointment["id"]
        assert event.patient_contact.name == "Ravi Kumar"
        assert event.doctor_name == "Dr. Asha Rao"
        assert event.clinic_name == "Lakeside Clinic"
        assert event.start_time == "10:00"

    def test_idempotent_replay(self, client, seed, patient_headers, recorder):
        """Test repeating a request with the same idempotency key."""
        first = book(client, patient_headers, seed, idempotency_key="booking-42")
        second = book(client, patient_headers, seed, idempotency_key="booking-42")

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["outcome"] == "replayed"
        assert second.json()["appointment"]["id"] == first.json()["appointment"]["id"]
        assert recorder.types() == ["CREATED"]

    def test_double_booking_conflict(self, client, seed, patient_headers):
        """Test booking a slot that is already taken."""
        assert book(client, patient_headers, seed).status_code == 201

        response = book(client, patient_headers, seed, patient_id=seed.other_patient_id)
        assert response.status_code == 409
        assert response.json()["error"] == "SLOT_ALREADY_BOOKED"

    def test_staff_booking_inside_hours(self, client, seed, staff_headers, patient_headers):
        """Staff may book off-grid intervals; patients may not."""
        response = book(client, staff_headers, seed, start_time="10:15", end_time="10:45")
        assert response.status_code == 201

        response = book(client, patient_headers, seed, start_time="11:15", end_time="11:45")
        assert response.status_code == 400
        assert response.json()["error"] == "OUTSIDE_WORKING_HOURS"

    def test_staff_overlap_conflict(self, client, seed, staff_headers):
        assert book(client, staff_headers, seed).status_code == 201

        response = book(client, staff_headers, seed, start_time="10:15", end_time="10:45")
        assert response.status_code == 409
        assert response.json()["error"] == "SLOT_ALREADY_BOOKED"

        response = book(client, staff_headers, seed, start_time="10:30", end_time="11:00")
        assert response.status_code == 201

    def test_book_past_date(self, client, seed, patient_headers):
        response = book(client, patient_headers, seed, appointment_date="2026-03-01")
        assert response.status_code == 400
        assert response.json()["error"] == "PAST_DATE"

    def test_book_day_off(self, client, seed, patient_headers):
        response = book(client, patient_headers, seed, appointment_date=SUNDAY.isoformat())
        assert response.status_code == 400
        assert response.json()["error"] == "OUTSIDE_WORKING_HOURS"

    def test_book_too_far_ahead(self, client, seed, patient_headers):
        response = book(client, patient_headers, seed, appointment_date="2026-04-02")
        assert response.status_code == 400
        assert response.json()["error"] == "OUT_OF_ADVANCE_WINDOW"

    def test_book_invalid_time_range(self, client, seed, patient_headers):
        response = book(client, patient_headers, seed, start_time="10:30", end_time="10:00")
        assert response.status_code == 400

        data = response.json()
        assert data["error"] == "INVALID_TIME_RANGE"
        assert data["details"] == {"start_time": "10:30", "end_time": "10:00"}

    def test_book_unknown_doctor(self, client, seed, patient_headers):
        response = book(client, patient_headers, seed, doctor_id=999)
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"
        assert response.json()["details"]["resource"] == "Doctor"

    def test_book_specialist_of_other_clinic(self, client, seed, patient_headers):
        response = book(client, patient_headers, seed, specialist_id=999)
        assert response.status_code == 404

    def test_book_without_token(self, client, seed):
        response = client.post("/api/v1/appointments", json=booking_data(seed))
        assert response.status_code in (401, 403)

    def test_book_with_invalid_token(self, client, seed):
        headers = {"Authorization": "Bearer not-a-token"}
        response = client.post("/api/v1/appointments", json=booking_data(seed), headers=headers)
        assert response.status_code == 401

    def test_book_with_refresh_token(self, client, seed):
        token = jwt.encode(
            {"sub": str(PATIENT_USER_ID), "role": "patient", "token_type": "refresh"},
            settings.SECRET_KEY,
            algorithm=settings.ALGORITHM
        )
        headers = {"Authorization": f"Bearer {token}"}
        response = client.post("/api/v1/appointments", json=booking_data(seed), headers=headers)
        assert response.status_code == 401

    def test_rate_limited(self, client, seed, patient_headers, redis_mock):
        redis_mock.get.return_value = "60"

        response = book(client, patient_headers, seed)
        assert response.status_code == 429

    def test_rate_limit_window_starts(self, client, seed, patient_headers, redis_mock):
        book(client, patient_headers, seed)
        redis_mock.setex.assert_called_once_with("rate_limit:booking:testclient", 3600, 1)

    def test_booking_proceeds_without_redis(self, client, seed, patient_headers, redis_mock, caplog):
        redis_mock.get.side_effect = redis.ConnectionError("Connection refused")

        response = book(client, patient_headers, seed)
        assert response.status_code == 201
        assert "Rate limit check skipped" in caplog.text

    def test_auto_confirm_clinic(self, client, db, seed, patient_headers, recorder):
        clinic = db.get(Clinic, seed.clinic_id)
        clinic.auto_confirm = True
        db.commit()

        response = book(client, patient_headers, seed)
        assert response.status_code == 201

        appointment = response.json()["appointment"]
        assert appointment["status"] == "CONFIRMED"
        # 08:00 in the clinic is stored as UTC
        assert appointment["confirmed_at"].startswith("2026-03-02T02:30:00")
        assert recorder.types() == ["CREATED"]

    def test_inactive_doctor_has_no_hours(self, client, db, seed, patient_headers):
        doctor = db.get(Doctor, seed.doctor_id)
        doctor.is_active = False
        db.commit()

        response = book(client, patient_headers, seed)
        assert response.status_code == 400
        assert response.json()["error"] == "OUTSIDE_WORKING_HOURS"

    def test_doctor_is_booked_across_clinics(self, client, db, seed, staff_headers):
        """A doctor cannot be in two clinics at once."""
        other_clinic = Clinic(name="Hillside Clinic", timezone="Asia/Kolkata")
        db.add(other_clinic)
        db.flush()
        db.add(DoctorClinic(doctor_id=seed.doctor_id, clinic_id=other_clinic.id, schedule=WEEKLY_SCHEDULE))
        db.commit()

        assert book(client, staff_headers, seed).status_code == 201

        response = book(client, staff_headers, seed, clinic_id=other_clinic.id)
        assert response.status_code == 409

class TestAvailableSlots:

    def slots(self, client, seed, target_date):
        response = client.get(
            "/api/v1/appointments/slots",
            params={"clinic_id": seed.clinic_id, "doctor_id": seed.doctor_id, "date": target_date.isoformat()}
        )
        assert response.status_code == 200
        return response.json()

    def test_slots_for_working_day(self, client, seed):
        slots = self.slots(client, seed, TOMORROW)
        assert len(slots) == 8
        assert slots[0] == {"start": "09:00", "end": "09:30", "available": True}
        assert slots[-1] == {"start": "12:30", "end": "13:00", "available": True}

    def test_booked_slot_unavailable(self, client, seed, patient_headers):
        book(client, patient_headers, seed)

        slots = self.slots(client, seed, TOMORROW)
        unavailable = [slot["start"] for slot in slots if not slot["available"]]
        assert unavailable == ["10:00"]

    def test_slots_on_day_off(self, client, seed):
        assert self.slots(client, seed, SUNDAY) == []

    def test_started_slots_today(self, client, seed, clock):
        clock.advance(hours=2, minutes=10)

        slots = self.slots(client, seed, TODAY)
        unavailable = [slot["start"] for slot in slots if not slot["available"]]
        assert unavailable == ["09:00", "09:30", "10:00"]

    def test_slots_unknown_clinic(self, client, seed):
        response = client.get(
            "/api/v1/appointments/slots",
            params={"clinic_id": 999, "doctor_id": seed.doctor_id, "date": TOMORROW.isoformat()}
        )
        assert response.status_code == 404

    def test_slots_doctor_not_at_clinic(self, client, db, seed):
        db.add(Clinic(name="Hillside Clinic"))
        db.commit()
        other_clinic = db.query(Clinic).filter(Clinic.name == "Hillside Clinic").first()

        response = client.get(
            "/api/v1/appointments/slots",
            params={"clinic_id": other_clinic.id, "doctor_id": seed.doctor_id, "date": TOMORROW.isoformat()}
        )
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

class TestAppointmentLifecycle:

    def test_staff_confirms(self, client, seed, patient_headers, staff_headers, recorder):
        appointment_id = book(client, patient_headers, seed).json()["appointment"]["id"]

        response = client.patch(
            f"/api/v1/appointments/{appointment_id}/status",
            json={"status": "CONFIRMED"},
            headers=staff_headers
        )
        assert response.status_code == 200
        assert response.json()["status"] == "CONFIRMED"
        assert response.json()["confirmed_at"].startswith("2026-03-02T02:30:00")
        assert recorder.types() == ["CREATED", "CONFIRMED"]

    def test_patient_cannot_confirm(self, client, seed, patient_headers):
        appointment_id = book(client, patient_headers, seed).json()["appointment"]["id"]

        response = client.patch(
            f"/api/v1/appointments/{appointment_id}/status",
            json={"status": "CONFIRMED"},
            headers=patient_headers
        )
        assert response.status_code == 409

        data = response.json()
        assert data["error"] == "INVALID_STATE_TRANSITION"
        assert data["details"]["actor_role"] == "patient"

    def test_doctor_completes(self, client, seed, patient_headers, doctor_headers, recorder):
        appointment_id = book(client, patient_headers, seed).json()["appointment"]["id"]

        response = client.patch(
            f"/api/v1/appointments/{appointment_id}/status",
            json={"status": "COMPLETED"},
            headers=doctor_headers
        )
        assert response.status_code == 200
        assert response.json()["completed_at"].startswith("2026-03-02T02:30:00")
        assert recorder.types() == ["CREATED", "COMPLETED"]

    def test_completed_is_final(self, client, seed, patient_headers, staff_headers, make_appointment):
        appointment = make_appointment(status=AppointmentStatus.COMPLETED)

        response = client.post(f"/api/v1/appointments/{appointment.id}/cancel", headers=staff_headers)
        assert response.status_code == 409
        assert response.json()["details"]["current_status"] == "COMPLETED"

    def test_no_show_is_not_announced(self, client, seed, staff_headers, make_appointment, recorder):
        appointment = make_appointment(appointment_date=TODAY, start_time=time(9, 0), end_time=time(9, 30))

        response = client.patch(
            f"/api/v1/appointments/{appointment.id}/status",
            json={"status": "NO_SHOW"},
            headers=staff_headers
        )
        assert response.status_code == 200
        assert response.json()["status"] == "NO_SHOW"
        assert recorder.events == []

    def test_status_update_unknown_appointment(self, client, staff_headers, test_db):
        response = client.patch(
            "/api/v1/appointments/999/status",
            json={"status": "CONFIRMED"},
            headers=staff_headers
        )
        assert response.status_code == 404

    def test_status_update_rejects_unknown_status(self, client, seed, staff_headers, make_appointment):
        appointment = make_appointment()
        response = client.patch(
            f"/api/v1/appointments/{appointment.id}/status",
            json={"status": "ARCHIVED"},
            headers=staff_headers
        )
        assert response.status_code == 422

class TestCancelAppointment:

    def test_patient_cancels_ahead_of_time(self, client, seed, patient_headers, recorder):
        appointment_id = book(client, patient_headers, seed).json()["appointment"]["id"]

        response = client.post(
            f"/api/v1/appointments/{appointment_id}/cancel",
            json={"reason": "Feeling better"},
            headers=patient_headers
        )
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "CANCELLED"
        assert data["cancelled_reason"] == "Feeling better"
        assert data["cancelled_at"] is not None
        assert recorder.types() == ["CREATED", "CANCELLED"]

    def test_cancelled_slot_can_be_rebooked(self, client, seed, patient_headers):
        appointment_id = book(client, patient_headers, seed).json()["appointment"]["id"]
        client.post(f"/api/v1/appointments/{appointment_id}/cancel", headers=patient_headers)

        response = book(client, patient_headers, seed, patient_id=seed.other_patient_id)
        assert response.status_code == 201

    def test_patient_inside_notice_period(self, client, seed, patient_headers, staff_headers):
        """At 08:00, an 11:00 appointment is inside the four hour cutoff."""
        appointment_id = book(
            client, patient_headers, seed,
            appointment_date=TODAY.isoformat(), start_time="11:00", end_time="11:30"
        ).json()["appointment"]["id"]

        response = client.post(f"/api/v1/appointments/{appointment_id}/cancel", headers=patient_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "CANCELLATION_WINDOW_PASSED"

        response = client.post(f"/api/v1/appointments/{appointment_id}/cancel", headers=staff_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "CANCELLED"

    def test_cancel_through_status_update(self, client, seed, patient_headers):
        appointment_id = book(client, patient_headers, seed).json()["appointment"]["id"]

        response = client.patch(
            f"/api/v1/appointments/{appointment_id}/status",
            json={"status": "CANCELLED", "reason": "Travelling"},
            headers=patient_headers
        )
        assert response.status_code == 200
        assert response.json()["cancelled_reason"] == "Travelling"

    def test_doctor_cannot_cancel(self, client, seed, patient_headers, doctor_headers):
        appointment_id = book(client, patient_headers, seed).json()["appointment"]["id"]

        response = client.post(f"/api/v1/appointments/{appointment_id}/cancel", headers=doctor_headers)
        assert response.status_code == 409

    def test_cancel_twice(self, client, seed, patient_headers):
        appointment_id = book(client, patient_headers, seed).json()["appointment"]["id"]
        client.post(f"/api/v1/appointments/{appointment_id}/cancel", headers=patient_headers)

        response = client.post(f"/api/v1/appointments/{appointment_id}/cancel", headers=patient_headers)
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_STATE_TRANSITION"

class TestRescheduleAppointment:

    def reschedule(self, client, appointment_id, headers, start_time, end_time, appointment_date=TOMORROW):
        return client.put(
            f"/api/v1/appointments/{appointment_id}/reschedule",
            json={
                "appointment_date": appointment_date.isoformat(),
                "start_time": start_time,
                "end_time": end_time
            },
            headers=headers
        )

    def test_staff_reschedules(self, client, seed, patient_headers, staff_headers):
        appointment_id = book(client, patient_headers, seed).json()["appointment"]["id"]

        response = self.reschedule(client, appointment_id, staff_headers, "11:00", "11:30")
        assert response.status_code == 200
        assert response.json()["start_time"] == "11:00"

        slots = client.get(
            "/api/v1/appointments/slots",
            params={"clinic_id": seed.clinic_id, "doctor_id": seed.doctor_id, "date": TOMORROW.isoformat()}
        ).json()
        assert [slot["start"] for slot in slots if not slot["available"]] == ["11:00"]

    def test_shift_within_own_slot(self, client, seed, patient_headers, staff_headers):
        """An appointment does not conflict with its own current time."""
        appointment_id = book(client, patient_headers, seed).json()["appointment"]["id"]

        response = self.reschedule(client, appointment_id, staff_headers, "10:15", "10:45")
        assert response.status_code == 200

    def test_doctor_reschedules_onto_grid_only(self, client, seed, patient_headers, doctor_headers):
        appointment_id = book(client, patient_headers, seed).json()["appointment"]["id"]

        response = self.reschedule(client, appointment_id, doctor_headers, "11:15", "11:45")
        assert response.status_code == 400
        assert response.json()["error"] == "OUTSIDE_WORKING_HOURS"

        response = self.reschedule(client, appointment_id, doctor_headers, "11:30", "12:00")
        assert response.status_code == 200

    def test_reschedule_onto_taken_slot(self, client, seed, patient_headers, staff_headers):
        first = book(client, patient_headers, seed).json()["appointment"]["id"]
        book(client, patient_headers, seed, start_time="11:00", end_time="11:30")

        response = self.reschedule(client, first, staff_headers, "11:00", "11:30")
        assert response.status_code == 409

    def test_patient_cannot_reschedule(self, client, seed, patient_headers):
        appointment_id = book(client, patient_headers, seed).json()["appointment"]["id"]

        response = self.reschedule(client, appointment_id, patient_headers, "11:00", "11:30")
        assert response.status_code == 403

    def test_closed_appointment_cannot_move(self, client, seed, staff_headers, make_appointment):
        appointment = make_appointment(status=AppointmentStatus.CANCELLED)

        response = self.reschedule(client, appointment.id, staff_headers, "11:00", "11:30")
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_STATE_TRANSITION"

class TestListAppointments:

    def test_get_appointment(self, client, seed, patient_headers):
        appointment_id = book(client, patient_headers, seed).json()["appointment"]["id"]

        response = client.get(f"/api/v1/appointments/{appointment_id}", headers=patient_headers)
        assert response.status_code == 200
        assert response.json()["id"] == appointment_id

    def test_get_unknown_appointment(self, client, patient_headers, test_db):
        response = client.get("/api/v1/appointments/999", headers=patient_headers)
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    def test_list_is_ordered_by_slot(self, client, seed, staff_headers, make_appointment):
        make_appointment(start_time=time(11, 0), end_time=time(11, 30))
        make_appointment(appointment_date=TODAY, start_time=time(12, 0), end_time=time(12, 30))
        make_appointment(start_time=time(9, 0), end_time=time(9, 30))

        response = client.get(
            "/api/v1/appointments",
            params={"doctor_id": seed.doctor_id},
            headers=staff_headers
        )
        assert response.status_code == 200
        assert [(item["appointment_date"], item["start_time"]) for item in response.json()] == [
            ("2026-03-02", "12:00"),
            ("2026-03-03", "09:00"),
            ("2026-03-03", "11:00"),
        ]

    def test_list_filters(self, client, seed, staff_headers, make_appointment):
        make_appointment(status=AppointmentStatus.CANCELLED)
        make_appointment(start_time=time(11, 0), end_time=time(11, 30), patient_id=seed.other_patient_id)

        response = client.get(
            "/api/v1/appointments",
            params={"status": "CANCELLED", "date": TOMORROW.isoformat()},
            headers=staff_headers
        )
        assert [item["status"] for item in response.json()] == ["CANCELLED"]

        response = client.get(
            "/api/v1/appointments",
            params={"patient_id": seed.other_patient_id},
            headers=staff_headers
        )
        assert [item["start_time"] for item in response.json()] == ["11:00"]

    def test_list_pagination(self, client, seed, staff_headers, make_appointment):
        for hour in (9, 10, 11):
            make_appointment(start_time=time(hour, 0), end_time=time(hour, 30))

        response = client.get("/api/v1/appointments", params={"skip": 1, "limit": 1}, headers=staff_headers)
        assert [item["start_time"] for item in response.json()] == ["10:00"]

class TestServiceEndpoints:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["checks"] == {"database": True, "redis": True}

    def test_health_without_redis(self, client, redis_mock):
        """Rate limiting is degraded but bookings still work."""
        redis_mock.ping.side_effect = redis.ConnectionError("connection refused")

        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    def test_unknown_route(self, client):
        response = client.get("/api/v1/unknown")
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    def test_api_info(self, client):
        response = client.get("/api/v1/info")
        assert response.status_code == 200
        assert "appointments" in response.json()["endpoints"]

    def test_admin_token(self, client, seed):
        headers = auth_headers(1, ActorRole.ADMIN)
        response = client.get("/api/v1/appointments", headers=headers)
        assert response.status_code == 200
