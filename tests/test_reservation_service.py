"""
Tests for seat reservation against slot capacity.
"""

import threading
from datetime import date, timedelta

from conftest import PATIENT_ID, TOMORROW

from app.domain.appointments.repository import AppointmentRepository
from app.domain.appointments.reservation_service import (
    ReservationDetails,
    ReservationOutcome,
    ReservationService,
    parse_appointment_date,
)
from app.domain.scheduling.repository import SlotRepository
from app.models import PAYMENT_UNPAID, STATUS_PENDING, Appointment


def details(appointment_date=None, **kwargs) -> ReservationDetails:
    return ReservationDetails(appointment_date=appointment_date or TOMORROW.isoformat(), **kwargs)


def reserve_concurrently(session_factory, slot_id: int, patient_ids: list[int]):
    """Fire one reservation per patient at the same instant, each on its own connection"""
    barrier = threading.Barrier(len(patient_ids))
    outcomes = []
    errors = []
    lock = threading.Lock()

    def worker(patient_id):
        session = session_factory()
        try:
            barrier.wait()
            result = ReservationService(session).reserve(slot_id, patient_id, details())
            with lock:
                outcomes.append(result.outcome)
        except Exception as e:  # surfaced by the assertion below
            with lock:
                errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=worker, args=(pid,)) for pid in patient_ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    assert not errors, errors
    return outcomes


class TestReserve:
    """Single-request reservation behaviour"""

    def test_reserve_creates_pending_unpaid_appointment(self, db, make_slot):
        slot = make_slot(capacity=2)

        result = ReservationService(db).reserve(slot.id, PATIENT_ID, details(reason="Knee rehab"))

        assert result.outcome == ReservationOutcome.RESERVED
        appointment = result.appointment
        assert appointment.status == STATUS_PENDING
        assert appointment.payment_status == PAYMENT_UNPAID
        assert appointment.slot_id == slot.id
        assert appointment.start_time == slot.start_time
        assert appointment.reason == "Knee rehab"

        db.refresh(slot)
        assert slot.booked_count == 1
        assert slot.is_available is True

    def test_last_seat_closes_the_slot(self, db, make_slot):
        slot = make_slot(capacity=1)

        ReservationService(db).reserve(slot.id, PATIENT_ID, details())

        db.refresh(slot)
        assert slot.booked_count == 1
        assert slot.is_available is False
        assert SlotRepository.list_available(db) == []

    def test_full_slot_is_unavailable(self, db, make_slot):
        slot = make_slot(capacity=1)
        service = ReservationService(db)
        service.reserve(slot.id, PATIENT_ID, details())

        result = service.reserve(slot.id, PATIENT_ID + 1, details())

        assert result.outcome == ReservationOutcome.SLOT_UNAVAILABLE
        assert db.query(Appointment).count() == 1

    def test_disabled_slot_is_unavailable(self, db, make_slot):
        slot = make_slot(capacity=3, is_available=False)

        result = ReservationService(db).reserve(slot.id, PATIENT_ID, details())

        assert result.outcome == ReservationOutcome.SLOT_UNAVAILABLE
        db.refresh(slot)
        assert slot.booked_count == 0

    def test_unknown_slot(self, db):
        result = ReservationService(db).reserve(9999, PATIENT_ID, details())

        assert result.outcome == ReservationOutcome.SLOT_NOT_FOUND
        assert result.field == "slotId"

    def test_unparseable_date(self, db, make_slot):
        slot = make_slot()

        result = ReservationService(db).reserve(slot.id, PATIENT_ID, details("next tuesday"))

        assert result.outcome == ReservationOutcome.INVALID_DATE
        assert result.field == "appointmentDate"
        db.refresh(slot)
        assert slot.booked_count == 0

    def test_past_date(self, db, make_slot):
        yesterday = date.today() - timedelta(days=1)
        slot = make_slot(slot_date=yesterday)

        result = ReservationService(db).reserve(slot.id, PATIENT_ID, details(yesterday.isoformat()))

        assert result.outcome == ReservationOutcome.INVALID_DATE
        assert "past" in result.reason

    def test_date_must_match_slot(self, db, make_slot):
        slot = make_slot()
        other_day = (TOMORROW + timedelta(days=1)).isoformat()

        result = ReservationService(db).reserve(slot.id, PATIENT_ID, details(other_day))

        assert result.outcome == ReservationOutcome.INVALID_DATE
        db.refresh(slot)
        assert slot.booked_count == 0

    def test_release_reopens_slot(self, db, make_slot):
        slot = make_slot(capacity=1)
        service = ReservationService(db)
        appointment = service.reserve(slot.id, PATIENT_ID, details()).appointment

        assert service.release(appointment) is True
        db.commit()

        db.refresh(slot)
        assert slot.booked_count == 0
        assert slot.is_available is True

    def test_release_keeps_disabled_slot_closed(self, db, make_slot):
        slot = make_slot(capacity=2)
        service = ReservationService(db)
        appointment = service.reserve(slot.id, PATIENT_ID, details()).appointment
        SlotRepository.update_slot(db, slot, disabled=True)

        service.release(appointment)
        db.commit()

        db.refresh(slot)
        assert slot.booked_count == 0
        assert slot.is_available is False

    def test_release_never_goes_negative(self, db, make_slot):
        slot = make_slot()
        orphan = Appointment(slot_id=slot.id, patient_id=PATIENT_ID, appointment_date=TOMORROW, start_time="10:00")

        assert ReservationService(db).release(orphan) is False
        db.refresh(slot)
        assert slot.booked_count == 0


class TestParseAppointmentDate:
    def test_accepts_common_spellings(self):
        expected = date(2031, 6, 1)
        assert parse_appointment_date("2031-06-01") == expected
        assert parse_appointment_date("2031-06-01T00:00:00.000Z") == expected
        assert parse_appointment_date("June 1, 2031") == expected
        assert parse_appointment_date(expected) == expected

    def test_rejects_garbage(self):
        assert parse_appointment_date("") is None
        assert parse_appointment_date(None) is None
        assert parse_appointment_date("31/31/2031") is None


class TestConcurrentReservations:
    """Capacity must hold when reservations race"""

    def test_two_requests_for_last_seat(self, db, session_factory, make_slot):
        slot = make_slot(capacity=1)

        outcomes = reserve_concurrently(session_factory, slot.id, [PATIENT_ID, PATIENT_ID + 1])

        assert sorted(o.value for o in outcomes) == ["reserved", "slot_unavailable"]
        db.refresh(slot)
        assert slot.booked_count == 1
        assert AppointmentRepository.count_active_for_slot(db, slot.id) == 1

    def test_many_requests_never_overbook(self, db, session_factory, make_slot):
        slot = make_slot(capacity=3)

        outcomes = reserve_concurrently(session_factory, slot.id, list(range(100, 110)))

        assert outcomes.count(ReservationOutcome.RESERVED) == 3
        assert outcomes.count(ReservationOutcome.SLOT_UNAVAILABLE) == 7
        db.refresh(slot)
        assert slot.booked_count == slot.capacity == 3
        assert slot.is_available is False
        assert AppointmentRepository.count_active_for_slot(db, slot.id) == 3
