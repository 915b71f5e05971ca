import sqlite3

import pytest

from clinic_scheduler.services import lifecycle
from clinic_scheduler.services.errors import IntegrityViolation, InvalidInput
from conftest import MONDAY, MONDAY_DOW, NOW, at


def _book(store, clinic):
    return lifecycle.create(
        store,
        patient_id=clinic.patient.id,
        doctor_id=clinic.doctor.id,
        service_id=clinic.service.id,
        starts_at=at(MONDAY, "10:00"),
        ends_at=at(MONDAY, "10:30"),
        now=NOW,
    )


def test_doctor_with_appointments_cannot_be_deleted(store, clinic):
    _book(store, clinic)
    with pytest.raises(IntegrityViolation):
        store.delete_doctor(clinic.doctor.id)
    assert store.get_doctor(clinic.doctor.id) is not None


def test_deleting_free_doctor_removes_rules_and_exceptions(store, clinic):
    store.set_exception(clinic.doctor.id, MONDAY, is_available=False)
    store.delete_doctor(clinic.doctor.id)
    assert store.get_doctor(clinic.doctor.id) is None
    assert store.rules_for(clinic.doctor.id, MONDAY_DOW) == []
    assert store.exception_for(clinic.doctor.id, MONDAY) is None


def test_deleting_patient_cascades_to_appointments(store, clinic):
    appt = _book(store, clinic)
    store.delete_patient(clinic.patient.id)
    assert store.get_appointment(appt.id) is None


def test_deleting_room_keeps_appointment_without_room(store, clinic):
    appt = lifecycle.create(
        store,
        patient_id=clinic.patient.id,
        doctor_id=clinic.doctor.id,
        service_id=clinic.service.id,
        starts_at=at(MONDAY, "10:00"),
        ends_at=at(MONDAY, "10:30"),
        room_id=clinic.room.id,
        now=NOW,
    )
    with store.write():
        store.conn.execute("DELETE FROM rooms WHERE id=?", (clinic.room.id,))
    assert store.require_appointment(appt.id).room_id is None


def test_rule_validation(store, clinic):
    with pytest.raises(InvalidInput):
        store.add_rule(clinic.doctor.id, 7, "09:00", "12:00")
    with pytest.raises(InvalidInput):
        store.add_rule(clinic.doctor.id, MONDAY_DOW, "12:00", "09:00")


def test_non_positive_duration_and_capacity_are_rejected(store):
    with pytest.raises(InvalidInput):
        store.add_service("ZERO", "Nothing", duration_minutes=0)
    with pytest.raises(InvalidInput):
        store.add_room("NONE", capacity=0)


def test_status_check_constraint(store, clinic):
    appt = _book(store, clinic)
    with pytest.raises(sqlite3.IntegrityError):
        with store.write():
            store.conn.execute("UPDATE appointments SET status='rescheduled' WHERE id=?", (appt.id,))


def test_write_rolls_back_on_error(store, clinic):
    with pytest.raises(RuntimeError):
        with store.write():
            store.add_patient("Ghost")
            raise RuntimeError("boom")
    count = store.conn.execute("SELECT COUNT(*) FROM patients WHERE full_name='Ghost'").fetchone()[0]
    assert count == 0
