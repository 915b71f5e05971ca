import pytest

from clinic_scheduler.models import AppointmentStatus as S
from clinic_scheduler.services import conflicts, lifecycle
from clinic_scheduler.services.errors import InvalidInput, InvalidTransition, NotFound
from conftest import MONDAY, NOW, at


@pytest.fixture
def appointment(store, clinic):
    return lifecycle.create(
        store,
        patient_id=clinic.patient.id,
        doctor_id=clinic.doctor.id,
        service_id=clinic.service.id,
        starts_at=at(MONDAY, "10:00"),
        ends_at=at(MONDAY, "10:30"),
        reason="check-up",
        created_by="reception",
        now=NOW,
    )


def test_created_appointment_starts_scheduled(appointment):
    assert appointment.status is S.SCHEDULED
    assert appointment.duration_minutes == 30
    assert appointment.created_by == "reception"


def test_create_requires_existing_patient(store, clinic):
    with pytest.raises(NotFound):
        lifecycle.create(
            store,
            patient_id=9999,
            doctor_id=clinic.doctor.id,
            service_id=clinic.service.id,
            starts_at=at(MONDAY, "10:00"),
            ends_at=at(MONDAY, "10:30"),
            now=NOW,
        )


@pytest.mark.parametrize(
    "current, target, allowed",
    [
        (S.SCHEDULED, S.CONFIRMED, True),
        (S.SCHEDULED, S.CHECKED_IN, True),
        (S.SCHEDULED, S.IN_PROGRESS, False),
        (S.CONFIRMED, S.NO_SHOW, True),
        (S.CHECKED_IN, S.NO_SHOW, False),
        (S.IN_PROGRESS, S.COMPLETED, True),
        (S.COMPLETED, S.CANCELLED, False),
        (S.CANCELLED, S.SCHEDULED, False),
        (S.NO_SHOW, S.CHECKED_IN, False),
    ],
)
def test_transition_table(current, target, allowed):
    assert lifecycle.can_transition(current, target) is allowed


def test_terminal_statuses():
    assert lifecycle.TERMINAL == {S.COMPLETED, S.CANCELLED, S.NO_SHOW}
    assert lifecycle.is_terminal("cancelled")
    assert not lifecycle.is_terminal("scheduled")


def test_full_visit_stamps_each_step(store, appointment):
    for verb in (lifecycle.confirm, lifecycle.check_in, lifecycle.start, lifecycle.complete):
        verb(store, appointment.id, now=NOW)
    done = store.require_appointment(appointment.id)
    assert done.status is S.COMPLETED
    assert done.confirmed_at and done.checked_in_at and done.started_at and done.completed_at
    assert done.cancelled_at is None


def test_illegal_transition_raises_and_keeps_status(store, appointment):
    with pytest.raises(InvalidTransition) as excinfo:
        lifecycle.complete(store, appointment.id, now=NOW)
    assert str(excinfo.value) == "invalid_transition:scheduled->completed"
    assert store.require_appointment(appointment.id).status is S.SCHEDULED


def test_cancel_releases_the_slot(store, clinic, appointment):
    cancelled = lifecycle.cancel(store, appointment.id, now=NOW)
    assert cancelled.status is S.CANCELLED
    assert cancelled.cancelled_at == "2030-01-01T08:00:00"
    assert not conflicts.has_conflict(store, clinic.doctor.id, at(MONDAY, "10:00"), at(MONDAY, "10:30"))


def test_second_cancel_is_rejected(store, appointment):
    lifecycle.cancel(store, appointment.id, now=NOW)
    with pytest.raises(InvalidTransition):
        lifecycle.cancel(store, appointment.id, now=NOW)
    assert store.require_appointment(appointment.id).cancelled_at == "2030-01-01T08:00:00"


def test_cancelled_slot_can_be_booked_again(store, clinic, appointment):
    lifecycle.cancel(store, appointment.id, now=NOW)
    again = lifecycle.create(
        store,
        patient_id=clinic.patient.id,
        doctor_id=clinic.doctor.id,
        service_id=clinic.service.id,
        starts_at=at(MONDAY, "10:00"),
        ends_at=at(MONDAY, "10:30"),
        now=NOW,
    )
    assert again.id != appointment.id


def test_unknown_appointment_and_status(store, appointment):
    with pytest.raises(NotFound):
        lifecycle.transition(store, 9999, "confirmed")
    with pytest.raises(InvalidInput):
        lifecycle.transition(store, appointment.id, "rescheduled")


def test_status_string_is_accepted(store, appointment):
    assert lifecycle.transition(store, appointment.id, " Confirmed ", now=NOW).status is S.CONFIRMED


def test_mark_overdue_no_shows_only_touches_ended_open_appointments(store, clinic, appointment):
    checked_in = lifecycle.create(
        store,
        patient_id=clinic.patient.id,
        doctor_id=clinic.doctor.id,
        service_id=clinic.service.id,
        starts_at=at(MONDAY, "11:00"),
        ends_at=at(MONDAY, "11:30"),
        now=NOW,
    )
    lifecycle.check_in(store, checked_in.id, now=NOW)
    later = lifecycle.create(
        store,
        patient_id=clinic.patient.id,
        doctor_id=clinic.doctor.id,
        service_id=clinic.service.id,
        starts_at=at(MONDAY, "11:30"),
        ends_at=at(MONDAY, "12:00"),
        now=NOW,
    )

    marked = lifecycle.mark_overdue_no_shows(store, at(MONDAY, "11:45"))

    assert marked == [appointment.id]
    assert store.require_appointment(appointment.id).status is S.NO_SHOW
    assert store.require_appointment(checked_in.id).status is S.CHECKED_IN
    assert store.require_appointment(later.id).status is S.SCHEDULED


def test_list_upcoming_skips_cancelled_and_past(store, clinic, appointment):
    later = lifecycle.create(
        store,
        patient_id=clinic.patient.id,
        doctor_id=clinic.doctor.id,
        service_id=clinic.service.id,
        starts_at=at(MONDAY, "11:00"),
        ends_at=at(MONDAY, "11:30"),
        now=NOW,
    )
    assert [a.id for a in lifecycle.list_upcoming(store, NOW)] == [appointment.id, later.id]
    lifecycle.cancel(store, appointment.id, now=NOW)
    assert [a.id for a in lifecycle.list_upcoming(store, NOW)] == [later.id]
    assert lifecycle.list_upcoming(store, at(MONDAY, "11:15")) == []
