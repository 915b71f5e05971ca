"""Appointment status state machine.

Everything not listed in `TRANSITIONS` is illegal. Cancelling releases the
doctor and room for later bookings because conflict checks ignore cancelled
rows; there is nothing else to undo, so a repeated cancel is rejected with
`InvalidTransition` rather than applied twice.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from clinic_scheduler.models import AppointmentStatus
from clinic_scheduler.services.errors import InvalidInput, InvalidTransition, NotFound
from clinic_scheduler.services.store import AppointmentRecord, SchedulingStore
from clinic_scheduler.services.timefmt import local_now, serialize

S = AppointmentStatus

TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    S.SCHEDULED: frozenset({S.CONFIRMED, S.CANCELLED, S.NO_SHOW, S.CHECKED_IN}),
    S.CONFIRMED: frozenset({S.CHECKED_IN, S.CANCELLED, S.NO_SHOW}),
    S.CHECKED_IN: frozenset({S.IN_PROGRESS, S.CANCELLED}),
    S.IN_PROGRESS: frozenset({S.COMPLETED, S.CANCELLED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
    S.NO_SHOW: frozenset(),
}

TERMINAL = frozenset(status for status, targets in TRANSITIONS.items() if not targets)

STAMP_COLUMNS: dict[AppointmentStatus, str] = {
    S.CONFIRMED: "confirmed_at",
    S.CHECKED_IN: "checked_in_at",
    S.IN_PROGRESS: "started_at",
    S.COMPLETED: "completed_at",
    S.CANCELLED: "cancelled_at",
    S.NO_SHOW: "no_show_at",
}

# Statuses whose slot may still be moved to another time.
MOVABLE = frozenset({S.SCHEDULED, S.CONFIRMED})


def coerce_status(value: AppointmentStatus | str) -> AppointmentStatus:
    if isinstance(value, AppointmentStatus):
        return value
    try:
        return AppointmentStatus((value or "").strip().lower())
    except ValueError as exc:
        raise InvalidInput("invalid_status") from exc


def can_transition(current: AppointmentStatus | str, target: AppointmentStatus | str) -> bool:
    return coerce_status(target) in TRANSITIONS[coerce_status(current)]


def is_terminal(status: AppointmentStatus | str) -> bool:
    return coerce_status(status) in TERMINAL


def create(
    store: SchedulingStore,
    *,
    patient_id: int,
    doctor_id: int,
    service_id: int,
    starts_at: datetime,
    ends_at: datetime,
    room_id: int | None = None,
    reason: str | None = None,
    created_by: str | None = None,
    now: datetime | None = None,
) -> AppointmentRecord:
    """Insert a `scheduled` appointment. The slot must already have been validated."""

    if starts_at >= ends_at:
        raise InvalidInput("empty_interval")
    if store.get_patient(patient_id) is None:
        raise NotFound("patient", patient_id)
    appointment = store.insert_appointment(
        patient_id=patient_id,
        doctor_id=doctor_id,
        service_id=service_id,
        room_id=room_id,
        starts_at=starts_at,
        ends_at=ends_at,
        reason=reason,
        created_by=created_by,
        now=now or local_now(),
    )
    current_app.logger.info(
        "Appointment %s scheduled for doctor %s at %s",
        appointment.id,
        doctor_id,
        serialize(starts_at),
    )
    return appointment


def transition(
    store: SchedulingStore,
    appointment_id: int,
    target: AppointmentStatus | str,
    *,
    now: datetime | None = None,
) -> AppointmentRecord:
    target_status = coerce_status(target)
    now = now or local_now()
    with store.write():
        appointment = store.require_appointment(appointment_id)
        current = appointment.status
        if target_status not in TRANSITIONS[current]:
            raise InvalidTransition(current.value, target_status.value)
        updated = store.update_status(
            appointment_id,
            current,
            target_status,
            stamp_column=STAMP_COLUMNS.get(target_status),
            now=now,
        )
        if not updated:
            latest = store.require_appointment(appointment_id)
            raise InvalidTransition(latest.status.value, target_status.value)
    current_app.logger.info(
        "Appointment %s moved %s -> %s", appointment_id, current.value, target_status.value
    )
    return store.require_appointment(appointment_id)


def confirm(store: SchedulingStore, appointment_id: int, **kwargs) -> AppointmentRecord:
    return transition(store, appointment_id, S.CONFIRMED, **kwargs)


def check_in(store: SchedulingStore, appointment_id: int, **kwargs) -> AppointmentRecord:
    return transition(store, appointment_id, S.CHECKED_IN, **kwargs)


def start(store: SchedulingStore, appointment_id: int, **kwargs) -> AppointmentRecord:
    return transition(store, appointment_id, S.IN_PROGRESS, **kwargs)


def complete(store: SchedulingStore, appointment_id: int, **kwargs) -> AppointmentRecord:
    return transition(store, appointment_id, S.COMPLETED, **kwargs)


def cancel(store: SchedulingStore, appointment_id: int, **kwargs) -> AppointmentRecord:
    return transition(store, appointment_id, S.CANCELLED, **kwargs)


def mark_no_show(store: SchedulingStore, appointment_id: int, **kwargs) -> AppointmentRecord:
    return transition(store, appointment_id, S.NO_SHOW, **kwargs)


def mark_overdue_no_shows(store: SchedulingStore, now: datetime | None = None) -> list[int]:
    """Move scheduled/confirmed appointments that already ended to `no_show`."""

    now = now or local_now()
    marked: list[int] = []
    for appointment in store.ended_before(now, [S.SCHEDULED, S.CONFIRMED]):
        try:
            transition(store, appointment.id, S.NO_SHOW, now=now)
        except InvalidTransition:
            # Someone checked the patient in after the query ran.
            continue
        marked.append(appointment.id)
    if marked:
        current_app.logger.info("Marked %d overdue appointments as no_show", len(marked))
    return marked


def list_upcoming(
    store: SchedulingStore,
    now: datetime | None = None,
    *,
    doctor_id: int | None = None,
    limit: int = 200,
) -> list[AppointmentRecord]:
    """Non-cancelled appointments starting at or after `now`, earliest first."""

    return store.upcoming(now or local_now(), doctor_id=doctor_id, limit=limit)
