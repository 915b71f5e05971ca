"""Serialized validate-then-create path for appointments.

Per-doctor locks order bookings inside this process; `BEGIN IMMEDIATE`
orders them across processes. The partial unique index on
(doctor_id, starts_at) stays as a backstop: losing that race raises
`ConcurrencyConflict`, which is retried once and then reported as
`doctor_busy`.
"""

from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from flask import current_app

from clinic_scheduler.services import lifecycle
from clinic_scheduler.services.errors import ConcurrencyConflict, InvalidTransition
from clinic_scheduler.services.slots import RejectionReason, SlotDecision, validate_slot
from clinic_scheduler.services.store import AppointmentRecord, SchedulingStore
from clinic_scheduler.services.timefmt import local_now, parse_datetime, serialize

MAX_ATTEMPTS = 2

# Default for `reschedule(room_id=...)`: leave the appointment in its current room.
KEEP_ROOM = object()


@dataclass(frozen=True)
class BookingRequest:
    patient_id: int
    doctor_id: int
    service_id: int
    starts_at: datetime | str
    room_id: int | None = None
    reason: str | None = None
    created_by: str | None = None


@dataclass(frozen=True)
class BookingResult:
    decision: SlotDecision
    appointment: AppointmentRecord | None = None

    @property
    def ok(self) -> bool:
        return self.appointment is not None

    def as_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"success": self.ok, **self.decision.as_dict()}
        if self.appointment is not None:
            payload["appointment"] = self.appointment.as_dict()
        return payload


class DoctorLocks:
    """Process-wide registry of one mutex per doctor."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}

    def for_doctor(self, doctor_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(doctor_id)
            if lock is None:
                lock = self._locks[doctor_id] = threading.Lock()
            return lock


doctor_locks = DoctorLocks()


def _with_retry(attempt: Callable[[], BookingResult], start: datetime) -> BookingResult:
    for number in range(1, MAX_ATTEMPTS + 1):
        try:
            return attempt()
        except ConcurrencyConflict:
            current_app.logger.info(
                "Lost the slot race at %s (attempt %d/%d)", serialize(start), number, MAX_ATTEMPTS
            )
    return BookingResult(SlotDecision.reject(start, RejectionReason.DOCTOR_BUSY))


def book(
    request: BookingRequest,
    *,
    now: datetime | None = None,
    connect: Callable[[], sqlite3.Connection] | None = None,
    locks: DoctorLocks | None = None,
) -> BookingResult:
    """Validate the requested slot and create the appointment atomically."""

    start = parse_datetime(request.starts_at)
    now = now or local_now()

    def attempt() -> BookingResult:
        with SchedulingStore.open(connect) as store, store.write():
            decision = validate_slot(
                store,
                request.doctor_id,
                request.service_id,
                start,
                request.room_id,
                now=now,
            )
            if not decision.ok:
                return BookingResult(decision)
            appointment = lifecycle.create(
                store,
                patient_id=request.patient_id,
                doctor_id=request.doctor_id,
                service_id=request.service_id,
                starts_at=decision.start,
                ends_at=decision.end,
                room_id=request.room_id,
                reason=request.reason,
                created_by=request.created_by,
                now=now,
            )
            return BookingResult(decision, appointment)

    with (locks or doctor_locks).for_doctor(request.doctor_id):
        result = _with_retry(attempt, start)
    if not result.ok:
        current_app.logger.info(
            "Booking rejected for doctor %s at %s: %s",
            request.doctor_id,
            serialize(start),
            result.decision.reason.value if result.decision.reason else "unknown",
        )
    return result


def reschedule(
    appointment_id: int,
    new_start: datetime | str,
    *,
    room_id: int | None | object = KEEP_ROOM,
    now: datetime | None = None,
    connect: Callable[[], sqlite3.Connection] | None = None,
    locks: DoctorLocks | None = None,
) -> BookingResult:
    """Move a scheduled/confirmed appointment to a new start with the same doctor and service.

    The appointment being moved is ignored by the conflict checks. Omitting
    `room_id` keeps the current room; `None` takes the appointment out of it.
    """

    start = parse_datetime(new_start)
    now = now or local_now()
    with SchedulingStore.open(connect) as store:
        doctor_id = store.require_appointment(appointment_id).doctor_id

    def attempt() -> BookingResult:
        with SchedulingStore.open(connect) as store, store.write():
            appointment = store.require_appointment(appointment_id)
            if appointment.status not in lifecycle.MOVABLE:
                raise InvalidTransition(appointment.status.value, "rescheduled")
            target_room = appointment.room_id if room_id is KEEP_ROOM else room_id
            decision = validate_slot(
                store,
                appointment.doctor_id,
                appointment.service_id,
                start,
                target_room,
                now=now,
                exclude_appointment_id=appointment.id,
            )
            if not decision.ok:
                return BookingResult(decision)
            store.move_appointment(
                appointment.id,
                starts_at=decision.start,
                ends_at=decision.end,
                room_id=target_room,
                now=now,
            )
            return BookingResult(decision, store.require_appointment(appointment.id))

    with (locks or doctor_locks).for_doctor(doctor_id):
        result = _with_retry(attempt, start)
    if result.ok:
        current_app.logger.info("Appointment %s rescheduled to %s", appointment_id, serialize(start))
    return result
