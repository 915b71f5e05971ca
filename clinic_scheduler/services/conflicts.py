"""Overlap detection against existing bookings for doctors and rooms."""

from __future__ import annotations

from datetime import datetime

from clinic_scheduler.models import AppointmentStatus
from clinic_scheduler.services.errors import InvalidInput
from clinic_scheduler.services.store import AppointmentRecord, SchedulingStore


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open overlap: touching endpoints do not conflict."""

    return a_start < b_end and b_start < a_end


def _check_range(start: datetime, end: datetime) -> None:
    if not isinstance(start, datetime) or not isinstance(end, datetime):
        raise InvalidInput("invalid_datetime")
    if start >= end:
        raise InvalidInput("empty_interval")


def _blocks_doctor(appointment: AppointmentRecord, start: datetime) -> bool:
    # A no-show no longer occupies time, but its (doctor, start) pair is still
    # held by the unique index.
    if appointment.status is AppointmentStatus.NO_SHOW:
        return appointment.starts_at == start
    return appointment.status is not AppointmentStatus.CANCELLED


def doctor_conflicts(
    store: SchedulingStore,
    doctor_id: int,
    start: datetime,
    end: datetime,
    exclude_appointment_id: int | None = None,
) -> list[AppointmentRecord]:
    _check_range(start, end)
    store.require_doctor(doctor_id)
    candidates = store.doctor_appointments_overlapping(
        doctor_id, start, end, exclude_id=exclude_appointment_id
    )
    return [appt for appt in candidates if _blocks_doctor(appt, start)]


def has_conflict(
    store: SchedulingStore,
    doctor_id: int,
    start: datetime,
    end: datetime,
    exclude_appointment_id: int | None = None,
) -> bool:
    return bool(doctor_conflicts(store, doctor_id, start, end, exclude_appointment_id))


def peak_occupancy(appointments: list[AppointmentRecord], start: datetime, end: datetime) -> int:
    """Largest number of the given appointments in progress at once within [start, end)."""

    events: list[tuple[datetime, int]] = []
    for appt in appointments:
        events.append((max(appt.starts_at, start), 1))
        events.append((min(appt.ends_at, end), -1))
    # Departures sort before arrivals at the same instant.
    events.sort()
    current = peak = 0
    for _, delta in events:
        current += delta
        peak = max(peak, current)
    return peak


def room_usage(
    store: SchedulingStore,
    room_id: int,
    start: datetime,
    end: datetime,
    exclude_appointment_id: int | None = None,
) -> dict[str, object]:
    """Peak occupancy of a room over [start, end) compared with its capacity.

    Back-to-back bookings do not add up; only appointments in the room at the
    same moment count against the capacity.
    """

    _check_range(start, end)
    room = store.require_room(room_id)
    occupying = [
        appt
        for appt in store.room_appointments_overlapping(room_id, start, end, exclude_id=exclude_appointment_id)
        if appt.status is not AppointmentStatus.NO_SHOW
    ]
    used = peak_occupancy(occupying, start, end)
    return {
        "overlapping_appointments": [appt.id for appt in occupying],
        "capacity": room.capacity,
        "capacity_used": used,
        "capacity_available": max(0, room.capacity - used),
        "capacity_exceeded": used >= room.capacity,
    }


def has_room_conflict(
    store: SchedulingStore,
    room_id: int,
    start: datetime,
    end: datetime,
    exclude_appointment_id: int | None = None,
) -> bool:
    return bool(room_usage(store, room_id, start, end, exclude_appointment_id)["capacity_exceeded"])
