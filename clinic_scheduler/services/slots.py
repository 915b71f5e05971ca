"""Slot validation and bookable-slot listing."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum

from flask import current_app

from clinic_scheduler.services import conflicts
from clinic_scheduler.services.availability import covers, merge_intervals, open_intervals
from clinic_scheduler.services.errors import InvalidInput
from clinic_scheduler.services.store import SchedulingStore
from clinic_scheduler.services.timefmt import local_now, parse_datetime, parse_day, serialize


class RejectionReason(str, Enum):
    DOCTOR_UNAVAILABLE = "doctor_unavailable"
    OUTSIDE_HOURS = "outside_hours"
    DOCTOR_BUSY = "doctor_busy"
    ROOM_BUSY = "room_busy"
    INVALID_SERVICE = "invalid_service"
    INVALID_DOCTOR = "invalid_doctor"
    PAST_START_TIME = "past_start_time"


@dataclass(frozen=True)
class SlotDecision:
    """Outcome of a slot check: the computed end on success, one reason otherwise."""

    start: datetime
    end: datetime | None
    reason: RejectionReason | None = None

    @property
    def ok(self) -> bool:
        return self.reason is None

    @classmethod
    def accept(cls, start: datetime, end: datetime) -> "SlotDecision":
        return cls(start, end)

    @classmethod
    def reject(cls, start: datetime, reason: RejectionReason, end: datetime | None = None) -> "SlotDecision":
        return cls(start, end, reason)

    def as_dict(self) -> dict[str, object]:
        return {
            "ok": self.ok,
            "start": serialize(self.start),
            "end": serialize(self.end) if self.end else None,
            "reason": self.reason.value if self.reason else None,
        }


def _require_future() -> bool:
    return bool(current_app.config.get("APPOINTMENT_REQUIRE_FUTURE_START", True))


def _step_minutes() -> int:
    return int(current_app.config.get("APPOINTMENT_SLOT_STEP_MINUTES", 15))


def validate_slot(
    store: SchedulingStore,
    doctor_id: int,
    service_id: int,
    proposed_start: datetime | str,
    room_id: int | None = None,
    *,
    now: datetime | None = None,
    require_future: bool | None = None,
    exclude_appointment_id: int | None = None,
) -> SlotDecision:
    """Decide whether (doctor, service, start[, room]) is bookable; first failing check wins."""

    start = parse_datetime(proposed_start)
    now = now or local_now()
    if require_future is None:
        require_future = _require_future()

    doctor = store.get_doctor(doctor_id)
    if doctor is None or not doctor.is_active:
        return SlotDecision.reject(start, RejectionReason.INVALID_DOCTOR)

    service = store.get_service(service_id)
    if service is None:
        return SlotDecision.reject(start, RejectionReason.INVALID_SERVICE)
    if service.duration_minutes <= 0:
        raise InvalidInput("invalid_duration")
    end = start + timedelta(minutes=service.duration_minutes)

    if require_future and start <= now:
        return SlotDecision.reject(start, RejectionReason.PAST_START_TIME, end)

    intervals = open_intervals(store, doctor_id, start.date())
    if not intervals:
        return SlotDecision.reject(start, RejectionReason.DOCTOR_UNAVAILABLE, end)
    if not covers(intervals, start, end):
        return SlotDecision.reject(start, RejectionReason.OUTSIDE_HOURS, end)

    if room_id is not None:
        store.require_room(room_id)
    if conflicts.has_conflict(store, doctor_id, start, end, exclude_appointment_id):
        return SlotDecision.reject(start, RejectionReason.DOCTOR_BUSY, end)

    if room_id is not None and conflicts.has_room_conflict(store, room_id, start, end, exclude_appointment_id):
        return SlotDecision.reject(start, RejectionReason.ROOM_BUSY, end)

    return SlotDecision.accept(start, end)


def available_slots(
    store: SchedulingStore,
    doctor_id: int,
    service_id: int,
    day: date | str,
    *,
    room_id: int | None = None,
    now: datetime | None = None,
    step_minutes: int | None = None,
) -> list[SlotDecision]:
    """Bookable starts on `day`, stepping through each merged open interval."""

    target = parse_day(day)
    step = step_minutes or _step_minutes()
    if step <= 0:
        raise InvalidInput("invalid_step")
    service = store.get_service(service_id)
    if service is None:
        return []
    duration = timedelta(minutes=service.duration_minutes)

    slots: list[SlotDecision] = []
    for span in merge_intervals(open_intervals(store, doctor_id, target)):
        current = span.start
        while current + duration <= span.end:
            decision = validate_slot(store, doctor_id, service_id, current, room_id, now=now)
            if decision.ok:
                slots.append(decision)
            current += timedelta(minutes=step)
    return slots
