"""Persistence capability for the scheduling core.

`SchedulingStore` wraps a single DB-API connection. Every scheduling
component receives a store explicitly, so one booking can run its reads and
its insert inside the same `BEGIN IMMEDIATE` transaction.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Callable, Iterator, Sequence

from clinic_scheduler.models import AppointmentStatus
from clinic_scheduler.extensions import db
from clinic_scheduler.services.errors import (
    ConcurrencyConflict,
    IntegrityViolation,
    InvalidInput,
    NotFound,
)
from clinic_scheduler.services.timefmt import (
    DAY_FMT,
    ISO_FMT,
    parse_clock,
    serialize,
    serialize_clock,
)


@dataclass(frozen=True)
class DoctorRecord:
    id: int
    full_name: str
    license_number: str | None
    is_active: bool


@dataclass(frozen=True)
class PatientRecord:
    id: int
    full_name: str
    phone: str | None


@dataclass(frozen=True)
class RoomRecord:
    id: int
    code: str
    name: str | None
    capacity: int


@dataclass(frozen=True)
class ServiceRecord:
    id: int
    code: str
    name: str
    duration_minutes: int


@dataclass(frozen=True)
class RuleRecord:
    id: int
    doctor_id: int
    day_of_week: int
    start_time: time
    end_time: time
    is_active: bool


@dataclass(frozen=True)
class ExceptionRecord:
    id: int
    doctor_id: int
    day: date
    is_available: bool
    notes: str | None
    start_time: time | None
    end_time: time | None


@dataclass(frozen=True)
class AppointmentRecord:
    id: int
    patient_id: int
    doctor_id: int
    service_id: int
    room_id: int | None
    starts_at: datetime
    ends_at: datetime
    status: AppointmentStatus
    reason: str | None
    created_by: str | None
    created_at: str
    updated_at: str
    confirmed_at: str | None = None
    checked_in_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    cancelled_at: str | None = None
    no_show_at: str | None = None

    @property
    def duration_minutes(self) -> int:
        return int((self.ends_at - self.starts_at).total_seconds() // 60)

    def as_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "doctor_id": self.doctor_id,
            "service_id": self.service_id,
            "room_id": self.room_id,
            "starts_at": serialize(self.starts_at),
            "ends_at": serialize(self.ends_at),
            "duration": self.duration_minutes,
            "status": self.status.value,
            "reason": self.reason,
            "created_by": self.created_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "confirmed_at": self.confirmed_at,
            "checked_in_at": self.checked_in_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "cancelled_at": self.cancelled_at,
            "no_show_at": self.no_show_at,
        }


def _appointment_from_row(row: sqlite3.Row) -> AppointmentRecord:
    return AppointmentRecord(
        id=row["id"],
        patient_id=row["patient_id"],
        doctor_id=row["doctor_id"],
        service_id=row["service_id"],
        room_id=row["room_id"],
        starts_at=datetime.strptime(row["starts_at"], ISO_FMT),
        ends_at=datetime.strptime(row["ends_at"], ISO_FMT),
        status=AppointmentStatus(row["status"]),
        reason=row["reason"],
        created_by=row["created_by"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        confirmed_at=row["confirmed_at"],
        checked_in_at=row["checked_in_at"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        cancelled_at=row["cancelled_at"],
        no_show_at=row["no_show_at"],
    )


def _rule_from_row(row: sqlite3.Row) -> RuleRecord:
    return RuleRecord(
        id=row["id"],
        doctor_id=row["doctor_id"],
        day_of_week=row["day_of_week"],
        start_time=parse_clock(row["start_time"]),
        end_time=parse_clock(row["end_time"]),
        is_active=bool(row["is_active"]),
    )


def _exception_from_row(row: sqlite3.Row) -> ExceptionRecord:
    return ExceptionRecord(
        id=row["id"],
        doctor_id=row["doctor_id"],
        day=datetime.strptime(row["exception_date"], DAY_FMT).date(),
        is_available=bool(row["is_available"]),
        notes=row["notes"],
        start_time=parse_clock(row["start_time"]) if row["start_time"] else None,
        end_time=parse_clock(row["end_time"]) if row["end_time"] else None,
    )


_UNIQUE_SLOT_MARKERS = ("appointments.doctor_id, appointments.starts_at", "uq_appointments_doctor_start")


def _translate_integrity_error(exc: sqlite3.IntegrityError) -> Exception:
    message = str(exc)
    if any(marker in message for marker in _UNIQUE_SLOT_MARKERS):
        return ConcurrencyConflict("doctor_start_taken")
    if "CHECK constraint failed" in message:
        return InvalidInput(message)
    return IntegrityViolation(message)


class SchedulingStore:
    """Reads and writes for doctors, availability and appointments over one connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    @classmethod
    @contextmanager
    def open(cls, connect: Callable[[], sqlite3.Connection] | None = None) -> Iterator["SchedulingStore"]:
        conn = (connect or db.connect)()
        try:
            yield cls(conn)
        finally:
            conn.close()

    @contextmanager
    def write(self) -> Iterator["SchedulingStore"]:
        """Run the block in an immediate transaction; joins an already open one."""

        if self.conn.in_transaction:
            yield self
            return
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            yield self
        except Exception:
            self.conn.rollback()
            raise
        else:
            self.conn.commit()

    def _insert(self, sql: str, params: Sequence[object]) -> int:
        try:
            with self.write():
                cur = self.conn.execute(sql, params)
        except sqlite3.IntegrityError as exc:
            raise _translate_integrity_error(exc) from exc
        return int(cur.lastrowid)

    # ----- doctors, patients, rooms, services -----

    def add_doctor(self, full_name: str, *, license_number: str | None = None, is_active: bool = True) -> DoctorRecord:
        doctor_id = self._insert(
            "INSERT INTO doctors(full_name, license_number, is_active) VALUES (?, ?, ?)",
            (full_name, license_number, int(is_active)),
        )
        return self.require_doctor(doctor_id)

    def get_doctor(self, doctor_id: int) -> DoctorRecord | None:
        row = self.conn.execute(
            "SELECT id, full_name, license_number, is_active FROM doctors WHERE id=?",
            (doctor_id,),
        ).fetchone()
        if not row:
            return None
        return DoctorRecord(row["id"], row["full_name"], row["license_number"], bool(row["is_active"]))

    def require_doctor(self, doctor_id: int) -> DoctorRecord:
        doctor = self.get_doctor(doctor_id)
        if doctor is None:
            raise NotFound("doctor", doctor_id)
        return doctor

    def set_doctor_active(self, doctor_id: int, is_active: bool) -> None:
        self.require_doctor(doctor_id)
        with self.write():
            self.conn.execute("UPDATE doctors SET is_active=? WHERE id=?", (int(is_active), doctor_id))

    def delete_doctor(self, doctor_id: int) -> None:
        """Hard-delete a doctor; refused while any appointment references them."""

        self.require_doctor(doctor_id)
        try:
            with self.write():
                self.conn.execute("DELETE FROM doctors WHERE id=?", (doctor_id,))
        except sqlite3.IntegrityError as exc:
            raise IntegrityViolation(f"doctor_has_appointments:{doctor_id}") from exc

    def add_patient(self, full_name: str, *, phone: str | None = None) -> PatientRecord:
        patient_id = self._insert(
            "INSERT INTO patients(full_name, phone) VALUES (?, ?)",
            (full_name, phone),
        )
        return PatientRecord(patient_id, full_name, phone)

    def get_patient(self, patient_id: int) -> PatientRecord | None:
        row = self.conn.execute(
            "SELECT id, full_name, phone FROM patients WHERE id=?", (patient_id,)
        ).fetchone()
        if not row:
            return None
        return PatientRecord(row["id"], row["full_name"], row["phone"])

    def delete_patient(self, patient_id: int) -> None:
        if self.get_patient(patient_id) is None:
            raise NotFound("patient", patient_id)
        with self.write():
            self.conn.execute("DELETE FROM patients WHERE id=?", (patient_id,))

    def add_room(self, code: str, *, name: str | None = None, capacity: int = 1) -> RoomRecord:
        if capacity < 1:
            raise InvalidInput("invalid_capacity")
        room_id = self._insert(
            "INSERT INTO rooms(code, name, capacity) VALUES (?, ?, ?)",
            (code, name, capacity),
        )
        return RoomRecord(room_id, code, name, capacity)

    def get_room(self, room_id: int) -> RoomRecord | None:
        row = self.conn.execute(
            "SELECT id, code, name, capacity FROM rooms WHERE id=?", (room_id,)
        ).fetchone()
        if not row:
            return None
        return RoomRecord(row["id"], row["code"], row["name"], int(row["capacity"] or 1))

    def require_room(self, room_id: int) -> RoomRecord:
        room = self.get_room(room_id)
        if room is None:
            raise NotFound("room", room_id)
        return room

    def add_service(self, code: str, name: str, *, duration_minutes: int = 30) -> ServiceRecord:
        if duration_minutes <= 0:
            raise InvalidInput("invalid_duration")
        service_id = self._insert(
            "INSERT INTO services(code, name, duration_minutes) VALUES (?, ?, ?)",
            (code, name, duration_minutes),
        )
        return ServiceRecord(service_id, code, name, duration_minutes)

    def get_service(self, service_id: int) -> ServiceRecord | None:
        row = self.conn.execute(
            "SELECT id, code, name, duration_minutes FROM services WHERE id=?", (service_id,)
        ).fetchone()
        if not row:
            return None
        return ServiceRecord(row["id"], row["code"], row["name"], int(row["duration_minutes"]))

    # ----- availability -----

    def add_rule(
        self,
        doctor_id: int,
        day_of_week: int,
        start_time: time | str,
        end_time: time | str,
        *,
        is_active: bool = True,
    ) -> RuleRecord:
        start, end = parse_clock(start_time), parse_clock(end_time)
        if not 0 <= day_of_week <= 6:
            raise InvalidInput("invalid_day_of_week")
        if start >= end:
            raise InvalidInput("invalid_time_range")
        self.require_doctor(doctor_id)
        rule_id = self._insert(
            """
            INSERT INTO doctor_availability(doctor_id, day_of_week, start_time, end_time, is_active)
            VALUES (?, ?, ?, ?, ?)
            """,
            (doctor_id, day_of_week, serialize_clock(start), serialize_clock(end), int(is_active)),
        )
        return RuleRecord(rule_id, doctor_id, day_of_week, start, end, is_active)

    def rules_for(self, doctor_id: int, day_of_week: int) -> list[RuleRecord]:
        rows = self.conn.execute(
            """
            SELECT id, doctor_id, day_of_week, start_time, end_time, is_active
            FROM doctor_availability
            WHERE doctor_id = ? AND day_of_week = ? AND is_active = 1
            ORDER BY start_time ASC, end_time ASC
            """,
            (doctor_id, day_of_week),
        ).fetchall()
        return [_rule_from_row(row) for row in rows]

    def set_exception(
        self,
        doctor_id: int,
        day: date,
        *,
        is_available: bool,
        notes: str | None = None,
        start_time: time | str | None = None,
        end_time: time | str | None = None,
    ) -> ExceptionRecord:
        """Insert or replace the single exception a doctor may have on a date."""

        start = parse_clock(start_time) if start_time is not None else None
        end = parse_clock(end_time) if end_time is not None else None
        # Override hours come as a pair or not at all.
        if (start is None) != (end is None) or (start is not None and start >= end):
            raise InvalidInput("invalid_time_range")
        self.require_doctor(doctor_id)
        with self.write():
            self.conn.execute(
                """
                INSERT INTO doctor_exceptions(doctor_id, exception_date, is_available, notes, start_time, end_time)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(doctor_id, exception_date) DO UPDATE SET
                    is_available=excluded.is_available,
                    notes=excluded.notes,
                    start_time=excluded.start_time,
                    end_time=excluded.end_time
                """,
                (
                    doctor_id,
                    day.strftime(DAY_FMT),
                    int(is_available),
                    notes,
                    serialize_clock(start) if start else None,
                    serialize_clock(end) if end else None,
                ),
            )
        exception = self.exception_for(doctor_id, day)
        assert exception is not None
        return exception

    def exception_for(self, doctor_id: int, day: date) -> ExceptionRecord | None:
        row = self.conn.execute(
            """
            SELECT id, doctor_id, exception_date, is_available, notes, start_time, end_time
            FROM doctor_exceptions
            WHERE doctor_id = ? AND exception_date = ?
            """,
            (doctor_id, day.strftime(DAY_FMT)),
        ).fetchone()
        return _exception_from_row(row) if row else None

    # ----- appointments -----

    def insert_appointment(
        self,
        *,
        patient_id: int,
        doctor_id: int,
        service_id: int,
        room_id: int | None,
        starts_at: datetime,
        ends_at: datetime,
        reason: str | None,
        created_by: str | None,
        now: datetime,
    ) -> AppointmentRecord:
        stamp = serialize(now)
        appt_id = self._insert(
            """
            INSERT INTO appointments(
                patient_id, doctor_id, service_id, room_id, starts_at, ends_at,
                status, reason, created_by, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                patient_id,
                doctor_id,
                service_id,
                room_id,
                serialize(starts_at),
                serialize(ends_at),
                AppointmentStatus.SCHEDULED.value,
                reason,
                created_by,
                stamp,
                stamp,
            ),
        )
        appointment = self.get_appointment(appt_id)
        assert appointment is not None
        return appointment

    def get_appointment(self, appointment_id: int) -> AppointmentRecord | None:
        row = self.conn.execute("SELECT * FROM appointments WHERE id=?", (appointment_id,)).fetchone()
        return _appointment_from_row(row) if row else None

    def require_appointment(self, appointment_id: int) -> AppointmentRecord:
        appointment = self.get_appointment(appointment_id)
        if appointment is None:
            raise NotFound("appointment", appointment_id)
        return appointment

    def _overlapping(
        self,
        column: str,
        value: int,
        start: datetime,
        end: datetime,
        exclude_id: int | None,
    ) -> list[AppointmentRecord]:
        params: list[object] = [value, serialize(end), serialize(start), AppointmentStatus.CANCELLED.value]
        sql = f"""
            SELECT *
            FROM appointments
            WHERE {column} = ?
              AND starts_at < ?
              AND ends_at > ?
              AND status != ?
        """
        if exclude_id is not None:
            sql += " AND id != ?"
            params.append(exclude_id)
        sql += " ORDER BY starts_at ASC"
        return [_appointment_from_row(row) for row in self.conn.execute(sql, params).fetchall()]

    def doctor_appointments_overlapping(
        self, doctor_id: int, start: datetime, end: datetime, *, exclude_id: int | None = None
    ) -> list[AppointmentRecord]:
        """Non-cancelled appointments of a doctor intersecting [start, end)."""

        return self._overlapping("doctor_id", doctor_id, start, end, exclude_id)

    def room_appointments_overlapping(
        self, room_id: int, start: datetime, end: datetime, *, exclude_id: int | None = None
    ) -> list[AppointmentRecord]:
        return self._overlapping("room_id", room_id, start, end, exclude_id)

    def update_status(
        self,
        appointment_id: int,
        expected: AppointmentStatus,
        target: AppointmentStatus,
        *,
        stamp_column: str | None,
        now: datetime,
    ) -> bool:
        """Compare-and-set the status; returns False when the row moved on meanwhile."""

        stamp = serialize(now)
        assignments = "status=?, updated_at=?"
        params: list[object] = [target.value, stamp]
        if stamp_column:
            assignments += f", {stamp_column}=COALESCE({stamp_column}, ?)"
            params.append(stamp)
        params.extend([appointment_id, expected.value])
        with self.write():
            cur = self.conn.execute(
                f"UPDATE appointments SET {assignments} WHERE id=? AND status=?",
                params,
            )
        return cur.rowcount == 1

    def move_appointment(
        self,
        appointment_id: int,
        *,
        starts_at: datetime,
        ends_at: datetime,
        room_id: int | None,
        now: datetime,
    ) -> None:
        try:
            with self.write():
                self.conn.execute(
                    "UPDATE appointments SET starts_at=?, ends_at=?, room_id=?, updated_at=? WHERE id=?",
                    (serialize(starts_at), serialize(ends_at), room_id, serialize(now), appointment_id),
                )
        except sqlite3.IntegrityError as exc:
            raise _translate_integrity_error(exc) from exc

    def upcoming(self, now: datetime, *, doctor_id: int | None = None, limit: int = 200) -> list[AppointmentRecord]:
        params: list[object] = [serialize(now), AppointmentStatus.CANCELLED.value]
        sql = "SELECT * FROM appointments WHERE starts_at >= ? AND status != ?"
        if doctor_id is not None:
            sql += " AND doctor_id = ?"
            params.append(doctor_id)
        sql += " ORDER BY starts_at ASC, id ASC LIMIT ?"
        params.append(limit)
        return [_appointment_from_row(row) for row in self.conn.execute(sql, params).fetchall()]

    def ended_before(self, now: datetime, statuses: Sequence[AppointmentStatus]) -> list[AppointmentRecord]:
        placeholders = ",".join(["?"] * len(statuses))
        rows = self.conn.execute(
            f"""
            SELECT *
            FROM appointments
            WHERE ends_at <= ? AND status IN ({placeholders})
            ORDER BY starts_at ASC
            """,
            [serialize(now), *[status.value for status in statuses]],
        ).fetchall()
        return [_appointment_from_row(row) for row in rows]
