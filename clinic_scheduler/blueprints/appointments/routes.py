from __future__ import annotations

from flask import Blueprint, jsonify, request

from clinic_scheduler.blueprints.responses import (
    MUTATION_LIMIT,
    error_response,
    int_field,
    json_body,
    str_field,
)
from clinic_scheduler.extensions import limiter
from clinic_scheduler.services import booking, lifecycle
from clinic_scheduler.services.slots import validate_slot
from clinic_scheduler.services.store import SchedulingStore

bp = Blueprint("appointments", __name__)


def _rejected(result: booking.BookingResult):
    return jsonify(result.as_dict()), 409


@bp.route("/api/appointments/validate", methods=["POST"], endpoint="validate")
@limiter.limit(MUTATION_LIMIT)
def validate_appointment():
    """Dry run of a booking; a rejection is a normal 200 answer here."""

    try:
        payload = json_body()
        doctor_id = int_field(payload, "doctor_id")
        service_id = int_field(payload, "service_id")
        starts_at = str_field(payload, "starts_at")
        room_id = int_field(payload, "room_id", required=False)
        with SchedulingStore.open() as store:
            decision = validate_slot(store, doctor_id, service_id, starts_at, room_id)
        return jsonify({"success": decision.ok, **decision.as_dict()})
    except Exception as exc:
        return error_response("api.appointments.validate", exc)


@bp.route("/api/appointments", methods=["POST"], endpoint="create")
@limiter.limit(MUTATION_LIMIT)
def create_appointment():
    try:
        payload = json_body()
        request_ = booking.BookingRequest(
            patient_id=int_field(payload, "patient_id"),
            doctor_id=int_field(payload, "doctor_id"),
            service_id=int_field(payload, "service_id"),
            starts_at=str_field(payload, "starts_at"),
            room_id=int_field(payload, "room_id", required=False),
            reason=str_field(payload, "reason", required=False),
            created_by=str_field(payload, "created_by", required=False),
        )
        result = booking.book(request_)
        if not result.ok:
            return _rejected(result)
        return jsonify(result.as_dict()), 201
    except Exception as exc:
        return error_response("api.appointments.create", exc)


@bp.route("/api/appointments/upcoming", methods=["GET"], endpoint="upcoming")
def upcoming_appointments():
    try:
        doctor_id = int_field(request.args, "doctor_id", required=False)
        limit = int_field(request.args, "limit", required=False) or 200
        with SchedulingStore.open() as store:
            appointments = lifecycle.list_upcoming(store, doctor_id=doctor_id, limit=min(limit, 500))
        return jsonify({"appointments": [appt.as_dict() for appt in appointments]})
    except Exception as exc:
        return error_response("api.appointments.upcoming", exc)


@bp.route("/api/appointments/<int:appointment_id>", methods=["GET"], endpoint="detail")
def appointment_detail(appointment_id: int):
    try:
        with SchedulingStore.open() as store:
            appointment = store.require_appointment(appointment_id)
        return jsonify({"appointment": appointment.as_dict()})
    except Exception as exc:
        return error_response("api.appointments.detail", exc)


@bp.route("/api/appointments/<int:appointment_id>/status", methods=["POST"], endpoint="status")
@limiter.limit(MUTATION_LIMIT)
def change_status(appointment_id: int):
    try:
        target = str_field(json_body(), "status")
        with SchedulingStore.open() as store:
            appointment = lifecycle.transition(store, appointment_id, target)
        return jsonify({"success": True, "appointment": appointment.as_dict()})
    except Exception as exc:
        return error_response("api.appointments.status", exc)


@bp.route("/api/appointments/<int:appointment_id>/reschedule", methods=["POST"], endpoint="reschedule")
@limiter.limit(MUTATION_LIMIT)
def reschedule_appointment(appointment_id: int):
    try:
        payload = json_body()
        room_id = booking.KEEP_ROOM
        if "room_id" in payload:
            room_id = int_field(payload, "room_id", required=False)
        result = booking.reschedule(appointment_id, str_field(payload, "starts_at"), room_id=room_id)
        if not result.ok:
            return _rejected(result)
        return jsonify(result.as_dict())
    except Exception as exc:
        return error_response("api.appointments.reschedule", exc)
