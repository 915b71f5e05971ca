from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_wtf.csrf import generate_csrf

from clinic_scheduler.blueprints.responses import error_response, int_field
from clinic_scheduler.services.availability import effective_availability, open_intervals
from clinic_scheduler.services.errors import InvalidInput
from clinic_scheduler.services.slots import available_slots
from clinic_scheduler.services.store import SchedulingStore
from clinic_scheduler.services.timefmt import serialize

bp = Blueprint("doctors", __name__)


def _required_arg(name: str) -> str:
    value = (request.args.get(name) or "").strip()
    if not value:
        raise InvalidInput(f"missing_{name}")
    return value


@bp.route("/api/csrf-token", methods=["GET"], endpoint="csrf_token")
def csrf_token():
    return jsonify({"csrf_token": generate_csrf()})


@bp.route("/api/doctors/<int:doctor_id>/availability", methods=["GET"], endpoint="availability")
def doctor_availability(doctor_id: int):
    """Open intervals for one day, or per day when `until` is given."""

    try:
        day = _required_arg("date")
        until = (request.args.get("until") or "").strip()
        with SchedulingStore.open() as store:
            if until:
                days = effective_availability(store, doctor_id, day, until)
                return jsonify(
                    {
                        "doctor_id": doctor_id,
                        "days": {key: [span.as_dict() for span in spans] for key, spans in days.items()},
                    }
                )
            intervals = open_intervals(store, doctor_id, day)
        return jsonify({"doctor_id": doctor_id, "date": day, "intervals": [span.as_dict() for span in intervals]})
    except Exception as exc:
        return error_response("api.doctor_availability", exc)


@bp.route("/api/doctors/<int:doctor_id>/slots", methods=["GET"], endpoint="slots")
def doctor_slots(doctor_id: int):
    try:
        day = _required_arg("date")
        service_id = int_field(request.args, "service_id")
        room_id = int_field(request.args, "room_id", required=False)
        with SchedulingStore.open() as store:
            store.require_doctor(doctor_id)
            slots = available_slots(store, doctor_id, service_id, day, room_id=room_id)
        return jsonify(
            {
                "doctor_id": doctor_id,
                "date": day,
                "slots": [{"start": serialize(slot.start), "end": serialize(slot.end)} for slot in slots],
            }
        )
    except Exception as exc:
        return error_response("api.doctor_slots", exc)
