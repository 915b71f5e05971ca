"""JSON request parsing and error mapping shared by the API blueprints."""

from __future__ import annotations

from typing import Any

from flask import current_app, jsonify, request

from clinic_scheduler.services.errors import (
    InvalidInput,
    InvalidTransition,
    IntegrityViolation,
    NotFound,
    record_exception,
)

MUTATION_LIMIT = "60 per minute"


def json_body() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise InvalidInput("json_body_required")
    return payload


def int_field(source: dict[str, Any], name: str, *, required: bool = True) -> int | None:
    raw = source.get(name)
    if raw is None or raw == "":
        if required:
            raise InvalidInput(f"missing_{name}")
        return None
    if isinstance(raw, bool):
        raise InvalidInput(f"invalid_{name}")
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"invalid_{name}") from exc


def str_field(source: dict[str, Any], name: str, *, required: bool = True) -> str | None:
    raw = source.get(name)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        if required:
            raise InvalidInput(f"missing_{name}")
        return None
    if not isinstance(raw, str):
        raise InvalidInput(f"invalid_{name}")
    return raw.strip()


def error_response(context: str, exc: Exception):
    """Map a scheduling error to its HTTP status; anything else is recorded and becomes 500."""

    if isinstance(exc, NotFound):
        return jsonify({"success": False, "error": str(exc)}), 404
    if isinstance(exc, InvalidInput):
        return jsonify({"success": False, "error": str(exc)}), 400
    if isinstance(exc, (InvalidTransition, IntegrityViolation)):
        return jsonify({"success": False, "error": str(exc)}), 409
    current_app.logger.error("Unexpected error in %s: %s", context, exc)
    record_exception(context, exc)
    return jsonify({"success": False, "error": "server_error"}), 500
