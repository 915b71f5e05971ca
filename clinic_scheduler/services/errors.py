"""Scheduling error taxonomy and lightweight error logging."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
import traceback

from flask import current_app


class SchedulingError(Exception):
    """Base exception for scheduling operations."""


class NotFound(SchedulingError):
    """Raised when a referenced doctor, room, service, patient or appointment is absent."""

    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(f"{entity}_not_found:{entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class InvalidInput(SchedulingError):
    """Raised for malformed dates/times, empty ranges or non-positive durations."""


class InvalidTransition(SchedulingError):
    """Raised when a status change is not in the transition table."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"invalid_transition:{current}->{target}")
        self.current = current
        self.target = target


class ConcurrencyConflict(SchedulingError):
    """Raised when a write loses the (doctor, start) uniqueness race."""


class IntegrityViolation(SchedulingError):
    """Raised when a write breaks a referential rule (e.g. deleting a booked doctor)."""


def record_exception(context: str, exc: BaseException) -> None:
    """Append exception details to data/logs/app_errors.log for offline inspection."""

    try:
        root = Path(current_app.config["DATA_ROOT"]) / "logs"
        root.mkdir(parents=True, exist_ok=True)
        log_path = root / "app_errors.log"
        with log_path.open("a", encoding="utf-8") as handle:
            handle.write(f"[{datetime.now(timezone.utc).isoformat()}] {context}\n")
            handle.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
            handle.write("\n")
    except Exception:
        # Never let logging failures break the request cycle.
        current_app.logger.exception("Failed to record exception for %s", context)
