"""Clinic scheduler package exposing the Flask application factory."""

from __future__ import annotations

import os
from pathlib import Path

from flask import Flask, jsonify
from flask_wtf.csrf import CSRFError

from .blueprints import register_blueprints
from .cli import register_cli
from .extensions import db, init_extensions
from .services.bootstrap import ensure_schema
from .services.migrations import auto_upgrade
from .services.timefmt import parse_hours

APP_HOST = "127.0.0.1"
APP_PORT = 8080


def _data_root(base_dir: Path, override: Path | None = None) -> Path:
    root = override if override else base_dir / "data"
    root.mkdir(parents=True, exist_ok=True)
    for sub in ("logs", "backups"):
        (root / sub).mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str = "1") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def create_app() -> Flask:
    project_root = Path(__file__).resolve().parent.parent
    db_override = os.getenv("CLINIC_DB_PATH")
    override_root = Path(db_override).parent if db_override else None
    data_root = _data_root(project_root, override_root)
    db_path = Path(db_override) if db_override else data_root / "app.db"

    app = Flask(__name__)

    secret_key = os.getenv("CLINIC_SECRET_KEY")
    if not secret_key:
        secret_key = os.urandom(32)

    default_hours = os.getenv("CLINIC_DEFAULT_HOURS", "09:00-17:00")
    # Fail at startup rather than on the first override-available exception.
    parse_hours(default_hours)

    app.config.update(
        SECRET_KEY=secret_key,
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{db_path}",
        SQLALCHEMY_ENGINE_OPTIONS={"connect_args": {"check_same_thread": False}},
        RATELIMIT_STORAGE_URI=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
        DATA_ROOT=str(data_root),
        CLINIC_DB=str(db_path),
        CLINIC_DEFAULT_HOURS=default_hours,
        APPOINTMENT_SLOT_STEP_MINUTES=int(os.getenv("APPOINTMENT_SLOT_STEP_MINUTES", "15")),
        APPOINTMENT_REQUIRE_FUTURE_START=_env_flag("APPOINTMENT_REQUIRE_FUTURE_START"),
        SQLITE_PRAGMAS={"busy_timeout": int(os.getenv("CLINIC_BUSY_TIMEOUT_MS", "5000"))},
        WTF_CSRF_HEADERS=["X-CSRFToken", "X-CSRF-Token"],
    )

    init_extensions(app)
    register_blueprints(app)
    auto_upgrade(app)
    ensure_schema(db.engine, db_path)
    register_cli(app)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning("CSRF validation failed: %s", e.description)
        return jsonify({"success": False, "errors": [f"CSRF validation failed: {e.description}"]}), 400

    @app.errorhandler(400)
    def handle_bad_request(e):
        app.logger.info("Bad request: %s", e)
        return jsonify({"success": False, "errors": ["Bad request - check request format and CSRF token"]}), 400

    @app.errorhandler(429)
    def handle_rate_limited(e):
        return jsonify({"success": False, "errors": ["Too many requests"]}), 429

    return app


__all__ = ["create_app", "APP_HOST", "APP_PORT"]
