import os
import pathlib
import shutil
import sys
from datetime import date, datetime
from types import SimpleNamespace

import pytest

root = pathlib.Path(__file__).resolve().parents[1]
if str(root) not in sys.path:
    sys.path.insert(0, str(root))

from clinic_scheduler import create_app
from clinic_scheduler.extensions import db as sa_db
from clinic_scheduler.services.store import SchedulingStore

# 2030-01-07 is a Monday; day_of_week uses 0 = Sunday.
MONDAY = date(2030, 1, 7)
MONDAY_DOW = 1
NOW = datetime(2030, 1, 1, 8, 0)


def at(day: date, clock: str) -> datetime:
    hours, minutes = (int(part) for part in clock.split(":"))
    return datetime(day.year, day.month, day.day, hours, minutes)


@pytest.fixture(scope="session")
def _template_db(tmp_path_factory):
    """Build a fully-migrated DB once per test session.

    Every function-scoped ``app`` fixture copies this file instead of
    running the Alembic migrations again.
    """
    db_path = tmp_path_factory.mktemp("template") / "app.db"
    old_db = os.environ.get("CLINIC_DB_PATH")
    old_key = os.environ.get("CLINIC_SECRET_KEY")
    old_migrate = os.environ.get("CLINIC_AUTO_MIGRATE")
    os.environ["CLINIC_DB_PATH"] = str(db_path)
    os.environ["CLINIC_SECRET_KEY"] = "test-secret"
    os.environ["CLINIC_AUTO_MIGRATE"] = "1"
    try:
        _app = create_app()
        with _app.app_context():
            pass
        # Close pooled connections so the WAL is checkpointed into app.db before copying.
        sa_db.engine.dispose()
    finally:
        for name, value in (
            ("CLINIC_DB_PATH", old_db),
            ("CLINIC_SECRET_KEY", old_key),
            ("CLINIC_AUTO_MIGRATE", old_migrate),
        ):
            if value is None:
                os.environ.pop(name, None)
            else:
                os.environ[name] = value
    return db_path


@pytest.fixture
def app(tmp_path, monkeypatch, _template_db):
    db_path = tmp_path / "app.db"
    shutil.copy2(_template_db, db_path)
    monkeypatch.setenv("CLINIC_DB_PATH", str(db_path))
    monkeypatch.setenv("CLINIC_SECRET_KEY", "test-secret")
    monkeypatch.setenv("CLINIC_AUTO_MIGRATE", "0")  # Already migrated
    app = create_app()
    app.config.update(TESTING=True, WTF_CSRF_ENABLED=True)
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def store(app):
    with app.app_context():
        with SchedulingStore.open() as opened:
            yield opened


@pytest.fixture
def clinic(store):
    """One doctor working Monday 09:00-12:00, a patient, a 30 minute service and a single room."""

    doctor = store.add_doctor("Dr. Lina", license_number="LIC-1")
    store.add_rule(doctor.id, MONDAY_DOW, "09:00", "12:00")
    patient = store.add_patient("Sara Khalil", phone="0791111111")
    service = store.add_service("CONSULT", "Consultation", duration_minutes=30)
    room = store.add_room("R1", name="Exam room 1")
    return SimpleNamespace(doctor=doctor, patient=patient, service=service, room=room)


@pytest.fixture
def csrf_headers(client):
    token = client.get("/api/csrf-token").get_json()["csrf_token"]
    return {"X-CSRFToken": token}
