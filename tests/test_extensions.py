import shutil

from sqlalchemy import func, select

from clinic_scheduler import create_app
from clinic_scheduler.extensions import db
from clinic_scheduler.models import Patient


def test_sqlite_pragmas_active(app):
    conn = db.connect()
    try:
        mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
        timeout = conn.execute("PRAGMA busy_timeout").fetchone()[0]
        foreign = conn.execute("PRAGMA foreign_keys").fetchone()[0]
    finally:
        conn.close()
    assert mode.lower() == "wal"
    assert timeout == 5000
    assert foreign == 1


def test_busy_timeout_follows_environment(monkeypatch, tmp_path, _template_db):
    db_path = tmp_path / "app.db"
    shutil.copy2(_template_db, db_path)
    monkeypatch.setenv("CLINIC_DB_PATH", str(db_path))
    monkeypatch.setenv("CLINIC_AUTO_MIGRATE", "0")
    monkeypatch.setenv("CLINIC_BUSY_TIMEOUT_MS", "1500")
    create_app()
    conn = db.connect()
    try:
        assert conn.execute("PRAGMA busy_timeout").fetchone()[0] == 1500
    finally:
        conn.close()


def test_rows_are_addressable_by_column(app):
    conn = db.connect()
    try:
        row = conn.execute("SELECT 1 AS one").fetchone()
    finally:
        conn.close()
    assert row["one"] == 1


def test_session_scope_rolls_back_on_error(app):
    try:
        with db.session_scope() as session:
            session.add(Patient(full_name="Ghost"))
            session.flush()
            raise ValueError("abort")
    except ValueError:
        pass
    with db.session_scope() as session:
        assert session.execute(select(func.count(Patient.id))).scalar_one() == 0
