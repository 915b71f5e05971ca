"""Application extensions: the scheduling database, CSRF and the rate limiter."""

from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator

from flask import Flask
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_wtf import CSRFProtect
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, scoped_session, sessionmaker

DEFAULT_PRAGMAS = {"journal_mode": "WAL", "busy_timeout": 5000, "foreign_keys": "ON"}


class ClinicDatabase:
    """One SQLAlchemy engine per app.

    The ORM session serves seeding and admin work; bookings go through raw
    DB-API connections so they can hold `BEGIN IMMEDIATE` themselves.
    """

    def __init__(self) -> None:
        self._engine: Engine | None = None
        self._sessions: scoped_session | None = None

    def init_app(self, app: Flask) -> None:
        if self._engine is not None:
            self._engine.dispose()
        pragmas = {**DEFAULT_PRAGMAS, **app.config.get("SQLITE_PRAGMAS", {})}
        engine = create_engine(
            app.config["SQLALCHEMY_DATABASE_URI"],
            **app.config.get("SQLALCHEMY_ENGINE_OPTIONS", {}),
        )

        @event.listens_for(engine, "connect")
        def _apply_pragmas(dbapi_connection, connection_record) -> None:
            cursor = dbapi_connection.cursor()
            for name, value in pragmas.items():
                cursor.execute(f"PRAGMA {name}={value}")
            cursor.close()

        self._engine = engine
        self._sessions = scoped_session(sessionmaker(bind=engine, autoflush=False))
        app.extensions["clinic_db"] = self

        @app.teardown_appcontext
        def _remove_session(exception: BaseException | None) -> None:
            if self._sessions is not None:
                self._sessions.remove()

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database engine is not initialised")
        return self._engine

    def connect(self) -> sqlite3.Connection:
        """Pooled DB-API connection returning `sqlite3.Row` rows; `close()` hands it back."""

        raw = self.engine.raw_connection()
        driver = getattr(raw, "driver_connection", None) or raw.dbapi_connection
        driver.row_factory = sqlite3.Row
        return raw

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        if self._sessions is None:
            raise RuntimeError("Database session factory is not initialised")
        session = self._sessions()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


db = ClinicDatabase()
csrf = CSRFProtect()
limiter = Limiter(get_remote_address, storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"))


def init_extensions(app: Flask) -> None:
    db.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)
