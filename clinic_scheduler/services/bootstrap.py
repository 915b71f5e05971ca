"""Bootstrap helper to ensure the scheduling tables exist for first-time runs."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy.engine import Engine

from clinic_scheduler.models import Base


def ensure_schema(engine: Engine, db_path: Path | None = None) -> None:
    """Create any missing table or index; existing ones are left untouched."""

    if db_path is not None:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(engine, checkfirst=True)
