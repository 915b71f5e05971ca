"""Flask CLI commands for migrations, demo data and scheduling maintenance."""

from __future__ import annotations

import click
from alembic import command
from flask import current_app
from flask.cli import AppGroup, with_appcontext
from sqlalchemy import select

from clinic_scheduler.extensions import db
from clinic_scheduler.models import AvailabilityRule, Doctor, Patient, Room, Service
from clinic_scheduler.services import lifecycle
from clinic_scheduler.services.availability import open_intervals
from clinic_scheduler.services.errors import SchedulingError
from clinic_scheduler.services.migrations import alembic_config
from clinic_scheduler.services.store import SchedulingStore
from clinic_scheduler.services.timefmt import serialize

# Weekdays use 0 = Sunday; Monday..Friday are 1..5.
_WEEKDAYS = range(1, 6)

_DEMO_DOCTORS = (
    ("Dr. Lina Haddad", "LIC-1001", (("09:00", "12:00"), ("13:00", "17:00"))),
    ("Dr. Omar Saleh", "LIC-1002", (("10:00", "16:00"),)),
)
_DEMO_SERVICES = (
    ("CONSULT", "General consultation", 30),
    ("FOLLOWUP", "Follow-up visit", 15),
    ("PROCEDURE", "Minor procedure", 60),
)
_DEMO_ROOMS = (("R1", "Exam room 1", 1), ("R2", "Exam room 2", 1), ("WARD", "Shared treatment ward", 3))


def register_cli(app) -> None:
    db_group = AppGroup("db")

    @db_group.command("upgrade")
    @with_appcontext
    def upgrade() -> None:
        command.upgrade(alembic_config(current_app), "head")
        click.echo("Database upgraded to head.")

    app.cli.add_command(db_group)

    @app.cli.command("seed-demo")
    @with_appcontext
    def seed_demo() -> None:
        """Insert demo doctors, weekly hours, services, rooms and a patient."""

        created = 0
        with db.session_scope() as session:
            for full_name, license_number, shifts in _DEMO_DOCTORS:
                existing = session.execute(
                    select(Doctor.id).where(Doctor.license_number == license_number)
                ).scalar_one_or_none()
                if existing:
                    continue
                doctor = Doctor(full_name=full_name, license_number=license_number, is_active=True)
                for day in _WEEKDAYS:
                    for start, end in shifts:
                        doctor.rules.append(AvailabilityRule(day_of_week=day, start_time=start, end_time=end))
                session.add(doctor)
                created += 1
            for code, name, minutes in _DEMO_SERVICES:
                if session.execute(select(Service.id).where(Service.code == code)).scalar_one_or_none() is None:
                    session.add(Service(code=code, name=name, duration_minutes=minutes))
            for code, name, capacity in _DEMO_ROOMS:
                if session.execute(select(Room.id).where(Room.code == code)).scalar_one_or_none() is None:
                    session.add(Room(code=code, name=name, capacity=capacity))
            if session.execute(select(Patient.id).limit(1)).scalar_one_or_none() is None:
                session.add(Patient(full_name="Demo Patient", phone="0790000000"))
        click.echo(f"Seeded {created} doctor(s) with demo services and rooms.")

    @app.cli.command("open-intervals")
    @click.argument("doctor_id", type=int)
    @click.argument("day")
    @with_appcontext
    def show_open_intervals(doctor_id: int, day: str) -> None:
        """Print the open intervals of DOCTOR_ID on DAY (YYYY-MM-DD)."""

        try:
            with SchedulingStore.open() as store:
                intervals = open_intervals(store, doctor_id, day)
        except SchedulingError as exc:
            raise click.ClickException(str(exc)) from exc
        if not intervals:
            click.echo("closed")
            return
        for span in intervals:
            click.echo(f"{serialize(span.start)} -> {serialize(span.end)}")

    @app.cli.command("mark-no-shows")
    @with_appcontext
    def mark_no_shows() -> None:
        """Move scheduled/confirmed appointments that already ended to no_show."""

        with SchedulingStore.open() as store:
            marked = lifecycle.mark_overdue_no_shows(store)
        click.echo(f"Marked {len(marked)} appointment(s) as no_show.")
