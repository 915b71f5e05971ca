"""Scheduling core: doctors, availability, rooms, services and appointments."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_scheduling_core"
down_revision = None
branch_labels = None
depends_on = None

_STATUSES = "'scheduled','confirmed','checked_in','in_progress','completed','cancelled','no_show'"


def _create_index_if_not_exists(name: str, table: str, columns: str, *, unique: bool = False, where: str = "") -> None:
    kind = "UNIQUE INDEX" if unique else "INDEX"
    clause = f" WHERE {where}" if where else ""
    op.execute(f"CREATE {kind} IF NOT EXISTS {name} ON {table}({columns}){clause}")


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.Text(), server_default=sa.text("(datetime('now'))"), nullable=False)


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    tables = set(inspector.get_table_names())

    if "doctors" not in tables:
        op.create_table(
            "doctors",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("full_name", sa.Text(), nullable=False),
            sa.Column("license_number", sa.Text(), nullable=True, unique=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default="1"),
            _created_at(),
        )

    if "patients" not in tables:
        op.create_table(
            "patients",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("full_name", sa.Text(), nullable=False),
            sa.Column("phone", sa.Text(), nullable=True),
            _created_at(),
        )
    _create_index_if_not_exists("idx_patients_name", "patients", "full_name")

    if "rooms" not in tables:
        op.create_table(
            "rooms",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("code", sa.Text(), nullable=False, unique=True),
            sa.Column("name", sa.Text(), nullable=True),
            sa.Column("capacity", sa.Integer(), nullable=False, server_default="1"),
            sa.CheckConstraint("capacity >= 1", name="ck_rooms_capacity"),
        )

    if "services" not in tables:
        op.create_table(
            "services",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("code", sa.Text(), nullable=False, unique=True),
            sa.Column("name", sa.Text(), nullable=False),
            sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="30"),
            sa.CheckConstraint("duration_minutes > 0", name="ck_services_duration"),
        )

    if "doctor_availability" not in tables:
        op.create_table(
            "doctor_availability",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("doctor_id", sa.Integer(), sa.ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False),
            sa.Column("day_of_week", sa.Integer(), nullable=False),
            sa.Column("start_time", sa.Text(), nullable=False),
            sa.Column("end_time", sa.Text(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default="1"),
            sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_availability_day"),
            sa.CheckConstraint("start_time < end_time", name="ck_availability_times"),
        )
    _create_index_if_not_exists("idx_availability_doctor_day", "doctor_availability", "doctor_id, day_of_week")

    if "doctor_exceptions" not in tables:
        op.create_table(
            "doctor_exceptions",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("doctor_id", sa.Integer(), sa.ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False),
            sa.Column("exception_date", sa.Text(), nullable=False),
            sa.Column("is_available", sa.Boolean(), nullable=False, server_default="0"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("start_time", sa.Text(), nullable=True),
            sa.Column("end_time", sa.Text(), nullable=True),
            sa.UniqueConstraint("doctor_id", "exception_date", name="uq_exceptions_doctor_date"),
            sa.CheckConstraint(
                "(start_time IS NULL) = (end_time IS NULL) AND (start_time IS NULL OR start_time < end_time)",
                name="ck_exceptions_times",
            ),
        )

    if "appointments" not in tables:
        op.create_table(
            "appointments",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("patient_id", sa.Integer(), sa.ForeignKey("patients.id", ondelete="CASCADE"), nullable=False),
            sa.Column("doctor_id", sa.Integer(), sa.ForeignKey("doctors.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("service_id", sa.Integer(), sa.ForeignKey("services.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("room_id", sa.Integer(), sa.ForeignKey("rooms.id", ondelete="SET NULL"), nullable=True),
            sa.Column("starts_at", sa.Text(), nullable=False),
            sa.Column("ends_at", sa.Text(), nullable=False),
            sa.Column("status", sa.Text(), nullable=False, server_default="scheduled"),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("created_by", sa.Text(), nullable=True),
            _created_at(),
            sa.Column("updated_at", sa.Text(), server_default=sa.text("(datetime('now'))"), nullable=False),
            sa.Column("confirmed_at", sa.Text(), nullable=True),
            sa.Column("checked_in_at", sa.Text(), nullable=True),
            sa.Column("started_at", sa.Text(), nullable=True),
            sa.Column("completed_at", sa.Text(), nullable=True),
            sa.Column("cancelled_at", sa.Text(), nullable=True),
            sa.Column("no_show_at", sa.Text(), nullable=True),
            sa.CheckConstraint("starts_at < ends_at", name="ck_appointments_range"),
            sa.CheckConstraint(f"status IN ({_STATUSES})", name="ck_appointments_status"),
        )

    _create_index_if_not_exists(
        "uq_appointments_doctor_start",
        "appointments",
        "doctor_id, starts_at",
        unique=True,
        where="status != 'cancelled'",
    )
    _create_index_if_not_exists("idx_appointments_room_start", "appointments", "room_id, starts_at")
    _create_index_if_not_exists("idx_appointments_patient_start", "appointments", "patient_id, starts_at")
    _create_index_if_not_exists("idx_appointments_status", "appointments", "status")


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS idx_appointments_status")
    op.execute("DROP INDEX IF EXISTS idx_appointments_patient_start")
    op.execute("DROP INDEX IF EXISTS idx_appointments_room_start")
    op.execute("DROP INDEX IF EXISTS uq_appointments_doctor_start")
    op.drop_table("appointments")
    op.drop_table("doctor_exceptions")
    op.execute("DROP INDEX IF EXISTS idx_availability_doctor_day")
    op.drop_table("doctor_availability")
    op.drop_table("services")
    op.drop_table("rooms")
    op.execute("DROP INDEX IF EXISTS idx_patients_name")
    op.drop_table("patients")
    op.drop_table("doctors")
