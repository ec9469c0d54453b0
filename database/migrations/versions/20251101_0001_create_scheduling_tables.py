"""create scheduling and conflict tables

Revision ID: 20251101_0001
Revises:
Create Date: 2025-11-01 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa

revision = "20251101_0001"
down_revision = None
branch_labels = None
depends_on = None

SCHEDULE_TYPES = ("court", "visit", "program", "medical", "other")
SCHEDULE_STATUSES = ("scheduled", "confirmed", "completed", "cancelled", "rescheduled")
CONFLICT_TYPES = ("subject_double_booking", "facility_double_booking", "officer_conflict", "resource_conflict")
CONFLICT_SEVERITIES = ("low", "medium", "high", "critical")
CONFLICT_STATUSES = ("detected", "acknowledged", "resolved", "ignored")


def upgrade() -> None:
    op.create_table(
        "pdls",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("pdl_number", sa.String(length=50), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_pdls_pdl_number", "pdls", ["pdl_number"], unique=True)

    op.create_table(
        "facilities",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("type", sa.String(length=50), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "schedules",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("schedule_type", sa.Enum(*SCHEDULE_TYPES, name="schedule_type"), nullable=False),
        sa.Column("pdl_id", sa.String(length=36), sa.ForeignKey("pdls.id", ondelete="RESTRICT"), nullable=False),
        sa.Column(
            "facility_id",
            sa.String(length=36),
            sa.ForeignKey("facilities.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("start_datetime", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_datetime", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.Enum(*SCHEDULE_STATUSES, name="schedule_status"), nullable=False),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("responsible_officer", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=36), nullable=True),
        sa.Column("updated_by", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_schedules_pdl_id", "schedules", ["pdl_id"])
    op.create_index("ix_schedules_facility_id", "schedules", ["facility_id"])
    op.create_index("ix_schedules_responsible_officer", "schedules", ["responsible_officer"])
    op.create_index("ix_schedules_start_end", "schedules", ["start_datetime", "end_datetime"])

    op.create_table(
        "schedule_conflicts",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column(
            "schedule_1_id",
            sa.String(length=36),
            sa.ForeignKey("schedules.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "schedule_2_id",
            sa.String(length=36),
            sa.ForeignKey("schedules.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("pair_key", sa.String(length=80), nullable=False),
        sa.Column("conflict_type", sa.Enum(*CONFLICT_TYPES, name="conflict_type"), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("severity", sa.Enum(*CONFLICT_SEVERITIES, name="conflict_severity"), nullable=False),
        sa.Column("status", sa.Enum(*CONFLICT_STATUSES, name="conflict_status"), nullable=False),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("resolved_by", sa.String(length=36), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("pair_key", name="uq_schedule_conflicts_pair_key"),
    )
    op.create_index("ix_schedule_conflicts_schedule_1_id", "schedule_conflicts", ["schedule_1_id"])
    op.create_index("ix_schedule_conflicts_schedule_2_id", "schedule_conflicts", ["schedule_2_id"])
    op.create_index("ix_schedule_conflicts_status", "schedule_conflicts", ["status"])

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=True),
        sa.Column("entity_id", sa.String(length=100), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_activity_logs_user_id", "activity_logs", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_activity_logs_user_id", table_name="activity_logs")
    op.drop_table("activity_logs")
    op.drop_index("ix_schedule_conflicts_status", table_name="schedule_conflicts")
    op.drop_index("ix_schedule_conflicts_schedule_2_id", table_name="schedule_conflicts")
    op.drop_index("ix_schedule_conflicts_schedule_1_id", table_name="schedule_conflicts")
    op.drop_table("schedule_conflicts")
    op.drop_index("ix_schedules_start_end", table_name="schedules")
    op.drop_index("ix_schedules_responsible_officer", table_name="schedules")
    op.drop_index("ix_schedules_facility_id", table_name="schedules")
    op.drop_index("ix_schedules_pdl_id", table_name="schedules")
    op.drop_table("schedules")
    op.drop_table("facilities")
    op.drop_index("ix_pdls_pdl_number", table_name="pdls")
    op.drop_table("pdls")
    bind = op.get_bind()
    for enum_name in ("conflict_status", "conflict_severity", "conflict_type", "schedule_status", "schedule_type"):
        sa.Enum(name=enum_name).drop(bind, checkfirst=True)
