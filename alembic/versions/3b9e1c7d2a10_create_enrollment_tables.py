"""create enrollment tables

Revision ID: 3b9e1c7d2a10
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b9e1c7d2a10"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

TS = sa.DateTime(timezone=True)


def upgrade() -> None:
    op.create_table(
        "students",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("full_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "membership_type", sa.String(length=32), nullable=False, server_default="general"
        ),
    )

    op.create_table(
        "courses",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("slug", sa.String(length=255), nullable=False, unique=True),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="published"),
        sa.Column("prices", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column(
            "curriculum", postgresql.ARRAY(sa.String()), nullable=False, server_default="{}"
        ),
        sa.Column(
            "learning_path", sa.String(length=16), nullable=False, server_default="flexible"
        ),
        sa.Column("access_duration_days", sa.Integer(), nullable=False, server_default="365"),
        sa.Column("completion_threshold", sa.Integer(), nullable=False, server_default="100"),
        sa.Column(
            "required_assessment_ids",
            postgresql.ARRAY(sa.String()),
            nullable=False,
            server_default="{}",
        ),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )

    op.create_table(
        "batches",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "course_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("courses.id"), nullable=False
        ),
        sa.Column("batch_name", sa.String(length=255), nullable=False),
        sa.Column("batch_code", sa.String(length=64), nullable=False, unique=True),
        sa.Column("batch_type", sa.String(length=16), nullable=False, server_default="group"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="Upcoming"),
        sa.Column("start_date", TS, nullable=False),
        sa.Column("end_date", TS, nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("enrolled_students", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "enrolled_student_ids",
            postgresql.ARRAY(postgresql.UUID(as_uuid=True)),
            nullable=False,
            server_default="{}",
        ),
        sa.CheckConstraint("capacity >= 1", name="ck_batches_capacity_positive"),
        sa.CheckConstraint("enrolled_students <= capacity", name="ck_batches_within_capacity"),
        sa.CheckConstraint(
            "enrolled_students = cardinality(enrolled_student_ids)",
            name="ck_batches_count_matches_ids",
        ),
    )
    op.create_index("ix_batches_course_id", "batches", ["course_id"])

    op.create_table(
        "enrollments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "student_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("students.id"),
            nullable=False,
        ),
        sa.Column(
            "course_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("courses.id"), nullable=True
        ),
        sa.Column(
            "batch_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("batches.id"), nullable=True
        ),
        sa.Column("enrollment_type", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("enrollment_date", TS, nullable=False),
        sa.Column(
            "enrollment_source", sa.String(length=16), nullable=False, server_default="website"
        ),
        sa.Column("access_expiry_date", TS, nullable=False),
        sa.Column(
            "learning_path", sa.String(length=16), nullable=False, server_default="flexible"
        ),
        sa.Column("pricing_snapshot", postgresql.JSONB(), nullable=False),
        sa.Column("batch_info", postgresql.JSONB(), nullable=True),
        sa.Column("membership_info", postgresql.JSONB(), nullable=True),
        sa.Column("progress", postgresql.JSONB(), nullable=False),
        sa.Column("assessments", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("payments", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column(
            "total_amount_paid", sa.Numeric(12, 2), nullable=False, server_default="0.00"
        ),
        sa.Column("payment_plan", sa.String(length=16), nullable=False, server_default="full"),
        sa.Column("installments_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("next_payment_date", TS, nullable=True),
        sa.Column(
            "certificate_issued", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("certificate_id", sa.String(length=64), nullable=True),
        sa.Column("completed_on", TS, nullable=True),
        sa.Column("notes", postgresql.ARRAY(sa.Text()), nullable=False, server_default="{}"),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_enrollments_student_id", "enrollments", ["student_id"])
    op.create_index("ix_enrollments_batch_id", "enrollments", ["batch_id"])
    op.create_index("ix_enrollments_status", "enrollments", ["status"])
    op.create_index(
        "uq_enrollments_live_course",
        "enrollments",
        [
            "student_id",
            "course_id",
            sa.text("coalesce(batch_id, '00000000-0000-0000-0000-000000000000'::uuid)"),
        ],
        unique=True,
        postgresql_where=sa.text("status <> 'cancelled' AND enrollment_type <> 'membership'"),
    )
    op.create_index(
        "uq_enrollments_active_membership",
        "enrollments",
        ["student_id"],
        unique=True,
        postgresql_where=sa.text("enrollment_type = 'membership' AND status = 'active'"),
    )

    op.create_table(
        "progress_records",
        sa.Column(
            "student_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("students.id"),
            primary_key=True,
        ),
        sa.Column(
            "course_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("courses.id"),
            primary_key=True,
        ),
        sa.Column("content_type", sa.String(length=16), primary_key=True),
        sa.Column("content_id", sa.String(length=255), primary_key=True),
        sa.Column("progress_percentage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="not_started"),
        sa.Column("time_spent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("score", sa.Numeric(8, 2), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_accessed", TS, nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=False, server_default="{}"),
    )


def downgrade() -> None:
    op.drop_table("progress_records")
    op.drop_index("uq_enrollments_active_membership", table_name="enrollments")
    op.drop_index("uq_enrollments_live_course", table_name="enrollments")
    op.drop_index("ix_enrollments_status", table_name="enrollments")
    op.drop_index("ix_enrollments_batch_id", table_name="enrollments")
    op.drop_index("ix_enrollments_student_id", table_name="enrollments")
    op.drop_table("enrollments")
    op.drop_index("ix_batches_course_id", table_name="batches")
    op.drop_table("batches")
    op.drop_table("courses")
    op.drop_table("students")
