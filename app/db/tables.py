"""SQLAlchemy table definitions.

These map to the frozen dataclass domain models in app/models/.  Repos
convert between rows and dataclasses.  Enrollment sub-documents (pricing
snapshot, progress, payments, ...) live in JSONB columns; the columns the
engine filters or constrains on are real columns.

Store-enforced rules:
  - batches: enrolled_students <= capacity and equals the id array length
  - enrollments: one live (student, course, batch) per course enrollment
  - enrollments: one active membership per student
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.engine import Base

LIVE_COURSE_ENROLLMENT_INDEX = "uq_enrollments_live_course"
ACTIVE_MEMBERSHIP_INDEX = "uq_enrollments_active_membership"


class StudentRow(Base):
    __tablename__ = "students"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    membership_type: Mapped[str] = mapped_column(
        String(32), nullable=False, default="general"
    )  # general|silver|gold


class CourseRow(Base):
    __tablename__ = "courses"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="published"
    )  # draft|published|retired
    prices: Mapped[list[dict]] = mapped_column(JSONB, nullable=False, default=list)
    curriculum: Mapped[list[str]] = mapped_column(
        ARRAY(String), nullable=False, default=list
    )
    learning_path: Mapped[str] = mapped_column(
        String(16), nullable=False, default="flexible"
    )
    access_duration_days: Mapped[int] = mapped_column(
        Integer, nullable=False, default=365
    )
    completion_threshold: Mapped[int] = mapped_column(
        Integer, nullable=False, default=100
    )
    required_assessment_ids: Mapped[list[str]] = mapped_column(
        ARRAY(String), nullable=False, default=list
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class BatchRow(Base):
    __tablename__ = "batches"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    course_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("courses.id"), nullable=False, index=True
    )
    batch_name: Mapped[str] = mapped_column(String(255), nullable=False)
    batch_code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    batch_type: Mapped[str] = mapped_column(
        String(16), nullable=False, default="group"
    )  # individual|group
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="Upcoming"
    )  # Active|Upcoming|Completed|Cancelled
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    enrolled_students: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    enrolled_student_ids: Mapped[list[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)), nullable=False, default=list
    )

    __table_args__ = (
        CheckConstraint("capacity >= 1", name="ck_batches_capacity_positive"),
        CheckConstraint(
            "enrolled_students <= capacity", name="ck_batches_within_capacity"
        ),
        CheckConstraint(
            "enrolled_students = cardinality(enrolled_student_ids)",
            name="ck_batches_count_matches_ids",
        ),
    )


class EnrollmentRow(Base):
    __tablename__ = "enrollments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    student_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("students.id"), nullable=False, index=True
    )
    course_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("courses.id"), nullable=True
    )
    batch_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("batches.id"), nullable=True, index=True
    )
    enrollment_type: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="active", index=True
    )
    enrollment_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    enrollment_source: Mapped[str] = mapped_column(
        String(16), nullable=False, default="website"
    )
    access_expiry_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    learning_path: Mapped[str] = mapped_column(
        String(16), nullable=False, default="flexible"
    )
    pricing_snapshot: Mapped[dict] = mapped_column(JSONB, nullable=False)
    batch_info: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    membership_info: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    progress: Mapped[dict] = mapped_column(JSONB, nullable=False)
    assessments: Mapped[list[dict]] = mapped_column(JSONB, nullable=False, default=list)
    payments: Mapped[list[dict]] = mapped_column(JSONB, nullable=False, default=list)
    total_amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    payment_plan: Mapped[str] = mapped_column(String(16), nullable=False, default="full")
    installments_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    next_payment_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    certificate_issued: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    certificate_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    completed_on: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    notes: Mapped[list[str]] = mapped_column(ARRAY(Text), nullable=False, default=list)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index(
            LIVE_COURSE_ENROLLMENT_INDEX,
            "student_id",
            "course_id",
            text("coalesce(batch_id, '00000000-0000-0000-0000-000000000000'::uuid)"),
            unique=True,
            postgresql_where=text(
                "status <> 'cancelled' AND enrollment_type <> 'membership'"
            ),
        ),
        Index(
            ACTIVE_MEMBERSHIP_INDEX,
            "student_id",
            unique=True,
            postgresql_where=text(
                "enrollment_type = 'membership' AND status = 'active'"
            ),
        ),
    )


class ProgressRecordRow(Base):
    """Secondary progress projection, rebuilt from enrollments on demand."""

    __tablename__ = "progress_records"

    student_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("students.id"), primary_key=True
    )
    course_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("courses.id"), primary_key=True
    )
    content_type: Mapped[str] = mapped_column(
        String(16), primary_key=True
    )  # course|lesson|quiz
    content_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    progress_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="not_started"
    )  # not_started|in_progress|completed|failed
    time_spent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    score: Mapped[Decimal | None] = mapped_column(Numeric(8, 2), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_accessed: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict] = mapped_column("metadata", JSONB, nullable=False, default=dict)
