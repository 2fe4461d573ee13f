"""The Enrollment aggregate.

A student's claim on a course offering (or a course-independent
membership), together with its commercial and progress state.  Closed
enumerations are StrEnums so their values serialize as the stored
contract strings.

Status changes go through ``ALLOWED_TRANSITIONS``; nothing compares status
strings ad hoc.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum
from uuid import UUID, uuid4

from app.models.course import LearningPath


def utcnow() -> datetime:
    return datetime.now(UTC)


ZERO = Decimal("0.00")


class EnrollmentType(StrEnum):
    INDIVIDUAL = "individual"
    BATCH = "batch"
    CORPORATE = "corporate"
    GROUP = "group"
    SCHOLARSHIP = "scholarship"
    TRIAL = "trial"
    MEMBERSHIP = "membership"


class EnrollmentStatus(StrEnum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ON_HOLD = "on_hold"
    EXPIRED = "expired"


class EnrollmentSource(StrEnum):
    WEBSITE = "website"
    REFERRAL = "referral"
    DIRECT = "direct"
    SALES_TEAM = "sales_team"
    PARTNER = "partner"
    TRANSFER = "transfer"


class PricingType(StrEnum):
    INDIVIDUAL = "individual"
    BATCH = "batch"
    EARLY_BIRD = "early_bird"
    GROUP_DISCOUNT = "group_discount"
    MEMBERSHIP = "membership"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class PaymentMethod(StrEnum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    UPI = "upi"
    NET_BANKING = "net_banking"
    WALLET = "wallet"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    OTHER = "other"


class PaymentType(StrEnum):
    ENROLLMENT = "enrollment"
    INSTALLMENT = "installment"
    MEMBERSHIP = "membership"
    UPGRADE = "upgrade"
    RENEWAL = "renewal"
    REFUND = "refund"


class PaymentPlan(StrEnum):
    FULL = "full"
    INSTALLMENT = "installment"
    SUBSCRIPTION = "subscription"
    FREE = "free"
    SCHOLARSHIP = "scholarship"


class LessonStatus(StrEnum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# Types priced off the course's individual price.
INDIVIDUAL_PRICED_TYPES = frozenset(
    {
        EnrollmentType.INDIVIDUAL,
        EnrollmentType.CORPORATE,
        EnrollmentType.SCHOLARSHIP,
        EnrollmentType.TRIAL,
    }
)

# Types that must reference a batch and carry batch_info.
BATCH_TYPES = frozenset({EnrollmentType.BATCH, EnrollmentType.GROUP})

# Full original price is recorded as discount.
ZERO_PRICED_TYPES = frozenset({EnrollmentType.SCHOLARSHIP, EnrollmentType.TRIAL})

ALLOWED_TRANSITIONS: dict[EnrollmentStatus, frozenset[EnrollmentStatus]] = {
    EnrollmentStatus.ACTIVE: frozenset(
        {
            EnrollmentStatus.COMPLETED,
            EnrollmentStatus.CANCELLED,
            EnrollmentStatus.ON_HOLD,
            EnrollmentStatus.EXPIRED,
        }
    ),
    EnrollmentStatus.ON_HOLD: frozenset({EnrollmentStatus.ACTIVE}),
    EnrollmentStatus.COMPLETED: frozenset(),
    EnrollmentStatus.CANCELLED: frozenset(),
    EnrollmentStatus.EXPIRED: frozenset(),
}


def can_transition(current: EnrollmentStatus, target: EnrollmentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


@dataclass(frozen=True, slots=True)
class PricingSnapshot:
    """Price terms fixed at enrollment time.  Never recomputed."""

    original_price: Decimal
    final_price: Decimal
    currency: str
    pricing_type: PricingType
    discount_applied: Decimal = ZERO
    discount_code: str | None = None


@dataclass(frozen=True, slots=True)
class BatchMember:
    student_id: UUID
    joined_date: datetime


@dataclass(frozen=True, slots=True)
class BatchInfo:
    batch_size: int = 1
    is_batch_leader: bool = False
    batch_members: tuple[BatchMember, ...] = ()


@dataclass(frozen=True, slots=True)
class MembershipInfo:
    membership_type: str
    duration_months: int
    start_date: datetime
    end_date: datetime
    auto_renewal: bool = False
    benefits: tuple[str, ...] = ()
    previous_type: str | None = None
    upgrade_date: datetime | None = None
    # Length of the most recent purchase (create or renewal); duration_months
    # is the running total.
    term_months: int | None = None


@dataclass(frozen=True, slots=True)
class LessonProgress:
    lesson_id: str
    status: LessonStatus = LessonStatus.NOT_STARTED
    percentage: int = 0
    last_accessed: datetime | None = None
    time_spent: int = 0  # seconds


@dataclass(frozen=True, slots=True)
class Progress:
    overall_percentage: int = 0
    lessons_completed: int = 0
    last_activity_date: datetime | None = None
    detailed_progress: tuple[LessonProgress, ...] = ()

    def lesson(self, lesson_id: str) -> LessonProgress | None:
        for entry in self.detailed_progress:
            if entry.lesson_id == lesson_id:
                return entry
        return None

    def completed_lesson_ids(self) -> set[str]:
        return {
            e.lesson_id
            for e in self.detailed_progress
            if e.status == LessonStatus.COMPLETED
        }


@dataclass(frozen=True, slots=True)
class AssessmentScore:
    assessment_id: str
    score: Decimal
    max_score: Decimal
    passed: bool
    attempts: int = 1
    last_attempt_date: datetime | None = None


@dataclass(frozen=True, slots=True)
class Payment:
    amount: Decimal
    currency: str
    method: PaymentMethod
    transaction_id: str
    status: PaymentStatus
    payment_date: datetime
    payment_type: PaymentType = PaymentType.ENROLLMENT
    refund_of: str | None = None
    refunded_amount: Decimal = ZERO


@dataclass(frozen=True, slots=True)
class Enrollment:
    id: UUID
    student_id: UUID
    enrollment_type: EnrollmentType
    access_expiry_date: datetime
    pricing_snapshot: PricingSnapshot
    course_id: UUID | None = None
    batch_id: UUID | None = None
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    enrollment_date: datetime = field(default_factory=utcnow)
    enrollment_source: EnrollmentSource = EnrollmentSource.WEBSITE
    batch_info: BatchInfo | None = None
    membership_info: MembershipInfo | None = None
    learning_path: LearningPath = LearningPath.FLEXIBLE
    progress: Progress = field(default_factory=Progress)
    assessments: tuple[AssessmentScore, ...] = ()
    payments: tuple[Payment, ...] = ()
    total_amount_paid: Decimal = ZERO
    payment_plan: PaymentPlan = PaymentPlan.FULL
    installments_count: int = 1
    next_payment_date: datetime | None = None
    certificate_issued: bool = False
    certificate_id: str | None = None
    completed_on: datetime | None = None
    notes: tuple[str, ...] = ()
    created_by: str | None = None
    version: int = 1

    @staticmethod
    def new(
        *,
        student_id: UUID,
        enrollment_type: EnrollmentType,
        access_expiry_date: datetime,
        pricing_snapshot: PricingSnapshot,
        course_id: UUID | None = None,
        batch_id: UUID | None = None,
        enrollment_source: EnrollmentSource = EnrollmentSource.WEBSITE,
        batch_info: BatchInfo | None = None,
        membership_info: MembershipInfo | None = None,
        learning_path: LearningPath = LearningPath.FLEXIBLE,
        payment_plan: PaymentPlan = PaymentPlan.FULL,
        installments_count: int = 1,
        created_by: str | None = None,
        enrollment_date: datetime | None = None,
    ) -> Enrollment:
        return Enrollment(
            id=uuid4(),
            student_id=student_id,
            enrollment_type=enrollment_type,
            access_expiry_date=access_expiry_date,
            pricing_snapshot=pricing_snapshot,
            course_id=course_id,
            batch_id=batch_id,
            enrollment_date=enrollment_date or utcnow(),
            enrollment_source=enrollment_source,
            batch_info=batch_info,
            membership_info=membership_info,
            learning_path=learning_path,
            payment_plan=payment_plan,
            installments_count=installments_count,
            created_by=created_by,
        )

    @property
    def is_membership(self) -> bool:
        return self.enrollment_type == EnrollmentType.MEMBERSHIP

    def is_live(self) -> bool:
        """Counts towards the (student, course, batch) uniqueness rule."""
        return self.status != EnrollmentStatus.CANCELLED

    def grants_access(self, now: datetime) -> bool:
        return (
            self.status in (EnrollmentStatus.ACTIVE, EnrollmentStatus.COMPLETED)
            and self.access_expiry_date > now
        )

    def payment(self, transaction_id: str) -> Payment | None:
        for p in self.payments:
            if p.transaction_id == transaction_id:
                return p
        return None
