from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from uuid import UUID, uuid4


class LearningPath(StrEnum):
    SEQUENTIAL = "sequential"
    FLEXIBLE = "flexible"


class BatchType(StrEnum):
    INDIVIDUAL = "individual"  # one-to-one session offering
    GROUP = "group"


class BatchStatus(StrEnum):
    ACTIVE = "Active"
    UPCOMING = "Upcoming"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


# Only these batches accept new students.
ADMITTING_BATCH_STATUSES = frozenset({BatchStatus.ACTIVE, BatchStatus.UPCOMING})


@dataclass(frozen=True, slots=True)
class CoursePrice:
    """Price list for one currency.  Discounts are percentages."""

    currency: str
    individual: Decimal
    batch: Decimal
    min_batch_size: int = 2
    max_batch_size: int | None = None
    early_bird_discount: Decimal = Decimal("0")
    group_discount: Decimal = Decimal("0")


@dataclass(frozen=True, slots=True)
class Course:
    id: UUID
    slug: str
    title: str
    status: str = "published"  # draft|published|retired
    prices: tuple[CoursePrice, ...] = ()
    curriculum: tuple[str, ...] = ()  # lesson ids, in order
    learning_path: LearningPath = LearningPath.FLEXIBLE
    access_duration_days: int = 365
    completion_threshold: int = 100
    required_assessment_ids: tuple[str, ...] = ()
    version: int = 1

    @staticmethod
    def new(
        *,
        slug: str,
        title: str,
        prices: tuple[CoursePrice, ...] = (),
        curriculum: tuple[str, ...] = (),
        learning_path: LearningPath = LearningPath.FLEXIBLE,
        access_duration_days: int = 365,
        completion_threshold: int = 100,
        required_assessment_ids: tuple[str, ...] = (),
    ) -> Course:
        return Course(
            id=uuid4(),
            slug=slug,
            title=title,
            prices=prices,
            curriculum=curriculum,
            learning_path=learning_path,
            access_duration_days=access_duration_days,
            completion_threshold=completion_threshold,
            required_assessment_ids=required_assessment_ids,
        )

    def price_for(self, currency: str) -> CoursePrice | None:
        for price in self.prices:
            if price.currency == currency:
                return price
        return None


@dataclass(frozen=True, slots=True)
class Batch:
    """A scheduled, capacity-bounded offering of a course.

    ``enrolled_students`` always equals ``len(enrolled_student_ids)`` and
    never exceeds ``capacity``.  Only the capacity gate mutates the two.
    """

    id: UUID
    course_id: UUID
    batch_name: str
    batch_code: str
    start_date: datetime
    end_date: datetime
    capacity: int
    batch_type: BatchType = BatchType.GROUP
    status: BatchStatus = BatchStatus.UPCOMING
    enrolled_students: int = 0
    enrolled_student_ids: tuple[UUID, ...] = ()

    @staticmethod
    def new(
        *,
        course_id: UUID,
        batch_name: str,
        batch_code: str,
        start_date: datetime,
        end_date: datetime,
        capacity: int,
        batch_type: BatchType = BatchType.GROUP,
        status: BatchStatus = BatchStatus.UPCOMING,
    ) -> Batch:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if end_date <= start_date:
            raise ValueError("end_date must be after start_date")
        return Batch(
            id=uuid4(),
            course_id=course_id,
            batch_name=batch_name,
            batch_code=batch_code,
            start_date=start_date,
            end_date=end_date,
            capacity=capacity,
            batch_type=batch_type,
            status=status,
        )

    @property
    def available_seats(self) -> int:
        return self.capacity - self.enrolled_students

    @property
    def is_one_to_one(self) -> bool:
        return self.batch_type == BatchType.INDIVIDUAL
