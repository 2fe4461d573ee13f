"""Course catalogue endpoints (read-only) and the pricing quote.

  GET /v1/courses
  GET /v1/courses/{course}             course id or slug
  GET /v1/courses/{course}/pricing     what an enrollment would be charged
  GET /v1/courses/{course}/batches     offerings, optionally only with free seats
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from app.api.dependencies import get_uow, require_user
from app.core.errors import NotFound
from app.models.course import Batch, BatchStatus, BatchType, Course, CoursePrice, LearningPath
from app.models.enrollment import EnrollmentType
from app.models.principal import Principal
from app.repos.unit_of_work import UnitOfWork
from app.services import capacity_gate
from app.services.pricing import quote_pricing

router = APIRouter(prefix="/v1/courses", tags=["courses"])


class PriceOut(BaseModel):
    currency: str
    individual: Decimal
    batch: Decimal
    min_batch_size: int
    max_batch_size: int | None
    early_bird_discount: Decimal
    group_discount: Decimal


class CourseOut(BaseModel):
    id: UUID
    slug: str
    title: str
    status: str
    learning_path: str
    curriculum: list[str]
    access_duration_days: int
    completion_threshold: int
    required_assessment_ids: list[str]
    prices: list[PriceOut]
    version: int

    @classmethod
    def from_course(cls, c: Course) -> CourseOut:
        return cls(
            id=c.id,
            slug=c.slug,
            title=c.title,
            status=c.status,
            learning_path=c.learning_path.value,
            curriculum=list(c.curriculum),
            access_duration_days=c.access_duration_days,
            completion_threshold=c.completion_threshold,
            required_assessment_ids=list(c.required_assessment_ids),
            prices=[
                PriceOut(
                    currency=p.currency,
                    individual=p.individual,
                    batch=p.batch,
                    min_batch_size=p.min_batch_size,
                    max_batch_size=p.max_batch_size,
                    early_bird_discount=p.early_bird_discount,
                    group_discount=p.group_discount,
                )
                for p in c.prices
            ],
            version=c.version,
        )


class BatchOut(BaseModel):
    id: UUID
    course_id: UUID
    batch_name: str
    batch_code: str
    batch_type: str
    status: str
    start_date: datetime
    end_date: datetime
    capacity: int
    enrolled_students: int
    available_seats: int

    @classmethod
    def from_batch(cls, b: Batch) -> BatchOut:
        return cls(
            id=b.id,
            course_id=b.course_id,
            batch_name=b.batch_name,
            batch_code=b.batch_code,
            batch_type=b.batch_type.value,
            status=b.status.value,
            start_date=b.start_date,
            end_date=b.end_date,
            capacity=b.capacity,
            enrolled_students=b.enrolled_students,
            available_seats=b.available_seats,
        )


class PricingQuoteOut(BaseModel):
    course_id: UUID
    enrollment_type: str
    batch_size: int
    original_price: Decimal
    final_price: Decimal
    currency: str
    pricing_type: str
    discount_applied: Decimal
    discount_code: str | None
    savings: Decimal


async def resolve_course(uow: UnitOfWork, course_ref: str) -> Course:
    try:
        course = await uow.courses.get(UUID(course_ref))
    except ValueError:
        course = await uow.courses.get_by_slug(course_ref)
    if course is None:
        raise NotFound("course", course_ref)
    return course


@router.get("", response_model=list[CourseOut])
async def list_courses(
    _principal: Annotated[Principal, Depends(require_user)],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
) -> list[CourseOut]:
    return [CourseOut.from_course(c) for c in await uow.courses.list_all()]


@router.get("/{course_ref}", response_model=CourseOut)
async def get_course(
    course_ref: str,
    _principal: Annotated[Principal, Depends(require_user)],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
) -> CourseOut:
    return CourseOut.from_course(await resolve_course(uow, course_ref))


@router.get("/{course_ref}/pricing", response_model=PricingQuoteOut)
async def get_pricing_quote(
    course_ref: str,
    _principal: Annotated[Principal, Depends(require_user)],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
    enrollment_type: EnrollmentType = EnrollmentType.INDIVIDUAL,
    currency: str = "INR",
    batch_size: Annotated[int, Query(ge=1)] = 1,
    discount_code: str | None = None,
    discount_amount: Annotated[Decimal, Query(ge=0)] = Decimal("0"),
) -> PricingQuoteOut:
    course = await resolve_course(uow, course_ref)
    quote = quote_pricing(
        course,
        enrollment_type,
        currency=currency.upper(),
        batch_size=batch_size,
        discount_code=discount_code,
        discount_amount=discount_amount,
    )
    return PricingQuoteOut(**quote)


@router.get("/{course_ref}/batches", response_model=list[BatchOut])
async def list_batches(
    course_ref: str,
    _principal: Annotated[Principal, Depends(require_user)],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
    available_only: bool = False,
) -> list[BatchOut]:
    course = await resolve_course(uow, course_ref)
    if available_only:
        batches = await capacity_gate.list_available_batches(uow, course.id)
    else:
        batches = await uow.batches.list_for_course(course.id)
    return [BatchOut.from_batch(b) for b in batches]


# ---------------------------------------------------------------------------
# Dev catalogue
# ---------------------------------------------------------------------------


async def seed_sample_catalogue(uow: UnitOfWork) -> Course:
    """Seed one course with a group batch for local development."""
    existing = await uow.courses.get_by_slug("intro-to-python")
    if existing is not None:
        return existing
    course = Course.new(
        slug="intro-to-python",
        title="Introduction to Python",
        prices=(
            CoursePrice(
                currency="INR",
                individual=Decimal("4999.00"),
                batch=Decimal("3999.00"),
                max_batch_size=10,
                group_discount=Decimal("10"),
            ),
            CoursePrice(currency="USD", individual=Decimal("99.00"), batch=Decimal("79.00")),
        ),
        curriculum=("lesson-1", "lesson-2", "lesson-3", "lesson-4"),
        learning_path=LearningPath.SEQUENTIAL,
    )
    await uow.courses.add(course)
    start = datetime.now(UTC) + timedelta(days=7)
    batch = Batch.new(
        course_id=course.id,
        batch_name="Evening cohort",
        batch_code="PY-EVE-01",
        start_date=start,
        end_date=start + timedelta(days=60),
        capacity=20,
        batch_type=BatchType.GROUP,
        status=BatchStatus.UPCOMING,
    )
    await uow.batches.add(batch)
    await uow.commit()
    return course
