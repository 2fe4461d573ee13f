"""Progress endpoints.

  PUT  /v1/progress/{enrollment_id}/lessons/{lesson_id}
  POST /v1/progress/{enrollment_id}/lessons/{lesson_id}/reset      admin
  POST /v1/progress/{enrollment_id}/assessments/{assessment_id}
  GET  /v1/progress/{enrollment_id}/summary                        read-through cached
  POST /v1/progress/{enrollment_id}/resync                         staff
"""

from __future__ import annotations

from decimal import Decimal
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.api.dependencies import (
    ensure_can_read,
    ensure_can_write,
    get_uow,
    require_any_role,
    require_role,
    require_user,
)
from app.api.enrollments import EnrollmentOut, to_out
from app.models.enrollment import LessonStatus
from app.models.principal import STAFF_ROLES, Principal
from app.repos.unit_of_work import UnitOfWork
from app.services import progress_tracker
from app.services.enrollment_service import load_enrollment

router = APIRouter(prefix="/v1/progress", tags=["progress"])


class LessonUpdateIn(BaseModel):
    status: LessonStatus | None = None
    percentage: int | None = Field(None, ge=0, le=100)
    time_spent: int = Field(0, ge=0)


class AssessmentIn(BaseModel):
    score: Decimal = Field(ge=0)
    max_score: Decimal = Field(gt=0)
    passed: bool


class ResyncOut(BaseModel):
    enrollment_id: UUID
    records_written: int


async def _check_owner(uow: UnitOfWork, enrollment_id: UUID, principal: Principal) -> None:
    enrollment = await load_enrollment(uow, enrollment_id)
    ensure_can_write(principal, enrollment.student_id)


@router.put("/{enrollment_id}/lessons/{lesson_id}", response_model=EnrollmentOut)
async def update_lesson(
    enrollment_id: UUID,
    lesson_id: str,
    body: LessonUpdateIn,
    principal: Annotated[Principal, Depends(require_user)],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
) -> EnrollmentOut:
    await _check_owner(uow, enrollment_id, principal)
    enrollment = await progress_tracker.update_lesson_progress(
        uow,
        enrollment_id,
        lesson_id,
        progress_tracker.LessonUpdate(
            status=body.status, percentage=body.percentage, time_spent=body.time_spent
        ),
    )
    return to_out(enrollment)


@router.post("/{enrollment_id}/lessons/{lesson_id}/reset", response_model=EnrollmentOut)
async def reset_lesson(
    enrollment_id: UUID,
    lesson_id: str,
    _admin: Annotated[Principal, Depends(require_role("admin"))],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
) -> EnrollmentOut:
    return to_out(await progress_tracker.reset_lesson(uow, enrollment_id, lesson_id))


@router.post("/{enrollment_id}/assessments/{assessment_id}", response_model=EnrollmentOut)
async def record_assessment(
    enrollment_id: UUID,
    assessment_id: str,
    body: AssessmentIn,
    principal: Annotated[Principal, Depends(require_user)],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
) -> EnrollmentOut:
    await _check_owner(uow, enrollment_id, principal)
    enrollment = await progress_tracker.record_assessment(
        uow,
        enrollment_id,
        assessment_id,
        score=body.score,
        max_score=body.max_score,
        passed=body.passed,
    )
    return to_out(enrollment)


@router.get("/{enrollment_id}/summary")
async def get_summary(
    enrollment_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
) -> dict:
    summary = await progress_tracker.progress_summary(uow, enrollment_id)
    ensure_can_read(principal, UUID(summary["student_id"]))
    return summary


@router.post("/{enrollment_id}/resync", response_model=ResyncOut)
async def resync(
    enrollment_id: UUID,
    _staff: Annotated[Principal, Depends(require_any_role(set(STAFF_ROLES)))],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
) -> ResyncOut:
    written = await progress_tracker.rebuild_progress_records(uow, enrollment_id)
    return ResyncOut(enrollment_id=enrollment_id, records_written=written)
