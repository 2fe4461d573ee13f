"""Progress tracker.

The progress embedded in the Enrollment is the source of truth.  Every
change is applied through ``modify_enrollment`` (so concurrent lesson
updates and payments never overwrite each other) and then mirrored into
the ProgressRecord projection:

  enrollment.progress  --(best effort)-->  progress_records
                                            course row  (content_id = course id)
                                            lesson rows (content_id = lesson id)
                                            quiz rows   (content_id = assessment id)

A failed mirror write is logged and counted, never raised; the projection
is eventually consistent and ``rebuild_progress_records`` replays it from
the enrollment.

Sequential learning paths only gate *completion*: a student may open any
lesson, but cannot mark lesson N completed while an earlier lesson is not.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from app.core.errors import (
    EnrollmentInactive,
    InvalidEnrollmentStructure,
    NotFound,
    SequentialViolation,
)
from app.core.metrics import PROGRESS_MIRROR_FAILURES
from app.models.course import Course, LearningPath
from app.models.enrollment import (
    AssessmentScore,
    Enrollment,
    EnrollmentStatus,
    LessonProgress,
    LessonStatus,
    Progress,
    utcnow,
)
from app.models.progress import ContentType, ProgressRecord, RecordStatus
from app.repos.unit_of_work import UnitOfWork
from app.services.cache import cache_service
from app.services.enrollment_service import (
    final_score,
    load_enrollment,
    modify_enrollment,
    request_certificate,
    transition,
)

logger = logging.getLogger(__name__)

PROGRESS_CACHE_TTL = 300

_TRACKABLE = (EnrollmentStatus.ACTIVE, EnrollmentStatus.COMPLETED)


def summary_cache_key(enrollment_id: UUID) -> str:
    return f"progress:{enrollment_id}"


@dataclass(frozen=True, slots=True)
class LessonUpdate:
    status: LessonStatus | None = None
    percentage: int | None = None
    time_spent: int = 0  # seconds spent in this session


# ---------------------------------------------------------------------------
# Pure progress arithmetic
# ---------------------------------------------------------------------------


def _percentage(completed: int, total: int) -> int:
    if total == 0:
        return 0
    ratio = Decimal(completed * 100) / Decimal(total)
    return int(ratio.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def recompute_progress(
    detailed: tuple[LessonProgress, ...], curriculum: tuple[str, ...], when: datetime
) -> Progress:
    completed = sum(
        1
        for entry in detailed
        if entry.status == LessonStatus.COMPLETED and entry.lesson_id in curriculum
    )
    return Progress(
        overall_percentage=_percentage(completed, len(curriculum)),
        lessons_completed=completed,
        last_activity_date=when,
        detailed_progress=detailed,
    )


def blocking_lessons(e: Enrollment, curriculum: tuple[str, ...], lesson_id: str) -> list[str]:
    done = e.progress.completed_lesson_ids()
    position = curriculum.index(lesson_id)
    return [earlier for earlier in curriculum[:position] if earlier not in done]


def _replace_entry(
    detailed: tuple[LessonProgress, ...], entry: LessonProgress
) -> tuple[LessonProgress, ...]:
    if any(e.lesson_id == entry.lesson_id for e in detailed):
        return tuple(entry if e.lesson_id == entry.lesson_id else e for e in detailed)
    return (*detailed, entry)


def completion_reached(e: Enrollment, course: Course) -> bool:
    if e.progress.overall_percentage < course.completion_threshold:
        return False
    passed = {a.assessment_id for a in e.assessments if a.passed}
    return all(required in passed for required in course.required_assessment_ids)


def _maybe_complete(e: Enrollment, course: Course, when: datetime) -> Enrollment:
    if e.status == EnrollmentStatus.ACTIVE and completion_reached(e, course):
        return transition(
            e, EnrollmentStatus.COMPLETED, reason="completion criteria met", now=when
        )
    return e


def apply_lesson_update(
    e: Enrollment,
    course: Course,
    lesson_id: str,
    update: LessonUpdate,
    when: datetime,
) -> Enrollment:
    if e.status not in _TRACKABLE:
        raise EnrollmentInactive(
            f"cannot record progress on a {e.status.value} enrollment",
            details={"enrollment_id": str(e.id), "status": e.status.value},
        )
    if update.percentage is not None and not 0 <= update.percentage <= 100:
        raise InvalidEnrollmentStructure(
            "percentage must be between 0 and 100",
            details={"percentage": update.percentage},
        )
    if update.time_spent < 0:
        raise InvalidEnrollmentStructure("time_spent cannot be negative")

    entry = e.progress.lesson(lesson_id) or LessonProgress(lesson_id=lesson_id)
    status = update.status or entry.status
    percentage = update.percentage if update.percentage is not None else entry.percentage
    if percentage == 100 and update.status is None:
        status = LessonStatus.COMPLETED
    if entry.status == LessonStatus.COMPLETED:
        # only an explicit reset reopens a completed lesson
        status = LessonStatus.COMPLETED
    if status == LessonStatus.COMPLETED:
        percentage = 100
    elif status == LessonStatus.NOT_STARTED and (percentage > 0 or update.time_spent):
        status = LessonStatus.IN_PROGRESS

    if (
        status == LessonStatus.COMPLETED
        and entry.status != LessonStatus.COMPLETED
        and e.learning_path == LearningPath.SEQUENTIAL
    ):
        blocking = blocking_lessons(e, course.curriculum, lesson_id)
        if blocking:
            raise SequentialViolation(lesson_id, blocking)

    updated_entry = LessonProgress(
        lesson_id=lesson_id,
        status=status,
        percentage=percentage,
        last_accessed=when,
        time_spent=entry.time_spent + update.time_spent,
    )
    detailed = _replace_entry(e.progress.detailed_progress, updated_entry)
    progressed = replace(e, progress=recompute_progress(detailed, course.curriculum, when))
    return _maybe_complete(progressed, course, when)


# ---------------------------------------------------------------------------
# Projection mirror
# ---------------------------------------------------------------------------


def _metadata(e: Enrollment, synced_from: str) -> dict:
    return {
        "enrollment_id": str(e.id),
        "enrollment_type": e.enrollment_type.value,
        "batch_id": str(e.batch_id) if e.batch_id else None,
        "synced_from": synced_from,
    }


def _record_status(percentage: int, completed: bool) -> RecordStatus:
    if completed:
        return RecordStatus.COMPLETED
    if percentage > 0:
        return RecordStatus.IN_PROGRESS
    return RecordStatus.NOT_STARTED


def course_record(e: Enrollment, course_id: UUID, synced_from: str) -> ProgressRecord:
    progress = e.progress
    return ProgressRecord(
        student_id=e.student_id,
        course_id=course_id,
        content_type=ContentType.COURSE,
        content_id=str(course_id),
        progress_percentage=progress.overall_percentage,
        status=_record_status(
            progress.overall_percentage, e.status == EnrollmentStatus.COMPLETED
        ),
        time_spent=sum(entry.time_spent for entry in progress.detailed_progress),
        score=final_score(e) if e.assessments else None,
        last_accessed=progress.last_activity_date,
        metadata=_metadata(e, synced_from),
    )


def lesson_record(
    e: Enrollment, course_id: UUID, entry: LessonProgress, synced_from: str
) -> ProgressRecord:
    return ProgressRecord(
        student_id=e.student_id,
        course_id=course_id,
        content_type=ContentType.LESSON,
        content_id=entry.lesson_id,
        progress_percentage=entry.percentage,
        status=_record_status(entry.percentage, entry.status == LessonStatus.COMPLETED),
        time_spent=entry.time_spent,
        last_accessed=entry.last_accessed,
        metadata=_metadata(e, synced_from),
    )


def quiz_record(
    e: Enrollment, course_id: UUID, assessment: AssessmentScore, synced_from: str
) -> ProgressRecord:
    return ProgressRecord(
        student_id=e.student_id,
        course_id=course_id,
        content_type=ContentType.QUIZ,
        content_id=assessment.assessment_id,
        progress_percentage=100 if assessment.passed else 0,
        status=RecordStatus.COMPLETED if assessment.passed else RecordStatus.FAILED,
        score=assessment.score,
        attempts=assessment.attempts,
        last_accessed=assessment.last_attempt_date,
        metadata=_metadata(e, synced_from) | {"max_score": str(assessment.max_score)},
    )


async def _mirror(uow: UnitOfWork, records: list[ProgressRecord]) -> None:
    """Write projection rows; failures are logged and counted, never raised."""
    for record in records:
        try:
            await uow.progress_records.upsert(record)
        except Exception:
            PROGRESS_MIRROR_FAILURES.inc()
            logger.warning(
                "Progress mirror write failed for %s %s",
                record.content_type.value,
                record.content_id,
                exc_info=True,
                extra={
                    "student_id": str(record.student_id),
                    "course_id": str(record.course_id),
                },
            )


async def _invalidate_summary(enrollment_id: UUID) -> None:
    try:
        await cache_service.delete(summary_cache_key(enrollment_id))
    except Exception:
        logger.warning(
            "Could not invalidate progress summary for enrollment=%s",
            enrollment_id,
            exc_info=True,
        )


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


async def _load_course_for(uow: UnitOfWork, e: Enrollment) -> Course:
    if e.course_id is None:
        raise InvalidEnrollmentStructure(
            "memberships have no course progress", details={"enrollment_id": str(e.id)}
        )
    course = await uow.courses.get(e.course_id)
    if course is None:
        raise NotFound("course", e.course_id)
    return course


async def _finish(
    uow: UnitOfWork, before: Enrollment, after: Enrollment, records: list[ProgressRecord]
) -> None:
    await _mirror(uow, records)
    await uow.commit()
    await _invalidate_summary(after.id)
    if before.status != EnrollmentStatus.COMPLETED and after.status == EnrollmentStatus.COMPLETED:
        logger.info(
            "Enrollment=%s completed at %d%%",
            after.id,
            after.progress.overall_percentage,
            extra={"enrollment_id": str(after.id)},
        )
        await request_certificate(after)


async def update_lesson_progress(
    uow: UnitOfWork, enrollment_id: UUID, lesson_id: str, update: LessonUpdate
) -> Enrollment:
    course = await _load_course_for(uow, await load_enrollment(uow, enrollment_id))
    if lesson_id not in course.curriculum:
        raise NotFound("lesson", lesson_id)

    when = utcnow()
    before, after = await modify_enrollment(
        uow,
        enrollment_id,
        lambda e: apply_lesson_update(e, course, lesson_id, update, when),
    )
    logger.debug(
        "Lesson %s on enrollment=%s now %s",
        lesson_id,
        enrollment_id,
        after.progress.lesson(lesson_id).status.value,
        extra={"enrollment_id": str(enrollment_id)},
    )
    await _finish(
        uow,
        before,
        after,
        [
            course_record(after, course.id, "lesson_update"),
            lesson_record(after, course.id, after.progress.lesson(lesson_id), "lesson_update"),
        ],
    )
    return after


async def record_assessment(
    uow: UnitOfWork,
    enrollment_id: UUID,
    assessment_id: str,
    *,
    score: Decimal,
    max_score: Decimal,
    passed: bool,
) -> Enrollment:
    if max_score <= 0 or score < 0 or score > max_score:
        raise InvalidEnrollmentStructure(
            "score must be between 0 and max_score",
            details={"score": str(score), "max_score": str(max_score)},
        )
    course = await _load_course_for(uow, await load_enrollment(uow, enrollment_id))
    when = utcnow()

    def mutate(e: Enrollment) -> Enrollment:
        if e.status not in _TRACKABLE:
            raise EnrollmentInactive(
                f"cannot record assessments on a {e.status.value} enrollment",
                details={"status": e.status.value},
            )
        previous = next((a for a in e.assessments if a.assessment_id == assessment_id), None)
        entry = AssessmentScore(
            assessment_id=assessment_id,
            score=score,
            max_score=max_score,
            passed=passed,
            attempts=previous.attempts + 1 if previous else 1,
            last_attempt_date=when,
        )
        if previous is None:
            assessments = (*e.assessments, entry)
        else:
            assessments = tuple(
                entry if a.assessment_id == assessment_id else a for a in e.assessments
            )
        return _maybe_complete(replace(e, assessments=assessments), course, when)

    before, after = await modify_enrollment(uow, enrollment_id, mutate)
    assessment = next(a for a in after.assessments if a.assessment_id == assessment_id)
    logger.info(
        "Assessment %s on enrollment=%s scored %s/%s (attempt %d)",
        assessment_id,
        enrollment_id,
        score,
        max_score,
        assessment.attempts,
        extra={"enrollment_id": str(enrollment_id)},
    )
    await _finish(
        uow,
        before,
        after,
        [
            course_record(after, course.id, "assessment"),
            quiz_record(after, course.id, assessment, "assessment"),
        ],
    )
    return after


async def reset_lesson(uow: UnitOfWork, enrollment_id: UUID, lesson_id: str) -> Enrollment:
    """Reopen one lesson.  A completion already granted stays granted."""
    course = await _load_course_for(uow, await load_enrollment(uow, enrollment_id))
    if lesson_id not in course.curriculum:
        raise NotFound("lesson", lesson_id)
    when = utcnow()

    def mutate(e: Enrollment) -> Enrollment:
        if e.progress.lesson(lesson_id) is None:
            return e
        detailed = _replace_entry(
            e.progress.detailed_progress,
            LessonProgress(lesson_id=lesson_id, last_accessed=when),
        )
        return replace(e, progress=recompute_progress(detailed, course.curriculum, when))

    before, after = await modify_enrollment(uow, enrollment_id, mutate)
    if after is before:
        return after
    logger.info(
        "Reset lesson %s on enrollment=%s",
        lesson_id,
        enrollment_id,
        extra={"enrollment_id": str(enrollment_id)},
    )
    await _finish(
        uow,
        before,
        after,
        [
            course_record(after, course.id, "reset"),
            lesson_record(after, course.id, after.progress.lesson(lesson_id), "reset"),
        ],
    )
    return after


async def rebuild_progress_records(uow: UnitOfWork, enrollment_id: UUID) -> int:
    """Replay the embedded progress into the projection.  Returns rows written."""
    enrollment = await load_enrollment(uow, enrollment_id)
    course = await _load_course_for(uow, enrollment)
    records = [course_record(enrollment, course.id, "rebuild")]
    records += [
        lesson_record(enrollment, course.id, entry, "rebuild")
        for entry in enrollment.progress.detailed_progress
    ]
    records += [
        quiz_record(enrollment, course.id, a, "rebuild") for a in enrollment.assessments
    ]
    for record in records:
        await uow.progress_records.upsert(record)
    await uow.commit()
    logger.info(
        "Rebuilt %d progress records for enrollment=%s",
        len(records),
        enrollment_id,
        extra={"enrollment_id": str(enrollment_id)},
    )
    return len(records)


def _summary(e: Enrollment, course: Course) -> dict:
    done = e.progress.completed_lesson_ids()
    lessons = []
    for lesson_id in course.curriculum:
        entry = e.progress.lesson(lesson_id) or LessonProgress(lesson_id=lesson_id)
        lessons.append(
            {
                "lesson_id": lesson_id,
                "status": entry.status.value,
                "percentage": entry.percentage,
                "time_spent": entry.time_spent,
            }
        )
    return {
        "enrollment_id": str(e.id),
        "student_id": str(e.student_id),
        "course_id": str(course.id),
        "status": e.status.value,
        "learning_path": e.learning_path.value,
        "overall_percentage": e.progress.overall_percentage,
        "lessons_completed": e.progress.lessons_completed,
        "total_lessons": len(course.curriculum),
        "next_lesson": next((l for l in course.curriculum if l not in done), None),
        "last_activity_date": (
            e.progress.last_activity_date.isoformat() if e.progress.last_activity_date else None
        ),
        "lessons": lessons,
        "assessments": [
            {
                "assessment_id": a.assessment_id,
                "score": str(a.score),
                "max_score": str(a.max_score),
                "passed": a.passed,
                "attempts": a.attempts,
            }
            for a in e.assessments
        ],
        "certificate_issued": e.certificate_issued,
    }


async def progress_summary(uow: UnitOfWork, enrollment_id: UUID) -> dict:
    """Read-through cached summary; invalidated by every progress write."""
    key = summary_cache_key(enrollment_id)
    cached = await cache_service.get(key)
    if cached is not None:
        return json.loads(cached)

    enrollment = await load_enrollment(uow, enrollment_id)
    summary = _summary(enrollment, await _load_course_for(uow, enrollment))
    await cache_service.set(key, json.dumps(summary), PROGRESS_CACHE_TTL)
    return summary
