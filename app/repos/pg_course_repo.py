"""PostgreSQL implementations of CourseRepo and BatchRepo.

Batch admission is one ``UPDATE ... WHERE ... RETURNING`` statement.  The
row lock taken by the UPDATE serializes concurrent admissions to the same
batch; the second writer re-evaluates the WHERE clause against the
committed count and matches nothing once the batch is full.
"""

from __future__ import annotations

from uuid import UUID

from pydantic import TypeAdapter
from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import BatchRow, CourseRow
from app.models.course import (
    ADMITTING_BATCH_STATUSES,
    Batch,
    BatchStatus,
    BatchType,
    Course,
    CoursePrice,
    LearningPath,
)

_PRICES = TypeAdapter(tuple[CoursePrice, ...])

_batches = BatchRow.__table__


class PgCourseRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, course_id: UUID) -> Course | None:
        stmt = select(CourseRow).where(CourseRow.id == course_id)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _row_to_course(row) if row is not None else None

    async def get_by_slug(self, slug: str) -> Course | None:
        stmt = select(CourseRow).where(CourseRow.slug == slug)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _row_to_course(row) if row is not None else None

    async def list_all(self) -> list[Course]:
        stmt = select(CourseRow).order_by(CourseRow.slug)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_course(r) for r in rows]

    async def add(self, course: Course) -> None:
        self._session.add(CourseRow(id=course.id, **_course_values(course)))
        await self._session.flush()

    async def save(self, course: Course) -> None:
        stmt = (
            update(CourseRow)
            .where(CourseRow.id == course.id)
            .values(**_course_values(course))
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise KeyError("course not found")


class PgBatchRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, batch_id: UUID) -> Batch | None:
        stmt = select(_batches).where(_batches.c.id == batch_id)
        row = (await self._session.execute(stmt)).one_or_none()
        return _row_to_batch(row) if row is not None else None

    async def add(self, batch: Batch) -> None:
        stmt = insert(_batches).values(
            id=batch.id,
            course_id=batch.course_id,
            batch_name=batch.batch_name,
            batch_code=batch.batch_code,
            batch_type=batch.batch_type.value,
            status=batch.status.value,
            start_date=batch.start_date,
            end_date=batch.end_date,
            capacity=batch.capacity,
            enrolled_students=batch.enrolled_students,
            enrolled_student_ids=list(batch.enrolled_student_ids),
        )
        await self._session.execute(stmt)

    async def list_for_course(self, course_id: UUID) -> list[Batch]:
        stmt = (
            select(_batches)
            .where(_batches.c.course_id == course_id)
            .order_by(_batches.c.start_date)
        )
        rows = (await self._session.execute(stmt)).all()
        return [_row_to_batch(r) for r in rows]

    async def try_admit(self, batch_id: UUID, student_id: UUID) -> Batch | None:
        ids = _batches.c.enrolled_student_ids
        stmt = (
            update(_batches)
            .where(
                _batches.c.id == batch_id,
                _batches.c.status.in_([s.value for s in ADMITTING_BATCH_STATUSES]),
                _batches.c.enrolled_students < _batches.c.capacity,
                ~ids.contains([student_id]),
            )
            .values(
                enrolled_students=_batches.c.enrolled_students + 1,
                enrolled_student_ids=func.array_append(ids, student_id, type_=ids.type),
            )
            .returning(*_batches.c)
        )
        row = (await self._session.execute(stmt)).one_or_none()
        return _row_to_batch(row) if row is not None else None

    async def try_release(self, batch_id: UUID, student_id: UUID) -> Batch | None:
        ids = _batches.c.enrolled_student_ids
        stmt = (
            update(_batches)
            .where(_batches.c.id == batch_id, ids.contains([student_id]))
            .values(
                enrolled_students=_batches.c.enrolled_students - 1,
                enrolled_student_ids=func.array_remove(ids, student_id, type_=ids.type),
            )
            .returning(*_batches.c)
        )
        row = (await self._session.execute(stmt)).one_or_none()
        return _row_to_batch(row) if row is not None else None


def _course_values(course: Course) -> dict:
    return {
        "slug": course.slug,
        "title": course.title,
        "status": course.status,
        "prices": _PRICES.dump_python(course.prices, mode="json"),
        "curriculum": list(course.curriculum),
        "learning_path": course.learning_path.value,
        "access_duration_days": course.access_duration_days,
        "completion_threshold": course.completion_threshold,
        "required_assessment_ids": list(course.required_assessment_ids),
        "version": course.version,
    }


def _row_to_course(row: CourseRow) -> Course:
    return Course(
        id=row.id,
        slug=row.slug,
        title=row.title,
        status=row.status,
        prices=_PRICES.validate_python(row.prices or []),
        curriculum=tuple(row.curriculum or ()),
        learning_path=LearningPath(row.learning_path),
        access_duration_days=row.access_duration_days,
        completion_threshold=row.completion_threshold,
        required_assessment_ids=tuple(row.required_assessment_ids or ()),
        version=row.version,
    )


def _row_to_batch(row) -> Batch:
    return Batch(
        id=row.id,
        course_id=row.course_id,
        batch_name=row.batch_name,
        batch_code=row.batch_code,
        start_date=row.start_date,
        end_date=row.end_date,
        capacity=row.capacity,
        batch_type=BatchType(row.batch_type),
        status=BatchStatus(row.status),
        enrolled_students=row.enrolled_students,
        enrolled_student_ids=tuple(row.enrolled_student_ids or ()),
    )
