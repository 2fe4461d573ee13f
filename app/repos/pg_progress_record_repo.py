"""PostgreSQL implementation of ProgressRecordRepo.

Upserts run in a SAVEPOINT: a failed mirror write rolls back only itself,
never the enrollment update that triggered it.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import ProgressRecordRow
from app.models.progress import ContentType, ProgressRecord, RecordStatus

_records = ProgressRecordRow.__table__
_KEY = ("student_id", "course_id", "content_type", "content_id")


class PgProgressRecordRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def upsert(self, record: ProgressRecord) -> None:
        values = {
            "student_id": record.student_id,
            "course_id": record.course_id,
            "content_type": record.content_type.value,
            "content_id": record.content_id,
            "progress_percentage": record.progress_percentage,
            "status": record.status.value,
            "time_spent": record.time_spent,
            "score": record.score,
            "attempts": record.attempts,
            "last_accessed": record.last_accessed,
            "metadata": record.metadata,
        }
        stmt = insert(_records).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(_KEY),
            set_={k: stmt.excluded[k] for k in values if k not in _KEY},
        )
        async with self._session.begin_nested():
            await self._session.execute(stmt)

    async def get(
        self,
        student_id: UUID,
        course_id: UUID,
        content_type: ContentType,
        content_id: str,
    ) -> ProgressRecord | None:
        stmt = select(_records).where(
            _records.c.student_id == student_id,
            _records.c.course_id == course_id,
            _records.c.content_type == content_type.value,
            _records.c.content_id == content_id,
        )
        row = (await self._session.execute(stmt)).one_or_none()
        return _row_to_record(row) if row is not None else None

    async def list_for(self, student_id: UUID, course_id: UUID) -> list[ProgressRecord]:
        stmt = select(_records).where(
            _records.c.student_id == student_id,
            _records.c.course_id == course_id,
        )
        return [_row_to_record(r) for r in (await self._session.execute(stmt)).all()]


def _row_to_record(row) -> ProgressRecord:
    return ProgressRecord(
        student_id=row.student_id,
        course_id=row.course_id,
        content_type=ContentType(row.content_type),
        content_id=row.content_id,
        progress_percentage=row.progress_percentage,
        status=RecordStatus(row.status),
        time_spent=row.time_spent,
        score=row.score,
        attempts=row.attempts,
        last_accessed=row.last_accessed,
        metadata=dict(row._mapping["metadata"] or {}),
    )
