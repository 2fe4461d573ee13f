"""PostgreSQL implementation of StudentRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import StudentRow
from app.models.student import Student


class PgStudentRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, student_id: UUID) -> Student | None:
        stmt = select(StudentRow).where(StudentRow.id == student_id)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_student(row)

    async def add(self, student: Student) -> None:
        row = StudentRow(
            id=student.id,
            email=student.email,
            full_name=student.full_name,
            is_active=student.is_active,
            membership_type=student.membership_type,
        )
        self._session.add(row)
        await self._session.flush()

    async def set_membership_type(self, student_id: UUID, tier: str) -> None:
        stmt = (
            update(StudentRow)
            .where(StudentRow.id == student_id)
            .values(membership_type=tier)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise KeyError("student not found")


def _row_to_student(row: StudentRow) -> Student:
    return Student(
        id=row.id,
        email=row.email,
        full_name=row.full_name or "",
        is_active=row.is_active,
        membership_type=row.membership_type,
    )
