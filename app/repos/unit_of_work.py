"""Unit of work: one set of repositories sharing one transaction scope.

Two implementations, picked the same way engine.py picks a database:

  PgUnitOfWork      DATABASE_URL set.  All repos share one AsyncSession;
                    leaving the context commits, an exception rolls back.
                    ``transactional`` is True, so batch admission and the
                    enrollment insert commit or vanish together.

  InMemoryUnitOfWork  no database.  Repos are process-wide singletons with
                    lock-guarded writes; there is nothing to roll back, so
                    ``transactional`` is False and multi-step operations
                    run their own compensating actions on failure.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.engine import async_session_factory
from app.repos.course_repo import (
    BatchRepo,
    CourseRepo,
    InMemoryBatchRepo,
    InMemoryCourseRepo,
)
from app.repos.enrollment_repo import EnrollmentRepo, InMemoryEnrollmentRepo
from app.repos.pg_course_repo import PgBatchRepo, PgCourseRepo
from app.repos.pg_enrollment_repo import PgEnrollmentRepo
from app.repos.pg_progress_record_repo import PgProgressRecordRepo
from app.repos.pg_student_repo import PgStudentRepo
from app.repos.progress_record_repo import (
    InMemoryProgressRecordRepo,
    ProgressRecordRepo,
)
from app.repos.student_repo import InMemoryStudentRepo, StudentRepo


class UnitOfWork(Protocol):
    students: StudentRepo
    courses: CourseRepo
    batches: BatchRepo
    enrollments: EnrollmentRepo
    progress_records: ProgressRecordRepo
    transactional: bool

    async def commit(self) -> None: ...
    async def rollback(self) -> None: ...


class InMemoryStore:
    def __init__(self) -> None:
        self.students = InMemoryStudentRepo()
        self.courses = InMemoryCourseRepo()
        self.batches = InMemoryBatchRepo()
        self.enrollments = InMemoryEnrollmentRepo()
        self.progress_records = InMemoryProgressRecordRepo()

    def clear(self) -> None:
        self.students.clear()
        self.courses.clear()
        self.batches.clear()
        self.enrollments.clear()
        self.progress_records.clear()


class InMemoryUnitOfWork:
    transactional = False

    def __init__(self, store: InMemoryStore) -> None:
        self.students = store.students
        self.courses = store.courses
        self.batches = store.batches
        self.enrollments = store.enrollments
        self.progress_records = store.progress_records

    async def commit(self) -> None:
        return None

    async def rollback(self) -> None:
        return None


class PgUnitOfWork:
    transactional = True

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self.students = PgStudentRepo(session)
        self.courses = PgCourseRepo(session)
        self.batches = PgBatchRepo(session)
        self.enrollments = PgEnrollmentRepo(session)
        self.progress_records = PgProgressRecordRepo(session)

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()


memory_store = InMemoryStore()


@asynccontextmanager
async def unit_of_work() -> AsyncIterator[UnitOfWork]:
    if async_session_factory is None:
        yield InMemoryUnitOfWork(memory_store)
        return

    async with async_session_factory() as session:
        uow = PgUnitOfWork(session)
        try:
            yield uow
            await uow.commit()
        except Exception:
            await uow.rollback()
            raise
