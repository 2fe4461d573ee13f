from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import UUID

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.models.course import (
    Batch,
    BatchStatus,
    BatchType,
    Course,
    CoursePrice,
    LearningPath,
)
from app.models.student import Student
from app.repos.unit_of_work import InMemoryUnitOfWork, memory_store
from app.services import token_service
from app.services.cache import cache_service
from app.services.notifications import reminder_ledger
from app.services.storage import storage_provisioner
from app.services.task_queue import task_queue


@pytest.fixture(autouse=True)
def reset_store() -> None:
    """Empty every in-memory repository between tests."""
    memory_store.clear()


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    if hasattr(cache_service, "_store"):
        cache_service._store.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    if hasattr(task_queue, "_queues"):
        task_queue._queues.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_reminders() -> None:
    if hasattr(reminder_ledger, "_sent"):
        reminder_ledger._sent.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_storage() -> None:
    if hasattr(storage_provisioner, "_areas"):
        storage_provisioner._areas.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture
def uow() -> InMemoryUnitOfWork:
    return InMemoryUnitOfWork(memory_store)


def mint_token(
    username: str = "test-user",
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=username, roles=roles)


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def token() -> str:
    """Token with the default role (student) and a non-student subject."""
    return mint_token()


@pytest.fixture
def admin_token() -> str:
    return mint_token(username="test-admin", roles=["admin"])


@pytest.fixture
def instructor_token() -> str:
    return mint_token(username="test-instructor", roles=["instructor"])


# ---------------------------------------------------------------------------
# Catalogue helpers (write straight into the in-memory store)
# ---------------------------------------------------------------------------


def _uow() -> InMemoryUnitOfWork:
    return InMemoryUnitOfWork(memory_store)


def make_student(email: str = "learner@example.com", *, active: bool = True) -> Student:
    student = Student.new(email=email, full_name=email.split("@")[0])
    if not active:
        student = Student(id=student.id, email=student.email, is_active=False)
    asyncio.run(_uow().students.add(student))
    return student


def make_course(
    slug: str = "data-101",
    *,
    curriculum: tuple[str, ...] = ("l1", "l2", "l3"),
    learning_path: LearningPath = LearningPath.FLEXIBLE,
    prices: tuple[CoursePrice, ...] | None = None,
    completion_threshold: int = 100,
    required_assessment_ids: tuple[str, ...] = (),
) -> Course:
    course = Course.new(
        slug=slug,
        title=slug.replace("-", " ").title(),
        prices=prices
        or (
            CoursePrice(
                currency="INR",
                individual=Decimal("1000.00"),
                batch=Decimal("800.00"),
                min_batch_size=2,
                max_batch_size=5,
            ),
        ),
        curriculum=curriculum,
        learning_path=learning_path,
        completion_threshold=completion_threshold,
        required_assessment_ids=required_assessment_ids,
    )
    asyncio.run(_uow().courses.add(course))
    return course


def make_batch(
    course: Course,
    *,
    capacity: int = 10,
    code: str = "B-01",
    batch_type: BatchType = BatchType.GROUP,
    status: BatchStatus = BatchStatus.UPCOMING,
) -> Batch:
    start = datetime.now(UTC) + timedelta(days=3)
    batch = Batch.new(
        course_id=course.id,
        batch_name=f"Batch {code}",
        batch_code=code,
        start_date=start,
        end_date=start + timedelta(days=30),
        capacity=capacity,
        batch_type=batch_type,
        status=status,
    )
    asyncio.run(_uow().batches.add(batch))
    return batch


def student_token(student_id: UUID) -> str:
    return mint_token(username=str(student_id), roles=["student"])
