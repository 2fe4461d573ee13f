"""Cache hit/miss/invalidation tests for the progress summary.

Verifies the read-through cache pattern:
1. First GET is a cache miss (populates cache from the enrollment)
2. Second GET is a cache hit (same body, counted as a hit)
3. A lesson update invalidates the cache so the next GET sees fresh data
4. Cached summaries are still ownership-checked
"""

from __future__ import annotations

import asyncio

from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from app.repos.unit_of_work import InMemoryUnitOfWork, memory_store
from app.services.cache import cache_service
from app.services.enrollment_service import EnrollmentRequest, create_enrollment
from app.services.progress_tracker import summary_cache_key
from tests.conftest import auth, make_course, make_student, student_token


def _cache_ops(operation: str) -> float:
    return REGISTRY.get_sample_value("cache_operations_total", {"operation": operation}) or 0.0


def _enrolled(email: str = "cache@example.com", slug: str = "data-101"):
    student = make_student(email)
    course = make_course(slug)
    e = asyncio.run(
        create_enrollment(
            InMemoryUnitOfWork(memory_store),
            EnrollmentRequest(student_id=student.id, course_id=course.id),
        )
    )
    return e, student_token(student.id)


def test_cache_miss_then_hit(client: TestClient) -> None:
    e, token = _enrolled()
    misses, hits = _cache_ops("miss"), _cache_ops("hit")

    resp1 = client.get(f"/v1/progress/{e.id}/summary", headers=auth(token))
    assert resp1.status_code == 200
    assert _cache_ops("miss") - misses == 1

    resp2 = client.get(f"/v1/progress/{e.id}/summary", headers=auth(token))
    assert resp2.json() == resp1.json()
    assert _cache_ops("hit") - hits == 1


def test_cache_invalidated_on_lesson_update(client: TestClient) -> None:
    e, token = _enrolled()
    resp1 = client.get(f"/v1/progress/{e.id}/summary", headers=auth(token))
    assert resp1.json()["lessons_completed"] == 0

    client.put(
        f"/v1/progress/{e.id}/lessons/l1", json={"status": "completed"}, headers=auth(token)
    )
    assert asyncio.run(cache_service.get(summary_cache_key(e.id))) is None

    resp2 = client.get(f"/v1/progress/{e.id}/summary", headers=auth(token))
    assert resp2.json()["lessons_completed"] == 1
    assert resp2.json()["next_lesson"] == "l2"


def test_cached_summary_still_checks_ownership(client: TestClient) -> None:
    e, owner = _enrolled()
    _, stranger = _enrolled("other@example.com", "data-201")

    assert client.get(f"/v1/progress/{e.id}/summary", headers=auth(owner)).status_code == 200
    resp = client.get(f"/v1/progress/{e.id}/summary", headers=auth(stranger))
    assert resp.status_code == 403
    assert resp.json()["error"] == "forbidden"
