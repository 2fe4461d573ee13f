"""Background task queue tests.

Verifies:
1. Creating an enrollment enqueues a confirmation notification
2. Completing an enrollment through the API enqueues certificate issuance
3. Failed requests enqueue nothing
"""

from __future__ import annotations

import asyncio

from fastapi.testclient import TestClient

from app.services import task_queue as tq
from tests.conftest import auth, make_course, make_student, student_token


def _length(queue: str) -> int:
    return asyncio.run(tq.task_queue.queue_length(queue))


def test_enrollment_enqueues_confirmation(client: TestClient) -> None:
    student = make_student()
    course = make_course()
    resp = client.post(
        "/v1/enrollments",
        json={"course_id": str(course.id)},
        headers=auth(student_token(student.id)),
    )
    assert resp.status_code == 201

    task = asyncio.run(tq.task_queue.dequeue(tq.NOTIFICATIONS_QUEUE))
    assert task is not None
    assert task.payload["template"] == "enrollment_confirmation"
    assert task.payload["recipient_id"] == str(student.id)
    assert task.payload["context"]["enrollment_id"] == resp.json()["id"]


def test_completion_enqueues_certificate(client: TestClient, admin_token: str) -> None:
    student = make_student()
    course = make_course()
    created = client.post(
        "/v1/enrollments",
        json={"course_id": str(course.id)},
        headers=auth(student_token(student.id)),
    ).json()

    resp = client.post(
        f"/v1/enrollments/{created['id']}/status",
        json={"status": "completed"},
        headers=auth(admin_token),
    )
    assert resp.status_code == 200
    assert _length(tq.CERTIFICATE_QUEUE) == 1
    task = asyncio.run(tq.task_queue.dequeue(tq.CERTIFICATE_QUEUE))
    assert task.payload["enrollment_id"] == created["id"]
    assert task.payload["student_id"] == str(student.id)


def test_rejected_enrollment_enqueues_nothing(client: TestClient) -> None:
    student = make_student()
    course = make_course()
    headers = auth(student_token(student.id))
    client.post("/v1/enrollments", json={"course_id": str(course.id)}, headers=headers)
    assert _length(tq.NOTIFICATIONS_QUEUE) == 1

    dup = client.post("/v1/enrollments", json={"course_id": str(course.id)}, headers=headers)
    assert dup.status_code == 409
    assert _length(tq.NOTIFICATIONS_QUEUE) == 1
