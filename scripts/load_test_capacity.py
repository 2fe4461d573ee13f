#!/usr/bin/env python3
"""Load test script: many students race for the seats of one batch.

RUN:  python scripts/load_test_capacity.py

Runs the app in-process (httpx ASGI transport, in-memory stores), seeds
the dev catalogue plus STUDENTS students, then fires every batch enrollment
request at once.  The summary should show exactly ``capacity`` admissions
(201) and the rest rejected with capacity_exceeded (409).

This script is educational, not a production load testing tool.
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter

import httpx

from app.api.courses import seed_sample_catalogue
from app.main import app
from app.models.student import Student
from app.repos.unit_of_work import InMemoryUnitOfWork, memory_store
from app.services import token_service

STUDENTS = 50


async def _seed() -> tuple[str, str, int, list[Student]]:
    uow = InMemoryUnitOfWork(memory_store)
    course = await seed_sample_catalogue(uow)
    batch = (await uow.batches.list_for_course(course.id))[0]
    students = [Student.new(email=f"load-{i}@example.com") for i in range(STUDENTS)]
    for s in students:
        await uow.students.add(s)
    return str(course.id), str(batch.id), batch.capacity, students


async def _enroll(
    client: httpx.AsyncClient, course_id: str, batch_id: str, student: Student
) -> int:
    token = token_service.create_access_token(sub=str(student.id), roles=["student"])
    resp = await client.post(
        "/v1/enrollments",
        json={
            "course_id": course_id,
            "enrollment_type": "batch",
            "batch_id": batch_id,
            "batch_size": 2,
        },
        headers={"Authorization": f"Bearer {token}"},
    )
    return resp.status_code


async def main() -> None:
    course_id, batch_id, capacity, students = await _seed()

    print("Batch Capacity Load Test")
    print("=" * 50)
    print(f"Batch capacity:   {capacity}")
    print(f"Concurrent requests: {len(students)}")
    print()

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        start = time.monotonic()
        codes = await asyncio.gather(
            *(_enroll(client, course_id, batch_id, s) for s in students)
        )
        elapsed = time.monotonic() - start

        results = Counter(codes)
        print(f"Results after {len(codes)} requests ({elapsed:.2f}s):")
        print("-" * 40)
        print(f"  Admitted (201): {results.get(201, 0):>4}")
        print(f"  Full     (409): {results.get(409, 0):>4}")
        other = sum(v for k, v in results.items() if k not in (201, 409))
        if other:
            print(f"  Other:          {other:>4}")

        roster = await client.get(
            f"/v1/courses/{course_id}/batches",
            headers={
                "Authorization": "Bearer "
                + token_service.create_access_token(sub="load-test", roles=["admin"])
            },
        )
        seats = roster.json()[0]
        print()
        print(f"Batch reports {seats['enrolled_students']}/{seats['capacity']} seats taken.")

    if results.get(201, 0) == capacity:
        print("Capacity gate held: no overbooking.")
    else:
        print("WARNING: admissions do not match capacity.")


if __name__ == "__main__":
    asyncio.run(main())
