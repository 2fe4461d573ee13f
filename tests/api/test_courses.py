"""Tests for the course catalogue and pricing quote endpoints."""

from __future__ import annotations

import asyncio
from decimal import Decimal

from fastapi.testclient import TestClient

from app.models.course import CoursePrice
from app.repos.unit_of_work import InMemoryUnitOfWork, memory_store
from app.services import capacity_gate
from tests.conftest import auth, make_batch, make_course, make_student

# ---- 401: unauthenticated ----


def test_list_courses_rejects_missing_token(client: TestClient) -> None:
    resp = client.get("/v1/courses")
    assert resp.status_code == 401


def test_list_courses_rejects_garbage_token(client: TestClient) -> None:
    resp = client.get("/v1/courses", headers=auth("not-a-jwt"))
    assert resp.status_code == 401


# ---- 200: catalogue ----


def test_list_courses(client: TestClient, token: str) -> None:
    make_course()
    resp = client.get("/v1/courses", headers=auth(token))
    assert resp.status_code == 200
    assert [c["slug"] for c in resp.json()] == ["data-101"]


def test_get_course_by_slug_or_id(client: TestClient, token: str) -> None:
    course = make_course()
    by_slug = client.get("/v1/courses/data-101", headers=auth(token))
    by_id = client.get(f"/v1/courses/{course.id}", headers=auth(token))
    assert by_slug.status_code == 200
    assert by_slug.json() == by_id.json()
    assert by_slug.json()["curriculum"] == ["l1", "l2", "l3"]


def test_unknown_course_is_404(client: TestClient, token: str) -> None:
    resp = client.get("/v1/courses/no-such-course", headers=auth(token))
    assert resp.status_code == 404
    body = resp.json()
    assert body["error"] == "not_found"
    assert body["details"]["entity"] == "course"


# ---- pricing quote ----


def test_pricing_quote_individual(client: TestClient, token: str) -> None:
    make_course()
    resp = client.get("/v1/courses/data-101/pricing", headers=auth(token))
    assert resp.status_code == 200
    quote = resp.json()
    assert Decimal(quote["final_price"]) == Decimal("1000.00")
    assert quote["pricing_type"] == "individual"
    assert quote["currency"] == "INR"


def test_pricing_quote_group_discount(client: TestClient, token: str) -> None:
    make_course(
        prices=(
            CoursePrice(
                currency="INR",
                individual=Decimal("1000"),
                batch=Decimal("800"),
                min_batch_size=2,
                group_discount=Decimal("50"),
            ),
        )
    )
    resp = client.get(
        "/v1/courses/data-101/pricing",
        params={"enrollment_type": "group", "batch_size": 3},
        headers=auth(token),
    )
    assert resp.status_code == 200
    assert Decimal(resp.json()["final_price"]) == Decimal("400.00")
    assert resp.json()["pricing_type"] == "group_discount"


def test_pricing_quote_missing_currency_is_500(client: TestClient, token: str) -> None:
    make_course()
    resp = client.get(
        "/v1/courses/data-101/pricing", params={"currency": "usd"}, headers=auth(token)
    )
    assert resp.status_code == 500
    assert resp.json()["error"] == "configuration_error"


# ---- batches ----


def test_batches_available_only(client: TestClient, token: str) -> None:
    course = make_course()
    make_batch(course, code="OPEN")
    full = make_batch(course, code="FULL", capacity=1)
    uow = InMemoryUnitOfWork(memory_store)
    asyncio.run(capacity_gate.admit(uow.batches, full.id, make_student().id))

    resp = client.get("/v1/courses/data-101/batches", headers=auth(token))
    assert resp.status_code == 200
    seats = {b["batch_code"]: b["available_seats"] for b in resp.json()}
    assert seats == {"OPEN": 10, "FULL": 0}

    available = client.get(
        "/v1/courses/data-101/batches",
        params={"available_only": True},
        headers=auth(token),
    )
    assert [b["batch_code"] for b in available.json()] == ["OPEN"]
