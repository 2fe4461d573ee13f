"""Tests for the request context middleware.

Every response, error responses included, carries an X-Request-ID header
that is either generated or echoed from the request.
"""

from __future__ import annotations

import uuid

from fastapi.testclient import TestClient


def test_request_id_generated_when_not_provided(client: TestClient) -> None:
    """When no X-Request-ID header is sent, one is generated."""
    resp = client.get("/health")
    req_id = resp.headers.get("x-request-id")
    assert req_id is not None
    # Should be a valid UUID
    uuid.UUID(req_id)  # raises ValueError if invalid


def test_request_id_echoed_when_provided(client: TestClient) -> None:
    """When the client sends X-Request-ID, the same value is echoed back."""
    custom_id = "my-custom-request-id-123"
    resp = client.get("/health", headers={"X-Request-ID": custom_id})
    assert resp.headers.get("x-request-id") == custom_id


def test_request_id_present_on_error_responses(client: TestClient) -> None:
    """Even error responses (401, 404) get an X-Request-ID header."""
    resp = client.get("/v1/courses")  # No auth token -> 401
    assert resp.status_code == 401
    assert resp.headers.get("x-request-id") is not None


def test_request_id_present_on_domain_errors(client: TestClient, admin_token: str) -> None:
    resp = client.get(
        "/v1/enrollments/00000000-0000-0000-0000-000000000000",
        headers={"Authorization": f"Bearer {admin_token}", "X-Request-ID": "trace-404"},
    )
    assert resp.status_code == 404
    assert resp.headers.get("x-request-id") == "trace-404"
