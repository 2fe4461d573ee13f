from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.core.config import SETTINGS
from app.main import app
from tests.conftest import auth, mint_token

pytestmark = pytest.mark.skipif(not SETTINGS.is_dev, reason="dev-only catalogue and docs")


def test_lifespan_seeds_dev_catalogue() -> None:
    # Entering the client as a context manager runs the lifespan.
    with TestClient(app) as client:
        resp = client.get("/v1/courses/intro-to-python", headers=auth(mint_token()))
        assert resp.status_code == 200
        course = resp.json()
        assert course["learning_path"] == "sequential"
        assert {p["currency"] for p in course["prices"]} == {"INR", "USD"}

        batches = client.get(
            "/v1/courses/intro-to-python/batches", headers=auth(mint_token())
        )
        assert [b["batch_code"] for b in batches.json()] == ["PY-EVE-01"]


def test_seeding_is_idempotent() -> None:
    with TestClient(app):
        pass
    with TestClient(app) as client:
        resp = client.get("/v1/courses", headers=auth(mint_token()))
        assert [c["slug"] for c in resp.json()] == ["intro-to-python"]


def test_docs_enabled_in_dev(client: TestClient) -> None:
    assert client.get("/docs").status_code == 200
