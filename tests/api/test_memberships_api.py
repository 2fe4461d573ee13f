from __future__ import annotations

from fastapi.testclient import TestClient

from tests.conftest import auth, make_student, student_token


def _subscribe(client: TestClient, student, tier: str = "silver", months: int = 3, **body):
    return client.post(
        "/v1/memberships",
        json={"membership_type": tier, "duration_months": months, **body},
        headers=auth(student_token(student.id)),
    )


def test_subscribe_requires_token(client: TestClient) -> None:
    resp = client.post("/v1/memberships", json={"membership_type": "gold", "duration_months": 1})
    assert resp.status_code == 401


def test_subscribe_and_read_status(client: TestClient) -> None:
    student = make_student()
    created = _subscribe(
        client, student, payment={"transaction_id": "m-1", "method": "upi"}
    )
    assert created.status_code == 201
    body = created.json()
    assert body["enrollment_type"] == "membership"
    assert body["course_id"] is None
    assert body["membership_info"]["membership_type"] == "silver"
    assert body["total_amount_paid"] == "2499.00"

    resp = client.get("/v1/memberships/status", headers=auth(student_token(student.id)))
    assert resp.status_code == 200
    overview = resp.json()
    assert overview["has_membership"] is True
    assert overview["membership_status"]["status"] == "active"
    assert overview["membership_status"]["membership_type"] == "silver"
    assert [p["transaction_id"] for p in overview["payment_history"]] == ["m-1"]
    assert len(overview["benefits"]) > 0


def test_status_without_membership(client: TestClient) -> None:
    student = make_student()
    resp = client.get("/v1/memberships/status", headers=auth(student_token(student.id)))
    assert resp.status_code == 200
    assert resp.json() == {
        "has_membership": False,
        "enrollment": None,
        "membership_status": None,
        "benefits": [],
        "payment_history": [],
    }


def test_second_membership_is_409(client: TestClient) -> None:
    student = make_student()
    _subscribe(client, student)
    resp = _subscribe(client, student, "gold", 1)
    assert resp.status_code == 409
    assert resp.json()["error"] == "membership_already_active"


def test_unsupported_duration_is_422(client: TestClient) -> None:
    resp = _subscribe(client, make_student(), months=2)
    assert resp.status_code == 422
    assert resp.json()["error"] == "invalid_enrollment_structure"


def test_upgrade_and_downgrade(client: TestClient) -> None:
    student = make_student()
    headers = auth(student_token(student.id))
    membership = _subscribe(client, student).json()
    path = f"/v1/memberships/{membership['id']}/upgrade"

    up = client.post(path, json={"new_membership_type": "gold"}, headers=headers)
    assert up.status_code == 200
    assert up.json()["membership_info"]["previous_type"] == "silver"

    down = client.post(path, json={"new_membership_type": "silver"}, headers=headers)
    assert down.status_code == 409
    assert down.json()["error"] == "invalid_tier_transition"


def test_renew_and_cancel(client: TestClient) -> None:
    student = make_student()
    headers = auth(student_token(student.id))
    membership = _subscribe(client, student, months=1).json()
    base = f"/v1/memberships/{membership['id']}"

    renewed = client.post(f"{base}/renew", json={"duration_months": 3}, headers=headers)
    assert renewed.status_code == 200
    assert renewed.json()["membership_info"]["duration_months"] == 4

    cancelled = client.post(f"{base}/cancel", json={"reason": "moving"}, headers=headers)
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"

    again = client.post(f"{base}/renew", json={"duration_months": 1}, headers=headers)
    assert again.status_code == 409
    assert again.json()["error"] == "enrollment_inactive"


def test_upgrade_after_renewal(client: TestClient) -> None:
    student = make_student()
    headers = auth(student_token(student.id))
    membership = _subscribe(client, student, months=3).json()
    base = f"/v1/memberships/{membership['id']}"

    client.post(f"{base}/renew", json={"duration_months": 1}, headers=headers)
    up = client.post(
        f"{base}/upgrade",
        json={
            "new_membership_type": "gold",
            "payment": {"transaction_id": "up-1", "method": "upi"},
        },
        headers=headers,
    )
    assert up.status_code == 200
    assert up.json()["membership_info"]["membership_type"] == "gold"
    assert up.json()["membership_info"]["duration_months"] == 4

def test_other_student_cannot_touch_membership(client: TestClient) -> None:
    owner, stranger = make_student("o@example.com"), make_student("s@example.com")
    membership = _subscribe(client, owner).json()
    resp = client.post(
        f"/v1/memberships/{membership['id']}/cancel",
        json={},
        headers=auth(student_token(stranger.id)),
    )
    assert resp.status_code == 403

    status = client.get(
        "/v1/memberships/status",
        params={"student_id": str(owner.id)},
        headers=auth(student_token(stranger.id)),
    )
    assert status.status_code == 403


def test_instructor_reads_any_status(client: TestClient, instructor_token: str) -> None:
    owner = make_student()
    _subscribe(client, owner)
    resp = client.get(
        "/v1/memberships/status",
        params={"student_id": str(owner.id)},
        headers=auth(instructor_token),
    )
    assert resp.status_code == 200
    assert resp.json()["has_membership"] is True


def test_benefits_and_pricing(client: TestClient, token: str) -> None:
    gold = client.get("/v1/memberships/benefits/gold", headers=auth(token))
    assert gold.status_code == 200
    assert gold.json()["category_limit"] == 3

    assert client.get("/v1/memberships/benefits/platinum", headers=auth(token)).status_code == 422

    pricing = client.get("/v1/memberships/pricing", headers=auth(token))
    tiers = {p["membership_type"]: p for p in pricing.json()}
    assert set(tiers) == {"silver", "gold"}
    assert tiers["silver"]["prices"]["3"] == "2499.00"
    assert tiers["gold"]["currency"] == "INR"
