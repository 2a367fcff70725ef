"""API tests for organization applications and admin review."""

import pytest


def _apply(client, email="bank@example.org", role="blood_bank", password="s3cret-pass"):
    return client.post("/applications", json={
        "email": email,
        "password": password,
        "role": role,
        "profileData": {"name": "Central Blood Bank", "licenseNumber": "LIC-42"},
    })


@pytest.fixture
def application(client):
    response = _apply(client)
    assert response.status_code == 201, response.text
    return response.json()["application"]


# ============================================================================
# Submission
# ============================================================================


def test_submit_creates_pending_user(client, db, run, application) -> None:
    assert application["approvalStatus"] == "pending"
    assert application["profileData"]["licenseNumber"] == "LIC-42"

    user = run(db.users.find_one({"id": application["userId"]}, {"_id": 0}))
    assert user["approval_status"] == "pending"
    assert user["is_active"] is False
    assert user["password_hash"] != "s3cret-pass"

    audit = run(db.audit_logs.find_one({"record_id": application["id"]}, {"_id": 0}))
    assert audit["action"] == "submit"


def test_duplicate_submission_conflicts(client, application) -> None:
    response = _apply(client, email="BANK@example.org")

    assert response.status_code == 409
    assert response.json()["category"] == "CONFLICT_ERROR"


@pytest.mark.parametrize("overrides", [
    {"password": "short"},
    {"role": "admin"},
    {"email": "not-an-email"},
])
def test_submission_validation(client, overrides) -> None:
    response = _apply(client, **overrides)

    assert response.status_code == 422


# ============================================================================
# Review
# ============================================================================


def test_listing_requires_admin(client, bank, admin, application) -> None:
    assert client.get("/applications", headers=bank).status_code == 403

    listed = client.get("/applications", headers=admin, params={"status": "pending"}).json()
    assert [a["id"] for a in listed] == [application["id"]]
    assert client.get("/applications", headers=admin, params={"status": "approved"}).json() == []


def test_admin_listing_matches_applications_listing(client, bank, admin, application) -> None:
    assert client.get("/admin/applications", headers=bank).status_code == 403

    pending = client.get("/admin/applications", headers=admin, params={"status": "pending"}).json()
    assert [a["id"] for a in pending] == [application["id"]]
    assert client.get("/admin/applications", headers=admin).json() == client.get("/applications", headers=admin).json()


def test_approve_activates_account(client, db, run, admin, application) -> None:
    response = client.patch(f"/applications/{application['id']}/review", headers=admin,
                            json={"status": "approved"})

    assert response.status_code == 200
    body = response.json()
    assert body["approvalStatus"] == "approved"
    assert body["reviewedBy"] == "admin-user"
    assert set(body["invalidates"]) == {"admin-applications", "applications"}

    user = run(db.users.find_one({"id": application["userId"]}, {"_id": 0}))
    assert user["is_active"] is True
    assert user["approval_status"] == "approved"


def test_approve_twice_is_a_no_op(client, admin, application) -> None:
    url = f"/admin/applications/{application['id']}/approve"

    assert client.post(url, headers=admin).status_code == 200
    again = client.post(url, headers=admin)

    assert again.status_code == 200
    assert again.json()["approvalStatus"] == "approved"


def test_reject_after_approval_conflicts(client, admin, application) -> None:
    client.post(f"/admin/applications/{application['id']}/approve", headers=admin)

    response = client.post(f"/admin/applications/{application['id']}/reject", headers=admin,
                           json={"reason": "Changed our mind"})

    assert response.status_code == 409
    assert response.json()["category"] == "STATE_CONFLICT_ERROR"


def test_reject_requires_reason(client, admin, application) -> None:
    url = f"/applications/{application['id']}/review"

    assert client.patch(url, headers=admin, json={"status": "rejected"}).status_code == 422
    assert client.patch(url, headers=admin, json={"status": "rejected", "rejectionReason": "  "}).status_code == 422
    assert client.patch(url, headers=admin, json={"status": "pending"}).status_code == 422


def test_rejected_applicant_can_reapply(client, db, run, admin, application) -> None:
    response = client.patch(f"/applications/{application['id']}/review", headers=admin,
                            json={"status": "rejected", "rejectionReason": "License expired"})
    assert response.json()["rejectionReason"] == "License expired"
    user = run(db.users.find_one({"id": application["userId"]}, {"_id": 0}))
    assert user["rejection_reason"] == "License expired"

    second = _apply(client)

    assert second.status_code == 201
    new_application = second.json()["application"]
    assert new_application["id"] != application["id"]
    assert new_application["userId"] == application["userId"]
    user = run(db.users.find_one({"id": application["userId"]}, {"_id": 0}))
    assert user["approval_status"] == "pending"
    assert "rejection_reason" not in user


def test_review_unknown_application(client, admin) -> None:
    response = client.post("/admin/applications/missing/approve", headers=admin)

    assert response.status_code == 404
