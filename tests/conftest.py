"""Shared fixtures: in-memory MongoDB, API client and token helpers."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from bloodnet.database import get_database
from bloodnet.models import ApprovalStatus, UserRole
from bloodnet.server import app
from bloodnet.services import create_access_token


def auth_headers(role: UserRole = UserRole.ADMIN,
                 approval_status: ApprovalStatus = ApprovalStatus.APPROVED,
                 user_id: str = None) -> dict:
    role = UserRole(role)
    token = create_access_token(
        user_id or f"{role.value}-user",
        role,
        email=f"{role.value}@example.org",
        approval_status=approval_status,
    )
    return {"Authorization": f"Bearer {token}"}


def days_ago(days: float) -> str:
    moment = datetime.now(timezone.utc) - timedelta(days=days)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


@pytest.fixture
def db():
    return AsyncMongoMockClient()["bloodnet_test"]


@pytest.fixture
def client(db):
    app.dependency_overrides[get_database] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def run():
    """Run a coroutine against the in-memory database from a sync test."""
    return asyncio.run


@pytest.fixture
def admin():
    return auth_headers(UserRole.ADMIN)


@pytest.fixture
def bank():
    return auth_headers(UserRole.BLOOD_BANK)


@pytest.fixture
def hospital():
    return auth_headers(UserRole.HOSPITAL)


@pytest.fixture
def make_unit(client, admin):
    """
    Register a unit and walk it through intake.

    ``age_days`` backdates the collection date, so a whole blood unit with
    ``age_days=40`` expires in two days and one with ``age_days=50`` is
    already past expiry.
    """
    def _make(blood_type="O", rh_factor="-", donation_type="whole_blood",
              age_days=1, stage="in_inventory", blood_bank="bank-1"):
        response = client.post("/donations", headers=admin, json={
            "donor": "donor-1",
            "bloodBank": blood_bank,
            "bloodType": blood_type,
            "rhFactor": rh_factor,
            "donationType": donation_type,
            "collectionDate": days_ago(age_days),
            "volumeCollected": 450,
        })
        assert response.status_code == 201, response.text
        unit = response.json()
        for step, reached in (("test", "tested"), ("process", "processed"), ("stock", "in_inventory")):
            if unit["status"] == stage:
                break
            response = client.patch(f"/donations/{unit['id']}/{step}", headers=admin)
            assert response.status_code == 200, response.text
            unit = response.json()
            assert unit["status"] == reached
        return unit

    return _make


@pytest.fixture
def make_request(client, hospital):
    def _make(blood_type="A", rh_factor="+", quantity=1, **extra):
        payload = {
            "institution": {"id": "hospital-1", "name": "City Hospital"},
            "bloodType": blood_type,
            "rhFactor": rh_factor,
            "quantity": quantity,
            "urgency": "high",
            "requiredBy": days_ago(-1),
        }
        payload.update(extra)
        response = client.post("/blood-requests", headers=hospital, json=payload)
        assert response.status_code == 201, response.text
        return response.json()

    return _make
