"""API tests for the blood unit registry, lifecycle and expiry endpoints."""

from datetime import datetime, timedelta

from bloodnet.models import ApprovalStatus, UserRole
from bloodnet.services import blood_units

from conftest import auth_headers, days_ago


def _parse(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%fZ")


# ============================================================================
# Registry
# ============================================================================


def test_register_computes_expiry(client, admin) -> None:
    collected = days_ago(1)
    response = client.post("/donations", headers=admin, json={
        "donor": "donor-7",
        "bloodBank": "bank-1",
        "bloodType": "B",
        "rhFactor": "-",
        "donationType": "platelets",
        "collectionDate": collected,
    })

    assert response.status_code == 201
    unit = response.json()
    assert unit["status"] == "collected"
    assert _parse(unit["expiryDate"]) - _parse(unit["collectionDate"]) == timedelta(days=5)
    assert unit["statusHistory"][0]["status"] == "collected"
    assert "bloodInventory" in unit["invalidates"]
    assert unit["expiry"]["tier"] == "warning"


def test_register_rejects_unknown_blood_type(client, admin) -> None:
    response = client.post("/donations", headers=admin, json={
        "donor": "d", "bloodBank": "b", "bloodType": "C", "rhFactor": "+",
        "collectionDate": days_ago(1),
    })

    assert response.status_code == 422
    body = response.json()
    assert body["category"] == "VALIDATION_ERROR"
    assert body["path"] == "/donations"
    assert any(e.get("field") == "bloodType" for e in body["errors"])


def test_get_unknown_unit_is_not_found(client, admin) -> None:
    response = client.get("/donations/missing", headers=admin)

    assert response.status_code == 404
    assert response.json()["category"] == "NOT_FOUND_ERROR"


def test_list_filters_and_pagination(client, admin, make_unit) -> None:
    for _ in range(3):
        make_unit("A", "+")
    make_unit("O", "-", stage="collected")

    response = client.get("/donations", headers=admin, params={"bloodType": "A", "limit": 2})
    page = response.json()
    assert page["totalResults"] == 3
    assert page["totalPages"] == 2
    assert len(page["results"]) == 2

    response = client.get("/donations/blood-units/status/collected", headers=admin)
    assert [u["bloodType"] for u in response.json()["results"]] == ["O"]


def test_list_completed_donations_by_unit_status(client, admin, make_unit) -> None:
    stocked = make_unit("A", "+")
    collected = make_unit("O", "-", stage="collected")

    everything = client.get("/donations", headers=admin, params={"status": "completed"}).json()
    assert everything["totalResults"] == 2

    page = client.get("/donations", headers=admin,
                      params={"status": "completed", "unitStatus": "in_inventory"}).json()
    assert [u["id"] for u in page["results"]] == [stocked["id"]]

    page = client.get("/donations", headers=admin, params={"unitStatus": "collected"}).json()
    assert [u["id"] for u in page["results"]] == [collected["id"]]

    bad = client.get("/donations", headers=admin, params={"status": "finished"})
    assert bad.status_code == 422
    assert bad.json()["errors"][0]["field"] == "status"


# ============================================================================
# Access
# ============================================================================


def test_missing_token_is_unauthenticated(client) -> None:
    response = client.get("/donations")

    assert response.status_code == 401
    assert response.json()["category"] == "AUTHENTICATION_ERROR"


def test_hospital_cannot_register_units(client, hospital) -> None:
    response = client.post("/donations", headers=hospital, json={
        "donor": "d", "bloodBank": "b", "bloodType": "A", "rhFactor": "+",
        "collectionDate": days_ago(1),
    })

    assert response.status_code == 403
    assert response.json()["category"] == "AUTHORIZATION_ERROR"


def test_pending_blood_bank_is_blocked(client) -> None:
    headers = auth_headers(UserRole.BLOOD_BANK, ApprovalStatus.PENDING)

    response = client.get("/donations", headers=headers)

    assert response.status_code == 403
    assert "awaiting approval" in response.json()["errors"][0]["message"]


# ============================================================================
# Transitions
# ============================================================================


def test_intake_cannot_skip_steps(client, admin, make_unit) -> None:
    unit = make_unit(stage="collected")

    response = client.patch(f"/donations/{unit['id']}/stock", headers=admin)

    assert response.status_code == 409
    body = response.json()
    assert body["category"] == "STATE_CONFLICT_ERROR"
    assert body["errors"][0]["field"] == "status"
    assert body["errors"][0]["value"] == "collected"


def test_dispatch_then_use(client, admin, make_unit) -> None:
    unit = make_unit()

    response = client.patch(f"/donations/{unit['id']}/dispatch", headers=admin,
                            json={"dispatchedTo": "hospital-9"})
    assert response.status_code == 200
    dispatched = response.json()
    assert dispatched["status"] == "dispatched"
    assert dispatched["dispatchInfo"]["dispatchedTo"] == "hospital-9"

    response = client.patch(f"/donations/{unit['id']}/use", headers=admin, json={"usedFor": "Surgery"})
    used = response.json()
    assert used["status"] == "used"
    assert used["usageInfo"]["usedFor"] == "Surgery"
    assert used.get("dispatchInfo") is None


def test_use_requires_dispatch(client, admin, make_unit) -> None:
    unit = make_unit()

    response = client.patch(f"/donations/{unit['id']}/use", headers=admin, json={"usedFor": "Trauma"})

    assert response.status_code == 409


def test_discard_requires_reason(client, admin, make_unit) -> None:
    unit = make_unit()

    assert client.patch(f"/donations/{unit['id']}/discard", headers=admin, json={}).status_code == 422
    response = client.patch(f"/donations/{unit['id']}/discard", headers=admin,
                            json={"discardReason": "spilled"})
    assert response.status_code == 422
    assert client.get(f"/donations/{unit['id']}", headers=admin).json()["status"] == "in_inventory"


def test_discard_twice_is_a_no_op(client, admin, make_unit) -> None:
    unit = make_unit()
    url = f"/donations/{unit['id']}/discard"

    first = client.patch(url, headers=admin, json={"discardReason": "contaminated"})
    second = client.patch(url, headers=admin, json={"discardReason": "contaminated"})

    assert first.status_code == 200 and first.json()["changed"] is True
    assert second.status_code == 200 and second.json()["changed"] is False
    assert second.json()["status"] == "discarded"
    assert second.json()["invalidates"] == []


def test_used_unit_is_terminal(client, admin, make_unit) -> None:
    unit = make_unit()
    client.patch(f"/donations/{unit['id']}/dispatch", headers=admin, json={"dispatchedTo": "h"})
    client.patch(f"/donations/{unit['id']}/use", headers=admin, json={"usedFor": "Surgery"})

    response = client.patch(f"/donations/{unit['id']}/discard", headers=admin, json={"discardReason": "other"})

    assert response.status_code == 409
    assert client.get(f"/donations/{unit['id']}", headers=admin).json()["status"] == "used"


def test_expire_requires_past_expiry(client, admin, make_unit) -> None:
    fresh = make_unit()
    stale = make_unit(age_days=50)

    assert client.put(f"/donations/{fresh['id']}/expire", headers=admin).status_code == 409

    response = client.patch(f"/donations/{stale['id']}/expire", headers=admin)
    assert response.status_code == 200
    assert response.json()["status"] == "expired"

    again = client.put(f"/donations/{stale['id']}/expire", headers=admin)
    assert again.status_code == 200
    assert again.json()["changed"] is False


def test_generic_status_update(client, admin, make_unit) -> None:
    unit = make_unit(stage="collected")
    url = f"/donations/{unit['id']}/blood-unit-status"

    response = client.patch(url, headers=admin, json={"unitStatus": "tested"})
    assert response.json()["status"] == "tested"

    response = client.patch(url, headers=admin, json={"unitStatus": "discarded"})
    assert response.status_code == 422

    response = client.patch(url, headers=admin, json={"unitStatus": "discarded", "discardReason": "quality_control"})
    assert response.json()["status"] == "discarded"
    assert response.json()["discardInfo"]["reason"] == "quality_control"


def test_tracking_history(client, admin, make_unit) -> None:
    unit = make_unit()
    client.patch(f"/donations/{unit['id']}/discard", headers=admin, json={"discardReason": "damaged_container"})

    tracking = client.get(f"/donations/{unit['id']}/tracking", headers=admin).json()

    assert tracking["donationId"] == unit["id"]
    assert tracking["currentStatus"] == "discarded"
    assert [h["status"] for h in tracking["statusHistory"]] == [
        "collected", "tested", "processed", "in_inventory", "discarded",
    ]
    assert tracking["discardInfo"]["reason"] == "damaged_container"


def test_concurrent_transition_loses_with_conflict(client, admin, make_unit, db, run, monkeypatch) -> None:
    """A writer working from a stale read must not overwrite the winner."""
    unit = make_unit(stage="collected")
    stale = run(blood_units.get_unit(db, unit["id"]))
    assert client.patch(f"/donations/{unit['id']}/test", headers=admin).status_code == 200

    real_get_unit = blood_units.get_unit
    reads = []

    async def get_unit(db, unit_id):
        reads.append(unit_id)
        if len(reads) == 1:
            return stale
        return await real_get_unit(db, unit_id)

    monkeypatch.setattr(blood_units, "get_unit", get_unit)
    response = client.patch(f"/donations/{unit['id']}/test", headers=admin)

    assert response.status_code == 409
    assert response.json()["errors"][0]["value"] == "tested"
    monkeypatch.undo()
    tracking = client.get(f"/donations/{unit['id']}/tracking", headers=admin).json()
    assert [h["status"] for h in tracking["statusHistory"]] == ["collected", "tested"]


# ============================================================================
# Batch disposal
# ============================================================================


def test_bulk_discard_reports_per_unit_failures(client, admin, make_unit) -> None:
    first, second, used = make_unit(), make_unit(), make_unit()
    client.patch(f"/donations/{used['id']}/dispatch", headers=admin, json={"dispatchedTo": "h"})
    client.patch(f"/donations/{used['id']}/use", headers=admin, json={"usedFor": "Surgery"})

    response = client.post("/donations/bulk-discard", headers=admin, json={
        "donationIds": [first["id"], second["id"], used["id"]],
    })

    assert response.status_code == 200
    body = response.json()
    assert sorted(body["discarded"]) == sorted([first["id"], second["id"]])
    assert body["discardedCount"] == 2
    assert body["failedCount"] == 1
    assert body["failed"][0]["id"] == used["id"]
    for unit_id in (first["id"], second["id"]):
        unit = client.get(f"/donations/{unit_id}", headers=admin).json()
        assert unit["status"] == "discarded"
        assert unit["discardInfo"]["reason"] == "expired"
    assert client.get(f"/donations/{used['id']}", headers=admin).json()["status"] == "used"


def test_bulk_discard_repeated_ids_are_idempotent(client, admin, make_unit) -> None:
    unit = make_unit()
    client.patch(f"/donations/{unit['id']}/discard", headers=admin, json={"discardReason": "other"})

    response = client.post("/donations/bulk-discard", headers=admin,
                           json={"donationIds": [unit["id"], unit["id"]], "discardReason": "other"})

    assert response.json()["discarded"] == [unit["id"]]
    assert response.json()["failed"] == []


def test_bulk_discard_needs_ids(client, admin) -> None:
    response = client.post("/donations/bulk-discard", headers=admin, json={"donationIds": []})

    assert response.status_code == 422


def test_process_expired(client, admin, make_unit) -> None:
    fresh = make_unit()
    stale = make_unit(age_days=50)
    just_lapsed = make_unit(age_days=43)
    untouched = make_unit(age_days=60, stage="collected")

    response = client.post("/donations/blood-units/process-expired", headers=admin)

    assert response.status_code == 200
    processed = set(response.json()["processed"])
    assert processed == {stale["id"], just_lapsed["id"]}
    assert fresh["id"] not in processed
    assert untouched["id"] not in processed
    assert client.get(f"/donations/{stale['id']}", headers=admin).json()["discardInfo"]["reason"] == "expired"


def test_process_expired_unbinds_reservations(client, admin, make_unit, make_request, db, run) -> None:
    unit = make_unit()
    request = make_request("O", "-")
    client.put(f"/donations/{unit['id']}/reserve/{request['id']}", headers=admin)
    run(db.blood_units.update_one({"id": unit["id"]}, {"$set": {"expiry_date": days_ago(1)}}))

    response = client.post("/donations/blood-units/process-expired", headers=admin)

    assert response.json()["processedCount"] == 1
    discarded = client.get(f"/donations/{unit['id']}", headers=admin).json()
    assert discarded["status"] == "discarded"
    assert discarded.get("reservedForRequest") is None
    assert client.get(f"/blood-requests/{request['id']}", headers=admin).json()["reservedUnitIds"] == []


# ============================================================================
# Expiry views
# ============================================================================


def test_expired_and_expiring_soon_views(client, admin, make_unit) -> None:
    expired = make_unit(age_days=45)
    soon = make_unit(age_days=40)
    make_unit(age_days=1)

    expired_page = client.get("/donations/blood-units/expired", headers=admin).json()
    assert [u["id"] for u in expired_page["results"]] == [expired["id"]]
    assert expired_page["results"][0]["expiry"]["priorityScore"] == 1000
    assert expired_page["results"][0]["expiry"]["isExpired"] is True

    soon_page = client.get("/donations/blood-units/expiring-soon", headers=admin).json()
    assert [u["id"] for u in soon_page["results"]] == [soon["id"]]
    assert soon_page["results"][0]["expiry"]["tier"] == "critical"

    wide = client.get("/donations/blood-units/expiring-soon", headers=admin, params={"days": 60}).json()
    assert wide["totalResults"] == 2
    assert wide["results"][0]["id"] == soon["id"]
