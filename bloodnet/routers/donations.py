"""
Blood unit API
Registry listing, lifecycle transitions, expiry views and batch disposal.
Units are exposed under /donations, matching the portal's routes.
"""
from fastapi import APIRouter, Depends, Query
from typing import List, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..config import EXPIRING_SOON_DAYS
from ..database import get_database
from ..errors import ValidationFailed
from ..middleware import Allow, Operation
from ..models import (
    BloodGroup, BloodUnitCreate, BulkDiscard, DiscardBloodUnit, DispatchBloodUnit, DonationType,
    ExpireBloodUnit, RequestContext, RhFactor, StageUpdate, UnitAction, UnitStatus,
    UpdateBloodUnitStatus, UseBloodUnit, utcnow
)
from ..services import blood_units, invalidation, reservations
from ..services.blood_units import TransitionResult, serialize_unit
from ..services.transitions import action_for_target

router = APIRouter(prefix="/donations", tags=["Blood Units"])

COMPLETED_DONATIONS = "completed"


def _page_response(page_obj, now=None) -> dict:
    data = page_obj.model_dump(by_alias=True, mode="json", exclude={"results"})
    data["results"] = [serialize_unit(u, now) for u in page_obj.results]
    return data


def _transition_response(result: TransitionResult, invalidates: List[str]) -> dict:
    data = serialize_unit(result.unit)
    data["changed"] = result.changed
    data["previousStatus"] = result.previous_status.value
    data["invalidates"] = invalidates if result.changed else []
    return data


# ============ REGISTRY ============

@router.post("", status_code=201)
async def register_blood_unit(
    payload: BloodUnitCreate,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.REGISTER_UNIT))
):
    unit = await blood_units.register(db, payload, current_user)
    data = serialize_unit(unit)
    data["invalidates"] = invalidation.INVENTORY
    return data

@router.get("")
async def list_blood_units(
    status: Optional[str] = None,
    unit_status: Optional[UnitStatus] = Query(None, alias="unitStatus"),
    blood_type: Optional[BloodGroup] = Query(None, alias="bloodType"),
    rh_factor: Optional[RhFactor] = Query(None, alias="rhFactor"),
    donation_type: Optional[DonationType] = Query(None, alias="donationType"),
    blood_bank: Optional[str] = Query(None, alias="bloodBank"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.VIEW_INVENTORY))
):
    """
    ``status=completed`` is the donation-level filter and matches every
    registered unit; the unit lifecycle state goes in ``unitStatus``.
    """
    if unit_status is None and status and status != COMPLETED_DONATIONS:
        try:
            unit_status = UnitStatus(status)
        except ValueError:
            raise ValidationFailed(f"Unknown status '{status}'", field="status", value=status)
    query = blood_units.build_filters(unit_status, blood_type, rh_factor, donation_type, blood_bank)
    return _page_response(await blood_units.list_units(db, query, page, limit))

@router.get("/blood-units/status/{status}")
async def list_blood_units_by_status(
    status: UnitStatus,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.VIEW_INVENTORY))
):
    query = blood_units.build_filters(status=status)
    return _page_response(await blood_units.list_units(db, query, page, limit))

# ============ EXPIRY ============

@router.get("/blood-units/expired")
async def list_expired_blood_units(
    blood_bank: Optional[str] = Query(None, alias="bloodBank"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.VIEW_INVENTORY))
):
    now = utcnow()
    extra = blood_units.build_filters(blood_bank=blood_bank)
    return _page_response(await blood_units.list_expired(db, page, limit, now=now, extra=extra), now)

@router.get("/blood-units/expiring-soon")
async def list_blood_units_expiring_soon(
    days: int = Query(EXPIRING_SOON_DAYS, ge=0, le=365),
    blood_bank: Optional[str] = Query(None, alias="bloodBank"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.VIEW_INVENTORY))
):
    now = utcnow()
    extra = blood_units.build_filters(blood_bank=blood_bank)
    return _page_response(await blood_units.list_expiring_soon(db, days, page, limit, now=now, extra=extra), now)

@router.post("/blood-units/process-expired")
async def process_expired_blood_units(
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.PROCESS_EXPIRED))
):
    result = await blood_units.process_expired(db, current_user)
    return {
        "processedCount": len(result.succeeded),
        "processed": result.succeeded,
        "failed": result.failed,
        "invalidates": invalidation.UNIT_DISPOSAL,
    }

@router.post("/bulk-discard")
async def bulk_discard_blood_units(
    payload: BulkDiscard,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.DISCARD_UNIT))
):
    result = await blood_units.bulk_discard(db, payload.donation_ids, payload.discard_reason,
                                            current_user, notes=payload.notes)
    return {
        "status": "success" if result.succeeded else "failed",
        "discarded": result.succeeded,
        "discardedCount": len(result.succeeded),
        "failed": result.failed,
        "failedCount": len(result.failed),
        "invalidates": invalidation.UNIT_DISPOSAL,
    }

# ============ SINGLE UNIT ============

@router.get("/{unit_id}")
async def get_blood_unit(
    unit_id: str,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.VIEW_INVENTORY))
):
    return serialize_unit(await blood_units.get_unit(db, unit_id))

@router.get("/{unit_id}/tracking")
async def get_blood_unit_tracking(
    unit_id: str,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.VIEW_INVENTORY))
):
    return await blood_units.get_tracking(db, unit_id)

@router.patch("/{unit_id}/test")
async def mark_blood_unit_tested(
    unit_id: str,
    payload: Optional[StageUpdate] = None,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.ADVANCE_UNIT))
):
    result = await blood_units.advance(db, unit_id, UnitAction.TEST, current_user, payload.notes if payload else None)
    return _transition_response(result, invalidation.UNIT_STAGE)

@router.patch("/{unit_id}/process")
async def mark_blood_unit_processed(
    unit_id: str,
    payload: Optional[StageUpdate] = None,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.ADVANCE_UNIT))
):
    result = await blood_units.advance(db, unit_id, UnitAction.PROCESS, current_user, payload.notes if payload else None)
    return _transition_response(result, invalidation.UNIT_STAGE)

@router.patch("/{unit_id}/stock")
async def add_blood_unit_to_inventory(
    unit_id: str,
    payload: Optional[StageUpdate] = None,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.ADVANCE_UNIT))
):
    result = await blood_units.advance(db, unit_id, UnitAction.STOCK, current_user, payload.notes if payload else None)
    return _transition_response(result, invalidation.UNIT_STAGE)

@router.patch("/{unit_id}/dispatch")
async def dispatch_blood_unit(
    unit_id: str,
    payload: DispatchBloodUnit,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.DISPATCH_UNIT))
):
    result = await reservations.dispatch(db, unit_id, payload, current_user)
    return _transition_response(result, invalidation.UNIT_DISPATCH)

@router.patch("/{unit_id}/use")
async def use_blood_unit(
    unit_id: str,
    payload: UseBloodUnit,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.USE_UNIT))
):
    result = await blood_units.use_unit(db, unit_id, payload.used_for, current_user, used_at=payload.used_at)
    return _transition_response(result, invalidation.UNIT_USE)

@router.patch("/{unit_id}/discard")
async def discard_blood_unit(
    unit_id: str,
    payload: DiscardBloodUnit,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.DISCARD_UNIT))
):
    result = await blood_units.discard_unit(db, unit_id, payload.discard_reason, current_user,
                                            discarded_at=payload.discarded_at, notes=payload.notes)
    return _transition_response(result, invalidation.UNIT_DISPOSAL)

@router.api_route("/{unit_id}/expire", methods=["PUT", "PATCH"])
async def expire_blood_unit(
    unit_id: str,
    payload: Optional[ExpireBloodUnit] = None,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.EXPIRE_UNIT))
):
    expired_at = payload.expired_at if payload else None
    result = await blood_units.expire_unit(db, unit_id, current_user, expired_at=expired_at)
    return _transition_response(result, invalidation.UNIT_DISPOSAL)

@router.put("/{unit_id}/reserve/{request_id}")
async def reserve_blood_unit(
    unit_id: str,
    request_id: str,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.RESERVE_UNIT))
):
    result = await reservations.reserve_unit(db, unit_id, request_id, current_user)
    return _transition_response(result, invalidation.UNIT_RESERVATION)

@router.post("/{unit_id}/release")
async def release_blood_unit(
    unit_id: str,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.RELEASE_UNIT))
):
    result = await reservations.release_unit(db, unit_id, current_user)
    return _transition_response(result, invalidation.UNIT_RESERVATION)

@router.patch("/{unit_id}/blood-unit-status")
async def update_blood_unit_status(
    unit_id: str,
    payload: UpdateBloodUnitStatus,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.VIEW_INVENTORY))
):
    """Generic status change; dispatches to the specific transition for ``unitStatus``."""
    unit = await blood_units.get_unit(db, unit_id)
    action = action_for_target(unit.status, payload.unit_status)
    operation = {
        UnitAction.TEST: Operation.ADVANCE_UNIT,
        UnitAction.PROCESS: Operation.ADVANCE_UNIT,
        UnitAction.STOCK: Operation.ADVANCE_UNIT,
        UnitAction.RESERVE: Operation.RESERVE_UNIT,
        UnitAction.RELEASE: Operation.RELEASE_UNIT,
        UnitAction.DISPATCH: Operation.DISPATCH_UNIT,
        UnitAction.USE: Operation.USE_UNIT,
        UnitAction.EXPIRE: Operation.EXPIRE_UNIT,
        UnitAction.DISCARD: Operation.DISCARD_UNIT,
    }[action]
    await Allow(operation)(current_user)

    if action in (UnitAction.TEST, UnitAction.PROCESS, UnitAction.STOCK):
        result = await blood_units.advance(db, unit_id, action, current_user, payload.notes)
        return _transition_response(result, invalidation.UNIT_STAGE)
    if action == UnitAction.RESERVE:
        if not payload.reserved_for_request:
            raise ValidationFailed("reservedForRequest is required to reserve a unit", field="reservedForRequest")
        result = await reservations.reserve_unit(db, unit_id, payload.reserved_for_request, current_user)
        return _transition_response(result, invalidation.UNIT_RESERVATION)
    if action == UnitAction.RELEASE:
        result = await reservations.release_unit(db, unit_id, current_user)
        return _transition_response(result, invalidation.UNIT_RESERVATION)
    if action == UnitAction.DISPATCH:
        if not payload.dispatched_to:
            raise ValidationFailed("dispatchedTo is required to dispatch a unit", field="dispatchedTo")
        dispatch = DispatchBloodUnit(dispatched_to=payload.dispatched_to, dispatched_at=payload.dispatched_at,
                                     for_request=payload.for_request, notes=payload.notes)
        result = await reservations.dispatch(db, unit_id, dispatch, current_user)
        return _transition_response(result, invalidation.UNIT_DISPATCH)
    if action == UnitAction.USE:
        if not payload.used_for:
            raise ValidationFailed("usedFor is required to mark a unit as used", field="usedFor")
        result = await blood_units.use_unit(db, unit_id, payload.used_for, current_user, used_at=payload.used_at)
        return _transition_response(result, invalidation.UNIT_USE)
    if action == UnitAction.EXPIRE:
        result = await blood_units.expire_unit(db, unit_id, current_user)
        return _transition_response(result, invalidation.UNIT_DISPOSAL)

    if not payload.discard_reason:
        raise ValidationFailed("discardReason is required to discard a unit", field="discardReason")
    result = await blood_units.discard_unit(db, unit_id, payload.discard_reason, current_user,
                                            discarded_at=payload.discarded_at, notes=payload.notes)
    return _transition_response(result, invalidation.UNIT_DISPOSAL)
