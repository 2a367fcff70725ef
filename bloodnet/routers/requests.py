from fastapi import APIRouter, Depends, Query
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..database import get_database
from ..middleware import Allow, Operation
from ..models import (
    BloodGroup, BloodRequest, BloodRequestCreate, DonationType, FulfillRequest, RequestContext,
    RequestStatus, RequestUrgency, RhFactor
)
from ..services import invalidation, reservations
from ..services.blood_units import serialize_unit
from ..services.compatibility import RankedUnit, Selection

router = APIRouter(prefix="/blood-requests", tags=["Blood Requests"])


def _request_out(request: BloodRequest) -> dict:
    return request.model_dump(by_alias=True, mode="json")


def _ranked_out(ranked: RankedUnit) -> dict:
    return {
        "unit": serialize_unit(ranked.unit),
        "score": ranked.score,
        "exactMatch": ranked.exact_match,
        "daysUntilExpiry": ranked.days_until_expiry,
    }


def _selection_out(selection: Selection) -> dict:
    return {
        "units": [_ranked_out(r) for r in selection.units],
        "requested": selection.requested,
        "selected": selection.selected,
        "partial": selection.partial,
        "shortfall": selection.shortfall,
    }


@router.post("", status_code=201)
async def create_blood_request(
    request_data: BloodRequestCreate,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.CREATE_REQUEST))
):
    request = await reservations.create_request(db, request_data, current_user)
    data = _request_out(request)
    data["invalidates"] = invalidation.REQUESTS
    return data

@router.get("")
async def get_blood_requests(
    status: Optional[RequestStatus] = None,
    urgency: Optional[RequestUrgency] = None,
    blood_type: Optional[BloodGroup] = Query(None, alias="bloodType"),
    rh_factor: Optional[RhFactor] = Query(None, alias="rhFactor"),
    institution: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.VIEW_REQUESTS))
):
    query = {}
    if status:
        query["status"] = status.value
    if urgency:
        query["urgency"] = urgency.value
    if blood_type:
        query["blood_type"] = blood_type.value
    if rh_factor:
        query["rh_factor"] = rh_factor.value
    if institution:
        query["institution.id"] = institution

    page_obj = await reservations.list_requests(db, query, page, limit)
    return page_obj.model_dump(by_alias=True, mode="json")

@router.get("/{request_id}")
async def get_blood_request(
    request_id: str,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.VIEW_REQUESTS))
):
    return _request_out(await reservations.get_request(db, request_id))

@router.get("/{request_id}/matches")
async def get_compatible_units(
    request_id: str,
    blood_bank: Optional[str] = Query(None, alias="bloodBank"),
    donation_type: Optional[DonationType] = Query(None, alias="donationType"),
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.MATCH_REQUEST))
):
    ranked = await reservations.match_units(db, request_id, blood_bank=blood_bank, donation_type=donation_type)
    return {"requestId": request_id, "total": len(ranked), "matches": [_ranked_out(r) for r in ranked]}

@router.post("/{request_id}/auto-select")
async def auto_select_units(
    request_id: str,
    reserve: bool = False,
    blood_bank: Optional[str] = Query(None, alias="bloodBank"),
    donation_type: Optional[DonationType] = Query(None, alias="donationType"),
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.MATCH_REQUEST))
):
    if reserve:
        # Reserving goes through the ledger, which needs its own permission
        await Allow(Operation.RESERVE_UNIT)(current_user)
    selection = await reservations.auto_select(db, request_id, current_user, reserve=reserve,
                                               blood_bank=blood_bank, donation_type=donation_type)
    data = _selection_out(selection)
    data["reserved"] = reserve
    data["invalidates"] = invalidation.UNIT_RESERVATION if reserve and selection.units else []
    return data

@router.post("/{request_id}/fulfill")
async def fulfill_blood_request(
    request_id: str,
    payload: FulfillRequest,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.FULFILL_REQUEST))
):
    request, result = await reservations.fulfill(db, request_id, payload.unit_ids, current_user,
                                                 dispatched_at=payload.dispatched_at, notes=payload.notes)
    return {
        "request": _request_out(request),
        "dispatched": result.succeeded,
        "failed": result.failed,
        "invalidates": invalidation.REQUEST_CHANGE,
    }

@router.post("/{request_id}/cancel")
async def cancel_blood_request(
    request_id: str,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.CANCEL_REQUEST))
):
    request, released = await reservations.cancel_request(db, request_id, current_user)
    return {
        "request": _request_out(request),
        "released": released.succeeded,
        "failed": released.failed,
        "invalidates": invalidation.REQUEST_CHANGE,
    }
