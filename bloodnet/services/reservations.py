"""
Reservation ledger
Binds blood units to hospital requests, dispatches them against requests and
keeps each request's fulfilment status in step with its dispatched units.
"""
import logging
from datetime import datetime
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from ..errors import InvalidStateTransition, NotFound, ValidationFailed
from ..models import (
    BloodRequest, BloodRequestCreate, BloodUnit, DispatchBloodUnit, DonationType, RequestContext,
    RequestStatus, UnitAction, UnitStatus, isoformat, utcnow
)
from ..models.audit import AuditAction, AuditModule
from . import blood_units, compatibility, expiry
from .audit_service import audit_log
from .blood_units import BulkResult, TransitionResult
from .pagination import find_page

logger = logging.getLogger(__name__)


# ============ BLOOD REQUESTS ============

async def create_request(db: AsyncIOMotorDatabase, payload: BloodRequestCreate,
                         user: Optional[RequestContext] = None) -> BloodRequest:
    request = BloodRequest(**payload.model_dump(), requested_by=user.user_id if user else None)
    await db.blood_requests.insert_one(request.model_dump(mode="json"))
    await audit_log(
        db, AuditAction.CREATE, AuditModule.REQUESTS, user,
        record_id=request.id, record_type="blood_request",
        new_values={"blood_type": request.full_type, "quantity": request.quantity,
                    "urgency": request.urgency.value},
        description=f"Created blood request {request.id}",
    )
    logger.info("Request %s: %d x %s (%s) for %s", request.id, request.quantity,
                request.full_type, request.urgency.value, request.institution.id)
    return request


async def get_request(db: AsyncIOMotorDatabase, request_id: str) -> BloodRequest:
    doc = await db.blood_requests.find_one({"id": request_id}, {"_id": 0})
    if not doc:
        raise NotFound(f"Blood request {request_id} not found", field="requestId", value=request_id)
    return BloodRequest.model_validate(doc)


async def list_requests(db: AsyncIOMotorDatabase, query: dict, page: int = 1, limit: Optional[int] = None):
    return await find_page(db.blood_requests, query, page, limit,
                           [("required_by", 1), ("id", 1)], BloodRequest)


def _require_open(request: BloodRequest):
    if not request.is_open:
        raise InvalidStateTransition(
            f"Blood request {request.id} is {request.status.value}",
            current_status=request.status.value,
        )


def fulfilment_status(request: BloodRequest, dispatched_count: int) -> RequestStatus:
    if dispatched_count >= request.quantity:
        return RequestStatus.FULFILLED
    if dispatched_count > 0:
        return RequestStatus.PARTIALLY_FULFILLED
    return request.status


async def _record_dispatch(db: AsyncIOMotorDatabase, request_id: str, unit_id: str, now: datetime,
                           user: Optional[RequestContext] = None) -> BloodRequest:
    await db.blood_requests.update_one(
        {"id": request_id},
        {"$addToSet": {"dispatched_unit_ids": unit_id},
         "$pull": {"reserved_unit_ids": unit_id},
         "$set": {"updated_at": isoformat(now)}},
    )
    request = await get_request(db, request_id)
    status = fulfilment_status(request, len(request.dispatched_unit_ids))
    if status != request.status:
        await db.blood_requests.update_one({"id": request_id}, {"$set": {"status": status.value}})
        logger.info("Request %s is now %s (%d/%d dispatched)", request_id, status.value,
                    len(request.dispatched_unit_ids), request.quantity)
        request.status = status
    if status == RequestStatus.FULFILLED:
        for surplus in request.reserved_unit_ids:
            try:
                await release_unit(db, surplus, user, now=now)
            except (InvalidStateTransition, NotFound) as e:
                logger.warning("Could not release surplus unit %s of %s: %s", surplus, request_id, e.message)
        request = await get_request(db, request_id)
    return request


# ============ MATCHING ============

async def candidate_units(db: AsyncIOMotorDatabase, request: BloodRequest, blood_bank: Optional[str] = None,
                          donation_type: Optional[DonationType] = None,
                          now: Optional[datetime] = None) -> List[BloodUnit]:
    now = now or utcnow()
    types = compatibility.compatible_donor_types(request.blood_type, request.rh_factor)
    query = {
        "status": UnitStatus.IN_INVENTORY.value,
        "expiry_date": {"$gt": isoformat(now)},
        "$or": [{"blood_type": t[:-1], "rh_factor": t[-1]} for t in types],
    }
    if blood_bank:
        query["blood_bank"] = blood_bank
    if donation_type:
        query["donation_type"] = DonationType(donation_type).value
    return await blood_units.load_units(db, query)


async def match_units(db: AsyncIOMotorDatabase, request_id: str, blood_bank: Optional[str] = None,
                      donation_type: Optional[DonationType] = None, now: Optional[datetime] = None) -> List[compatibility.RankedUnit]:
    now = now or utcnow()
    request = await get_request(db, request_id)
    units = await candidate_units(db, request, blood_bank, donation_type, now)
    return compatibility.rank_units(request, units, now)


async def auto_select(db: AsyncIOMotorDatabase, request_id: str, user: Optional[RequestContext] = None,
                      reserve: bool = False, blood_bank: Optional[str] = None,
                      donation_type: Optional[DonationType] = None, now: Optional[datetime] = None) -> compatibility.Selection:
    """Pick the best units for the outstanding quantity, optionally reserving them."""
    now = now or utcnow()
    request = await get_request(db, request_id)
    _require_open(request)
    units = await candidate_units(db, request, blood_bank, donation_type, now)
    selection = compatibility.auto_select(request, units, now)
    if not reserve:
        return selection

    reserved = []
    for ranked in selection.units:
        try:
            outcome = await reserve_unit(db, ranked.unit.id, request_id, user, now=now)
        except InvalidStateTransition as e:
            logger.warning("Auto-select could not reserve unit %s: %s", ranked.unit.id, e.message)
            continue
        ranked.unit = outcome.unit
        reserved.append(ranked)
    selection.units = reserved
    return selection


# ============ LEDGER ============

async def reserve_unit(db: AsyncIOMotorDatabase, unit_id: str, request_id: str,
                       user: Optional[RequestContext] = None, now: Optional[datetime] = None) -> TransitionResult:
    now = now or utcnow()
    request = await get_request(db, request_id)
    _require_open(request)
    held = len(request.reserved_unit_ids) + len(request.dispatched_unit_ids)
    if unit_id not in request.reserved_unit_ids and held >= request.quantity:
        raise InvalidStateTransition(
            f"Blood request {request_id} already has {request.quantity} unit(s) reserved or dispatched",
            current_status=request.status.value, action=UnitAction.RESERVE.value,
        )

    def _check_unit(unit: BloodUnit):
        if expiry.is_past_expiry(unit, now):
            raise InvalidStateTransition(
                f"Blood unit {unit.id} is past its expiry date",
                current_status=unit.status.value, action=UnitAction.RESERVE.value,
            )
        if not compatibility.is_compatible(unit.blood_type, unit.rh_factor, request.blood_type, request.rh_factor):
            raise ValidationFailed(
                f"Blood unit {unit.full_type} is not compatible with request for {request.full_type}",
                field="bloodType", value=unit.full_type,
            )

    outcome = await blood_units.apply_transition(
        db, unit_id, UnitAction.RESERVE, user,
        fields={"reserved_for_request": request_id, "reserved_at": isoformat(now)},
        notes=f"Reserved for request {request_id}", now=now, precondition=_check_unit,
    )
    await db.blood_requests.update_one(
        {"id": request_id},
        {"$addToSet": {"reserved_unit_ids": unit_id}, "$set": {"updated_at": isoformat(now)}},
    )
    return outcome


async def release_unit(db: AsyncIOMotorDatabase, unit_id: str, user: Optional[RequestContext] = None,
                       now: Optional[datetime] = None) -> TransitionResult:
    """Return a reserved unit to inventory; the request side is unbound by the transition."""
    return await blood_units.apply_transition(db, unit_id, UnitAction.RELEASE, user,
                                              notes="Reservation released", now=now)


async def dispatch(db: AsyncIOMotorDatabase, unit_id: str, payload: DispatchBloodUnit,
                   user: Optional[RequestContext] = None, now: Optional[datetime] = None) -> TransitionResult:
    """
    Dispatch one unit, recording it against a request when there is one.

    The request is ``payload.for_request`` or, failing that, the request the
    unit is reserved for.
    """
    now = now or utcnow()
    unit = await blood_units.get_unit(db, unit_id)
    request_id = payload.for_request or unit.reserved_for_request
    if payload.for_request and unit.reserved_for_request and payload.for_request != unit.reserved_for_request:
        raise InvalidStateTransition(
            f"Blood unit {unit_id} is reserved for request {unit.reserved_for_request}",
            current_status=unit.status.value, action=UnitAction.DISPATCH.value,
        )
    if request_id:
        request = await get_request(db, request_id)
        _require_open(request)
        if not compatibility.is_compatible(unit.blood_type, unit.rh_factor, request.blood_type, request.rh_factor):
            raise ValidationFailed(
                f"Blood unit {unit.full_type} is not compatible with request for {request.full_type}",
                field="forRequest", value=request_id,
            )

    outcome = await blood_units.dispatch_unit(
        db, unit_id, payload.dispatched_to, user, dispatched_at=payload.dispatched_at,
        for_request=request_id, notes=payload.notes, now=now,
    )
    if request_id:
        await _record_dispatch(db, request_id, unit_id, now, user)
    return outcome


async def fulfill(db: AsyncIOMotorDatabase, request_id: str, unit_ids: List[str],
                  user: Optional[RequestContext] = None, dispatched_at: Optional[datetime] = None,
                  notes: Optional[str] = None, now: Optional[datetime] = None):
    """Dispatch ``unit_ids`` to the request's institution; failures are reported per id."""
    now = now or utcnow()
    request = await get_request(db, request_id)
    _require_open(request)

    result = BulkResult()
    for unit_id in dict.fromkeys(unit_ids):
        try:
            await dispatch(
                db, unit_id,
                DispatchBloodUnit(dispatched_to=request.institution.id, dispatched_at=dispatched_at,
                                  for_request=request_id, notes=notes),
                user, now=now,
            )
        except (InvalidStateTransition, NotFound, ValidationFailed) as e:
            logger.warning("Fulfilment of %s skipped unit %s: %s", request_id, unit_id, e.message)
            result.fail(unit_id, e.message)
            continue
        result.succeeded.append(unit_id)

    request = await get_request(db, request_id)
    await audit_log(
        db, AuditAction.FULFILL, AuditModule.REQUESTS, user,
        record_id=request_id, record_type="blood_request",
        new_values={"status": request.status.value},
        metadata={"dispatched": result.succeeded, "failed": result.failed},
        description=f"Dispatched {len(result.succeeded)} unit(s) for request {request_id}",
    )
    return request, result


async def cancel_request(db: AsyncIOMotorDatabase, request_id: str, user: Optional[RequestContext] = None,
                         now: Optional[datetime] = None):
    """Cancel an open request and release every unit reserved for it."""
    now = now or utcnow()
    request = await get_request(db, request_id)
    _require_open(request)

    result = await db.blood_requests.update_one(
        {"id": request_id, "status": {"$in": [RequestStatus.PENDING.value, RequestStatus.PARTIALLY_FULFILLED.value]}},
        {"$set": {"status": RequestStatus.CANCELLED.value, "updated_at": isoformat(now)}},
    )
    if result.matched_count == 0:
        current = await get_request(db, request_id)
        raise InvalidStateTransition(
            f"Blood request {request_id} is {current.status.value}",
            current_status=current.status.value,
        )

    released = BulkResult()
    for unit_id in request.reserved_unit_ids:
        try:
            await release_unit(db, unit_id, user, now=now)
        except (InvalidStateTransition, NotFound) as e:
            released.fail(unit_id, e.message)
            continue
        released.succeeded.append(unit_id)

    await audit_log(
        db, AuditAction.CANCEL, AuditModule.REQUESTS, user,
        record_id=request_id, record_type="blood_request",
        old_values={"status": request.status.value}, new_values={"status": RequestStatus.CANCELLED.value},
        metadata={"released": released.succeeded},
        description=f"Cancelled blood request {request_id}",
    )
    logger.info("Cancelled request %s, released %d unit(s)", request_id, len(released.succeeded))
    return await get_request(db, request_id), released
