"""
Blood unit registry
Registration, lookup and status changes for individual blood units. Every
status change goes through ``transitions.plan_transition`` and is persisted
with a status-guarded update so concurrent operators cannot both succeed.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from ..errors import InvalidStateTransition, NotFound
from ..models import (
    BloodUnit, BloodUnitCreate, DiscardInfo, DiscardReason, DispatchInfo, RequestContext,
    UnitAction, UnitStatus, UsageInfo, isoformat, utcnow, as_utc
)
from ..models.audit import AuditAction, AuditModule
from . import expiry
from .audit_service import audit_transition, audit_log
from .pagination import clamp_limit, find_page, slice_page
from .transitions import AVAILABLE_STATUSES, build_update, plan_transition

logger = logging.getLogger(__name__)

AUDIT_ACTIONS = {
    UnitAction.RESERVE: AuditAction.RESERVE,
    UnitAction.RELEASE: AuditAction.RELEASE,
    UnitAction.DISPATCH: AuditAction.DISPATCH,
    UnitAction.USE: AuditAction.USE,
    UnitAction.EXPIRE: AuditAction.EXPIRE,
    UnitAction.DISCARD: AuditAction.DISCARD,
}

STAGE_ACTIONS = (UnitAction.TEST, UnitAction.PROCESS, UnitAction.STOCK)


@dataclass
class TransitionResult:
    unit: BloodUnit
    previous_status: UnitStatus
    changed: bool = True


@dataclass
class BulkResult:
    succeeded: List[str] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)

    def fail(self, unit_id: str, reason: str):
        self.failed.append({"id": unit_id, "reason": reason})


def serialize_unit(unit: BloodUnit, now: Optional[datetime] = None) -> dict:
    data = unit.model_dump(by_alias=True, mode="json")
    data["expiry"] = expiry.assess(unit, now).model_dump(by_alias=True, mode="json")
    return data


# ============ REGISTRY ============

async def register(db: AsyncIOMotorDatabase, payload: BloodUnitCreate,
                   user: Optional[RequestContext] = None) -> BloodUnit:
    unit = BloodUnit(
        **payload.model_dump(),
        expiry_date=expiry.compute_expiry_date(payload.collection_date, payload.donation_type),
        status=UnitStatus.COLLECTED,
        status_history=[{
            "status": UnitStatus.COLLECTED,
            "performed_by": user.user_id if user else None,
            "notes": "Registered at collection",
        }],
    )
    await db.blood_units.insert_one(unit.model_dump(mode="json"))
    await audit_log(
        db, AuditAction.CREATE, AuditModule.BLOOD_UNITS, user,
        record_id=unit.id, record_type="blood_unit",
        new_values={"blood_type": unit.full_type, "donation_type": unit.donation_type.value},
        description=f"Registered blood unit {unit.id}",
    )
    logger.info("Registered %s %s unit %s (expires %s)",
                unit.full_type, unit.donation_type.value, unit.id, isoformat(unit.expiry_date))
    return unit


async def find_unit(db: AsyncIOMotorDatabase, unit_id: str) -> Optional[BloodUnit]:
    doc = await db.blood_units.find_one({"id": unit_id}, {"_id": 0})
    return BloodUnit.model_validate(doc) if doc else None


async def get_unit(db: AsyncIOMotorDatabase, unit_id: str) -> BloodUnit:
    unit = await find_unit(db, unit_id)
    if unit is None:
        raise NotFound(f"Blood unit {unit_id} not found", field="id", value=unit_id)
    return unit


def build_filters(status=None, blood_type=None, rh_factor=None, donation_type=None, blood_bank=None) -> dict:
    query = {}
    if status:
        query["status"] = UnitStatus(status).value
    if blood_type:
        query["blood_type"] = getattr(blood_type, "value", blood_type)
    if rh_factor:
        query["rh_factor"] = getattr(rh_factor, "value", rh_factor)
    if donation_type:
        query["donation_type"] = getattr(donation_type, "value", donation_type)
    if blood_bank:
        query["blood_bank"] = blood_bank
    return query


async def list_units(db: AsyncIOMotorDatabase, query: dict, page: int = 1, limit: Optional[int] = None):
    return await find_page(db.blood_units, query, page, limit,
                           [("created_at", -1), ("id", 1)], BloodUnit)


async def load_units(db: AsyncIOMotorDatabase, query: dict) -> List[BloodUnit]:
    docs = await db.blood_units.find(query, {"_id": 0}).to_list(None)
    return [BloodUnit.model_validate(d) for d in docs]


async def get_tracking(db: AsyncIOMotorDatabase, unit_id: str, now: Optional[datetime] = None) -> dict:
    unit = await get_unit(db, unit_id)
    assessment = expiry.assess(unit, now)
    return {
        "donationId": unit.id,
        "currentStatus": unit.status.value,
        "bloodType": unit.full_type,
        "donationType": unit.donation_type.value,
        "statusHistory": [h.model_dump(by_alias=True, mode="json") for h in unit.status_history],
        "reservedForRequest": unit.reserved_for_request,
        "dispatchInfo": unit.dispatch_info.model_dump(by_alias=True, mode="json") if unit.dispatch_info else None,
        "usageInfo": unit.usage_info.model_dump(by_alias=True, mode="json") if unit.usage_info else None,
        "discardInfo": unit.discard_info.model_dump(by_alias=True, mode="json") if unit.discard_info else None,
        "expiryDate": isoformat(unit.expiry_date),
        "isExpired": assessment.is_expired,
        "daysUntilExpiry": assessment.days_until_expiry,
        "expiryTier": assessment.tier.value,
        "priorityScore": assessment.priority_score,
    }


# ============ TRANSITIONS ============

async def apply_transition(
    db: AsyncIOMotorDatabase,
    unit_id: str,
    action: UnitAction,
    user: Optional[RequestContext] = None,
    fields: Optional[dict] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
    precondition: Optional[Callable[[BloodUnit], None]] = None,
) -> TransitionResult:
    """
    Move one unit through ``action``.

    ``precondition`` may raise to veto the change after the status check.
    Idempotent actions on a unit already in their target status return
    ``changed=False`` without writing.
    """
    now = now or utcnow()
    unit = await get_unit(db, unit_id)
    rule = plan_transition(unit.status, action)
    if rule is None:
        return TransitionResult(unit=unit, previous_status=unit.status, changed=False)
    if precondition is not None:
        precondition(unit)

    update = build_update(rule, fields, user.user_id if user else None, notes, now)
    result = await db.blood_units.update_one(
        {"id": unit_id, "status": {"$in": sorted(s.value for s in rule.sources)}},
        update,
    )
    if result.matched_count == 0:
        # Another writer changed the unit between our read and the update
        current = await get_unit(db, unit_id)
        if plan_transition(current.status, action) is None:
            return TransitionResult(unit=current, previous_status=current.status, changed=False)
        logger.warning("Concurrent update on unit %s while applying %s", unit_id, rule.action.value)
        raise InvalidStateTransition(
            f"Blood unit {unit_id} was modified concurrently (now '{current.status.value}'); refresh and retry",
            current_status=current.status.value,
            action=rule.action.value,
        )

    if unit.reserved_for_request and rule.target != UnitStatus.RESERVED:
        await db.blood_requests.update_one(
            {"id": unit.reserved_for_request},
            {"$pull": {"reserved_unit_ids": unit_id}, "$set": {"updated_at": isoformat(now)}},
        )

    updated = await get_unit(db, unit_id)
    await audit_transition(db, AUDIT_ACTIONS.get(rule.action, AuditAction.TRANSITION), user,
                           unit_id, unit.status.value, updated.status.value)
    logger.info("Unit %s: %s -> %s", unit_id, unit.status.value, updated.status.value)
    return TransitionResult(unit=updated, previous_status=unit.status)


async def advance(db: AsyncIOMotorDatabase, unit_id: str, action: UnitAction,
                  user: Optional[RequestContext] = None, notes: Optional[str] = None) -> TransitionResult:
    """Intake steps: collected -> tested -> processed -> in_inventory."""
    if UnitAction(action) not in STAGE_ACTIONS:
        raise ValueError(f"{action} is not an intake step")
    return await apply_transition(db, unit_id, action, user, notes=notes)


async def dispatch_unit(db: AsyncIOMotorDatabase, unit_id: str, dispatched_to: str,
                        user: Optional[RequestContext] = None, dispatched_at: Optional[datetime] = None,
                        for_request: Optional[str] = None, notes: Optional[str] = None,
                        now: Optional[datetime] = None) -> TransitionResult:
    now = now or utcnow()
    info = DispatchInfo(dispatched_to=dispatched_to, dispatched_at=dispatched_at or now,
                        for_request=for_request, notes=notes)
    return await apply_transition(db, unit_id, UnitAction.DISPATCH, user,
                                  fields={"dispatch_info": info.model_dump(mode="json")},
                                  notes=f"Dispatched to {dispatched_to}", now=now)


async def use_unit(db: AsyncIOMotorDatabase, unit_id: str, used_for: str,
                   user: Optional[RequestContext] = None, used_at: Optional[datetime] = None,
                   now: Optional[datetime] = None) -> TransitionResult:
    now = now or utcnow()
    info = UsageInfo(used_for=used_for, used_at=used_at or now)
    return await apply_transition(db, unit_id, UnitAction.USE, user,
                                  fields={"usage_info": info.model_dump(mode="json")},
                                  notes=used_for, now=now)


async def discard_unit(db: AsyncIOMotorDatabase, unit_id: str, reason: DiscardReason,
                       user: Optional[RequestContext] = None, discarded_at: Optional[datetime] = None,
                       notes: Optional[str] = None, now: Optional[datetime] = None) -> TransitionResult:
    now = now or utcnow()
    info = DiscardInfo(reason=reason, discarded_at=discarded_at or now, notes=notes)
    return await apply_transition(db, unit_id, UnitAction.DISCARD, user,
                                  fields={"discard_info": info.model_dump(mode="json")},
                                  notes=f"Discarded: {DiscardReason(reason).value}", now=now)


async def expire_unit(db: AsyncIOMotorDatabase, unit_id: str, user: Optional[RequestContext] = None,
                      expired_at: Optional[datetime] = None, now: Optional[datetime] = None) -> TransitionResult:
    """Mark a unit expired. Only allowed once the server clock is past its expiry date."""
    now = now or utcnow()

    def _must_be_past_expiry(unit: BloodUnit):
        if not expiry.is_past_expiry(unit, now):
            raise InvalidStateTransition(
                f"Blood unit {unit.id} has not reached its expiry date ({isoformat(unit.expiry_date)})",
                current_status=unit.status.value,
                action=UnitAction.EXPIRE.value,
            )

    notes = f"Expired at {isoformat(expired_at)}" if expired_at else "Expired"
    return await apply_transition(db, unit_id, UnitAction.EXPIRE, user, notes=notes,
                                  now=now, precondition=_must_be_past_expiry)


async def bulk_discard(db: AsyncIOMotorDatabase, unit_ids: List[str], reason: DiscardReason,
                       user: Optional[RequestContext] = None, notes: Optional[str] = None,
                       now: Optional[datetime] = None) -> BulkResult:
    """Discard each unit independently; failures are reported per id."""
    now = now or utcnow()
    result = BulkResult()
    for unit_id in unit_ids:
        try:
            await discard_unit(db, unit_id, reason, user, notes=notes, now=now)
        except (InvalidStateTransition, NotFound) as e:
            logger.warning("Bulk discard skipped unit %s: %s", unit_id, e.message)
            result.fail(unit_id, e.message)
            continue
        result.succeeded.append(unit_id)

    await audit_log(
        db, AuditAction.BULK_DISCARD, AuditModule.BLOOD_UNITS, user,
        record_type="blood_unit", description=f"Bulk discard ({DiscardReason(reason).value})",
        metadata={"discarded": result.succeeded, "failed": result.failed},
    )
    logger.info("Bulk discard: %d discarded, %d failed", len(result.succeeded), len(result.failed))
    return result


async def process_expired(db: AsyncIOMotorDatabase, user: Optional[RequestContext] = None,
                          now: Optional[datetime] = None) -> BulkResult:
    """Discard every available unit whose expiry date has passed."""
    now = now or utcnow()
    candidates = await load_units(db, {
        "status": {"$in": sorted(s.value for s in AVAILABLE_STATUSES)},
        "expiry_date": {"$lt": isoformat(now)},
    })
    result = BulkResult()
    for unit in sorted(candidates, key=lambda u: u.id):
        try:
            outcome = await discard_unit(db, unit.id, DiscardReason.EXPIRED, user,
                                         notes="Automatic expiry processing", now=now)
        except (InvalidStateTransition, NotFound) as e:
            result.fail(unit.id, e.message)
            continue
        if outcome.changed:
            result.succeeded.append(unit.id)

    await audit_log(
        db, AuditAction.PROCESS_EXPIRED, AuditModule.BLOOD_UNITS, user,
        record_type="blood_unit", description="Processed expired units",
        metadata={"processed": result.succeeded, "failed": result.failed},
    )
    logger.info("Processed %d expired units", len(result.succeeded))
    return result


# ============ EXPIRY VIEWS ============

async def list_expired(db: AsyncIOMotorDatabase, page: int = 1, limit: Optional[int] = None,
                       now: Optional[datetime] = None, extra: Optional[dict] = None):
    now = now or utcnow()
    query = dict(extra or {})
    query.update({
        "status": {"$in": [UnitStatus.IN_INVENTORY.value, UnitStatus.RESERVED.value, UnitStatus.EXPIRED.value]},
        "expiry_date": {"$lt": isoformat(now)},
    })
    units = expiry.sort_by_urgency(await load_units(db, query), now)
    return slice_page(units, max(page, 1), clamp_limit(limit))


async def list_expiring_soon(db: AsyncIOMotorDatabase, days: int, page: int = 1, limit: Optional[int] = None,
                             now: Optional[datetime] = None, extra: Optional[dict] = None):
    now = now or utcnow()
    query = dict(extra or {})
    query.update({
        "status": {"$in": sorted(s.value for s in AVAILABLE_STATUSES)},
        "expiry_date": {"$gte": isoformat(now), "$lte": isoformat(as_utc(now) + timedelta(days=days))},
    })
    units = expiry.sort_by_urgency(await load_units(db, query), now)
    return slice_page(units, max(page, 1), clamp_limit(limit))
