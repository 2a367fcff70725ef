from fastapi import APIRouter, Depends, Query
from typing import Optional
from datetime import datetime, timedelta
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..database import get_database
from ..errors import ValidationFailed
from ..middleware import Allow, Operation
from ..models import DiscardReason, RequestContext, UnitStatus, as_utc, isoformat, utcnow
from ..services.transitions import AVAILABLE_STATUSES

router = APIRouter(prefix="/reports", tags=["Reports"])

@router.get("/expiry-analysis")
async def get_expiry_analysis(
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.VIEW_REPORTS))
):
    now = utcnow()
    available = [s.value for s in AVAILABLE_STATUSES]

    async def _expiring_within(days: int) -> int:
        return await db.blood_units.count_documents({
            "status": {"$in": available},
            "expiry_date": {"$gte": isoformat(now), "$lte": isoformat(now + timedelta(days=days))}
        })

    overdue = await db.blood_units.count_documents({
        "status": {"$in": available},
        "expiry_date": {"$lt": isoformat(now)}
    })
    expired = await db.blood_units.count_documents({"status": UnitStatus.EXPIRED.value})

    by_group_pipeline = [
        {"$match": {"status": {"$in": available},
                    "expiry_date": {"$gte": isoformat(now), "$lte": isoformat(now + timedelta(days=7))}}},
        {"$group": {"_id": {"bloodType": "$blood_type", "rhFactor": "$rh_factor"}, "count": {"$sum": 1}}}
    ]
    by_group = await db.blood_units.aggregate(by_group_pipeline).to_list(20)

    return {
        "reportDate": isoformat(now),
        "expired": expired,
        "pastExpiryNotProcessed": overdue,
        "expiringWithin7Days": await _expiring_within(7),
        "expiringWithin30Days": await _expiring_within(30),
        "expiringWithin7DaysByBloodGroup": {
            f"{item['_id']['bloodType']}{item['_id']['rhFactor']}": item["count"] for item in by_group
        },
    }

@router.get("/discard-analysis")
async def get_discard_analysis(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.VIEW_REPORTS))
):
    if start_date and end_date and as_utc(start_date) > as_utc(end_date):
        raise ValidationFailed("startDate must not be after endDate", field="startDate", value=str(start_date))

    match = {"status": UnitStatus.DISCARDED.value}
    window = {}
    if start_date:
        window["$gte"] = isoformat(start_date)
    if end_date:
        window["$lte"] = isoformat(end_date)
    if window:
        match["discard_info.discarded_at"] = window

    pipeline = [
        {"$match": match},
        {"$group": {"_id": "$discard_info.reason", "count": {"$sum": 1}}}
    ]
    results = await db.blood_units.aggregate(pipeline).to_list(20)
    by_reason = {reason.value: 0 for reason in DiscardReason}
    for item in results:
        if item["_id"]:
            by_reason[item["_id"]] = item["count"]

    return {
        "startDate": isoformat(start_date) if start_date else None,
        "endDate": isoformat(end_date) if end_date else None,
        "totalDiscarded": sum(by_reason.values()),
        "byReason": by_reason,
    }
