from fastapi import APIRouter, Depends
from datetime import timedelta
from motor.motor_asyncio import AsyncIOMotorDatabase

from .. import __version__
from ..config import EXPIRING_SOON_DAYS
from ..database import get_database
from ..middleware import Allow, Operation
from ..models import ApprovalStatus, RequestContext, UnitStatus, isoformat, utcnow
from ..models.request import OPEN_REQUEST_STATUSES

router = APIRouter(tags=["Dashboard & Utilities"])

@router.get("/")
async def root():
    return {"status": "healthy", "service": "BloodNet API", "version": __version__}

@router.get("/dashboard/stats")
async def get_dashboard_stats(
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.VIEW_DASHBOARD))
):
    now = utcnow()

    status_pipeline = [
        {"$group": {"_id": "$status", "count": {"$sum": 1}}}
    ]
    by_status = {item["_id"]: item["count"]
                 for item in await db.blood_units.aggregate(status_pipeline).to_list(20)}

    inventory_pipeline = [
        {"$match": {"status": UnitStatus.IN_INVENTORY.value, "expiry_date": {"$gt": isoformat(now)}}},
        {"$group": {"_id": {"bloodType": "$blood_type", "rhFactor": "$rh_factor"}, "count": {"$sum": 1}}}
    ]
    inventory_by_group = await db.blood_units.aggregate(inventory_pipeline).to_list(20)

    expiring_count = await db.blood_units.count_documents({
        "status": {"$in": [UnitStatus.IN_INVENTORY.value, UnitStatus.RESERVED.value]},
        "expiry_date": {"$gte": isoformat(now), "$lte": isoformat(now + timedelta(days=EXPIRING_SOON_DAYS))}
    })

    open_requests = await db.blood_requests.count_documents({
        "status": {"$in": [s.value for s in OPEN_REQUEST_STATUSES]}
    })
    pending_applications = await db.applications.count_documents({
        "approval_status": ApprovalStatus.PENDING.value
    })

    return {
        "totalUnits": sum(by_status.values()),
        "availableUnits": by_status.get(UnitStatus.IN_INVENTORY.value, 0),
        "reservedUnits": by_status.get(UnitStatus.RESERVED.value, 0),
        "dispatchedUnits": by_status.get(UnitStatus.DISPATCHED.value, 0),
        "usedUnits": by_status.get(UnitStatus.USED.value, 0),
        "expiredUnits": by_status.get(UnitStatus.EXPIRED.value, 0),
        "discardedUnits": by_status.get(UnitStatus.DISCARDED.value, 0),
        "unitsByStatus": {s.value: by_status.get(s.value, 0) for s in UnitStatus},
        "inventoryByBloodGroup": {
            f"{item['_id']['bloodType']}{item['_id']['rhFactor']}": item["count"] for item in inventory_by_group
        },
        "expiringWithin7Days": expiring_count,
        "openRequests": open_requests,
        "pendingApplications": pending_applications,
    }
