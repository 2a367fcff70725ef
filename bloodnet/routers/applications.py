from fastapi import APIRouter, Depends
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..database import get_database
from ..middleware import Allow, Operation
from ..models import (
    Application, ApplicationCreate, ApplicationReview, ApprovalStatus, RejectApplication, RequestContext
)
from ..services import applications, invalidation

router = APIRouter(prefix="/applications", tags=["Applications"])
admin_router = APIRouter(prefix="/admin/applications", tags=["Applications"])


def _review_response(application: Application) -> dict:
    data = application.model_dump(by_alias=True, mode="json")
    data["invalidates"] = invalidation.APPLICATION_REVIEW
    return data


@router.post("", status_code=201)
async def submit_application(payload: ApplicationCreate, db: AsyncIOMotorDatabase = Depends(get_database)):
    application = await applications.submit(db, payload)
    return {
        "status": "success",
        "message": "Application submitted. An administrator will review it shortly.",
        "application": application.model_dump(by_alias=True, mode="json"),
    }

@router.get("")
async def get_applications(
    status: Optional[ApprovalStatus] = None,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.VIEW_APPLICATIONS))
):
    items = await applications.list_applications(db, status)
    return [a.model_dump(by_alias=True, mode="json") for a in items]

@router.get("/{application_id}")
async def get_application(
    application_id: str,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.VIEW_APPLICATIONS))
):
    application = await applications.get_application(db, application_id)
    return application.model_dump(by_alias=True, mode="json")

@router.patch("/{application_id}/review")
async def review_application(
    application_id: str,
    payload: ApplicationReview,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.REVIEW_APPLICATIONS))
):
    application = await applications.review(db, application_id, payload.status, current_user,
                                            rejection_reason=payload.rejection_reason)
    return _review_response(application)

@admin_router.get("")
async def get_admin_applications(
    status: Optional[ApprovalStatus] = None,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.VIEW_APPLICATIONS))
):
    return await get_applications(status, db, current_user)

@admin_router.post("/{application_id}/approve")
async def approve_application(
    application_id: str,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.REVIEW_APPLICATIONS))
):
    application = await applications.review(db, application_id, ApprovalStatus.APPROVED, current_user)
    return _review_response(application)

@admin_router.post("/{application_id}/reject")
async def reject_application(
    application_id: str,
    payload: RejectApplication,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: RequestContext = Depends(Allow(Operation.REVIEW_APPLICATIONS))
):
    application = await applications.review(db, application_id, ApprovalStatus.REJECTED, current_user,
                                            rejection_reason=payload.reason)
    return _review_response(application)
