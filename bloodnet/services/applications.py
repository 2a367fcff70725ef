"""
Organization applications
Self-service onboarding for blood banks and medical institutions, gated by an
admin decision.
"""
import logging
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from ..errors import Conflict, InvalidStateTransition, NotFound, ValidationFailed
from ..models import (
    Application, ApplicationCreate, ApprovalStatus, RequestContext, User, isoformat, utcnow
)
from ..models.audit import AuditAction, AuditModule
from .audit_service import audit_log
from .auth import hash_password

logger = logging.getLogger(__name__)


async def submit(db: AsyncIOMotorDatabase, payload: ApplicationCreate) -> Application:
    """
    Record an application and its inactive account.

    A rejected applicant may apply again; that creates a new application and
    puts the existing account back to pending.
    """
    open_application = await db.applications.find_one(
        {"email": payload.email,
         "approval_status": {"$in": [ApprovalStatus.PENDING.value, ApprovalStatus.APPROVED.value]}},
        {"_id": 0, "id": 1, "approval_status": 1},
    )
    if open_application:
        raise Conflict(
            f"An application for {payload.email} is already {open_application['approval_status']}",
            field="email", value=payload.email,
        )

    now = isoformat(utcnow())
    existing_user = await db.users.find_one({"email": payload.email}, {"_id": 0})
    if existing_user and existing_user.get("approval_status") != ApprovalStatus.REJECTED.value:
        raise Conflict(f"An account for {payload.email} already exists", field="email", value=payload.email)

    password_hash = hash_password(payload.password)
    if existing_user:
        user_id = existing_user["id"]
        await db.users.update_one(
            {"id": user_id},
            {"$set": {"password_hash": password_hash, "role": payload.role.value,
                      "approval_status": ApprovalStatus.PENDING.value, "is_active": False,
                      "updated_at": now},
             "$unset": {"rejection_reason": ""}},
        )
    else:
        user = User(email=payload.email, password_hash=password_hash, role=payload.role,
                    approval_status=ApprovalStatus.PENDING, is_active=False)
        await db.users.insert_one(user.model_dump(mode="json"))
        user_id = user.id

    application = Application(email=payload.email, role=payload.role,
                              profile_data=payload.profile_data, user_id=user_id)
    await db.applications.insert_one(application.model_dump(mode="json"))
    await audit_log(
        db, AuditAction.SUBMIT, AuditModule.APPLICATIONS, None,
        record_id=application.id, record_type="application",
        new_values={"email": application.email, "role": application.role.value},
        description=f"Application submitted by {application.email}",
    )
    logger.info("Application %s submitted by %s as %s", application.id, application.email, application.role.value)
    return application


async def get_application(db: AsyncIOMotorDatabase, application_id: str) -> Application:
    doc = await db.applications.find_one({"id": application_id}, {"_id": 0})
    if not doc:
        raise NotFound(f"Application {application_id} not found", field="id", value=application_id)
    return Application.model_validate(doc)


async def list_applications(db: AsyncIOMotorDatabase, status: Optional[ApprovalStatus] = None) -> List[Application]:
    query = {}
    if status:
        query["approval_status"] = ApprovalStatus(status).value
    docs = await db.applications.find(query, {"_id": 0}).sort([("created_at", -1), ("id", 1)]).to_list(1000)
    return [Application.model_validate(d) for d in docs]


async def review(db: AsyncIOMotorDatabase, application_id: str, decision: ApprovalStatus,
                 user: RequestContext, rejection_reason: Optional[str] = None) -> Application:
    """
    Approve or reject a pending application.

    Approving an approved application is a no-op. Every other decision on an
    already decided application raises ``InvalidStateTransition``.
    """
    decision = ApprovalStatus(decision)
    if decision == ApprovalStatus.PENDING:
        raise ValidationFailed("Decision must be approved or rejected", field="status", value=decision.value)
    if decision == ApprovalStatus.REJECTED and not (rejection_reason and rejection_reason.strip()):
        raise ValidationFailed("A rejection reason is required", field="rejectionReason")

    application = await get_application(db, application_id)
    if application.approval_status == ApprovalStatus.APPROVED and decision == ApprovalStatus.APPROVED:
        return application
    if application.approval_status != ApprovalStatus.PENDING:
        raise InvalidStateTransition(
            f"Application {application_id} was already {application.approval_status.value}",
            current_status=application.approval_status.value,
            action=decision.value,
        )

    now = isoformat(utcnow())
    changes = {"approval_status": decision.value, "reviewed_by": user.user_id, "reviewed_at": now}
    if decision == ApprovalStatus.REJECTED:
        changes["rejection_reason"] = rejection_reason.strip()

    result = await db.applications.update_one(
        {"id": application_id, "approval_status": ApprovalStatus.PENDING.value},
        {"$set": changes},
    )
    if result.matched_count == 0:
        # Decided by another admin in the meantime
        return await review(db, application_id, decision, user, rejection_reason)

    account = {"approval_status": decision.value, "is_active": decision == ApprovalStatus.APPROVED,
               "updated_at": now}
    if decision == ApprovalStatus.REJECTED:
        account["rejection_reason"] = changes["rejection_reason"]
    await db.users.update_one({"id": application.user_id}, {"$set": account})

    await audit_log(
        db, AuditAction.APPROVE if decision == ApprovalStatus.APPROVED else AuditAction.REJECT,
        AuditModule.APPLICATIONS, user,
        record_id=application_id, record_type="application",
        old_values={"approval_status": application.approval_status.value},
        new_values={"approval_status": decision.value, "rejection_reason": changes.get("rejection_reason")},
        description=f"Application {application_id} {decision.value}",
    )
    logger.info("Application %s %s by %s", application_id, decision.value, user.user_id)
    return await get_application(db, application_id)
