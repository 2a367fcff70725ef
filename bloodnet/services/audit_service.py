"""
Audit trail
Every successful mutation leaves one ``audit_logs`` record naming the caller,
the affected record and the values that changed.
"""
import logging
from typing import Any, Optional

from fastapi import Request
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..models import RequestContext
from ..models.audit import AuditLog, AuditAction, AuditModule

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"
SENSITIVE_KEYS = frozenset({"password", "password_hash", "passwordhash", "token", "secret", "api_key"})


def redact(data: Any) -> Any:
    """Mask sensitive keys at any depth."""
    if isinstance(data, dict):
        return {k: REDACTED if str(k).lower() in SENSITIVE_KEYS else redact(v) for k, v in data.items()}
    if isinstance(data, list):
        return [redact(v) for v in data]
    return data


class AuditService:
    """Writes audit records; callers normally go through ``audit_log``."""

    @staticmethod
    def build(action: AuditAction, module: AuditModule, user: Optional[RequestContext] = None,
              request: Optional[Request] = None, old_values: Optional[dict] = None,
              new_values: Optional[dict] = None, **fields) -> AuditLog:
        actor = {}
        if user is not None:
            actor = {"user_id": user.user_id, "user_email": user.email, "user_role": user.role.value}
        if request is not None:
            actor.update(request_method=request.method, request_path=request.url.path)
        return AuditLog(
            action=action,
            module=module,
            old_values=redact(old_values) or None,
            new_values=redact(new_values) or None,
            **actor,
            **fields,
        )

    @staticmethod
    async def log(db: AsyncIOMotorDatabase, action: AuditAction, module: AuditModule,
                  user: Optional[RequestContext] = None, **kwargs) -> str:
        """
        Persist one audit record and return its id.

        ``kwargs`` are ``AuditLog`` fields (record_id, record_type,
        description, old_values, new_values, metadata) plus an optional
        ``request`` to capture the HTTP method and path.
        """
        entry = AuditService.build(action, module, user, **kwargs)
        await db.audit_logs.insert_one(entry.model_dump(mode="json"))
        logger.debug("Audit %s.%s %s=%s by %s", module.value, action.value,
                     entry.record_type, entry.record_id, entry.user_id or "anonymous")
        return entry.id


async def audit_log(db: AsyncIOMotorDatabase, action: AuditAction, module: AuditModule,
                    user: Optional[RequestContext] = None, **kwargs) -> str:
    return await AuditService.log(db, action, module, user, **kwargs)


async def audit_transition(db: AsyncIOMotorDatabase, action: AuditAction, user: Optional[RequestContext],
                           unit_id: str, old_status: Optional[str], new_status: str, **kwargs) -> str:
    """Record a blood unit status change."""
    return await AuditService.log(
        db, action, AuditModule.BLOOD_UNITS, user,
        record_id=unit_id, record_type="blood_unit",
        old_values={"status": old_status}, new_values={"status": new_status},
        description=f"Blood unit {unit_id}: {old_status} -> {new_status}",
        **kwargs
    )
