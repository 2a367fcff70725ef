"""
Audit records, one per successful mutation.
"""
from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum
import uuid
from .common import UTCDateTime, utcnow


class AuditAction(str, Enum):
    CREATE = "create"
    TRANSITION = "transition"
    RESERVE = "reserve"
    RELEASE = "release"
    DISPATCH = "dispatch"
    USE = "use"
    EXPIRE = "expire"
    DISCARD = "discard"
    BULK_DISCARD = "bulk_discard"
    PROCESS_EXPIRED = "process_expired"
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    FULFILL = "fulfill"
    CANCEL = "cancel"


class AuditModule(str, Enum):
    BLOOD_UNITS = "blood_units"
    REQUESTS = "requests"
    APPLICATIONS = "applications"


class AuditLog(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: AuditAction
    module: AuditModule
    record_id: Optional[str] = None
    record_type: Optional[str] = None  # blood_unit, blood_request or application
    description: Optional[str] = None
    old_values: Optional[dict] = None
    new_values: Optional[dict] = None
    metadata: Optional[dict] = None

    # None for public endpoints such as application submission
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    user_role: Optional[str] = None
    request_method: Optional[str] = None
    request_path: Optional[str] = None

    timestamp: UTCDateTime = Field(default_factory=utcnow)
