from pydantic import Field
from typing import List, Optional
import uuid
from .common import CamelModel, UTCDateTime, utcnow
from .enums import ApprovalStatus, UserRole

class User(CamelModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    email: str
    password_hash: str
    role: UserRole
    approval_status: ApprovalStatus = ApprovalStatus.APPROVED
    rejection_reason: Optional[str] = None
    is_active: bool = True
    created_at: UTCDateTime = Field(default_factory=utcnow)
    updated_at: UTCDateTime = Field(default_factory=utcnow)

class RequestContext(CamelModel):
    """Authenticated caller, built per request from the bearer token."""
    user_id: str
    email: Optional[str] = None
    role: UserRole
    approval_status: ApprovalStatus = ApprovalStatus.APPROVED
    profile_complete: bool = True

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

class Capabilities(CamelModel):
    role: UserRole
    approval_status: ApprovalStatus
    operations: List[str]
