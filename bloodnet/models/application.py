from pydantic import Field, field_validator, model_validator
from typing import Any, Dict, Optional
import uuid
from .common import CamelModel, UTCDateTime, utcnow
from .enums import ApprovalStatus, UserRole

APPLICANT_ROLES = (UserRole.BLOOD_BANK, UserRole.MEDICAL_INSTITUTION)

class Application(CamelModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    email: str
    role: UserRole
    profile_data: Dict[str, Any] = {}
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    rejection_reason: Optional[str] = None
    user_id: str
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[UTCDateTime] = None
    created_at: UTCDateTime = Field(default_factory=utcnow)

class ApplicationCreate(CamelModel):
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    # bcrypt only looks at the first 72 bytes
    password: str = Field(min_length=8, max_length=72)
    role: UserRole
    profile_data: Dict[str, Any] = {}

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("role")
    @classmethod
    def _applicant_role(cls, value: UserRole) -> UserRole:
        if value not in APPLICANT_ROLES:
            raise ValueError("only blood_bank and medical_institution accounts apply for approval")
        return value

class ApplicationReview(CamelModel):
    status: ApprovalStatus
    rejection_reason: Optional[str] = None

    @model_validator(mode="after")
    def _check_decision(self):
        if self.status == ApprovalStatus.PENDING:
            raise ValueError("status must be approved or rejected")
        if self.status == ApprovalStatus.REJECTED:
            if not self.rejection_reason or not self.rejection_reason.strip():
                raise ValueError("rejectionReason is required when rejecting an application")
            self.rejection_reason = self.rejection_reason.strip()
        return self

class RejectApplication(CamelModel):
    reason: str = Field(min_length=1)
