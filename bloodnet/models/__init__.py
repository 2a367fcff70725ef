from .enums import (
    UserRole, ApprovalStatus, BloodGroup, RhFactor, DonationType, UnitStatus,
    UnitAction, DiscardReason, RequestStatus, RequestUrgency, ExpiryTier
)
from .common import CamelModel, Page, UTCDateTime, utcnow, isoformat, as_utc
from .user import User, RequestContext, Capabilities
from .blood_unit import (
    BloodUnit, BloodUnitCreate, StatusHistoryEntry, DispatchInfo, UsageInfo, DiscardInfo,
    ExpiryAssessment, StageUpdate, DispatchBloodUnit, UseBloodUnit, DiscardBloodUnit,
    ExpireBloodUnit, BulkDiscard, UpdateBloodUnitStatus
)
from .request import BloodRequest, BloodRequestCreate, InstitutionRef, FulfillRequest, OPEN_REQUEST_STATUSES
from .application import Application, ApplicationCreate, ApplicationReview, RejectApplication, APPLICANT_ROLES
from .audit import AuditLog, AuditAction, AuditModule
