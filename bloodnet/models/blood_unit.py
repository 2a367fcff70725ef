from pydantic import Field, field_validator
from typing import List, Optional
import uuid
from .common import CamelModel, UTCDateTime, utcnow
from .enums import BloodGroup, RhFactor, DonationType, UnitStatus, DiscardReason, ExpiryTier

class StatusHistoryEntry(CamelModel):
    status: UnitStatus
    timestamp: UTCDateTime = Field(default_factory=utcnow)
    notes: Optional[str] = None
    performed_by: Optional[str] = None

class DispatchInfo(CamelModel):
    dispatched_to: str
    dispatched_at: UTCDateTime
    for_request: Optional[str] = None
    notes: Optional[str] = None

class UsageInfo(CamelModel):
    used_for: str
    used_at: UTCDateTime

class DiscardInfo(CamelModel):
    reason: DiscardReason
    discarded_at: UTCDateTime
    notes: Optional[str] = None

class BloodUnit(CamelModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    donor: str
    blood_bank: str
    blood_type: BloodGroup
    rh_factor: RhFactor
    donation_type: DonationType = DonationType.WHOLE_BLOOD
    collection_date: UTCDateTime
    expiry_date: UTCDateTime
    volume_collected: Optional[float] = None
    bag_number: Optional[str] = None
    notes: Optional[str] = None
    status: UnitStatus = UnitStatus.COLLECTED
    reserved_for_request: Optional[str] = None
    reserved_at: Optional[UTCDateTime] = None
    dispatch_info: Optional[DispatchInfo] = None
    usage_info: Optional[UsageInfo] = None
    discard_info: Optional[DiscardInfo] = None
    status_history: List[StatusHistoryEntry] = []
    created_at: UTCDateTime = Field(default_factory=utcnow)
    updated_at: UTCDateTime = Field(default_factory=utcnow)

    @property
    def full_type(self) -> str:
        return f"{self.blood_type.value}{self.rh_factor.value}"

class BloodUnitCreate(CamelModel):
    donor: str
    blood_bank: str
    blood_type: BloodGroup
    rh_factor: RhFactor
    donation_type: DonationType = DonationType.WHOLE_BLOOD
    collection_date: UTCDateTime
    volume_collected: Optional[float] = Field(default=None, gt=0)
    bag_number: Optional[str] = None
    notes: Optional[str] = None

class ExpiryAssessment(CamelModel):
    days_until_expiry: int
    tier: ExpiryTier
    priority_score: int
    progress: float
    is_expired: bool

# ============ TRANSITION PAYLOADS ============

class StageUpdate(CamelModel):
    notes: Optional[str] = None

class DispatchBloodUnit(CamelModel):
    dispatched_to: str = Field(min_length=1)
    dispatched_at: Optional[UTCDateTime] = None
    for_request: Optional[str] = None
    notes: Optional[str] = None

class UseBloodUnit(CamelModel):
    used_for: str = Field(min_length=1)
    used_at: Optional[UTCDateTime] = None

class DiscardBloodUnit(CamelModel):
    discard_reason: DiscardReason
    discarded_at: Optional[UTCDateTime] = None
    notes: Optional[str] = None

class ExpireBloodUnit(CamelModel):
    expired_at: Optional[UTCDateTime] = None

class BulkDiscard(CamelModel):
    donation_ids: List[str] = Field(min_length=1)
    discard_reason: DiscardReason = DiscardReason.EXPIRED
    notes: Optional[str] = None

    @field_validator("donation_ids")
    @classmethod
    def _dedupe(cls, value: List[str]) -> List[str]:
        return list(dict.fromkeys(value))

class UpdateBloodUnitStatus(CamelModel):
    """Generic status change; the action is derived from ``unit_status``."""
    unit_status: UnitStatus
    dispatched_to: Optional[str] = None
    dispatched_at: Optional[UTCDateTime] = None
    for_request: Optional[str] = None
    used_for: Optional[str] = None
    used_at: Optional[UTCDateTime] = None
    discard_reason: Optional[DiscardReason] = None
    discarded_at: Optional[UTCDateTime] = None
    reserved_for_request: Optional[str] = None
    notes: Optional[str] = None
