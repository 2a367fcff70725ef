from pydantic import Field, field_validator
from typing import List, Optional
import uuid
from .common import CamelModel, UTCDateTime, utcnow
from .enums import BloodGroup, RhFactor, DonationType, RequestStatus, RequestUrgency

OPEN_REQUEST_STATUSES = (RequestStatus.PENDING, RequestStatus.PARTIALLY_FULFILLED)

class InstitutionRef(CamelModel):
    id: str
    name: Optional[str] = None

def _check_coordinates(value: Optional[List[float]]) -> Optional[List[float]]:
    if value is None:
        return value
    if len(value) != 2:
        raise ValueError("coordinates must be a [longitude, latitude] pair")
    longitude, latitude = value
    if not -180 <= longitude <= 180:
        raise ValueError("longitude must be between -180 and 180")
    if not -90 <= latitude <= 90:
        raise ValueError("latitude must be between -90 and 90")
    return value

class BloodRequest(CamelModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    institution: InstitutionRef
    blood_type: BloodGroup
    rh_factor: RhFactor
    quantity: int = Field(ge=1)
    urgency: RequestUrgency = RequestUrgency.MEDIUM
    status: RequestStatus = RequestStatus.PENDING
    required_by: UTCDateTime
    donation_type: Optional[DonationType] = None
    patient_condition: Optional[str] = None
    notes: Optional[str] = None
    coordinates: Optional[List[float]] = None
    reserved_unit_ids: List[str] = []
    dispatched_unit_ids: List[str] = []
    requested_by: Optional[str] = None
    created_at: UTCDateTime = Field(default_factory=utcnow)
    updated_at: UTCDateTime = Field(default_factory=utcnow)

    @property
    def full_type(self) -> str:
        return f"{self.blood_type.value}{self.rh_factor.value}"

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_REQUEST_STATUSES

class BloodRequestCreate(CamelModel):
    institution: InstitutionRef
    blood_type: BloodGroup
    rh_factor: RhFactor
    quantity: int = Field(ge=1)
    urgency: RequestUrgency = RequestUrgency.MEDIUM
    required_by: UTCDateTime
    donation_type: Optional[DonationType] = None
    patient_condition: Optional[str] = None
    notes: Optional[str] = None
    coordinates: Optional[List[float]] = None

    @field_validator("coordinates")
    @classmethod
    def _validate_coordinates(cls, value: Optional[List[float]]) -> Optional[List[float]]:
        return _check_coordinates(value)

class FulfillRequest(CamelModel):
    unit_ids: List[str] = Field(min_length=1)
    dispatched_at: Optional[UTCDateTime] = None
    notes: Optional[str] = None
