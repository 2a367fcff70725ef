from enum import Enum

class UserRole(str, Enum):
    DONOR = "donor"
    HOSPITAL = "hospital"
    BLOOD_BANK = "blood_bank"
    MEDICAL_INSTITUTION = "medical_institution"
    ADMIN = "admin"

class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class BloodGroup(str, Enum):
    A = "A"
    B = "B"
    AB = "AB"
    O = "O"

class RhFactor(str, Enum):
    POSITIVE = "+"
    NEGATIVE = "-"

class DonationType(str, Enum):
    WHOLE_BLOOD = "whole_blood"
    PLASMA = "plasma"
    PLATELETS = "platelets"
    RED_BLOOD_CELLS = "red_blood_cells"

class UnitStatus(str, Enum):
    COLLECTED = "collected"
    TESTED = "tested"
    PROCESSED = "processed"
    IN_INVENTORY = "in_inventory"
    RESERVED = "reserved"
    DISPATCHED = "dispatched"
    USED = "used"
    EXPIRED = "expired"
    DISCARDED = "discarded"

class UnitAction(str, Enum):
    TEST = "test"
    PROCESS = "process"
    STOCK = "stock"
    RESERVE = "reserve"
    RELEASE = "release"
    DISPATCH = "dispatch"
    USE = "use"
    EXPIRE = "expire"
    DISCARD = "discard"

class DiscardReason(str, Enum):
    EXPIRED = "expired"
    CONTAMINATED = "contaminated"
    QUALITY_CONTROL = "quality_control"
    STORAGE_FAILURE = "storage_failure"
    DAMAGED_CONTAINER = "damaged_container"
    OTHER = "other"

class RequestStatus(str, Enum):
    PENDING = "pending"
    PARTIALLY_FULFILLED = "partially_fulfilled"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"

class RequestUrgency(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

class ExpiryTier(str, Enum):
    EXPIRED = "expired"
    TODAY = "today"
    TOMORROW = "tomorrow"
    CRITICAL = "critical"
    WARNING = "warning"
    NORMAL = "normal"
