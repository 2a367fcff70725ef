"""
Expiry classification
Days-to-expiry, urgency tiers and sort priority for blood units.
"""
import math
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from ..models import BloodUnit, DonationType, ExpiryAssessment, ExpiryTier, as_utc, utcnow

SHELF_LIFE_DAYS = {
    DonationType.WHOLE_BLOOD: 42,
    DonationType.PLASMA: 365,
    DonationType.PLATELETS: 5,
    DonationType.RED_BLOOD_CELLS: 42,
}
DEFAULT_SHELF_LIFE_DAYS = 42

SECONDS_PER_DAY = 24 * 60 * 60


def shelf_life_days(donation_type: DonationType) -> int:
    try:
        return SHELF_LIFE_DAYS[DonationType(donation_type)]
    except ValueError:
        return DEFAULT_SHELF_LIFE_DAYS


def compute_expiry_date(collection_date: datetime, donation_type: DonationType) -> datetime:
    return as_utc(collection_date) + timedelta(days=shelf_life_days(donation_type))


def days_until_expiry(expiry_date: datetime, now: Optional[datetime] = None) -> int:
    now = as_utc(now) if now else utcnow()
    delta = (as_utc(expiry_date) - now).total_seconds()
    return math.ceil(delta / SECONDS_PER_DAY)


def classify(days: int) -> ExpiryTier:
    if days < 0:
        return ExpiryTier.EXPIRED
    if days == 0:
        return ExpiryTier.TODAY
    if days == 1:
        return ExpiryTier.TOMORROW
    if days <= 3:
        return ExpiryTier.CRITICAL
    if days <= 7:
        return ExpiryTier.WARNING
    return ExpiryTier.NORMAL


def priority_score(days: Optional[int]) -> int:
    """Higher is more urgent; non-increasing as ``days`` grows."""
    if days is None:
        return 0
    if days < 0:
        return 1000
    if days <= 1:
        return 100
    if days <= 3:
        return 50
    if days <= 7:
        return 20
    return max(0, 10 - days)


def expiry_progress(donation_type: DonationType, days: int) -> float:
    """Share of the shelf life already used, as a 0-100 percentage."""
    shelf = shelf_life_days(donation_type)
    return max(0.0, min(100.0, (shelf - days) / shelf * 100))


def assess(unit: BloodUnit, now: Optional[datetime] = None) -> ExpiryAssessment:
    days = days_until_expiry(unit.expiry_date, now)
    return ExpiryAssessment(
        days_until_expiry=days,
        tier=classify(days),
        priority_score=priority_score(days),
        progress=round(expiry_progress(unit.donation_type, days), 1),
        is_expired=days < 0,
    )


def is_past_expiry(unit: BloodUnit, now: Optional[datetime] = None) -> bool:
    now = as_utc(now) if now else utcnow()
    return unit.expiry_date < now


def sort_by_urgency(units: Iterable[BloodUnit], now: Optional[datetime] = None) -> List[BloodUnit]:
    """Most urgent first; ties broken by unit id ascending."""
    now = as_utc(now) if now else utcnow()
    return sorted(
        units,
        key=lambda u: (-priority_score(days_until_expiry(u.expiry_date, now)), u.id),
    )
