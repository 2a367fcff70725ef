"""
Donor to recipient compatibility
Red cell ABO/Rh rules, unit eligibility and FEFO ranking for blood requests.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from ..models import BloodGroup, BloodRequest, BloodUnit, RhFactor, UnitStatus, as_utc, utcnow
from .expiry import days_until_expiry

# Recipient ABO group -> donor ABO groups it can receive red cells from
ABO_DONORS = {
    BloodGroup.O: frozenset({BloodGroup.O}),
    BloodGroup.A: frozenset({BloodGroup.A, BloodGroup.O}),
    BloodGroup.B: frozenset({BloodGroup.B, BloodGroup.O}),
    BloodGroup.AB: frozenset({BloodGroup.A, BloodGroup.B, BloodGroup.AB, BloodGroup.O}),
}

EXACT_MATCH_SCORE = 100
RH_CROSSOVER_SCORE = 80
ABO_CROSSOVER_SCORE = 60
UNIVERSAL_DONOR_SCORE = 50


def is_compatible(unit_type: BloodGroup, unit_rh: RhFactor,
                  request_type: BloodGroup, request_rh: RhFactor) -> bool:
    unit_type, request_type = BloodGroup(unit_type), BloodGroup(request_type)
    unit_rh, request_rh = RhFactor(unit_rh), RhFactor(request_rh)
    if unit_type not in ABO_DONORS[request_type]:
        return False
    return unit_rh == RhFactor.NEGATIVE or request_rh == RhFactor.POSITIVE


def compatibility_score(unit_type: BloodGroup, unit_rh: RhFactor,
                        request_type: BloodGroup, request_rh: RhFactor) -> int:
    """
    Rank a compatible unit for a request; 0 means incompatible.

    Exact matches rank highest. O- substitution for a non-O- request ranks
    lowest so universal donor stock is preserved.
    """
    if not is_compatible(unit_type, unit_rh, request_type, request_rh):
        return 0
    unit_type, request_type = BloodGroup(unit_type), BloodGroup(request_type)
    unit_rh, request_rh = RhFactor(unit_rh), RhFactor(request_rh)
    if unit_type == request_type:
        return EXACT_MATCH_SCORE if unit_rh == request_rh else RH_CROSSOVER_SCORE
    if unit_type == BloodGroup.O and unit_rh == RhFactor.NEGATIVE:
        return UNIVERSAL_DONOR_SCORE
    return ABO_CROSSOVER_SCORE


def compatible_donor_types(request_type: BloodGroup, request_rh: RhFactor) -> List[str]:
    """Every ``<group><rh>`` unit type that can satisfy the recipient type."""
    return [
        f"{group.value}{rh.value}"
        for group in BloodGroup
        for rh in RhFactor
        if is_compatible(group, rh, request_type, request_rh)
    ]


def is_eligible(unit: BloodUnit, now: Optional[datetime] = None) -> bool:
    """Only unexpired stock sitting in inventory can be matched."""
    now = as_utc(now) if now else utcnow()
    return unit.status == UnitStatus.IN_INVENTORY and unit.expiry_date > now


@dataclass
class RankedUnit:
    unit: BloodUnit
    score: int
    days_until_expiry: int

    @property
    def exact_match(self) -> bool:
        return self.score == EXACT_MATCH_SCORE


@dataclass
class Selection:
    requested: int
    units: List[RankedUnit] = field(default_factory=list)

    @property
    def selected(self) -> int:
        return len(self.units)

    @property
    def shortfall(self) -> int:
        return max(0, self.requested - self.selected)

    @property
    def partial(self) -> bool:
        return self.shortfall > 0


def rank_units(request: BloodRequest, units: Iterable[BloodUnit],
               now: Optional[datetime] = None) -> List[RankedUnit]:
    """
    Eligible, compatible units for ``request``, best first.

    Ordered by compatibility score (descending), then days until expiry
    (ascending, first-expired-first-out), then unit id.
    """
    now = as_utc(now) if now else utcnow()
    ranked = []
    for unit in units:
        if not is_eligible(unit, now):
            continue
        if request.donation_type is not None and unit.donation_type != request.donation_type:
            continue
        score = compatibility_score(unit.blood_type, unit.rh_factor, request.blood_type, request.rh_factor)
        if score <= 0:
            continue
        ranked.append(RankedUnit(unit=unit, score=score, days_until_expiry=days_until_expiry(unit.expiry_date, now)))
    ranked.sort(key=lambda r: (-r.score, r.days_until_expiry, r.unit.id))
    return ranked


def auto_select(request: BloodRequest, units: Iterable[BloodUnit],
                now: Optional[datetime] = None, quantity: Optional[int] = None) -> Selection:
    """Take the top ``quantity`` ranked units (default: what is still outstanding)."""
    if quantity is None:
        quantity = max(0, request.quantity - len(request.dispatched_unit_ids) - len(request.reserved_unit_ids))
    ranked = rank_units(request, units, now)
    return Selection(requested=quantity, units=ranked[:quantity])
