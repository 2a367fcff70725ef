"""Tests for red cell compatibility and unit ranking."""

from datetime import datetime, timedelta, timezone
from itertools import product

import pytest

from bloodnet.models import BloodGroup, BloodRequest, BloodUnit, DonationType, RhFactor
from bloodnet.services import compatibility

NOW = datetime(2026, 5, 10, 8, 0, tzinfo=timezone.utc)
ALL_TYPES = list(product(BloodGroup, RhFactor))


def _unit(unit_id, blood_type, rh_factor, expires_in_days=10, status="in_inventory",
          donation_type=DonationType.WHOLE_BLOOD) -> BloodUnit:
    return BloodUnit(
        id=unit_id,
        donor="donor-1",
        blood_bank="bank-1",
        blood_type=blood_type,
        rh_factor=rh_factor,
        donation_type=donation_type,
        collection_date=NOW - timedelta(days=5),
        expiry_date=NOW + timedelta(days=expires_in_days),
        status=status,
    )


def _request(blood_type, rh_factor, quantity=1, **extra) -> BloodRequest:
    return BloodRequest(
        institution={"id": "hospital-1"},
        blood_type=blood_type,
        rh_factor=rh_factor,
        quantity=quantity,
        required_by=NOW + timedelta(days=1),
        **extra,
    )


# ============================================================================
# Compatibility table
# ============================================================================


def test_ab_positive_receives_every_type() -> None:
    for group, rh in ALL_TYPES:
        assert compatibility.is_compatible(group, rh, BloodGroup.AB, RhFactor.POSITIVE)


def test_o_negative_donates_to_every_type() -> None:
    for group, rh in ALL_TYPES:
        assert compatibility.is_compatible(BloodGroup.O, RhFactor.NEGATIVE, group, rh)


def test_a_positive_never_matches_b_positive() -> None:
    assert not compatibility.is_compatible("A", "+", "B", "+")


def test_rh_positive_never_goes_to_rh_negative() -> None:
    for group in BloodGroup:
        assert not compatibility.is_compatible(group, RhFactor.POSITIVE, BloodGroup.AB, RhFactor.NEGATIVE)


def test_negative_to_same_group_positive() -> None:
    for group in BloodGroup:
        assert compatibility.is_compatible(group, RhFactor.NEGATIVE, group, RhFactor.POSITIVE)


def test_compatible_donor_types() -> None:
    assert compatibility.compatible_donor_types("O", "-") == ["O-"]
    assert sorted(compatibility.compatible_donor_types("A", "+")) == ["A+", "A-", "O+", "O-"]
    assert len(compatibility.compatible_donor_types("AB", "+")) == 8


@pytest.mark.parametrize("unit_type,unit_rh,score", [
    ("A", "+", 100),
    ("A", "-", 80),
    ("O", "+", 60),
    ("O", "-", 50),
    ("B", "+", 0),
])
def test_compatibility_score_for_a_positive(unit_type, unit_rh, score) -> None:
    assert compatibility.compatibility_score(unit_type, unit_rh, "A", "+") == score


# ============================================================================
# Ranking
# ============================================================================


def test_rank_units_orders_by_score_then_expiry() -> None:
    units = [
        _unit("o-neg", "O", "-", expires_in_days=2),
        _unit("a-pos-late", "A", "+", expires_in_days=30),
        _unit("a-pos-soon", "A", "+", expires_in_days=3),
        _unit("b-pos", "B", "+", expires_in_days=1),
    ]

    ranked = compatibility.rank_units(_request("A", "+"), units, NOW)

    assert [r.unit.id for r in ranked] == ["a-pos-soon", "a-pos-late", "o-neg"]
    assert ranked[0].exact_match
    assert ranked[-1].days_until_expiry == 2


def test_rank_units_skips_ineligible_units() -> None:
    units = [
        _unit("reserved", "O", "-", status="reserved"),
        _unit("expired", "O", "-", expires_in_days=-1),
        _unit("collected", "O", "-", status="collected"),
        _unit("ok", "O", "-"),
    ]

    ranked = compatibility.rank_units(_request("O", "-"), units, NOW)

    assert [r.unit.id for r in ranked] == ["ok"]


def test_rank_units_honours_requested_component() -> None:
    units = [
        _unit("plasma", "A", "+", donation_type=DonationType.PLASMA),
        _unit("whole", "A", "+"),
    ]

    ranked = compatibility.rank_units(_request("A", "+", donation_type="plasma"), units, NOW)

    assert [r.unit.id for r in ranked] == ["plasma"]


def test_auto_select_reports_shortfall() -> None:
    units = [_unit("u1", "A", "+"), _unit("u2", "O", "-")]

    selection = compatibility.auto_select(_request("A", "+", quantity=3), units, NOW)

    assert selection.requested == 3
    assert selection.selected == 2
    assert selection.shortfall == 1
    assert selection.partial


def test_auto_select_counts_outstanding_quantity() -> None:
    request = _request("A", "+", quantity=3, dispatched_unit_ids=["x"], reserved_unit_ids=["y"])
    units = [_unit("u1", "A", "+"), _unit("u2", "A", "+")]

    selection = compatibility.auto_select(request, units, NOW)

    assert selection.requested == 1
    assert [r.unit.id for r in selection.units] == ["u1"]
    assert not selection.partial
