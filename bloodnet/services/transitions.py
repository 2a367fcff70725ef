"""
Blood unit status transitions
Single source of truth for which unit status changes are legal.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional

from ..errors import InvalidStateTransition
from ..models import UnitAction, UnitStatus, StatusHistoryEntry, utcnow

TERMINAL_STATUSES: FrozenSet[UnitStatus] = frozenset({UnitStatus.USED, UnitStatus.DISCARDED})
NON_TERMINAL_STATUSES: FrozenSet[UnitStatus] = frozenset(UnitStatus) - TERMINAL_STATUSES
AVAILABLE_STATUSES: FrozenSet[UnitStatus] = frozenset({UnitStatus.IN_INVENTORY, UnitStatus.RESERVED})

# Side data that may only be present while the unit is in the matching status
INFO_FIELDS = {
    UnitStatus.DISPATCHED: "dispatch_info",
    UnitStatus.USED: "usage_info",
    UnitStatus.DISCARDED: "discard_info",
}
RESERVATION_FIELDS = ("reserved_for_request", "reserved_at")


@dataclass(frozen=True)
class TransitionRule:
    action: UnitAction
    sources: FrozenSet[UnitStatus]
    target: UnitStatus
    # Repeating the action on a unit already in ``target`` succeeds without change
    idempotent: bool = False


TRANSITIONS: Dict[UnitAction, TransitionRule] = {
    rule.action: rule for rule in (
        TransitionRule(UnitAction.TEST, frozenset({UnitStatus.COLLECTED}), UnitStatus.TESTED),
        TransitionRule(UnitAction.PROCESS, frozenset({UnitStatus.TESTED}), UnitStatus.PROCESSED),
        TransitionRule(UnitAction.STOCK, frozenset({UnitStatus.PROCESSED}), UnitStatus.IN_INVENTORY),
        TransitionRule(UnitAction.RESERVE, frozenset({UnitStatus.IN_INVENTORY}), UnitStatus.RESERVED),
        TransitionRule(UnitAction.RELEASE, frozenset({UnitStatus.RESERVED}), UnitStatus.IN_INVENTORY),
        TransitionRule(UnitAction.DISPATCH, AVAILABLE_STATUSES, UnitStatus.DISPATCHED),
        TransitionRule(UnitAction.USE, frozenset({UnitStatus.DISPATCHED}), UnitStatus.USED),
        TransitionRule(UnitAction.EXPIRE, AVAILABLE_STATUSES, UnitStatus.EXPIRED, idempotent=True),
        TransitionRule(UnitAction.DISCARD, NON_TERMINAL_STATUSES, UnitStatus.DISCARDED, idempotent=True),
    )
}


def rule_for(action: UnitAction) -> TransitionRule:
    return TRANSITIONS[UnitAction(action)]


def allowed_actions(status: UnitStatus) -> List[UnitAction]:
    """Actions that may be applied to a unit currently in ``status``."""
    status = UnitStatus(status)
    return [rule.action for rule in TRANSITIONS.values() if status in rule.sources]


def can_transition(status: UnitStatus, action: UnitAction) -> bool:
    return UnitStatus(status) in rule_for(action).sources


def plan_transition(current: UnitStatus, action: UnitAction) -> Optional[TransitionRule]:
    """
    Validate ``action`` against the unit's current status.

    Returns the rule to apply, or ``None`` when the action is idempotent and
    the unit already sits in its target status. Raises
    ``InvalidStateTransition`` for every other illegal request.
    """
    current = UnitStatus(current)
    rule = rule_for(action)
    if current in rule.sources:
        return rule
    if rule.idempotent and current == rule.target:
        return None
    raise InvalidStateTransition(
        f"Cannot {rule.action.value} a blood unit in status '{current.value}'",
        current_status=current.value,
        action=rule.action.value,
    )


def action_for_target(current: UnitStatus, target: UnitStatus) -> UnitAction:
    """Resolve the action that moves a unit from ``current`` to ``target``."""
    current, target = UnitStatus(current), UnitStatus(target)
    if target == UnitStatus.IN_INVENTORY:
        return UnitAction.RELEASE if current == UnitStatus.RESERVED else UnitAction.STOCK
    for rule in TRANSITIONS.values():
        if rule.target == target:
            return rule.action
    raise InvalidStateTransition(
        f"No transition leads to status '{target.value}'",
        current_status=current.value,
    )


def build_update(
    rule: TransitionRule,
    fields: Optional[dict] = None,
    performed_by: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Build the MongoDB update document for ``rule``.

    Sets the target status and ``fields``, clears side data that belongs to
    other statuses and appends a status history entry.
    """
    now = now or utcnow()
    entry = StatusHistoryEntry(status=rule.target, timestamp=now, notes=notes, performed_by=performed_by)
    to_set = {
        "status": rule.target.value,
        "updated_at": entry.model_dump(mode="json")["timestamp"],
    }
    to_set.update(fields or {})

    stale = [f for s, f in INFO_FIELDS.items() if s != rule.target]
    if rule.target != UnitStatus.RESERVED:
        stale.extend(RESERVATION_FIELDS)
    to_unset = {f: "" for f in stale if f not in to_set}

    update = {
        "$set": to_set,
        "$push": {"status_history": entry.model_dump(mode="json")},
    }
    if to_unset:
        update["$unset"] = to_unset
    return update
