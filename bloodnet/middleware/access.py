"""
Role based access control
One table maps every operation to the roles allowed to perform it. Route
dependencies and the capabilities endpoint both read from it.
"""
import logging
from enum import Enum
from typing import FrozenSet, List

from fastapi import Depends

from ..errors import AccessDenied
from ..models import ApprovalStatus, RequestContext, UserRole
from ..services.auth import get_current_user

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    VIEW_INVENTORY = "view_inventory"
    REGISTER_UNIT = "register_unit"
    ADVANCE_UNIT = "advance_unit"
    RESERVE_UNIT = "reserve_unit"
    RELEASE_UNIT = "release_unit"
    DISPATCH_UNIT = "dispatch_unit"
    USE_UNIT = "use_unit"
    EXPIRE_UNIT = "expire_unit"
    DISCARD_UNIT = "discard_unit"
    PROCESS_EXPIRED = "process_expired"
    VIEW_REQUESTS = "view_requests"
    CREATE_REQUEST = "create_request"
    CANCEL_REQUEST = "cancel_request"
    MATCH_REQUEST = "match_request"
    FULFILL_REQUEST = "fulfill_request"
    VIEW_APPLICATIONS = "view_applications"
    REVIEW_APPLICATIONS = "review_applications"
    VIEW_DASHBOARD = "view_dashboard"
    VIEW_REPORTS = "view_reports"


_ADMIN = frozenset({UserRole.ADMIN})
_STOCK_HOLDERS = frozenset({UserRole.ADMIN, UserRole.BLOOD_BANK})
_REQUESTERS = frozenset({UserRole.ADMIN, UserRole.MEDICAL_INSTITUTION, UserRole.HOSPITAL})
_ORGANIZATIONS = _STOCK_HOLDERS | _REQUESTERS

ALLOWED_ROLES = {
    Operation.VIEW_INVENTORY: _ORGANIZATIONS,
    Operation.REGISTER_UNIT: _STOCK_HOLDERS,
    Operation.ADVANCE_UNIT: _STOCK_HOLDERS,
    Operation.RESERVE_UNIT: _STOCK_HOLDERS,
    Operation.RELEASE_UNIT: _STOCK_HOLDERS,
    Operation.DISPATCH_UNIT: _STOCK_HOLDERS,
    Operation.USE_UNIT: _REQUESTERS,
    Operation.EXPIRE_UNIT: _STOCK_HOLDERS,
    Operation.DISCARD_UNIT: _STOCK_HOLDERS,
    Operation.PROCESS_EXPIRED: _STOCK_HOLDERS,
    Operation.VIEW_REQUESTS: _ORGANIZATIONS,
    Operation.CREATE_REQUEST: _REQUESTERS,
    Operation.CANCEL_REQUEST: _REQUESTERS,
    Operation.MATCH_REQUEST: _STOCK_HOLDERS,
    Operation.FULFILL_REQUEST: _STOCK_HOLDERS,
    Operation.VIEW_APPLICATIONS: _ADMIN,
    Operation.REVIEW_APPLICATIONS: _ADMIN,
    Operation.VIEW_DASHBOARD: frozenset(UserRole),
    Operation.VIEW_REPORTS: _ORGANIZATIONS,
}

# Roles that must be approved by an admin before they can act
APPROVAL_GATED_ROLES = frozenset({UserRole.BLOOD_BANK, UserRole.MEDICAL_INSTITUTION, UserRole.HOSPITAL})


def allowed_roles(operation: Operation) -> FrozenSet[UserRole]:
    return ALLOWED_ROLES[Operation(operation)]


def can_perform(context: RequestContext, operation: Operation) -> bool:
    if context.role not in allowed_roles(operation):
        return False
    if context.role in APPROVAL_GATED_ROLES and context.approval_status != ApprovalStatus.APPROVED:
        return False
    return True


def permitted_operations(context: RequestContext) -> List[Operation]:
    return [op for op in Operation if can_perform(context, op)]


class Allow:
    """
    Dependency that resolves the caller and checks one operation.

    Usage: ``current_user: RequestContext = Depends(Allow(Operation.DISCARD_UNIT))``
    """

    def __init__(self, operation: Operation):
        self.operation = Operation(operation)

    async def __call__(self, current_user: RequestContext = Depends(get_current_user)) -> RequestContext:
        if not can_perform(current_user, self.operation):
            logger.warning(
                "Denied %s to user %s (role=%s, approval=%s)",
                self.operation.value, current_user.user_id,
                current_user.role.value, current_user.approval_status.value,
            )
            if current_user.role in APPROVAL_GATED_ROLES and current_user.approval_status != ApprovalStatus.APPROVED:
                raise AccessDenied("Your organization account is awaiting approval")
            raise AccessDenied("Insufficient permissions")
        return current_user
