"""
Middleware package for the BloodNet service.
"""
from .access import (
    Operation,
    ALLOWED_ROLES,
    allowed_roles,
    can_perform,
    permitted_operations,
    Allow,
)

__all__ = [
    'Operation',
    'ALLOWED_ROLES',
    'allowed_roles',
    'can_perform',
    'permitted_operations',
    'Allow',
]
