"""
Error taxonomy
Domain exceptions raised by services and rendered by the handlers in
``server`` as ``{statusCode, timestamp, path, category, errors[]}``.
"""
from enum import Enum
from typing import Any, List, Optional


class ErrorCategory(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    NOT_FOUND_ERROR = "NOT_FOUND_ERROR"
    STATE_CONFLICT_ERROR = "STATE_CONFLICT_ERROR"
    CONFLICT_ERROR = "CONFLICT_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    API_ERROR = "API_ERROR"


class BloodNetError(Exception):
    """Base class for errors that map onto an HTTP response."""
    status_code: int = 500
    category: ErrorCategory = ErrorCategory.API_ERROR

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.value = value

    def details(self) -> List[dict]:
        detail = {"message": self.message}
        if self.field is not None:
            detail["field"] = self.field
        if self.value is not None:
            detail["value"] = self.value
        return [detail]


class ValidationFailed(BloodNetError):
    status_code = 422
    category = ErrorCategory.VALIDATION_ERROR


class AuthenticationFailed(BloodNetError):
    status_code = 401
    category = ErrorCategory.AUTHENTICATION_ERROR


class AccessDenied(BloodNetError):
    status_code = 403
    category = ErrorCategory.AUTHORIZATION_ERROR


class NotFound(BloodNetError):
    status_code = 404
    category = ErrorCategory.NOT_FOUND_ERROR


class Conflict(BloodNetError):
    status_code = 409
    category = ErrorCategory.CONFLICT_ERROR


class InvalidStateTransition(BloodNetError):
    """The record is not in a state that allows the requested action.

    The caller should re-fetch the record and retry or abort.
    """
    status_code = 409
    category = ErrorCategory.STATE_CONFLICT_ERROR

    def __init__(self, message: str, current_status: Optional[str] = None, action: Optional[str] = None):
        super().__init__(message, field="status", value=current_status)
        self.current_status = current_status
        self.action = action
