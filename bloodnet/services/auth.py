"""
Authentication helpers
Bearer token decoding into a request-scoped context, and password hashing
for applicant accounts. Tokens are issued by the external auth service and
share its secret.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError

from ..config import JWT_SECRET, JWT_ALGORITHM
from ..errors import AuthenticationFailed
from ..models import ApprovalStatus, RequestContext, UserRole

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def create_access_token(
    user_id: str,
    role: UserRole,
    email: Optional[str] = None,
    approval_status: ApprovalStatus = ApprovalStatus.APPROVED,
    profile_complete: bool = True,
    expires_in: timedelta = timedelta(hours=12),
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "role": UserRole(role).value,
        "approvalStatus": ApprovalStatus(approval_status).value,
        "profileComplete": profile_complete,
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> RequestContext:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationFailed("Token has expired")
    except jwt.InvalidTokenError:
        raise AuthenticationFailed("Invalid authentication token")

    try:
        return RequestContext(
            user_id=payload["sub"],
            email=payload.get("email"),
            role=payload["role"],
            approval_status=payload.get("approvalStatus", ApprovalStatus.APPROVED.value),
            profile_complete=payload.get("profileComplete", True),
        )
    except (KeyError, ValidationError):
        logger.warning("Rejected token with malformed claims")
        raise AuthenticationFailed("Invalid authentication token")


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> RequestContext:
    if credentials is None:
        raise AuthenticationFailed("Not authenticated")
    return decode_access_token(credentials.credentials)
