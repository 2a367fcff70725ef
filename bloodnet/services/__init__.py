from .auth import (
    security, hash_password, create_access_token, decode_access_token, get_current_user
)
from .audit_service import AuditService, audit_log, audit_transition
