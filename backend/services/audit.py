"""
Audit Trail for Anvogue Core

Records authentication and user-management events:
- Login, failed login, logout, token refresh
- Registration, password change and reset
- Google sign-in (including rejected attempts)
- Admin changes to user records (role, details, deactivation, deletion)

Storage: JSON lines file, mirrored to the application log.
"""

import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field

from config import get_settings

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_LOG_FILE = Path(__file__).parent.parent / "data" / "audit_log.jsonl"

_write_lock = threading.Lock()


class AuditAction(str, Enum):
    USER_LOGIN = "user.login"
    USER_LOGIN_FAILED = "user.login_failed"
    USER_LOGOUT = "user.logout"
    USER_REGISTER = "user.register"
    USER_PASSWORD_CHANGE = "user.password_change"
    USER_PASSWORD_RESET_REQUEST = "user.password_reset_request"
    USER_PASSWORD_RESET = "user.password_reset"
    TOKEN_REFRESH = "token.refresh"
    GOOGLE_LOGIN = "user.google_login"
    GOOGLE_LOGIN_FAILED = "user.google_login_failed"

    USER_ROLE_CHANGE = "user.role_change"
    USER_UPDATE = "user.update"
    USER_DEACTIVATE = "user.deactivate"
    USER_DELETE = "user.delete"


class ResourceType(str, Enum):
    AUTH = "auth"
    USER = "user"


class AuditLogEntry(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    success: bool = True
    error_message: Optional[str] = None


def get_client_ip(request) -> Optional[str]:
    """Client IP, honouring proxy headers."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    if request.client:
        return request.client.host
    return None


class AuditLogger:
    """Appends audit entries to a JSON lines file."""

    def __init__(self, log_file: Optional[Path] = None):
        self.log_file = Path(log_file) if log_file else DEFAULT_AUDIT_LOG_FILE
        self.log_file.parent.mkdir(parents=True, exist_ok=True)

    def log(
        self,
        action: Union[AuditAction, str],
        resource_type: Union[ResourceType, str],
        user_id: Optional[str] = None,
        user_email: Optional[str] = None,
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        request: Optional[Any] = None,  # FastAPI Request
        success: bool = True,
        error_message: Optional[str] = None
    ) -> AuditLogEntry:
        """Record one audit entry; IP and user agent are taken from `request` when given."""
        action_str = action.value if isinstance(action, AuditAction) else action
        resource_type_str = resource_type.value if isinstance(resource_type, ResourceType) else resource_type

        entry = AuditLogEntry(
            user_id=str(user_id) if user_id else None,
            user_email=user_email,
            action=action_str,
            resource_type=resource_type_str,
            resource_id=str(resource_id) if resource_id else None,
            details=details or {},
            ip_address=get_client_ip(request) if request else None,
            user_agent=request.headers.get("user-agent", "")[:500] if request else None,
            success=success,
            error_message=error_message
        )

        self._write_entry(entry)

        target = f"{resource_type_str}/{resource_id}" if resource_id else resource_type_str
        actor = user_email or user_id or "anonymous"
        if success:
            logger.info(f"audit {action_str} {target} actor={actor}")
        else:
            logger.warning(f"audit {action_str} {target} actor={actor} failed: {error_message}")
        return entry

    def _write_entry(self, entry: AuditLogEntry):
        # An unwritable audit file must not fail the request being audited
        with _write_lock:
            try:
                with open(self.log_file, 'a') as f:
                    f.write(entry.model_dump_json() + "\n")
            except OSError as e:
                logger.error(f"Failed to write audit log: {e}")

    def read_entries(self) -> list:
        """All entries, oldest first."""
        if not self.log_file.exists():
            return []
        with open(self.log_file, 'r') as f:
            return [AuditLogEntry(**json.loads(line)) for line in f if line.strip()]


_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    global _audit_logger
    if _audit_logger is None:
        path = get_settings().AUDIT_LOG_PATH
        _audit_logger = AuditLogger(Path(path) if path else None)
    return _audit_logger


def log_auth_action(
    action: Union[AuditAction, str],
    user_id: Optional[str] = None,
    user_email: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Any] = None,
    success: bool = True,
    error_message: Optional[str] = None
) -> AuditLogEntry:
    return get_audit_logger().log(
        action=action,
        resource_type=ResourceType.AUTH,
        user_id=user_id,
        user_email=user_email,
        details=details,
        request=request,
        success=success,
        error_message=error_message
    )


def log_user_action(
    action: Union[AuditAction, str],
    target_user_id: str,
    actor_id: Optional[str] = None,
    actor_email: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Any] = None
) -> AuditLogEntry:
    """Admin action on a user record."""
    return get_audit_logger().log(
        action=action,
        resource_type=ResourceType.USER,
        resource_id=target_user_id,
        user_id=actor_id,
        user_email=actor_email,
        details=details,
        request=request
    )
