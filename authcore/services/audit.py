"""Security Audit Logging Service.

Records security-relevant events for compliance and monitoring:
- Token and user-wide revocations
- Logins, logouts and password changes
- OAuth linking decisions, including refused gates
"""

import logging
from enum import Enum
from typing import Any

from authcore.core.errors import StoreError
from authcore.models import AuditLog
from authcore.services.store import TokenStore

logger = logging.getLogger(__name__)

_SENSITIVE_KEYS = {
    "password",
    "secret",
    "token",
    "api_key",
    "apikey",
    "access_token",
    "refresh_token",
    "client_secret",
}


class AuditAction(str, Enum):
    """Security audit action types."""

    # Revocation events
    TOKEN_REVOKE = "token.revoke"
    USER_TOKENS_REVOKE = "token.revoke_all"
    SESSION_REVOKE = "session.revoke"

    # Authentication events
    LOGIN = "auth.login"
    LOGIN_FAILED = "auth.login_failed"
    LOGOUT = "auth.logout"
    PASSWORD_CHANGE = "auth.password_change"
    REFRESH_REPLAY = "auth.refresh_replay"

    # OAuth events
    OAUTH_LOGIN = "oauth.login"
    OAUTH_SIGNUP = "oauth.signup"
    OAUTH_REJECTED = "oauth.rejected"

    # System events
    CLEANUP_EXPIRED = "system.cleanup_expired"


class AuditService:
    """Service for logging security audit events.

    Each event is written to the audit_logs table and emitted as a log
    line. A failed audit write is logged but never fails the operation
    being audited.
    """

    def __init__(self, store: TokenStore):
        self._store = store

    async def log(
        self,
        action: AuditAction,
        resource_type: str,
        resource_id: str | None = None,
        user_id: str | None = None,
        details: dict[str, Any] | None = None,
        actor_ip: str | None = None,
        level: str = "info",
    ) -> AuditLog:
        """Log a security audit event.

        Args:
            action: The audit action type
            resource_type: Type of resource (token, user, session, ...)
            resource_id: ID of the affected resource
            user_id: User performing the action, when known
            details: Additional audit details (secrets are redacted)
            actor_ip: IP address of the actor
            level: Log level (info, warning, error)

        Returns:
            The audit log entry
        """
        safe_details = self._sanitize_details(details) if details else None
        entry = AuditLog(
            action=action.value,
            user_id=user_id,
            resource_type=resource_type,
            resource_id=resource_id,
            details=safe_details,
            actor_ip=actor_ip,
        )

        message = f"{action.value}: {resource_type}"
        if resource_id:
            message += f" ({resource_id})"
        logger.log(
            logging.getLevelName(level.upper()),
            message,
            extra={"audit_action": action.value, "user_id": user_id, "details": safe_details},
        )

        try:
            await self._store.add_audit_log(entry)
        except StoreError:
            logger.exception(f"Failed to persist audit event {action.value}")
        return entry

    def _sanitize_details(self, details: dict[str, Any]) -> dict[str, Any]:
        """Remove sensitive data from audit details.

        Redacts passwords, tokens, secrets, etc.
        """
        sanitized: dict[str, Any] = {}
        for key, value in details.items():
            key_lower = key.lower().replace("-", "_")
            if any(s in key_lower for s in _SENSITIVE_KEYS):
                # Mark as redacted but indicate if value was set/unset
                if value is not None:
                    sanitized[key] = "[REDACTED - set]"
                else:
                    sanitized[key] = "[REDACTED - unset]"
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize_details(value)
            else:
                sanitized[key] = value
        return sanitized

    # Convenience methods for common audit events

    async def log_token_revoke(
        self,
        jti: str,
        owner_id: str | None,
        revoked_by: str | None,
        reason: str,
        actor_ip: str | None = None,
    ) -> AuditLog:
        """Log a single-token revocation."""
        return await self.log(
            action=AuditAction.TOKEN_REVOKE,
            resource_type="token",
            resource_id=jti,
            user_id=revoked_by,
            details={"owner_id": owner_id, "reason": reason},
            actor_ip=actor_ip,
        )

    async def log_user_tokens_revoke(
        self,
        target_user_id: str,
        revoked_by: str | None,
        reason: str,
        actor_ip: str | None = None,
    ) -> AuditLog:
        """Log a user-wide revocation (boundary move)."""
        return await self.log(
            action=AuditAction.USER_TOKENS_REVOKE,
            resource_type="user",
            resource_id=target_user_id,
            user_id=revoked_by,
            details={"reason": reason},
            actor_ip=actor_ip,
            level="warning",
        )

    async def log_oauth_rejected(
        self,
        provider: str,
        error_code: str,
        user_id: str | None,
        details: dict[str, Any],
    ) -> AuditLog:
        """Log an OAuth login refused by one of the identity gates."""
        level = "error" if error_code == "authentication_failed" else "warning"
        return await self.log(
            action=AuditAction.OAUTH_REJECTED,
            resource_type="oauth",
            resource_id=provider,
            user_id=user_id,
            details={"error_code": error_code, **details},
            level=level,
        )
