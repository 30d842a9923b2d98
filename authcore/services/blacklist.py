"""Blacklist engine: authoritative revocation state.

Two mechanisms revoke tokens:

- per-JTI blacklist entries, write-once and kept until the token would
  have expired anyway;
- a per-user revocation boundary. Every token for the user issued before
  the boundary is invalid, so revoking everything is a single write no
  matter how many tokens are outstanding.

Reads always go to the store. Infrastructure errors are retried with
bounded backoff; business outcomes (already revoked) are not.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from authcore.core.config import Settings
from authcore.core.errors import AppError, DuplicateKeyError, ErrorKind, ValidationError
from authcore.core.retry import RetryConfig, retry_async
from authcore.models import BlacklistedToken, UserTokenBoundary
from authcore.services.audit import AuditAction, AuditService
from authcore.services.store import TokenStore

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200
MAX_REASON_LENGTH = 100

# Accepts the hex JTIs minted here as well as ULID-style external ids
JTI_PATTERN = re.compile(r"^[0-9A-Za-z_-]{16,64}$")

COMMON_REASONS = (
    "logout",
    "security_incident",
    "suspicious_activity",
    "admin_revocation",
    "password_change",
)


class TokenAlreadyRevokedError(AppError):
    """The JTI already has a blacklist entry. The first entry is kept."""

    kind = ErrorKind.BUSINESS_RULE
    default_message = "Token is already revoked"


@dataclass
class BlacklistFilter:
    """Filter and page for blacklist listings."""

    user_id: str | None = None
    reason: str | None = None
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0

    def __post_init__(self) -> None:
        if self.limit <= 0:
            self.limit = DEFAULT_PAGE_SIZE
        self.limit = min(self.limit, MAX_PAGE_SIZE)
        self.offset = max(self.offset, 0)


@dataclass
class ReasonBreakdown:
    reason: str
    count: int
    tokens: list[BlacklistedToken] = field(default_factory=list)


def validate_jti(jti: str) -> str:
    if not jti or not JTI_PATTERN.match(jti):
        raise ValidationError("Invalid token identifier")
    return jti


def validate_reason(reason: str) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Revocation reason is required")
    if len(reason) > MAX_REASON_LENGTH:
        raise ValidationError(f"Revocation reason must be at most {MAX_REASON_LENGTH} characters")
    return reason


class BlacklistService:
    """Checks and maintains revoked-token state."""

    def __init__(
        self,
        store: TokenStore,
        settings: Settings,
        audit: AuditService | None = None,
    ):
        self._store = store
        self._settings = settings
        self._audit = audit
        self._retry = RetryConfig(
            max_retries=settings.store_retry_attempts,
            base_delay=settings.store_retry_base_delay,
        )

    async def _call(self, func, *args, **kwargs):
        return await retry_async(func, *args, config=self._retry, **kwargs)

    # --- Checks ---

    async def is_token_revoked(self, jti: str) -> bool:
        """Return True once a blacklist entry for jti exists."""
        return await self._call(self._store.is_blacklisted, jti)

    async def get_entry(self, jti: str) -> BlacklistedToken | None:
        return await self._call(self._store.get_blacklist_entry, jti)

    async def get_user_boundary(self, user_id: str) -> UserTokenBoundary | None:
        return await self._call(self._store.get_user_boundary, user_id)

    async def is_before_boundary(self, user_id: str, issued_at: datetime) -> bool:
        """Return True when a token issued at issued_at predates the user's boundary."""
        boundary = await self.get_user_boundary(user_id)
        return boundary is not None and issued_at < boundary.tokens_valid_since

    # --- Revocation ---

    async def revoke_token(
        self,
        jti: str,
        revoked_by: str | None,
        reason: str,
        *,
        user_id: str | None = None,
        token_type: str | None = None,
        expires_at: datetime | None = None,
        actor_ip: str | None = None,
        audit: bool = True,
    ) -> BlacklistedToken:
        """Blacklist a single JTI.

        Owner and expiry come from the issued-token record when the caller
        does not supply them. A JTI this service never issued is still
        blacklisted, with no owner and the longest expiry any token can have.

        Raises:
            ValidationError: malformed JTI or reason
            TokenAlreadyRevokedError: an entry for jti already exists
        """
        validate_jti(jti)
        reason = validate_reason(reason)
        now = datetime.now(UTC)

        if user_id is None or expires_at is None or token_type is None:
            issued = await self._call(self._store.get_issued_token, jti)
            if issued is not None:
                user_id = user_id or issued.user_id
                token_type = token_type or issued.token_type
                expires_at = expires_at or issued.expires_at
        if expires_at is None:
            expires_at = now + timedelta(seconds=self._settings.refresh_token_ttl_seconds)

        entry = BlacklistedToken(
            jti=jti,
            user_id=user_id,
            revoked_by=revoked_by,
            reason=reason,
            token_type=token_type,
            revoked_at=now,
            expires_at=expires_at,
        )
        try:
            await self._call(self._store.add_blacklist_entry, entry)
        except DuplicateKeyError as e:
            logger.info("Token already revoked", extra={"jti": jti, "reason": reason})
            raise TokenAlreadyRevokedError() from e

        logger.info(
            "Token revoked",
            extra={"jti": jti, "user_id": user_id, "revoked_by": revoked_by, "reason": reason},
        )
        if audit and self._audit is not None:
            await self._audit.log_token_revoke(
                jti=jti,
                owner_id=user_id,
                revoked_by=revoked_by,
                reason=reason,
                actor_ip=actor_ip,
            )
        return entry

    async def revoke_all_user_tokens(
        self,
        user_id: str,
        reason: str,
        revoked_by: str | None = None,
        *,
        actor_ip: str | None = None,
    ) -> UserTokenBoundary:
        """Invalidate every token issued to user_id up to now."""
        reason = validate_reason(reason)
        boundary = await self._call(
            self._store.advance_user_boundary,
            user_id,
            datetime.now(UTC),
            reason,
            revoked_by,
        )
        logger.warning(
            "All tokens revoked for user",
            extra={
                "user_id": user_id,
                "revoked_by": revoked_by,
                "reason": reason,
                "tokens_valid_since": boundary.tokens_valid_since.isoformat(),
            },
        )
        if self._audit is not None:
            await self._audit.log_user_tokens_revoke(
                target_user_id=user_id,
                revoked_by=revoked_by,
                reason=reason,
                actor_ip=actor_ip,
            )
        return boundary

    # --- Listings and statistics ---

    async def list_blacklisted(self, filter: BlacklistFilter) -> list[BlacklistedToken]:
        """Entries matching filter, most recently revoked first."""
        return await self._call(
            self._store.list_blacklist_entries,
            user_id=filter.user_id,
            reason=filter.reason,
            limit=filter.limit,
            offset=filter.offset,
        )

    async def get_tokens_by_reason(
        self, reason: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> list[BlacklistedToken]:
        return await self.list_blacklisted(
            BlacklistFilter(reason=reason, limit=limit, offset=offset)
        )

    async def get_user_blacklisted_tokens(self, filter: BlacklistFilter) -> list[BlacklistedToken]:
        if not filter.user_id:
            raise ValidationError("user_id is required")
        return await self.list_blacklisted(filter)

    async def get_blacklisted_tokens_count(self) -> int:
        return await self._call(self._store.count_blacklist_entries)

    async def get_blacklisted_tokens_since(self, since: datetime) -> int:
        return await self._call(self._store.count_blacklist_entries, since=since)

    async def get_reason_breakdown(self, sample_size: int = 5) -> dict[str, ReasonBreakdown]:
        """Count and most recent samples for each common revocation reason.

        Reasons with no entries are left out.
        """
        breakdown: dict[str, ReasonBreakdown] = {}
        for reason in COMMON_REASONS:
            count = await self._call(self._store.count_blacklist_entries, reason=reason)
            if count == 0:
                continue
            samples = await self.get_tokens_by_reason(reason, limit=sample_size)
            breakdown[reason] = ReasonBreakdown(reason=reason, count=count, tokens=samples)
        return breakdown

    # --- Maintenance ---

    async def cleanup_expired(self) -> int:
        """Prune expired blacklist entries and short-lived records. Returns rows removed."""
        counts = await self._call(self._store.purge_expired, datetime.now(UTC))
        total = sum(counts.values())
        if total:
            logger.info(f"Pruned {total} expired records", extra={"counts": counts})
            if self._audit is not None:
                await self._audit.log(
                    action=AuditAction.CLEANUP_EXPIRED,
                    resource_type="token_store",
                    details={
                        "total": total,
                        "removed": [[name, n] for name, n in counts.items() if n],
                    },
                )
        return total
