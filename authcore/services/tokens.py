"""Token issuance and validation.

Every token carries a fresh random JTI, its session id and a sub-second
``iat``. Validation runs the cheap checks first (signature, expiry, type)
and only then consults the store (blacklist, user boundary, user record).
Any store failure or timeout on that path rejects the token.
"""

import asyncio
import logging
import secrets
from contextlib import suppress
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from jwt.exceptions import PyJWTError

from authcore.core.config import Settings
from authcore.core.errors import (
    AppError,
    ConflictError,
    DuplicateKeyError,
    ErrorKind,
    NotFoundError,
    StoreError,
)
from authcore.models import IssuedToken, User, UserSession, UserTokenBoundary
from authcore.models.base import new_id
from authcore.services.audit import AuditAction, AuditService
from authcore.services.blacklist import BlacklistService, TokenAlreadyRevokedError
from authcore.services.store import TokenStore
from authcore.services.users import UserDirectory

logger = logging.getLogger(__name__)

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"
ROTATION_REASON = "token_rotation"

_REQUIRED_CLAIMS = ["sub", "sid", "jti", "iat", "exp", "type"]

# Every rejected bearer token gets this text; the reason stays in the logs
TOKEN_REJECTED_MESSAGE = "Invalid or expired token"


class TokenError(AppError):
    """JWT token error."""

    kind = ErrorKind.UNAUTHORIZED
    default_message = "Invalid token"
    public_message = TOKEN_REJECTED_MESSAGE


class TokenExpiredError(TokenError):
    default_message = "Token has expired"


class InvalidTokenError(TokenError):
    default_message = "Invalid token"


class TokenRevokedError(InvalidTokenError):
    default_message = "Token has been revoked"


class UserInactiveError(AppError):
    kind = ErrorKind.UNAUTHORIZED
    default_message = "User account is deactivated"
    public_message = TOKEN_REJECTED_MESSAGE


class TokenIssuanceError(AppError):
    """Issuance broke an invariant (JTI collision). Never retried."""

    kind = ErrorKind.INTERNAL
    default_message = "Could not issue tokens"


@dataclass(frozen=True)
class AuthContext:
    """The authenticated caller, produced once per request from a valid access token."""

    user_id: str
    session_id: str
    jti: str
    email: str
    is_admin: bool
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    session_id: str
    token_type: str = "bearer"


class TokenService:
    """Mints, validates, rotates and revokes tokens and their sessions."""

    def __init__(
        self,
        settings: Settings,
        store: TokenStore,
        blacklist: BlacklistService,
        users: UserDirectory,
        audit: AuditService | None = None,
    ):
        self._settings = settings
        self._store = store
        self._blacklist = blacklist
        self._users = users
        self._audit = audit

    # --- Encoding ---

    def _mint(
        self,
        user_id: str,
        session_id: str,
        token_type: str,
        issued_at: datetime,
        expires_at: datetime,
    ) -> tuple[str, IssuedToken]:
        jti = secrets.token_hex(16)
        payload = {
            "sub": user_id,
            "sid": session_id,
            "jti": jti,
            "type": token_type,
            # Float keeps sub-second precision for the boundary comparison
            "iat": issued_at.timestamp(),
            "exp": expires_at,
            "iss": self._settings.jwt_issuer,
        }
        token = jwt.encode(
            payload,
            self._settings.jwt_secret_key,
            algorithm=self._settings.jwt_algorithm,
        )
        record = IssuedToken(
            jti=jti,
            user_id=user_id,
            session_id=session_id,
            token_type=token_type,
            issued_at=issued_at,
            expires_at=expires_at,
        )
        return str(token), record

    def decode_token(self, token: str, expected_type: str = ACCESS_TOKEN) -> dict[str, Any]:
        """Verify signature, expiry, issuer and type. No store access."""
        try:
            payload = jwt.decode(
                token,
                self._settings.jwt_secret_key,
                algorithms=[self._settings.jwt_algorithm],
                issuer=self._settings.jwt_issuer,
                options={"require": _REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenExpiredError() from e
        except PyJWTError as e:
            raise InvalidTokenError() from e

        if payload.get("type") != expected_type:
            raise InvalidTokenError(f"Wrong token type: expected {expected_type}")
        return payload

    # --- Issuance ---

    async def issue_token_pair(
        self,
        user: User,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> TokenPair:
        """Start a new session for user and mint its first token pair."""
        if not user.is_active:
            raise UserInactiveError()

        pair, records, session = self._new_session(
            user, ip_address=ip_address, user_agent=user_agent
        )
        await self._record_issued(records)
        await self._store.create_session(session)
        logger.info("Issued token pair", extra={"user_id": user.id, "session_id": pair.session_id})
        return pair

    async def issue_token_pair_for_new_user(
        self,
        user: User,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> TokenPair:
        """Persist an unsaved account together with its first session.

        The user row, the issued-token records and the session are written in
        one store transaction: either the account exists with a usable token
        pair or nothing was written.

        Raises:
            ConflictError: the email was registered in the meantime
        """
        pair, records, session = self._new_session(
            user, ip_address=ip_address, user_agent=user_agent
        )
        try:
            await self._store.add_user_with_session(user, records, session)
        except DuplicateKeyError as e:
            raise ConflictError("An account with this email already exists") from e
        logger.info(
            "Created account with first session",
            extra={"user_id": user.id, "session_id": pair.session_id},
        )
        return pair

    def _new_session(
        self,
        user: User,
        *,
        ip_address: str | None,
        user_agent: str | None,
    ) -> tuple[TokenPair, list[IssuedToken], UserSession]:
        session_id = new_id()
        now = datetime.now(UTC)
        access_expires = now + timedelta(seconds=self._settings.access_token_ttl_seconds)
        refresh_expires = now + timedelta(seconds=self._settings.refresh_token_ttl_seconds)

        access_token, access_record = self._mint(
            user.id, session_id, ACCESS_TOKEN, now, access_expires
        )
        refresh_token, refresh_record = self._mint(
            user.id, session_id, REFRESH_TOKEN, now, refresh_expires
        )
        session = UserSession(
            id=session_id,
            user_id=user.id,
            refresh_jti=refresh_record.jti,
            current_jti=access_record.jti,
            expires_at=access_expires,
            refresh_expires_at=refresh_expires,
            is_active=True,
            last_used_at=now,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        pair = TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self._settings.access_token_ttl_seconds,
            session_id=session_id,
        )
        return pair, [access_record, refresh_record], session

    async def generate_tokens_for_user(
        self,
        user_id: str,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> TokenPair:
        user = await self._users.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return await self.issue_token_pair(user, ip_address=ip_address, user_agent=user_agent)

    async def _record_issued(self, records: list[IssuedToken]) -> None:
        try:
            await self._store.record_issued_tokens(records)
        except DuplicateKeyError as e:
            logger.critical(
                "JTI collision on issuance", extra={"jtis": [r.jti for r in records]}
            )
            raise TokenIssuanceError() from e

    # --- Validation ---

    async def validate_access_token(self, token: str) -> AuthContext:
        """Turn a bearer token into an AuthContext or raise a TokenError."""
        payload = self.decode_token(token, ACCESS_TOKEN)
        user = await self._verify_with_store(payload)
        return AuthContext(
            user_id=user.id,
            session_id=payload["sid"],
            jti=payload["jti"],
            email=user.email,
            is_admin=user.is_admin,
            issued_at=datetime.fromtimestamp(float(payload["iat"]), UTC),
            expires_at=datetime.fromtimestamp(payload["exp"], UTC),
        )

    async def _verify_with_store(
        self, payload: dict[str, Any], *, check_blacklist: bool = True
    ) -> User:
        try:
            return await asyncio.wait_for(
                self._check_revocation(payload, check_blacklist=check_blacklist),
                timeout=self._settings.token_validation_timeout_seconds,
            )
        except (StoreError, TimeoutError) as e:
            raise self._failed_closed(payload, e) from e

    @staticmethod
    def _failed_closed(payload: dict[str, Any], error: Exception) -> InvalidTokenError:
        logger.error(
            f"Token verification failed closed: {type(error).__name__}",
            extra={"jti": payload.get("jti"), "user_id": payload.get("sub")},
        )
        return InvalidTokenError("Token could not be verified")

    async def _check_revocation(
        self, payload: dict[str, Any], *, check_blacklist: bool = True
    ) -> User:
        jti = payload["jti"]
        user_id = payload["sub"]
        issued_at = datetime.fromtimestamp(float(payload["iat"]), UTC)

        if check_blacklist and await self._blacklist.is_token_revoked(jti):
            raise TokenRevokedError()
        if await self._blacklist.is_before_boundary(user_id, issued_at):
            raise TokenRevokedError("Token issued before the user's revocation boundary")

        user = await self._users.get_user(user_id)
        if user is None:
            raise InvalidTokenError("User not found")
        if not user.is_active:
            raise UserInactiveError()
        return user

    # --- Refresh ---

    async def refresh_tokens(
        self,
        refresh_token: str,
        *,
        ip_address: str | None = None,
    ) -> TokenPair:
        """Exchange a refresh token for a new pair.

        With rotation on, the presented refresh JTI is blacklisted before
        anything is issued, and the session only moves to the new pair
        through a compare-and-swap on its refresh JTI, so of two concurrent
        refreshes only one wins. A rotated token whose session still points
        at it belongs to a rotation that stopped part way; presenting it again
        resumes that rotation. Presenting it after the session moved on is a
        replay and revokes the whole session.

        Store failures anywhere on this path reject the token.
        """
        payload = self.decode_token(refresh_token, REFRESH_TOKEN)
        try:
            return await self._refresh(payload, refresh_token, ip_address)
        except (StoreError, TimeoutError) as e:
            raise self._failed_closed(payload, e) from e

    async def _refresh(
        self, payload: dict[str, Any], refresh_token: str, ip_address: str | None
    ) -> TokenPair:
        jti = payload["jti"]
        user_id = payload["sub"]
        session_id = payload["sid"]
        timeout = self._settings.token_validation_timeout_seconds

        session = await asyncio.wait_for(self._store.get_session(session_id), timeout=timeout)
        entry = await asyncio.wait_for(self._blacklist.get_entry(jti), timeout=timeout)
        session_current = (
            session is not None
            and session.is_active
            and session.user_id == user_id
            and session.refresh_jti == jti
        )

        if entry is not None:
            if entry.reason != ROTATION_REASON:
                raise TokenRevokedError()
            if not session_current:
                await self._handle_refresh_replay(user_id, session_id, jti, ip_address)
                raise TokenRevokedError("Rotated refresh token presented again")
            logger.warning(
                "Resuming an interrupted refresh rotation",
                extra={"user_id": user_id, "session_id": session_id, "jti": jti},
            )
        elif not session_current:
            raise InvalidTokenError("Session is no longer active")

        user = await self._verify_with_store(payload, check_blacklist=entry is None)

        now = datetime.now(UTC)
        access_expires = now + timedelta(seconds=self._settings.access_token_ttl_seconds)
        access_token, access_record = self._mint(
            user.id, session_id, ACCESS_TOKEN, now, access_expires
        )

        if not self._settings.token_rotation_enabled:
            await self._record_issued([access_record])
            await self._store.rotate_session(
                session_id,
                old_refresh_jti=jti,
                refresh_jti=jti,
                current_jti=access_record.jti,
                expires_at=access_expires,
                refresh_expires_at=session.refresh_expires_at,
            )
            return TokenPair(
                access_token=access_token,
                refresh_token=refresh_token,
                expires_in=self._settings.access_token_ttl_seconds,
                session_id=session_id,
            )

        if entry is None:
            try:
                await self._blacklist.revoke_token(
                    jti,
                    revoked_by=user_id,
                    reason=ROTATION_REASON,
                    user_id=user_id,
                    token_type=REFRESH_TOKEN,
                    expires_at=datetime.fromtimestamp(payload["exp"], UTC),
                    audit=False,
                )
            except TokenAlreadyRevokedError as e:
                # Lost the race against a concurrent refresh of the same token
                raise InvalidTokenError("Refresh token already used") from e

        refresh_expires = now + timedelta(seconds=self._settings.refresh_token_ttl_seconds)
        new_refresh_token, refresh_record = self._mint(
            user.id, session_id, REFRESH_TOKEN, now, refresh_expires
        )
        await self._record_issued([access_record, refresh_record])

        rotated = await self._store.rotate_session(
            session_id,
            old_refresh_jti=jti,
            refresh_jti=refresh_record.jti,
            current_jti=access_record.jti,
            expires_at=access_expires,
            refresh_expires_at=refresh_expires,
        )
        if not rotated:
            raise InvalidTokenError("Refresh token already used")

        logger.info("Refresh token rotated", extra={"user_id": user_id, "session_id": session_id})
        return TokenPair(
            access_token=access_token,
            refresh_token=new_refresh_token,
            expires_in=self._settings.access_token_ttl_seconds,
            session_id=session_id,
        )

    async def _handle_refresh_replay(
        self, user_id: str, session_id: str, jti: str, ip_address: str | None
    ) -> None:
        logger.warning(
            "Rotated refresh token presented again, revoking session",
            extra={"user_id": user_id, "session_id": session_id, "jti": jti},
        )
        with suppress(NotFoundError):
            await self.revoke_session(user_id, session_id, reason="refresh_token_reuse")
        if self._audit is not None:
            await self._audit.log(
                action=AuditAction.REFRESH_REPLAY,
                resource_type="session",
                resource_id=session_id,
                user_id=user_id,
                details={"jti": jti},
                actor_ip=ip_address,
                level="warning",
            )

    # --- Logout and sessions ---

    async def logout(self, auth: AuthContext, *, actor_ip: str | None = None) -> None:
        """Revoke the caller's access token and end its session."""
        with suppress(TokenAlreadyRevokedError):
            await self._blacklist.revoke_token(
                auth.jti,
                revoked_by=auth.user_id,
                reason="logout",
                user_id=auth.user_id,
                token_type=ACCESS_TOKEN,
                expires_at=auth.expires_at,
                actor_ip=actor_ip,
            )
        with suppress(NotFoundError):
            await self.revoke_session(auth.user_id, auth.session_id, reason="logout")
        logger.info("User logged out", extra={"user_id": auth.user_id})

    async def revoke_session(
        self,
        user_id: str,
        session_id: str,
        *,
        reason: str = "session_revoked",
        revoked_by: str | None = None,
    ) -> UserSession:
        """Deactivate one session and blacklist its current tokens.

        Raises:
            NotFoundError: no such session for this user
        """
        session = await self._store.get_session(session_id)
        if session is None or session.user_id != user_id:
            raise NotFoundError("Session not found")

        deactivated = await self._store.deactivate_session(session_id)
        if deactivated is None:
            return session

        for jti, token_type in (
            (deactivated.refresh_jti, REFRESH_TOKEN),
            (deactivated.current_jti, ACCESS_TOKEN),
        ):
            with suppress(TokenAlreadyRevokedError):
                await self._blacklist.revoke_token(
                    jti,
                    revoked_by=revoked_by or user_id,
                    reason=reason,
                    user_id=user_id,
                    token_type=token_type,
                    audit=False,
                )
        if self._audit is not None:
            await self._audit.log(
                action=AuditAction.SESSION_REVOKE,
                resource_type="session",
                resource_id=session_id,
                user_id=revoked_by or user_id,
                details={"reason": reason},
            )
        return deactivated

    async def revoke_all_sessions(
        self,
        user_id: str,
        reason: str,
        revoked_by: str | None = None,
        *,
        actor_ip: str | None = None,
    ) -> tuple[UserTokenBoundary, int]:
        """Deactivate every session and move the user's revocation boundary to now.

        Returns the new boundary and the number of sessions ended.
        """
        sessions = await self._store.deactivate_user_sessions(user_id)
        boundary = await self._blacklist.revoke_all_user_tokens(
            user_id, reason, revoked_by, actor_ip=actor_ip
        )
        return boundary, len(sessions)

    async def list_sessions(self, user_id: str) -> list[UserSession]:
        return await self._store.list_sessions(user_id)
