"""Reconciles external OAuth identities with local accounts.

An existing account is logged in only when all three gates pass, checked
in this order:

1. auth-method gate: the account was created through OAuth. A password
   account is never taken over by whoever controls the email at a provider.
2. provider-match gate: the asserting provider is the one the account was
   created with.
3. provider-ID gate: the provider's subject id equals the stored one. A
   mismatch here is reported with a generic code and logged at error level.

An unknown email does not create an account. It parks the verified identity
in a short-lived OAuth session that the signup step later consumes.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

from authcore.core.config import Settings
from authcore.core.errors import AppError, ConflictError, GoneError, StoreError
from authcore.models import AuthMethod, LoginTokenSession, OAuthSession, User
from authcore.services.audit import AuditAction, AuditService
from authcore.services.oauth import OAuthError, OAuthUserProfile
from authcore.services.store import TokenStore
from authcore.services.tokens import TokenPair, TokenService
from authcore.services.users import UserDirectory

logger = logging.getLogger(__name__)


class OAuthLinkError(OAuthError):
    """An identity gate refused the login."""


class LinkKind(str, Enum):
    LOGIN = "login"
    SIGNUP = "signup"


@dataclass(frozen=True)
class LinkResult:
    """Outcome of a successful link.

    For LOGIN, session_id names a one-time login hand-off session; for
    SIGNUP it names the pending OAuth session.
    """

    kind: LinkKind
    session_id: str
    user_id: str | None = None


@dataclass(frozen=True)
class SignupResult:
    user: User
    tokens: TokenPair
    invitation_token: str | None


def _new_session_id() -> str:
    return secrets.token_urlsafe(32)


class OAuthIdentityLinker:
    def __init__(
        self,
        settings: Settings,
        store: TokenStore,
        users: UserDirectory,
        tokens: TokenService,
        audit: AuditService | None = None,
    ):
        self._settings = settings
        self._store = store
        self._users = users
        self._tokens = tokens
        self._audit = audit

    async def link(
        self,
        profile: OAuthUserProfile,
        invitation_token: str | None = None,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> LinkResult:
        """Log in the matching account or start a pending signup.

        Raises:
            OAuthLinkError: a gate refused the login
            OAuthError: tokens or a session record could not be created
        """
        try:
            user = await self._users.get_user_by_email(profile.email)
        except StoreError as e:
            logger.error(f"User lookup failed during OAuth login: {e}")
            raise OAuthError("User lookup failed") from e

        if user is None:
            return await self._start_signup(profile, invitation_token)

        await self.check_gates(user, profile)
        return await self._login(user, profile, ip_address=ip_address, user_agent=user_agent)

    async def check_gates(self, user: User, profile: OAuthUserProfile) -> None:
        """Run the three identity gates. Raises OAuthLinkError on the first refusal."""
        if user.auth_method != AuthMethod.OAUTH.value:
            logger.warning(
                "OAuth login refused: account uses password authentication",
                extra={"user_id": user.id, "provider": profile.provider},
            )
            await self._reject(user, profile, "account_exists_use_password")

        if user.oauth_provider != profile.provider:
            logger.warning(
                "OAuth login refused: account is linked to another provider",
                extra={
                    "user_id": user.id,
                    "provider": profile.provider,
                    "stored_provider": user.oauth_provider,
                },
            )
            await self._reject(user, profile, f"use_{user.oauth_provider}")

        if user.oauth_provider_id != profile.provider_id:
            logger.error(
                "OAuth login refused: provider id mismatch for existing account",
                extra={
                    "user_id": user.id,
                    "provider": profile.provider,
                    "stored_provider_id": user.oauth_provider_id,
                    "asserted_provider_id": profile.provider_id,
                },
            )
            await self._reject(user, profile, "authentication_failed")

    async def _reject(self, user: User, profile: OAuthUserProfile, error_code: str) -> None:
        if self._audit is not None:
            await self._audit.log_oauth_rejected(
                provider=profile.provider,
                error_code=error_code,
                user_id=user.id,
                details={"email": profile.email, "provider_id": profile.provider_id},
            )
        raise OAuthLinkError("OAuth login refused", error_code)

    async def _login(
        self,
        user: User,
        profile: OAuthUserProfile,
        *,
        ip_address: str | None,
        user_agent: str | None,
    ) -> LinkResult:
        try:
            tokens = await self._tokens.issue_token_pair(
                user, ip_address=ip_address, user_agent=user_agent
            )
        except AppError as e:
            logger.error(f"Failed to generate login tokens for existing user: {e.message}")
            raise OAuthError("Failed to generate tokens", "login_failed") from e

        session_id = _new_session_id()
        try:
            await self._users.record_login(user.id)
            await self._store.save_login_session(
                LoginTokenSession(
                    id=session_id,
                    user_id=user.id,
                    access_token=tokens.access_token,
                    refresh_token=tokens.refresh_token,
                    expires_in=tokens.expires_in,
                    expires_at=datetime.now(UTC)
                    + timedelta(seconds=self._settings.login_session_ttl_seconds),
                )
            )
        except StoreError as e:
            logger.error(f"Failed to create login session: {e.message}")
            await self._discard_session(user.id, tokens.session_id)
            raise OAuthError("Failed to create login session", "session_failed") from e

        if self._audit is not None:
            await self._audit.log(
                action=AuditAction.OAUTH_LOGIN,
                resource_type="session",
                resource_id=tokens.session_id,
                user_id=user.id,
                details={"provider": profile.provider},
            )
        logger.info(
            f"OAuth login for existing user via {profile.provider}", extra={"user_id": user.id}
        )
        return LinkResult(kind=LinkKind.LOGIN, session_id=session_id, user_id=user.id)

    async def _discard_session(self, user_id: str, session_id: str) -> None:
        """Revoke a session whose tokens never reached the client."""
        try:
            await self._tokens.revoke_session(user_id, session_id, reason="login_aborted")
        except AppError as e:
            logger.error(
                f"Could not revoke aborted login session: {e.message}",
                extra={"user_id": user_id, "session_id": session_id},
            )

    async def _start_signup(
        self, profile: OAuthUserProfile, invitation_token: str | None
    ) -> LinkResult:
        session_id = _new_session_id()
        try:
            await self._store.save_oauth_session(
                OAuthSession(
                    id=session_id,
                    email=profile.email,
                    first_name=profile.first_name,
                    last_name=profile.last_name,
                    provider=profile.provider,
                    provider_id=profile.provider_id,
                    invitation_token=invitation_token,
                    expires_at=datetime.now(UTC)
                    + timedelta(seconds=self._settings.oauth_session_ttl_seconds),
                )
            )
        except StoreError as e:
            logger.error(f"Failed to create OAuth session: {e.message}")
            raise OAuthError("Failed to create OAuth session", "session_creation_failed") from e

        logger.info(
            f"OAuth signup session created via {profile.provider}",
            extra={"has_invitation": invitation_token is not None},
        )
        return LinkResult(kind=LinkKind.SIGNUP, session_id=session_id)

    # --- Signup step and login hand-off ---

    async def get_pending_signup(self, session_id: str) -> OAuthSession:
        pending = await self._store.get_oauth_session(session_id)
        if pending is None:
            raise GoneError("OAuth session expired or not found")
        return pending

    async def complete_signup(
        self,
        session_id: str,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> SignupResult:
        """Create the OAuth account for a pending session and log it in.

        The pending session is consumed first, so it can complete at most
        once. The account and its first token pair are written together; if
        that write fails the pending session is put back so the user can
        retry.

        Raises:
            GoneError: session missing, expired or already used
            ConflictError: the email was registered in the meantime
        """
        pending = await self._store.consume_oauth_session(session_id)
        if pending is None:
            raise GoneError("OAuth session expired or not found")

        try:
            user = self._users.build_user(
                pending.email,
                first_name=first_name or pending.first_name,
                last_name=last_name if last_name is not None else pending.last_name,
                oauth_provider=pending.provider,
                oauth_provider_id=pending.provider_id,
            )
            tokens = await self._tokens.issue_token_pair_for_new_user(
                user, ip_address=ip_address, user_agent=user_agent
            )
        except ConflictError:
            raise
        except AppError as e:
            logger.error(f"OAuth signup failed, restoring pending session: {e.message}")
            await self._restore_pending_signup(pending)
            raise

        if self._audit is not None:
            await self._audit.log(
                action=AuditAction.OAUTH_SIGNUP,
                resource_type="user",
                resource_id=user.id,
                user_id=user.id,
                details={
                    "provider": pending.provider,
                    "invitation_token": pending.invitation_token,
                },
                actor_ip=ip_address,
            )
        return SignupResult(user=user, tokens=tokens, invitation_token=pending.invitation_token)

    async def _restore_pending_signup(self, pending: OAuthSession) -> None:
        try:
            await self._store.save_oauth_session(
                OAuthSession(
                    id=pending.id,
                    email=pending.email,
                    first_name=pending.first_name,
                    last_name=pending.last_name,
                    provider=pending.provider,
                    provider_id=pending.provider_id,
                    invitation_token=pending.invitation_token,
                    expires_at=pending.expires_at,
                )
            )
        except StoreError as e:
            logger.error(f"Could not restore pending OAuth session: {e.message}")

    async def exchange_login_session(self, session_id: str) -> LoginTokenSession:
        """Hand over the parked token pair. Works once."""
        parked = await self._store.consume_login_session(session_id)
        if parked is None:
            raise GoneError("Login session expired or already used")
        return parked
