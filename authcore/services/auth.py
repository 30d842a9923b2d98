"""Password authentication: hashing, login and password change."""

import logging

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerifyMismatchError

from authcore.core.errors import AppError, ErrorKind
from authcore.models import AuthMethod, User
from authcore.services.audit import AuditAction, AuditService
from authcore.services.tokens import TokenPair, TokenService
from authcore.services.users import UserDirectory

logger = logging.getLogger(__name__)

# Argon2 password hasher with recommended parameters
# Memory: 64 MiB, Time: 3 iterations, Parallelism: 4
ph = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
)

# Verified against when the account does not exist, so both paths cost the same
_DUMMY_HASH = ph.hash("authcore-dummy-password")


class InvalidCredentialsError(AppError):
    """Invalid email or password."""

    kind = ErrorKind.UNAUTHORIZED
    default_message = "Invalid email or password"


class PasswordChangeError(AppError):
    kind = ErrorKind.BUSINESS_RULE
    default_message = "Current password is incorrect"


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    return ph.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash using constant-time comparison."""
    try:
        ph.verify(password_hash, password)
        return True
    except (VerifyMismatchError, InvalidHashError):
        return False


class AuthService:
    """Service for password authentication operations."""

    def __init__(
        self,
        users: UserDirectory,
        tokens: TokenService,
        audit: AuditService | None = None,
    ):
        self._users = users
        self._tokens = tokens
        self._audit = audit

    async def authenticate(self, email: str, password: str) -> User:
        """Authenticate a user and return the user object.

        Raises InvalidCredentialsError for an unknown email, an OAuth-only
        account, a wrong password and a deactivated account alike.
        """
        user = await self._users.get_user_by_email(email)

        if user is None or user.auth_method != AuthMethod.PASSWORD.value or not user.password_hash:
            # Perform a dummy verification to prevent timing attacks
            verify_password(password, _DUMMY_HASH)
            raise InvalidCredentialsError()

        if not verify_password(password, user.password_hash):
            raise InvalidCredentialsError()

        if not user.is_active:
            logger.info(
                "Password login refused: account is deactivated", extra={"user_id": user.id}
            )
            raise InvalidCredentialsError()

        return user

    async def login(
        self,
        email: str,
        password: str,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> tuple[User, TokenPair]:
        try:
            user = await self.authenticate(email, password)
        except InvalidCredentialsError:
            if self._audit is not None:
                await self._audit.log(
                    action=AuditAction.LOGIN_FAILED,
                    resource_type="user",
                    details={"email": email.strip().lower()},
                    actor_ip=ip_address,
                    level="warning",
                )
            raise

        tokens = await self._tokens.issue_token_pair(
            user, ip_address=ip_address, user_agent=user_agent
        )
        await self._users.record_login(user.id)
        if self._audit is not None:
            await self._audit.log(
                action=AuditAction.LOGIN,
                resource_type="session",
                resource_id=tokens.session_id,
                user_id=user.id,
                actor_ip=ip_address,
            )
        logger.info(f"User logged in: {user.email}", extra={"user_id": user.id})
        return user, tokens

    async def change_password(
        self,
        user_id: str,
        current_password: str,
        new_password: str,
        *,
        actor_ip: str | None = None,
    ) -> None:
        """Change a user's password and revoke every token they hold."""
        user = await self._users.get_user(user_id)
        if user is None or not user.password_hash:
            raise PasswordChangeError("Password login is not enabled for this account")
        if not verify_password(current_password, user.password_hash):
            raise PasswordChangeError()

        await self._users.set_password_hash(user_id, hash_password(new_password))
        await self._tokens.revoke_all_sessions(
            user_id, "password_change", revoked_by=user_id, actor_ip=actor_ip
        )
        if self._audit is not None:
            await self._audit.log(
                action=AuditAction.PASSWORD_CHANGE,
                resource_type="user",
                resource_id=user_id,
                user_id=user_id,
                actor_ip=actor_ip,
            )
        logger.info(f"Password changed for user: {user.email}", extra={"user_id": user_id})
