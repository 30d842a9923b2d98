"""User directory: lookup and creation of accounts."""

import logging
from datetime import UTC, datetime
from typing import Any

from authcore.core.errors import ConflictError, DuplicateKeyError, ValidationError
from authcore.models import AuthMethod, User
from authcore.models.base import new_id
from authcore.services.store import TokenStore

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if "@" not in email:
        raise ValidationError("Invalid email address")
    return email


class UserDirectory:
    """Resolves identities and enforces the auth-method invariants on creation."""

    def __init__(self, store: TokenStore):
        self._store = store

    async def get_user(self, user_id: str) -> User | None:
        return await self._store.get_user(user_id)

    async def get_user_by_email(self, email: str) -> User | None:
        return await self._store.get_user_by_email(email.strip().lower())

    def build_user(
        self,
        email: str,
        *,
        first_name: str = "",
        last_name: str = "",
        password_hash: str | None = None,
        oauth_provider: str | None = None,
        oauth_provider_id: str | None = None,
        is_admin: bool = False,
    ) -> User:
        """Validate credentials and return an unsaved account with its id assigned.

        The auth method is derived from the credentials given and is never
        changed afterwards: an OAuth account needs both provider fields and
        no password; a password account needs a hash.

        Raises:
            ValidationError: inconsistent credentials
        """
        email = normalize_email(email)
        if oauth_provider or oauth_provider_id:
            if not (oauth_provider and oauth_provider_id):
                raise ValidationError("OAuth accounts need both provider and provider id")
            if password_hash is not None:
                raise ValidationError("OAuth accounts cannot have a password")
            auth_method = AuthMethod.OAUTH
        elif password_hash:
            auth_method = AuthMethod.PASSWORD
        else:
            raise ValidationError("Either a password or an OAuth identity is required")

        return User(
            id=new_id(),
            email=email,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            password_hash=password_hash,
            auth_method=auth_method.value,
            oauth_provider=oauth_provider,
            oauth_provider_id=oauth_provider_id,
            is_active=True,
            is_admin=is_admin,
        )

    async def create_user(self, email: str, **fields: Any) -> User:
        """Create an account from the same arguments as ``build_user``.

        Raises:
            ValidationError: inconsistent credentials
            ConflictError: the email is already registered
        """
        user = self.build_user(email, **fields)
        try:
            user = await self._store.add_user(user)
        except DuplicateKeyError as e:
            raise ConflictError("An account with this email already exists") from e

        logger.info(f"Created {user.auth_method} user: {user.email}", extra={"user_id": user.id})
        return user

    async def set_password_hash(self, user_id: str, password_hash: str) -> User | None:
        return await self._store.update_user(user_id, password_hash=password_hash)

    async def record_login(self, user_id: str) -> User | None:
        return await self._store.update_user(user_id, last_login_at=datetime.now(UTC))
