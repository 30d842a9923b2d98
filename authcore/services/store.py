"""Token store: persistence for issued tokens, revocations, sessions and OAuth records.

``TokenStore`` is the storage contract the services depend on.
``SQLTokenStore`` implements it on PostgreSQL through async SQLAlchemy; every
method runs in its own short transaction so a revocation is visible to the
next validation as soon as the call returns.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, Protocol

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import (
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authcore.core.errors import DuplicateKeyError, StoreError, StoreUnavailableError
from authcore.models import (
    AuditLog,
    BlacklistedToken,
    IssuedToken,
    LoginTokenSession,
    OAuthSession,
    OAuthState,
    User,
    UserSession,
    UserTokenBoundary,
)

logger = logging.getLogger(__name__)


class TokenStore(Protocol):
    # Issued tokens
    async def record_issued_tokens(self, tokens: list[IssuedToken]) -> None: ...

    async def get_issued_token(self, jti: str) -> IssuedToken | None: ...

    # Blacklist
    async def add_blacklist_entry(self, entry: BlacklistedToken) -> BlacklistedToken: ...

    async def get_blacklist_entry(self, jti: str) -> BlacklistedToken | None: ...

    async def is_blacklisted(self, jti: str) -> bool: ...

    async def list_blacklist_entries(
        self,
        *,
        user_id: str | None = None,
        reason: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[BlacklistedToken]: ...

    async def count_blacklist_entries(
        self, *, reason: str | None = None, since: datetime | None = None
    ) -> int: ...

    # Revocation boundaries
    async def advance_user_boundary(
        self,
        user_id: str,
        valid_since: datetime,
        reason: str,
        revoked_by: str | None,
    ) -> UserTokenBoundary: ...

    async def get_user_boundary(self, user_id: str) -> UserTokenBoundary | None: ...

    # Login sessions
    async def create_session(self, session: UserSession) -> UserSession: ...

    async def get_session(self, session_id: str) -> UserSession | None: ...

    async def rotate_session(
        self,
        session_id: str,
        *,
        old_refresh_jti: str,
        refresh_jti: str,
        current_jti: str,
        expires_at: datetime,
        refresh_expires_at: datetime,
    ) -> bool: ...

    async def deactivate_session(self, session_id: str) -> UserSession | None: ...

    async def deactivate_user_sessions(self, user_id: str) -> list[UserSession]: ...

    async def list_sessions(
        self, user_id: str, *, active_only: bool = True
    ) -> list[UserSession]: ...

    # OAuth state, pending signups and login hand-offs
    async def save_oauth_state(self, state: OAuthState) -> None: ...

    async def consume_oauth_state(self, state: str) -> OAuthState | None: ...

    async def save_oauth_session(self, session: OAuthSession) -> None: ...

    async def get_oauth_session(self, session_id: str) -> OAuthSession | None: ...

    async def consume_oauth_session(self, session_id: str) -> OAuthSession | None: ...

    async def save_login_session(self, session: LoginTokenSession) -> None: ...

    async def consume_login_session(self, session_id: str) -> LoginTokenSession | None: ...

    # Users
    async def add_user(self, user: User) -> User: ...

    async def add_user_with_session(
        self, user: User, tokens: list[IssuedToken], session: UserSession
    ) -> User:
        """Insert a new user, its issued tokens and its first session atomically."""
        ...

    async def get_user(self, user_id: str) -> User | None: ...

    async def get_user_by_email(self, email: str) -> User | None: ...

    async def update_user(self, user_id: str, **values: Any) -> User | None: ...

    # Audit
    async def add_audit_log(self, entry: AuditLog) -> None: ...

    # Maintenance
    async def purge_expired(self, now: datetime) -> dict[str, int]: ...

    async def ping(self) -> bool: ...


def unexpired(record: Any, now: datetime) -> Any:
    """Return record unless it has passed its expires_at."""
    if record is None or record.expires_at <= now:
        return None
    return record


class SQLTokenStore:
    """PostgreSQL-backed ``TokenStore``."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_maker() as session, session.begin():
                yield session
        except IntegrityError as e:
            raise DuplicateKeyError() from e
        except (OperationalError, InterfaceError, PoolTimeoutError, OSError) as e:
            logger.warning(f"Token store unavailable: {e}")
            raise StoreUnavailableError() from e
        except SQLAlchemyError as e:
            logger.error(f"Token store error: {e}")
            raise StoreError("Token store error") from e

    # --- Issued tokens ---

    async def record_issued_tokens(self, tokens: list[IssuedToken]) -> None:
        async with self._transaction() as session:
            session.add_all(tokens)

    async def get_issued_token(self, jti: str) -> IssuedToken | None:
        async with self._transaction() as session:
            return await session.get(IssuedToken, jti)

    # --- Blacklist ---

    async def add_blacklist_entry(self, entry: BlacklistedToken) -> BlacklistedToken:
        # Primary key on jti makes the insert write-once
        async with self._transaction() as session:
            session.add(entry)
        return entry

    async def get_blacklist_entry(self, jti: str) -> BlacklistedToken | None:
        async with self._transaction() as session:
            return await session.get(BlacklistedToken, jti)

    async def is_blacklisted(self, jti: str) -> bool:
        async with self._transaction() as session:
            result = await session.execute(
                select(BlacklistedToken.jti).where(BlacklistedToken.jti == jti)
            )
            return result.scalar_one_or_none() is not None

    async def list_blacklist_entries(
        self,
        *,
        user_id: str | None = None,
        reason: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[BlacklistedToken]:
        query = select(BlacklistedToken)
        if user_id is not None:
            query = query.where(BlacklistedToken.user_id == user_id)
        if reason is not None:
            query = query.where(BlacklistedToken.reason == reason)
        query = (
            query.order_by(BlacklistedToken.revoked_at.desc(), BlacklistedToken.jti)
            .limit(limit)
            .offset(offset)
        )
        async with self._transaction() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def count_blacklist_entries(
        self, *, reason: str | None = None, since: datetime | None = None
    ) -> int:
        query = select(func.count()).select_from(BlacklistedToken)
        if reason is not None:
            query = query.where(BlacklistedToken.reason == reason)
        if since is not None:
            query = query.where(BlacklistedToken.revoked_at >= since)
        async with self._transaction() as session:
            result = await session.execute(query)
            return result.scalar() or 0

    # --- Revocation boundaries ---

    async def advance_user_boundary(
        self,
        user_id: str,
        valid_since: datetime,
        reason: str,
        revoked_by: str | None,
    ) -> UserTokenBoundary:
        stmt = pg_insert(UserTokenBoundary).values(
            user_id=user_id,
            tokens_valid_since=valid_since,
            reason=reason,
            revoked_by=revoked_by,
            updated_at=datetime.now(UTC),
        )
        # The boundary never moves backwards
        stmt = stmt.on_conflict_do_update(
            index_elements=[UserTokenBoundary.user_id],
            set_={
                "tokens_valid_since": func.greatest(
                    UserTokenBoundary.tokens_valid_since, stmt.excluded.tokens_valid_since
                ),
                "reason": stmt.excluded.reason,
                "revoked_by": stmt.excluded.revoked_by,
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(UserTokenBoundary)
        async with self._transaction() as session:
            result = await session.execute(
                stmt, execution_options={"populate_existing": True}
            )
            return result.scalar_one()

    async def get_user_boundary(self, user_id: str) -> UserTokenBoundary | None:
        async with self._transaction() as session:
            return await session.get(UserTokenBoundary, user_id)

    # --- Login sessions ---

    async def create_session(self, session: UserSession) -> UserSession:
        async with self._transaction() as db:
            db.add(session)
        return session

    async def get_session(self, session_id: str) -> UserSession | None:
        async with self._transaction() as session:
            return await session.get(UserSession, session_id)

    async def rotate_session(
        self,
        session_id: str,
        *,
        old_refresh_jti: str,
        refresh_jti: str,
        current_jti: str,
        expires_at: datetime,
        refresh_expires_at: datetime,
    ) -> bool:
        stmt = (
            update(UserSession)
            .where(
                UserSession.id == session_id,
                UserSession.refresh_jti == old_refresh_jti,
                UserSession.is_active.is_(True),
            )
            .values(
                refresh_jti=refresh_jti,
                current_jti=current_jti,
                expires_at=expires_at,
                refresh_expires_at=refresh_expires_at,
                last_used_at=datetime.now(UTC),
            )
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def deactivate_session(self, session_id: str) -> UserSession | None:
        stmt = (
            update(UserSession)
            .where(UserSession.id == session_id, UserSession.is_active.is_(True))
            .values(is_active=False, revoked_at=datetime.now(UTC))
            .returning(UserSession)
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def deactivate_user_sessions(self, user_id: str) -> list[UserSession]:
        stmt = (
            update(UserSession)
            .where(UserSession.user_id == user_id, UserSession.is_active.is_(True))
            .values(is_active=False, revoked_at=datetime.now(UTC))
            .returning(UserSession)
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_sessions(self, user_id: str, *, active_only: bool = True) -> list[UserSession]:
        query = select(UserSession).where(UserSession.user_id == user_id)
        if active_only:
            query = query.where(
                UserSession.is_active.is_(True),
                UserSession.refresh_expires_at > datetime.now(UTC),
            )
        query = query.order_by(UserSession.created_at.desc())
        async with self._transaction() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    # --- OAuth records ---

    async def save_oauth_state(self, state: OAuthState) -> None:
        async with self._transaction() as session:
            session.add(state)

    async def consume_oauth_state(self, state: str) -> OAuthState | None:
        # DELETE ... RETURNING: exactly one concurrent caller gets the row
        stmt = delete(OAuthState).where(OAuthState.state == state).returning(OAuthState)
        async with self._transaction() as session:
            result = await session.execute(stmt)
            return unexpired(result.scalar_one_or_none(), datetime.now(UTC))

    async def save_oauth_session(self, session: OAuthSession) -> None:
        async with self._transaction() as db:
            db.add(session)

    async def get_oauth_session(self, session_id: str) -> OAuthSession | None:
        async with self._transaction() as session:
            return unexpired(await session.get(OAuthSession, session_id), datetime.now(UTC))

    async def consume_oauth_session(self, session_id: str) -> OAuthSession | None:
        stmt = delete(OAuthSession).where(OAuthSession.id == session_id).returning(OAuthSession)
        async with self._transaction() as session:
            result = await session.execute(stmt)
            return unexpired(result.scalar_one_or_none(), datetime.now(UTC))

    async def save_login_session(self, session: LoginTokenSession) -> None:
        async with self._transaction() as db:
            db.add(session)

    async def consume_login_session(self, session_id: str) -> LoginTokenSession | None:
        stmt = (
            delete(LoginTokenSession)
            .where(LoginTokenSession.id == session_id)
            .returning(LoginTokenSession)
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
            return unexpired(result.scalar_one_or_none(), datetime.now(UTC))

    # --- Users ---

    async def add_user(self, user: User) -> User:
        async with self._transaction() as session:
            session.add(user)
        return user

    async def add_user_with_session(
        self, user: User, tokens: list[IssuedToken], session: UserSession
    ) -> User:
        async with self._transaction() as db:
            db.add(user)
            db.add_all(tokens)
            db.add(session)
        return user

    async def get_user(self, user_id: str) -> User | None:
        async with self._transaction() as session:
            return await session.get(User, user_id)

    async def get_user_by_email(self, email: str) -> User | None:
        async with self._transaction() as session:
            result = await session.execute(select(User).where(User.email == email.lower()))
            return result.scalar_one_or_none()

    async def update_user(self, user_id: str, **values: Any) -> User | None:
        values.setdefault("updated_at", datetime.now(UTC))
        stmt = update(User).where(User.id == user_id).values(**values).returning(User)
        async with self._transaction() as session:
            result = await session.execute(stmt, execution_options={"populate_existing": True})
            return result.scalar_one_or_none()

    # --- Audit ---

    async def add_audit_log(self, entry: AuditLog) -> None:
        async with self._transaction() as session:
            session.add(entry)

    # --- Maintenance ---

    async def purge_expired(self, now: datetime) -> dict[str, int]:
        """Delete records past their expiry. Returns counts per table."""
        targets = {
            "blacklisted_tokens": delete(BlacklistedToken).where(BlacklistedToken.expires_at < now),
            "issued_tokens": delete(IssuedToken).where(IssuedToken.expires_at < now),
            "user_sessions": delete(UserSession).where(UserSession.refresh_expires_at < now),
            "oauth_states": delete(OAuthState).where(OAuthState.expires_at < now),
            "oauth_sessions": delete(OAuthSession).where(OAuthSession.expires_at < now),
            "login_token_sessions": delete(LoginTokenSession).where(
                LoginTokenSession.expires_at < now
            ),
        }
        counts: dict[str, int] = {}
        async with self._transaction() as session:
            for name, stmt in targets.items():
                result = await session.execute(stmt)
                counts[name] = result.rowcount or 0
        return counts

    async def ping(self) -> bool:
        async with self._transaction() as session:
            await session.execute(text("SELECT 1"))
        return True
