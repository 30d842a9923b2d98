"""In-process ``TokenStore`` for tests and local development.

Uses the same model classes as the SQL store, held as transient objects.
Every operation runs under one lock so check-and-set writes and
consume-on-read pops are atomic, matching the guarantees the SQL store
gets from primary keys and DELETE ... RETURNING.
"""

import threading
from datetime import UTC, datetime
from typing import Any

from authcore.core.errors import DuplicateKeyError, StoreUnavailableError
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
from authcore.models.base import new_id
from authcore.services.store import unexpired


def _stamp(record: Any) -> Any:
    """Fill in the id and timestamps the database would have defaulted."""
    now = datetime.now(UTC)
    for attr, default in (("id", new_id()), ("created_at", now), ("updated_at", now)):
        if hasattr(record, attr) and getattr(record, attr) is None:
            setattr(record, attr, default)
    return record


class MemoryTokenStore:
    """Minimal in-memory backing store implementing ``TokenStore``."""

    def __init__(self) -> None:
        self.issued_tokens: dict[str, IssuedToken] = {}
        self.blacklist: dict[str, BlacklistedToken] = {}
        self.boundaries: dict[str, UserTokenBoundary] = {}
        self.sessions: dict[str, UserSession] = {}
        self.oauth_states: dict[str, OAuthState] = {}
        self.oauth_sessions: dict[str, OAuthSession] = {}
        self.login_sessions: dict[str, LoginTokenSession] = {}
        self.users: dict[str, User] = {}
        self.audit_logs: list[AuditLog] = []
        # RLock for all data operations
        self._data_lock = threading.RLock()
        # Flipped by tests to simulate an outage
        self.available = True

    def _check_available(self) -> None:
        if not self.available:
            raise StoreUnavailableError()

    # --- Issued tokens ---

    async def record_issued_tokens(self, tokens: list[IssuedToken]) -> None:
        self._check_available()
        with self._data_lock:
            if any(t.jti in self.issued_tokens for t in tokens):
                raise DuplicateKeyError("JTI already issued")
            for token in tokens:
                self.issued_tokens[token.jti] = token

    async def get_issued_token(self, jti: str) -> IssuedToken | None:
        self._check_available()
        with self._data_lock:
            return self.issued_tokens.get(jti)

    # --- Blacklist ---

    async def add_blacklist_entry(self, entry: BlacklistedToken) -> BlacklistedToken:
        self._check_available()
        with self._data_lock:
            if entry.jti in self.blacklist:
                raise DuplicateKeyError()
            self.blacklist[entry.jti] = entry
        return entry

    async def get_blacklist_entry(self, jti: str) -> BlacklistedToken | None:
        self._check_available()
        with self._data_lock:
            return self.blacklist.get(jti)

    async def is_blacklisted(self, jti: str) -> bool:
        self._check_available()
        with self._data_lock:
            return jti in self.blacklist

    async def list_blacklist_entries(
        self,
        *,
        user_id: str | None = None,
        reason: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[BlacklistedToken]:
        self._check_available()
        with self._data_lock:
            entries = [
                e
                for e in self.blacklist.values()
                if (user_id is None or e.user_id == user_id)
                and (reason is None or e.reason == reason)
            ]
        entries.sort(key=lambda e: e.jti)
        entries.sort(key=lambda e: e.revoked_at, reverse=True)
        return entries[offset : offset + limit]

    async def count_blacklist_entries(
        self, *, reason: str | None = None, since: datetime | None = None
    ) -> int:
        self._check_available()
        with self._data_lock:
            return sum(
                1
                for e in self.blacklist.values()
                if (reason is None or e.reason == reason)
                and (since is None or e.revoked_at >= since)
            )

    # --- Revocation boundaries ---

    async def advance_user_boundary(
        self,
        user_id: str,
        valid_since: datetime,
        reason: str,
        revoked_by: str | None,
    ) -> UserTokenBoundary:
        self._check_available()
        with self._data_lock:
            boundary = self.boundaries.get(user_id)
            if boundary is None:
                boundary = UserTokenBoundary(user_id=user_id, tokens_valid_since=valid_since)
                self.boundaries[user_id] = boundary
            else:
                boundary.tokens_valid_since = max(boundary.tokens_valid_since, valid_since)
            boundary.reason = reason
            boundary.revoked_by = revoked_by
            boundary.updated_at = datetime.now(UTC)
            return boundary

    async def get_user_boundary(self, user_id: str) -> UserTokenBoundary | None:
        self._check_available()
        with self._data_lock:
            return self.boundaries.get(user_id)

    # --- Login sessions ---

    async def create_session(self, session: UserSession) -> UserSession:
        self._check_available()
        with self._data_lock:
            _stamp(session)
            if session.id in self.sessions:
                raise DuplicateKeyError()
            self.sessions[session.id] = session
        return session

    async def get_session(self, session_id: str) -> UserSession | None:
        self._check_available()
        with self._data_lock:
            return self.sessions.get(session_id)

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
        self._check_available()
        with self._data_lock:
            session = self.sessions.get(session_id)
            if session is None or not session.is_active or session.refresh_jti != old_refresh_jti:
                return False
            session.refresh_jti = refresh_jti
            session.current_jti = current_jti
            session.expires_at = expires_at
            session.refresh_expires_at = refresh_expires_at
            session.last_used_at = datetime.now(UTC)
            return True

    async def deactivate_session(self, session_id: str) -> UserSession | None:
        self._check_available()
        with self._data_lock:
            session = self.sessions.get(session_id)
            if session is None or not session.is_active:
                return None
            session.is_active = False
            session.revoked_at = datetime.now(UTC)
            return session

    async def deactivate_user_sessions(self, user_id: str) -> list[UserSession]:
        self._check_available()
        now = datetime.now(UTC)
        revoked = []
        with self._data_lock:
            for session in self.sessions.values():
                if session.user_id == user_id and session.is_active:
                    session.is_active = False
                    session.revoked_at = now
                    revoked.append(session)
        return revoked

    async def list_sessions(self, user_id: str, *, active_only: bool = True) -> list[UserSession]:
        self._check_available()
        now = datetime.now(UTC)
        with self._data_lock:
            sessions = [
                s
                for s in self.sessions.values()
                if s.user_id == user_id
                and (not active_only or (s.is_active and s.refresh_expires_at > now))
            ]
        return sorted(sessions, key=lambda s: s.created_at, reverse=True)

    # --- OAuth records ---

    async def save_oauth_state(self, state: OAuthState) -> None:
        self._check_available()
        with self._data_lock:
            if state.state in self.oauth_states:
                raise DuplicateKeyError()
            self.oauth_states[state.state] = state

    async def consume_oauth_state(self, state: str) -> OAuthState | None:
        self._check_available()
        with self._data_lock:
            record = self.oauth_states.pop(state, None)
        return unexpired(record, datetime.now(UTC))

    async def save_oauth_session(self, session: OAuthSession) -> None:
        self._check_available()
        with self._data_lock:
            self.oauth_sessions[session.id] = session

    async def get_oauth_session(self, session_id: str) -> OAuthSession | None:
        self._check_available()
        with self._data_lock:
            record = self.oauth_sessions.get(session_id)
        return unexpired(record, datetime.now(UTC))

    async def consume_oauth_session(self, session_id: str) -> OAuthSession | None:
        self._check_available()
        with self._data_lock:
            record = self.oauth_sessions.pop(session_id, None)
        return unexpired(record, datetime.now(UTC))

    async def save_login_session(self, session: LoginTokenSession) -> None:
        self._check_available()
        with self._data_lock:
            self.login_sessions[session.id] = session

    async def consume_login_session(self, session_id: str) -> LoginTokenSession | None:
        self._check_available()
        with self._data_lock:
            record = self.login_sessions.pop(session_id, None)
        return unexpired(record, datetime.now(UTC))

    # --- Users ---

    async def add_user(self, user: User) -> User:
        self._check_available()
        with self._data_lock:
            _stamp(user)
            if user.id in self.users or any(u.email == user.email for u in self.users.values()):
                raise DuplicateKeyError()
            self.users[user.id] = user
        return user

    async def add_user_with_session(
        self, user: User, tokens: list[IssuedToken], session: UserSession
    ) -> User:
        self._check_available()
        with self._data_lock:
            _stamp(user)
            _stamp(session)
            if (
                user.id in self.users
                or any(u.email == user.email for u in self.users.values())
                or any(t.jti in self.issued_tokens for t in tokens)
                or session.id in self.sessions
            ):
                raise DuplicateKeyError()
            self.users[user.id] = user
            for token in tokens:
                self.issued_tokens[token.jti] = token
            self.sessions[session.id] = session
        return user

    async def get_user(self, user_id: str) -> User | None:
        self._check_available()
        with self._data_lock:
            return self.users.get(user_id)

    async def get_user_by_email(self, email: str) -> User | None:
        self._check_available()
        email = email.lower()
        with self._data_lock:
            return next((u for u in self.users.values() if u.email == email), None)

    async def update_user(self, user_id: str, **values: Any) -> User | None:
        self._check_available()
        with self._data_lock:
            user = self.users.get(user_id)
            if user is None:
                return None
            for key, value in values.items():
                setattr(user, key, value)
            user.updated_at = datetime.now(UTC)
            return user

    # --- Audit ---

    async def add_audit_log(self, entry: AuditLog) -> None:
        self._check_available()
        with self._data_lock:
            self.audit_logs.append(_stamp(entry))

    # --- Maintenance ---

    async def purge_expired(self, now: datetime) -> dict[str, int]:
        self._check_available()
        counts: dict[str, int] = {}
        with self._data_lock:
            for name, table, expiry in (
                ("blacklisted_tokens", self.blacklist, "expires_at"),
                ("issued_tokens", self.issued_tokens, "expires_at"),
                ("user_sessions", self.sessions, "refresh_expires_at"),
                ("oauth_states", self.oauth_states, "expires_at"),
                ("oauth_sessions", self.oauth_sessions, "expires_at"),
                ("login_token_sessions", self.login_sessions, "expires_at"),
            ):
                expired = [key for key, rec in table.items() if getattr(rec, expiry) < now]
                for key in expired:
                    del table[key]
                counts[name] = len(expired)
        return counts

    async def ping(self) -> bool:
        self._check_available()
        return True
