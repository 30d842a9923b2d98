"""Tests for linking OAuth identities to local accounts."""

import pytest

from authcore.core.errors import ConflictError, GoneError, StoreUnavailableError
from authcore.services.audit import AuditAction
from authcore.services.identity_linker import LinkKind, OAuthLinkError
from authcore.services.oauth import OAuthError, OAuthUserProfile


def _profile(
    email="gina@example.com",
    provider="google",
    provider_id="google-123",
    first_name="Gina",
    last_name="Lopez",
) -> OAuthUserProfile:
    return OAuthUserProfile(
        email=email,
        first_name=first_name,
        last_name=last_name,
        provider=provider,
        provider_id=provider_id,
    )


def _rejections(store) -> list:
    return [e for e in store.audit_logs if e.action == AuditAction.OAUTH_REJECTED.value]


class TestIdentityGates:
    """An existing account is only logged in when all three gates pass."""

    @pytest.mark.asyncio
    async def test_matching_identity_logs_in(self, linker, store, oauth_user):
        result = await linker.link(_profile())

        assert result.kind is LinkKind.LOGIN
        assert result.user_id == oauth_user.id
        parked = store.login_sessions[result.session_id]
        assert parked.user_id == oauth_user.id
        assert oauth_user.last_login_at is not None

    @pytest.mark.asyncio
    async def test_password_account_is_never_taken_over(self, linker, store, user):
        with pytest.raises(OAuthLinkError) as exc_info:
            await linker.link(_profile(email="alice@example.com", provider_id="attacker-1"))

        assert exc_info.value.error_code == "account_exists_use_password"
        assert store.login_sessions == {}
        assert [s for s in store.sessions.values() if s.user_id == user.id] == []
        [event] = _rejections(store)
        assert event.details["error_code"] == "account_exists_use_password"

    @pytest.mark.asyncio
    async def test_other_provider_is_refused(self, linker, store, oauth_user):
        with pytest.raises(OAuthLinkError) as exc_info:
            await linker.link(_profile(provider="github", provider_id="gh-999"))

        assert exc_info.value.error_code == "use_google"
        assert store.login_sessions == {}

    @pytest.mark.asyncio
    async def test_provider_id_mismatch_is_refused(self, linker, store, oauth_user):
        with pytest.raises(OAuthLinkError) as exc_info:
            await linker.link(_profile(provider_id="google-456"))

        assert exc_info.value.error_code == "authentication_failed"
        assert store.login_sessions == {}
        assert store.sessions == {}
        [event] = _rejections(store)
        assert event.user_id == oauth_user.id
        assert event.details["provider_id"] == "google-456"

    @pytest.mark.asyncio
    async def test_lookup_failure_is_an_oauth_error(self, linker, store):
        store.available = False
        with pytest.raises(OAuthError) as exc_info:
            await linker.link(_profile())
        assert exc_info.value.error_code == "oauth_failed"


class TestSignup:
    """Unknown emails park the identity for the signup step."""

    @pytest.mark.asyncio
    async def test_unknown_email_starts_signup_without_creating_user(self, linker, store):
        result = await linker.link(_profile(), invitation_token="invite-abc")

        assert result.kind is LinkKind.SIGNUP
        assert store.users == {}
        pending = await linker.get_pending_signup(result.session_id)
        assert pending.email == "gina@example.com"
        assert pending.invitation_token == "invite-abc"

    @pytest.mark.asyncio
    async def test_complete_signup_creates_oauth_account(self, linker, token_service, store):
        result = await linker.link(_profile(), invitation_token="invite-abc")

        signup = await linker.complete_signup(result.session_id, first_name="Georgina")

        assert signup.user.auth_method == "oauth"
        assert signup.user.oauth_provider == "google"
        assert signup.user.oauth_provider_id == "google-123"
        assert signup.user.first_name == "Georgina"
        assert signup.user.last_name == "Lopez"
        assert signup.invitation_token == "invite-abc"
        auth = await token_service.validate_access_token(signup.tokens.access_token)
        assert auth.user_id == signup.user.id

        # The new account passes the gates on the next login
        again = await linker.link(_profile())
        assert again.kind is LinkKind.LOGIN

    @pytest.mark.asyncio
    async def test_signup_session_completes_once(self, linker):
        result = await linker.link(_profile())
        await linker.complete_signup(result.session_id)

        with pytest.raises(GoneError):
            await linker.complete_signup(result.session_id)

    @pytest.mark.asyncio
    async def test_signup_conflicts_with_account_created_meanwhile(
        self, linker, users, store
    ):
        result = await linker.link(_profile())
        await users.create_user("gina@example.com", password_hash="somehash")

        with pytest.raises(ConflictError):
            await linker.complete_signup(result.session_id)
        assert result.session_id not in store.oauth_sessions

    @pytest.mark.asyncio
    async def test_failed_signup_writes_nothing_and_can_be_retried(self, linker, store):
        result = await linker.link(_profile())

        async def fail(user, tokens, session):
            raise StoreUnavailableError()

        store.add_user_with_session = fail
        with pytest.raises(StoreUnavailableError):
            await linker.complete_signup(result.session_id)

        assert store.users == {}
        assert store.sessions == {}
        assert store.issued_tokens == {}
        assert result.session_id in store.oauth_sessions

        del store.add_user_with_session
        signup = await linker.complete_signup(result.session_id)
        assert signup.user.email == "gina@example.com"
        assert result.session_id not in store.oauth_sessions

    @pytest.mark.asyncio
    async def test_unknown_pending_session(self, linker):
        with pytest.raises(GoneError):
            await linker.get_pending_signup("does-not-exist")


class TestLoginHandOff:
    @pytest.mark.asyncio
    async def test_login_session_exchanges_once(self, linker, token_service, oauth_user):
        result = await linker.link(_profile())

        parked = await linker.exchange_login_session(result.session_id)
        auth = await token_service.validate_access_token(parked.access_token)
        assert auth.user_id == oauth_user.id

        with pytest.raises(GoneError):
            await linker.exchange_login_session(result.session_id)

    @pytest.mark.asyncio
    async def test_store_failure_while_parking_tokens(self, linker, store, oauth_user):
        async def fail(session):
            raise StoreUnavailableError()

        store.save_login_session = fail
        with pytest.raises(OAuthError) as exc_info:
            await linker.link(_profile())
        assert exc_info.value.error_code == "session_failed"
        # The session minted for the parked tokens is not left usable
        assert store.sessions
        assert not any(s.is_active for s in store.sessions.values())
