"""Tests for the OAuth provider client (state, code exchange, profiles)."""

import asyncio
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from authcore.models import OAuthState
from authcore.services.oauth import (
    OAUTH_PROVIDERS,
    OAuthProfileError,
    OAuthStateError,
    OAuthTokenExchangeError,
    UnsupportedProviderError,
    parse_full_name,
)

GOOGLE = OAUTH_PROVIDERS["google"]
GITHUB = OAUTH_PROVIDERS["github"]


class TestState:
    """Tests for the single-use CSRF state token."""

    @pytest.mark.asyncio
    async def test_state_is_consumed_once(self, oauth_client):
        state = await oauth_client.generate_state("google", invitation_token="invite-1")
        assert len(state) == 64

        record = await oauth_client.consume_state(state, "google")
        assert record.invitation_token == "invite-1"

        with pytest.raises(OAuthStateError):
            await oauth_client.consume_state(state, "google")

    @pytest.mark.asyncio
    async def test_concurrent_consumption_has_one_winner(self, oauth_client):
        state = await oauth_client.generate_state("google")

        results = await asyncio.gather(
            oauth_client.consume_state(state, "google"),
            oauth_client.consume_state(state, "google"),
            return_exceptions=True,
        )

        assert sum(isinstance(r, OAuthState) for r in results) == 1
        [error] = [r for r in results if isinstance(r, OAuthStateError)]
        assert error.error_code == "invalid_state"

    @pytest.mark.asyncio
    async def test_state_for_other_provider_is_rejected(self, oauth_client):
        state = await oauth_client.generate_state("google")
        with pytest.raises(OAuthStateError):
            await oauth_client.consume_state(state, "github")

    @pytest.mark.asyncio
    async def test_expired_state_is_rejected(self, oauth_client, store):
        await store.save_oauth_state(
            OAuthState(
                state="stale-state",
                provider="google",
                expires_at=datetime.now(UTC) - timedelta(seconds=1),
            )
        )
        with pytest.raises(OAuthStateError):
            await oauth_client.consume_state("stale-state", "google")

    @pytest.mark.asyncio
    async def test_unknown_provider(self, oauth_client):
        with pytest.raises(UnsupportedProviderError) as exc_info:
            await oauth_client.generate_state("myspace")
        assert exc_info.value.status_code == 404


class TestAuthorizationUrl:
    @pytest.mark.asyncio
    async def test_google_url_carries_client_and_state(self, oauth_client, settings):
        url = oauth_client.authorization_url("google", "state-123")

        parsed = urlparse(url)
        params = parse_qs(parsed.query)
        assert url.startswith(GOOGLE["authorization_url"])
        assert params["client_id"] == [settings.google_client_id]
        assert params["state"] == ["state-123"]
        assert params["redirect_uri"] == [settings.google_redirect_url]
        assert params["scope"] == ["openid email profile"]

    @pytest.mark.asyncio
    async def test_unconfigured_provider_is_unsupported(self, oauth_client, settings):
        settings.github_client_id = ""
        assert oauth_client.is_supported("github") is False
        with pytest.raises(UnsupportedProviderError):
            oauth_client.authorization_url("github", "state-123")


class TestCodeExchange:
    @pytest.mark.asyncio
    async def test_exchange_returns_access_token(self, oauth_client, provider_routes):
        provider_routes[("POST", GOOGLE["token_url"])] = httpx.Response(
            200, json={"access_token": "provider-token", "token_type": "Bearer"}
        )
        assert await oauth_client.exchange_code("google", "auth-code") == "provider-token"

    @pytest.mark.asyncio
    async def test_http_error_is_exchange_failure(self, oauth_client, provider_routes):
        provider_routes[("POST", GOOGLE["token_url"])] = httpx.Response(
            400, json={"error": "invalid_grant"}
        )
        with pytest.raises(OAuthTokenExchangeError) as exc_info:
            await oauth_client.exchange_code("google", "auth-code")
        assert exc_info.value.error_code == "token_exchange_failed"

    @pytest.mark.asyncio
    async def test_github_error_with_200_status(self, oauth_client, provider_routes):
        provider_routes[("POST", GITHUB["token_url"])] = httpx.Response(
            200, json={"error": "bad_verification_code"}
        )
        with pytest.raises(OAuthTokenExchangeError):
            await oauth_client.exchange_code("github", "auth-code")


class TestProfiles:
    @pytest.mark.asyncio
    async def test_google_profile(self, oauth_client, provider_routes):
        provider_routes[("GET", GOOGLE["userinfo_url"])] = httpx.Response(
            200,
            json={
                "id": "1098",
                "email": "Gina@Example.com",
                "verified_email": True,
                "given_name": "Gina",
                "family_name": "Lopez",
            },
        )

        profile = await oauth_client.fetch_profile("google", "provider-token")

        assert profile.email == "gina@example.com"
        assert profile.provider == "google"
        assert profile.provider_id == "1098"
        assert (profile.first_name, profile.last_name) == ("Gina", "Lopez")

    @pytest.mark.asyncio
    async def test_google_unverified_email_is_rejected(self, oauth_client, provider_routes):
        provider_routes[("GET", GOOGLE["userinfo_url"])] = httpx.Response(
            200, json={"id": "1098", "email": "gina@example.com", "verified_email": False}
        )
        with pytest.raises(OAuthProfileError) as exc_info:
            await oauth_client.fetch_profile("google", "provider-token")
        assert exc_info.value.error_code == "profile_fetch_failed"

    @pytest.mark.asyncio
    async def test_github_private_email_uses_primary_verified(
        self, oauth_client, provider_routes
    ):
        provider_routes[("GET", GITHUB["userinfo_url"])] = httpx.Response(
            200, json={"id": 42, "login": "octocat", "name": None, "email": None}
        )
        provider_routes[("GET", GITHUB["emails_url"])] = httpx.Response(
            200,
            json=[
                {"email": "old@example.com", "primary": False, "verified": True},
                {"email": "Octo@Example.com", "primary": True, "verified": True},
            ],
        )

        profile = await oauth_client.fetch_profile("github", "provider-token")

        assert profile.email == "octo@example.com"
        assert profile.provider_id == "42"
        assert profile.first_name == "octocat"

    @pytest.mark.asyncio
    async def test_github_without_verified_email(self, oauth_client, provider_routes):
        provider_routes[("GET", GITHUB["userinfo_url"])] = httpx.Response(
            200, json={"id": 42, "login": "octocat", "email": None}
        )
        provider_routes[("GET", GITHUB["emails_url"])] = httpx.Response(
            200, json=[{"email": "octo@example.com", "primary": True, "verified": False}]
        )
        with pytest.raises(OAuthProfileError):
            await oauth_client.fetch_profile("github", "provider-token")

    @pytest.mark.asyncio
    async def test_profile_endpoint_failure(self, oauth_client, provider_routes):
        provider_routes[("GET", GOOGLE["userinfo_url"])] = httpx.Response(503)
        with pytest.raises(OAuthProfileError):
            await oauth_client.fetch_profile("google", "provider-token")


@pytest.mark.parametrize(
    "full_name, expected",
    [
        ("Ada Lovelace", ("Ada", "Lovelace")),
        ("Jean Claude Van Damme", ("Jean", "Claude Van Damme")),
        ("Prince", ("Prince", "")),
        (None, ("", "")),
    ],
)
def test_parse_full_name(full_name, expected):
    assert parse_full_name(full_name) == expected
