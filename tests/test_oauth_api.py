"""Tests for the OAuth initiate and callback endpoints."""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from authcore.services.oauth import OAUTH_PROVIDERS
from tests.conftest import FRONTEND_URL

GOOGLE = OAUTH_PROVIDERS["google"]


@pytest.fixture
def oauth_http(oauth_app, async_client):
    """HTTP client for an app whose providers are mocked."""
    return async_client


@pytest.fixture
def google_profile(provider_routes):
    """Make the mocked Google answer the code exchange and return a profile."""

    def configure(provider_id="google-123", email="gina@example.com"):
        provider_routes[("POST", GOOGLE["token_url"])] = httpx.Response(
            200, json={"access_token": "provider-token", "token_type": "Bearer"}
        )
        provider_routes[("GET", GOOGLE["userinfo_url"])] = httpx.Response(
            200,
            json={
                "id": provider_id,
                "email": email,
                "verified_email": True,
                "given_name": "Gina",
                "family_name": "Lopez",
            },
        )

    return configure


def _redirect(response) -> tuple[str, dict[str, list[str]]]:
    location = urlparse(response.headers["location"])
    return f"{location.scheme}://{location.netloc}{location.path}", parse_qs(location.query)


class TestInitiate:
    @pytest.mark.asyncio
    async def test_redirects_to_provider_with_state(self, oauth_http, store):
        response = await oauth_http.get("/auth/google", params={"invitation_token": "inv-1"})

        assert response.status_code == 302
        target, params = _redirect(response)
        assert target == GOOGLE["authorization_url"]
        [state] = params["state"]
        assert store.oauth_states[state].provider == "google"
        assert store.oauth_states[state].invitation_token == "inv-1"

    @pytest.mark.asyncio
    async def test_unknown_provider(self, oauth_http):
        response = await oauth_http.get("/auth/myspace")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_unconfigured_provider(self, oauth_http, settings):
        settings.github_client_id = ""
        response = await oauth_http.get("/auth/github")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_fixed_auth_routes_are_not_providers(self, oauth_http):
        response = await oauth_http.get("/auth/me")
        assert response.status_code == 401


class TestCallback:
    @pytest.mark.asyncio
    async def test_existing_oauth_account_logs_in(
        self, oauth_http, oauth_client, oauth_user, google_profile, store
    ):
        google_profile()
        state = await oauth_client.generate_state("google")

        response = await oauth_http.get(
            "/auth/google/callback", params={"code": "auth-code", "state": state}
        )

        assert response.status_code == 302
        target, params = _redirect(response)
        assert target == f"{FRONTEND_URL}/auth/callback"
        assert params["type"] == ["login"]
        [session_id] = params["session"]
        assert store.login_sessions[session_id].user_id == oauth_user.id
        # Tokens never travel in the redirect
        assert "access_token" not in response.headers["location"]

        response = await oauth_http.post(
            "/auth/exchange-session", json={"session_id": session_id}
        )
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_unknown_email_redirects_to_signup(
        self, oauth_http, oauth_client, google_profile, store
    ):
        google_profile(email="newcomer@example.com", provider_id="google-999")
        state = await oauth_client.generate_state("google", invitation_token="inv-7")

        response = await oauth_http.get(
            "/auth/google/callback", params={"code": "auth-code", "state": state}
        )

        target, params = _redirect(response)
        assert target == f"{FRONTEND_URL}/auth/signup"
        [session_id] = params["session"]
        pending = store.oauth_sessions[session_id]
        assert pending.email == "newcomer@example.com"
        assert pending.invitation_token == "inv-7"
        assert store.users == {}

    @pytest.mark.asyncio
    async def test_password_account_is_refused(
        self, oauth_http, oauth_client, user, google_profile, store
    ):
        google_profile(email="alice@example.com", provider_id="attacker-1")
        state = await oauth_client.generate_state("google")

        response = await oauth_http.get(
            "/auth/google/callback", params={"code": "auth-code", "state": state}
        )

        target, params = _redirect(response)
        assert target == f"{FRONTEND_URL}/auth/signin"
        assert params["error"] == ["account_exists_use_password"]
        assert store.login_sessions == {}

    @pytest.mark.asyncio
    async def test_provider_id_mismatch_is_refused(
        self, oauth_http, oauth_client, oauth_user, google_profile
    ):
        google_profile(provider_id="google-456")
        state = await oauth_client.generate_state("google")

        response = await oauth_http.get(
            "/auth/google/callback", params={"code": "auth-code", "state": state}
        )

        _, params = _redirect(response)
        assert params["error"] == ["authentication_failed"]

    @pytest.mark.asyncio
    async def test_state_cannot_be_replayed(
        self, oauth_http, oauth_client, oauth_user, google_profile
    ):
        google_profile()
        state = await oauth_client.generate_state("google")
        params = {"code": "auth-code", "state": state}

        await oauth_http.get("/auth/google/callback", params=params)
        response = await oauth_http.get("/auth/google/callback", params=params)

        _, query = _redirect(response)
        assert query["error"] == ["invalid_state"]

    @pytest.mark.asyncio
    async def test_unknown_state(self, oauth_http):
        response = await oauth_http.get(
            "/auth/google/callback", params={"code": "auth-code", "state": "forged"}
        )
        _, params = _redirect(response)
        assert params["error"] == ["invalid_state"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "params",
        [
            {"error": "access_denied"},
            {"state": "some-state"},
            {"code": "auth-code"},
            {},
        ],
    )
    async def test_incomplete_callback(self, oauth_http, params):
        response = await oauth_http.get("/auth/google/callback", params=params)

        assert response.status_code == 302
        target, query = _redirect(response)
        assert target == f"{FRONTEND_URL}/auth/signin"
        assert query["error"] == ["oauth_failed"]

    @pytest.mark.asyncio
    async def test_failed_code_exchange(self, oauth_http, oauth_client, provider_routes):
        provider_routes[("POST", GOOGLE["token_url"])] = httpx.Response(
            400, json={"error": "invalid_grant"}
        )
        state = await oauth_client.generate_state("google")

        response = await oauth_http.get(
            "/auth/google/callback", params={"code": "bad-code", "state": state}
        )

        _, params = _redirect(response)
        assert params["error"] == ["token_exchange_failed"]
