"""OAuth 2.0 provider client for login with Google and GitHub.

Handles the CSRF state token, the authorization redirect, the code
exchange and profile retrieval. Account linking decisions live in
``authcore.services.identity_linker``.
"""

import logging
import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode

import httpx

from authcore.core.config import Settings
from authcore.core.errors import AppError, ErrorKind
from authcore.models import OAuthState
from authcore.services.store import TokenStore

logger = logging.getLogger(__name__)


class OAuthError(AppError):
    """Base exception for OAuth errors.

    ``error_code`` is the value placed in the frontend redirect.
    """

    kind = ErrorKind.UNAUTHORIZED

    def __init__(self, message: str, error_code: str = "oauth_failed"):
        self.error_code = error_code
        super().__init__(message)


class OAuthStateError(OAuthError):
    """Invalid, expired or already used state parameter."""

    def __init__(self, message: str = "Invalid or expired OAuth state"):
        super().__init__(message, "invalid_state")


class OAuthTokenExchangeError(OAuthError):
    def __init__(self, message: str = "Failed to exchange authorization code"):
        super().__init__(message, "token_exchange_failed")


class OAuthProfileError(OAuthError):
    def __init__(self, message: str = "Failed to fetch user profile"):
        super().__init__(message, "profile_fetch_failed")


class UnsupportedProviderError(OAuthError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, provider: str):
        super().__init__(f"Unsupported OAuth provider: {provider}")


# Provider endpoints
OAUTH_PROVIDERS = {
    "google": {
        "authorization_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://oauth2.googleapis.com/token",
        "userinfo_url": "https://www.googleapis.com/oauth2/v2/userinfo",
        "scopes": ["openid", "email", "profile"],
    },
    "github": {
        "authorization_url": "https://github.com/login/oauth/authorize",
        "token_url": "https://github.com/login/oauth/access_token",
        "userinfo_url": "https://api.github.com/user",
        "emails_url": "https://api.github.com/user/emails",
        "scopes": ["read:user", "user:email"],
    },
}


@dataclass(frozen=True)
class OAuthUserProfile:
    """Identity asserted by a provider after a successful code exchange."""

    email: str
    first_name: str
    last_name: str
    provider: str
    provider_id: str


def generate_state() -> str:
    """Generate a random state parameter for CSRF protection (64 hex chars)."""
    return secrets.token_hex(32)


def parse_full_name(full_name: str | None) -> tuple[str, str]:
    """Split a display name on its first space into (first, last)."""
    if not full_name:
        return "", ""
    first, _, last = full_name.strip().partition(" ")
    return first, last


class OAuthProviderClient:
    """Talks to the OAuth providers and keeps single-use state tokens in the store."""

    def __init__(
        self,
        settings: Settings,
        store: TokenStore,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._settings = settings
        self._store = store
        self._http_client = http_client

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
        else:
            async with httpx.AsyncClient(timeout=self._settings.oauth_http_timeout) as client:
                yield client

    def _credentials(self, provider: str) -> tuple[str, str, str]:
        """Return (client_id, client_secret, redirect_url) for a configured provider."""
        if provider not in OAUTH_PROVIDERS:
            raise UnsupportedProviderError(provider)
        client_id = getattr(self._settings, f"{provider}_client_id")
        client_secret = getattr(self._settings, f"{provider}_client_secret")
        redirect_url = getattr(self._settings, f"{provider}_redirect_url")
        if not client_id:
            logger.warning(f"OAuth provider not configured: {provider}")
            raise UnsupportedProviderError(provider)
        return client_id, client_secret, redirect_url

    def is_supported(self, provider: str) -> bool:
        """True when provider is known and has a client id configured."""
        return provider in OAUTH_PROVIDERS and bool(
            getattr(self._settings, f"{provider}_client_id", "")
        )

    # --- State ---

    async def generate_state(self, provider: str, invitation_token: str | None = None) -> str:
        """Create and persist a single-use state token for provider."""
        if provider not in OAUTH_PROVIDERS:
            raise UnsupportedProviderError(provider)
        state = generate_state()
        await self._store.save_oauth_state(
            OAuthState(
                state=state,
                provider=provider,
                invitation_token=invitation_token,
                expires_at=datetime.now(UTC)
                + timedelta(seconds=self._settings.oauth_state_ttl_seconds),
            )
        )
        return state

    async def consume_state(self, state: str, provider: str) -> OAuthState:
        """Validate and consume a state token. A token can be consumed once.

        Raises:
            OAuthStateError: unknown, expired, already used, or issued for
                another provider
        """
        if not state:
            raise OAuthStateError("Missing OAuth state")
        record = await self._store.consume_oauth_state(state)
        if record is None:
            raise OAuthStateError()
        if record.provider != provider:
            logger.warning(
                f"OAuth state issued for {record.provider} presented to {provider} callback"
            )
            raise OAuthStateError()
        return record

    # --- Provider calls ---

    def authorization_url(self, provider: str, state: str) -> str:
        client_id, _, redirect_url = self._credentials(provider)
        config = OAUTH_PROVIDERS[provider]
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_url,
            "response_type": "code",
            "scope": " ".join(config["scopes"]),
            "state": state,
        }
        return f"{config['authorization_url']}?{urlencode(params)}"

    async def exchange_code(self, provider: str, code: str) -> str:
        """Exchange an authorization code for a provider access token."""
        client_id, client_secret, redirect_url = self._credentials(provider)
        if not code:
            raise OAuthTokenExchangeError("Missing authorization code")

        token_data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_url,
            "client_id": client_id,
            "client_secret": client_secret,
        }
        async with self._client() as client:
            try:
                response = await client.post(
                    OAUTH_PROVIDERS[provider]["token_url"],
                    data=token_data,
                    headers={"Accept": "application/json"},
                )
            except httpx.RequestError as e:
                raise OAuthTokenExchangeError(f"Failed to contact token endpoint: {e}") from e

        if response.status_code != 200:
            logger.warning(f"Token exchange with {provider} failed: HTTP {response.status_code}")
            raise OAuthTokenExchangeError(f"Token exchange failed: {response.status_code}")
        try:
            payload = response.json()
        except ValueError as e:
            raise OAuthTokenExchangeError("Invalid token response") from e

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            # GitHub reports errors with a 200 and an "error" field
            logger.warning(f"Token exchange with {provider} returned no access token")
            raise OAuthTokenExchangeError("No access token in response")
        return access_token

    async def fetch_profile(self, provider: str, access_token: str) -> OAuthUserProfile:
        if provider == "google":
            return await self._fetch_google_profile(access_token)
        if provider == "github":
            return await self._fetch_github_profile(access_token)
        raise UnsupportedProviderError(provider)

    async def _get_json(self, client: httpx.AsyncClient, url: str, access_token: str):
        try:
            response = await client.get(
                url,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise OAuthProfileError(f"Profile request failed: {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise OAuthProfileError(f"Failed to contact profile endpoint: {e}") from e
        except ValueError as e:
            raise OAuthProfileError("Invalid profile response") from e

    async def _fetch_google_profile(self, access_token: str) -> OAuthUserProfile:
        async with self._client() as client:
            data = await self._get_json(
                client, OAUTH_PROVIDERS["google"]["userinfo_url"], access_token
            )

        if not data.get("verified_email"):
            raise OAuthProfileError("Email not verified with Google")
        if not data.get("id") or not data.get("email"):
            raise OAuthProfileError("Incomplete Google profile")

        return OAuthUserProfile(
            email=data["email"].lower(),
            first_name=data.get("given_name") or "",
            last_name=data.get("family_name") or "",
            provider="google",
            provider_id=str(data["id"]),
        )

    async def _fetch_github_profile(self, access_token: str) -> OAuthUserProfile:
        config = OAUTH_PROVIDERS["github"]
        async with self._client() as client:
            data = await self._get_json(client, config["userinfo_url"], access_token)
            email = data.get("email")
            # Private email: use the primary verified address
            if not email:
                emails = await self._get_json(client, config["emails_url"], access_token)
                email = next(
                    (
                        e.get("email")
                        for e in emails or []
                        if e.get("primary") and e.get("verified")
                    ),
                    None,
                )
        if not email:
            raise OAuthProfileError("No verified email found in GitHub account")
        if data.get("id") is None:
            raise OAuthProfileError("Incomplete GitHub profile")

        first_name, last_name = parse_full_name(data.get("name"))
        if not first_name:
            first_name = data.get("login") or ""

        return OAuthUserProfile(
            email=email.lower(),
            first_name=first_name,
            last_name=last_name,
            provider="github",
            provider_id=str(data["id"]),
        )
