"""OAuth login endpoints.

The callback never returns tokens in the URL. A login redirects with a
one-time session id the frontend trades at ``/auth/exchange-session``; an
unknown email redirects to the signup form with a pending OAuth session.
"""

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from authcore.core.config import Settings, get_settings
from authcore.core.errors import StoreError
from authcore.core.request_utils import get_client_ip
from authcore.services.identity_linker import LinkKind, OAuthIdentityLinker
from authcore.services.oauth import OAuthError, OAuthProviderClient, UnsupportedProviderError

from .deps import get_identity_linker, get_oauth_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["oauth"])


def _frontend_redirect(settings: Settings, path: str, **params: str) -> RedirectResponse:
    return RedirectResponse(
        url=f"{settings.frontend_url}{path}?{urlencode(params)}",
        status_code=302,
    )


def _error_redirect(settings: Settings, error_code: str) -> RedirectResponse:
    return _frontend_redirect(settings, "/auth/signin", error=error_code)


@router.get("/{provider}")
async def oauth_initiate(
    provider: str,
    invitation_token: str | None = None,
    oauth_client: OAuthProviderClient = Depends(get_oauth_client),
) -> RedirectResponse:
    """Redirect the browser to the provider's consent page."""
    if not oauth_client.is_supported(provider):
        raise UnsupportedProviderError(provider)
    state = await oauth_client.generate_state(provider, invitation_token)
    return RedirectResponse(url=oauth_client.authorization_url(provider, state), status_code=302)


@router.get("/{provider}/callback")
async def oauth_callback(
    provider: str,
    http_request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    settings: Settings = Depends(get_settings),
    oauth_client: OAuthProviderClient = Depends(get_oauth_client),
    linker: OAuthIdentityLinker = Depends(get_identity_linker),
) -> RedirectResponse:
    """Finish the provider round trip and redirect back to the frontend.

    Every failure redirects to the sign-in page with an ``error`` code.
    """
    if error:
        logger.info(f"OAuth provider {provider} returned error: {error}")
        return _error_redirect(settings, "oauth_failed")
    if not code or not state:
        return _error_redirect(settings, "oauth_failed")

    try:
        record = await oauth_client.consume_state(state, provider)
        access_token = await oauth_client.exchange_code(provider, code)
        profile = await oauth_client.fetch_profile(provider, access_token)
        result = await linker.link(
            profile,
            record.invitation_token,
            ip_address=get_client_ip(http_request),
            user_agent=http_request.headers.get("User-Agent"),
        )
    except OAuthError as e:
        logger.info(f"OAuth callback for {provider} failed: {e.error_code}")
        return _error_redirect(settings, e.error_code)
    except StoreError as e:
        logger.error(f"OAuth callback for {provider} failed on storage: {e.message}")
        return _error_redirect(settings, "oauth_failed")

    if result.kind is LinkKind.LOGIN:
        return _frontend_redirect(
            settings, "/auth/callback", session=result.session_id, type="login"
        )
    return _frontend_redirect(settings, "/auth/signup", session=result.session_id)
