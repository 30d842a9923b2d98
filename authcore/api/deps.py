"""FastAPI dependencies wiring the store, services and the authenticated caller.

The token store lives on ``app.state``; tests replace ``get_token_store``
(and ``get_oauth_client`` for provider calls) through dependency_overrides.
"""

from fastapi import Depends, Request

from authcore.core.config import Settings, get_settings
from authcore.core.errors import ForbiddenError
from authcore.core.request_utils import extract_bearer_token
from authcore.services.audit import AuditService
from authcore.services.auth import AuthService
from authcore.services.blacklist import BlacklistService
from authcore.services.identity_linker import OAuthIdentityLinker
from authcore.services.oauth import OAuthProviderClient
from authcore.services.store import TokenStore
from authcore.services.tokens import AuthContext, InvalidTokenError, TokenService
from authcore.services.users import UserDirectory


def get_token_store(request: Request) -> TokenStore:
    return request.app.state.token_store


def get_audit_service(store: TokenStore = Depends(get_token_store)) -> AuditService:
    return AuditService(store)


def get_user_directory(store: TokenStore = Depends(get_token_store)) -> UserDirectory:
    return UserDirectory(store)


def get_blacklist_service(
    store: TokenStore = Depends(get_token_store),
    settings: Settings = Depends(get_settings),
    audit: AuditService = Depends(get_audit_service),
) -> BlacklistService:
    return BlacklistService(store, settings, audit)


def get_token_service(
    settings: Settings = Depends(get_settings),
    store: TokenStore = Depends(get_token_store),
    blacklist: BlacklistService = Depends(get_blacklist_service),
    users: UserDirectory = Depends(get_user_directory),
    audit: AuditService = Depends(get_audit_service),
) -> TokenService:
    return TokenService(settings, store, blacklist, users, audit)


def get_auth_service(
    users: UserDirectory = Depends(get_user_directory),
    tokens: TokenService = Depends(get_token_service),
    audit: AuditService = Depends(get_audit_service),
) -> AuthService:
    return AuthService(users, tokens, audit)


def get_oauth_client(
    settings: Settings = Depends(get_settings),
    store: TokenStore = Depends(get_token_store),
) -> OAuthProviderClient:
    return OAuthProviderClient(settings, store)


def get_identity_linker(
    settings: Settings = Depends(get_settings),
    store: TokenStore = Depends(get_token_store),
    users: UserDirectory = Depends(get_user_directory),
    tokens: TokenService = Depends(get_token_service),
    audit: AuditService = Depends(get_audit_service),
) -> OAuthIdentityLinker:
    return OAuthIdentityLinker(settings, store, users, tokens, audit)


async def get_auth_context(
    request: Request,
    tokens: TokenService = Depends(get_token_service),
) -> AuthContext:
    """Authenticate the request from its bearer token."""
    token = extract_bearer_token(request)
    if token is None:
        raise InvalidTokenError("Missing or invalid authorization header")
    return await tokens.validate_access_token(token)


async def require_admin(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
    if not auth.is_admin:
        raise ForbiddenError()
    return auth
