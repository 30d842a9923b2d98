"""Authentication API endpoints."""

import logging
import time
from collections import defaultdict

from fastapi import APIRouter, Depends, Request, status

from authcore.core.config import Settings, get_settings
from authcore.core.errors import NotFoundError, RateLimitedError
from authcore.core.request_utils import get_client_ip
from authcore.schemas.auth import (
    ChangePasswordRequest,
    CompleteOAuthSignupRequest,
    ExchangeSessionRequest,
    LoginRequest,
    MessageResponse,
    OAuthSessionResponse,
    OAuthSignupResponse,
    RefreshRequest,
    SessionListResponse,
    SessionResponse,
    TokenResponse,
    UserResponse,
)
from authcore.services.auth import AuthService, InvalidCredentialsError
from authcore.services.identity_linker import OAuthIdentityLinker
from authcore.services.tokens import AuthContext, TokenPair, TokenService
from authcore.services.users import UserDirectory

from .deps import (
    get_auth_context,
    get_auth_service,
    get_identity_linker,
    get_token_service,
    get_user_directory,
)

logger = logging.getLogger(__name__)


class LoginRateLimiter:
    """Sliding-window count of failed logins per client IP."""

    def __init__(self, window_seconds: int, max_attempts: int):
        self.window_seconds = window_seconds
        self.max_attempts = max_attempts
        self._attempts: dict[str, list[float]] = defaultdict(list)

    def check(self, client_ip: str) -> None:
        """Raise RateLimitedError if client_ip has used up its attempts."""
        now = time.monotonic()
        attempts = [t for t in self._attempts[client_ip] if now - t < self.window_seconds]
        self._attempts[client_ip] = attempts
        if len(attempts) >= self.max_attempts:
            logger.warning("Login rate limit exceeded for %s", client_ip)
            raise RateLimitedError("Too many login attempts. Please try again later.")

    def record(self, client_ip: str) -> None:
        self._attempts[client_ip].append(time.monotonic())


def get_login_rate_limiter(
    request: Request, settings: Settings = Depends(get_settings)
) -> LoginRateLimiter:
    limiter = getattr(request.app.state, "login_rate_limiter", None)
    if limiter is None:
        limiter = LoginRateLimiter(
            settings.login_rate_limit_window_seconds,
            settings.login_rate_limit_max_attempts,
        )
        request.app.state.login_rate_limiter = limiter
    return limiter


def _token_response(tokens: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_type=tokens.token_type,
        expires_in=tokens.expires_in,
    )


router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
async def login(
    request: LoginRequest,
    http_request: Request,
    auth_service: AuthService = Depends(get_auth_service),
    limiter: LoginRateLimiter = Depends(get_login_rate_limiter),
) -> TokenResponse:
    """Authenticate with email and password and get JWT tokens.

    Rate limited per client IP.
    """
    client_ip = get_client_ip(http_request) or "unknown"
    limiter.check(client_ip)

    try:
        _, tokens = await auth_service.login(
            request.email,
            request.password,
            ip_address=client_ip,
            user_agent=http_request.headers.get("User-Agent"),
        )
    except InvalidCredentialsError:
        limiter.record(client_ip)
        raise
    return _token_response(tokens)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_tokens(
    request: RefreshRequest,
    http_request: Request,
    token_service: TokenService = Depends(get_token_service),
) -> TokenResponse:
    """Refresh access token using refresh token.

    Returns new access and refresh tokens (token rotation). The presented
    refresh token stops working.
    """
    tokens = await token_service.refresh_tokens(
        request.refresh_token, ip_address=get_client_ip(http_request)
    )
    return _token_response(tokens)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    http_request: Request,
    auth: AuthContext = Depends(get_auth_context),
    token_service: TokenService = Depends(get_token_service),
) -> MessageResponse:
    """Log out the current session.

    Blacklists the current access token and revokes the session, so its
    refresh token is rejected too.
    """
    await token_service.logout(auth, actor_ip=get_client_ip(http_request))
    return MessageResponse(message="Logged out successfully")


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    request: ChangePasswordRequest,
    http_request: Request,
    auth: AuthContext = Depends(get_auth_context),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Change the current user's password.

    Revokes every token the user holds. The user must log in again.
    """
    await auth_service.change_password(
        auth.user_id,
        request.current_password,
        request.new_password,
        actor_ip=get_client_ip(http_request),
    )
    return MessageResponse(message="Password changed successfully")


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    auth: AuthContext = Depends(get_auth_context),
    users: UserDirectory = Depends(get_user_directory),
) -> UserResponse:
    """Get the current user's information."""
    user = await users.get_user(auth.user_id)
    if user is None:
        raise NotFoundError("User not found")
    return UserResponse.model_validate(user)


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    auth: AuthContext = Depends(get_auth_context),
    token_service: TokenService = Depends(get_token_service),
) -> SessionListResponse:
    """List the current user's active sessions."""
    sessions = await token_service.list_sessions(auth.user_id)
    return SessionListResponse(
        sessions=[
            SessionResponse.model_validate(s).model_copy(
                update={"current": s.id == auth.session_id}
            )
            for s in sessions
        ]
    )


@router.delete("/sessions/{session_id}", response_model=MessageResponse)
async def revoke_session(
    session_id: str,
    auth: AuthContext = Depends(get_auth_context),
    token_service: TokenService = Depends(get_token_service),
) -> MessageResponse:
    """Revoke one of the current user's sessions."""
    await token_service.revoke_session(auth.user_id, session_id, revoked_by=auth.user_id)
    return MessageResponse(message="Session revoked")


@router.post("/exchange-session", response_model=TokenResponse)
async def exchange_login_session(
    request: ExchangeSessionRequest,
    linker: OAuthIdentityLinker = Depends(get_identity_linker),
) -> TokenResponse:
    """Trade the one-time session id from an OAuth login redirect for tokens."""
    parked = await linker.exchange_login_session(request.session_id)
    return TokenResponse(
        access_token=parked.access_token,
        refresh_token=parked.refresh_token,
        expires_in=parked.expires_in,
    )


@router.get("/oauth-session/{session_id}", response_model=OAuthSessionResponse)
async def get_oauth_session(
    session_id: str,
    linker: OAuthIdentityLinker = Depends(get_identity_linker),
) -> OAuthSessionResponse:
    """Show the verified profile of a pending OAuth signup."""
    pending = await linker.get_pending_signup(session_id)
    return OAuthSessionResponse(
        email=pending.email,
        first_name=pending.first_name,
        last_name=pending.last_name,
        provider=pending.provider,
        has_invitation=pending.invitation_token is not None,
        expires_at=pending.expires_at,
    )


@router.post(
    "/oauth-session/{session_id}/complete",
    response_model=OAuthSignupResponse,
    status_code=status.HTTP_201_CREATED,
)
async def complete_oauth_signup(
    session_id: str,
    request: CompleteOAuthSignupRequest,
    http_request: Request,
    linker: OAuthIdentityLinker = Depends(get_identity_linker),
) -> OAuthSignupResponse:
    """Create the account for a pending OAuth signup and log it in."""
    result = await linker.complete_signup(
        session_id,
        first_name=request.first_name,
        last_name=request.last_name,
        ip_address=get_client_ip(http_request),
        user_agent=http_request.headers.get("User-Agent"),
    )
    return OAuthSignupResponse(
        **_token_response(result.tokens).model_dump(),
        user=UserResponse.model_validate(result.user),
        invitation_token=result.invitation_token,
    )
