# authcore Pydantic Schemas
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
from authcore.schemas.token_admin import (
    BlacklistedTokenListResponse,
    BlacklistedTokenResponse,
    Pagination,
    RevokeTokenRequest,
    RevokeTokenResponse,
    RevokeUserTokensRequest,
    RevokeUserTokensResponse,
    TokenByReason,
    TokenStatsResponse,
)

__all__ = [
    "BlacklistedTokenListResponse",
    "BlacklistedTokenResponse",
    "ChangePasswordRequest",
    "CompleteOAuthSignupRequest",
    "ExchangeSessionRequest",
    "LoginRequest",
    "MessageResponse",
    "OAuthSessionResponse",
    "OAuthSignupResponse",
    "Pagination",
    "RefreshRequest",
    "RevokeTokenRequest",
    "RevokeTokenResponse",
    "RevokeUserTokensRequest",
    "RevokeUserTokensResponse",
    "SessionListResponse",
    "SessionResponse",
    "TokenByReason",
    "TokenResponse",
    "TokenStatsResponse",
]
