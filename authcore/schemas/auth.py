"""Pydantic schemas for authentication API."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class LoginRequest(BaseModel):
    """Request for login."""

    email: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    """Response with JWT tokens."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(description="Access token expiry in seconds")


class RefreshRequest(BaseModel):
    """Request for token refresh."""

    refresh_token: str = Field(..., min_length=1)


class ChangePasswordRequest(BaseModel):
    """Request for password change."""

    current_password: str = Field(..., min_length=1)
    new_password: str = Field(
        ...,
        min_length=12,
        max_length=128,
        description="New password (minimum 12 characters)",
    )


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str


class UserResponse(BaseModel):
    """Response with user information."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    first_name: str
    last_name: str
    auth_method: str
    oauth_provider: str | None
    is_active: bool
    is_admin: bool
    last_login_at: datetime | None
    created_at: datetime | None


class SessionResponse(BaseModel):
    """A login session. Token values are never exposed."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    ip_address: str | None
    user_agent: str | None
    created_at: datetime | None
    last_used_at: datetime | None
    refresh_expires_at: datetime
    current: bool = False


class SessionListResponse(BaseModel):
    sessions: list[SessionResponse]


class ExchangeSessionRequest(BaseModel):
    """Request to trade a one-time login session id for tokens."""

    session_id: str = Field(..., min_length=1, max_length=64)


class OAuthSessionResponse(BaseModel):
    """Pending OAuth signup, shown on the signup step."""

    model_config = ConfigDict(from_attributes=True)

    email: str
    first_name: str
    last_name: str
    provider: str
    has_invitation: bool = False
    expires_at: datetime


class CompleteOAuthSignupRequest(BaseModel):
    first_name: str | None = Field(None, max_length=100)
    last_name: str | None = Field(None, max_length=100)


class OAuthSignupResponse(TokenResponse):
    """Tokens for the newly created account."""

    user: UserResponse
    invitation_token: str | None = None
