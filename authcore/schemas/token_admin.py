"""Pydantic schemas for the token administration API."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class RevokeTokenRequest(BaseModel):
    """Request to revoke a specific token by JTI."""

    jti: str = Field(..., min_length=1, max_length=64, examples=["01K4FHGHT3XX9WFM293QPZ5G9V"])
    reason: str = Field(..., min_length=1, max_length=100, examples=["security_incident"])


class RevokeTokenResponse(BaseModel):
    message: str
    jti: str
    reason: str


class RevokeUserTokensRequest(BaseModel):
    """Request to revoke all tokens for a user."""

    reason: str = Field(..., min_length=1, max_length=100, examples=["account_compromise"])


class RevokeUserTokensResponse(BaseModel):
    message: str
    user_id: str
    reason: str
    tokens_valid_since: datetime
    sessions_revoked: int


class BlacklistedTokenResponse(BaseModel):
    """A blacklisted token."""

    model_config = ConfigDict(from_attributes=True)

    jti: str
    user_id: str | None = Field(description="User who owned the token, if known")
    revoked_by: str | None
    reason: str
    token_type: str | None
    revoked_at: datetime
    expires_at: datetime = Field(description="When the token would have naturally expired")


class Pagination(BaseModel):
    limit: int
    offset: int
    count: int


class BlacklistedTokenListResponse(BaseModel):
    items: list[BlacklistedTokenResponse]
    pagination: Pagination


class TokenByReason(BaseModel):
    """Tokens grouped by reason with a few recent samples."""

    reason: str
    count: int
    tokens: list[BlacklistedTokenResponse] = []


class TokenStatsResponse(BaseModel):
    """Token management statistics."""

    total_blacklisted: int
    blacklisted_today: int
    blacklisted_by_reason: dict[str, TokenByReason]
