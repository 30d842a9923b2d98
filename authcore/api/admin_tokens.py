"""Token administration API endpoints.

All routes require an admin bearer token.
"""

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Query, Request

from authcore.core.errors import ValidationError
from authcore.core.request_utils import get_client_ip
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
from authcore.services.blacklist import DEFAULT_PAGE_SIZE, BlacklistFilter, BlacklistService
from authcore.services.tokens import AuthContext, TokenService

from .deps import get_blacklist_service, get_token_service, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["token-admin"])


@router.post("/tokens/revoke", response_model=RevokeTokenResponse)
async def revoke_token(
    request: RevokeTokenRequest,
    http_request: Request,
    admin: AuthContext = Depends(require_admin),
    blacklist: BlacklistService = Depends(get_blacklist_service),
) -> RevokeTokenResponse:
    """Revoke a single token by its JTI.

    Works for access and refresh tokens. Returns 400 if the token is
    already revoked.
    """
    entry = await blacklist.revoke_token(
        request.jti,
        revoked_by=admin.user_id,
        reason=request.reason,
        actor_ip=get_client_ip(http_request),
    )
    return RevokeTokenResponse(
        message="Token revoked successfully",
        jti=entry.jti,
        reason=entry.reason,
    )


@router.post("/users/{user_id}/tokens/revoke", response_model=RevokeUserTokensResponse)
async def revoke_user_tokens(
    user_id: str,
    request: RevokeUserTokensRequest,
    http_request: Request,
    admin: AuthContext = Depends(require_admin),
    token_service: TokenService = Depends(get_token_service),
) -> RevokeUserTokensResponse:
    """Revoke every token issued to a user so far and end their sessions."""
    boundary, sessions_revoked = await token_service.revoke_all_sessions(
        user_id,
        request.reason,
        revoked_by=admin.user_id,
        actor_ip=get_client_ip(http_request),
    )
    return RevokeUserTokensResponse(
        message="All user tokens revoked successfully",
        user_id=user_id,
        reason=boundary.reason,
        tokens_valid_since=boundary.tokens_valid_since,
        sessions_revoked=sessions_revoked,
    )


@router.get("/tokens/blacklisted", response_model=BlacklistedTokenListResponse)
async def list_blacklisted_tokens(
    user_id: str | None = None,
    reason: str | None = None,
    limit: int = Query(default=DEFAULT_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    _: AuthContext = Depends(require_admin),
    blacklist: BlacklistService = Depends(get_blacklist_service),
) -> BlacklistedTokenListResponse:
    """List blacklisted tokens by owner or reason, newest first.

    At least one of ``user_id`` or ``reason`` is required. ``limit`` is
    capped at 200.
    """
    if not user_id and not reason:
        raise ValidationError("Either user_id or reason must be provided")

    page = BlacklistFilter(user_id=user_id, reason=reason, limit=limit, offset=offset)
    if user_id:
        entries = await blacklist.get_user_blacklisted_tokens(page)
    else:
        entries = await blacklist.list_blacklisted(page)

    return BlacklistedTokenListResponse(
        items=[BlacklistedTokenResponse.model_validate(e) for e in entries],
        pagination=Pagination(limit=page.limit, offset=page.offset, count=len(entries)),
    )


@router.get("/tokens/stats", response_model=TokenStatsResponse)
async def get_token_stats(
    _: AuthContext = Depends(require_admin),
    blacklist: BlacklistService = Depends(get_blacklist_service),
) -> TokenStatsResponse:
    """Blacklist totals and a breakdown by common revocation reason."""
    start_of_day = datetime.now(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
    total = await blacklist.get_blacklisted_tokens_count()
    today = await blacklist.get_blacklisted_tokens_since(start_of_day)
    breakdown = await blacklist.get_reason_breakdown()

    return TokenStatsResponse(
        total_blacklisted=total,
        blacklisted_today=today,
        blacklisted_by_reason={
            reason: TokenByReason(
                reason=item.reason,
                count=item.count,
                tokens=[BlacklistedTokenResponse.model_validate(t) for t in item.tokens],
            )
            for reason, item in breakdown.items()
        },
    )
