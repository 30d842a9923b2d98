# authcore Models
from authcore.models.audit_log import AuditLog
from authcore.models.base import BaseModel
from authcore.models.issued_token import IssuedToken
from authcore.models.oauth import LoginTokenSession, OAuthSession, OAuthState
from authcore.models.token_blacklist import BlacklistedToken, UserTokenBoundary
from authcore.models.user import AuthMethod, User
from authcore.models.user_session import UserSession

__all__ = [
    "AuditLog",
    "AuthMethod",
    "BaseModel",
    "BlacklistedToken",
    "IssuedToken",
    "LoginTokenSession",
    "OAuthSession",
    "OAuthState",
    "User",
    "UserSession",
    "UserTokenBoundary",
]
