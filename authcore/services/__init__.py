# authcore Services
from authcore.services.audit import AuditAction, AuditService
from authcore.services.auth import AuthService
from authcore.services.blacklist import BlacklistFilter, BlacklistService, TokenAlreadyRevokedError
from authcore.services.identity_linker import LinkKind, LinkResult, OAuthIdentityLinker
from authcore.services.memory_store import MemoryTokenStore
from authcore.services.oauth import OAuthProviderClient, OAuthUserProfile
from authcore.services.store import SQLTokenStore, TokenStore
from authcore.services.tokens import AuthContext, TokenPair, TokenService
from authcore.services.users import UserDirectory

__all__ = [
    "AuditAction",
    "AuditService",
    "AuthContext",
    "AuthService",
    "BlacklistFilter",
    "BlacklistService",
    "LinkKind",
    "LinkResult",
    "MemoryTokenStore",
    "OAuthIdentityLinker",
    "OAuthProviderClient",
    "OAuthUserProfile",
    "SQLTokenStore",
    "TokenAlreadyRevokedError",
    "TokenPair",
    "TokenService",
    "TokenStore",
    "UserDirectory",
]
