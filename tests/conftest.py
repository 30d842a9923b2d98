"""Pytest configuration and fixtures for authcore tests.

Most tests run against MemoryTokenStore. Tests marked ``requires_postgres``
use the ``sql_store`` fixture:
- TEST_DATABASE_URL is used when set
- Otherwise, if testcontainers is installed and Docker is available, a
  PostgreSQL container is started
- Otherwise those tests are skipped
"""

import os
import warnings
from collections.abc import AsyncGenerator

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from authcore.api.deps import get_oauth_client
from authcore.core.config import Settings
from authcore.main import create_app
from authcore.services.audit import AuditService
from authcore.services.auth import AuthService, hash_password
from authcore.services.blacklist import BlacklistService
from authcore.services.identity_linker import OAuthIdentityLinker
from authcore.services.memory_store import MemoryTokenStore
from authcore.services.oauth import OAuthProviderClient
from authcore.services.tokens import TokenService
from authcore.services.users import UserDirectory

TEST_PASSWORD = "correct-horse-battery"
TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD)
TEST_JWT_SECRET = "test-jwt-secret-" + "k" * 48
FRONTEND_URL = "http://frontend.test"


# --- PostgreSQL Handling ---

_container = None


def _try_testcontainers() -> str | None:
    """Try to start PostgreSQL using testcontainers.

    Returns database URL if successful, None otherwise.
    """
    try:
        from testcontainers.postgres import PostgresContainer
    except ImportError:
        return None

    global _container
    try:
        _container = PostgresContainer(
            image="postgres:16-alpine",
            username="test",
            password="test",
            dbname="authcore_test",
        )
        _container.start()
    except Exception as e:
        warnings.warn(f"Testcontainers not available: {e}", stacklevel=2)
        _container = None
        return None

    url = _container.get_connection_url()
    url = url.replace("postgresql+psycopg2://", "postgresql+asyncpg://")
    return url.replace("postgresql://", "postgresql+asyncpg://")


def pytest_sessionfinish(session, exitstatus):
    """Stop the PostgreSQL container when tests finish."""
    global _container
    if _container is not None:
        _container.stop()
        _container = None


@pytest.fixture(scope="session")
def database_url() -> str:
    url = os.environ.get("TEST_DATABASE_URL") or _try_testcontainers()
    if not url:
        pytest.skip("PostgreSQL not available (set TEST_DATABASE_URL or install Docker)")
    return url


@pytest.fixture
async def sql_store(database_url):
    """SQLTokenStore on a freshly created schema."""
    from sqlalchemy.exc import OperationalError
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
    from sqlalchemy.pool import NullPool

    import authcore.models  # noqa: F401
    from authcore.core.database import Base
    from authcore.services.store import SQLTokenStore

    engine = create_async_engine(database_url, poolclass=NullPool)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
    except (OSError, OperationalError) as e:
        await engine.dispose()
        pytest.skip(f"PostgreSQL not reachable: {e}")

    yield SQLTokenStore(async_sessionmaker(engine, expire_on_commit=False))

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


# --- Settings and services ---


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        jwt_secret_key=TEST_JWT_SECRET,
        store_retry_attempts=1,
        store_retry_base_delay=0,
        token_validation_timeout_seconds=0.5,
        google_client_id="google-client-id",
        google_client_secret="google-client-secret",
        github_client_id="github-client-id",
        github_client_secret="github-client-secret",
        frontend_url=FRONTEND_URL,
        login_rate_limit_max_attempts=3,
    )


@pytest.fixture
def store() -> MemoryTokenStore:
    return MemoryTokenStore()


@pytest.fixture
def audit(store) -> AuditService:
    return AuditService(store)


@pytest.fixture
def users(store) -> UserDirectory:
    return UserDirectory(store)


@pytest.fixture
def blacklist(store, settings, audit) -> BlacklistService:
    return BlacklistService(store, settings, audit)


@pytest.fixture
def token_service(settings, store, blacklist, users, audit) -> TokenService:
    return TokenService(settings, store, blacklist, users, audit)


@pytest.fixture
def auth_service(users, token_service, audit) -> AuthService:
    return AuthService(users, token_service, audit)


@pytest.fixture
def linker(settings, store, users, token_service, audit) -> OAuthIdentityLinker:
    return OAuthIdentityLinker(settings, store, users, token_service, audit)


# --- Accounts and tokens ---


@pytest.fixture
async def user(users):
    """A regular password account."""
    return await users.create_user(
        "alice@example.com",
        first_name="Alice",
        last_name="Smith",
        password_hash=TEST_PASSWORD_HASH,
    )


@pytest.fixture
async def admin_user(users):
    return await users.create_user(
        "admin@example.com",
        first_name="Admin",
        password_hash=TEST_PASSWORD_HASH,
        is_admin=True,
    )


@pytest.fixture
async def oauth_user(users):
    """An account created through Google OAuth."""
    return await users.create_user(
        "gina@example.com",
        first_name="Gina",
        last_name="Lopez",
        oauth_provider="google",
        oauth_provider_id="google-123",
    )


@pytest.fixture
async def user_tokens(token_service, user):
    return await token_service.issue_token_pair(user)


@pytest.fixture
async def user_headers(user_tokens) -> dict[str, str]:
    return {"Authorization": f"Bearer {user_tokens.access_token}"}


@pytest.fixture
async def admin_headers(token_service, admin_user) -> dict[str, str]:
    tokens = await token_service.issue_token_pair(admin_user)
    return {"Authorization": f"Bearer {tokens.access_token}"}


# --- HTTP ---


@pytest.fixture
def app(settings, store):
    return create_app(settings=settings, token_store=store)


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async client calling the app in-process."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def provider_routes() -> dict[tuple[str, str], httpx.Response]:
    """(method, url) -> canned provider response. Tests fill this in."""
    return {}


@pytest.fixture
async def provider_http(provider_routes) -> AsyncGenerator[httpx.AsyncClient, None]:
    """httpx client whose requests are answered from provider_routes."""

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url).split("?")[0]
        response = provider_routes.get((request.method, url))
        if response is None:
            return httpx.Response(404, json={"error": "not_found"})
        return response

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        yield client


@pytest.fixture
def oauth_client(settings, store, provider_http) -> OAuthProviderClient:
    return OAuthProviderClient(settings, store, http_client=provider_http)


@pytest.fixture
def oauth_app(app, oauth_client):
    """App whose OAuth client talks to the mocked providers."""
    app.dependency_overrides[get_oauth_client] = lambda: oauth_client
    return app
