"""
Deedkeeper - Shared Test Fixtures
In-memory store, local auth provider, caller contexts and an HTTP client.
"""

from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from deedkeeper.core.config import Settings
from deedkeeper.core.container import Services, build_services
from deedkeeper.core.user_context import CallerContext, Role
from deedkeeper.main import create_app
from deedkeeper.services.auth_provider import LocalAuthProvider
from deedkeeper.services.notifications import LoggingNotificationSender
from deedkeeper.store.memory import InMemoryEntityStore

from factories import INIT_SECRET, TEST_SECRET, register, seed_document, seed_property, seed_user


# =============================================================================
# Core Fixtures
# =============================================================================

@pytest.fixture
def anyio_backend():
    """Use asyncio for async tests."""
    return "asyncio"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        credential_secret=TEST_SECRET,
        admin_init_secret=INIT_SECRET,
        store_backend="memory",
        log_level="WARNING",
    )


@pytest.fixture
def store() -> InMemoryEntityStore:
    return InMemoryEntityStore()


@pytest.fixture
def provider(store) -> LocalAuthProvider:
    return LocalAuthProvider(TEST_SECRET, store=store, ttl_minutes=60)


@pytest.fixture
def notifier() -> LoggingNotificationSender:
    return LoggingNotificationSender()


@pytest.fixture
def services(settings, store, provider, notifier) -> Services:
    return build_services(settings, store=store, auth_provider=provider, notifier=notifier)


# =============================================================================
# Caller Contexts
# =============================================================================

@pytest.fixture
def admin() -> CallerContext:
    return CallerContext(uid="admin-1", role=Role.ADMIN, email="admin@example.com")


@pytest.fixture
def owner_ctx() -> CallerContext:
    return CallerContext(uid="U1", role=Role.OWNER, email="u1@example.com")


@pytest.fixture
def tenant_ctx() -> CallerContext:
    return CallerContext(uid="T1", role=Role.TENANT, email="t1@example.com")


# =============================================================================
# Data Fixtures
# =============================================================================

@pytest.fixture
async def clean_graph(store):
    """U1 (owner) owns P1; D1 belongs to U1 and is attached to P1."""
    await seed_user(store, "U1", role="owner")
    await seed_property(store, "P1", "U1")
    await seed_document(store, "D1", "U1", "P1")
    return store


# =============================================================================
# HTTP Client
# =============================================================================

@pytest.fixture
async def client(settings, services) -> AsyncGenerator[AsyncClient, None]:
    """Async client against an app wired to the in-memory services."""
    app = create_app(settings=settings, services=services)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def admin_token(provider, store) -> str:
    uid = await register(provider, store, "root@example.com", Role.ADMIN)
    return await provider.issue_credential(uid)
