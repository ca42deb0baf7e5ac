"""
tests/conftest.py -- Shared test fixtures for ContractPortal integration tests.

This module provides:
  - RecordingSender: OTPSender that keeps every delivered code for the test to read
  - _make_test_stores(): creates an isolated in-memory DB for users + contracts
  - _patch_lifespan(): wires the test stores into app.state via configure_state()
  - api_client: TestClient with an admin JWT for API integration tests
  - outbox: the RecordingSender the running app delivers codes through
  - user_factory: inserts an already-verified account and mints its JWT

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The environment must be set before any auth/core import: DEBUG so that
get_settings() auto-generates SECRET_KEY, a low bcrypt cost so the suite stays
fast, and rate limits high enough that repeated logins never hit 429.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: Set these before any auth/core import so get_settings() and
# api.limiter pick them up on first use.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("OTP_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, configure_state
from auth.models import Channel, Role, User
from auth.otp import MemoryOTPStore
from auth.passwords import hash_password
from auth.store import UserStore
from auth.tokens import TokenIssuer
from contracts.store import ContractStore
from core.config import get_settings

ADMIN_EMAIL = "admin@portal.test"
ADMIN_PASSWORD = "adminpass123"
TEST_ROUNDS = 4


class RecordingSender:
    """Keeps the latest code per (user id, channel) instead of delivering it."""

    def __init__(self) -> None:
        self.codes: dict[tuple[str, Channel], str] = {}
        self.deliveries = 0

    def send(self, user: User, channel: Channel, code: str) -> None:
        self.codes[(user.id, channel)] = code
        self.deliveries += 1

    def code_for(self, user_id: str, channel: Channel) -> str:
        return self.codes[(user_id, channel)]


def _insert_verified_user(store: UserStore, email: str, password: str, role: Role) -> str:
    user = User(
        email=email,
        password_hash=hash_password(password, TEST_ROUNDS),
        role=role,
        is_active=True,
        email_verified=True,
        mobile_verified=True,
        contact_number="9876543210",
    )
    return store.create_user(user)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[UserStore, ContractStore]:
    """Create one isolated named shared-memory SQLite DB for users and contracts.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    url = f"sqlite:///file:test_portal_{db_suffix}?mode=memory&cache=shared&uri=true"
    user_store = UserStore(db_url=url)
    contract_store = ContractStore(engine=user_store.engine)
    return user_store, contract_store


def _patch_lifespan(user_store: UserStore, contract_store: ContractStore, sender: RecordingSender):
    """Return an async context manager that replaces the real lifespan.

    Builds the same auth core the real lifespan builds, on the test stores,
    with the OTP store kept in memory and codes captured by the sender.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        configure_state(app, get_settings(), user_store, contract_store, otp_store=MemoryOTPStore(), sender=sender)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()
        app.state.credential_store.close()

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use isolated in-memory stores.
    The admin user is created before the client starts and the JWT is
    minted with the same SECRET_KEY the app verifies with.
    """
    user_store, contract_store = _make_test_stores(request.module.__name__.rsplit(".", 1)[-1])
    uid = _insert_verified_user(user_store, ADMIN_EMAIL, ADMIN_PASSWORD, Role.admin)
    token = TokenIssuer(get_settings().secret_key).mint(uid, Role.admin, ttl_seconds=3600)

    app.router.lifespan_context = _patch_lifespan(user_store, contract_store, RecordingSender())

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, uid

    user_store.close()


@pytest.fixture
def outbox(api_client: tuple[TestClient, str, str]) -> RecordingSender:
    client, _token, _uid = api_client
    return client.app.state.auth_service.sender


@pytest.fixture
def user_factory(api_client: tuple[TestClient, str, str]) -> Callable[..., tuple[str, str]]:
    """Return make(email, role=client, password=...) -> (user_id, token).

    The account is inserted active and verified; the token is minted by the
    running app's TokenIssuer.
    """
    client, _token, _uid = api_client

    def make(email: str, role: Role = Role.client, password: str = "password123") -> tuple[str, str]:
        user_id = _insert_verified_user(client.app.state.user_store, email, password, role)
        return user_id, client.app.state.token_issuer.mint(user_id, role, ttl_seconds=3600)

    return make
