"""
Shared pytest fixtures and configuration for all tests.

Time-dependent behaviour is driven by ``FakeClock`` rather than sleeping.
Upstream HTTP calls never leave the process: relay tests hand the gateway
httpx clients backed by ``httpx.MockTransport``.
"""

import asyncio

import httpx
import pytest

from oauth_relay.auth import InMemoryTokenStore, OAuth2Server
from oauth_relay.auth.storage import StoredClient, StoredUser
from oauth_relay.config import Settings, reset_settings
from oauth_relay.relay import (
    BearerProxy,
    InMemoryPendingStateStore,
    RelayGateway,
    UpstreamOAuthClient,
    build_proxy_client,
)
from tests.fixtures.oauth_fixtures import (
    CLIENT_ID,
    CLIENT_SECRET,
    ISSUER,
    LOGIN_URL,
    REDIRECT_URI,
    RELAY_CALLBACK,
    UPSTREAM_API_HOST,
    UPSTREAM_AUTH_URL,
    UPSTREAM_CLIENT_ID,
    UPSTREAM_CLIENT_SECRET,
    UPSTREAM_SCOPES,
    UPSTREAM_TOKEN_URL,
    USER_ID,
    FakeClock,
    FakeUpstream,
)


@pytest.fixture(autouse=True)
def _reset_settings():
    """Never leak the settings singleton between tests."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def clock():
    """Controllable clock for expiry tests."""
    return FakeClock()


@pytest.fixture
def test_client_record():
    """The registered confidential client used throughout the tests."""
    return StoredClient(
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        name="Test Client",
        redirect_uris=[REDIRECT_URI],
    )


@pytest.fixture
def test_user_record():
    """The resource owner used throughout the tests."""
    return StoredUser(user_id=USER_ID, email="ada@example.com", name="Ada Lovelace")


async def seed(token_store, client, user):
    await token_store.save_client(client)
    await token_store.save_user(user)
    return token_store


@pytest.fixture
def store(test_client_record, test_user_record):
    """In-memory store seeded with one client and one user."""
    return asyncio.run(seed(InMemoryTokenStore(), test_client_record, test_user_record))


@pytest.fixture
def oauth2_server(store, clock):
    """OAuth2 server on the seeded store and the fake clock."""
    return OAuth2Server(store=store, issuer=ISSUER, login_url=LOGIN_URL, clock=clock)


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        oauth_issuer=ISSUER,
        frontend_url="https://app.example.com",
        session_secret_key="test-session-secret",
        oauth_storage_dir=str(tmp_path / "oauth"),
    )


@pytest.fixture
def upstream():
    """Fake upstream provider and resource API."""
    return FakeUpstream()


@pytest.fixture
def state_clock():
    """Monotonic-style clock for pending relay states."""
    return FakeClock(now=0.0)


@pytest.fixture
def gateway(upstream, state_clock):
    """Relay gateway wired to the fake upstream."""
    transport = httpx.MockTransport(upstream.handler)
    oauth_client = UpstreamOAuthClient(
        client_id=UPSTREAM_CLIENT_ID,
        client_secret=UPSTREAM_CLIENT_SECRET,
        auth_url=UPSTREAM_AUTH_URL,
        token_url=UPSTREAM_TOKEN_URL,
        redirect_url=RELAY_CALLBACK,
        scopes=UPSTREAM_SCOPES,
        http_client=httpx.AsyncClient(transport=transport),
    )
    proxy = BearerProxy(UPSTREAM_API_HOST, http_client=build_proxy_client(transport=transport))
    state_store = InMemoryPendingStateStore(default_ttl=600, clock=state_clock)
    return RelayGateway(state_store, oauth_client, proxy)
