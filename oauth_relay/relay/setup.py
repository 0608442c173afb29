"""
Relay wiring: gateway construction from settings and route registration.

Architecture:
- Separates route registration (this module) from route handlers (routes.py)
- Creates closure adapters to inject the gateway dependency
"""

from typing import TYPE_CHECKING

from starlette.routing import Route

from oauth_relay.core import logger

if TYPE_CHECKING:
    from oauth_relay.config import Settings
    from oauth_relay.relay.gateway import RelayGateway

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def build_relay_gateway(settings: "Settings") -> "RelayGateway":
    """Assemble the relay gateway from configuration.

    Raises:
        ValueError: If the upstream settings are incomplete
    """
    from oauth_relay.relay.client import UpstreamOAuthClient
    from oauth_relay.relay.gateway import RelayGateway
    from oauth_relay.relay.proxy import BearerProxy
    from oauth_relay.relay.state import InMemoryPendingStateStore

    if not settings.has_relay_config():
        raise ValueError(
            "Relay requires UPSTREAM_CLIENT_ID, UPSTREAM_CLIENT_SECRET, "
            "UPSTREAM_AUTH_URL, UPSTREAM_TOKEN_URL, UPSTREAM_SCOPES and UPSTREAM_API_HOST"
        )

    upstream = UpstreamOAuthClient(
        client_id=settings.upstream_client_id,
        client_secret=settings.upstream_client_secret,
        auth_url=settings.upstream_auth_url,
        token_url=settings.upstream_token_url,
        redirect_url=settings.relay_redirect_url,
        scopes=settings.get_upstream_scopes_list(),
        timeout=settings.upstream_token_timeout_seconds,
    )
    proxy = BearerProxy(
        api_host=settings.upstream_api_host,
        user_agent=settings.proxy_user_agent,
        connect_timeout=settings.proxy_connect_timeout_seconds,
        read_timeout=settings.proxy_read_timeout_seconds,
    )
    state_store = InMemoryPendingStateStore(
        default_ttl=settings.pending_state_ttl_seconds,
        max_entries=settings.pending_state_max_entries,
    )
    return RelayGateway(state_store, upstream, proxy)


def setup_relay_routes(gateway: "RelayGateway") -> list[Route]:
    """
    Build the relay routes.

    Registers:
    - /relay/authorize (GET)
    - /relay/callback (GET)
    - /relay/token (POST)
    - /relay/proxy/{path} (any method)

    Args:
        gateway: RelayGateway instance

    Returns:
        Starlette routes to include in the application
    """
    from oauth_relay.relay.routes import (
        relay_authorize,
        relay_callback,
        relay_proxy,
        relay_token,
    )

    async def _relay_authorize(request):
        """Start the upstream authorization."""
        return await relay_authorize(request, gateway)

    async def _relay_callback(request):
        """Upstream callback."""
        return await relay_callback(request, gateway)

    async def _relay_token(request):
        """Token exchange."""
        return await relay_token(request, gateway)

    async def _relay_proxy(request):
        """Bearer proxy."""
        return await relay_proxy(request, gateway)

    routes = [
        Route("/relay/authorize", _relay_authorize, methods=["GET"]),
        Route("/relay/callback", _relay_callback, methods=["GET"]),
        Route("/relay/token", _relay_token, methods=["POST"]),
        Route("/relay/proxy/{path:path}", _relay_proxy, methods=PROXY_METHODS),
    ]

    logger.info("✓ Relay endpoints registered (%d routes)", len(routes))
    return routes
