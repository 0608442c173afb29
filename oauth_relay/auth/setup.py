"""
OAuth2 route registration for the Starlette application.

This module builds the authorization-server routes, using the route handlers
from ``oauth_relay.auth.routes``.

Architecture:
- Separates route registration (this module) from route handlers (routes.py)
- Creates closure adapters to inject the oauth2_server dependency
"""

from typing import TYPE_CHECKING, Optional

from starlette.routing import Route

from oauth_relay.core import logger

if TYPE_CHECKING:
    from oauth_relay.auth.oauth2_server import OAuth2Server
    from oauth_relay.auth.routes import SubjectResolver


def setup_oauth2_routes(
    oauth2_server: "OAuth2Server",
    subject_resolver: Optional["SubjectResolver"] = None,
) -> list[Route]:
    """
    Build the authorization-server routes.

    Registers:
    - /.well-known/oauth-authorization-server (RFC 8414)
    - /oauth/authorize (GET - consent data)
    - /oauth/authorize/consent (POST - consent decision)
    - /oauth/token (POST - token exchange)
    - /oauth/userinfo (GET - bearer-authenticated claims)

    Args:
        oauth2_server: OAuth2Server instance
        subject_resolver: Callable returning the authenticated user id for a
            request; defaults to the session cookie

    Returns:
        Starlette routes to include in the application

    Example:
        >>> from oauth_relay.auth import InMemoryTokenStore, OAuth2Server
        >>> from oauth_relay.auth.setup import setup_oauth2_routes
        >>>
        >>> server = OAuth2Server(InMemoryTokenStore(), "https://example.com", "https://example.com/login")
        >>> app = Starlette(routes=setup_oauth2_routes(server))
    """
    from oauth_relay.auth.routes import (
        authorization_server_metadata,
        authorize_consent,
        authorize_get,
        get_session_user,
        token_endpoint,
        userinfo_endpoint,
    )

    resolver = subject_resolver or get_session_user

    async def _authorization_server_metadata(request):
        """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
        return await authorization_server_metadata(request, oauth2_server)

    async def _authorize_get(request):
        """Authorization endpoint (GET) - consent screen data."""
        return await authorize_get(request, oauth2_server, resolver)

    async def _authorize_consent(request):
        """Consent endpoint (POST) - consent decision."""
        return await authorize_consent(request, oauth2_server, resolver)

    async def _token_endpoint(request):
        """Token endpoint - exchanges a grant for an access token."""
        return await token_endpoint(request, oauth2_server)

    async def _userinfo_endpoint(request):
        """Userinfo endpoint."""
        return await userinfo_endpoint(request, oauth2_server)

    routes = [
        Route(
            "/.well-known/oauth-authorization-server",
            _authorization_server_metadata,
            methods=["GET"],
        ),
        Route("/oauth/authorize", _authorize_get, methods=["GET"]),
        Route("/oauth/authorize/consent", _authorize_consent, methods=["POST"]),
        Route("/oauth/token", _token_endpoint, methods=["POST"]),
        Route("/oauth/userinfo", _userinfo_endpoint, methods=["GET"]),
    ]

    logger.info("✓ OAuth2 endpoints registered (%d routes)", len(routes))
    return routes
