"""
Main entry point for the OAuth relay gateway.

Builds one Starlette application serving the provider endpoints and, when
configured, the relay endpoints in front of an upstream provider.
"""

import contextlib
import sys
import traceback
from collections.abc import AsyncIterator
from typing import Optional

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from oauth_relay import __version__
from oauth_relay.auth import OAuth2Server, TokenStore, create_token_store, load_seed_file
from oauth_relay.auth.routes import SubjectResolver
from oauth_relay.auth.setup import setup_oauth2_routes
from oauth_relay.config import Settings, get_settings
from oauth_relay.core import logger
from oauth_relay.middleware import EXCEPTION_HANDLERS, setup_middleware
from oauth_relay.relay import RelayGateway
from oauth_relay.relay.setup import build_relay_gateway, setup_relay_routes


async def health(request: Request) -> JSONResponse:
    """Liveness probe."""
    return JSONResponse({"status": "ok", "version": __version__})


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[TokenStore] = None,
    relay_gateway: Optional[RelayGateway] = None,
    subject_resolver: Optional[SubjectResolver] = None,
) -> Starlette:
    """
    Create the gateway application.

    Args:
        settings: Application settings (defaults to the environment)
        store: Token store (defaults to the configured backend)
        relay_gateway: Relay gateway; built from settings when the relay is
            enabled and configured, relay routes are skipped otherwise
        subject_resolver: Authenticated-user lookup for the authorize flow;
            defaults to the session cookie

    Returns:
        Configured Starlette application
    """
    settings = settings or get_settings()
    store = store or create_token_store(settings.token_store, settings.oauth_storage_dir)

    oauth2_server = OAuth2Server(
        store=store,
        issuer=settings.oauth_issuer,
        login_url=settings.login_url,
        authorization_code_ttl_seconds=settings.authorization_code_ttl_seconds,
        access_token_ttl_seconds=settings.access_token_ttl_seconds,
        refresh_token_ttl_seconds=settings.refresh_token_ttl_seconds,
    )

    routes = [Route("/health", health, methods=["GET"])]
    routes.extend(setup_oauth2_routes(oauth2_server, subject_resolver))

    if relay_gateway is None and settings.relay_enabled:
        if settings.has_relay_config():
            relay_gateway = build_relay_gateway(settings)
        else:
            logger.warning("⚠ Relay enabled but not configured, relay endpoints disabled")
    if relay_gateway is not None:
        routes.extend(setup_relay_routes(relay_gateway))

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        if settings.oauth_seed_file:
            await load_seed_file(store, settings.oauth_seed_file)
        logger.info("Gateway ready at %s", settings.oauth_issuer)
        try:
            yield
        finally:
            if relay_gateway is not None:
                await relay_gateway.aclose()
            logger.info("Gateway stopped")

    app = Starlette(
        debug=settings.debug,
        routes=routes,
        middleware=setup_middleware(settings),
        exception_handlers=EXCEPTION_HANDLERS,
        lifespan=lifespan,
    )
    app.state.oauth2_server = oauth2_server
    app.state.relay_gateway = relay_gateway
    return app


def main() -> None:
    """Run the gateway under uvicorn."""
    settings = get_settings()
    try:
        app = create_app(settings)
    except Exception as e:
        logger.error("Failed to initialize gateway: %s", e)
        logger.error("Traceback: %s", traceback.format_exc())
        sys.exit(1)

    logger.info("Starting OAuth relay gateway on %s:%d", settings.host, settings.port)
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        ssl_certfile=settings.ssl_certfile,
        ssl_keyfile=settings.ssl_keyfile,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    main()
