"""
Middleware configuration for the gateway application.

Architecture:
- Separates middleware configuration from main application logic
- Session middleware carries the authenticated subject for the authorize flow
- Request logging wraps everything so each log line has a request id
"""

from typing import TYPE_CHECKING

from starlette.middleware import Middleware
from starlette.middleware.sessions import SessionMiddleware

from oauth_relay.core import logger
from oauth_relay.middleware.request_logging import RequestLoggingMiddleware

if TYPE_CHECKING:
    from oauth_relay.config import Settings


def setup_middleware(settings: "Settings") -> list[Middleware]:
    """
    Build the middleware stack from settings.

    Args:
        settings: Application settings

    Returns:
        List of configured Middleware instances, outermost first

    Example:
        >>> from oauth_relay.config import get_settings
        >>> from oauth_relay.middleware.setup import setup_middleware
        >>>
        >>> app = Starlette(routes=routes, middleware=setup_middleware(get_settings()))
    """
    middleware = [Middleware(RequestLoggingMiddleware)]

    middleware.append(
        Middleware(
            SessionMiddleware,
            secret_key=settings.session_secret_key,
            https_only=settings.oauth_issuer.startswith("https://"),
        )
    )
    logger.info("✓ Session middleware enabled")

    return middleware
