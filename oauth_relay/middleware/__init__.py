"""Middleware and error rendering for the gateway application."""

from .errors import EXCEPTION_HANDLERS, oauth_error_handler
from .request_logging import RequestLoggingMiddleware
from .setup import setup_middleware

__all__ = [
    "EXCEPTION_HANDLERS",
    "RequestLoggingMiddleware",
    "oauth_error_handler",
    "setup_middleware",
]
