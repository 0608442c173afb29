"""Render gateway errors as OAuth 2.0 JSON error responses."""

import logging

from starlette.requests import Request
from starlette.responses import JSONResponse

from oauth_relay.core.exceptions import (
    InternalError,
    InvalidClient,
    InvalidToken,
    OAuthError,
)

logger = logging.getLogger(__name__)


def error_headers(exc: OAuthError) -> dict[str, str]:
    """Challenge headers for 401 responses (RFC 6750 section 3, RFC 6749 section 5.2)."""
    if isinstance(exc, InvalidToken):
        return {"WWW-Authenticate": 'Bearer error="invalid_token"'}
    if isinstance(exc, InvalidClient):
        return {"WWW-Authenticate": 'Basic realm="oauth"'}
    return {}


async def oauth_error_handler(request: Request, exc: OAuthError) -> JSONResponse:
    """Exception handler for every ``OAuthError`` raised by a route."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %r", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected: %r", request.method, request.url.path, exc)

    headers = error_headers(exc)
    headers["Cache-Control"] = "no-store"
    return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers=headers)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: log the failure, never leak its details."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error = InternalError()
    return JSONResponse(error.to_dict(), status_code=error.status_code)


EXCEPTION_HANDLERS = {
    OAuthError: oauth_error_handler,
    Exception: unhandled_error_handler,
}
