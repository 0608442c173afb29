"""Per-request logging with a request id and timing."""

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from oauth_relay.core.logging import request_id_ctx
from oauth_relay.utils.http import mask_authorization

logger = logging.getLogger("oauth-relay.access")

# Polled by load balancers, not worth a log line
QUIET_PATHS = frozenset({"/health"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tag every log line of a request with a short id and log its outcome."""

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid.uuid4())[:8]
        token = request_id_ctx.set(request_id)
        start_time = time.monotonic()
        path = request.url.path
        quiet = path in QUIET_PATHS

        if not quiet:
            logger.info("%s %s", request.method, path)
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("Headers: %s", mask_authorization(request.headers.items()))

        try:
            response = await call_next(request)
            if not quiet:
                duration = time.monotonic() - start_time
                logger.info(
                    "%s %s -> %d in %.2fs", request.method, path, response.status_code, duration
                )
        except Exception:
            duration = time.monotonic() - start_time
            logger.error("%s %s failed after %.2fs", request.method, path, duration)
            raise
        finally:
            request_id_ctx.reset(token)

        response.headers["X-Request-ID"] = request_id
        return response
