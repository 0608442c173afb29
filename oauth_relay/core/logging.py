"""Logging configuration for the OAuth relay gateway."""

import logging
import os
import sys
from contextvars import ContextVar

# Context variable to store request_id across async calls
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


class RequestIdFilter(logging.Filter):
    """Logging filter that adds request_id to log records."""

    def filter(self, record):
        """Add request_id to the log record if available."""
        request_id = request_id_ctx.get()
        record.request_id = f"[{request_id}] " if request_id else ""
        return True


def configure_logging() -> logging.Logger:
    """Configure and return the logger for the application."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] [%(name)s] %(request_id)s%(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )

    logger = logging.getLogger("oauth-relay")

    request_filter = RequestIdFilter()
    for handler in logger.handlers:
        handler.addFilter(request_filter)

    # Module loggers propagate to root, so the root handlers need the filter too
    for handler in logging.root.handlers:
        handler.addFilter(request_filter)

    if os.getenv("OAUTH_RELAY_DEBUG", "").lower() in ("true", "1", "yes"):
        logger.setLevel(logging.DEBUG)
        logging.getLogger("oauth_relay").setLevel(logging.DEBUG)
        logger.debug("Debug mode enabled")

    # httpx logs every request line at INFO, including full URLs with codes
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return logger


# Initialize logger
logger = configure_logging()


def mask_secret(value: str | None, visible: int = 6) -> str:
    """Return a log-safe prefix of a token, code or secret."""
    if not value:
        return "<empty>"
    if len(value) <= visible:
        return "***"
    return f"{value[:visible]}***"
