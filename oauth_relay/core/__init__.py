"""Core functionality for the OAuth relay gateway."""

from .constants import (
    ACCESS_TOKEN_TTL_SECONDS,
    AUTHORIZATION_CODE_TTL_SECONDS,
    GRANT_AUTHORIZATION_CODE,
    GRANT_REFRESH_TOKEN,
    REFRESH_TOKEN_TTL_SECONDS,
    SUPPORTED_GRANT_TYPES,
    TOKEN_TYPE_BEARER,
)
from .exceptions import (
    AuthenticationRequired,
    BadGateway,
    BadRequest,
    ErrorKind,
    InternalError,
    InvalidClient,
    InvalidGrant,
    InvalidRedirect,
    InvalidRequest,
    InvalidState,
    InvalidToken,
    OAuthError,
    UnsupportedGrantType,
)
from .logging import configure_logging, logger, mask_secret, request_id_ctx

__all__ = [
    # Logging
    "configure_logging",
    "logger",
    "mask_secret",
    "request_id_ctx",
    # Errors
    "AuthenticationRequired",
    "BadGateway",
    "BadRequest",
    "ErrorKind",
    "InternalError",
    "InvalidClient",
    "InvalidGrant",
    "InvalidRedirect",
    "InvalidRequest",
    "InvalidState",
    "InvalidToken",
    "OAuthError",
    "UnsupportedGrantType",
    # Constants - most commonly used
    "ACCESS_TOKEN_TTL_SECONDS",
    "AUTHORIZATION_CODE_TTL_SECONDS",
    "GRANT_AUTHORIZATION_CODE",
    "GRANT_REFRESH_TOKEN",
    "REFRESH_TOKEN_TTL_SECONDS",
    "SUPPORTED_GRANT_TYPES",
    "TOKEN_TYPE_BEARER",
]
