"""Error taxonomy for the OAuth relay gateway.

Every error carries a stable ``kind`` (an ``ErrorKind`` member) so callers and
tests match on the kind rather than on message text. ``to_dict`` renders the
OAuth 2.0 error-response shape (RFC 6749 section 5.2).
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Stable discriminant for every error the gateway can surface."""

    INVALID_REQUEST = "invalid_request"
    INVALID_CLIENT = "invalid_client"
    INVALID_REDIRECT = "invalid_redirect"
    INVALID_GRANT = "invalid_grant"
    UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
    AUTHENTICATION_REQUIRED = "authentication_required"
    INVALID_TOKEN = "invalid_token"
    INVALID_STATE = "invalid_state"
    BAD_REQUEST = "bad_request"
    BAD_GATEWAY = "bad_gateway"
    INTERNAL_ERROR = "internal_error"


# ========================================
# Base Exceptions
# ========================================


class OAuthError(Exception):
    """Base exception for all gateway errors."""

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR
    error_code: str = "server_error"
    status_code: int = 500
    default_description: str = "Internal server error"

    def __init__(self, description: str | None = None):
        self.description = description or self.default_description
        super().__init__(self.description)

    def to_dict(self) -> dict[str, Any]:
        """Render as an OAuth2 error-response body."""
        return {"error": self.error_code, "error_description": self.description}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, description={self.description!r})"


# ========================================
# Request Validation Exceptions
# ========================================


class InvalidRequest(OAuthError):
    """Malformed or missing request parameters."""

    kind = ErrorKind.INVALID_REQUEST
    error_code = "invalid_request"
    status_code = 400
    default_description = "The request is missing a required parameter or is malformed"


class BadRequest(OAuthError):
    """Relay request missing a required input."""

    kind = ErrorKind.BAD_REQUEST
    error_code = "invalid_request"
    status_code = 400
    default_description = "Missing required parameters"


class InvalidRedirect(OAuthError):
    """Redirect URI is not registered for the client."""

    kind = ErrorKind.INVALID_REDIRECT
    error_code = "invalid_redirect_uri"
    status_code = 400
    default_description = "redirect_uri is not registered for this client"


class InvalidState(OAuthError):
    """Relay state is unknown, expired or already consumed."""

    kind = ErrorKind.INVALID_STATE
    error_code = "invalid_state"
    status_code = 400
    default_description = "Invalid or expired OAuth state"


# ========================================
# Authentication Exceptions
# ========================================


class InvalidClient(OAuthError):
    """Unknown client or bad client secret."""

    kind = ErrorKind.INVALID_CLIENT
    error_code = "invalid_client"
    status_code = 401
    default_description = "Client authentication failed"


class AuthenticationRequired(OAuthError):
    """No authenticated subject is attached to the request.

    This is a signal rather than a failure: the caller is expected to send the
    user to ``login_url`` and retry.
    """

    kind = ErrorKind.AUTHENTICATION_REQUIRED
    error_code = "authentication_required"
    status_code = 401
    default_description = "User authentication is required"

    def __init__(
        self,
        login_url: str,
        client_id: str | None = None,
        client_name: str | None = None,
        description: str | None = None,
    ):
        super().__init__(description)
        self.login_url = login_url
        self.client_id = client_id
        self.client_name = client_name

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["login_url"] = self.login_url
        if self.client_id is not None:
            body["client_id"] = self.client_id
        if self.client_name is not None:
            body["client_name"] = self.client_name
        return body


class InvalidToken(OAuthError):
    """Access token is unknown or expired."""

    kind = ErrorKind.INVALID_TOKEN
    error_code = "invalid_token"
    status_code = 401
    default_description = "The access token is invalid or expired"


# ========================================
# Grant Exceptions
# ========================================


class InvalidGrant(OAuthError):
    """Authorization code or refresh token cannot be redeemed.

    Wrong client, wrong redirect URI, reuse and expiry all raise this with the
    same description.
    """

    kind = ErrorKind.INVALID_GRANT
    error_code = "invalid_grant"
    status_code = 400
    default_description = "The provided authorization grant is invalid, expired or revoked"


class UnsupportedGrantType(OAuthError):
    """grant_type is not one of the supported grants."""

    kind = ErrorKind.UNSUPPORTED_GRANT_TYPE
    error_code = "unsupported_grant_type"
    status_code = 400
    default_description = "The authorization grant type is not supported"


# ========================================
# Upstream / Server Exceptions
# ========================================


class BadGateway(OAuthError):
    """Upstream transport failure (DNS, TLS, timeout, connection refused)."""

    kind = ErrorKind.BAD_GATEWAY
    error_code = "bad_gateway"
    status_code = 502
    default_description = "Upstream request failed"


class InternalError(OAuthError):
    """Store failure or encoding failure."""

    kind = ErrorKind.INTERNAL_ERROR
    error_code = "server_error"
    status_code = 500
    default_description = "Internal server error"
