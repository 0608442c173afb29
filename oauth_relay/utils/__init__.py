"""Shared utilities for the OAuth relay gateway."""

from .http import (
    append_query,
    basic_auth_header,
    extract_bearer_token,
    mask_authorization,
    normalize_token_response,
    parse_basic_auth,
    sanitize_request_headers,
    sanitize_response_headers,
)

__all__ = [
    "append_query",
    "basic_auth_header",
    "extract_bearer_token",
    "mask_authorization",
    "normalize_token_response",
    "parse_basic_auth",
    "sanitize_request_headers",
    "sanitize_response_headers",
]
