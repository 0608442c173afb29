"""HTTP helpers shared by the provider and relay roles.

Bearer/Basic header parsing, token-type normalization and header hygiene.
Nothing in here holds request state.
"""

import base64
import binascii
import json
from collections.abc import Iterable, Mapping
from urllib.parse import parse_qsl, unquote_plus, urlencode, urlsplit, urlunsplit

from oauth_relay.core.constants import TOKEN_TYPE_BEARER

# RFC 7230 section 6.1 plus the de-facto ones
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)

# Session and tracing headers that mean nothing to the upstream API
STRIPPED_REQUEST_HEADERS = frozenset(
    {
        "cookie",
        "host",
        "content-length",
        "accept-encoding",
        "traceparent",
        "tracestate",
        "x-request-id",
        "x-correlation-id",
        "x-amzn-trace-id",
        "x-b3-traceid",
        "x-b3-spanid",
        "x-b3-parentspanid",
        "x-b3-sampled",
    }
)

STRIPPED_REQUEST_HEADER_PREFIXES = ("x-datadog-", "openai-")

# httpx hands us decoded bodies, so length and encoding are recomputed downstream;
# the ASGI server writes its own date and server headers
STRIPPED_RESPONSE_HEADERS = frozenset({"content-length", "content-encoding", "date", "server"})


def extract_bearer_token(
    authorization: str | None, *, case_sensitive: bool = True
) -> str | None:
    """Return the token from ``Authorization: Bearer <token>`` or None.

    The header must split into exactly two space-separated parts. With
    ``case_sensitive=False`` the scheme may be spelled in any case.
    """
    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) != 2 or not parts[1]:
        return None
    scheme, token = parts
    if case_sensitive:
        if scheme != "Bearer":
            return None
    elif scheme.lower() != "bearer":
        return None
    return token


def basic_auth_header(client_id: str, client_secret: str) -> str:
    """Build an HTTP Basic header value from client credentials."""
    raw = f"{client_id}:{client_secret}".encode()
    return "Basic " + base64.b64encode(raw).decode("ascii")


def parse_basic_auth(authorization: str | None) -> tuple[str, str] | None:
    """Decode ``Authorization: Basic ...`` into (client_id, client_secret).

    Both halves are form-urldecoded as RFC 6749 section 2.3.1 requires.
    """
    if not authorization:
        return None
    scheme, _, encoded = authorization.partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    client_id, sep, client_secret = decoded.partition(":")
    if not sep:
        return None
    return unquote_plus(client_id), unquote_plus(client_secret)


def append_query(url: str, params: Mapping[str, str]) -> str:
    """Set query parameters on ``url``, keeping any it already carries."""
    parts = urlsplit(url)
    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in params
    ]
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


def normalize_token_response(body: bytes) -> tuple[bytes, bool]:
    """Rewrite a non-standard ``token_type`` in a JSON token response to Bearer.

    Returns ``(body, changed)``. When the body is not a JSON object, carries no
    ``token_type``, already says ``Bearer``, or cannot be re-encoded, the
    original bytes come back unchanged.
    """
    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return body, False

    if not isinstance(payload, dict) or "token_type" not in payload:
        return body, False
    if payload["token_type"] == TOKEN_TYPE_BEARER:
        return body, False

    payload["token_type"] = TOKEN_TYPE_BEARER
    try:
        rewritten = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError):
        return body, False
    return rewritten.encode("utf-8"), True


def is_stripped_request_header(name: str) -> bool:
    """True if a downstream request header must not reach the upstream API."""
    lowered = name.lower()
    return (
        lowered in HOP_BY_HOP_HEADERS
        or lowered in STRIPPED_REQUEST_HEADERS
        or lowered.startswith(STRIPPED_REQUEST_HEADER_PREFIXES)
    )


def sanitize_request_headers(headers: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    """Drop session, tracing and hop-by-hop headers from a downstream request."""
    return [(name, value) for name, value in headers if not is_stripped_request_header(name)]


def sanitize_response_headers(headers: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    """Drop hop-by-hop and body-framing headers from an upstream response."""
    return [
        (name, value)
        for name, value in headers
        if name.lower() not in HOP_BY_HOP_HEADERS
        and name.lower() not in STRIPPED_RESPONSE_HEADERS
    ]


def mask_authorization(headers: Iterable[tuple[str, str]]) -> dict[str, str]:
    """Headers as a dict safe for logging."""
    masked = {}
    for name, value in headers:
        lowered = name.lower()
        if lowered == "authorization":
            scheme = value.split(" ", 1)[0] if value else ""
            masked[name] = f"{scheme} ***MASKED***"
        elif lowered == "cookie":
            masked[name] = "***MASKED***"
        else:
            masked[name] = value
    return masked
