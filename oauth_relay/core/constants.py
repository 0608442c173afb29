"""Application-wide constants for the OAuth relay gateway."""

# ========================================
# Provider Lifetimes
# ========================================

AUTHORIZATION_CODE_TTL_SECONDS = 10 * 60  # Codes must be redeemed within 10 minutes
ACCESS_TOKEN_TTL_SECONDS = 60 * 60  # 1 hour, reported as expires_in
REFRESH_TOKEN_TTL_SECONDS = 30 * 24 * 60 * 60  # 30 days

TOKEN_BYTES = 32  # Random bytes behind every code and token

# ========================================
# Grant Types
# ========================================

GRANT_AUTHORIZATION_CODE = "authorization_code"
GRANT_REFRESH_TOKEN = "refresh_token"
SUPPORTED_GRANT_TYPES = (GRANT_AUTHORIZATION_CODE, GRANT_REFRESH_TOKEN)

RESPONSE_TYPE_CODE = "code"
TOKEN_TYPE_BEARER = "Bearer"

# ========================================
# Relay Defaults
# ========================================

PENDING_STATE_TTL_SECONDS = 10 * 60
PENDING_STATE_MAX_ENTRIES = 10_000

UPSTREAM_TOKEN_TIMEOUT_SECONDS = 10.0

PROXY_CONNECT_TIMEOUT_SECONDS = 10.0  # Covers the TLS handshake
PROXY_READ_TIMEOUT_SECONDS = 45.0  # Slow upstream endpoints
PROXY_WRITE_TIMEOUT_SECONDS = 30.0
PROXY_POOL_TIMEOUT_SECONDS = 10.0
PROXY_KEEPALIVE_EXPIRY_SECONDS = 90.0
PROXY_MAX_KEEPALIVE_CONNECTIONS = 10  # Idle connections kept to the single upstream host
PROXY_MAX_CONNECTIONS = 50

PROXY_USER_AGENT = "OAuth-Relay-Proxy/1.0"

# ========================================
# HTTP
# ========================================

HTTP_ERROR_THRESHOLD = 400
