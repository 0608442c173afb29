"""Bearer reverse proxy to the upstream resource API.

Forwards a downstream request to ``https://<api_host><path>`` with the
caller's bearer token re-injected, JSON content negotiation forced, session
and tracing headers stripped and a fixed User-Agent. The outbound client is
pooled and tuned for HTTP/2.
"""

import logging
import time

import httpx

from oauth_relay.core.constants import (
    HTTP_ERROR_THRESHOLD,
    PROXY_CONNECT_TIMEOUT_SECONDS,
    PROXY_KEEPALIVE_EXPIRY_SECONDS,
    PROXY_MAX_CONNECTIONS,
    PROXY_MAX_KEEPALIVE_CONNECTIONS,
    PROXY_POOL_TIMEOUT_SECONDS,
    PROXY_READ_TIMEOUT_SECONDS,
    PROXY_USER_AGENT,
    PROXY_WRITE_TIMEOUT_SECONDS,
)
from oauth_relay.core.exceptions import BadGateway
from oauth_relay.utils.http import mask_authorization, sanitize_request_headers

logger = logging.getLogger(__name__)

# Replaced on every forwarded request
OVERRIDDEN_HEADERS = frozenset({"authorization", "accept", "content-type", "user-agent"})

MAX_LOGGED_ERROR_BODY = 2048


def build_proxy_client(
    connect_timeout: float = PROXY_CONNECT_TIMEOUT_SECONDS,
    read_timeout: float = PROXY_READ_TIMEOUT_SECONDS,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Pooled client for the resource API.

    connect covers the TCP and TLS handshakes; read is how long a slow endpoint
    may take to start answering.
    """
    return httpx.AsyncClient(
        http2=True,
        transport=transport,
        timeout=httpx.Timeout(
            connect=connect_timeout,
            read=read_timeout,
            write=PROXY_WRITE_TIMEOUT_SECONDS,
            pool=PROXY_POOL_TIMEOUT_SECONDS,
        ),
        limits=httpx.Limits(
            max_connections=PROXY_MAX_CONNECTIONS,
            max_keepalive_connections=PROXY_MAX_KEEPALIVE_CONNECTIONS,
            keepalive_expiry=PROXY_KEEPALIVE_EXPIRY_SECONDS,
        ),
        follow_redirects=False,
    )


class BearerProxy:
    """Forwards bearer-authorized calls to a single upstream API host."""

    def __init__(
        self,
        api_host: str,
        http_client: httpx.AsyncClient | None = None,
        user_agent: str = PROXY_USER_AGENT,
        connect_timeout: float = PROXY_CONNECT_TIMEOUT_SECONDS,
        read_timeout: float = PROXY_READ_TIMEOUT_SECONDS,
    ):
        self.api_host = api_host
        self.base_url = f"https://{api_host}"
        self.user_agent = user_agent
        self._owns_client = http_client is None
        self._http = http_client or build_proxy_client(connect_timeout, read_timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def build_headers(
        self, downstream_headers: list[tuple[str, str]], access_token: str
    ) -> list[tuple[str, str]]:
        """Outbound headers: sanitized downstream headers plus the fixed set."""
        headers = [
            (name, value)
            for name, value in sanitize_request_headers(downstream_headers)
            if name.lower() not in OVERRIDDEN_HEADERS
        ]
        headers.extend(
            [
                ("Authorization", f"Bearer {access_token}"),
                ("Accept", "application/json"),
                ("Content-Type", "application/json"),
                ("User-Agent", self.user_agent),
            ]
        )
        return headers

    async def forward(
        self,
        method: str,
        path: str,
        query: str,
        headers: list[tuple[str, str]],
        body: bytes,
        access_token: str,
    ) -> httpx.Response:
        """
        Send one request upstream and return the fully-read response.

        Args:
            method: HTTP method, forwarded unchanged
            path: Upstream path with the proxy prefix already stripped
            query: Raw query string, forwarded unchanged
            headers: Downstream request headers
            body: Downstream request body, forwarded unchanged
            access_token: Bearer token supplied by the caller

        Raises:
            BadGateway: DNS, TLS, connect or timeout failure (no retry)
        """
        if not path.startswith("/"):
            path = "/" + path
        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{query}"

        outbound = self.build_headers(headers, access_token)
        logger.info("Proxying %s %s%s", method, self.api_host, path)
        logger.debug("Request headers to upstream: %s", mask_authorization(outbound))

        start_time = time.monotonic()
        try:
            response = await self._http.request(method, url, headers=outbound, content=body)
        except httpx.TransportError as e:
            logger.error(
                "PROXY ERROR: %s: %s (target %s%s)", type(e).__name__, e, self.api_host, path
            )
            raise BadGateway(f"Proxy error: {type(e).__name__}") from e

        elapsed = time.monotonic() - start_time
        logger.info(
            "Upstream responded %d to %s %s in %.2fs",
            response.status_code,
            method,
            path,
            elapsed,
        )
        if response.status_code >= HTTP_ERROR_THRESHOLD:
            logger.warning(
                "Upstream API error response body: %s",
                response.text[:MAX_LOGGED_ERROR_BODY],
            )
        return response
