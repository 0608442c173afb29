"""
Relay gateway: this system as an OAuth client in front of an upstream provider.

Flow:
1. downstream -> ``authorize``: remember state -> downstream redirect, send
   the browser to the upstream authorize endpoint
2. upstream -> ``callback``: consume the state, hand code and state back to
   the downstream redirect
3. downstream backend -> ``token``: exchange code or refresh token upstream
   with this system's credentials, normalize ``token_type``
4. downstream -> ``proxy``: forward API calls with the caller's bearer token
"""

import logging
from dataclasses import dataclass, field

from oauth_relay.core.constants import GRANT_REFRESH_TOKEN, HTTP_ERROR_THRESHOLD
from oauth_relay.core.exceptions import BadRequest, InvalidState
from oauth_relay.core.logging import mask_secret
from oauth_relay.relay.client import UpstreamOAuthClient
from oauth_relay.relay.proxy import MAX_LOGGED_ERROR_BODY, BearerProxy
from oauth_relay.relay.state import PendingStateStore
from oauth_relay.utils.http import (
    append_query,
    normalize_token_response,
    sanitize_response_headers,
)

logger = logging.getLogger(__name__)


@dataclass
class RelayedResponse:
    """Status, headers and body to send back to the downstream caller."""

    status_code: int
    body: bytes
    headers: list[tuple[str, str]] = field(default_factory=list)


class RelayGateway:
    """Bundles the pending-state store, the upstream client and the proxy."""

    def __init__(
        self,
        state_store: PendingStateStore,
        upstream: UpstreamOAuthClient,
        proxy: BearerProxy,
    ):
        self.state_store = state_store
        self.upstream = upstream
        self.proxy = proxy

    async def aclose(self) -> None:
        await self.upstream.aclose()
        await self.proxy.aclose()

    async def authorize(self, redirect_uri: str | None, state: str | None) -> str:
        """Remember where to return and build the upstream authorize URL."""
        if not redirect_uri or not state:
            raise BadRequest("Missing required parameters: redirect_uri and state")

        await self.state_store.put(state, redirect_uri)
        logger.info("Stored relay state %s -> %s", mask_secret(state), redirect_uri)
        return self.upstream.authorization_url(state)

    async def callback(
        self,
        code: str | None,
        state: str | None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> str:
        """Consume the state and build the downstream redirect.

        The code is passed through untouched; the downstream redeems it via
        ``token``.
        """
        if not code and not error:
            raise BadRequest("Code not found")

        redirect_uri = await self.state_store.pop(state) if state else None
        if redirect_uri is None:
            logger.warning("Invalid or expired OAuth state received")
            raise InvalidState()

        if code:
            params = {"code": code, "state": state}
        else:
            logger.info("Upstream returned error %s, forwarding downstream", error)
            params = {"error": error, "state": state}
            if error_description:
                params["error_description"] = error_description

        redirect_url = append_query(redirect_uri, params)
        logger.info("Redirecting back to downstream: %s", redirect_uri)
        return redirect_url

    async def token(
        self,
        grant_type: str | None,
        code: str | None,
        refresh_token: str | None,
    ) -> RelayedResponse:
        """Exchange upstream and relay the response.

        Error responses (status >= 400) go back byte-for-byte. Successful
        responses get ``token_type`` normalized to Bearer, and Content-Length
        is recomputed from the relayed body when the response is written. A
        body that cannot be rewritten is forwarded as is.
        """
        logger.info(
            "Token request - grant_type: %s, has_code: %s, has_refresh_token: %s",
            grant_type,
            bool(code),
            bool(refresh_token),
        )
        if grant_type == GRANT_REFRESH_TOKEN and refresh_token:
            response = await self.upstream.refresh(refresh_token)
        elif code:
            response = await self.upstream.exchange_code(code)
        else:
            logger.info("Invalid token request: missing code or refresh_token")
            raise BadRequest("Missing required parameters")

        body = response.content
        headers = sanitize_response_headers(response.headers.multi_items())

        if response.status_code >= HTTP_ERROR_THRESHOLD:
            logger.warning(
                "Upstream token error response: %s",
                body[:MAX_LOGGED_ERROR_BODY].decode("utf-8", "replace"),
            )
            return RelayedResponse(response.status_code, body, headers)

        rewritten, changed = normalize_token_response(body)
        if not changed:
            return RelayedResponse(response.status_code, body, headers)

        logger.info("Normalized upstream token_type to Bearer")
        headers = [(name, value) for name, value in headers if name.lower() != "content-type"]
        headers.append(("Content-Type", "application/json"))
        return RelayedResponse(response.status_code, rewritten, headers)

    async def forward(
        self,
        method: str,
        path: str,
        query: str,
        headers: list[tuple[str, str]],
        body: bytes,
        access_token: str,
    ) -> RelayedResponse:
        """Proxy one API call and relay the upstream response as obtained."""
        response = await self.proxy.forward(
            method=method,
            path=path,
            query=query,
            headers=headers,
            body=body,
            access_token=access_token,
        )
        return RelayedResponse(
            response.status_code,
            response.content,
            sanitize_response_headers(response.headers.multi_items()),
        )
