"""OAuth client for the upstream identity provider.

The relay authenticates to the upstream with its own registered credentials
(HTTP Basic) and always presents its own callback as ``redirect_uri``, because
that is what the upstream has on record from the authorize step.
"""

import asyncio
import logging
from urllib.parse import urlencode

import httpx

from oauth_relay.core.constants import (
    GRANT_AUTHORIZATION_CODE,
    GRANT_REFRESH_TOKEN,
    RESPONSE_TYPE_CODE,
    UPSTREAM_TOKEN_TIMEOUT_SECONDS,
)
from oauth_relay.core.exceptions import BadGateway
from oauth_relay.utils.http import basic_auth_header

logger = logging.getLogger(__name__)


class UpstreamOAuthClient:
    """Drives the upstream provider's authorize and token endpoints."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        auth_url: str,
        token_url: str,
        redirect_url: str,
        scopes: list[str],
        http_client: httpx.AsyncClient | None = None,
        timeout: float = UPSTREAM_TOKEN_TIMEOUT_SECONDS,
    ):
        """
        Args:
            client_id: This system's client id at the upstream provider
            client_secret: This system's client secret
            auth_url: Upstream authorize endpoint
            token_url: Upstream token endpoint
            redirect_url: This system's callback, registered with the upstream
            scopes: Scopes requested at authorize time and resent on refresh
            http_client: Shared client; one is created (and owned) when omitted
            timeout: Total timeout for a token call
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.auth_url = auth_url
        self.token_url = token_url
        self.redirect_url = redirect_url
        self.scopes = list(scopes)
        self.timeout = timeout
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def authorization_url(self, state: str) -> str:
        """Upstream authorize URL requesting offline access (a refresh token)."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_url,
            "response_type": RESPONSE_TYPE_CODE,
            "scope": " ".join(self.scopes),
            "state": state,
            "access_type": "offline",
        }
        separator = "&" if "?" in self.auth_url else "?"
        return f"{self.auth_url}{separator}{urlencode(params)}"

    async def exchange_code(self, code: str) -> httpx.Response:
        """Exchange an upstream authorization code on the downstream's behalf."""
        return await self._post_token(
            {
                "grant_type": GRANT_AUTHORIZATION_CODE,
                "code": code,
                "redirect_uri": self.redirect_url,
            }
        )

    async def refresh(self, refresh_token: str) -> httpx.Response:
        """Refresh an upstream token; the original scopes are resent."""
        return await self._post_token(
            {
                "grant_type": GRANT_REFRESH_TOKEN,
                "refresh_token": refresh_token,
                "redirect_uri": self.redirect_url,
                "scope": " ".join(self.scopes),
            }
        )

    async def _post_token(self, form: dict[str, str]) -> httpx.Response:
        """POST to the token endpoint. Returns the raw response, whatever its status.

        Raises:
            BadGateway: Transport failure or timeout
        """
        headers = {
            "Authorization": basic_auth_header(self.client_id, self.client_secret),
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }
        logger.info("Sending %s request to upstream token endpoint", form["grant_type"])
        try:
            async with asyncio.timeout(self.timeout):
                response = await self._http.post(self.token_url, data=form, headers=headers)
        except TimeoutError as e:
            logger.error("Upstream token request exceeded %.1fs", self.timeout)
            raise BadGateway("Token endpoint did not respond in time") from e
        except httpx.TransportError as e:
            logger.error("Upstream token request failed: %s: %s", type(e).__name__, e)
            raise BadGateway("Failed to send request to token endpoint") from e

        logger.info("Upstream token endpoint response: %d", response.status_code)
        return response
