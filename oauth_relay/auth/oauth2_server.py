"""
OAuth2 Authorization Server.

Implements the authorization-code lifecycle (RFC 6749 section 4.1), the
refresh-token grant (section 6) and a minimal userinfo lookup. Tokens are
opaque random strings persisted in a ``TokenStore``; the server itself holds
no state across requests.
"""

import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any, Optional

from oauth_relay.auth.storage import (
    StoredAccessToken,
    StoredAuthCode,
    StoredClient,
    StoredRefreshToken,
)
from oauth_relay.auth.store import TokenStore
from oauth_relay.core.constants import (
    ACCESS_TOKEN_TTL_SECONDS,
    AUTHORIZATION_CODE_TTL_SECONDS,
    GRANT_AUTHORIZATION_CODE,
    GRANT_REFRESH_TOKEN,
    REFRESH_TOKEN_TTL_SECONDS,
    RESPONSE_TYPE_CODE,
    SUPPORTED_GRANT_TYPES,
    TOKEN_BYTES,
    TOKEN_TYPE_BEARER,
)
from oauth_relay.core.exceptions import (
    AuthenticationRequired,
    InvalidClient,
    InvalidGrant,
    InvalidRedirect,
    InvalidRequest,
    InvalidToken,
    UnsupportedGrantType,
)
from oauth_relay.core.logging import mask_secret
from oauth_relay.utils.http import append_query, extract_bearer_token

logger = logging.getLogger(__name__)


@dataclass
class ConsentRequest:
    """Data the consent screen needs. Produced without side effects."""

    client_id: str
    client_name: str
    redirect_uri: str
    scope: str
    state: str
    user_id: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class TokenRequest:
    """Parsed token endpoint request (form fields or Basic credentials)."""

    grant_type: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    code: Optional[str] = None
    redirect_uri: Optional[str] = None
    refresh_token: Optional[str] = None


@dataclass
class AccessToken:
    """Token endpoint response."""

    access_token: str
    token_type: str = TOKEN_TYPE_BEARER
    expires_in: int = ACCESS_TOKEN_TTL_SECONDS
    refresh_token: Optional[str] = None
    scope: Optional[str] = None

    def to_dict(self) -> dict:
        """Response body; refresh_token is left out when none was issued."""
        body = {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
        }
        if self.refresh_token is not None:
            body["refresh_token"] = self.refresh_token
        body["scope"] = self.scope or ""
        return body


class OAuth2Server:
    """
    OAuth2 Authorization Server.

    Features:
    - Authorization code grant with consent step and single-use codes
    - Refresh token grant (refresh tokens are reusable until expiry)
    - Client authentication by id + secret on every token request
    - Userinfo lookup for live access tokens
    - Authorization Server Metadata (RFC 8414)
    """

    def __init__(
        self,
        store: TokenStore,
        issuer: str,
        login_url: str,
        authorization_code_ttl_seconds: int = AUTHORIZATION_CODE_TTL_SECONDS,
        access_token_ttl_seconds: int = ACCESS_TOKEN_TTL_SECONDS,
        refresh_token_ttl_seconds: int = REFRESH_TOKEN_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize OAuth2 server.

        Args:
            store: Code/token store
            issuer: OAuth2 issuer URL (e.g., "https://your-server.com")
            login_url: External login page handed out with AuthenticationRequired
            authorization_code_ttl_seconds: Auth code expiration (default: 10 minutes)
            access_token_ttl_seconds: Access token expiration (default: 1 hour)
            refresh_token_ttl_seconds: Refresh token expiration (default: 30 days)
            clock: Source of the current POSIX time
        """
        self.store = store
        self.issuer = issuer.rstrip("/")
        self.login_url = login_url
        self.authorization_code_ttl_seconds = authorization_code_ttl_seconds
        self.access_token_ttl_seconds = access_token_ttl_seconds
        self.refresh_token_ttl_seconds = refresh_token_ttl_seconds
        self._clock = clock

    def get_authorization_server_metadata(self) -> dict:
        """
        Get OAuth 2.0 Authorization Server Metadata (RFC 8414).

        Returns:
            Authorization server metadata
        """
        return {
            "issuer": self.issuer,
            "authorization_endpoint": f"{self.issuer}/oauth/authorize",
            "token_endpoint": f"{self.issuer}/oauth/token",
            "userinfo_endpoint": f"{self.issuer}/oauth/userinfo",
            "response_types_supported": [RESPONSE_TYPE_CODE],
            "grant_types_supported": list(SUPPORTED_GRANT_TYPES),
            "token_endpoint_auth_methods_supported": [
                "client_secret_post",
                "client_secret_basic",
            ],
        }

    # ========== Authorization ==========

    async def _resolve_client(self, client_id: str, redirect_uri: str) -> StoredClient:
        client = await self.store.get_client(client_id)
        if client is None:
            logger.info("Authorization rejected: unknown client %s", client_id)
            raise InvalidClient("Unknown client_id")
        if not client.has_redirect_uri(redirect_uri):
            logger.warning(
                "Authorization rejected: unregistered redirect_uri %s for client %s",
                redirect_uri,
                client_id,
            )
            raise InvalidRedirect()
        return client

    async def begin_authorization(
        self,
        client_id: Optional[str],
        redirect_uri: Optional[str],
        response_type: Optional[str],
        scope: str = "",
        state: str = "",
        user_id: Optional[str] = None,
    ) -> ConsentRequest:
        """
        Validate an authorization request and return consent-screen data.

        Raises:
            InvalidRequest: Missing client_id/redirect_uri or response_type != "code"
            InvalidClient: Unknown client
            InvalidRedirect: redirect_uri not registered for the client
            AuthenticationRequired: No authenticated user on the request
        """
        if not client_id or not redirect_uri:
            raise InvalidRequest("client_id and redirect_uri are required")
        if response_type != RESPONSE_TYPE_CODE:
            raise InvalidRequest("response_type must be 'code'")

        client = await self._resolve_client(client_id, redirect_uri)

        if not user_id:
            raise AuthenticationRequired(
                login_url=self.login_url,
                client_id=client_id,
                client_name=client.name,
            )

        return ConsentRequest(
            client_id=client_id,
            client_name=client.name,
            redirect_uri=redirect_uri,
            scope=scope or "",
            state=state or "",
            user_id=user_id,
        )

    async def decide_consent(
        self,
        client_id: str,
        redirect_uri: str,
        scope: str,
        state: str,
        approved: bool,
        user_id: Optional[str],
    ) -> str:
        """
        Apply the user's consent decision.

        Returns:
            The URL the user agent should be sent to: the client's redirect URI
            carrying either ``code`` or ``error=access_denied``.
        """
        if not user_id:
            raise AuthenticationRequired(login_url=self.login_url, client_id=client_id)

        await self._resolve_client(client_id, redirect_uri)

        if not approved:
            logger.info("User %s denied access for client %s", user_id, client_id)
            return append_query(redirect_uri, {"error": "access_denied", "state": state or ""})

        code = self._generate_token()
        auth_code = StoredAuthCode(
            code=code,
            client_id=client_id,
            user_id=user_id,
            redirect_uri=redirect_uri,
            scope=scope or "",
            expires_at=self._clock() + self.authorization_code_ttl_seconds,
        )
        await self.store.save_authorization_code(auth_code)
        logger.info(
            "Issued authorization code %s to client %s for user %s",
            mask_secret(code),
            client_id,
            user_id,
        )

        params = {"code": code}
        if state:
            params["state"] = state
        return append_query(redirect_uri, params)

    # ========== Token exchange ==========

    async def exchange_token(self, request: TokenRequest) -> AccessToken:
        """
        Token endpoint entry point, keyed by grant_type.

        Field presence is checked before any store access; client
        authentication runs before any grant-specific logic.

        Raises:
            InvalidRequest: Missing grant_type, credentials or grant fields
            InvalidClient: Unknown client or wrong secret
            UnsupportedGrantType: grant_type other than the supported two
            InvalidGrant: Code or refresh token cannot be redeemed
        """
        if not request.grant_type:
            raise InvalidRequest("grant_type is required")
        if not request.client_id or not request.client_secret:
            raise InvalidRequest("client_id and client_secret are required")
        if request.grant_type == GRANT_AUTHORIZATION_CODE and (
            not request.code or not request.redirect_uri
        ):
            raise InvalidRequest("code and redirect_uri are required")
        if request.grant_type == GRANT_REFRESH_TOKEN and not request.refresh_token:
            raise InvalidRequest("refresh_token is required")

        await self._authenticate_client(request.client_id, request.client_secret)

        if request.grant_type == GRANT_AUTHORIZATION_CODE:
            return await self._exchange_authorization_code(
                code=request.code,
                redirect_uri=request.redirect_uri,
                client_id=request.client_id,
            )
        if request.grant_type == GRANT_REFRESH_TOKEN:
            return await self._exchange_refresh_token(
                refresh_token=request.refresh_token,
                client_id=request.client_id,
            )
        raise UnsupportedGrantType()

    async def _authenticate_client(self, client_id: str, client_secret: str) -> StoredClient:
        client = await self.store.get_client(client_id)
        # Compare even for unknown clients so timing does not reveal which ids exist
        expected = client.client_secret if client else secrets.token_urlsafe(TOKEN_BYTES)
        if not secrets.compare_digest(expected.encode("utf-8"), client_secret.encode("utf-8")):
            logger.info("Client authentication failed for %s", client_id)
            raise InvalidClient()
        if client is None:
            raise InvalidClient()
        return client

    async def _exchange_authorization_code(
        self, code: str, redirect_uri: str, client_id: str
    ) -> AccessToken:
        now = self._clock()

        def issue(auth_code: StoredAuthCode) -> tuple[StoredAccessToken, StoredRefreshToken]:
            access = StoredAccessToken(
                token=self._generate_token(),
                client_id=client_id,
                user_id=auth_code.user_id,
                scope=auth_code.scope,
                expires_at=now + self.access_token_ttl_seconds,
            )
            refresh = StoredRefreshToken(
                token=self._generate_token(),
                client_id=client_id,
                user_id=auth_code.user_id,
                scope=auth_code.scope,
                expires_at=now + self.refresh_token_ttl_seconds,
            )
            return access, refresh

        issued = await self.store.redeem_authorization_code(
            code=code,
            client_id=client_id,
            redirect_uri=redirect_uri,
            now=now,
            issue=issue,
        )
        if issued is None:
            logger.info(
                "Rejected authorization code %s for client %s", mask_secret(code), client_id
            )
            raise InvalidGrant()

        access, refresh = issued
        logger.info("Exchanged authorization code for client %s (user %s)", client_id, access.user_id)
        return AccessToken(
            access_token=access.token,
            expires_in=self.access_token_ttl_seconds,
            refresh_token=refresh.token,
            scope=access.scope,
        )

    async def _exchange_refresh_token(self, refresh_token: str, client_id: str) -> AccessToken:
        now = self._clock()
        stored = await self.store.get_refresh_token(refresh_token, client_id, now)
        if stored is None:
            logger.info(
                "Rejected refresh token %s for client %s", mask_secret(refresh_token), client_id
            )
            raise InvalidGrant()

        # Refresh tokens are not rotated; every use is logged for audit
        access = StoredAccessToken(
            token=self._generate_token(),
            client_id=client_id,
            user_id=stored.user_id,
            scope=stored.scope,
            expires_at=now + self.access_token_ttl_seconds,
        )
        await self.store.save_access_token(access)
        logger.info(
            "Refreshed access token for client %s (user %s) with refresh token %s",
            client_id,
            stored.user_id,
            mask_secret(refresh_token),
        )
        return AccessToken(
            access_token=access.token,
            expires_in=self.access_token_ttl_seconds,
            scope=access.scope,
        )

    # ========== Userinfo ==========

    async def resolve_userinfo(self, authorization: Optional[str]) -> dict[str, Any]:
        """
        Map a live access token to its owner's minimal claims.

        Args:
            authorization: Raw Authorization header value

        Returns:
            ``{"sub", "email", "name"}``

        Raises:
            InvalidRequest: Header absent or not ``Bearer <token>``
            InvalidToken: Token unknown or expired, or its user is gone
        """
        token = extract_bearer_token(authorization, case_sensitive=True)
        if token is None:
            raise InvalidRequest("Authorization header must be 'Bearer <token>'")

        access = await self.store.get_access_token(token, self._clock())
        if access is None:
            raise InvalidToken()

        user = await self.store.get_user(access.user_id)
        if user is None:
            logger.warning(
                "Access token for client %s belongs to missing user %s",
                access.client_id,
                access.user_id,
            )
            raise InvalidToken()

        return {"sub": user.user_id, "email": user.email, "name": user.name}

    def _generate_token(self) -> str:
        """32 CSPRNG bytes, URL-safe base64."""
        return secrets.token_urlsafe(TOKEN_BYTES)
