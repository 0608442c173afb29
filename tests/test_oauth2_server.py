"""
OAuth2 server engine tests.

Tests:
1. Authorization request validation and the authentication signal
2. Consent decisions (approve, deny, redirect checks)
3. Authorization code exchange (single use, expiry, binding)
4. Refresh token grant
5. Userinfo resolution
"""

import asyncio
from urllib.parse import parse_qs, urlsplit

import pytest

from oauth_relay.auth import TokenRequest
from oauth_relay.auth.storage import StoredClient
from oauth_relay.core.exceptions import (
    AuthenticationRequired,
    ErrorKind,
    InvalidClient,
    InvalidGrant,
    InvalidRedirect,
    InvalidRequest,
    InvalidToken,
    UnsupportedGrantType,
)
from tests.fixtures.oauth_fixtures import (
    CLIENT_ID,
    CLIENT_SECRET,
    LOGIN_URL,
    REDIRECT_URI,
    USER_ID,
)


def query_of(url: str) -> dict[str, list[str]]:
    return parse_qs(urlsplit(url).query)


async def issue_code(oauth2_server, scope: str = "read write", state: str = "xyz") -> str:
    """Run the consent step and return the issued code."""
    redirect_url = await oauth2_server.decide_consent(
        client_id=CLIENT_ID,
        redirect_uri=REDIRECT_URI,
        scope=scope,
        state=state,
        approved=True,
        user_id=USER_ID,
    )
    return query_of(redirect_url)["code"][0]


def code_request(code: str, **overrides) -> TokenRequest:
    fields = {
        "grant_type": "authorization_code",
        "client_id": CLIENT_ID,
        "client_secret": CLIENT_SECRET,
        "code": code,
        "redirect_uri": REDIRECT_URI,
    }
    fields.update(overrides)
    return TokenRequest(**fields)


def refresh_request(refresh_token: str, **overrides) -> TokenRequest:
    fields = {
        "grant_type": "refresh_token",
        "client_id": CLIENT_ID,
        "client_secret": CLIENT_SECRET,
        "refresh_token": refresh_token,
    }
    fields.update(overrides)
    return TokenRequest(**fields)


class TestAuthorizationServerMetadata:
    """RFC 8414 metadata."""

    def test_metadata_endpoints(self, oauth2_server):
        metadata = oauth2_server.get_authorization_server_metadata()

        assert metadata["issuer"] == "https://auth.example.com"
        assert metadata["authorization_endpoint"] == "https://auth.example.com/oauth/authorize"
        assert metadata["token_endpoint"] == "https://auth.example.com/oauth/token"
        assert metadata["userinfo_endpoint"] == "https://auth.example.com/oauth/userinfo"
        assert metadata["response_types_supported"] == ["code"]
        assert set(metadata["grant_types_supported"]) == {"authorization_code", "refresh_token"}


class TestBeginAuthorization:
    """Authorization request validation."""

    async def test_returns_consent_data_for_authenticated_user(self, oauth2_server):
        consent = await oauth2_server.begin_authorization(
            client_id=CLIENT_ID,
            redirect_uri=REDIRECT_URI,
            response_type="code",
            scope="read",
            state="abc",
            user_id=USER_ID,
        )

        assert consent.client_id == CLIENT_ID
        assert consent.client_name == "Test Client"
        assert consent.redirect_uri == REDIRECT_URI
        assert consent.scope == "read"
        assert consent.state == "abc"
        assert consent.user_id == USER_ID

    async def test_missing_client_id_is_invalid_request(self, oauth2_server):
        with pytest.raises(InvalidRequest):
            await oauth2_server.begin_authorization(
                client_id=None,
                redirect_uri=REDIRECT_URI,
                response_type="code",
                user_id=USER_ID,
            )

    async def test_wrong_response_type_is_invalid_request(self, oauth2_server):
        with pytest.raises(InvalidRequest):
            await oauth2_server.begin_authorization(
                client_id=CLIENT_ID,
                redirect_uri=REDIRECT_URI,
                response_type="token",
                user_id=USER_ID,
            )

    async def test_unknown_client(self, oauth2_server):
        with pytest.raises(InvalidClient):
            await oauth2_server.begin_authorization(
                client_id="nope",
                redirect_uri=REDIRECT_URI,
                response_type="code",
                user_id=USER_ID,
            )

    async def test_unregistered_redirect_uri(self, oauth2_server):
        with pytest.raises(InvalidRedirect):
            await oauth2_server.begin_authorization(
                client_id=CLIENT_ID,
                redirect_uri="https://evil.example.com/callback",
                response_type="code",
                user_id=USER_ID,
            )

    async def test_redirect_uri_must_match_exactly(self, oauth2_server):
        with pytest.raises(InvalidRedirect):
            await oauth2_server.begin_authorization(
                client_id=CLIENT_ID,
                redirect_uri=REDIRECT_URI + "/",
                response_type="code",
                user_id=USER_ID,
            )

    async def test_no_user_signals_authentication_required(self, oauth2_server):
        with pytest.raises(AuthenticationRequired) as exc_info:
            await oauth2_server.begin_authorization(
                client_id=CLIENT_ID,
                redirect_uri=REDIRECT_URI,
                response_type="code",
                user_id=None,
            )

        body = exc_info.value.to_dict()
        assert exc_info.value.kind is ErrorKind.AUTHENTICATION_REQUIRED
        assert body["login_url"] == LOGIN_URL
        assert body["client_id"] == CLIENT_ID
        assert body["client_name"] == "Test Client"

    async def test_client_is_checked_before_authentication(self, oauth2_server):
        with pytest.raises(InvalidClient):
            await oauth2_server.begin_authorization(
                client_id="nope",
                redirect_uri=REDIRECT_URI,
                response_type="code",
                user_id=None,
            )


class TestConsentDecision:
    """Approve and deny."""

    async def test_approval_redirects_with_code_and_state(self, oauth2_server, store):
        redirect_url = await oauth2_server.decide_consent(
            client_id=CLIENT_ID,
            redirect_uri=REDIRECT_URI,
            scope="read",
            state="xyz",
            approved=True,
            user_id=USER_ID,
        )

        assert redirect_url.startswith(REDIRECT_URI + "?")
        params = query_of(redirect_url)
        assert params["state"] == ["xyz"]
        code = params["code"][0]

        stored = await store.get_authorization_code(code)
        assert stored is not None
        assert stored.user_id == USER_ID
        assert stored.scope == "read"
        assert stored.used is False

    async def test_approval_without_state_omits_it(self, oauth2_server):
        redirect_url = await oauth2_server.decide_consent(
            client_id=CLIENT_ID,
            redirect_uri=REDIRECT_URI,
            scope="",
            state="",
            approved=True,
            user_id=USER_ID,
        )

        params = query_of(redirect_url)
        assert "code" in params
        assert "state" not in params

    async def test_code_lifetime_is_ten_minutes(self, oauth2_server, store, clock):
        code = await issue_code(oauth2_server)

        stored = await store.get_authorization_code(code)
        assert stored.expires_at == clock.now + 600

    async def test_codes_are_unique(self, oauth2_server):
        codes = {await issue_code(oauth2_server) for _ in range(20)}

        assert len(codes) == 20

    async def test_denial_redirects_with_access_denied(self, oauth2_server, store):
        redirect_url = await oauth2_server.decide_consent(
            client_id=CLIENT_ID,
            redirect_uri=REDIRECT_URI,
            scope="read",
            state="xyz",
            approved=False,
            user_id=USER_ID,
        )

        params = query_of(redirect_url)
        assert params["error"] == ["access_denied"]
        assert params["state"] == ["xyz"]
        assert "code" not in params

    async def test_denial_persists_nothing(self, oauth2_server, store):
        await oauth2_server.decide_consent(
            client_id=CLIENT_ID,
            redirect_uri=REDIRECT_URI,
            scope="read",
            state="xyz",
            approved=False,
            user_id=USER_ID,
        )

        assert store._records["auth_codes"] == {}

    async def test_consent_rejects_unregistered_redirect(self, oauth2_server, store):
        with pytest.raises(InvalidRedirect):
            await oauth2_server.decide_consent(
                client_id=CLIENT_ID,
                redirect_uri="https://evil.example.com/callback",
                scope="read",
                state="xyz",
                approved=True,
                user_id=USER_ID,
            )

        assert store._records["auth_codes"] == {}

    async def test_consent_requires_user(self, oauth2_server):
        with pytest.raises(AuthenticationRequired):
            await oauth2_server.decide_consent(
                client_id=CLIENT_ID,
                redirect_uri=REDIRECT_URI,
                scope="read",
                state="xyz",
                approved=True,
                user_id=None,
            )

    async def test_redirect_keeps_existing_query(self, oauth2_server, store):
        await store.save_client(
            StoredClient(
                client_id="query-client",
                client_secret="s",
                name="Query Client",
                redirect_uris=["https://client.example.com/cb?tenant=42"],
            )
        )

        redirect_url = await oauth2_server.decide_consent(
            client_id="query-client",
            redirect_uri="https://client.example.com/cb?tenant=42",
            scope="",
            state="s1",
            approved=True,
            user_id=USER_ID,
        )

        params = query_of(redirect_url)
        assert params["tenant"] == ["42"]
        assert params["state"] == ["s1"]
        assert "code" in params


class TestTokenRequestValidation:
    """Field presence, client authentication and grant type, in that order."""

    async def test_missing_grant_type(self, oauth2_server):
        with pytest.raises(InvalidRequest):
            await oauth2_server.exchange_token(code_request("c", grant_type=None))

    async def test_missing_client_secret(self, oauth2_server):
        with pytest.raises(InvalidRequest):
            await oauth2_server.exchange_token(code_request("c", client_secret=None))

    async def test_missing_code(self, oauth2_server):
        with pytest.raises(InvalidRequest):
            await oauth2_server.exchange_token(code_request(None))

    async def test_missing_redirect_uri(self, oauth2_server):
        with pytest.raises(InvalidRequest):
            await oauth2_server.exchange_token(code_request("c", redirect_uri=None))

    async def test_missing_refresh_token(self, oauth2_server):
        with pytest.raises(InvalidRequest):
            await oauth2_server.exchange_token(refresh_request(None))

    async def test_wrong_secret(self, oauth2_server):
        code = await issue_code(oauth2_server)

        with pytest.raises(InvalidClient):
            await oauth2_server.exchange_token(code_request(code, client_secret="wrong"))

    async def test_unknown_client(self, oauth2_server):
        with pytest.raises(InvalidClient):
            await oauth2_server.exchange_token(code_request("c", client_id="nope"))

    async def test_unsupported_grant_type_after_client_auth(self, oauth2_server):
        with pytest.raises(UnsupportedGrantType):
            await oauth2_server.exchange_token(code_request("c", grant_type="password"))

    async def test_unsupported_grant_type_with_bad_secret_is_invalid_client(self, oauth2_server):
        with pytest.raises(InvalidClient):
            await oauth2_server.exchange_token(
                code_request("c", grant_type="password", client_secret="wrong")
            )


class TestAuthorizationCodeExchange:
    """Code redemption."""

    async def test_exchange_issues_tokens(self, oauth2_server, store, clock):
        code = await issue_code(oauth2_server, scope="read write")

        token = await oauth2_server.exchange_token(code_request(code))

        assert token.token_type == "Bearer"
        assert token.expires_in == 3600
        assert token.scope == "read write"
        assert token.access_token
        assert token.refresh_token
        assert token.access_token != token.refresh_token

        access = await store.get_access_token(token.access_token, clock.now)
        assert access.user_id == USER_ID
        assert access.client_id == CLIENT_ID
        assert access.expires_at == clock.now + 3600

        refresh = await store.get_refresh_token(token.refresh_token, CLIENT_ID, clock.now)
        assert refresh.expires_at == clock.now + 30 * 24 * 3600

    async def test_code_is_marked_used(self, oauth2_server, store):
        code = await issue_code(oauth2_server)

        await oauth2_server.exchange_token(code_request(code))

        stored = await store.get_authorization_code(code)
        assert stored.used is True

    async def test_code_is_single_use(self, oauth2_server):
        code = await issue_code(oauth2_server)
        await oauth2_server.exchange_token(code_request(code))

        with pytest.raises(InvalidGrant):
            await oauth2_server.exchange_token(code_request(code))

    async def test_concurrent_redemption_succeeds_once(self, oauth2_server):
        code = await issue_code(oauth2_server)

        results = await asyncio.gather(
            *(oauth2_server.exchange_token(code_request(code)) for _ in range(5)),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, InvalidGrant)]
        assert len(successes) == 1
        assert len(failures) == 4

    async def test_expired_code(self, oauth2_server, clock):
        code = await issue_code(oauth2_server)
        clock.advance(601)

        with pytest.raises(InvalidGrant):
            await oauth2_server.exchange_token(code_request(code))

    async def test_code_valid_just_before_expiry(self, oauth2_server, clock):
        code = await issue_code(oauth2_server)
        clock.advance(599)

        token = await oauth2_server.exchange_token(code_request(code))

        assert token.access_token

    async def test_wrong_redirect_uri(self, oauth2_server):
        code = await issue_code(oauth2_server)

        with pytest.raises(InvalidGrant):
            await oauth2_server.exchange_token(
                code_request(code, redirect_uri="https://client.example.com/other")
            )

    async def test_code_bound_to_client(self, oauth2_server, store):
        await store.save_client(
            StoredClient(
                client_id="other-client",
                client_secret="other-secret",
                name="Other",
                redirect_uris=[REDIRECT_URI],
            )
        )
        code = await issue_code(oauth2_server)

        with pytest.raises(InvalidGrant):
            await oauth2_server.exchange_token(
                code_request(code, client_id="other-client", client_secret="other-secret")
            )

    async def test_unknown_code(self, oauth2_server):
        with pytest.raises(InvalidGrant):
            await oauth2_server.exchange_token(code_request("no-such-code"))

    async def test_failures_share_one_description(self, oauth2_server, clock):
        descriptions = set()
        used = await issue_code(oauth2_server)
        await oauth2_server.exchange_token(code_request(used))

        for code in ("no-such-code", used):
            with pytest.raises(InvalidGrant) as exc_info:
                await oauth2_server.exchange_token(code_request(code))
            descriptions.add(exc_info.value.description)

        assert len(descriptions) == 1

    async def test_failed_redemption_leaves_code_usable(self, oauth2_server):
        code = await issue_code(oauth2_server)

        with pytest.raises(InvalidGrant):
            await oauth2_server.exchange_token(
                code_request(code, redirect_uri="https://client.example.com/other")
            )

        token = await oauth2_server.exchange_token(code_request(code))
        assert token.access_token


class TestRefreshTokenGrant:
    """Refresh token redemption."""

    async def test_refresh_issues_new_access_token(self, oauth2_server, store, clock):
        code = await issue_code(oauth2_server, scope="read")
        first = await oauth2_server.exchange_token(code_request(code))
        clock.advance(10)

        refreshed = await oauth2_server.exchange_token(refresh_request(first.refresh_token))

        assert refreshed.access_token != first.access_token
        assert refreshed.scope == "read"
        assert refreshed.expires_in == 3600
        assert refreshed.refresh_token is None
        assert "refresh_token" not in refreshed.to_dict()

        access = await store.get_access_token(refreshed.access_token, clock.now)
        assert access.user_id == USER_ID

    async def test_refresh_token_is_reusable(self, oauth2_server):
        code = await issue_code(oauth2_server)
        first = await oauth2_server.exchange_token(code_request(code))

        a = await oauth2_server.exchange_token(refresh_request(first.refresh_token))
        b = await oauth2_server.exchange_token(refresh_request(first.refresh_token))

        assert a.access_token != b.access_token

    async def test_refresh_token_bound_to_client(self, oauth2_server, store):
        await store.save_client(
            StoredClient(
                client_id="other-client",
                client_secret="other-secret",
                name="Other",
                redirect_uris=[REDIRECT_URI],
            )
        )
        code = await issue_code(oauth2_server)
        first = await oauth2_server.exchange_token(code_request(code))

        with pytest.raises(InvalidGrant):
            await oauth2_server.exchange_token(
                refresh_request(
                    first.refresh_token, client_id="other-client", client_secret="other-secret"
                )
            )

    async def test_expired_refresh_token(self, oauth2_server, clock):
        code = await issue_code(oauth2_server)
        first = await oauth2_server.exchange_token(code_request(code))
        clock.advance(30 * 24 * 3600 + 1)

        with pytest.raises(InvalidGrant):
            await oauth2_server.exchange_token(refresh_request(first.refresh_token))

    async def test_unknown_refresh_token(self, oauth2_server):
        with pytest.raises(InvalidGrant):
            await oauth2_server.exchange_token(refresh_request("no-such-token"))


class TestUserinfo:
    """Bearer token to user claims."""

    async def test_resolves_claims(self, oauth2_server):
        code = await issue_code(oauth2_server)
        token = await oauth2_server.exchange_token(code_request(code))

        claims = await oauth2_server.resolve_userinfo(f"Bearer {token.access_token}")

        assert claims == {"sub": USER_ID, "email": "ada@example.com", "name": "Ada Lovelace"}

    @pytest.mark.parametrize(
        "header",
        [None, "", "Basic abc", "bearer abc", "Bearer", "Bearer ", "Bearer a b"],
    )
    async def test_malformed_header(self, oauth2_server, header):
        with pytest.raises(InvalidRequest):
            await oauth2_server.resolve_userinfo(header)

    async def test_unknown_token(self, oauth2_server):
        with pytest.raises(InvalidToken):
            await oauth2_server.resolve_userinfo("Bearer no-such-token")

    async def test_expired_token(self, oauth2_server, clock):
        code = await issue_code(oauth2_server)
        token = await oauth2_server.exchange_token(code_request(code))
        clock.advance(3601)

        with pytest.raises(InvalidToken):
            await oauth2_server.resolve_userinfo(f"Bearer {token.access_token}")

    async def test_refresh_token_is_not_an_access_token(self, oauth2_server):
        code = await issue_code(oauth2_server)
        token = await oauth2_server.exchange_token(code_request(code))

        with pytest.raises(InvalidToken):
            await oauth2_server.resolve_userinfo(f"Bearer {token.refresh_token}")

    async def test_missing_user(self, oauth2_server, store):
        code = await issue_code(oauth2_server)
        token = await oauth2_server.exchange_token(code_request(code))
        store._records["users"].clear()

        with pytest.raises(InvalidToken):
            await oauth2_server.resolve_userinfo(f"Bearer {token.access_token}")
