"""
OAuth2 endpoints for the authorization server using Starlette.

Implements:
- Authorization Server Metadata (RFC 8414)
- Authorization endpoint (consent data or authentication_required)
- Consent decision endpoint
- Token endpoint (authorization_code and refresh_token grants)
- Userinfo endpoint

Handlers raise ``OAuthError`` subclasses; the exception handler registered in
``oauth_relay.middleware.errors`` renders them.
"""

import inspect
import json
from collections.abc import Awaitable, Callable
from typing import Optional, Union

from pydantic import BaseModel, ValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse

from oauth_relay.auth.oauth2_server import OAuth2Server, TokenRequest
from oauth_relay.core.exceptions import InvalidRequest
from oauth_relay.utils.http import parse_basic_auth

SubjectResolver = Callable[[Request], Union[Optional[str], Awaitable[Optional[str]]]]

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


# Pydantic models for request validation
class ConsentDecisionRequest(BaseModel):
    """Consent decision posted by the consent screen."""

    client_id: str
    redirect_uri: str
    scope: str = ""
    state: str = ""
    approved: bool = False


def get_session_user(request: Request) -> Optional[str]:
    """Authenticated subject from the signed session cookie, if any."""
    session = request.scope.get("session") or {}
    user_id = session.get("user_id")
    return str(user_id) if user_id is not None else None


async def _resolve_subject(request: Request, resolver: SubjectResolver) -> Optional[str]:
    subject = resolver(request)
    if inspect.isawaitable(subject):
        subject = await subject
    return subject


# OAuth2 endpoint handlers
async def authorization_server_metadata(request: Request, oauth2_server: OAuth2Server):
    """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
    return JSONResponse(oauth2_server.get_authorization_server_metadata())


async def authorize_get(
    request: Request, oauth2_server: OAuth2Server, subject_resolver: SubjectResolver
):
    """Authorization endpoint (GET) - returns consent screen data."""
    params = request.query_params
    consent = await oauth2_server.begin_authorization(
        client_id=params.get("client_id"),
        redirect_uri=params.get("redirect_uri"),
        response_type=params.get("response_type"),
        scope=params.get("scope", ""),
        state=params.get("state", ""),
        user_id=await _resolve_subject(request, subject_resolver),
    )
    return JSONResponse(consent.to_dict())


async def authorize_consent(
    request: Request, oauth2_server: OAuth2Server, subject_resolver: SubjectResolver
):
    """Consent endpoint (POST) - approves or denies and returns the redirect URL."""
    try:
        body = await request.json()
        req = ConsentDecisionRequest(**body)
    except (json.JSONDecodeError, TypeError) as e:
        raise InvalidRequest("Request body must be a JSON object") from e
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise InvalidRequest(f"Invalid consent request: {fields}") from e

    redirect_url = await oauth2_server.decide_consent(
        client_id=req.client_id,
        redirect_uri=req.redirect_uri,
        scope=req.scope,
        state=req.state,
        approved=req.approved,
        user_id=await _resolve_subject(request, subject_resolver),
    )
    return JSONResponse({"redirect_url": redirect_url})


async def token_endpoint(request: Request, oauth2_server: OAuth2Server):
    """Token endpoint - exchanges a code or refresh token for an access token."""
    form = await request.form()

    client_id = form.get("client_id")
    client_secret = form.get("client_secret")
    basic = parse_basic_auth(request.headers.get("Authorization"))
    if basic is not None:
        if client_id and client_id != basic[0]:
            raise InvalidRequest("client_id in body does not match Authorization header")
        client_id, client_secret = basic

    access_token = await oauth2_server.exchange_token(
        TokenRequest(
            grant_type=form.get("grant_type"),
            client_id=client_id,
            client_secret=client_secret,
            code=form.get("code"),
            redirect_uri=form.get("redirect_uri"),
            refresh_token=form.get("refresh_token"),
        )
    )
    return JSONResponse(access_token.to_dict(), headers=NO_STORE_HEADERS)


async def userinfo_endpoint(request: Request, oauth2_server: OAuth2Server):
    """Userinfo endpoint - minimal claims for the bearer token's owner."""
    claims = await oauth2_server.resolve_userinfo(request.headers.get("Authorization"))
    return JSONResponse(claims)
