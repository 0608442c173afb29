"""
Relay endpoints using Starlette.

Implements:
- /relay/authorize: remember the downstream redirect, bounce to the upstream
- /relay/callback: hand the upstream code back to the downstream redirect
- /relay/token: exchange upstream on the downstream's behalf
- /relay/proxy/{path}: bearer proxy to the upstream resource API
"""

from urllib.parse import unquote

from starlette.requests import Request
from starlette.responses import RedirectResponse, Response

from oauth_relay.core.exceptions import InvalidToken
from oauth_relay.relay.gateway import RelayedResponse, RelayGateway
from oauth_relay.utils.http import extract_bearer_token

PROXY_PREFIX = "/relay/proxy"


def to_response(relayed: RelayedResponse) -> Response:
    """Starlette response for a relayed upstream answer.

    Starlette computes Content-Length from the body; every other header is
    appended so repeated upstream headers survive.
    """
    response = Response(content=relayed.body, status_code=relayed.status_code)
    for name, value in relayed.headers:
        response.headers.append(name, value)
    return response


def proxied_path(request: Request) -> str:
    """Upstream path: the request path with the proxy prefix removed.

    The raw path is used so percent-encoding reaches the upstream untouched.
    """
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.decode("latin-1")
    else:
        path = request.scope["path"]

    root_path = request.scope.get("root_path", "")
    if root_path and path.startswith(root_path):
        path = path[len(root_path):]

    if path.startswith(PROXY_PREFIX):
        path = path[len(PROXY_PREFIX):]
    else:
        path = "/" + unquote(request.path_params.get("path", ""))
    return path or "/"


async def relay_authorize(request: Request, gateway: RelayGateway):
    """Start the relay flow; 307 to the upstream authorize endpoint."""
    params = request.query_params
    upstream_url = await gateway.authorize(params.get("redirect_uri"), params.get("state"))
    return RedirectResponse(upstream_url, status_code=307)


async def relay_callback(request: Request, gateway: RelayGateway):
    """Upstream callback; 307 back to the downstream redirect."""
    params = request.query_params
    redirect_url = await gateway.callback(
        code=params.get("code"),
        state=params.get("state"),
        error=params.get("error"),
        error_description=params.get("error_description"),
    )
    return RedirectResponse(redirect_url, status_code=307)


async def relay_token(request: Request, gateway: RelayGateway):
    """Token exchange on the downstream's behalf."""
    form = await request.form()
    relayed = await gateway.token(
        grant_type=form.get("grant_type"),
        code=form.get("code"),
        refresh_token=form.get("refresh_token"),
    )
    return to_response(relayed)


async def relay_proxy(request: Request, gateway: RelayGateway):
    """Forward an API call with the caller's bearer token."""
    authorization = request.headers.get("Authorization")
    if not authorization:
        raise InvalidToken("Authorization header required")

    access_token = extract_bearer_token(authorization, case_sensitive=False)
    if access_token is None:
        raise InvalidToken("Invalid Authorization header: must be 'Bearer {token}'")

    relayed = await gateway.forward(
        method=request.method,
        path=proxied_path(request),
        query=request.scope.get("query_string", b"").decode("latin-1"),
        headers=request.headers.items(),
        body=await request.body(),
        access_token=access_token,
    )
    return to_response(relayed)
