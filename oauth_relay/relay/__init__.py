"""Relay role: OAuth client in front of an upstream provider plus a bearer proxy."""

from .client import UpstreamOAuthClient
from .gateway import RelayedResponse, RelayGateway
from .proxy import BearerProxy, build_proxy_client
from .state import InMemoryPendingStateStore, PendingStateStore

__all__ = [
    "BearerProxy",
    "InMemoryPendingStateStore",
    "PendingStateStore",
    "RelayGateway",
    "RelayedResponse",
    "UpstreamOAuthClient",
    "build_proxy_client",
]
