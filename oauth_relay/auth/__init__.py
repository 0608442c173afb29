"""OAuth authorization server with pluggable persistent storage.

This package is the provider role: it issues authorization codes, exchanges
them for tokens and answers userinfo lookups.
"""

from oauth_relay.auth.oauth2_server import AccessToken, ConsentRequest, OAuth2Server, TokenRequest
from oauth_relay.auth.store import (
    FileTokenStore,
    InMemoryTokenStore,
    TokenStore,
    create_token_store,
    load_seed_file,
)

__all__ = [
    "AccessToken",
    "ConsentRequest",
    "FileTokenStore",
    "InMemoryTokenStore",
    "OAuth2Server",
    "TokenRequest",
    "TokenStore",
    "create_token_store",
    "load_seed_file",
]
