"""Pydantic models for OAuth entity storage.

These models define the structure for persistent storage of OAuth entities
including clients, users, authorization codes, access tokens, and refresh tokens.
Expiries are POSIX timestamps.
"""

import time

from pydantic import BaseModel, Field


class StoredClient(BaseModel):
    """OAuth client registered out-of-band."""

    client_id: str
    client_secret: str
    name: str
    redirect_uris: list[str] = Field(default_factory=list)
    created_at: float = Field(default_factory=time.time)

    def has_redirect_uri(self, redirect_uri: str) -> bool:
        """Exact string match against the registered URIs, no normalization."""
        return redirect_uri in self.redirect_uris


class StoredUser(BaseModel):
    """Minimal public profile of a resource owner."""

    user_id: str
    email: str
    name: str


class StoredAuthCode(BaseModel):
    """Authorization code stored in persistent storage."""

    code: str
    client_id: str
    user_id: str
    redirect_uri: str
    scope: str = ""
    expires_at: float
    used: bool = False
    created_at: float = Field(default_factory=time.time)


class StoredAccessToken(BaseModel):
    """Access token stored in persistent storage."""

    token: str
    client_id: str
    user_id: str
    scope: str = ""
    expires_at: float
    created_at: float = Field(default_factory=time.time)


class StoredRefreshToken(BaseModel):
    """Refresh token stored in persistent storage."""

    token: str
    client_id: str
    user_id: str
    scope: str = ""
    expires_at: float
    created_at: float = Field(default_factory=time.time)
