"""Code/token store for the authorization server.

The store owns every persisted OAuth record. Two backends share one locking
implementation:

- ``InMemoryTokenStore``: dicts, for single-process deployments and tests
- ``FileTokenStore``: one JSON file per record, surviving restarts

Redeeming an authorization code is a single critical section: match the code,
persist the issued tokens, then mark the code used. A concurrent second redeem
of the same code sees ``used=True`` and fails.
"""

import asyncio
import hashlib
import json
import logging
import os
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel, ValidationError

from oauth_relay.auth.storage import (
    StoredAccessToken,
    StoredAuthCode,
    StoredClient,
    StoredRefreshToken,
    StoredUser,
)
from oauth_relay.core.exceptions import InternalError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

IssueTokens = Callable[[StoredAuthCode], tuple[StoredAccessToken, StoredRefreshToken]]

CLIENTS = "clients"
USERS = "users"
AUTH_CODES = "auth_codes"
ACCESS_TOKENS = "access_tokens"
REFRESH_TOKENS = "refresh_tokens"
RECORD_KINDS = (CLIENTS, USERS, AUTH_CODES, ACCESS_TOKENS, REFRESH_TOKENS)


@runtime_checkable
class TokenStore(Protocol):
    """
    Protocol defining the persistence operations the OAuth engines rely on.
    Expiry filtering happens inside the store: expired records read as absent.
    """

    async def get_client(self, client_id: str) -> StoredClient | None: ...

    async def save_client(self, client: StoredClient) -> None: ...

    async def get_user(self, user_id: str) -> StoredUser | None: ...

    async def save_user(self, user: StoredUser) -> None: ...

    async def save_authorization_code(self, auth_code: StoredAuthCode) -> None: ...

    async def get_authorization_code(self, code: str) -> StoredAuthCode | None:
        """Raw read, ignoring expiry and the used flag (audit only)."""
        ...

    async def redeem_authorization_code(
        self,
        code: str,
        client_id: str,
        redirect_uri: str,
        now: float,
        issue: IssueTokens,
    ) -> tuple[StoredAccessToken, StoredRefreshToken] | None:
        """
        Atomically redeem a code.

        Matches {code, client_id, redirect_uri, used=False, expires_at > now}.
        On a match, calls ``issue`` with the code record, persists both tokens,
        then marks the code used. Returns None when nothing matched.
        """
        ...

    async def save_access_token(self, token: StoredAccessToken) -> None: ...

    async def get_access_token(self, token: str, now: float) -> StoredAccessToken | None: ...

    async def save_refresh_token(self, token: StoredRefreshToken) -> None: ...

    async def get_refresh_token(
        self, token: str, client_id: str, now: float
    ) -> StoredRefreshToken | None: ...


class _LockedTokenStore:
    """Record-level primitives are left to subclasses; everything else lives here."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    # ========== Backend primitives ==========

    def _read(self, kind: str, key: str, model: type[M]) -> M | None:
        raise NotImplementedError

    def _write(self, kind: str, key: str, entity: BaseModel) -> None:
        raise NotImplementedError

    # ========== Clients and users ==========

    async def get_client(self, client_id: str) -> StoredClient | None:
        return self._read(CLIENTS, client_id, StoredClient)

    async def save_client(self, client: StoredClient) -> None:
        async with self._lock:
            self._write(CLIENTS, client.client_id, client)

    async def get_user(self, user_id: str) -> StoredUser | None:
        return self._read(USERS, user_id, StoredUser)

    async def save_user(self, user: StoredUser) -> None:
        async with self._lock:
            self._write(USERS, user.user_id, user)

    # ========== Authorization codes ==========

    async def save_authorization_code(self, auth_code: StoredAuthCode) -> None:
        async with self._lock:
            self._write(AUTH_CODES, auth_code.code, auth_code)

    async def get_authorization_code(self, code: str) -> StoredAuthCode | None:
        return self._read(AUTH_CODES, code, StoredAuthCode)

    async def redeem_authorization_code(
        self,
        code: str,
        client_id: str,
        redirect_uri: str,
        now: float,
        issue: IssueTokens,
    ) -> tuple[StoredAccessToken, StoredRefreshToken] | None:
        async with self._lock:
            auth_code = self._read(AUTH_CODES, code, StoredAuthCode)
            if (
                auth_code is None
                or auth_code.code != code
                or auth_code.client_id != client_id
                or auth_code.redirect_uri != redirect_uri
                or auth_code.used
                or auth_code.expires_at <= now
            ):
                return None

            access_token, refresh_token = issue(auth_code)
            self._write(ACCESS_TOKENS, access_token.token, access_token)
            self._write(REFRESH_TOKENS, refresh_token.token, refresh_token)
            self._write(AUTH_CODES, code, auth_code.model_copy(update={"used": True}))
            return access_token, refresh_token

    # ========== Tokens ==========

    async def save_access_token(self, token: StoredAccessToken) -> None:
        async with self._lock:
            self._write(ACCESS_TOKENS, token.token, token)

    async def get_access_token(self, token: str, now: float) -> StoredAccessToken | None:
        stored = self._read(ACCESS_TOKENS, token, StoredAccessToken)
        if stored is None or stored.token != token or stored.expires_at <= now:
            return None
        return stored

    async def save_refresh_token(self, token: StoredRefreshToken) -> None:
        async with self._lock:
            self._write(REFRESH_TOKENS, token.token, token)

    async def get_refresh_token(
        self, token: str, client_id: str, now: float
    ) -> StoredRefreshToken | None:
        stored = self._read(REFRESH_TOKENS, token, StoredRefreshToken)
        if (
            stored is None
            or stored.token != token
            or stored.client_id != client_id
            or stored.expires_at <= now
        ):
            return None
        return stored


class InMemoryTokenStore(_LockedTokenStore):
    """Process-local store. Records are kept as model copies."""

    def __init__(self) -> None:
        super().__init__()
        self._records: dict[str, dict[str, BaseModel]] = {kind: {} for kind in RECORD_KINDS}

    def _read(self, kind: str, key: str, model: type[M]) -> M | None:
        entity = self._records[kind].get(key)
        if entity is None:
            return None
        return entity.model_copy()

    def _write(self, kind: str, key: str, entity: BaseModel) -> None:
        self._records[kind][key] = entity.model_copy()


class FileTokenStore(_LockedTokenStore):
    """Token store with file-based persistent storage.

    Each record is a JSON file under ``<storage_dir>/<kind>/``. File names are
    SHA-256 digests of the record key, so tokens never appear on disk as
    names and arbitrary keys cannot traverse paths.

    For production with multiple servers, use a shared database instead.
    """

    def __init__(self, storage_dir: str | Path = ".oauth_storage") -> None:
        super().__init__()
        self._storage_dir = Path(storage_dir)
        try:
            for kind in RECORD_KINDS:
                (self._storage_dir / kind).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            msg = f"Cannot create token storage at {self._storage_dir}"
            raise InternalError(msg) from e

        logger.info("Initialized FileTokenStore with storage at %s", self._storage_dir)

    def _get_file_path(self, kind: str, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self._storage_dir / kind / f"{digest}.json"

    def _read(self, kind: str, key: str, model: type[M]) -> M | None:
        file_path = self._get_file_path(kind, key)
        try:
            raw = file_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            msg = f"Failed to read {kind} record"
            raise InternalError(msg) from e
        try:
            return model.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Discarding corrupt %s record %s: %s", kind, file_path.name, e)
            return None

    def _write(self, kind: str, key: str, entity: BaseModel) -> None:
        file_path = self._get_file_path(kind, key)
        try:
            fd, tmp_path = tempfile.mkstemp(dir=file_path.parent, suffix=".tmp")
        except OSError as e:
            msg = f"Failed to write {kind} record"
            raise InternalError(msg) from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(entity.model_dump_json(indent=2))
            os.replace(tmp_path, file_path)
        except OSError as e:
            Path(tmp_path).unlink(missing_ok=True)
            msg = f"Failed to write {kind} record"
            raise InternalError(msg) from e


def create_token_store(backend: str, storage_dir: str | Path = ".oauth_storage") -> TokenStore:
    """Build the configured token store backend."""
    if backend == "file":
        return FileTokenStore(storage_dir)
    if backend == "memory":
        return InMemoryTokenStore()
    msg = f"Unknown token store backend: {backend}"
    raise ValueError(msg)


async def load_seed_file(store: TokenStore, seed_file: str | Path) -> dict[str, int]:
    """Load out-of-band clients and users from a JSON seed file.

    Expected shape::

        {
            "clients": [{"client_id": ..., "client_secret": ..., "name": ...,
                         "redirect_uris": [...]}],
            "users": [{"user_id": ..., "email": ..., "name": ...}]
        }
    """
    path = Path(seed_file)
    try:
        data: dict[str, Any] = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        msg = f"Cannot load seed file {path}"
        raise InternalError(msg) from e

    try:
        clients = [StoredClient.model_validate(item) for item in data.get("clients", [])]
        users = [StoredUser.model_validate(item) for item in data.get("users", [])]
    except (AttributeError, ValidationError) as e:
        msg = f"Invalid seed file {path}: {e}"
        raise InternalError(msg) from e

    for client in clients:
        await store.save_client(client)
    for user in users:
        await store.save_user(user)

    logger.info("Loaded %d clients and %d users from %s", len(clients), len(users), path)
    return {"clients": len(clients), "users": len(users)}
