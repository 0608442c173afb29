"""Pending relay state: ``state`` -> downstream return address.

Entries are single-use and expire after a bounded TTL. The in-memory store is
guarded by a lock and capped in size; expired entries are evicted on every
write and the oldest entries go first when the cap is reached.
"""

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from oauth_relay.core.constants import PENDING_STATE_MAX_ENTRIES, PENDING_STATE_TTL_SECONDS

logger = logging.getLogger(__name__)


@runtime_checkable
class PendingStateStore(Protocol):
    """Capability interface for relay state storage."""

    async def put(self, key: str, value: str, ttl: float | None = None) -> None: ...

    async def get(self, key: str) -> str | None: ...

    async def delete(self, key: str) -> None: ...

    async def pop(self, key: str) -> str | None:
        """Get and delete in one step; the second caller for a key gets None."""
        ...


class InMemoryPendingStateStore:
    """Process-local pending state with TTL and a hard size cap."""

    def __init__(
        self,
        default_ttl: float = PENDING_STATE_TTL_SECONDS,
        max_entries: int = PENDING_STATE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[str, float]] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def put(self, key: str, value: str, ttl: float | None = None) -> None:
        expires_at = self._clock() + (ttl if ttl is not None else self.default_ttl)
        with self._lock:
            self._evict_expired()
            if key in self._entries:
                self._entries.pop(key)
            while len(self._entries) >= self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.warning("Pending state store full, evicted oldest state %s", evicted)
            self._entries[key] = (value, expires_at)

    async def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    async def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    async def pop(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            return None
        return value

    def _evict_expired(self) -> None:
        # Caller holds the lock
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Evicted %d expired pending states", len(expired))
