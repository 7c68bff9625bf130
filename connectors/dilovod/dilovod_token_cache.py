"""Single-use payload cache.

Backs the idempotency tokens handed out by the Dilovod connector: data
(e.g. the contact a validate call found or created) is stored under a
random token, read back once, and forgotten. Entries expire after a TTL.
save() also sweeps expired entries, at most once per cleanup interval.

In-process only; tokens are never persisted.
"""

import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional


@dataclass
class CacheEntry:
    """Cached payload with its expiry (monotonic seconds)."""
    token: str
    data: Any
    expires_at: float
    created_at: float = field(default_factory=time.monotonic)


class PayloadCache:
    """Thread-safe TTL cache of single-use tokens.

    Usage:
        cache = PayloadCache(default_ttl_seconds=600)
        token = cache.save({"person_id": "110..."})
        data = cache.get(token)        # returns the data and forgets the token
        cache.get(token)               # None
    """

    def __init__(
        self,
        default_ttl_seconds: int = 600,
        clock: Callable[[], float] = time.monotonic,
        cleanup_interval_seconds: int = 60,
    ):
        self.default_ttl_seconds = default_ttl_seconds
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self._clock = clock
        self._next_cleanup = clock() + cleanup_interval_seconds
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def save(self, data: Any, ttl_seconds: Optional[int] = None) -> str:
        """Store data and return a fresh token."""
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        token = str(uuid.uuid4())
        now = self._clock()
        if now >= self._next_cleanup:
            self.cleanup_expired()
        with self._lock:
            self._entries[token] = CacheEntry(token=token, data=data, expires_at=now + ttl, created_at=now)
        return token

    def get(self, token: Optional[str], single_use: bool = True) -> Optional[Any]:
        """Return the data for a token, or None if unknown or expired.

        Args:
            token: Token from save()
            single_use: Remove the entry on read
        """
        if not token:
            return None
        with self._lock:
            entry = self._entries.get(token)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                del self._entries[token]
                return None
            if single_use:
                del self._entries[token]
            return entry.data

    def cleanup_expired(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [token for token, entry in self._entries.items() if now > entry.expires_at]
            for token in expired:
                del self._entries[token]
            self._next_cleanup = now + self.cleanup_interval_seconds
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
