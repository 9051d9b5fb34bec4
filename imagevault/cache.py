"""
    In-process cache of presigned GET URLs.

    Entries are keyed by object key and are never handed out once they are
    within ``lookup_margin`` seconds of expiring. Stored expiry is shortened by
    ``expiry_margin`` so a cached URL never outlives the signature it carries.
"""
from dataclasses import dataclass
from typing import Callable, Optional
import logging
import threading
import time

from cachetools import TLRUCache

log = logging.getLogger(__name__)

@dataclass(frozen=True)
class CachedUrl:
    url: str
    expires_at: float

class PresignedUrlCache:
    def __init__(
        self,
        capacity: int = 1024,
        lookup_margin: float = 1.0,
        expiry_margin: float = 2.0,
        clock: Callable[[], float] = time.time,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.lookup_margin = lookup_margin
        self.expiry_margin = expiry_margin
        self.clock = clock
        # An entry stops being served lookup_margin seconds before it expires
        self._entries = TLRUCache(
            maxsize=capacity,
            ttu=lambda _key, entry, _now: entry.expires_at - self.lookup_margin,
            timer=clock,
        )
        # cachetools caches are not thread-safe
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
        return entry.url if entry is not None else None

    def put(self, key: str, url: str, ttl: float, signed_at: Optional[float] = None):
        """Stores ``url``; ``signed_at`` defaults to now and anchors the expiry."""
        if signed_at is None:
            signed_at = self.clock()
        entry = CachedUrl(url=url, expires_at=signed_at + ttl - self.expiry_margin)
        with self._lock:
            self._entries[key] = entry
        log.debug("Cached presigned URL for %s until %.0f", key, entry.expires_at)

    def get_or_sign(self, key: str, ttl: int, sign: Callable[[], str]) -> str:
        """Returns the cached URL for ``key`` or signs, stores and returns a new one."""
        url = self.get(key)
        if url is not None:
            return url
        signed_at = self.clock()
        # Signing happens outside the lock; two concurrent misses both sign.
        url = sign()
        self.put(key, url, ttl, signed_at=signed_at)
        return url

    def invalidate(self, key: str):
        with self._lock:
            self._entries.pop(key, None)

    def clear(self):
        with self._lock:
            self._entries.clear()
