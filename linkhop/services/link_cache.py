"""In-process redirect cache keyed by (domain, slug)."""

from threading import Lock

import structlog
from cachetools import LRUCache

from linkhop.core.observability import record_cache_lookup
from linkhop.schemas import LinkRecord

logger = structlog.get_logger()

CacheKey = tuple[str, str]


class RedirectCache:
    """Bounded least-recently-used cache in front of the link store.

    Domains are case-folded, slugs are kept exactly as given. The cache only
    ever holds links that exist; callers must not store negative results.
    Entries never expire on their own; the write path invalidates them
    explicitly when a link's slug or domain changes or the link is deleted.

    Usage:
        cache = RedirectCache(capacity=10_000)
        link = cache.get("go.example.com", "abc")
        if link is None:
            link = await store.find_by_key("go.example.com", "abc")
            if link is not None:
                cache.set("go.example.com", "abc", link)
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("cache capacity must be positive")
        self._capacity = capacity
        self._cache: LRUCache[CacheKey, LinkRecord] = LRUCache(maxsize=capacity)
        # cachetools caches are not thread-safe; LRU reads reorder entries
        self._lock = Lock()
        self._hits = 0
        self._misses = 0

    @staticmethod
    def _make_key(domain: str, slug: str) -> CacheKey:
        return (domain.lower(), slug)

    def get(self, domain: str, slug: str) -> LinkRecord | None:
        """Return the cached link, marking it most recently used."""
        key = self._make_key(domain, slug)
        with self._lock:
            link = self._cache.get(key)
            if link is None:
                self._misses += 1
            else:
                self._hits += 1
        record_cache_lookup(link is not None)
        return link

    def set(self, domain: str, slug: str, link: LinkRecord) -> None:
        """Cache a link, evicting the least recently used entry if full."""
        key = self._make_key(domain, slug)
        with self._lock:
            self._cache[key] = link

    def invalidate(self, domain: str, slug: str) -> None:
        """Drop the entry for (domain, slug) if present."""
        key = self._make_key(domain, slug)
        with self._lock:
            removed = self._cache.pop(key, None)
        if removed is not None:
            logger.debug("Link cache invalidated", domain=key[0], slug=slug)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def __contains__(self, key: CacheKey) -> bool:
        domain, slug = key
        with self._lock:
            return self._make_key(domain, slug) in self._cache

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def stats(self) -> dict:
        """Get cache statistics."""
        with self._lock:
            return {
                "size": len(self._cache),
                "capacity": self._capacity,
                "hits": self._hits,
                "misses": self._misses,
            }
