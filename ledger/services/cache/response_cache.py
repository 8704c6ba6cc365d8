"""
Per-User Response Cache

DESIGN DECISION: The cache is an injected service, created once per process
and torn down with it. Nothing reads it through module-level state.

Entries are keyed by (user id, request path + query) and expire after a
short TTL. Every mutating ledger call invalidates the user's entries before
it returns, so a write is never followed by a stale read from this cache.

Each invalidation also bumps the user's generation. A reader captures the
generation before computing a response and hands it back to `set`, which
drops the value if a write invalidated the user in between.

The cache is an optimization only: correctness never depends on a hit.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog


logger = structlog.get_logger(__name__)


@dataclass
class _Entry:
    value: Any
    stored_at: float


class ResponseCache:
    """In-process TTL cache scoped by user."""

    def __init__(
        self,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[str, str], _Entry] = {}
        self._generations: dict[str, int] = {}
        self._epoch = 0
        self._hits = 0
        self._misses = 0

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, user_id: str, key: str) -> Optional[Any]:
        """Cached value, or None when absent or expired."""
        entry = self._entries.get((user_id, key))
        if entry is None:
            self._misses += 1
            return None
        if self._clock() - entry.stored_at > self._ttl:
            del self._entries[(user_id, key)]
            self._misses += 1
            return None
        self._hits += 1
        logger.debug("cache_hit", user_id=user_id, key=key)
        return entry.value

    def generation(self, user_id: str) -> tuple[int, int]:
        """Token that changes whenever the user's entries are invalidated."""
        return self._epoch, self._generations.get(user_id, 0)

    def set(
        self,
        user_id: str,
        key: str,
        value: Any,
        generation: Optional[tuple[int, int]] = None,
    ) -> None:
        if self._ttl <= 0:
            return
        if generation is not None and generation != self.generation(user_id):
            logger.debug("cache_set_skipped_stale", user_id=user_id, key=key)
            return
        self._entries[(user_id, key)] = _Entry(value=value, stored_at=self._clock())
        logger.debug("cache_set", user_id=user_id, key=key)

    def invalidate_for_user(self, user_id: str) -> int:
        """
        Drop every entry of one user.

        Returns:
            Number of entries removed
        """
        self._generations[user_id] = self._generations.get(user_id, 0) + 1
        keys = [k for k in self._entries if k[0] == user_id]
        for k in keys:
            del self._entries[k]
        if keys:
            logger.debug("cache_invalidated", user_id=user_id, entries=len(keys))
        return len(keys)

    def clear(self) -> None:
        self._entries.clear()
        self._epoch += 1
        logger.info("cache_cleared")

    def stats(self) -> dict:
        return {
            "size": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "keys": [f"{user}_{key}" for user, key in self._entries],
        }
