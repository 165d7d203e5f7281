from __future__ import annotations

import asyncio
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple


class TTLCache:
    """Small in-memory cache with TTL semantics.

    Optionally bounds the number of items via ``max_size``. When the cache
    exceeds ``max_size`` on set(), expired entries go first, then the ones
    closest to expiry.
    """

    def __init__(self, default_ttl: float = 600.0, max_size: int | None = None) -> None:
        self._default_ttl = default_ttl
        self._max_size = max_size
        self._lock = threading.Lock()
        self._store: Dict[str, Tuple[float, Any]] = {}

    def _now(self) -> float:
        return time.time()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            item = self._store.get(key)
            if not item:
                return None
            expiry, value = item
            if expiry < self._now():
                del self._store[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl_value = self._default_ttl if ttl is None else ttl
        with self._lock:
            self._store[key] = (self._now() + ttl_value, value)
            if self._max_size is not None and len(self._store) > self._max_size:
                self._prune()

    put = set

    def _prune(self) -> None:
        now = self._now()
        for key in [k for k, (exp, _v) in self._store.items() if exp < now]:
            if len(self._store) <= self._max_size:
                break
            self._store.pop(key, None)
        if len(self._store) > self._max_size:
            by_expiry = sorted(self._store.items(), key=lambda kv: kv[1][0])
            for key, _item in by_expiry[: len(self._store) - self._max_size]:
                self._store.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)


def subtitle_cache_key(
    imdb_id: str,
    language: str,
    season: Optional[int] = None,
    episode: Optional[int] = None,
) -> str:
    """``tt123:es`` for movies, ``tt123:es:s1e2`` for episodes."""
    key = f"{imdb_id}:{language}"
    if season is not None and episode is not None:
        key = f"{key}:s{int(season)}e{int(episode)}"
    return key


_locks: Dict[str, asyncio.Lock] = {}
_locks_guard = threading.Lock()


_waiters: Dict[str, int] = {}


def _lock_for(key: str) -> asyncio.Lock:
    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            _locks[key] = lock
        _waiters[key] = _waiters.get(key, 0) + 1
        return lock


def _release_lock(key: str) -> None:
    # last caller out drops the entry so the map only holds keys in flight
    with _locks_guard:
        remaining = _waiters.get(key, 0) - 1
        if remaining > 0:
            _waiters[key] = remaining
            return
        _waiters.pop(key, None)
        _locks.pop(key, None)


async def get_or_set(
    cache: TTLCache,
    key: str,
    producer: Callable[[], Awaitable[Any]],
    ttl: Optional[float] = None,
) -> Any:
    """Return the cached value or compute it once for concurrent callers.

    ``None`` results are not stored so a missing subtitle is looked up again
    on the next request.
    """
    value = cache.get(key)
    if value is not None:
        return value

    lock = _lock_for(key)
    try:
        async with lock:
            value = cache.get(key)
            if value is not None:
                return value
            value = await producer()
            if value is not None:
                cache.set(key, value, ttl)
            return value
    finally:
        _release_lock(key)
