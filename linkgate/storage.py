"""In-memory key-value backend for tests and local development.

``MemoryStore`` mirrors the subset of the ``redis.Redis`` interface used by the
holdings cache, the rate limiter and click analytics, keeping everything in
Python dictionaries. With ``CACHE_BACKEND=memory`` (or when Redis cannot be
reached) the application runs against it unchanged.

State lives in a single process only: with several workers each one keeps its
own cache and counters.
"""

from __future__ import annotations

import copy
import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple


class MemoryStore:
    """Thread-safe dictionary store with per-key expiry."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.RLock()
        self._values: Dict[str, Any] = {}
        self._expires_at: Dict[str, float] = {}

    # -- internals ---------------------------------------------------------

    def _purge(self, key: str) -> None:
        expires_at = self._expires_at.get(key)
        if expires_at is not None and expires_at <= self._clock():
            self._values.pop(key, None)
            self._expires_at.pop(key, None)

    def _exists(self, key: str) -> bool:
        self._purge(key)
        return key in self._values

    # -- strings -----------------------------------------------------------

    def ping(self) -> bool:
        return True

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            if not self._exists(key):
                return None
            value = self._values[key]
            return None if isinstance(value, dict) else str(value)

    def set(self, key: str, value: Any, ex: Optional[int] = None, nx: bool = False) -> Optional[bool]:
        with self._lock:
            if nx and self._exists(key):
                return None
            self._values[key] = str(value)
            if ex:
                self._expires_at[key] = self._clock() + int(ex)
            else:
                self._expires_at.pop(key, None)
            return True

    def incr(self, key: str, amount: int = 1) -> int:
        with self._lock:
            current = int(self._values[key]) if self._exists(key) else 0
            current += amount
            self._values[key] = str(current)
            return current

    def expire(self, key: str, seconds: int) -> bool:
        with self._lock:
            if not self._exists(key):
                return False
            self._expires_at[key] = self._clock() + int(seconds)
            return True

    def ttl(self, key: str) -> int:
        """Seconds until expiry; -1 without expiry, -2 when missing (Redis semantics)."""
        with self._lock:
            if not self._exists(key):
                return -2
            expires_at = self._expires_at.get(key)
            if expires_at is None:
                return -1
            return max(0, int(round(expires_at - self._clock())))

    def delete(self, *keys: str) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if self._exists(key):
                    removed += 1
                self._values.pop(key, None)
                self._expires_at.pop(key, None)
        return removed

    # -- sorted sets -------------------------------------------------------

    def _zset(self, key: str) -> Dict[str, float]:
        if not self._exists(key):
            self._values[key] = {}
        return self._values[key]

    def _ordered(self, key: str) -> List[Tuple[str, float]]:
        members = self._values.get(key) if self._exists(key) else None
        if not members:
            return []
        return sorted(members.items(), key=lambda item: (item[1], item[0]))

    def zadd(self, key: str, mapping: Mapping[str, float]) -> int:
        with self._lock:
            members = self._zset(key)
            added = sum(1 for member in mapping if member not in members)
            members.update({member: float(score) for member, score in mapping.items()})
            return added

    def zrange(self, key: str, start: int, end: int) -> List[str]:
        with self._lock:
            ordered = [member for member, _ in self._ordered(key)]
            return _slice(ordered, start, end)

    def zremrangebyrank(self, key: str, start: int, end: int) -> int:
        with self._lock:
            ordered = [member for member, _ in self._ordered(key)]
            doomed = _slice(ordered, start, end)
            members = self._values.get(key) or {}
            for member in doomed:
                members.pop(member, None)
            return len(doomed)

    def zcard(self, key: str) -> int:
        with self._lock:
            return len(self._ordered(key))

    # -- housekeeping ------------------------------------------------------

    def flushall(self) -> None:
        with self._lock:
            self._values.clear()
            self._expires_at.clear()

    def snapshot(self) -> Dict[str, Any]:
        """Copy of all live keys, for debugging and tests."""
        with self._lock:
            return {key: copy.deepcopy(self._values[key]) for key in list(self._values) if self._exists(key)}

    def pipeline(self, transaction: bool = True) -> "MemoryPipeline":
        return MemoryPipeline(self)

    def close(self) -> None:
        pass


class MemoryPipeline:
    """Queued commands executed together under the store lock, like MULTI/EXEC."""

    def __init__(self, store: MemoryStore):
        self._store = store
        self._commands: List[Tuple[str, tuple, dict]] = []

    def __enter__(self) -> "MemoryPipeline":
        return self

    def __exit__(self, *exc_info) -> None:
        self.reset()

    def _queue(self, name: str, *args, **kwargs) -> "MemoryPipeline":
        self._commands.append((name, args, kwargs))
        return self

    def get(self, key: str) -> "MemoryPipeline":
        return self._queue("get", key)

    def set(self, key: str, value: Any, ex: Optional[int] = None, nx: bool = False) -> "MemoryPipeline":
        return self._queue("set", key, value, ex=ex, nx=nx)

    def incr(self, key: str, amount: int = 1) -> "MemoryPipeline":
        return self._queue("incr", key, amount)

    def expire(self, key: str, seconds: int) -> "MemoryPipeline":
        return self._queue("expire", key, seconds)

    def ttl(self, key: str) -> "MemoryPipeline":
        return self._queue("ttl", key)

    def execute(self) -> List[Any]:
        with self._store._lock:
            results = [getattr(self._store, name)(*args, **kwargs) for name, args, kwargs in self._commands]
        self.reset()
        return results

    def reset(self) -> None:
        self._commands = []


def _slice(items: List[str], start: int, end: int) -> List[str]:
    # Redis ranges are inclusive at both ends and accept negative indexes.
    size = len(items)
    if start < 0:
        start = max(size + start, 0)
    if end < 0:
        end = size + end
    if start > end or start >= size:
        return []
    return items[start : end + 1]
