"""Small TTL cache for values that are expensive to look up repeatedly."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Generic, TypeVar

from cachetools import TTLCache

T = TypeVar("T")


class ExpiringCache(Generic[T]):
    """Keyed values that expire ``ttl`` seconds after they were stored.

    Owned by the component that needs it and built with its TTL, never shared
    through module globals.
    """

    def __init__(
        self,
        ttl: float,
        maxsize: int = 1024,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cache: TTLCache[str, T] = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)

    def get(self, key: str) -> T | None:
        return self._cache.get(key)

    def set(self, key: str, value: T) -> None:
        self._cache[key] = value

    def pop(self, key: str) -> None:
        self._cache.pop(key, None)

    def clear(self) -> None:
        self._cache.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._cache

    def __len__(self) -> int:
        return len(self._cache)
