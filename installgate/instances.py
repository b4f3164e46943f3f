"""Bounded TTL/LRU cache of live execution contexts keyed by install id."""
from __future__ import annotations

import logging
import time
from typing import Callable, Generic, TypeVar

from cachetools import TTLCache

logger = logging.getLogger(__name__)

T = TypeVar("T")

INSTANCE_CACHE_SIZE = 100
INSTANCE_CACHE_TTL_SECONDS = 60 * 60


class InstanceCache(Generic[T]):
    """LRU eviction over ``maxsize`` entries, each expiring ``ttl`` seconds after last access.

    Eviction only affects future lookups: requests already holding an
    instance keep using it.
    """

    def __init__(
        self,
        maxsize: int = INSTANCE_CACHE_SIZE,
        ttl: float = INSTANCE_CACHE_TTL_SECONDS,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cache: TTLCache[str, T] = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, install_id: object) -> bool:
        return install_id in self._cache

    def get(self, install_id: str) -> T | None:
        instance = self._cache.get(install_id)
        if instance is not None:
            # Re-inserting restarts the entry's TTL
            self._cache[install_id] = instance
        return instance

    def set(self, install_id: str, instance: T) -> None:
        self._cache[install_id] = instance

    def delete(self, install_id: str) -> None:
        if self._cache.pop(install_id, None) is not None:
            logger.debug("Invalidated cached instance for install %s", install_id)

    def clear(self) -> None:
        self._cache.clear()


__all__ = ["InstanceCache", "INSTANCE_CACHE_SIZE", "INSTANCE_CACHE_TTL_SECONDS"]
