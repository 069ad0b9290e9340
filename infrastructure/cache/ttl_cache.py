from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def association_cache_key(
    tenant_id: str,
    entity_type: str,
    entity_id: str,
    suffix: Optional[str] = None,
) -> str:
    key = f"{tenant_id}:{entity_type}:{entity_id}"
    return f"{key}:{suffix}" if suffix else key


class AssociationCache(ABC):
    """Key/value cache placed in front of association queries.

    ``generation`` moves on every ``clear`` so a reader can tell that an
    invalidation happened while its result was being computed.
    """

    generation: int = 0

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    async def clear(self, key: Optional[str] = None) -> None:
        ...


@dataclass
class _Entry:
    value: Any
    timestamp: float


class InMemoryTTLCache(AssociationCache):
    """Process-local cache with a fixed TTL and a size ceiling.

    Expiry is checked on read. A stale entry is reported as a miss and its
    removal is scheduled on the event loop rather than done inside ``get``.
    When full, ``set`` drops the entry with the oldest timestamp.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 50,
        clock: Clock = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.timestamp <= self.ttl_seconds:
            return entry.value

        asyncio.get_running_loop().call_soon(self._evict_stale, key, entry.timestamp)
        return None

    async def set(self, key: str, value: Any) -> None:
        if key not in self._entries and len(self._entries) >= self.max_entries:
            oldest = min(self._entries, key=lambda existing: self._entries[existing].timestamp)
            del self._entries[oldest]
            logger.debug("Evicted oldest cache entry %s", oldest)
        self._entries[key] = _Entry(value=value, timestamp=self._clock())

    async def clear(self, key: Optional[str] = None) -> None:
        self.generation += 1
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def _evict_stale(self, key: str, timestamp: float) -> None:
        entry = self._entries.get(key)
        # A newer set() for the same key must survive.
        if entry is not None and entry.timestamp == timestamp:
            del self._entries[key]
