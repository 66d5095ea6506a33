"""Process-local TTL cache."""

import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol


class Cache(Protocol):
    """Key-value cache with per-entry expiry."""

    def get(self, key: str) -> object | None:
        """Return a live cached value, or None."""

    def set(self, key: str, value: object, ttl_seconds: float) -> None:
        """Store a value that expires after ttl_seconds."""


@dataclass
class InMemoryCache(Cache):
    """Bounded in-memory cache; the oldest entries are evicted first."""

    max_entries: int = 2048
    clock: Callable[[], float] = time.monotonic
    _entries: OrderedDict[str, tuple[float, object]] = field(
        default_factory=OrderedDict
    )

    def get(self, key: str) -> object | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self.clock() >= expires_at:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    def set(self, key: str, value: object, ttl_seconds: float) -> None:
        self._entries[key] = (self.clock() + ttl_seconds, value)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)
