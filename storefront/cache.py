"""Small TTL cache, constructed per process or per test (no module singleton)."""

from __future__ import annotations

import time
from typing import Any, Callable


class TTLCache:
    def __init__(self, default_ttl: float, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        self._entries[key] = (self._clock() + (ttl if ttl is not None else self.default_ttl), value)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
