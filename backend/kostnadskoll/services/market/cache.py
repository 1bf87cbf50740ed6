"""Process-local TTL cache for market statistics plus the in-flight lookup registry.

Expired entries are dropped when read and by ``sweep()``; there is no
background timer. The clock is injectable so tests can move time.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional


@dataclass
class _Entry:
    value: Any
    expires_at: float


class MarketStatsCache:
    def __init__(self, ttl_seconds: float = 24 * 3600, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._pending: dict[str, asyncio.Future] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else float(ttl_seconds)
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl)

    def sweep(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        self._pending.clear()

    # ─── in-flight lookups ────────────────────────────

    def get_pending(self, key: str) -> Optional[asyncio.Future]:
        return self._pending.get(key)

    def register_pending(self, key: str, future: asyncio.Future) -> None:
        self._pending[key] = future

    def clear_pending(self, key: str, future: Optional[asyncio.Future] = None) -> None:
        if future is None or self._pending.get(key) is future:
            self._pending.pop(key, None)
