"""In-process TTL store for local development and tests.

Learn: Entries carry an absolute expiry. Reads treat expired entries
as absent, so correctness never depends on the sweep running; sweep()
only bounds memory. All mutation happens under one asyncio.Lock, which
is enough because every caller lives on the same event loop.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional, Union

import structlog

logger = structlog.get_logger()

_Value = Union[str, set[str]]


class MemoryTTLStore:
    """Dict-backed TTLStore. Not shared between processes."""

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: float = 60.0,
    ):
        self._clock = clock
        self._data: dict[str, tuple[_Value, float]] = {}
        self._lock = asyncio.Lock()
        self._sweep_interval = sweep_interval
        self._last_sweep = clock()

    # ─── Internal helpers (caller holds the lock) ─────────

    def _live(self, key: str) -> Optional[_Value]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            del self._data[key]
            return None
        return value

    def _maybe_sweep(self) -> None:
        now = self._clock()
        if now - self._last_sweep >= self._sweep_interval:
            self._sweep_unlocked(now)

    def _sweep_unlocked(self, now: float) -> int:
        expired = [k for k, (_, exp) in self._data.items() if exp <= now]
        for key in expired:
            del self._data[key]
        self._last_sweep = now
        return len(expired)

    # ─── TTLStore protocol ────────────────────────────────

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            value = self._live(key)
            return value if isinstance(value, str) else None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        async with self._lock:
            self._maybe_sweep()
            self._data[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            existed = self._live(key) is not None
            self._data.pop(key, None)
            return existed

    async def exists(self, key: str) -> bool:
        async with self._lock:
            return self._live(key) is not None

    async def incr(self, key: str, ttl_seconds: int) -> int:
        async with self._lock:
            current = self._live(key)
            if isinstance(current, str):
                count = int(current) + 1
                _, expires_at = self._data[key]
            else:
                count = 1
                expires_at = self._clock() + ttl_seconds
            self._data[key] = (str(count), expires_at)
            return count

    async def add_member(self, key: str, member: str, ttl_seconds: int) -> None:
        async with self._lock:
            self._maybe_sweep()
            current = self._live(key)
            members = set(current) if isinstance(current, set) else set()
            members.add(member)
            expires_at = self._clock() + ttl_seconds
            if key in self._data:
                # Never shorten an index: it must outlive every member
                expires_at = max(expires_at, self._data[key][1])
            self._data[key] = (members, expires_at)

    async def remove_member(self, key: str, member: str) -> None:
        async with self._lock:
            current = self._live(key)
            if isinstance(current, set):
                current.discard(member)
                if not current:
                    del self._data[key]

    async def members(self, key: str) -> set[str]:
        async with self._lock:
            current = self._live(key)
            return set(current) if isinstance(current, set) else set()

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        async with self._lock:
            self._data.clear()

    # ─── Maintenance ──────────────────────────────────────

    async def sweep(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        async with self._lock:
            removed = self._sweep_unlocked(self._clock())
        if removed:
            logger.debug("ttl_store.swept", removed=removed)
        return removed

    def __len__(self) -> int:
        return len(self._data)
