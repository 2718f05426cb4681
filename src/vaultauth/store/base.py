"""TTL key-value store contract.

Learn: The blacklist, the session registry, CSRF tokens and the rate
limiter all share one abstraction: string keys with a time-to-live.
Redis is the production backend. The in-process MemoryTTLStore sits
behind the same protocol for local development and tests only. It
cannot see revocations made by another server instance.
"""

from __future__ import annotations

from typing import Optional, Protocol


class StoreUnavailableError(Exception):
    """Raised when the backing store cannot be reached or times out."""


class TTLStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def exists(self, key: str) -> bool: ...

    async def incr(self, key: str, ttl_seconds: int) -> int: ...

    async def add_member(self, key: str, member: str, ttl_seconds: int) -> None: ...

    async def remove_member(self, key: str, member: str) -> None: ...

    async def members(self, key: str) -> set[str]: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...
