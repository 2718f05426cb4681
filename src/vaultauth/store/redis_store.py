"""Redis-backed TTL store: the shared store for multi-instance deployments.

Learn: Every key is namespaced under a prefix ("vaultauth:") so the
store can share a Redis database with other services. Redis expiry
(SETEX / EXPIRE) does all garbage collection; nothing here sweeps.

Any Redis error is re-raised as StoreUnavailableError so callers can
fail closed without knowing which backend they talk to.
"""

from __future__ import annotations

import functools
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from vaultauth.store.base import StoreUnavailableError


def _wrap_errors(fn):
    @functools.wraps(fn)
    async def wrapper(self, *args, **kwargs):
        try:
            return await fn(self, *args, **kwargs)
        except (RedisError, OSError) as e:
            raise StoreUnavailableError(f"redis {fn.__name__} failed: {e}") from e

    return wrapper


class RedisTTLStore:
    """TTLStore over redis.asyncio."""

    def __init__(self, client: aioredis.Redis, prefix: str = "vaultauth:"):
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(
        cls, url: str, prefix: str = "vaultauth:", timeout: float = 2.0
    ) -> "RedisTTLStore":
        client = aioredis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client, prefix=prefix)

    def _k(self, key: str) -> str:
        return f"{self.prefix}{key}"

    @_wrap_errors
    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(self._k(key))

    @_wrap_errors
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        await self.client.setex(self._k(key), ttl_seconds, value)

    @_wrap_errors
    async def delete(self, key: str) -> bool:
        return bool(await self.client.delete(self._k(key)))

    @_wrap_errors
    async def exists(self, key: str) -> bool:
        return bool(await self.client.exists(self._k(key)))

    @_wrap_errors
    async def incr(self, key: str, ttl_seconds: int) -> int:
        # One transaction: a counter must never be left without a TTL
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.incr(self._k(key))
            pipe.expire(self._k(key), ttl_seconds, nx=True)
            count, _ = await pipe.execute()
        return int(count)

    @_wrap_errors
    async def add_member(self, key: str, member: str, ttl_seconds: int) -> None:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.sadd(self._k(key), member)
            # GT: only ever extend the index lifetime
            pipe.expire(self._k(key), ttl_seconds, gt=True)
            pipe.expire(self._k(key), ttl_seconds, nx=True)
            await pipe.execute()

    @_wrap_errors
    async def remove_member(self, key: str, member: str) -> None:
        await self.client.srem(self._k(key), member)

    @_wrap_errors
    async def members(self, key: str) -> set[str]:
        return set(await self.client.smembers(self._k(key)))

    @_wrap_errors
    async def ping(self) -> bool:
        return bool(await self.client.ping())

    async def close(self) -> None:
        await self.client.aclose()
