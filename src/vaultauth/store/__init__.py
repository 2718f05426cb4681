"""Shared TTL key-value store (Redis in production, memory for dev/tests)."""

import structlog

from vaultauth.config import Settings
from vaultauth.store.base import StoreUnavailableError, TTLStore
from vaultauth.store.memory import MemoryTTLStore
from vaultauth.store.redis_store import RedisTTLStore

logger = structlog.get_logger()

__all__ = [
    "MemoryTTLStore",
    "RedisTTLStore",
    "StoreUnavailableError",
    "TTLStore",
    "create_ttl_store",
]


def create_ttl_store(settings: Settings) -> TTLStore:
    """Build the configured TTL store (not yet connected for Redis)."""
    if settings.ttl_store == "memory":
        logger.warning(
            "ttl_store.memory_mode",
            detail="revocations and CSRF tokens are local to this process",
        )
        return MemoryTTLStore()
    return RedisTTLStore.from_url(
        settings.redis_url, timeout=settings.dependency_timeout_seconds
    )
