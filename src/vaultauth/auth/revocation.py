"""Revocation store (blacklist) on top of the shared TTL store.

Learn: Two kinds of entries, both with a TTL so nothing is ever pruned
by hand:

- blacklist:<jti>          one token. TTL = the token's remaining lifetime,
                           so the entry disappears exactly when the token
                           would have stopped verifying anyway.
- revoked_session:<sid>    a whole login. TTL = refresh lifetime, the
                           longest any token of the session can live.

The gate checks both on every request, which is what makes logout and
"sign out this device" effective against access tokens that are still
within their exp.
"""

import hashlib
from typing import Any, Optional

import structlog

from vaultauth.auth.tokens import TokenVerifier, token_fingerprint
from vaultauth.config import Settings
from vaultauth.store.base import TTLStore

logger = structlog.get_logger()

BLACKLIST_PREFIX = "blacklist:"
SESSION_PREFIX = "revoked_session:"


class RevocationStore:
    """TTL-bounded record of invalidated tokens and sessions."""

    def __init__(self, store: TTLStore, settings: Settings):
        self.store = store
        self.settings = settings

    @staticmethod
    def _token_key(token_or_id: str, payload: Optional[dict[str, Any]]) -> str:
        """Blacklist key for a decoded JWT, or for a bare identifier (payload None)."""
        if payload is None:
            return f"{BLACKLIST_PREFIX}{token_or_id}"
        jti = payload.get("jti")
        if isinstance(jti, str) and jti:
            return f"{BLACKLIST_PREFIX}{jti}"
        digest = hashlib.sha256(token_or_id.encode()).hexdigest()
        return f"{BLACKLIST_PREFIX}sha256:{digest}"

    async def revoke(self, token_or_id: str, ttl: Optional[int] = None) -> bool:
        """Blacklist a token (or token id). Idempotent.

        Anything that does not decode as a JWT is treated as a bare
        identifier (a jti, say) and kept for the refresh lifetime unless
        ttl says otherwise. Returns False when there was nothing to do:
        the token is already expired.
        """
        payload = TokenVerifier.decode_unverified(token_or_id)
        key = self._token_key(token_or_id, payload)
        if ttl is None:
            if payload is not None:
                remaining = TokenVerifier.remaining_lifetime(token_or_id)
                if remaining <= 0:
                    return False
                ttl = remaining + self.settings.token_leeway_seconds
            else:
                ttl = self.settings.refresh_token_ttl
        if ttl <= 0:
            return False
        await self.store.set(key, "1", ttl)
        logger.info(
            "auth.token_revoked",
            token=token_fingerprint(token_or_id),
            ttl=ttl,
        )
        return True

    async def consume(self, token: str) -> bool:
        """Atomically blacklist a token that may be used only once.

        True for exactly one caller, even across instances sharing the
        store; every later (or concurrent) caller gets False.
        """
        payload = TokenVerifier.decode_unverified(token)
        remaining = TokenVerifier.remaining_lifetime(token)
        if payload is None or remaining <= 0:
            return False
        key = self._token_key(token, payload)
        ttl = remaining + self.settings.token_leeway_seconds
        count = await self.store.incr(key, ttl)
        if count != 1:
            logger.warning("auth.token_replayed", token=token_fingerprint(token))
            return False
        logger.info("auth.token_consumed", token=token_fingerprint(token))
        return True

    async def is_revoked(self, token_or_id: str) -> bool:
        payload = TokenVerifier.decode_unverified(token_or_id)
        return await self.store.exists(self._token_key(token_or_id, payload))

    async def revoke_session(self, session_id: str, ttl: Optional[int] = None) -> None:
        ttl = ttl if ttl is not None else self.settings.refresh_token_ttl
        await self.store.set(f"{SESSION_PREFIX}{session_id}", "1", ttl)
        logger.info("auth.session_revoked", session_id=session_id, ttl=ttl)

    async def is_session_revoked(self, session_id: str) -> bool:
        return await self.store.exists(f"{SESSION_PREFIX}{session_id}")
