"""CSRF tokens for cookie-authenticated browser sessions.

Learn: Bearer-token clients are immune to CSRF (a cross-site form cannot
set the Authorization header), so only cookie-carried sessions need this.
Each session has at most one outstanding token under csrf:<sid>; issuing
a new one replaces the old. Tokens expire after csrf_token_expire_minutes
and, by default, are consumed by a successful validation.
"""

import secrets
from typing import Optional

import structlog

from vaultauth.config import Settings
from vaultauth.store.base import TTLStore

logger = structlog.get_logger()

CSRF_PREFIX = "csrf:"


class CsrfCoordinator:
    def __init__(self, store: TTLStore, settings: Settings):
        self.store = store
        self.settings = settings

    async def issue(self, session_id: str) -> str:
        token = secrets.token_hex(32)
        await self.store.set(
            f"{CSRF_PREFIX}{session_id}", token, self.settings.csrf_token_ttl
        )
        logger.debug("csrf.issued", session_id=session_id)
        return token

    async def validate(self, session_id: str, presented: Optional[str]) -> bool:
        """True only for the session's current, unexpired token.

        A wrong token never consumes the stored one.
        """
        if not presented:
            return False
        key = f"{CSRF_PREFIX}{session_id}"
        stored = await self.store.get(key)
        if stored is None:
            logger.info("csrf.missing_or_expired", session_id=session_id)
            return False
        if not secrets.compare_digest(stored.encode(), presented.encode()):
            logger.info("csrf.mismatch", session_id=session_id)
            return False
        if self.settings.csrf_single_use:
            # Concurrent requests with the same token: only the one that
            # actually deletes it wins
            if not await self.store.delete(key):
                logger.info("csrf.replayed", session_id=session_id)
                return False
        return True
