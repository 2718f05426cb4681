"""Session registry — one record per login (principal + device).

Learn: A session has no row of its own in the database. It lives in the
TTL store for exactly as long as its refresh token can:

    session:<sid>            JSON record (device, created, expiry, current
                             access jti). Written only by create and rotate.
    session_seen:<sid>       last_seen_at + client IP. Written by touch, so
                             per-request bookkeeping on one instance can never
                             overwrite a rotation made on another.
    user_sessions:<uid>      set of the user's session ids (the index)

Revoking a session writes the revoked_session flag FIRST and only then
deletes the record, so every request that starts after revoke returns
is rejected by the gate even if its access token has not expired.
"""

import asyncio
import json
import weakref
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from vaultauth.auth.models import DeviceInfo, SessionInfo, TokenPair
from vaultauth.auth.revocation import RevocationStore
from vaultauth.store.base import TTLStore

logger = structlog.get_logger()

SESSION_PREFIX = "session:"
SEEN_PREFIX = "session_seen:"
USER_INDEX_PREFIX = "user_sessions:"


def _parse_dt(value: str) -> datetime:
    return datetime.fromisoformat(value)


class SessionRegistry:
    """Tracks, lists and revokes a principal's active sessions."""

    def __init__(self, store: TTLStore, revocations: RevocationStore):
        self.store = store
        self.revocations = revocations
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    def _remaining(self, record: dict[str, Any]) -> int:
        expires_at = _parse_dt(record["expires_at"])
        return max(0, int((expires_at - self._now()).total_seconds()))

    async def _write(self, record: dict[str, Any]) -> None:
        ttl = self._remaining(record)
        if ttl > 0:
            await self.store.set(
                f"{SESSION_PREFIX}{record['session_id']}", json.dumps(record), ttl
            )

    # ─── Lifecycle ────────────────────────────────────────

    async def create(
        self,
        principal_id: str,
        pair: TokenPair,
        device_info: Optional[DeviceInfo] = None,
    ) -> SessionInfo:
        """Register the session minted with `pair`."""
        now = self._now().isoformat()
        device = device_info or DeviceInfo()
        record = {
            "session_id": pair.session_id,
            "user_id": principal_id,
            "device_id": pair.device_id,
            "device_name": device.name,
            "device_type": device.type,
            "user_agent": device.user_agent,
            "ip_address": device.ip,
            "created_at": now,
            "last_seen_at": now,
            "expires_at": pair.refresh_expires_at.isoformat(),
            "access_jti": pair.access_jti,
        }
        async with self._lock_for(pair.session_id):
            await self._write(record)
            await self.store.add_member(
                f"{USER_INDEX_PREFIX}{principal_id}", pair.session_id, pair.refresh_ttl
            )
        logger.info(
            "session.created",
            user_id=principal_id,
            session_id=pair.session_id,
            device_id=pair.device_id,
        )
        return self._to_info(record)

    async def _record(self, session_id: str) -> Optional[dict[str, Any]]:
        raw = await self.store.get(f"{SESSION_PREFIX}{session_id}")
        return json.loads(raw) if raw else None

    async def _write_seen(
        self, record: dict[str, Any], ip_address: Optional[str] = None
    ) -> None:
        ttl = self._remaining(record)
        if ttl > 0:
            seen = {"last_seen_at": self._now().isoformat(), "ip_address": ip_address}
            await self.store.set(
                f"{SEEN_PREFIX}{record['session_id']}", json.dumps(seen), ttl
            )

    async def get(self, session_id: str) -> Optional[dict[str, Any]]:
        """Session record merged with its latest last-seen entry."""
        record = await self._record(session_id)
        if record is None:
            return None
        raw = await self.store.get(f"{SEEN_PREFIX}{session_id}")
        if raw:
            seen = json.loads(raw)
            record["last_seen_at"] = seen["last_seen_at"]
            if seen.get("ip_address"):
                record["ip_address"] = seen["ip_address"]
        return record

    async def touch(self, session_id: str, ip_address: Optional[str] = None) -> None:
        """Bump last_seen_at (and the client IP when known).

        Never rewrites the session record itself.
        """
        record = await self._record(session_id)
        if record is None or await self.revocations.is_session_revoked(session_id):
            return
        await self._write_seen(record, ip_address)

    async def rotate(self, session_id: str, pair: TokenPair) -> None:
        """Record a refresh rotation: new expiry and current access jti."""
        async with self._lock_for(session_id):
            record = await self._record(session_id)
            if record is None or await self.revocations.is_session_revoked(session_id):
                return
            record["expires_at"] = pair.refresh_expires_at.isoformat()
            record["access_jti"] = pair.access_jti
            await self._write(record)
            await self._write_seen(record)
            await self.store.add_member(
                f"{USER_INDEX_PREFIX}{record['user_id']}", session_id, pair.refresh_ttl
            )

    async def current_access_jti(self, session_id: str) -> Optional[str]:
        record = await self.get(session_id)
        return record.get("access_jti") if record else None

    # ─── Listing ──────────────────────────────────────────

    async def list_sessions(
        self, principal_id: str, current_session_id: Optional[str] = None
    ) -> list[SessionInfo]:
        """Active sessions, most recently seen first."""
        index_key = f"{USER_INDEX_PREFIX}{principal_id}"
        sessions: list[SessionInfo] = []
        for sid in await self.store.members(index_key):
            record = await self.get(sid)
            if record is None or record.get("user_id") != principal_id:
                await self.store.remove_member(index_key, sid)
                continue
            sessions.append(self._to_info(record, current_session_id))
        sessions.sort(key=lambda s: s.last_seen_at, reverse=True)
        return sessions

    async def session_stats(self, principal_id: str) -> dict[str, Any]:
        sessions = await self.list_sessions(principal_id)
        breakdown: dict[str, int] = {}
        for s in sessions:
            kind = s.device_type or "unknown"
            breakdown[kind] = breakdown.get(kind, 0) + 1
        return {
            "total_sessions": len(sessions),
            "device_breakdown": breakdown,
            "last_seen_at": sessions[0].last_seen_at if sessions else None,
        }

    # ─── Revocation ───────────────────────────────────────

    async def revoke_session(self, principal_id: str, session_id: str) -> bool:
        """Revoke one of the principal's sessions. False if not theirs."""
        index_key = f"{USER_INDEX_PREFIX}{principal_id}"
        async with self._lock_for(session_id):
            record = await self.get(session_id)
            if record is not None:
                if record.get("user_id") != principal_id:
                    return False
                ttl = self._remaining(record) or None
            elif session_id in await self.store.members(index_key):
                ttl = None
            else:
                return False

            await self.revocations.revoke_session(session_id, ttl)
            await self.store.delete(f"{SESSION_PREFIX}{session_id}")
            await self.store.delete(f"{SEEN_PREFIX}{session_id}")
            await self.store.remove_member(index_key, session_id)
        return True

    async def revoke_all_sessions(
        self, principal_id: str, except_session_id: Optional[str] = None
    ) -> int:
        """Revoke every session of the principal. Returns how many."""
        revoked = 0
        index_key = f"{USER_INDEX_PREFIX}{principal_id}"
        for sid in await self.store.members(index_key):
            if sid == except_session_id:
                continue
            if await self.revoke_session(principal_id, sid):
                revoked += 1
        logger.info(
            "session.revoked_all",
            user_id=principal_id,
            count=revoked,
            kept=except_session_id,
        )
        return revoked

    # ─── Helpers ──────────────────────────────────────────

    @staticmethod
    def _to_info(
        record: dict[str, Any], current_session_id: Optional[str] = None
    ) -> SessionInfo:
        return SessionInfo(
            session_id=record["session_id"],
            user_id=record["user_id"],
            device_id=record["device_id"],
            created_at=_parse_dt(record["created_at"]),
            last_seen_at=_parse_dt(record["last_seen_at"]),
            expires_at=_parse_dt(record["expires_at"]),
            device_name=record.get("device_name"),
            device_type=record.get("device_type"),
            user_agent=record.get("user_agent"),
            ip_address=record.get("ip_address"),
            is_current=record["session_id"] == current_session_id,
        )
