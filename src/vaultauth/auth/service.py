"""Auth service — login, refresh rotation, logout, forced revocation.

Learn: This is the only place where the pieces meet in a fixed order:

    login:   directory → password check → issuer → session registry
    refresh: verifier(refresh) → session checks → principal → issuer
             → consume old refresh token → registry.rotate
    logout:  blacklist access token → revoke session(s)

A refresh token is single-use. The presented token is consumed atomically
before the new pair is handed out, so replaying it (or racing two
refreshes with it) yields exactly one new pair.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

import structlog

from vaultauth.auth import errors
from vaultauth.auth.directory import PrincipalDirectory
from vaultauth.auth.gate import bounded
from vaultauth.auth.models import (
    DeviceInfo,
    IdentityContext,
    Principal,
    TokenPair,
    TokenType,
)
from vaultauth.auth.password import verify_password
from vaultauth.auth.revocation import RevocationStore
from vaultauth.auth.sessions import SessionRegistry
from vaultauth.auth.tokens import TokenError, TokenIssuer, TokenVerifier, token_fingerprint
from vaultauth.config import Settings

logger = structlog.get_logger()

REFRESH_NOT_FOUND_MESSAGE = "Refresh token not found or expired"


@dataclass(frozen=True)
class AuthResult:
    principal: Principal
    tokens: TokenPair


class AuthService:
    def __init__(
        self,
        issuer: TokenIssuer,
        verifier: TokenVerifier,
        revocations: RevocationStore,
        sessions: SessionRegistry,
        directory: PrincipalDirectory,
        settings: Settings,
    ):
        self.issuer = issuer
        self.verifier = verifier
        self.revocations = revocations
        self.sessions = sessions
        self.directory = directory
        self.settings = settings

    async def _bounded(self, dependency: str, awaitable):
        return await bounded(
            dependency, awaitable, self.settings.dependency_timeout_seconds
        )

    # ─── Login ────────────────────────────────────────────

    async def login(
        self,
        email: str,
        password: str,
        device_info: Optional[DeviceInfo] = None,
    ) -> AuthResult:
        """Check credentials and open a new session.

        Raises InvalidCredentials with one message for unknown email,
        wrong password and deactivated account alike.
        """
        principal = await self._bounded(
            "principal_directory", self.directory.get_by_email(email)
        )
        password_hash = principal.password_hash if principal else None
        valid = await asyncio.to_thread(verify_password, password, password_hash)
        if principal is None or not valid or not principal.is_active:
            logger.info("auth.login_failed", email_known=principal is not None)
            raise errors.InvalidCredentials()

        pair = self.issuer.issue_token_pair(principal, device_info)
        await self._bounded(
            "session_registry", self.sessions.create(principal.id, pair, device_info)
        )
        logger.info(
            "auth.login",
            user_id=principal.id,
            session_id=pair.session_id,
            device_id=pair.device_id,
        )
        return AuthResult(principal=principal, tokens=pair)

    # ─── Refresh rotation ─────────────────────────────────

    async def refresh(
        self, refresh_token: str, device_info: Optional[DeviceInfo] = None
    ) -> AuthResult:
        """Exchange a refresh token for a new pair in the same session."""
        try:
            claims = self.verifier.verify(refresh_token, TokenType.REFRESH)
        except TokenError as e:
            raise errors.unauthorized(str(e), errors.INVALID_TOKEN) from e

        fp = token_fingerprint(refresh_token)
        sid = claims.session_id
        if await self._bounded(
            "revocation_store", self.revocations.is_revoked(refresh_token)
        ):
            logger.warning("auth.refresh_replayed", session_id=sid, token=fp)
            raise errors.unauthorized("Token has been revoked", errors.REVOKED)
        if await self._bounded(
            "revocation_store", self.revocations.is_session_revoked(sid)
        ):
            logger.info("auth.revoked_session_presented", session_id=sid, token=fp)
            raise errors.unauthorized("Token has been revoked", errors.REVOKED)
        record = await self._bounded("session_registry", self.sessions.get(sid))
        if record is None or record.get("user_id") != claims.sub:
            logger.info("auth.unknown_session", session_id=sid, token=fp)
            raise errors.unauthorized(
                REFRESH_NOT_FOUND_MESSAGE, errors.SESSION_NOT_FOUND
            )

        principal = await self._bounded(
            "principal_directory", self.directory.get_by_id(claims.sub)
        )
        if principal is None or not principal.is_active:
            logger.warning("auth.principal_not_found", user_id=claims.sub, token=fp)
            raise errors.unauthorized("Principal not found", errors.PRINCIPAL_NOT_FOUND)

        if not await self._bounded(
            "revocation_store", self.revocations.consume(refresh_token)
        ):
            raise errors.unauthorized("Token has been revoked", errors.REVOKED)

        pair = self.issuer.issue_token_pair(
            principal, device_info, session_id=sid, device_id=claims.device_id
        )
        await self._bounded("session_registry", self.sessions.rotate(sid, pair))
        logger.info(
            "auth.refreshed",
            user_id=principal.id,
            session_id=sid,
            revoke_previous_access=self.settings.revoke_access_on_refresh,
        )
        return AuthResult(principal=principal, tokens=pair)

    # ─── Logout / revocation ──────────────────────────────

    async def logout(self, identity: IdentityContext, all_devices: bool = False) -> int:
        """End the caller's session (or every session). Returns sessions revoked."""
        await self._bounded("revocation_store", self.revocations.revoke(identity.token))
        if all_devices:
            count = await self._bounded(
                "session_registry",
                self.sessions.revoke_all_sessions(identity.user_id),
            )
        else:
            revoked = await self._bounded(
                "session_registry",
                self.sessions.revoke_session(identity.user_id, identity.session_id),
            )
            count = int(revoked)
        logger.info(
            "auth.logout",
            user_id=identity.user_id,
            session_id=identity.session_id,
            all_devices=all_devices,
            sessions_revoked=count,
        )
        return count

    async def revoke_all_for_principal(self, principal_id: str) -> int:
        """Forced revocation (password change, admin action)."""
        count = await self._bounded(
            "session_registry", self.sessions.revoke_all_sessions(principal_id)
        )
        logger.info("auth.forced_revocation", user_id=principal_id, count=count)
        return count
