"""Authorization gate — the per-request admit/reject decision.

Learn: authenticate() runs a fixed sequence and stops at the first
failure; nothing is retried:

    1. Authorization: Bearer <token> present?        → 401 missing credentials
    2. token (jti) on the blacklist?                   → 401 revoked
    3. signature/iss/aud/exp/type valid for "access"?  → 401 invalid or expired
       session revoked / gone / superseded?            → 401 revoked
    4. principal behind `sub` still exists + active?   → 401 principal not found
    5. → IdentityContext(principal, session_id, device_id)

authorize() then checks a Requirement against the resolved identity and
fails with 403, never 401.

Every store/directory round trip is bounded by dependency_timeout_seconds.
A timeout or store outage rejects the request (fail closed) and is logged
as a dependency fault, separate from security rejections.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Optional, TypeVar, Union

import structlog

from vaultauth.auth import errors
from vaultauth.auth.directory import PrincipalDirectory
from vaultauth.auth.errors import AuthError
from vaultauth.auth.models import IdentityContext, Role, TokenType
from vaultauth.auth.revocation import RevocationStore
from vaultauth.auth.sessions import SessionRegistry
from vaultauth.auth.tokens import (
    INVALID_TOKEN_MESSAGE,
    TokenError,
    TokenVerifier,
    token_fingerprint,
)
from vaultauth.config import Settings
from vaultauth.store.base import StoreUnavailableError

logger = structlog.get_logger()

T = TypeVar("T")


# ─── Requirements ────────────────────────────────────────


@dataclass(frozen=True)
class AnyAuthenticated:
    """Any admitted identity passes."""


@dataclass(frozen=True)
class RoleIn:
    """Identity's role must be one of `roles`."""

    roles: frozenset[Role]
    message: str = "Insufficient permissions"


Requirement = Union[AnyAuthenticated, RoleIn]

ADMIN_ONLY = RoleIn(frozenset({Role.SYSTEM_ADMIN}), "Admin access required")
COMPANY_ADMIN = RoleIn(
    frozenset({Role.COMPANY_ADMIN, Role.SYSTEM_ADMIN}),
    "Company admin access required",
)


def company_role(*roles: Role) -> RoleIn:
    """RoleIn for the given roles (company_admin + system_admin if none)."""
    if not roles:
        return COMPANY_ADMIN
    return RoleIn(frozenset(roles))


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    """Token from an `Authorization: Bearer <token>` header, else None."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        return None
    return token


async def bounded(dependency: str, awaitable: Awaitable[T], timeout: float) -> T:
    """Await a store/directory call; timeouts and outages become a 401."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except (asyncio.TimeoutError, StoreUnavailableError) as e:
        logger.error(
            "auth.dependency_fault",
            dependency=dependency,
            error=str(e) or type(e).__name__,
        )
        raise errors.unauthorized(
            INVALID_TOKEN_MESSAGE, errors.DEPENDENCY_UNAVAILABLE
        ) from e


# ─── Gate ────────────────────────────────────────────────


class AuthorizationGate:
    """Combines verifier + revocation + sessions + directory per request."""

    def __init__(
        self,
        verifier: TokenVerifier,
        revocations: RevocationStore,
        sessions: SessionRegistry,
        directory: PrincipalDirectory,
        settings: Settings,
    ):
        self.verifier = verifier
        self.revocations = revocations
        self.sessions = sessions
        self.directory = directory
        self.settings = settings

    async def _bounded(self, dependency: str, awaitable: Awaitable[T]) -> T:
        return await bounded(
            dependency, awaitable, self.settings.dependency_timeout_seconds
        )

    async def authenticate(
        self, authorization: Optional[str], client_ip: Optional[str] = None
    ) -> IdentityContext:
        # 1. Credentials present and well-formed
        token = extract_bearer(authorization)
        if token is None:
            logger.debug("auth.missing_credentials")
            raise errors.unauthorized(
                "Missing or invalid authorization header", errors.MISSING_CREDENTIALS
            )
        fp = token_fingerprint(token)

        # 2. Blacklist (garbage misses here and fails step 3)
        if await self._bounded(
            "revocation_store", self.revocations.is_revoked(token)
        ):
            logger.info("auth.revoked_token_presented", token=fp)
            raise errors.unauthorized("Token has been revoked", errors.REVOKED)

        # 3. Cryptographic + claim checks
        try:
            claims = self.verifier.verify(token, TokenType.ACCESS)
        except TokenError as e:
            raise errors.unauthorized(str(e), errors.INVALID_TOKEN) from e

        # 3b. Session-level revocation
        sid = claims.session_id
        if await self._bounded(
            "revocation_store", self.revocations.is_session_revoked(sid)
        ):
            logger.info("auth.revoked_session_presented", session_id=sid, token=fp)
            raise errors.unauthorized("Token has been revoked", errors.REVOKED)
        record = await self._bounded("session_registry", self.sessions.get(sid))
        if record is None or record.get("user_id") != claims.sub:
            logger.info("auth.unknown_session", session_id=sid, token=fp)
            raise errors.unauthorized(INVALID_TOKEN_MESSAGE, errors.SESSION_NOT_FOUND)
        if (
            self.settings.revoke_access_on_refresh
            and record.get("access_jti")
            and record["access_jti"] != claims.jti
        ):
            logger.info("auth.superseded_access_token", session_id=sid, token=fp)
            raise errors.unauthorized("Token has been revoked", errors.REVOKED)

        # 4. Principal still exists
        principal = await self._bounded(
            "principal_directory", self.directory.get_by_id(claims.sub)
        )
        if principal is None or not principal.is_active:
            logger.warning("auth.principal_not_found", user_id=claims.sub, token=fp)
            raise errors.unauthorized("Principal not found", errors.PRINCIPAL_NOT_FOUND)

        # 5. Admitted. Last-seen bookkeeping must not decide the outcome.
        try:
            await asyncio.wait_for(
                self.sessions.touch(sid, client_ip),
                timeout=self.settings.dependency_timeout_seconds,
            )
        except (asyncio.TimeoutError, StoreUnavailableError) as e:
            logger.warning("session.touch_failed", session_id=sid, error=str(e))

        return IdentityContext(
            principal=principal,
            session_id=sid,
            device_id=claims.device_id,
            claims=claims,
            token=token,
        )

    def authorize(
        self, identity: IdentityContext, requirement: Requirement
    ) -> IdentityContext:
        if isinstance(requirement, RoleIn) and identity.role not in requirement.roles:
            logger.info(
                "auth.forbidden",
                user_id=identity.user_id,
                role=identity.role.value,
                required=sorted(r.value for r in requirement.roles),
            )
            raise errors.forbidden(requirement.message, errors.INSUFFICIENT_ROLE)
        return identity

    async def admit(
        self,
        authorization: Optional[str],
        requirement: Requirement = AnyAuthenticated(),
        client_ip: Optional[str] = None,
    ) -> IdentityContext:
        identity = await self.authenticate(authorization, client_ip)
        return self.authorize(identity, requirement)


__all__ = [
    "ADMIN_ONLY",
    "COMPANY_ADMIN",
    "AnyAuthenticated",
    "AuthError",
    "AuthorizationGate",
    "Requirement",
    "RoleIn",
    "bounded",
    "company_role",
    "extract_bearer",
]
