"""Principal directory — read-only user lookups for the auth core.

Learn: The gate and the login flow only need two lookups: by id (the
token's sub) and by email (login). SqlPrincipalDirectory reads the users
table; MemoryPrincipalDirectory backs local development and tests.

Database errors surface as StoreUnavailableError so the gate can treat
them as dependency faults (fail closed) rather than as "user not found".
"""

import uuid
from typing import Optional, Protocol

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vaultauth.auth.models import Principal, Role
from vaultauth.db.models import User
from vaultauth.store.base import StoreUnavailableError

logger = structlog.get_logger()


class PrincipalDirectory(Protocol):
    async def get_by_id(self, principal_id: str) -> Optional[Principal]: ...

    async def get_by_email(self, email: str) -> Optional[Principal]: ...


class MemoryPrincipalDirectory:
    """Dict-backed directory for development and tests."""

    def __init__(self, principals: Optional[list[Principal]] = None):
        self._by_id: dict[str, Principal] = {}
        for p in principals or []:
            self.add(p)

    def add(self, principal: Principal) -> Principal:
        self._by_id[principal.id] = principal
        return principal

    def remove(self, principal_id: str) -> None:
        self._by_id.pop(principal_id, None)

    async def get_by_id(self, principal_id: str) -> Optional[Principal]:
        return self._by_id.get(principal_id)

    async def get_by_email(self, email: str) -> Optional[Principal]:
        wanted = email.strip().lower()
        for p in self._by_id.values():
            if p.email.lower() == wanted:
                return p
        return None


class SqlPrincipalDirectory:
    """Looks principals up in the users table (soft-deleted rows excluded)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_by_id(self, principal_id: str) -> Optional[Principal]:
        try:
            uid = uuid.UUID(principal_id)
        except ValueError:
            return None
        return await self._first(select(User).where(User.id == uid))

    async def get_by_email(self, email: str) -> Optional[Principal]:
        q = select(User).where(func.lower(User.email) == email.strip().lower())
        return await self._first(q)

    async def _first(self, query) -> Optional[Principal]:
        query = query.where(User.deleted_at.is_(None))
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                user = result.scalars().first()
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(f"principal lookup failed: {e}") from e
        return _to_principal(user) if user else None


def _to_principal(user: User) -> Optional[Principal]:
    try:
        role = Role(user.role)
    except ValueError:
        logger.warning("directory.unknown_role", user_id=str(user.id), role=user.role)
        return None
    return Principal(
        id=str(user.id),
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        role=role,
        company_id=str(user.company_id) if user.company_id else None,
        is_active=user.is_active,
        password_hash=user.password_hash,
    )
