"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to run the
authorization gate for the request and hand the handler an
IdentityContext. The gate itself lives on app.state (built in the
lifespan), so tests can swap the whole core by building their own app.

    @router.get("/company/context")
    async def ctx(identity: IdentityContext = Depends(company_admin)): ...

The gate runs inside the request task: if the client disconnects or the
request is cancelled, the pending store lookups are cancelled with it and
no decision is produced.
"""

from typing import Callable, Optional

from fastapi import Depends, Header, Request

from vaultauth.auth.core import AuthCore
from vaultauth.auth.gate import (
    ADMIN_ONLY,
    COMPANY_ADMIN,
    Requirement,
)
from vaultauth.auth.models import IdentityContext


def get_auth_core(request: Request) -> AuthCore:
    return request.app.state.auth


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


async def get_current_identity(
    request: Request,
    authorization: Optional[str] = Header(None),
    core: AuthCore = Depends(get_auth_core),
) -> IdentityContext:
    """Admit any authenticated principal (401 otherwise)."""
    identity = await core.gate.authenticate(authorization, client_ip(request))
    request.state.identity = identity
    return identity


def require(requirement: Requirement) -> Callable:
    """Dependency factory: authenticate, then check `requirement` (403)."""

    async def _check(
        identity: IdentityContext = Depends(get_current_identity),
        core: AuthCore = Depends(get_auth_core),
    ) -> IdentityContext:
        return core.gate.authorize(identity, requirement)

    return _check


admin_only = require(ADMIN_ONLY)
company_admin = require(COMPANY_ADMIN)
