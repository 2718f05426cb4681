"""Company API — company_admin (or system_admin) only.

Learn: A company admin can act on users of their own company and
nobody else. A user of another company gets the same 404 as a user that
does not exist, so the endpoint cannot be used to enumerate accounts.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from vaultauth.auth.core import AuthCore
from vaultauth.auth.dependencies import company_admin, get_auth_core
from vaultauth.auth.models import IdentityContext, Role
from vaultauth.schemas.auth import CamelModel, SessionsRevoked, UserRead

router = APIRouter(prefix="/company")


class CompanyContext(CamelModel):
    company_id: Optional[str] = None
    user: UserRead
    role: str


@router.get("/context", response_model=CompanyContext)
async def company_context(identity: IdentityContext = Depends(company_admin)):
    return CompanyContext(
        company_id=identity.principal.company_id,
        user=UserRead.from_principal(identity.principal),
        role=identity.role.value,
    )


@router.delete("/users/{user_id}/sessions", response_model=SessionsRevoked)
async def revoke_company_user_sessions(
    user_id: str,
    identity: IdentityContext = Depends(company_admin),
    core: AuthCore = Depends(get_auth_core),
):
    """Force-logout a user of the caller's company."""
    target = await core.directory.get_by_id(user_id)
    same_company = (
        target is not None
        and identity.principal.company_id is not None
        and target.company_id == identity.principal.company_id
    )
    if target is None or (identity.role != Role.SYSTEM_ADMIN and not same_company):
        raise HTTPException(status_code=404, detail="User not found")
    count = await core.service.revoke_all_for_principal(user_id)
    return SessionsRevoked(user_id=user_id, sessions_revoked=count)
