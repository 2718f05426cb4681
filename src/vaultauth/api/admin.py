"""Admin API — system_admin only.

Learn: The whole router sits behind admin_only (applied in
api/__init__.py), so handlers take the identity only when they need it.
"""

from fastapi import APIRouter, Depends, HTTPException

from vaultauth.auth.core import AuthCore
from vaultauth.auth.dependencies import get_auth_core
from vaultauth.schemas.auth import SessionList, SessionRead, SessionsRevoked

router = APIRouter(prefix="/admin")


async def _require_user(core: AuthCore, user_id: str) -> None:
    if await core.directory.get_by_id(user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")


@router.get("/users/{user_id}/sessions", response_model=SessionList)
async def list_user_sessions(user_id: str, core: AuthCore = Depends(get_auth_core)):
    await _require_user(core, user_id)
    sessions = await core.sessions.list_sessions(user_id)
    return SessionList(sessions=[SessionRead.from_info(s) for s in sessions])


@router.delete("/users/{user_id}/sessions", response_model=SessionsRevoked)
async def revoke_user_sessions(user_id: str, core: AuthCore = Depends(get_auth_core)):
    """Force-logout a user everywhere."""
    await _require_user(core, user_id)
    count = await core.service.revoke_all_for_principal(user_id)
    return SessionsRevoked(user_id=user_id, sessions_revoked=count)
