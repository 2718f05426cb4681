"""Health check endpoint.

Learn: Reports whether the shared TTL store answers (without it every
authenticated request is rejected) and which signing mode is active, so
a shared-secret deployment is visible from the outside.
"""

import asyncio

from fastapi import APIRouter, Depends

from vaultauth import __version__
from vaultauth.auth.core import AuthCore
from vaultauth.auth.dependencies import get_auth_core
from vaultauth.store.base import StoreUnavailableError

router = APIRouter()


@router.get("/health")
async def health_check(core: AuthCore = Depends(get_auth_core)):
    checks = {"server": "ok", "version": __version__, "key_mode": core.key_mode}

    try:
        await asyncio.wait_for(
            core.store.ping(), timeout=core.settings.dependency_timeout_seconds
        )
        checks["ttl_store"] = "ok"
    except (asyncio.TimeoutError, StoreUnavailableError) as e:
        checks["ttl_store"] = f"error: {str(e) or 'timeout'}"

    status = "healthy" if checks["ttl_store"] == "ok" else "degraded"
    return {"status": status, **checks}
