"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Role requirements that hold for a whole router are applied at
include_router level, so no admin handler can forget its check. Health
and the auth router are open at router level; the auth routes that need
an identity declare it themselves.
"""

from fastapi import APIRouter, Depends

from vaultauth.api.admin import router as admin_router
from vaultauth.api.auth import router as auth_router
from vaultauth.api.company import router as company_router
from vaultauth.api.health import router as health_router
from vaultauth.auth.dependencies import admin_only

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])
api_router.include_router(company_router, tags=["company"])
api_router.include_router(
    admin_router, tags=["admin"], dependencies=[Depends(admin_only)]
)
