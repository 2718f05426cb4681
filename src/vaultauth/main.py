"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. The lifespan builds the auth core (keys, TTL store, principal
directory, gate, services) and parks it on app.state.auth; shutdown
closes what it opened.

Passing a ready AuthCore to create_app() skips that wiring, which is
how tests run the real middleware and routes against in-memory stores.
"""

from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from vaultauth import __version__
from vaultauth.api import api_router
from vaultauth.auth.core import AuthCore
from vaultauth.auth.directory import MemoryPrincipalDirectory, SqlPrincipalDirectory
from vaultauth.auth.errors import AuthError
from vaultauth.auth.keys import build_signing_keys
from vaultauth.config import Settings
from vaultauth.config import settings as default_settings
from vaultauth.db.engine import build_engine, build_session_factory
from vaultauth.middleware.csrf import CSRFMiddleware
from vaultauth.middleware.rate_limit import RateLimitMiddleware
from vaultauth.middleware.request_id import RequestIdMiddleware
from vaultauth.middleware.security import SecurityHeadersMiddleware
from vaultauth.store import create_ttl_store
from vaultauth.store.base import StoreUnavailableError

logger = structlog.get_logger()


def _error_body(status_code: int, message: str) -> dict:
    return {
        "error": HTTPStatus(status_code).phrase,
        "message": message,
        "statusCode": status_code,
    }


def build_core(settings: Settings):
    """Wire the auth core from settings. Returns (core, engine or None)."""
    keys = build_signing_keys(settings)
    store = create_ttl_store(settings)
    engine = None
    if settings.principal_directory == "memory":
        logger.warning("directory.memory_mode", detail="no users until seeded")
        directory = MemoryPrincipalDirectory()
    else:
        engine = build_engine(settings.database_url, echo=settings.debug)
        directory = SqlPrincipalDirectory(build_session_factory(engine))
    return AuthCore.build(settings, keys, store, directory), engine


def create_app(
    settings: Optional[Settings] = None, core: Optional[AuthCore] = None
) -> FastAPI:
    """Build and return the FastAPI application."""
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "vaultauth.starting",
            version=__version__,
            environment=settings.environment,
            port=settings.port,
        )
        engine = None
        owned = getattr(app.state, "auth", None) is None
        if owned:
            app.state.auth, engine = build_core(settings)
        logger.info(
            "vaultauth.ready",
            key_mode=app.state.auth.key_mode,
            ttl_store=type(app.state.auth.store).__name__,
        )

        yield

        logger.info("vaultauth.shutdown")
        if owned:
            await app.state.auth.store.close()
            if engine is not None:
                await engine.dispose()

    app = FastAPI(
        title="VaultAuth",
        description="Token authentication and session lifecycle for Receipt Vault",
        version=__version__,
        lifespan=lifespan,
    )
    if core is not None:
        app.state.auth = core

    # ── Error shape ───────────────────────────────────────────
    # Every failure renders as {error, message, statusCode}.

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(
            status_code=exc.status_code, content=exc.to_dict(), headers=headers
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.status_code, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(StoreUnavailableError)
    async def store_error_handler(request: Request, exc: StoreUnavailableError):
        logger.error("auth.dependency_fault", dependency="ttl_store", error=str(exc))
        return JSONResponse(
            status_code=503,
            content=_error_body(503, "Session store temporarily unavailable"),
        )

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RequestId → Security → RateLimit → CSRF → handler

    app.add_middleware(CSRFMiddleware, cookie_name=settings.session_cookie_name)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-CSRF-Token", "X-Request-ID"],
    )

    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: vaultauth.main:app)
app = create_app()
