"""CSRF middleware for cookie-authenticated requests.

Learn: Only state-changing requests that do NOT carry a bearer token
are checked. They must name their session (sessionId cookie or
X-Session-ID header) and present that session's current token in
X-CSRF-Token. Anything else is a 403 in the usual error shape.

Safe GET requests from a known session get a fresh token back in the
X-CSRF-Token response header, so browser clients never have to ask for
one explicitly (GET /api/v1/auth/csrf-token also works).

POST /api/v1/auth/refresh is exempt. It authenticates with the refresh
token, either from the JSON body (which a cross-site page cannot know) or
from the refresh cookie. That cookie is set SameSite=strict, HttpOnly and
scoped to /api/v1/auth, so browsers never attach it to a request started
by another site.
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from vaultauth.auth import errors
from vaultauth.store.base import StoreUnavailableError

logger = structlog.get_logger()

SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}

# Login and health run before any session exists. Refresh relies on the
# SameSite=strict refresh cookie (see module docstring); relaxing that
# cookie attribute means removing refresh from this set.
EXEMPT_PATHS = {
    "/api/v1/auth/login",
    "/api/v1/auth/refresh",
    "/api/v1/health",
}


def _forbidden(message: str) -> JSONResponse:
    error = errors.forbidden(message, errors.CSRF_FAILED)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


class CSRFMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, cookie_name: str = "sessionId"):
        super().__init__(app)
        self.cookie_name = cookie_name

    def _session_id(self, request: Request):
        return request.cookies.get(self.cookie_name) or request.headers.get(
            "X-Session-ID"
        )

    async def dispatch(self, request: Request, call_next) -> Response:
        core = getattr(request.app.state, "auth", None)
        authorization = request.headers.get("Authorization", "")
        if core is None or authorization.lower().startswith("bearer "):
            return await call_next(request)

        session_id = self._session_id(request)

        if request.method in SAFE_METHODS:
            response: Response = await call_next(request)
            if request.method == "GET" and session_id:
                await self._attach_token(core, session_id, response)
            return response

        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        if not session_id:
            logger.info("csrf.missing_session")
            return _forbidden("Session ID required for CSRF protection")
        presented = request.headers.get("X-CSRF-Token")
        if not presented:
            logger.info("csrf.missing_token", session_id=session_id)
            return _forbidden("CSRF token required")
        try:
            valid = await core.csrf.validate(session_id, presented)
        except StoreUnavailableError as e:
            logger.error("auth.dependency_fault", dependency="csrf_store", error=str(e))
            return _forbidden("Invalid or expired CSRF token")
        if not valid:
            return _forbidden("Invalid or expired CSRF token")
        return await call_next(request)

    async def _attach_token(self, core, session_id: str, response: Response) -> None:
        try:
            if await core.sessions.get(session_id) is None:
                return
            response.headers["X-CSRF-Token"] = await core.csrf.issue(session_id)
        except StoreUnavailableError as e:
            logger.warning("csrf.issue_failed", session_id=session_id, error=str(e))
