"""Rate limiting middleware — fixed one-minute window in the TTL store.

Learn: Each client IP gets a counter key "rl:{ip}:{bucket}:{minute}"
in the same TTL store the blacklist uses, so limits hold across
instances when that store is Redis. Login and refresh get a stricter
bucket: they are where credential stuffing and refresh-token guessing
happen.

If the store is unavailable the request is let through (logged). Rate
limiting is a throttle, not an auth decision; the gate still fails
closed on the same outage.
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from vaultauth.store.base import StoreUnavailableError

logger = structlog.get_logger()

STRICT_PATHS = ("/api/v1/auth/login", "/api/v1/auth/refresh")


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, default_rpm: int = 100, auth_rpm: int = 10):
        super().__init__(app)
        self.default_rpm = default_rpm
        self.auth_rpm = auth_rpm

    async def dispatch(self, request: Request, call_next) -> Response:
        core = getattr(request.app.state, "auth", None)
        if core is None:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        is_strict = request.url.path.startswith(STRICT_PATHS)
        rpm = self.auth_rpm if is_strict else self.default_rpm
        bucket = "auth" if is_strict else "api"
        window = int(time.time() // 60)
        key = f"rl:{client_ip}:{bucket}:{window}"

        try:
            count = await core.store.incr(key, 120)
        except StoreUnavailableError as e:
            logger.warning("rate_limit.store_unavailable", error=str(e))
            return await call_next(request)

        if count > rpm:
            logger.info("rate_limit.exceeded", client_ip=client_ip, bucket=bucket)
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Too Many Requests",
                    "message": "Rate limit exceeded. Try again later.",
                    "statusCode": 429,
                },
                headers={"Retry-After": "60"},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(rpm)
        response.headers["X-RateLimit-Remaining"] = str(max(0, rpm - count))
        return response
