"""Auth API — login, refresh, logout, sessions, JWKS, CSRF.

Learn: Routes for the token and session lifecycle:
- POST /auth/login → email/password → access + refresh pair, new session
- POST /auth/refresh → refresh token (body or cookie) → rotated pair
- POST /auth/logout → revoke this session, or every session (allDevices)
- GET /auth/me → the admitted identity
- GET /auth/sessions → the caller's active sessions (current one flagged)
- DELETE /auth/sessions/:id → sign one device out
- GET /auth/sessions/stats → count + device-type breakdown
- GET /auth/jwks → public verification key for other services
- GET /auth/csrf-token → CSRF token for cookie-based clients

Browser clients also get the refresh token and session id as HttpOnly
cookies; API and mobile clients use the JSON body.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from vaultauth.auth import errors
from vaultauth.auth.core import AuthCore
from vaultauth.auth.dependencies import client_ip, get_auth_core, get_current_identity
from vaultauth.auth.keys import jwks as build_jwks
from vaultauth.auth.models import IdentityContext, TokenPair
from vaultauth.auth.service import AuthResult
from vaultauth.schemas.auth import (
    CsrfTokenResponse,
    DeviceInfoIn,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    LogoutResponse,
    MeResponse,
    RefreshRequest,
    SessionList,
    SessionRead,
    SessionStats,
    TokenResponse,
    UserRead,
)

router = APIRouter(prefix="/auth")

REFRESH_COOKIE_PATH = "/api/v1/auth"


def _device(body_device: Optional[DeviceInfoIn], request: Request):
    device = body_device or DeviceInfoIn()
    return device.to_device(request.headers.get("User-Agent"), client_ip(request))


def _set_cookies(response: Response, core: AuthCore, pair: TokenPair) -> None:
    secure = core.settings.environment != "development"
    response.set_cookie(
        core.settings.refresh_cookie_name,
        pair.refresh_token,
        max_age=pair.refresh_ttl,
        httponly=True,
        secure=secure,
        samesite="strict",
        path=REFRESH_COOKIE_PATH,
    )
    response.set_cookie(
        core.settings.session_cookie_name,
        pair.session_id,
        max_age=pair.refresh_ttl,
        httponly=True,
        secure=secure,
        samesite="lax",
    )


def _clear_cookies(response: Response, core: AuthCore) -> None:
    response.delete_cookie(core.settings.refresh_cookie_name, path=REFRESH_COOKIE_PATH)
    response.delete_cookie(core.settings.session_cookie_name)


def _token_fields(result: AuthResult) -> dict:
    pair = result.tokens
    return {
        "access_token": pair.access_token,
        "refresh_token": pair.refresh_token,
        "expires_in": pair.access_ttl,
        "refresh_expires_in": pair.refresh_ttl,
        "session_id": pair.session_id,
        "device_id": pair.device_id,
    }


# ─── Login / refresh / logout ───────────────────────────


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    core: AuthCore = Depends(get_auth_core),
):
    """Login with email and password → token pair + new session."""
    try:
        result = await core.service.login(
            body.email, body.password, _device(body.device_info, request)
        )
    except errors.InvalidCredentials as e:
        raise errors.unauthorized(str(e), "invalid_credentials") from e
    _set_cookies(response, core, result.tokens)
    return LoginResponse(
        user=UserRead.from_principal(result.principal), **_token_fields(result)
    )


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    request: Request,
    response: Response,
    body: Optional[RefreshRequest] = None,
    core: AuthCore = Depends(get_auth_core),
):
    """Exchange a refresh token for a new pair in the same session."""
    body = body or RefreshRequest()
    token = body.refresh_token or request.cookies.get(core.settings.refresh_cookie_name)
    if not token:
        raise errors.unauthorized(
            "Refresh token required", errors.MISSING_CREDENTIALS
        )
    result = await core.service.refresh(token, _device(body.device_info, request))
    _set_cookies(response, core, result.tokens)
    return TokenResponse(**_token_fields(result))


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    response: Response,
    body: Optional[LogoutRequest] = None,
    identity: IdentityContext = Depends(get_current_identity),
    core: AuthCore = Depends(get_auth_core),
):
    """Revoke the current session, or all sessions with allDevices=true."""
    all_devices = body.all_devices if body else False
    count = await core.service.logout(identity, all_devices=all_devices)
    _clear_cookies(response, core)
    message = (
        "Logged out from all devices" if all_devices else "Logged out successfully"
    )
    return LogoutResponse(message=message, sessions_revoked=count)


# ─── Identity + sessions ────────────────────────────────


@router.get("/me", response_model=MeResponse)
async def me(identity: IdentityContext = Depends(get_current_identity)):
    return MeResponse(
        user=UserRead.from_principal(identity.principal),
        session_id=identity.session_id,
        device_id=identity.device_id,
    )


@router.get("/sessions", response_model=SessionList)
async def list_sessions(
    identity: IdentityContext = Depends(get_current_identity),
    core: AuthCore = Depends(get_auth_core),
):
    sessions = await core.sessions.list_sessions(
        identity.user_id, current_session_id=identity.session_id
    )
    return SessionList(sessions=[SessionRead.from_info(s) for s in sessions])


@router.get("/sessions/stats", response_model=SessionStats)
async def session_stats(
    identity: IdentityContext = Depends(get_current_identity),
    core: AuthCore = Depends(get_auth_core),
):
    return SessionStats(**await core.sessions.session_stats(identity.user_id))


@router.delete("/sessions/{session_id}", status_code=204)
async def revoke_session(
    session_id: str,
    identity: IdentityContext = Depends(get_current_identity),
    core: AuthCore = Depends(get_auth_core),
):
    """Sign out one of the caller's devices."""
    if not await core.sessions.revoke_session(identity.user_id, session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return Response(status_code=204)


# ─── Keys + CSRF ────────────────────────────────────────


@router.get("/jwks")
async def jwks(core: AuthCore = Depends(get_auth_core)):
    """Public JWKS. Empty in shared-secret mode."""
    return build_jwks(core.verification)


@router.get("/csrf-token", response_model=CsrfTokenResponse)
async def csrf_token(
    identity: IdentityContext = Depends(get_current_identity),
    core: AuthCore = Depends(get_auth_core),
):
    token = await core.csrf.issue(identity.session_id)
    return CsrfTokenResponse(csrf_token=token, expires_in=core.settings.csrf_token_ttl)
