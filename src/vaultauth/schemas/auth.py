"""Pydantic schemas for the auth API.

Learn: The wire format is camelCase (accessToken, sessionId, ...) because
the web and mobile clients already speak it. Models are declared with
snake_case fields and a camelCase alias generator; FastAPI serializes
responses by alias, and populate_by_name lets handlers build them with
the Python names.
"""

from dataclasses import asdict
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from vaultauth.auth.models import DeviceInfo, Principal, SessionInfo


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ─── Requests ────────────────────────────────────────────


class DeviceInfoIn(CamelModel):
    name: Optional[str] = Field(None, max_length=200)
    type: Optional[str] = Field(None, max_length=50)
    fingerprint: Optional[str] = Field(None, max_length=200)

    def to_device(self, user_agent: Optional[str], ip: Optional[str]) -> DeviceInfo:
        return DeviceInfo(
            name=self.name,
            type=self.type,
            fingerprint=self.fingerprint,
            user_agent=user_agent,
            ip=ip,
        )


class LoginRequest(CamelModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1, max_length=1024)
    device_info: Optional[DeviceInfoIn] = None


class RefreshRequest(CamelModel):
    refresh_token: Optional[str] = None
    device_info: Optional[DeviceInfoIn] = None


class LogoutRequest(CamelModel):
    all_devices: bool = False


# ─── Responses ───────────────────────────────────────────


class UserRead(CamelModel):
    id: str
    email: str
    first_name: str
    last_name: str
    role: str
    company_id: Optional[str] = None

    @classmethod
    def from_principal(cls, principal: Principal) -> "UserRead":
        return cls(
            id=principal.id,
            email=principal.email,
            first_name=principal.first_name,
            last_name=principal.last_name,
            role=principal.role.value,
            company_id=principal.company_id,
        )


class TokenResponse(CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_expires_in: int
    session_id: str
    device_id: str


class LoginResponse(TokenResponse):
    user: UserRead


class LogoutResponse(CamelModel):
    message: str = "Logged out successfully"
    sessions_revoked: int


class MeResponse(CamelModel):
    user: UserRead
    session_id: str
    device_id: str


class SessionRead(CamelModel):
    session_id: str
    device_id: str
    device_name: Optional[str] = None
    device_type: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: datetime
    last_seen_at: datetime
    expires_at: datetime
    is_current: bool = False

    @classmethod
    def from_info(cls, info: SessionInfo) -> "SessionRead":
        data = asdict(info)
        data.pop("user_id")
        return cls(**data)


class SessionList(CamelModel):
    sessions: list[SessionRead]


class SessionStats(CamelModel):
    total_sessions: int
    device_breakdown: dict[str, int]
    last_seen_at: Optional[datetime] = None


class SessionsRevoked(CamelModel):
    user_id: str
    sessions_revoked: int


class CsrfTokenResponse(CamelModel):
    csrf_token: str
    expires_in: int
