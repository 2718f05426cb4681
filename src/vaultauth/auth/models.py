"""Domain types shared across the auth core.

Learn: These are plain dataclasses, not ORM rows or API schemas.
The token issuer, verifier, gate and session registry only ever see
these; SQLAlchemy rows and pydantic payloads are converted at the edges.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


class Role(str, enum.Enum):
    INDIVIDUAL = "individual"
    COMPANY_EMPLOYEE = "company_employee"
    COMPANY_ADMIN = "company_admin"
    SYSTEM_ADMIN = "system_admin"


class TokenType(str, enum.Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class Principal:
    """A user identity as the core sees it. Read-only here."""

    id: str
    email: str
    first_name: str
    last_name: str
    role: Role
    company_id: Optional[str] = None
    is_active: bool = True
    password_hash: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class DeviceInfo:
    """Client-reported device metadata. All fields optional."""

    name: Optional[str] = None
    type: Optional[str] = None
    fingerprint: Optional[str] = None
    user_agent: Optional[str] = None
    ip: Optional[str] = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_ttl: int  # seconds
    refresh_ttl: int  # seconds
    session_id: str
    device_id: str
    access_jti: str
    refresh_jti: str
    access_expires_at: datetime
    refresh_expires_at: datetime


@dataclass(frozen=True)
class TokenClaims:
    """Verified claim set of a token."""

    sub: str
    type: TokenType
    session_id: str
    device_id: str
    iat: int
    exp: int
    iss: str
    aud: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[str] = None
    company_id: Optional[str] = None
    jti: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "TokenClaims":
        return cls(
            sub=payload["sub"],
            type=TokenType(payload["type"]),
            session_id=payload["sessionId"],
            device_id=payload["deviceId"],
            iat=int(payload["iat"]),
            exp=int(payload["exp"]),
            iss=payload["iss"],
            aud=payload["aud"],
            email=payload.get("email"),
            first_name=payload.get("firstName"),
            last_name=payload.get("lastName"),
            role=payload.get("role"),
            company_id=payload.get("companyId"),
            jti=payload.get("jti"),
        )


@dataclass(frozen=True)
class SessionInfo:
    """One active login as listed back to its owner."""

    session_id: str
    user_id: str
    device_id: str
    created_at: datetime
    last_seen_at: datetime
    expires_at: datetime
    device_name: Optional[str] = None
    device_type: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    is_current: bool = False


@dataclass(frozen=True)
class IdentityContext:
    """What the gate attaches to an admitted request."""

    principal: Principal
    session_id: str
    device_id: str
    claims: TokenClaims
    token: str = field(repr=False)

    @property
    def user_id(self) -> str:
        return self.principal.id

    @property
    def role(self) -> Role:
        return self.principal.role
