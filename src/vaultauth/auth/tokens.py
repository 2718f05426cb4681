"""JWT token issuance and verification.

Learn: Every login mints a PAIR of tokens from one shared claim base:
- Access token: short-lived (15 min), aud=receipt-vault-api, sent on every call
- Refresh token: long-lived (30 days), aud=receipt-vault-refresh, only
  exchanged at /auth/refresh for a new pair

Both carry the same sessionId and deviceId, so revoking a session
invalidates whichever token of the chain is presented. Each token also
gets its own jti so a single token can be blacklisted.

Verification is all-or-nothing: signature, issuer, audience, expiry and
the embedded "type" claim must all pass. Callers only ever see one
message ("Invalid or expired token"); the specific reason goes to the
logs (with a token fingerprint, never the token itself).
"""

import hashlib
import math
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import jwt
import structlog

from vaultauth.auth.keys import SigningKeys, VerificationKey
from vaultauth.auth.models import (
    DeviceInfo,
    Principal,
    TokenClaims,
    TokenPair,
    TokenType,
)
from vaultauth.config import Settings

logger = structlog.get_logger()

INVALID_TOKEN_MESSAGE = "Invalid or expired token"

REQUIRED_CLAIMS = ["sub", "type", "iat", "exp", "iss", "aud", "sessionId", "deviceId"]


class TokenError(Exception):
    """Raised when token verification fails.

    str(e) is always the uniform caller-facing message; `reason` is the
    internal cause and must not be sent back to clients.
    """

    def __init__(self, reason: str):
        super().__init__(INVALID_TOKEN_MESSAGE)
        self.reason = reason


def token_fingerprint(token: str) -> str:
    """Short, non-reversible reference to a token for logs."""
    return hashlib.sha256(token.encode()).hexdigest()[:12]


def _audience_for(settings: Settings, token_type: TokenType) -> str:
    if token_type == TokenType.ACCESS:
        return settings.access_audience
    return settings.refresh_audience


# ─── Issuer ──────────────────────────────────────────────


class TokenIssuer:
    """Mints access/refresh pairs. Sole holder of the signing key."""

    def __init__(
        self,
        keys: SigningKeys,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ):
        self._keys = keys
        self.settings = settings
        self._clock = clock

    @property
    def access_ttl(self) -> int:
        return self.settings.access_token_ttl

    @property
    def refresh_ttl(self) -> int:
        return self.settings.refresh_token_ttl

    def issue_token_pair(
        self,
        principal: Principal,
        device_info: Optional[DeviceInfo] = None,
        *,
        session_id: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> TokenPair:
        """Create a signed access + refresh token for the principal.

        Pass session_id/device_id when rotating so the new pair stays in
        the same session; otherwise both are generated fresh (device id
        comes from the device fingerprint when the client supplied one).
        """
        session_id = session_id or str(uuid.uuid4())
        if not device_id:
            fingerprint = device_info.fingerprint if device_info else None
            device_id = fingerprint or str(uuid.uuid4())
        now = int(self._clock())

        base: dict[str, Any] = {
            "sub": principal.id,
            "email": principal.email,
            "firstName": principal.first_name,
            "lastName": principal.last_name,
            "role": principal.role.value,
            "deviceId": device_id,
            "sessionId": session_id,
            "iss": self.settings.jwt_issuer,
        }
        if principal.company_id:
            base["companyId"] = principal.company_id

        access_jti = uuid.uuid4().hex
        refresh_jti = uuid.uuid4().hex
        access_exp = now + self.access_ttl
        refresh_exp = now + self.refresh_ttl

        access_token = self._sign({
            **base,
            "type": TokenType.ACCESS.value,
            "aud": self.settings.access_audience,
            "iat": now,
            "exp": access_exp,
            "jti": access_jti,
        })
        refresh_token = self._sign({
            **base,
            "type": TokenType.REFRESH.value,
            "aud": self.settings.refresh_audience,
            "iat": now,
            "exp": refresh_exp,
            "jti": refresh_jti,
        })

        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_ttl=self.access_ttl,
            refresh_ttl=self.refresh_ttl,
            session_id=session_id,
            device_id=device_id,
            access_jti=access_jti,
            refresh_jti=refresh_jti,
            access_expires_at=datetime.fromtimestamp(access_exp, timezone.utc),
            refresh_expires_at=datetime.fromtimestamp(refresh_exp, timezone.utc),
        )

    def _sign(self, payload: dict[str, Any]) -> str:
        headers = {"kid": self._keys.kid} if self._keys.kid else None
        return jwt.encode(
            payload,
            self._keys.signing_key,
            algorithm=self._keys.algorithm,
            headers=headers,
        )


# ─── Verifier ────────────────────────────────────────────


class TokenVerifier:
    """Validates tokens against the public key. Never sees the private key."""

    def __init__(self, verification: VerificationKey, settings: Settings):
        self._verification = verification
        self.settings = settings

    def verify(self, token: str, expected_type: TokenType) -> TokenClaims:
        """Verify and decode a token of the expected type.

        Returns the claims on success. Raises TokenError on ANY failure.
        """
        try:
            payload = jwt.decode(
                token,
                self._verification.key,
                # Pinned to the one configured algorithm (no alg confusion)
                algorithms=[self._verification.algorithm],
                audience=_audience_for(self.settings, expected_type),
                issuer=self.settings.jwt_issuer,
                leeway=self.settings.token_leeway_seconds,
                options={"require": REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError:
            raise self._reject(token, expected_type, "expired")
        except jwt.InvalidAudienceError:
            raise self._reject(token, expected_type, "wrong_audience")
        except jwt.InvalidIssuerError:
            raise self._reject(token, expected_type, "wrong_issuer")
        except jwt.InvalidSignatureError:
            raise self._reject(token, expected_type, "bad_signature")
        except jwt.MissingRequiredClaimError:
            raise self._reject(token, expected_type, "missing_claims")
        except jwt.InvalidTokenError:
            raise self._reject(token, expected_type, "malformed")

        if payload.get("type") != expected_type.value:
            raise self._reject(token, expected_type, "type_mismatch")

        try:
            return TokenClaims.from_payload(payload)
        except (KeyError, ValueError, TypeError):
            raise self._reject(token, expected_type, "malformed")

    def _reject(self, token: str, expected_type: TokenType, reason: str) -> TokenError:
        logger.warning(
            "auth.token_rejected",
            reason=reason,
            expected_type=expected_type.value,
            token=token_fingerprint(token),
        )
        return TokenError(reason)

    # ─── Diagnostics only, never for authorization ───────

    @staticmethod
    def decode_unverified(token: str) -> Optional[dict[str, Any]]:
        """Decode the payload WITHOUT checking anything. Diagnostics only."""
        try:
            payload = jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError:
            return None
        return payload if isinstance(payload, dict) else None

    @classmethod
    def get_expiration(cls, token: str) -> Optional[datetime]:
        payload = cls.decode_unverified(token)
        if not payload or not isinstance(payload.get("exp"), (int, float)):
            return None
        return datetime.fromtimestamp(payload["exp"], timezone.utc)

    @classmethod
    def is_expired(cls, token: str) -> bool:
        expiration = cls.get_expiration(token)
        if expiration is None:
            return True
        return expiration <= datetime.now(timezone.utc)

    @classmethod
    def remaining_lifetime(cls, token: str) -> int:
        """Seconds until the token's exp (0 if expired or undecodable)."""
        expiration = cls.get_expiration(token)
        if expiration is None:
            return 0
        remaining = (expiration - datetime.now(timezone.utc)).total_seconds()
        return max(0, math.ceil(remaining))
