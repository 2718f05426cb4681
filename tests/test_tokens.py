"""Token issuer / verifier tests.

Learn: Expiry is tested by giving the issuer a clock in the past
instead of sleeping, so the tokens are born already expired.
"""

import time

import jwt
import pytest

from vaultauth.auth.keys import SharedSecret
from vaultauth.auth.models import DeviceInfo, Principal, Role, TokenType
from vaultauth.auth.tokens import (
    INVALID_TOKEN_MESSAGE,
    TokenError,
    TokenIssuer,
    TokenVerifier,
    token_fingerprint,
)
from vaultauth.config import Settings

PRINCIPAL = Principal(
    id="00000000-0000-0000-0000-000000000001",
    email="alice.admin@example.com",
    first_name="Alice",
    last_name="Admin",
    role=Role.COMPANY_ADMIN,
    company_id="a0000000-0000-0000-0000-00000000000a",
)


@pytest.fixture()
def settings():
    return Settings()


@pytest.fixture()
def issuer(rsa_keys, settings):
    return TokenIssuer(rsa_keys, settings)


@pytest.fixture()
def verifier(rsa_keys, settings):
    return TokenVerifier(rsa_keys.verification(), settings)


def _reason(verifier, token, expected_type):
    with pytest.raises(TokenError) as exc:
        verifier.verify(token, expected_type)
    assert str(exc.value) == INVALID_TOKEN_MESSAGE
    return exc.value.reason


# ═══════════════════════════════════════════════════════════
# Issuance
# ═══════════════════════════════════════════════════════════


def test_pair_round_trips_through_verifier(issuer, verifier):
    pair = issuer.issue_token_pair(PRINCIPAL)
    access = verifier.verify(pair.access_token, TokenType.ACCESS)
    refresh = verifier.verify(pair.refresh_token, TokenType.REFRESH)

    assert access.sub == refresh.sub == PRINCIPAL.id
    assert access.session_id == refresh.session_id == pair.session_id
    assert access.device_id == refresh.device_id == pair.device_id
    assert access.role == "company_admin"
    assert access.company_id == PRINCIPAL.company_id
    assert access.email == PRINCIPAL.email
    assert access.first_name == "Alice"
    assert access.jti == pair.access_jti
    assert refresh.jti == pair.refresh_jti
    assert access.jti != refresh.jti


def test_lifetimes_and_audiences(issuer, verifier):
    pair = issuer.issue_token_pair(PRINCIPAL)
    access = verifier.verify(pair.access_token, TokenType.ACCESS)
    refresh = verifier.verify(pair.refresh_token, TokenType.REFRESH)

    assert access.exp - access.iat == 15 * 60
    assert refresh.exp - refresh.iat == 30 * 24 * 3600
    assert access.aud == "receipt-vault-api"
    assert refresh.aud == "receipt-vault-refresh"
    assert access.iss == refresh.iss == "receipt-vault"
    assert pair.access_ttl == 900


def test_each_login_gets_fresh_session(issuer):
    a = issuer.issue_token_pair(PRINCIPAL)
    b = issuer.issue_token_pair(PRINCIPAL)
    assert a.session_id != b.session_id
    assert a.device_id != b.device_id


def test_device_id_from_fingerprint(issuer):
    pair = issuer.issue_token_pair(PRINCIPAL, DeviceInfo(fingerprint="fp-123"))
    assert pair.device_id == "fp-123"


def test_rotation_keeps_session_and_device(issuer):
    first = issuer.issue_token_pair(PRINCIPAL)
    second = issuer.issue_token_pair(
        PRINCIPAL, session_id=first.session_id, device_id=first.device_id
    )
    assert second.session_id == first.session_id
    assert second.device_id == first.device_id
    assert second.access_jti != first.access_jti


def test_company_id_omitted_when_absent(issuer):
    individual = Principal(
        id="u-5", email="dave@example.com", first_name="Dave",
        last_name="User", role=Role.INDIVIDUAL,
    )
    pair = issuer.issue_token_pair(individual)
    assert "companyId" not in TokenVerifier.decode_unverified(pair.access_token)


def test_header_carries_kid(issuer, rsa_keys):
    pair = issuer.issue_token_pair(PRINCIPAL)
    header = jwt.get_unverified_header(pair.access_token)
    assert header["alg"] == "RS256"
    assert header["kid"] == rsa_keys.kid


# ═══════════════════════════════════════════════════════════
# Rejection
# ═══════════════════════════════════════════════════════════


def test_type_confusion_rejected(issuer, verifier):
    pair = issuer.issue_token_pair(PRINCIPAL)
    # Refresh token presented where an access token is expected, and back
    assert _reason(verifier, pair.refresh_token, TokenType.ACCESS) == "wrong_audience"
    assert _reason(verifier, pair.access_token, TokenType.REFRESH) == "wrong_audience"


def test_type_claim_checked_even_with_matching_audience(rsa_keys):
    s = Settings(refresh_audience="receipt-vault-api")
    pair = TokenIssuer(rsa_keys, s).issue_token_pair(PRINCIPAL)
    verifier = TokenVerifier(rsa_keys.verification(), s)
    assert _reason(verifier, pair.refresh_token, TokenType.ACCESS) == "type_mismatch"


def test_expired_token_rejected(rsa_keys, settings, verifier):
    past = TokenIssuer(rsa_keys, settings, clock=lambda: time.time() - 3600)
    pair = past.issue_token_pair(PRINCIPAL)
    assert _reason(verifier, pair.access_token, TokenType.ACCESS) == "expired"


def test_leeway_tolerates_small_skew(rsa_keys):
    s = Settings(token_leeway_seconds=120)
    just_expired = TokenIssuer(rsa_keys, s, clock=lambda: time.time() - 15 * 60 - 30)
    pair = just_expired.issue_token_pair(PRINCIPAL)
    claims = TokenVerifier(rsa_keys.verification(), s).verify(
        pair.access_token, TokenType.ACCESS
    )
    assert claims.sub == PRINCIPAL.id


def test_tampered_payload_rejected(issuer, verifier):
    pair = issuer.issue_token_pair(PRINCIPAL)
    header, payload, signature = pair.access_token.split(".")
    forged = jwt.encode({"role": "system_admin"}, "k" * 32, algorithm="HS256")
    tampered = ".".join([header, forged.split(".")[1], signature])
    assert _reason(verifier, tampered, TokenType.ACCESS) == "bad_signature"


def test_other_key_rejected(verifier, settings):
    stranger = TokenIssuer(SharedSecret("s" * 40), settings)
    pair = stranger.issue_token_pair(PRINCIPAL)
    # HS256 token against an RS256-pinned verifier
    assert _reason(verifier, pair.access_token, TokenType.ACCESS) == "malformed"


def test_wrong_issuer_rejected(rsa_keys, verifier):
    foreign = TokenIssuer(rsa_keys, Settings(jwt_issuer="someone-else"))
    pair = foreign.issue_token_pair(PRINCIPAL)
    assert _reason(verifier, pair.access_token, TokenType.ACCESS) == "wrong_issuer"


def test_missing_session_claim_rejected(rsa_keys, verifier):
    now = int(time.time())
    token = jwt.encode(
        {
            "sub": PRINCIPAL.id, "type": "access", "iat": now, "exp": now + 60,
            "iss": "receipt-vault", "aud": "receipt-vault-api", "deviceId": "d",
        },
        rsa_keys.private_pem,
        algorithm="RS256",
    )
    assert _reason(verifier, token, TokenType.ACCESS) == "missing_claims"


def test_garbage_rejected(verifier):
    assert _reason(verifier, "not-a-token", TokenType.ACCESS) == "malformed"


def test_shared_secret_mode_round_trip():
    s = Settings(key_mode="shared_secret", jwt_secret="q" * 40)
    keys = SharedSecret(s.jwt_secret)
    pair = TokenIssuer(keys, s).issue_token_pair(PRINCIPAL)
    claims = TokenVerifier(keys.verification(), s).verify(
        pair.access_token, TokenType.ACCESS
    )
    assert claims.session_id == pair.session_id
    assert "kid" not in jwt.get_unverified_header(pair.access_token)


# ═══════════════════════════════════════════════════════════
# Diagnostics
# ═══════════════════════════════════════════════════════════


def test_expiration_helpers(issuer, rsa_keys, settings):
    pair = issuer.issue_token_pair(PRINCIPAL)
    assert TokenVerifier.get_expiration(pair.access_token) == pair.access_expires_at
    assert not TokenVerifier.is_expired(pair.access_token)
    assert 890 <= TokenVerifier.remaining_lifetime(pair.access_token) <= 900

    old = TokenIssuer(rsa_keys, settings, clock=lambda: time.time() - 3600)
    expired = old.issue_token_pair(PRINCIPAL).access_token
    assert TokenVerifier.is_expired(expired)
    assert TokenVerifier.remaining_lifetime(expired) == 0


def test_decode_unverified_never_raises():
    assert TokenVerifier.decode_unverified("garbage") is None
    assert TokenVerifier.get_expiration("garbage") is None
    assert TokenVerifier.is_expired("garbage")


def test_fingerprint_is_short_and_stable():
    assert token_fingerprint("abc") == token_fingerprint("abc")
    assert len(token_fingerprint("abc")) == 12
    assert token_fingerprint("abc") != token_fingerprint("abd")
