"""Authorization gate tests — the five-step admit/reject sequence.

Learn: These drive AuthorizationGate directly (no HTTP) through a core
built on in-memory stores. Faults are injected by wrapping collaborators
with AsyncMock side effects.
"""

import asyncio
import time
from unittest.mock import AsyncMock

import pytest

from vaultauth.auth import errors
from vaultauth.auth.errors import AuthError
from vaultauth.auth.gate import (
    ADMIN_ONLY,
    COMPANY_ADMIN,
    AnyAuthenticated,
    company_role,
    extract_bearer,
)
from vaultauth.auth.models import Role
from vaultauth.auth.tokens import TokenIssuer
from vaultauth.store.base import StoreUnavailableError

from conftest import ALICE_ID, PASSWORD


async def _login(core, email="alice.admin@example.com"):
    result = await core.service.login(email, PASSWORD)
    return result.tokens


async def _reject(gate, header):
    with pytest.raises(AuthError) as exc:
        await gate.authenticate(header)
    return exc.value


# ═══════════════════════════════════════════════════════════
# Step 1: credentials
# ═══════════════════════════════════════════════════════════


@pytest.mark.parametrize(
    "header", [None, "", "Basic dXNlcjpwYXNz", "Bearer", "Bearer ", "Bearer a b"]
)
def test_extract_bearer_rejects_malformed(header):
    assert extract_bearer(header) is None


def test_extract_bearer():
    assert extract_bearer("Bearer abc.def.ghi") == "abc.def.ghi"
    assert extract_bearer("bearer abc") == "abc"


@pytest.mark.asyncio
async def test_missing_credentials(core):
    err = await _reject(core.gate, None)
    assert err.status_code == 401
    assert err.reason == errors.MISSING_CREDENTIALS
    assert err.message == "Missing or invalid authorization header"


# ═══════════════════════════════════════════════════════════
# Steps 2-5
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_valid_token_admitted(core):
    pair = await _login(core)
    identity = await core.gate.authenticate(f"Bearer {pair.access_token}")
    assert identity.user_id == ALICE_ID
    assert identity.role == Role.COMPANY_ADMIN
    assert identity.session_id == pair.session_id
    assert identity.device_id == pair.device_id


@pytest.mark.asyncio
async def test_blacklisted_token_rejected(core):
    pair = await _login(core)
    await core.revocations.revoke(pair.access_token)
    err = await _reject(core.gate, f"Bearer {pair.access_token}")
    assert err.reason == errors.REVOKED


@pytest.mark.asyncio
async def test_refresh_token_not_accepted_as_access(core):
    pair = await _login(core)
    err = await _reject(core.gate, f"Bearer {pair.refresh_token}")
    assert err.reason == errors.INVALID_TOKEN
    assert err.message == "Invalid or expired token"


@pytest.mark.asyncio
async def test_garbage_is_invalid_not_revoked(core):
    err = await _reject(core.gate, "Bearer aaa.bbb.ccc")
    assert err.reason == errors.INVALID_TOKEN


@pytest.mark.asyncio
async def test_expired_token_rejected(core, rsa_keys, settings, principals):
    old = TokenIssuer(rsa_keys, settings, clock=lambda: time.time() - 3600)
    pair = old.issue_token_pair(principals["alice"])
    err = await _reject(core.gate, f"Bearer {pair.access_token}")
    assert err.reason == errors.INVALID_TOKEN


@pytest.mark.asyncio
async def test_revoked_session_rejects_unexpired_access(core):
    pair = await _login(core)
    await core.sessions.revoke_session(ALICE_ID, pair.session_id)
    err = await _reject(core.gate, f"Bearer {pair.access_token}")
    assert err.reason == errors.REVOKED


@pytest.mark.asyncio
async def test_token_without_session_record_rejected(core, principals):
    # Validly signed, but never registered as a session
    pair = core.service.issuer.issue_token_pair(principals["alice"])
    err = await _reject(core.gate, f"Bearer {pair.access_token}")
    assert err.reason == errors.SESSION_NOT_FOUND


@pytest.mark.asyncio
async def test_deleted_principal_rejected(core, directory):
    pair = await _login(core)
    directory.remove(ALICE_ID)
    err = await _reject(core.gate, f"Bearer {pair.access_token}")
    assert err.reason == errors.PRINCIPAL_NOT_FOUND
    assert err.status_code == 401


@pytest.mark.asyncio
async def test_touch_updates_last_seen(core):
    pair = await _login(core)
    before = (await core.sessions.get(pair.session_id))["last_seen_at"]
    await asyncio.sleep(0.01)
    await core.gate.authenticate(f"Bearer {pair.access_token}", client_ip="198.51.100.9")
    record = await core.sessions.get(pair.session_id)
    assert record["last_seen_at"] > before
    assert record["ip_address"] == "198.51.100.9"


# ═══════════════════════════════════════════════════════════
# Requirements (403)
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_company_admin_passes_company_gate_not_admin_gate(core):
    pair = await _login(core)
    header = f"Bearer {pair.access_token}"
    assert (await core.gate.admit(header, COMPANY_ADMIN)).user_id == ALICE_ID
    assert (await core.gate.admit(header, AnyAuthenticated())).user_id == ALICE_ID

    with pytest.raises(AuthError) as exc:
        await core.gate.admit(header, ADMIN_ONLY)
    assert exc.value.status_code == 403
    assert exc.value.reason == errors.INSUFFICIENT_ROLE


@pytest.mark.asyncio
async def test_system_admin_passes_company_gate(core):
    pair = await _login(core, "root@example.com")
    identity = await core.gate.admit(f"Bearer {pair.access_token}", COMPANY_ADMIN)
    assert identity.role == Role.SYSTEM_ADMIN


@pytest.mark.asyncio
async def test_company_role_requirement(core):
    pair = await _login(core, "bob.staff@example.com")
    header = f"Bearer {pair.access_token}"
    await core.gate.admit(header, company_role(Role.COMPANY_EMPLOYEE, Role.COMPANY_ADMIN))
    with pytest.raises(AuthError) as exc:
        await core.gate.admit(header, company_role())
    assert exc.value.status_code == 403


# ═══════════════════════════════════════════════════════════
# Dependency faults (fail closed)
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_store_outage_rejects(core):
    pair = await _login(core)
    core.gate.revocations.is_session_revoked = AsyncMock(
        side_effect=StoreUnavailableError("redis down")
    )
    err = await _reject(core.gate, f"Bearer {pair.access_token}")
    assert err.status_code == 401
    assert err.reason == errors.DEPENDENCY_UNAVAILABLE


@pytest.mark.asyncio
@pytest.mark.parametrize("settings_overrides", [{"dependency_timeout_seconds": 0.05}])
async def test_slow_directory_times_out(core, directory):
    pair = await _login(core)

    async def hang(principal_id):
        await asyncio.sleep(5)

    directory.get_by_id = hang
    err = await _reject(core.gate, f"Bearer {pair.access_token}")
    assert err.reason == errors.DEPENDENCY_UNAVAILABLE


@pytest.mark.asyncio
async def test_touch_failure_does_not_reject(core):
    pair = await _login(core)
    core.gate.sessions.touch = AsyncMock(side_effect=StoreUnavailableError("flaky"))
    identity = await core.gate.authenticate(f"Bearer {pair.access_token}")
    assert identity.user_id == ALICE_ID


@pytest.mark.asyncio
async def test_forced_revocation_store_outage_rejects(core):
    await _login(core)
    core.store.members = AsyncMock(side_effect=StoreUnavailableError("redis down"))
    with pytest.raises(AuthError) as exc:
        await core.service.revoke_all_for_principal(ALICE_ID)
    assert exc.value.reason == errors.DEPENDENCY_UNAVAILABLE


@pytest.mark.asyncio
@pytest.mark.parametrize("settings_overrides", [{"dependency_timeout_seconds": 0.05}])
async def test_forced_revocation_times_out(core):
    await _login(core)

    async def hang(principal_id, except_session_id=None):
        await asyncio.sleep(5)

    core.sessions.revoke_all_sessions = hang
    with pytest.raises(AuthError) as exc:
        await core.service.revoke_all_for_principal(ALICE_ID)
    assert exc.value.reason == errors.DEPENDENCY_UNAVAILABLE


@pytest.mark.asyncio
async def test_forced_revocation_rejects_existing_tokens(core):
    pair = await _login(core)
    assert await core.service.revoke_all_for_principal(ALICE_ID) == 1
    err = await _reject(core.gate, f"Bearer {pair.access_token}")
    assert err.reason == errors.REVOKED


# ═══════════════════════════════════════════════════════════
# Rotation policy
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_old_access_valid_after_refresh_by_default(core):
    pair = await _login(core)
    rotated = (await core.service.refresh(pair.refresh_token)).tokens
    await core.gate.authenticate(f"Bearer {pair.access_token}")
    await core.gate.authenticate(f"Bearer {rotated.access_token}")


@pytest.mark.asyncio
@pytest.mark.parametrize("settings_overrides", [{"revoke_access_on_refresh": True}])
async def test_old_access_rejected_when_policy_revokes(core):
    pair = await _login(core)
    rotated = (await core.service.refresh(pair.refresh_token)).tokens
    err = await _reject(core.gate, f"Bearer {pair.access_token}")
    assert err.reason == errors.REVOKED
    await core.gate.authenticate(f"Bearer {rotated.access_token}")
