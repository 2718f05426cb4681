"""Test fixtures — a real app wired to in-memory stores.

Learn: Testing pattern for the auth core:

1. One RSA key pair per test session (generation is the slow part),
   persisted to a tmp dir through the same FileKeyStore production uses.
2. Each test gets a fresh MemoryTTLStore and MemoryPrincipalDirectory,
   so blacklists, sessions and rate-limit counters never leak between tests.
3. The app is built with create_app(settings, core): the real middleware,
   routes and gate run, only the backends are swapped. ASGITransport does
   not run the lifespan, which is why the core is passed in directly.

Override settings for one test with
    @pytest.mark.parametrize("settings_overrides", [{"revoke_access_on_refresh": True}])
"""

from typing import Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from vaultauth.auth.core import AuthCore
from vaultauth.auth.directory import MemoryPrincipalDirectory
from vaultauth.auth.keys import FileKeyStore, KeyManager
from vaultauth.auth.models import Principal, Role
from vaultauth.auth.password import hash_password
from vaultauth.config import Settings
from vaultauth.main import create_app
from vaultauth.store.memory import MemoryTTLStore

PASSWORD = "correct horse battery staple"

COMPANY_A = "a0000000-0000-0000-0000-00000000000a"
COMPANY_B = "b0000000-0000-0000-0000-00000000000b"

ALICE_ID = "00000000-0000-0000-0000-000000000001"  # company_admin, company A
BOB_ID = "00000000-0000-0000-0000-000000000002"  # employee, company A
CAROL_ID = "00000000-0000-0000-0000-000000000003"  # employee, company B
ROOT_ID = "00000000-0000-0000-0000-000000000004"  # system_admin
DAVE_ID = "00000000-0000-0000-0000-000000000005"  # individual
EVE_ID = "00000000-0000-0000-0000-000000000006"  # deactivated


@pytest.fixture(scope="session")
def password_hash():
    # Low cost factor: only the tests pay for bcrypt here
    return hash_password(PASSWORD, rounds=4)


@pytest.fixture(scope="session")
def rsa_keys(tmp_path_factory):
    return KeyManager(FileKeyStore(tmp_path_factory.mktemp("keys"))).load_or_create()


@pytest.fixture()
def settings_overrides():
    return {}


@pytest.fixture()
def settings(settings_overrides):
    values = {
        "environment": "development",
        "ttl_store": "memory",
        "principal_directory": "memory",
        "rate_limit_rpm": 1000,
        "rate_limit_auth_rpm": 1000,
        **settings_overrides,
    }
    return Settings(**values)


@pytest.fixture()
def principals(password_hash):
    def p(pid, email, role, company_id=None, is_active=True):
        first, _, last = email.split("@")[0].partition(".")
        return Principal(
            id=pid,
            email=email,
            first_name=first.title(),
            last_name=(last or "User").title(),
            role=role,
            company_id=company_id,
            is_active=is_active,
            password_hash=password_hash,
        )

    return {
        "alice": p(ALICE_ID, "alice.admin@example.com", Role.COMPANY_ADMIN, COMPANY_A),
        "bob": p(BOB_ID, "bob.staff@example.com", Role.COMPANY_EMPLOYEE, COMPANY_A),
        "carol": p(CAROL_ID, "carol.other@example.com", Role.COMPANY_EMPLOYEE, COMPANY_B),
        "root": p(ROOT_ID, "root@example.com", Role.SYSTEM_ADMIN),
        "dave": p(DAVE_ID, "dave@example.com", Role.INDIVIDUAL),
        "eve": p(EVE_ID, "eve@example.com", Role.INDIVIDUAL, is_active=False),
    }


@pytest.fixture()
def directory(principals):
    return MemoryPrincipalDirectory(list(principals.values()))


@pytest.fixture()
def store():
    return MemoryTTLStore()


@pytest.fixture()
def core(settings, rsa_keys, store, directory):
    return AuthCore.build(settings, rsa_keys, store, directory)


@pytest.fixture()
def app(settings, core):
    return create_app(settings, core)


@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def login(client):
    """Log a seeded user in through the API. Returns the JSON body."""

    async def _login(email: str, password: str = PASSWORD, device: Optional[dict] = None):
        body = {"email": email, "password": password}
        if device:
            body["deviceInfo"] = device
        r = await client.post("/api/v1/auth/login", json=body)
        assert r.status_code == 200, r.text
        return r.json()

    return _login


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
