"""Key manager tests — generation, persistence, fallback, JWKS."""

import os
import stat

import pytest

from vaultauth.auth.keys import (
    PRIVATE_KEY_FILE,
    PUBLIC_KEY_FILE,
    AsymmetricKeys,
    FileKeyStore,
    KeyManagementError,
    KeyManager,
    SharedSecret,
    build_signing_keys,
    generate_rsa_keypair,
    jwks,
    key_id,
)
from vaultauth.config import Settings


class BrokenKeyStore:
    """Key store whose disk is gone."""

    def load(self):
        return None

    def save(self, private_pem, public_pem):
        raise PermissionError("read-only file system")


def test_generate_persists_both_halves(tmp_path):
    keys = KeyManager(FileKeyStore(tmp_path)).load_or_create()
    assert isinstance(keys, AsymmetricKeys)
    assert keys.algorithm == "RS256"
    assert (tmp_path / PRIVATE_KEY_FILE).read_bytes() == keys.private_pem
    assert (tmp_path / PUBLIC_KEY_FILE).read_bytes() == keys.public_pem


@pytest.mark.skipif(os.name != "posix", reason="POSIX file modes")
def test_private_key_file_is_owner_only(tmp_path):
    KeyManager(FileKeyStore(tmp_path)).load_or_create()
    mode = stat.S_IMODE((tmp_path / PRIVATE_KEY_FILE).stat().st_mode)
    assert mode == 0o600


def test_restart_loads_the_same_pair(tmp_path):
    first = KeyManager(FileKeyStore(tmp_path)).load_or_create()
    second = KeyManager(FileKeyStore(tmp_path)).load_or_create()
    assert first.public_pem == second.public_pem
    assert first.kid == second.kid == key_id(first.public_pem)


def test_mismatched_pair_is_rejected(tmp_path):
    KeyManager(FileKeyStore(tmp_path)).load_or_create()
    _, other_public = generate_rsa_keypair()
    (tmp_path / PUBLIC_KEY_FILE).write_bytes(other_public)
    with pytest.raises(KeyManagementError):
        KeyManager(FileKeyStore(tmp_path)).load_or_create()


def test_persistence_failure_without_fallback_raises():
    with pytest.raises(KeyManagementError):
        build_signing_keys(Settings(), store=BrokenKeyStore())


def test_persistence_failure_with_fallback_uses_shared_secret():
    s = Settings(allow_shared_secret_fallback=True, jwt_secret="x" * 40)
    keys = build_signing_keys(s, store=BrokenKeyStore())
    assert isinstance(keys, SharedSecret)
    assert keys.algorithm == "HS256"


def test_shared_secret_mode_is_explicit():
    s = Settings(key_mode="shared_secret", jwt_secret="y" * 40)
    keys = build_signing_keys(s)
    assert isinstance(keys, SharedSecret)
    assert keys.verification().key == "y" * 40


def test_shared_secret_with_default_secret_refused_outside_development():
    with pytest.raises(ValueError):
        Settings(environment="production", key_mode="shared_secret")


def test_verification_view_has_no_private_key(rsa_keys):
    v = rsa_keys.verification()
    assert v.key == rsa_keys.public_pem
    assert b"PRIVATE" not in v.key
    assert v.kid == rsa_keys.kid


def test_jwks_publishes_public_key(rsa_keys):
    doc = jwks(rsa_keys.verification())
    [jwk] = doc["keys"]
    assert jwk["kty"] == "RSA"
    assert jwk["alg"] == "RS256"
    assert jwk["use"] == "sig"
    assert jwk["kid"] == rsa_keys.kid
    assert {"n", "e"} <= set(jwk)
    assert "d" not in jwk


def test_jwks_empty_for_shared_secret():
    assert jwks(SharedSecret("z" * 40).verification()) == {"keys": []}
