"""Signing key management.

Learn: Tokens are signed with an RSA private key (RS256) and verified
with the matching public key. The pair is generated once, written to a
KeyStore, and reloaded on every later start so tokens survive restarts.

The weaker alternative is one shared HMAC secret (HS256) for both sign
and verify, a separate type: SharedSecret. It is only produced when
configured (key_mode="shared_secret") or when persistence fails AND the
operator opted into the fallback. Both paths log a loud warning.
"""

import hashlib
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol, Union

import structlog
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from vaultauth.config import Settings

logger = structlog.get_logger()

PRIVATE_KEY_FILE = "jwt-private.pem"
PUBLIC_KEY_FILE = "jwt-public.pem"
RSA_KEY_SIZE = 2048


class KeyManagementError(Exception):
    """Raised when key material cannot be loaded, generated or persisted."""


# ─── Key material types ──────────────────────────────────


@dataclass(frozen=True)
class VerificationKey:
    """Verify-only view handed to TokenVerifier and JWKS consumers."""

    algorithm: str
    key: Union[bytes, str] = field(repr=False)
    kid: Optional[str] = None


@dataclass(frozen=True)
class AsymmetricKeys:
    private_pem: bytes = field(repr=False)
    public_pem: bytes
    kid: str
    algorithm: str = "RS256"

    @property
    def signing_key(self) -> bytes:
        return self.private_pem

    def verification(self) -> VerificationKey:
        return VerificationKey(self.algorithm, self.public_pem, self.kid)


@dataclass(frozen=True)
class SharedSecret:
    secret: str = field(repr=False)
    algorithm: str = "HS256"
    kid: Optional[str] = None

    @property
    def signing_key(self) -> str:
        return self.secret

    def verification(self) -> VerificationKey:
        return VerificationKey(self.algorithm, self.secret, None)


SigningKeys = Union[AsymmetricKeys, SharedSecret]


# ─── Persistence ─────────────────────────────────────────


class KeyStore(Protocol):
    def load(self) -> Optional[tuple[bytes, bytes]]: ...

    def save(self, private_pem: bytes, public_pem: bytes) -> None: ...


class FileKeyStore:
    """PEM files in a directory. Private key is written with mode 0600."""

    def __init__(self, keys_dir: Union[str, Path]):
        self.keys_dir = Path(keys_dir)

    @property
    def private_path(self) -> Path:
        return self.keys_dir / PRIVATE_KEY_FILE

    @property
    def public_path(self) -> Path:
        return self.keys_dir / PUBLIC_KEY_FILE

    def load(self) -> Optional[tuple[bytes, bytes]]:
        if not (self.private_path.exists() and self.public_path.exists()):
            return None
        return self.private_path.read_bytes(), self.public_path.read_bytes()

    def save(self, private_pem: bytes, public_pem: bytes) -> None:
        self.keys_dir.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.private_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(private_pem)
        self.public_path.write_bytes(public_pem)


# ─── Manager ─────────────────────────────────────────────


def key_id(public_pem: bytes) -> str:
    """Stable key id: first 16 hex chars of SHA-256 over the public PEM."""
    return hashlib.sha256(public_pem).hexdigest()[:16]


def generate_rsa_keypair() -> tuple[bytes, bytes]:
    """Generate a new RSA-2048 pair as (PKCS8 private PEM, SPKI public PEM)."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=RSA_KEY_SIZE)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_pem, public_pem


class KeyManager:
    """Owns the asymmetric pair: load if persisted, else generate + persist."""

    def __init__(self, store: KeyStore):
        self.store = store

    def load_or_create(self) -> AsymmetricKeys:
        loaded = self.store.load()
        if loaded is not None:
            private_pem, public_pem = loaded
            self._check_pair(private_pem, public_pem)
            kid = key_id(public_pem)
            logger.info("keys.loaded", kid=kid)
            return AsymmetricKeys(private_pem, public_pem, kid)

        private_pem, public_pem = generate_rsa_keypair()
        # Persist both halves before the pair is ever used to sign
        self.store.save(private_pem, public_pem)
        kid = key_id(public_pem)
        logger.info("keys.generated", kid=kid, key_size=RSA_KEY_SIZE)
        return AsymmetricKeys(private_pem, public_pem, kid)

    @staticmethod
    def _check_pair(private_pem: bytes, public_pem: bytes) -> None:
        try:
            private_key = serialization.load_pem_private_key(private_pem, password=None)
        except (ValueError, TypeError) as e:
            raise KeyManagementError(f"Persisted private key is unreadable: {e}") from e
        derived = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        if derived.strip() != public_pem.strip():
            raise KeyManagementError("Persisted public key does not match private key")


def build_signing_keys(
    settings: Settings, store: Optional[KeyStore] = None
) -> SigningKeys:
    """Resolve the configured signing mode into concrete key material."""
    if settings.key_mode == "shared_secret":
        logger.warning(
            "keys.shared_secret_mode",
            detail=(
                "HS256 shared secret configured: signing and verification use "
                "the same secret. Not suitable for production."
            ),
        )
        return SharedSecret(settings.jwt_secret)

    manager = KeyManager(store or FileKeyStore(settings.keys_dir))
    try:
        return manager.load_or_create()
    except OSError as e:
        if not settings.allow_shared_secret_fallback:
            raise KeyManagementError(
                f"Cannot persist signing keys in {settings.keys_dir!r}: {e}"
            ) from e
        logger.warning(
            "keys.shared_secret_fallback",
            error=str(e),
            detail=(
                "Key persistence unavailable; falling back to the HS256 shared "
                "secret because VAULTAUTH_ALLOW_SHARED_SECRET_FALLBACK is set. "
                "Not suitable for production."
            ),
        )
        return SharedSecret(settings.jwt_secret)


def jwks(verification: VerificationKey) -> dict:
    """JWKS document for the public key. Shared secrets are never published."""
    if verification.algorithm != "RS256":
        return {"keys": []}
    public_key = serialization.load_pem_public_key(verification.key)
    jwk = RSAAlgorithm.to_jwk(public_key, as_dict=True)
    jwk.update({"use": "sig", "alg": verification.algorithm, "kid": verification.kid})
    return {"keys": [jwk]}
