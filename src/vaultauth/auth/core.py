"""Wiring for the auth core.

Learn: One AuthCore per app instance, built in the lifespan and stored
on app.state. Everything that touches key material or the TTL store is
constructed here, so the private key reaches the issuer and nothing else.
"""

from dataclasses import dataclass
from typing import Optional

from vaultauth.auth.csrf import CsrfCoordinator
from vaultauth.auth.directory import PrincipalDirectory
from vaultauth.auth.gate import AuthorizationGate
from vaultauth.auth.keys import SigningKeys, VerificationKey
from vaultauth.auth.revocation import RevocationStore
from vaultauth.auth.service import AuthService
from vaultauth.auth.sessions import SessionRegistry
from vaultauth.auth.tokens import TokenIssuer, TokenVerifier
from vaultauth.config import Settings
from vaultauth.store.base import TTLStore


@dataclass
class AuthCore:
    settings: Settings
    store: TTLStore
    directory: PrincipalDirectory
    verification: VerificationKey
    verifier: TokenVerifier
    revocations: RevocationStore
    sessions: SessionRegistry
    gate: AuthorizationGate
    service: AuthService
    csrf: CsrfCoordinator

    @property
    def key_mode(self) -> str:
        return "asymmetric" if self.verification.algorithm == "RS256" else "shared_secret"

    @classmethod
    def build(
        cls,
        settings: Settings,
        keys: SigningKeys,
        store: TTLStore,
        directory: PrincipalDirectory,
        issuer: Optional[TokenIssuer] = None,
    ) -> "AuthCore":
        verification = keys.verification()
        issuer = issuer or TokenIssuer(keys, settings)
        verifier = TokenVerifier(verification, settings)
        revocations = RevocationStore(store, settings)
        sessions = SessionRegistry(store, revocations)
        gate = AuthorizationGate(verifier, revocations, sessions, directory, settings)
        service = AuthService(
            issuer, verifier, revocations, sessions, directory, settings
        )
        return cls(
            settings=settings,
            store=store,
            directory=directory,
            verification=verification,
            verifier=verifier,
            revocations=revocations,
            sessions=sessions,
            gate=gate,
            service=service,
            csrf=CsrfCoordinator(store, settings),
        )
