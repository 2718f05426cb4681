"""VaultAuth — token authentication and session lifecycle for Receipt Vault.

Issues paired access/refresh JWTs, verifies them, tracks per-device
sessions, revokes credentials on logout, and makes the request-time
authorization decision for every protected route.
"""

__version__ = "0.1.0"
