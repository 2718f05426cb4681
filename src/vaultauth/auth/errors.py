"""Auth failures and their wire shape.

Every rejection produced by the core renders as

    {"error": "Unauthorized" | "Forbidden", "message": str, "statusCode": 401 | 403}

401 means "who are you" (no, bad, revoked or orphaned credentials);
403 means "known, but not permitted". `reason` is an internal code for
logs and tests and is never serialized.
"""

from typing import Any

# Internal reason codes
MISSING_CREDENTIALS = "missing_credentials"
REVOKED = "revoked"
INVALID_TOKEN = "invalid_token"
SESSION_NOT_FOUND = "session_not_found"
PRINCIPAL_NOT_FOUND = "principal_not_found"
DEPENDENCY_UNAVAILABLE = "dependency_unavailable"
INSUFFICIENT_ROLE = "insufficient_role"
CSRF_FAILED = "csrf_failed"


class AuthError(Exception):
    def __init__(self, status_code: int, message: str, reason: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.reason = reason

    @property
    def error(self) -> str:
        return "Unauthorized" if self.status_code == 401 else "Forbidden"

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.error,
            "message": self.message,
            "statusCode": self.status_code,
        }


def unauthorized(message: str, reason: str) -> AuthError:
    return AuthError(401, message, reason)


def forbidden(message: str, reason: str) -> AuthError:
    return AuthError(403, message, reason)


class InvalidCredentials(Exception):
    """Login failed. One message for every cause."""

    def __init__(self):
        super().__init__("Invalid email or password")
