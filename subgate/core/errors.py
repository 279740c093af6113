from __future__ import annotations

from typing import Any


class SubgateError(Exception):
    """Base error for subgate; carries the HTTP status and stable client code."""

    status_code: int = 500
    code: str = "SERVER_FAULT"
    message: str = "Server error"

    def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None) -> None:
        self.message = message or self.message
        self.details = details
        super().__init__(self.message)


class AccessDenied(SubgateError):
    """Authorization pipeline failure; terminal at the request boundary."""


class InvalidCredentials(AccessDenied):
    """Unknown email or wrong password (deliberately indistinguishable)."""

    status_code = 401
    code = "INVALID_CREDENTIALS"
    message = "Invalid credentials"


class NotAuthenticated(AccessDenied):
    """Missing, malformed or expired session token, or a deleted identity."""

    status_code = 401
    code = "NOT_AUTHENTICATED"
    message = "Not authenticated"


class AccountSuspended(AccessDenied):
    status_code = 403
    code = "ACCOUNT_SUSPENDED"
    message = "Account suspended. Please contact admin to continue."


class NoSubscription(AccessDenied):
    status_code = 403
    code = "NO_SUBSCRIPTION"
    message = "No active subscription. Please contact admin to subscribe."


class SubscriptionExpired(AccessDenied):
    status_code = 403
    code = "SUBSCRIPTION_EXPIRED"
    message = "Your subscription has expired. Please renew to continue."


class NotAuthorized(AccessDenied):
    """Authenticated, but the role does not permit the operation."""

    status_code = 403
    code = "NOT_AUTHORIZED"
    message = "Admin access required"


class NotFound(SubgateError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Resource not found"


class ValidationFailed(SubgateError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Invalid request"


class DuplicateEmail(ValidationFailed):
    code = "EMAIL_EXISTS"
    message = "Email already exists"


class Conflict(SubgateError):
    status_code = 409
    code = "CONFLICT"
    message = "Conflicting state"


class ServerFault(SubgateError):
    """Configuration or persistence failure."""


class ConfigurationError(ServerFault):
    """Missing or invalid process configuration; fatal at startup."""


class InvalidToken(SubgateError):
    """Session token failed signature, structure or expiry validation."""

    status_code = 401
    code = "NOT_AUTHENTICATED"
    message = "Invalid token"
