"""Domain failures surfaced by the account workflows."""

from __future__ import annotations


class AccountError(Exception):
    """Base error; ``message`` is safe to show to API callers."""

    default_message = "account operation failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ConflictError(AccountError):
    default_message = "User already exists"


class NotFoundError(AccountError):
    default_message = "User not found"


class MissingFieldError(AccountError):
    """Raised when a required input is absent or empty."""

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"{field} is required")


class ExpiredTokenError(AccountError):
    default_message = "Token has expired"


class AuthenticationError(AccountError):
    """Failures the HTTP boundary reports as 401."""


class InvalidCredentialError(AuthenticationError):
    default_message = "Invalid password"


class NotVerifiedError(AuthenticationError):
    default_message = "User is not verified"


class BlockedError(AuthenticationError):
    default_message = "User is blocked"


class InvalidTokenError(AuthenticationError):
    default_message = "Invalid token"


class UnauthenticatedError(AuthenticationError):
    default_message = "Invalid token"


class InvalidRoleError(AuthenticationError):
    default_message = "Invalid user role"


class ForbiddenError(AuthenticationError):
    default_message = "Access to this resource is forbidden"
