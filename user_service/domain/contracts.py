"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .account import Role


@dataclass(slots=True)
class CreateAccountInput:
    """Validated inputs required to persist a new account.

    ``password`` is the raw password; the repository hashes it as part of the insert.
    """

    name: str
    email: str
    password: str
    role: Role = Role.USER
    verify_token: str = ""
    verify_token_expiry: datetime | None = None


@dataclass(slots=True)
class RegistrationInput:
    """Payload accepted by the registration workflow."""

    name: str
    email: str
    password: str
    role: Role = Role.USER


@dataclass(frozen=True)
class AccountFilter:
    """Admin query over accounts.

    Membership sets restrict a flag to the given values, e.g. ``is_active=frozenset({True})``.
    ``None`` leaves the dimension unconstrained.
    """

    role: Role | None = Role.USER
    created_after: datetime | None = None
    created_before: datetime | None = None
    is_active: frozenset[bool] | None = None
    is_verified: frozenset[bool] | None = None
    is_kyc_completed: frozenset[bool] | None = None
    limit: int = 100

    MAX_LIMIT = 500

    def __post_init__(self) -> None:
        if (
            self.created_after is not None
            and self.created_before is not None
            and self.created_after > self.created_before
        ):
            raise ValueError("created_after must not be later than created_before")
        object.__setattr__(self, "limit", max(1, min(self.limit, self.MAX_LIMIT)))
