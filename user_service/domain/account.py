from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    ADMIN = "ADMIN"
    USER = "USER"


@dataclass(slots=True)
class Account:
    """Aggregate root for a registered user and its session/side-channel state."""

    account_id: str
    name: str
    email: str
    created_at: datetime
    updated_at: datetime
    role: Role = Role.USER
    is_active: bool = False
    is_blocked: bool = False
    is_verified: bool = False
    is_kyc_completed: bool = False
    is_2fa_enabled: bool = False
    refresh_token: str | None = None
    verify_token: str = ""
    verify_token_expiry: datetime | None = None
    forgot_password_token: str = ""
    forgot_password_token_expiry: datetime | None = None
    # Only loaded when the store is asked for credentials.
    password_hash: str | None = None
