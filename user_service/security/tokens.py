"""Issuing and validating the service's signed tokens.

Four token kinds share one HS256 signing key:

* ``access`` and ``refresh`` carry the account id (``sub``) and role and expire
  through the standard ``exp`` claim.
* ``verify`` and ``reset`` carry only the email address. They have no ``exp``
  claim; their one-hour lifetime is tracked on the account record instead.

Every token embeds its kind, and :meth:`TokenIssuer.validate` rejects a token
presented where another kind is expected.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

import jwt

from ..domain.account import Role
from ..domain.errors import InvalidTokenError

SIDE_CHANNEL_TTL = timedelta(hours=1)
_ALGORITHM = "HS256"


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"
    VERIFY = "verify"
    RESET = "reset"


@dataclass(slots=True)
class TokenClaims:
    """Decoded claims of a validated token."""

    kind: TokenKind
    subject: str | None = None
    # Raw claim value; the access gate decides whether it names a known role.
    role: str | None = None
    email: str | None = None
    expires_at: datetime | None = None


@dataclass(slots=True)
class SideChannelToken:
    """A verify/reset token together with its externally tracked expiry."""

    token: str
    expires_at: datetime


@dataclass(slots=True)
class TokenPair:
    """Encapsulates the access/refresh token pair returned to API consumers."""

    access_token: str
    access_expires_in: int
    refresh_token: str
    refresh_expires_in: int


class TokenIssuer:
    """Creates and validates signed tokens with an injected secret and TTL policy."""

    def __init__(
        self,
        secret: str,
        *,
        issuer: str,
        access_ttl_seconds: int,
        refresh_ttl_seconds: int,
    ) -> None:
        if not secret:
            raise ValueError("token signing secret must not be empty")
        self._secret = secret
        self._issuer = issuer
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds

    def issue_access_token(self, account_id: str, role: Role) -> str:
        """Return a short-lived token authorising individual requests."""
        return self._issue_session_token(TokenKind.ACCESS, account_id, role, self.access_ttl_seconds)

    def issue_refresh_token(self, account_id: str, role: Role) -> str:
        """Return a long-lived token used to mint new session credentials."""
        return self._issue_session_token(TokenKind.REFRESH, account_id, role, self.refresh_ttl_seconds)

    def issue_pair(self, account_id: str, role: Role) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access_token(account_id, role),
            access_expires_in=self.access_ttl_seconds,
            refresh_token=self.issue_refresh_token(account_id, role),
            refresh_expires_in=self.refresh_ttl_seconds,
        )

    def issue_verify_token(self, email: str) -> SideChannelToken:
        return self._issue_side_channel_token(TokenKind.VERIFY, email)

    def issue_reset_token(self, email: str) -> SideChannelToken:
        return self._issue_side_channel_token(TokenKind.RESET, email)

    def validate(self, token: str, kind: TokenKind) -> TokenClaims:
        """Verify signature, issuer, expiry and kind of ``token``.

        Raises
        ------
        InvalidTokenError
            For any malformed, forged, expired or wrong-kind token.
        """
        required = ["iss", "kind"]
        if kind in (TokenKind.ACCESS, TokenKind.REFRESH):
            required += ["sub", "exp"]
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                issuer=self._issuer,
                options={"require": required},
            )
        except jwt.PyJWTError as exc:
            raise InvalidTokenError() from exc

        if payload.get("kind") != kind.value:
            raise InvalidTokenError()

        expires_at = None
        if "exp" in payload:
            expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
        return TokenClaims(
            kind=kind,
            subject=payload.get("sub"),
            role=payload.get("role"),
            email=payload.get("email"),
            expires_at=expires_at,
        )

    def _issue_session_token(self, kind: TokenKind, account_id: str, role: Role, ttl: int) -> str:
        now = int(time.time())
        payload: dict[str, Any] = {
            "iss": self._issuer,
            "kind": kind.value,
            "sub": account_id,
            "role": role.value,
            "iat": now,
            "exp": now + ttl,
            # two tokens minted in the same second must still differ
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def _issue_side_channel_token(self, kind: TokenKind, email: str) -> SideChannelToken:
        issued_at = datetime.now(timezone.utc)
        payload: dict[str, Any] = {
            "iss": self._issuer,
            "kind": kind.value,
            "email": email,
            "iat": int(issued_at.timestamp()),
            "jti": secrets.token_hex(8),
        }
        token = jwt.encode(payload, self._secret, algorithm=_ALGORITHM)
        return SideChannelToken(token=token, expires_at=issued_at + SIDE_CHANNEL_TTL)
