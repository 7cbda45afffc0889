"""Per-route authorisation based on the access token's signature and claims."""

# No postponed annotations here: FastAPI resolves them through __globals__,
# which an AccessGate instance does not have.
from dataclasses import dataclass
from typing import Iterable

from fastapi import Request

from ..domain.account import Role
from ..domain.errors import ForbiddenError, InvalidRoleError, UnauthenticatedError
from ..security.tokens import TokenIssuer, TokenKind

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


@dataclass(frozen=True, slots=True)
class Identity:
    """Caller identity decoded from a valid access token."""

    account_id: str
    role: Role


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value:
        return value.strip()
    return None


class AccessGate:
    """FastAPI dependency enforcing role membership on a route.

    The token is only checked for signature, expiry and claims; the account
    record is not consulted, so a blocked or logged-out account keeps access
    until its access token expires.
    """

    def __init__(self, allowed_roles: Iterable[Role], public_paths: Iterable[str] = ()) -> None:
        self._allowed = frozenset(allowed_roles)
        self._public_paths = frozenset(public_paths)

    def __call__(self, request: Request) -> Identity | None:
        if request.url.path in self._public_paths:
            return None

        token = request.cookies.get(ACCESS_COOKIE) or _bearer_token(request)
        if not token:
            raise UnauthenticatedError()

        issuer: TokenIssuer = request.app.state.token_issuer
        claims = issuer.validate(token, TokenKind.ACCESS)

        try:
            role = Role(claims.role)
        except ValueError:
            raise InvalidRoleError() from None
        if role not in self._allowed:
            raise ForbiddenError(f"{role.value.capitalize()} can not access this resource")

        identity = Identity(account_id=claims.subject, role=role)
        request.state.identity = identity
        return identity


require_user = AccessGate([Role.USER, Role.ADMIN])
require_admin = AccessGate([Role.ADMIN])
