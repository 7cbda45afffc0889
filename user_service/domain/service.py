"""Account service orchestrating registration, sessions and admin actions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import urlencode

from .account import Account, Role
from .contracts import AccountFilter, CreateAccountInput, RegistrationInput
from .errors import (
    BlockedError,
    ConflictError,
    InvalidCredentialError,
    InvalidTokenError,
    MissingFieldError,
    NotFoundError,
    NotVerifiedError,
)
from ..mail import EmailKind, Mailer
from ..repository import AccountRepository
from ..security.passwords import PasswordHasher
from ..security.tokens import TokenIssuer, TokenKind, TokenPair

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RegistrationResult:
    account: Account
    email_sent: bool
    message: str


@dataclass(slots=True)
class LoginResult:
    account: Account
    tokens: TokenPair


def build_link(base_url: str, path: str, token: str) -> str:
    """Return the frontend URL carrying ``token`` as a query parameter."""
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}?{urlencode({'token': token})}"


class AccountService:
    """Registration, session lifecycle and admin workflows.

    ``is_active`` tracks whether the account currently holds a session: login
    sets it, logout clears it.
    """

    def __init__(
        self,
        repository: AccountRepository,
        tokens: TokenIssuer,
        hasher: PasswordHasher,
        mailer: Mailer,
        *,
        frontend_url: str,
        verification_required: bool = True,
        strict_refresh_rotation: bool = False,
    ) -> None:
        """Store dependencies used to orchestrate persistence and token issuance."""
        self._repository = repository
        self._tokens = tokens
        self._hasher = hasher
        self._mailer = mailer
        self._frontend_url = frontend_url
        self._verification_required = verification_required
        self._strict_refresh_rotation = strict_refresh_rotation

    def register(self, payload: RegistrationInput) -> RegistrationResult:
        """Create an account and, when verification is on, send the verify link.

        The email check and the insert are separate round trips; the store's
        unique index reports a lost race as :class:`ConflictError` as well.
        """
        for field, value in (("name", payload.name), ("email", payload.email), ("password", payload.password)):
            if not value:
                raise MissingFieldError(field)
        if self._repository.find_by_email(payload.email) is not None:
            raise ConflictError()

        if not self._verification_required:
            account = self._repository.create_account(
                CreateAccountInput(
                    name=payload.name,
                    email=payload.email,
                    password=payload.password,
                    role=payload.role,
                )
            )
            logger.info("account %s registered", account.account_id)
            return RegistrationResult(account, email_sent=False, message="User Created Successfully")

        verify = self._tokens.issue_verify_token(payload.email)
        account = self._repository.create_account(
            CreateAccountInput(
                name=payload.name,
                email=payload.email,
                password=payload.password,
                role=payload.role,
                verify_token=verify.token,
                verify_token_expiry=verify.expires_at,
            )
        )
        logger.info("account %s registered, verification pending", account.account_id)

        link = build_link(self._frontend_url, "verify", verify.token)
        email_sent = self._mailer.send_email(account.email, EmailKind.VERIFY, link)
        if not email_sent:
            logger.warning("verification email for account %s was not delivered", account.account_id)
            message = "User created, but verification email could not be sent"
        else:
            message = "User created, verification email sent"
        return RegistrationResult(account, email_sent=email_sent, message=message)

    def login(self, email: str, password: str) -> LoginResult:
        """Check credentials and account state, then open a session."""
        account = self._repository.find_by_email(email, include_password=True)
        if account is None:
            raise NotFoundError()
        if not account.password_hash or not self._hasher.verify(password, account.password_hash):
            raise InvalidCredentialError()
        if self._verification_required and not account.is_verified:
            raise NotVerifiedError()
        if account.is_blocked:
            raise BlockedError()

        tokens = self._tokens.issue_pair(account.account_id, account.role)
        updated = self._repository.update_account(
            account.account_id,
            {"refresh_token": tokens.refresh_token, "is_active": True},
        )
        if updated is None:
            raise NotFoundError()
        logger.info("account %s logged in", account.account_id)
        return LoginResult(account=updated, tokens=tokens)

    def refresh_tokens(self, refresh_token: str | None) -> TokenPair:
        """Exchange a refresh token for a new access/refresh pair.

        The new refresh token overwrites the stored one. Unless strict rotation
        is enabled, the presented token is not compared with the stored value,
        so any unexpired refresh token for the account is accepted.
        """
        if not refresh_token:
            raise MissingFieldError("refresh token")
        claims = self._tokens.validate(refresh_token, TokenKind.REFRESH)

        account = self._repository.get_account(claims.subject)
        if account is None:
            raise NotFoundError()
        if self._strict_refresh_rotation and account.refresh_token != refresh_token:
            logger.warning("superseded refresh token presented for account %s", account.account_id)
            raise InvalidTokenError()

        tokens = self._tokens.issue_pair(account.account_id, account.role)
        self._repository.update_account(account.account_id, {"refresh_token": tokens.refresh_token})
        return tokens

    def logout(self, account_id: str) -> Account:
        """Drop the stored refresh token and mark the account inactive."""
        account = self._repository.update_account(
            account_id, {"refresh_token": None, "is_active": False}
        )
        if account is None:
            raise NotFoundError()
        logger.info("account %s logged out", account_id)
        return account

    def set_blocked(self, account_id: str, blocked: bool) -> Account:
        if not account_id:
            raise MissingFieldError("id")
        account = self._repository.update_account(account_id, {"is_blocked": blocked})
        if account is None:
            raise NotFoundError()
        logger.info("account %s %s", account_id, "blocked" if blocked else "unblocked")
        return account

    def get_account(self, account_id: str) -> Account:
        account = self._repository.get_account(account_id)
        if account is None:
            raise NotFoundError()
        return account

    def list_users(self) -> list[Account]:
        return self._repository.list_by_role(Role.USER)

    def filter_users(self, account_filter: AccountFilter) -> list[Account]:
        return self._repository.query_accounts(account_filter)
