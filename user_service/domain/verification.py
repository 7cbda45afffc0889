"""Single-use email verification and password reset workflows."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from .account import Account
from .errors import ExpiredTokenError, MissingFieldError, NotFoundError
from .service import build_link
from ..mail import EmailKind, Mailer
from ..repository import AccountRepository
from ..security.tokens import TokenIssuer

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ResetIssued:
    """Outcome of a forgot-password request.

    The raw token is handed back to the HTTP caller as well as emailed.
    """

    token: str
    expires_at: datetime
    email_sent: bool


def _is_expired(expiry: datetime | None, now: datetime) -> bool:
    return expiry is None or now > expiry


class VerificationService:
    """Issues and redeems verify/reset tokens stored on the account record."""

    def __init__(
        self,
        repository: AccountRepository,
        tokens: TokenIssuer,
        mailer: Mailer,
        *,
        frontend_url: str,
    ) -> None:
        self._repository = repository
        self._tokens = tokens
        self._mailer = mailer
        self._frontend_url = frontend_url

    def verify_account(self, token: str | None, password: str | None) -> Account:
        """Mark the account verified and set its password.

        The verification link alone proves identity here: the password chosen
        at registration is replaced by ``password``.
        """
        if not token:
            raise MissingFieldError("token")
        if not password:
            raise MissingFieldError("password")

        account = self._repository.find_by_verify_token(token)
        if account is None:
            raise NotFoundError("Invalid or already used verification token")
        if _is_expired(account.verify_token_expiry, datetime.now(timezone.utc)):
            raise ExpiredTokenError("Verification token has expired")

        updated = self._repository.replace_password(
            account.account_id,
            password,
            {"is_verified": True, "verify_token": "", "verify_token_expiry": None},
        )
        if updated is None:
            raise NotFoundError()
        logger.info("account %s verified", account.account_id)
        return updated

    def forgot_password(self, email: str | None) -> ResetIssued:
        """Issue a reset token, replacing any outstanding one, and email the link."""
        if not email:
            raise MissingFieldError("email")
        account = self._repository.find_by_email(email)
        if account is None:
            raise NotFoundError()

        reset = self._tokens.issue_reset_token(account.email)
        updated = self._repository.update_account(
            account.account_id,
            {
                "forgot_password_token": reset.token,
                "forgot_password_token_expiry": reset.expires_at,
            },
        )
        if updated is None:
            raise NotFoundError()
        link = build_link(self._frontend_url, "reset-password", reset.token)
        email_sent = self._mailer.send_email(account.email, EmailKind.FORGETPASSWORD, link)
        if not email_sent:
            logger.warning("password reset email for account %s was not delivered", account.account_id)
        logger.info("password reset issued for account %s", account.account_id)
        return ResetIssued(token=reset.token, expires_at=reset.expires_at, email_sent=email_sent)

    def update_password(self, token: str | None, password: str | None) -> Account:
        """Redeem a reset token and store the new password."""
        if not token:
            raise MissingFieldError("token")
        if not password:
            raise MissingFieldError("password")

        account = self._repository.find_by_reset_token(token)
        if account is None:
            raise NotFoundError("Invalid or already used reset token")
        if _is_expired(account.forgot_password_token_expiry, datetime.now(timezone.utc)):
            raise ExpiredTokenError("Reset token has expired")

        updated = self._repository.replace_password(
            account.account_id,
            password,
            {"forgot_password_token": "", "forgot_password_token_expiry": None},
        )
        if updated is None:
            raise NotFoundError()
        logger.info("password reset completed for account %s", account.account_id)
        return updated

    def resend_email(self, email: str | None, email_type: EmailKind, url: str | None = None) -> bool:
        """Send ``email_type`` to ``email`` with a caller-supplied link.

        No token is regenerated; callers needing a fresh token must request one.
        """
        if not email:
            raise MissingFieldError("email")
        return self._mailer.send_email(email, email_type, url)
