"""Outbound account emails (verification, password reset, KYC reminders)."""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from enum import Enum
from typing import Protocol

from .config import MailSettings

logger = logging.getLogger(__name__)


class EmailKind(str, Enum):
    VERIFY = "VERIFY"
    FORGETPASSWORD = "FORGETPASSWORD"
    KYC = "KYC"


_TEMPLATES: dict[EmailKind, tuple[str, str]] = {
    EmailKind.VERIFY: (
        "Verify your Account",
        "<p>Hi, this is a verification email. Please click here to verify your account: {link}</p>",
    ),
    EmailKind.FORGETPASSWORD: (
        "Change Password of your Account",
        "<p>Hi, this is an email to change your password. Please click here to change your password: {link}</p>",
    ),
    EmailKind.KYC: (
        "Complete Kyc of your Account",
        "<p>Hi, this is an email to complete the KYC of your account: {link}</p>",
    ),
}


class Mailer(Protocol):
    def send_email(self, address: str, kind: EmailKind, link: str | None = None) -> bool: ...


def render_email(kind: EmailKind, link: str | None) -> tuple[str, str]:
    """Return ``(subject, html)`` for ``kind``; the body is empty when no link is given."""
    subject, template = _TEMPLATES[kind]
    html = template.format(link=link) if link else ""
    return subject, html


class SmtpMailer:
    """Delivers account emails over SMTP. Failures are reported, never raised."""

    def __init__(self, settings: MailSettings, *, timeout_seconds: float = 15.0) -> None:
        self._settings = settings
        self._timeout = timeout_seconds

    def _build_message(self, address: str, kind: EmailKind, link: str | None) -> EmailMessage:
        subject, html = render_email(kind, link)
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["To"] = address
        if self._settings.sender:
            msg["From"] = self._settings.sender
        msg.set_content(link or "")
        if html:
            msg.add_alternative(html, subtype="html")
        return msg

    def send_email(self, address: str, kind: EmailKind, link: str | None = None) -> bool:
        cfg = self._settings
        try:
            msg = self._build_message(address, kind, link)
            context = ssl.create_default_context()
            if cfg.use_tls:
                with smtplib.SMTP(cfg.host, cfg.port, timeout=self._timeout) as server:
                    server.ehlo()
                    server.starttls(context=context)
                    server.ehlo()
                    if cfg.username and cfg.password:
                        server.login(cfg.username, cfg.password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP_SSL(cfg.host, cfg.port, context=context, timeout=self._timeout) as server:
                    if cfg.username and cfg.password:
                        server.login(cfg.username, cfg.password)
                    server.send_message(msg)
        except Exception as exc:
            logger.warning("%s email to %s failed: %s", kind.value, address, exc)
            return False
        logger.info("%s email sent to %s", kind.value, address)
        return True


class LoggingMailer:
    """Development mailer used when no SMTP host is configured."""

    def send_email(self, address: str, kind: EmailKind, link: str | None = None) -> bool:
        subject, _ = render_email(kind, link)
        logger.info("mail transport disabled; would send %r to %s", subject, address)
        logger.debug("undelivered %s link: %s", kind.value, link)
        return True


def build_mailer(settings: MailSettings) -> Mailer:
    if not settings.host:
        logger.warning("MAIL_HOST not set, account emails will only be logged")
        return LoggingMailer()
    return SmtpMailer(settings)
