from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Mapping
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from user_service.api import routes
from user_service.api.errors import install_error_handlers
from user_service.domain.account import Account, Role
from user_service.domain.contracts import AccountFilter, CreateAccountInput
from user_service.domain.errors import ConflictError
from user_service.domain.service import AccountService
from user_service.domain.verification import VerificationService
from user_service.mail import EmailKind
from user_service.repository import check_changes
from user_service.security.passwords import PasswordHasher
from user_service.security.throttle import AttemptThrottle
from user_service.security.tokens import TokenIssuer

FRONTEND_URL = "http://frontend.test"


def _filter_matches(account_filter: AccountFilter, account: Account) -> bool:
    if account_filter.role is not None and account.role != account_filter.role:
        return False
    if account_filter.created_after is not None and account.created_at < account_filter.created_after:
        return False
    if account_filter.created_before is not None and account.created_at > account_filter.created_before:
        return False
    for field_name in ("is_active", "is_verified", "is_kyc_completed"):
        allowed = getattr(account_filter, field_name)
        if allowed is not None and getattr(account, field_name) not in allowed:
            return False
    return True


class FakeRepository:
    """In-memory repository mimicking the Postgres-backed account store."""

    def __init__(self, hasher: PasswordHasher) -> None:
        self._hasher = hasher
        self._accounts: dict[str, Account] = {}

    def _public(self, account: Account, include_password: bool = False) -> Account:
        if include_password:
            return replace(account)
        return replace(account, password_hash=None)

    def create_account(self, payload: CreateAccountInput) -> Account:
        if any(a.email == payload.email for a in self._accounts.values()):
            raise ConflictError()
        now = datetime.now(timezone.utc)
        account = Account(
            account_id=str(uuid.uuid4()),
            name=payload.name,
            email=payload.email,
            created_at=now,
            updated_at=now,
            role=payload.role,
            verify_token=payload.verify_token,
            verify_token_expiry=payload.verify_token_expiry,
            password_hash=self._hasher.hash(payload.password),
        )
        self._accounts[account.account_id] = account
        return self._public(account)

    def get_account(self, account_id: str, *, include_password: bool = False):
        account = self._accounts.get(account_id)
        return self._public(account, include_password) if account else None

    def find_by_email(self, email: str, *, include_password: bool = False):
        for account in self._accounts.values():
            if account.email == email:
                return self._public(account, include_password)
        return None

    def find_by_verify_token(self, token: str):
        for account in self._accounts.values():
            if token and account.verify_token == token:
                return self._public(account)
        return None

    def find_by_reset_token(self, token: str):
        for account in self._accounts.values():
            if token and account.forgot_password_token == token:
                return self._public(account)
        return None

    def list_by_role(self, role: Role = Role.USER) -> list[Account]:
        return [self._public(a) for a in self._accounts.values() if a.role == role]

    def update_account(self, account_id: str, changes: Mapping[str, Any]):
        return self._apply(account_id, check_changes(changes))

    def replace_password(self, account_id: str, password: str, changes: Mapping[str, Any] | None = None):
        columns = check_changes(changes or {})
        columns["password_hash"] = self._hasher.hash(password)
        return self._apply(account_id, columns)

    def query_accounts(self, account_filter: AccountFilter) -> list[Account]:
        matches = [a for a in self._accounts.values() if _filter_matches(account_filter, a)]
        matches.sort(key=lambda a: a.created_at, reverse=True)
        return [self._public(a) for a in matches[: account_filter.limit]]

    def _apply(self, account_id: str, columns: dict[str, Any]):
        account = self._accounts.get(account_id)
        if account is None:
            return None
        for name, value in columns.items():
            setattr(account, name, Role(value) if name == "role" else value)
        account.updated_at = datetime.now(timezone.utc)
        return self._public(account)

    # test helpers

    def raw(self, account_id: str) -> Account:
        return self._accounts[account_id]


class RecordingMailer:
    """Mailer double capturing every send; ``succeed`` controls the reported outcome."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, EmailKind, str | None]] = []
        self.succeed = True

    def send_email(self, address: str, kind: EmailKind, link: str | None = None) -> bool:
        self.sent.append((address, kind, link))
        return self.succeed

    def last_token(self) -> str:
        _, _, link = self.sent[-1]
        return parse_qs(urlparse(link).query)["token"][0]


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def token_issuer() -> TokenIssuer:
    return TokenIssuer(
        "test-secret",
        issuer="user-service-test",
        access_ttl_seconds=300,
        refresh_ttl_seconds=3600,
    )


@pytest.fixture
def repository(hasher) -> FakeRepository:
    return FakeRepository(hasher)


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def account_service(repository, token_issuer, hasher, mailer) -> AccountService:
    return AccountService(repository, token_issuer, hasher, mailer, frontend_url=FRONTEND_URL)


@pytest.fixture
def verification_service(repository, token_issuer, mailer) -> VerificationService:
    return VerificationService(repository, token_issuer, mailer, frontend_url=FRONTEND_URL)


@pytest.fixture
def make_account(repository):
    """Create an account directly in the store, verified unless told otherwise."""

    def _make(email: str, password: str = "secret-pw", *, role: Role = Role.USER, **flags) -> Account:
        account = repository.create_account(
            CreateAccountInput(name=email.split("@")[0], email=email, password=password, role=role)
        )
        flags.setdefault("is_verified", True)
        return repository.update_account(account.account_id, flags)

    return _make


@pytest.fixture
def api_client(account_service, verification_service, token_issuer):
    """Provide a FastAPI test client with isolated state."""
    app = FastAPI()
    install_error_handlers(app)
    app.include_router(routes.router)
    app.state.token_issuer = token_issuer
    app.state.account_service = account_service
    app.state.verification_service = verification_service

    original_throttle = routes.throttle
    routes.throttle = AttemptThrottle(max_attempts=3, window_seconds=60)

    with TestClient(app) as client:
        yield client

    routes.throttle = original_throttle
