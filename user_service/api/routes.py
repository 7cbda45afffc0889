"""HTTP route definitions for the user service."""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Cookie, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, EmailStr

from .gate import ACCESS_COOKIE, REFRESH_COOKIE, Identity, require_admin, require_user
from ..config import get_settings
from ..domain.account import Account, Role
from ..domain.contracts import AccountFilter, RegistrationInput
from ..domain.service import AccountService
from ..domain.verification import VerificationService
from ..mail import EmailKind
from ..security.throttle import build_throttle
from ..security.tokens import TokenPair

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/users", tags=["users"])


class AccountResponse(BaseModel):
    """Serialised `Account` without credentials or token fields."""

    account_id: str
    name: str
    email: str
    role: Role
    is_active: bool
    is_blocked: bool
    is_verified: bool
    is_kyc_completed: bool
    is_2fa_enabled: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, account: Account) -> "AccountResponse":
        """Build a response model from the domain aggregate."""
        return cls(
            account_id=account.account_id,
            name=account.name,
            email=account.email,
            role=account.role,
            is_active=account.is_active,
            is_blocked=account.is_blocked,
            is_verified=account.is_verified,
            is_kyc_completed=account.is_kyc_completed,
            is_2fa_enabled=account.is_2fa_enabled,
            created_at=account.created_at,
            updated_at=account.updated_at,
        )


class AccountEnvelope(BaseModel):
    message: str
    account: AccountResponse


class AccountListResponse(BaseModel):
    message: str
    items: list[AccountResponse]


class RegisterRequest(BaseModel):
    """Payload accepted when registering an account."""

    name: str
    email: EmailStr
    password: str
    role: Role = Role.USER


class RegisterResponse(BaseModel):
    message: str
    account: AccountResponse
    email_sent: bool


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    """Session credentials; the same values are also set as cookies."""

    message: str
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_token: str
    refresh_expires_in: int


class RefreshTokenRequest(BaseModel):
    """Optional body for clients that cannot send the refresh cookie."""

    refresh_token: str | None = None


class BlockRequest(BaseModel):
    blocked: bool = True


class VerifyAccountRequest(BaseModel):
    token: str | None = None
    password: str | None = None


class ForgotPasswordRequest(BaseModel):
    email: EmailStr | None = None


class ForgotPasswordResponse(BaseModel):
    message: str
    reset_token: str
    email_sent: bool


class UpdatePasswordRequest(BaseModel):
    token: str | None = None
    password: str | None = None


class ResendEmailRequest(BaseModel):
    email: EmailStr | None = None
    email_type: EmailKind
    url: str | None = None


class ResendEmailResponse(BaseModel):
    message: str
    sent: bool


settings = get_settings()

throttle = build_throttle(
    backend=settings.rate_limit_backend,
    redis_url=settings.redis_url,
    max_attempts=settings.rate_limit_requests,
    window_seconds=settings.rate_limit_window_seconds,
)


def _check_throttle(key: str) -> None:
    if not throttle.allow(key):
        logger.warning("throttled request for key %s", key.split(":", 1)[0])
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="rate limited")


def get_service(request: Request) -> AccountService:
    """Resolve the `AccountService` stored on the FastAPI application state."""
    service: AccountService = request.app.state.account_service
    return service


def get_verification(request: Request) -> VerificationService:
    service: VerificationService = request.app.state.verification_service
    return service


def _set_session_cookies(response: Response, tokens: TokenPair) -> None:
    for name, value, max_age in (
        (ACCESS_COOKIE, tokens.access_token, tokens.access_expires_in),
        (REFRESH_COOKIE, tokens.refresh_token, tokens.refresh_expires_in),
    ):
        response.set_cookie(
            name,
            value,
            max_age=max_age,
            httponly=True,
            secure=settings.cookie_secure,
            samesite="lax",
        )


def _token_response(message: str, tokens: TokenPair) -> TokenResponse:
    return TokenResponse(
        message=message,
        access_token=tokens.access_token,
        expires_in=tokens.access_expires_in,
        refresh_token=tokens.refresh_token,
        refresh_expires_in=tokens.refresh_expires_in,
    )


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    service: AccountService = Depends(get_service),
) -> RegisterResponse:
    """Create an account; the verification email outcome is reported, not enforced."""
    _check_throttle(f"register:{payload.email}")
    result = service.register(
        RegistrationInput(
            name=payload.name,
            email=payload.email,
            password=payload.password,
            role=payload.role,
        )
    )
    return RegisterResponse(
        message=result.message,
        account=AccountResponse.from_domain(result.account),
        email_sent=result.email_sent,
    )


@router.post("/login", response_model=TokenResponse)
def login(
    payload: LoginRequest,
    response: Response,
    service: AccountService = Depends(get_service),
) -> TokenResponse:
    """Authenticate with email and password and open a session."""
    _check_throttle(f"login:{payload.email}")
    result = service.login(payload.email, payload.password)
    _set_session_cookies(response, result.tokens)
    return _token_response("Login Successfully", result.tokens)


@router.post("/refresh", response_model=TokenResponse)
def refresh(
    response: Response,
    payload: RefreshTokenRequest | None = None,
    refresh_cookie: str | None = Cookie(default=None, alias=REFRESH_COOKIE),
    service: AccountService = Depends(get_service),
) -> TokenResponse:
    """Rotate the session credentials using the refresh cookie (or body)."""
    presented = refresh_cookie or (payload.refresh_token if payload else None)
    tokens = service.refresh_tokens(presented)
    _set_session_cookies(response, tokens)
    return _token_response("Tokens Refreshed Successfully", tokens)


@router.patch("/logout", response_model=AccountEnvelope)
def logout(
    response: Response,
    identity: Identity = Depends(require_user),
    service: AccountService = Depends(get_service),
) -> AccountEnvelope:
    account = service.logout(identity.account_id)
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE)
    return AccountEnvelope(message="Logout Successfully", account=AccountResponse.from_domain(account))


@router.get("/me", response_model=AccountEnvelope)
def me(
    identity: Identity = Depends(require_user),
    service: AccountService = Depends(get_service),
) -> AccountEnvelope:
    account = service.get_account(identity.account_id)
    return AccountEnvelope(message="User Fetched Successfully", account=AccountResponse.from_domain(account))


@router.get("/all", response_model=AccountListResponse)
def list_users(
    _: Identity = Depends(require_admin),
    service: AccountService = Depends(get_service),
) -> AccountListResponse:
    """Return every account holding the USER role."""
    items = [AccountResponse.from_domain(account) for account in service.list_users()]
    return AccountListResponse(message="Users Fetched Successfully", items=items)


@router.get("/filter", response_model=AccountListResponse)
def filter_users(
    role: Role | None = Query(default=Role.USER),
    created_after: datetime | None = Query(default=None),
    created_before: datetime | None = Query(default=None),
    is_active: list[bool] | None = Query(default=None),
    is_verified: list[bool] | None = Query(default=None),
    is_kyc_completed: list[bool] | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=AccountFilter.MAX_LIMIT),
    _: Identity = Depends(require_admin),
    service: AccountService = Depends(get_service),
) -> AccountListResponse:
    """Return accounts matching the creation-date range and flag membership filters."""
    try:
        account_filter = AccountFilter(
            role=role,
            created_after=created_after,
            created_before=created_before,
            is_active=frozenset(is_active) if is_active else None,
            is_verified=frozenset(is_verified) if is_verified else None,
            is_kyc_completed=frozenset(is_kyc_completed) if is_kyc_completed else None,
            limit=limit,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    items = [AccountResponse.from_domain(account) for account in service.filter_users(account_filter)]
    return AccountListResponse(message="Users Fetched Successfully", items=items)


@router.patch("/{account_id}/block", response_model=AccountEnvelope)
def block_user(
    account_id: str,
    payload: BlockRequest,
    _: Identity = Depends(require_admin),
    service: AccountService = Depends(get_service),
) -> AccountEnvelope:
    account = service.set_blocked(account_id, payload.blocked)
    message = "User Blocked Successfully" if payload.blocked else "User Unblocked Successfully"
    return AccountEnvelope(message=message, account=AccountResponse.from_domain(account))


@router.post("/verify", response_model=AccountEnvelope)
def verify_account(
    payload: VerifyAccountRequest,
    verification: VerificationService = Depends(get_verification),
) -> AccountEnvelope:
    account = verification.verify_account(payload.token, payload.password)
    return AccountEnvelope(message="User Verified Successfully", account=AccountResponse.from_domain(account))


@router.post("/forgot-password", response_model=ForgotPasswordResponse)
def forgot_password(
    payload: ForgotPasswordRequest,
    verification: VerificationService = Depends(get_verification),
) -> ForgotPasswordResponse:
    """Issue a password reset token; it is returned here and emailed."""
    if payload.email:
        _check_throttle(f"forgot:{payload.email}")
    issued = verification.forgot_password(payload.email)
    message = "Reset password email sent" if issued.email_sent else "Reset token issued, but email could not be sent"
    return ForgotPasswordResponse(message=message, reset_token=issued.token, email_sent=issued.email_sent)


@router.post("/update-password", response_model=AccountEnvelope)
def update_password(
    payload: UpdatePasswordRequest,
    verification: VerificationService = Depends(get_verification),
) -> AccountEnvelope:
    account = verification.update_password(payload.token, payload.password)
    return AccountEnvelope(message="Password Updated Successfully", account=AccountResponse.from_domain(account))


@router.post("/resend-email", response_model=ResendEmailResponse)
def resend_email(
    payload: ResendEmailRequest,
    verification: VerificationService = Depends(get_verification),
) -> ResendEmailResponse:
    if payload.email:
        _check_throttle(f"resend:{payload.email}")
    sent = verification.resend_email(payload.email, payload.email_type, payload.url)
    message = "Email sent successfully" if sent else "Email could not be sent"
    return ResendEmailResponse(message=message, sent=sent)

