"""Translation of domain failures into HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from prometheus_client import Counter

from ..domain.errors import AccountError, AuthenticationError, ConflictError, NotFoundError

logger = logging.getLogger(__name__)

ACCOUNT_ERRORS = Counter(
    "user_service_account_errors_total",
    "Domain failures returned to API callers, by error type.",
    ["error"],
)

_STATUS_BY_ERROR: tuple[tuple[type[AccountError], int], ...] = (
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
)


def status_for(exc: AccountError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST


def install_error_handlers(app: FastAPI) -> None:
    """Register handlers mapping the account error taxonomy onto status codes."""

    @app.exception_handler(AccountError)
    async def handle_account_error(request: Request, exc: AccountError) -> JSONResponse:
        status_code = status_for(exc)
        ACCOUNT_ERRORS.labels(error=type(exc).__name__).inc()
        if status_code == status.HTTP_401_UNAUTHORIZED:
            logger.info("rejected %s %s: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=status_code, content={"detail": exc.message})

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "internal error"},
        )
