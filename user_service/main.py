"""FastAPI application wiring for the user service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.errors import install_error_handlers
from .api.routes import router as users_router
from .config import Settings, get_settings
from .domain.service import AccountService
from .domain.verification import VerificationService
from .mail import build_mailer
from .repository import AccountRepository
from .security.passwords import PasswordHasher
from .security.tokens import TokenIssuer

logger = logging.getLogger(__name__)

settings = get_settings()


def configure_services(app: FastAPI, pool: ConnectionPool, settings: Settings) -> None:
    """Build the token issuer, store and workflows and attach them to ``app.state``."""
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    tokens = TokenIssuer(
        settings.jwt_secret,
        issuer=settings.jwt_issuer,
        access_ttl_seconds=settings.access_ttl_seconds,
        refresh_ttl_seconds=settings.refresh_ttl_seconds,
    )
    mailer = build_mailer(settings.mail)
    repository = AccountRepository(pool, hasher)

    app.state.token_issuer = tokens
    app.state.account_service = AccountService(
        repository,
        tokens,
        hasher,
        mailer,
        frontend_url=settings.frontend_url,
        verification_required=settings.verification_required,
        strict_refresh_rotation=settings.strict_refresh_rotation,
    )
    app.state.verification_service = VerificationService(
        repository,
        tokens,
        mailer,
        frontend_url=settings.frontend_url,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, services) for the app lifecycle."""
    if settings.jwt_secret == "dev-secret-change-me":
        logger.warning("JWT_SECRET is not set, using the development signing key")
    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    configure_services(app, pool, settings)
    try:
        yield
    finally:
        pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)

install_error_handlers(app)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


app.include_router(users_router)


@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    """Expose Prometheus metrics for scrapes."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
