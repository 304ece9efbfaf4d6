"""FastAPI application wiring for the account service."""

from __future__ import annotations

import logging
import re
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.routes import router as v1_router
from .config import Settings, get_settings
from .domain.service import AccountService
from .domain.store import AccountStore, InMemoryAccountStore
from .repository import PostgresAccountStore
from .security.passwords import PasswordHasher
from .security.rate_limiter import build_rate_limiter
from .security.tokens import SessionTokenIssuer

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)


def build_account_service(
    settings: Settings, store: AccountStore, tokens: SessionTokenIssuer
) -> AccountService:
    """Assemble an ``AccountService`` from configuration and an already opened store."""
    return AccountService(
        store,
        PasswordHasher(rounds=settings.bcrypt_rounds),
        tokens,
        email_pattern=re.compile(settings.email_regex),
        password_pattern=re.compile(settings.password_regex),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (store, service, limiters) for the app lifecycle."""
    pool = None
    if settings.store_backend == "postgres":
        pool = ConnectionPool(settings.database_url, open=False)
        pool.open()
        pg_store = PostgresAccountStore(pool)
        pg_store.ensure_schema()
        store: AccountStore = pg_store
    else:
        store = InMemoryAccountStore()
    logger.info("account store backend: %s", settings.store_backend)

    tokens = SessionTokenIssuer.from_settings(settings)
    app.state.token_issuer = tokens
    app.state.account_service = build_account_service(settings, store, tokens)
    app.state.registration_limiter = build_rate_limiter(
        settings, settings.rate_limit_requests, "accounts:create"
    )
    app.state.login_limiter = build_rate_limiter(
        settings, settings.login_max_failures, "accounts:login"
    )
    try:
        yield
    finally:
        if pool is not None:
            pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics", tags=["health"])
def metrics() -> Response:
    """Expose Prometheus counters for scraping."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(v1_router)
