from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import inspect

from faucet.config import settings
from faucet.database import SessionLocal, engine
from faucet.logging_config import setup_logging
from faucet.middleware.logging import LoggingMiddleware
from faucet.middleware.rate_limit import limiter
from faucet.models.challenge import ChallengeSessionRow
from faucet.routers import challenges, info
from faucet.scheduler import shutdown_scheduler, start_scheduler
from faucet.services.captcha_service import CaptchaVerifier
from faucet.services.discord_service import send_error_alert
from faucet.services.session_store import SessionStoreError, SqlSessionStore, build_session_store
from faucet.services.transfer_client import RpcTransferClient

logger = structlog.get_logger()

# The sql session backend's table is managed by Alembic migrations
# Run: alembic upgrade head


def check_database_tables() -> None:
    """Fail fast when the sql backend runs against an unmigrated database."""
    table = ChallengeSessionRow.__tablename__
    if table not in inspect(engine).get_table_names():
        raise RuntimeError(
            f"Database table '{table}' is missing. Run 'alembic upgrade head' "
            "before starting the faucet with SESSION_BACKEND=sql."
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the store, relay client and captcha verifier; tear them down on exit."""
    setup_logging()

    store = build_session_store(
        settings.session_backend,
        redis_url=settings.redis_url,
        session_factory=SessionLocal,
    )
    if not settings.disable_challenges:
        if settings.session_backend == "sql":
            check_database_tables()
        store.ping()

    app.state.session_store = store
    app.state.transfer_client = RpcTransferClient.from_settings(settings)
    app.state.captcha_verifier = CaptchaVerifier.from_settings(settings)

    if isinstance(store, SqlSessionStore):
        start_scheduler(store)

    logger.info(
        "faucet_started",
        session_backend=settings.session_backend,
        challenges_enabled=not settings.disable_challenges,
        captcha_enabled=settings.enable_captcha,
    )
    try:
        yield
    finally:
        shutdown_scheduler()
        await app.state.transfer_client.aclose()
        if app.state.captcha_verifier is not None:
            await app.state.captcha_verifier.aclose()
        store.close()
        logger.info("faucet_stopped")


app = FastAPI(
    title="Faucet",
    description="Proof-of-work gated token faucet",
    version="0.1.0",
    lifespan=lifespan,
)


def _correlation_id() -> str | None:
    return structlog.contextvars.get_contextvars().get("correlation_id")


async def add_correlation_id_to_errors(request: Request, exc: Exception) -> JSONResponse:
    """Return 500 with the correlation ID and alert operators.

    Unhandled exceptions bypass LoggingMiddleware's response path, so the
    header is added here.
    """
    correlation_id = _correlation_id()

    if isinstance(exc, HTTPException):
        status_code, detail = exc.status_code, exc.detail
    else:
        status_code, detail = 500, "An error occurred"
        logger.error("unhandled_exception", error=str(exc), exc_info=exc)

    if status_code >= 500:
        await send_error_alert(
            error_type=type(exc).__name__,
            message=str(exc),
            path=request.url.path,
            correlation_id=correlation_id,
            status_code=status_code,
        )

    headers = {"X-Correlation-ID": correlation_id} if correlation_id else {}
    return JSONResponse(status_code=status_code, content={"detail": detail}, headers=headers)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    correlation_id = _correlation_id()
    await send_error_alert(
        error_type="Rate Limit Exceeded",
        message=f"Rate limit exceeded: {exc.detail}",
        path=request.url.path,
        correlation_id=correlation_id,
        status_code=429,
    )
    headers = {"Retry-After": "60"}
    if correlation_id:
        headers["X-Correlation-ID"] = correlation_id
    return JSONResponse(
        status_code=429,
        content={"detail": {"code": "rate_limited", "message": f"Rate limit exceeded: {exc.detail}"}},
        headers=headers,
    )


async def store_unavailable_handler(request: Request, exc: SessionStoreError) -> JSONResponse:
    logger.error("session_store_unavailable", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=503,
        content={
            "detail": {
                "code": "store_unavailable",
                "message": "Challenge storage is unavailable. Please retry.",
            }
        },
        headers={"Retry-After": "5"},
    )


# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(SessionStoreError, store_unavailable_handler)
app.add_exception_handler(Exception, add_correlation_id_to_errors)

app.add_middleware(LoggingMiddleware)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Origin", "X-Requested-With", "Content-Type", "Accept"],
    max_age=86400,
)

# Routers
app.include_router(challenges.router, prefix="/api/v1", tags=["challenges"])
app.include_router(info.router, prefix="/api/v1", tags=["info"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
