"""
api/main.py -- FastAPI application entry point for ContractPortal.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the auth core (stores, engines, service) from Settings and
starts the OTP purge task; shutdown cancels and awaits the task and releases the pool
and the database connections symmetrically.

Error envelope: every 4xx/5xx body is {"error": {"code", "message", "detail"}}.
AuthError kinds carry their own code and status; see auth/errors.py.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.contracts import router as contracts_router
from api.routes.v1.permissions import router as permissions_router
from api.routes.v1.users import router as users_router
from auth.credentials import CredentialStore
from auth.dependencies import SessionGuard
from auth.errors import AuthError
from auth.otp import LogOTPSender, OTPChallengeEngine, OTPSender, OTPStore
from auth.permissions import PermissionEngine
from auth.service import AuthService
from auth.store import SqlOTPStore, UserStore
from auth.tokens import TokenIssuer
from contracts.store import ContractStore
from core.config import Settings, get_settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("contractportal.api")


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def configure_state(
    app: FastAPI,
    settings: Settings,
    user_store: UserStore,
    contract_store: ContractStore,
    otp_store: OTPStore | None = None,
    sender: OTPSender | None = None,
) -> None:
    """Build the auth core on top of the given stores and attach it to app.state.

    Shared by the real lifespan and the test fixtures so both run the same
    objects; only the stores (and optionally the OTP sender) differ.
    """
    credentials = CredentialStore(user_store, rounds=settings.bcrypt_rounds, workers=settings.hash_workers)
    otp_engine = OTPChallengeEngine(
        otp_store if otp_store is not None else SqlOTPStore(user_store.engine),
        ttl_seconds=settings.otp_expire_seconds,
        length=settings.otp_length,
        retention_seconds=settings.otp_retention_seconds,
    )
    tokens = TokenIssuer(settings.secret_key, default_ttl_seconds=settings.token_expire_seconds)

    app.state.user_store = user_store
    app.state.contract_store = contract_store
    app.state.credential_store = credentials
    app.state.otp_engine = otp_engine
    app.state.token_issuer = tokens
    app.state.session_guard = SessionGuard(tokens)
    app.state.permission_engine = PermissionEngine(user_store)
    app.state.auth_service = AuthService(
        user_store,
        credentials,
        otp_engine,
        tokens,
        sender if sender is not None else LogOTPSender(),
    )


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Evict expired OTP challenges every `interval` seconds.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        removed = app.state.otp_engine.purge_expired()
        if removed:
            logger.info("Purged %d expired OTP challenges", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    settings = get_settings()
    logger.info("ContractPortal API starting up")
    user_store = UserStore(settings.database_url)
    contract_store = ContractStore(engine=user_store.engine)
    configure_state(app, settings, user_store, contract_store)
    logger.info("Auth core initialized (admins=%d)", user_store.count_active_admins())
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.otp_purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    with suppress(asyncio.CancelledError):
        await app.state.purge_task
    app.state.credential_store.close()
    user_store.close()
    logger.info("ContractPortal API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="ContractPortal API",
    description="Identity, credential and access control for the contract-management portal.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=["localhost", "127.0.0.1", "*.localhost", "testserver"],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:5173", "http://127.0.0.1"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(permissions_router, prefix="/api/v1", tags=["Permissions"])
app.include_router(contracts_router, prefix="/api/v1", tags=["Contracts"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render an AuthError kind with its own status and code.

    401 responses advertise the Bearer scheme. detail is only included for
    non-credential errors; token failure reasons stay in the server log.
    """
    detail = None if exc.status_code == 401 else exc.detail
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message, detail=detail)).model_dump(),
    )
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    response.headers["Cache-Control"] = "no-store"  # [M5]
    if exc.status_code >= 500:
        logger.error("%s on %s %s", exc.code, request.method, request.url.path, exc_info=exc)
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=__version__)
