"""
api/main.py -- FastAPI application entry point for the AssetMIS auth service.

Exposes registration, the login / MFA state machine, session management and
first-run setup over HTTP under the /api prefix.

Install deps:  pip install -e .
Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost). Each registration wraps everything
registered before it, so the list below is the reverse of source order:
  1. log_requests           -- method, path, status, latency, client
  2. setup_gate             -- 409 setup_required until the first user exists
  3. refresh_session_cookie -- re-sends the session cookie (sliding expiry)
  4. SlowAPIMiddleware      -- enforces per-route rate limits from api.limiter
  5. CORSMiddleware         -- adds CORS headers for allowed browser origins
  6. TrustedHostMiddleware  -- rejects requests with unexpected Host headers

Lifespan handles startup (stores, service, purge task) and shutdown (cancel
purge task, close DB connections) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.admin import router as admin_router
from api.routes.auth import router as auth_router
from api.routes.mfa import router as mfa_router
from api.routes.roles import router as roles_router
from api.routes.setup import router as setup_router
from auth.audit import AuthEventLog
from auth.dependencies import require_verified_user
from auth.errors import AuthError, TooManyAttempts
from auth.models import User
from auth.roles import RoleRegistry
from auth.service import AuthService
from auth.sessions import SessionStore, set_session_cookie
from auth.store import UserStore
from auth.throttle import FailureThrottle
from core.config import get_settings

VERSION = "1.0.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if _settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("assetmis.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Purge expired sessions and enrollment tickets every hour.

    Expired rows are already ignored on lookup; this only keeps the tables
    small. CancelledError from task.cancel() during shutdown propagates out
    of asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(60 * 60)
        app.state.session_store.purge_expired()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def build_service(app: FastAPI, user_store: UserStore, session_store: SessionStore) -> None:
    """Wire the auth components onto app.state. Shared by lifespan and the test fixtures."""
    app.state.user_store = user_store
    app.state.session_store = session_store
    app.state.roles = RoleRegistry()
    app.state.audit = AuthEventLog()
    app.state.throttle = FailureThrottle(
        max_failures=_settings.max_failed_attempts,
        base_seconds=_settings.lockout_base_seconds,
        max_seconds=_settings.lockout_max_seconds,
    )
    app.state.auth_service = AuthService(
        users=user_store,
        sessions=session_store,
        roles=app.state.roles,
        throttle=app.state.throttle,
    )
    app.state.setup_required = not user_store.has_users()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The purge task is started last because it references
    app.state.session_store.
    """
    logger.info("AssetMIS auth API starting up")
    build_service(app, UserStore(), SessionStore())
    app.state.session_store.purge_expired()
    logger.info("Auth initialized (setup_required=%s)", app.state.setup_required)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.session_store.close()
    app.state.user_store.close()
    logger.info("AssetMIS auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AssetMIS Auth API",
    description="Local accounts, mandatory TOTP MFA and server-side sessions for AssetMIS.",
    version=VERSION,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced by session-protected routes below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Each add_middleware() call wraps the ones before it, so a request meets
# SlowAPI, then CORS, then TrustedHost. The @app.middleware("http") functions
# further down wrap all of these.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Session cookie refresh
#
# try_get_current_user() leaves the raw id on request.state.session_id after
# sliding the server-side expiry. Re-send the cookie so the browser's max_age
# moves with it, unless the route already wrote (or cleared) the cookie.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def refresh_session_cookie(request: Request, call_next):
    response = await call_next(request)
    session_id = getattr(request.state, "session_id", None)
    if session_id:
        prefix = f"{_settings.session_cookie_name}="
        if not any(v.startswith(prefix) for v in response.headers.getlist("set-cookie")):
            set_session_cookie(response, session_id)
    return response


# ---------------------------------------------------------------------------
# Setup gate
#
# Until the first user exists every /api/* path except setup and health
# answers 409 so the client can route to its first-run screen.
# ---------------------------------------------------------------------------

_SETUP_EXEMPT = ("/api/setup", "/api/health")


@app.middleware("http")
async def setup_gate(request: Request, call_next):
    """Refuse API calls while no users exist (first-run state).

    The setup_required flag is set in lifespan and cleared by POST
    /api/setup/admin. It is an in-memory flag, not re-checked on every request
    to avoid a DB call on every hit. POST /api/setup/admin re-checks at the DB
    level to guard against two concurrent first-run requests.
    """
    path = request.url.path
    if getattr(request.app.state, "setup_required", False) and path.startswith("/api/"):
        if not path.startswith(_SETUP_EXEMPT):
            return JSONResponse(
                status_code=409,
                content=ErrorResponse(message="Initial setup is required", code="setup_required").model_dump(
                    by_alias=True, exclude_none=True
                ),
            )
    return await call_next(request)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Wall-clock time before and after call_next gives the latency.
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

app.include_router(setup_router, prefix="/api", tags=["Setup"])
app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(mfa_router, prefix="/api", tags=["MFA"])
app.include_router(admin_router, prefix="/api", tags=["Admin"])
app.include_router(roles_router, prefix="/api", tags=["Roles"])


# ---------------------------------------------------------------------------
# Session-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(require_verified_user)):
    """Swagger UI -- requires a verified session."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="AssetMIS Auth API")


@app.get("/redoc", include_in_schema=False)
async def redoc(user: User = Depends(require_verified_user)):
    """ReDoc UI -- requires a verified session."""
    return get_redoc_html(openapi_url="/openapi.json", title="AssetMIS Auth API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same {"message", "code"} envelope so API clients
# can parse errors uniformly without inspecting status codes.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str, code: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(message=message, code=code, detail=detail).model_dump(by_alias=True, exclude_none=True),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render any auth/errors.py failure with its own status and code."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    response = _error(exc.status_code, exc.message, exc.code)
    if isinstance(exc, TooManyAttempts):
        response.headers["Retry-After"] = str(exc.retry_after)
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a per-IP rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "Too many requests.", "rate_limited", str(exc.detail))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies are client errors like any other: 400, not FastAPI's default 422."""
    return _error(400, "Request validation failed.", "validation_error", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Unknown routes, wrong methods and any stray HTTPException get the same envelope."""
    return _error(exc.status_code, str(exc.detail), f"http_{exc.status_code}")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "An unexpected error occurred.", "internal_error")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable.
# Exempt from the setup gate and not rate limited.
# ---------------------------------------------------------------------------


@app.get("/api/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, current version and whether the user database answers."""
    try:
        request.app.state.user_store.count_users()
        database = "ok"
    except SQLAlchemyError:
        logger.exception("Health check could not reach the user database")
        database = "error"
    status = "healthy" if database == "ok" else "degraded"
    return HealthResponse(status=status, version=VERSION, components={"app": "ok", "database": database})
