"""FastAPI application entry point.

Deployment Requirements:
- Binds to PORT from environment variable
- Health endpoints at /health, /health/db and /health/scheduler
- Graceful shutdown with SIGTERM handling
- All logs to stdout

Error Logging Requirements:
- Log all incoming requests with method, path, request_id
- Log request body at DEBUG level (secrets redacted, emails masked)
- Log response status and timing for every request
- Return structured error responses: {"error": str, "code": str, "request_id": str}
- Log 4xx errors at WARNING, 5xx at ERROR
"""

import json
import logging
import signal
import time
import uuid
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from merchgen.api.v1 import router as api_v1_router
from merchgen.core.config import DEFAULT_MAGIC_LINK_SECRET, Settings, get_settings
from merchgen.core.database import db_manager, session_scope
from merchgen.core.logging import get_logger, mask_email, setup_logging
from merchgen.core.scheduler import scheduler_manager
from merchgen.integrations.brandfetch import close_brandfetch, init_brandfetch
from merchgen.integrations.email import close_email_client, get_email_client
from merchgen.integrations.firecrawl import close_firecrawl, init_firecrawl
from merchgen.integrations.gemini import close_gemini, init_gemini
from merchgen.integrations.s3 import close_s3, init_s3
from merchgen.services.catalog import seed_default_products
from merchgen.services.recovery import run_recovery_sweep_job

setup_logging()
logger = get_logger(__name__)

RECOVERY_JOB_ID = "recovery_sweep"
REQUEST_ID_HEADER = "X-Request-ID"

REDACTED_FIELDS = {"password", "token", "secret", "api_key", "authorization"}
EMAIL_FIELDS = {"email", "recipient"}


def sanitize_body(body: Any) -> Any:
    """Copy of a JSON body safe to log: secrets redacted, addresses masked."""
    if isinstance(body, list):
        return [sanitize_body(item) for item in body]
    if not isinstance(body, dict):
        return body
    sanitized: dict[str, Any] = {}
    for key, value in body.items():
        lowered = key.lower()
        if lowered in REDACTED_FIELDS:
            sanitized[key] = "****"
        elif lowered in EMAIL_FIELDS and isinstance(value, str):
            sanitized[key] = mask_email(value)
        else:
            sanitized[key] = sanitize_body(value)
    return sanitized


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Assigns a request_id and logs each request with status and timing."""

    async def _log_body(self, request: Request, request_id: str) -> None:
        body = await request.body()
        if not body:
            return
        try:
            payload = sanitize_body(json.loads(body))
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.debug(
                "Request body (non-JSON)",
                extra={"request_id": request_id, "body_length": len(body)},
            )
            return
        logger.debug("Request body", extra={"request_id": request_id, "body": payload})

    async def dispatch(self, request: Request, call_next: Any) -> Any:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        start_time = time.monotonic()
        log_extra: dict[str, Any] = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
        }

        logger.info("Request started", extra=log_extra)
        if request.method not in ("GET", "HEAD", "OPTIONS") and logger.isEnabledFor(
            logging.DEBUG
        ):
            await self._log_body(request, request_id)

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id

        log_extra["status_code"] = response.status_code
        log_extra["duration_ms"] = round((time.monotonic() - start_time) * 1000, 2)
        if response.status_code >= 500:
            logger.error("Request failed", extra=log_extra)
        elif response.status_code >= 400:
            logger.warning("Request error", extra=log_extra)
        else:
            logger.info("Request completed", extra=log_extra)
        return response


def warn_insecure_defaults(settings: Settings) -> bool:
    """Warn when a deployed environment still signs links with the built-in secret."""
    if settings.environment == "development":
        return False
    if settings.magic_link_secret != DEFAULT_MAGIC_LINK_SECRET:
        return False
    logger.warning(
        "MAGIC_LINK_SECRET is the built-in default; session links can be forged",
        extra={"setting": "magic_link_secret"},
    )
    return True


async def _seed_catalog() -> None:
    """Insert the default product catalog into an empty products table."""
    try:
        async with session_scope() as session:
            inserted = await seed_default_products(session)
    except Exception as e:
        logger.error(
            "Failed to seed default products",
            extra={"error_type": type(e).__name__, "error_message": str(e)},
            exc_info=True,
        )
        return
    if inserted:
        logger.info("Seeded default products", extra={"count": inserted})


async def _init_integrations() -> None:
    """Create the shared clients; unconfigured ones degrade, never block startup."""
    clients = {
        "brandfetch": (await init_brandfetch(), "BRANDFETCH_API_KEY"),
        "firecrawl": (await init_firecrawl(), "FIRECRAWL_API_KEY"),
        "gemini": (await init_gemini(), "GEMINI_API_KEY"),
        "s3": (await init_s3(), "S3_BUCKET / S3_ACCESS_KEY / S3_SECRET_KEY"),
        "smtp": (get_email_client(), "SMTP_HOST"),
    }
    missing = {name: env for name, (client, env) in clients.items() if not client.available}
    for name, env in missing.items():
        logger.warning(
            f"{name} not configured",
            extra={"integration": name, "missing_setting": env},
        )
    logger.info(
        "Integrations ready",
        extra={"configured": sorted(set(clients) - set(missing))},
    )


SHUTDOWN_HOOKS: tuple[Callable[[], Awaitable[None]], ...] = (
    close_brandfetch,
    close_firecrawl,
    close_gemini,
    close_s3,
    close_email_client,
)


def _start_scheduler() -> None:
    """Start the scheduler and register the recovery sweep."""
    settings = get_settings()
    if not scheduler_manager.start():
        logger.info("Recovery sweep not scheduled (scheduler disabled or failed)")
        return

    job_id = scheduler_manager.add_job(
        run_recovery_sweep_job,
        trigger="interval",
        id=RECOVERY_JOB_ID,
        name="Abandoned session recovery",
        minutes=settings.recovery_interval_minutes,
    )
    logger.info(
        "Recovery sweep scheduled",
        extra={
            "job_id": job_id,
            "interval_minutes": settings.recovery_interval_minutes,
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    """Startup: database, catalog, clients, scheduler. Shutdown in reverse."""
    settings = get_settings()
    logger.info(
        "Starting application",
        extra={
            "app_name": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
        },
    )

    warn_insecure_defaults(settings)
    db_manager.init_db()
    if settings.seed_default_products:
        await _seed_catalog()
    await _init_integrations()
    _start_scheduler()

    def handle_sigterm(*args: Any) -> None:
        logger.info("Received SIGTERM, initiating graceful shutdown")

    # Signal handlers can only be installed from the main thread
    try:
        signal.signal(signal.SIGTERM, handle_sigterm)
    except ValueError:
        logger.debug("Signal handling not available outside the main thread")

    yield

    logger.info("Shutting down application")
    # Running sweeps finish before their clients close
    scheduler_manager.stop(wait=True)
    for close in SHUTDOWN_HOOKS:
        await close()
    await db_manager.close()
    logger.info("Application shutdown complete")


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """422 VALIDATION_ERROR with every failing field in one message."""
    request_id = _request_id(request)
    errors = exc.errors()
    logger.warning(
        "Validation error",
        extra={"request_id": request_id, "errors": str(errors)},
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "; ".join(
                f"{'.'.join(str(loc) for loc in e['loc'])}: {e['msg']}" for e in errors
            ),
            "code": "VALIDATION_ERROR",
            "request_id": request_id,
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = _request_id(request)
    logger.error(
        "Unhandled exception",
        extra={
            "request_id": request_id,
            "error_type": type(exc).__name__,
            "error_message": str(exc),
        },
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "An internal error occurred. Please try again later.",
            "code": "INTERNAL_ERROR",
            "request_id": request_id,
        },
    )


def _add_health_routes(app: FastAPI) -> None:
    @app.get("/health", tags=["Health"])
    async def health_check() -> dict[str, str]:
        """Liveness check."""
        return {"status": "ok"}

    @app.get("/health/db", tags=["Health"])
    async def database_health() -> dict[str, str | bool]:
        is_healthy = await db_manager.check_connection()
        return {"status": "ok" if is_healthy else "error", "database": is_healthy}

    @app.get("/health/scheduler", tags=["Health"])
    async def scheduler_health() -> dict[str, Any]:
        return scheduler_manager.check_health()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # Middleware added last runs outermost, so CORS wraps request logging
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url] if settings.frontend_url else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)

    _add_health_routes(app)
    app.include_router(api_v1_router, prefix="/api/v1")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "merchgen.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
