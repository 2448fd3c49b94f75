"""Cron API endpoints.

Externally triggered maintenance jobs:
- POST /api/v1/cron/recovery - Run the abandoned-session recovery sweep
- GET /api/v1/cron/recovery - Same, for schedulers that can only issue GET

Requests must carry "Authorization: Bearer <CRON_SECRET>".

Error Logging Requirements:
- Log all incoming requests with method, path, request_id
- Log rejected authorization at WARNING (never log the supplied secret)
- Return structured error responses: {"error": str, "code": str, "request_id": str}
"""

import hmac

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from merchgen.core.config import get_settings
from merchgen.core.database import get_session
from merchgen.core.logging import get_logger
from merchgen.integrations.email import get_email_client
from merchgen.schemas.recovery import RecoverySweepResponse
from merchgen.services.recovery import RecoveryService

logger = get_logger(__name__)

router = APIRouter()


def _get_request_id(request: Request) -> str:
    """Get request_id from request state."""
    return getattr(request.state, "request_id", "unknown")


def is_authorized(authorization: str | None, secret: str | None) -> bool:
    """Constant-time check of a bearer header against the cron secret."""
    if not secret or not authorization:
        return False
    return hmac.compare_digest(
        authorization.encode("utf-8"), f"Bearer {secret}".encode("utf-8")
    )


async def get_recovery_service(
    session: AsyncSession = Depends(get_session),
) -> RecoveryService:
    """Dependency for RecoveryService with the global email client."""
    return RecoveryService(session, get_email_client())


@router.api_route(
    "/recovery",
    methods=["GET", "POST"],
    response_model=RecoverySweepResponse,
    summary="Run the recovery sweep",
    description="Email a fresh magic link to owners of sessions stalled at concept or motif.",
)
async def run_recovery(
    request: Request,
    authorization: str | None = Header(default=None),
    service: RecoveryService = Depends(get_recovery_service),
) -> RecoverySweepResponse | JSONResponse:
    """Run one recovery sweep."""
    request_id = _get_request_id(request)

    if not is_authorized(authorization, get_settings().cron_secret):
        logger.warning(
            "Unauthorized cron request",
            extra={
                "request_id": request_id,
                "has_authorization": authorization is not None,
            },
        )
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={
                "error": "Unauthorized",
                "code": "UNAUTHORIZED",
                "request_id": request_id,
            },
        )

    summary = await service.run_sweep()
    return RecoverySweepResponse(
        found=summary.found,
        sent=summary.sent,
        failed=summary.failed,
        skipped=summary.skipped,
        duration_ms=round(summary.duration_ms, 2),
        message=f"Sent {summary.sent} recovery emails",
    )
