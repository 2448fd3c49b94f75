"""Sessions API endpoints.

Session lifecycle and pipeline stage triggers:
- POST /api/v1/sessions - Create a session (idempotent per email + url)
- GET /api/v1/sessions/{session_id} - Get a session, optionally checking a magic-link token
- PATCH /api/v1/sessions/{session_id} - Edit brand data or the contact email
- POST /api/v1/sessions/{session_id}/scrape - Run the scrape stage
- POST /api/v1/sessions/{session_id}/concept - Run the concept stage
- POST /api/v1/sessions/{session_id}/motif - Run the motif stage
- POST /api/v1/sessions/{session_id}/products - Run the products stage
- POST /api/v1/sessions/{session_id}/process - Resume the pipeline in the background

Error Logging Requirements:
- Log all incoming requests with method, path, request_id
- Log request body at DEBUG level (sanitize sensitive fields)
- Return structured error responses: {"error": str, "code": str, "request_id": str}
- Log 4xx errors at WARNING, 5xx at ERROR
- Never log magic-link tokens
"""

from collections.abc import Awaitable, Callable

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from merchgen.core.database import get_session
from merchgen.core.logging import get_logger, mask_email
from merchgen.integrations.email import get_email_client
from merchgen.repositories.session import ApplyResult, SessionVersionConflictError
from merchgen.schemas.session import (
    ProcessAcceptedResponse,
    SessionCreateRequest,
    SessionCreateResponse,
    SessionPatchRequest,
    SessionResponse,
    StageRequest,
    StageResponse,
)
from merchgen.services.pipeline import (
    STAGE_CONCEPT,
    PreconditionError,
    SessionPipeline,
    StageExecutionError,
    create_pipeline,
    resume_point,
    resume_session_pipeline,
    run_session_pipeline,
)
from merchgen.services.session import (
    InvalidTokenError,
    SessionNotFoundError,
    SessionService,
    SessionValidationError,
)

logger = get_logger(__name__)

router = APIRouter()


def _get_request_id(request: Request) -> str:
    """Get request_id from request state."""
    return getattr(request.state, "request_id", "unknown")


def _error(status_code: int, error: str, code: str, request_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "code": code, "request_id": request_id},
    )


async def get_session_service(
    session: AsyncSession = Depends(get_session),
) -> SessionService:
    """Dependency for SessionService with the global email client."""
    return SessionService(session, get_email_client())


async def get_pipeline(session: AsyncSession = Depends(get_session)) -> SessionPipeline:
    """Dependency for a SessionPipeline bound to the request's DB session."""
    return await create_pipeline(session)


@router.post(
    "",
    response_model=SessionCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a session",
    description="Create a session for a website, or return the existing one for the same email and URL.",
    responses={200: {"description": "Existing session returned"}},
)
async def create_session(
    request: Request,
    data: SessionCreateRequest,
    background_tasks: BackgroundTasks,
    service: SessionService = Depends(get_session_service),
) -> SessionCreateResponse | JSONResponse:
    """Create a session and start the pipeline for new sessions."""
    request_id = _get_request_id(request)
    logger.debug(
        "Create session request",
        extra={
            "request_id": request_id,
            "email": mask_email(data.email),
            "url": data.url,
        },
    )

    try:
        result = await service.create_session(data.email, data.url)
    except SessionValidationError as e:
        logger.warning(
            "Session validation error",
            extra={"request_id": request_id, "field": e.field, "error_message": e.message},
        )
        return _error(status.HTTP_400_BAD_REQUEST, str(e), "VALIDATION_ERROR", request_id)

    merch_session = result.session
    if result.created:
        background_tasks.add_task(run_session_pipeline, merch_session.id)
        return SessionCreateResponse(
            id=merch_session.id,
            status=merch_session.status_enum,
            created=True,
            message="Session created successfully. Check your email for the magic link!",
        )

    body = SessionCreateResponse(
        id=merch_session.id,
        status=merch_session.status_enum,
        created=False,
        message="A session for this email and URL already exists.",
    )
    return JSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump(mode="json"))


@router.get(
    "/{session_id}",
    response_model=SessionResponse,
    summary="Get a session",
    description="Retrieve a session. When a token is supplied it must be a valid magic link for this session.",
)
async def get_session_by_id(
    request: Request,
    session_id: str,
    token: str | None = Query(default=None, description="Magic-link token"),
    service: SessionService = Depends(get_session_service),
) -> SessionResponse | JSONResponse:
    """Get a session by ID."""
    request_id = _get_request_id(request)
    logger.debug(
        "Get session request",
        extra={
            "request_id": request_id,
            "session_id": session_id,
            "has_token": token is not None,
        },
    )

    try:
        merch_session = await service.get_session(session_id, token)
    except SessionNotFoundError as e:
        logger.warning(
            "Session not found",
            extra={"request_id": request_id, "session_id": session_id},
        )
        return _error(status.HTTP_404_NOT_FOUND, str(e), "NOT_FOUND", request_id)
    except InvalidTokenError as e:
        logger.warning(
            "Session token rejected",
            extra={"request_id": request_id, "session_id": session_id},
        )
        return _error(status.HTTP_401_UNAUTHORIZED, str(e), "INVALID_TOKEN", request_id)

    return SessionResponse.model_validate(merch_session)


@router.patch(
    "/{session_id}",
    response_model=SessionResponse,
    summary="Update a session",
    description="Apply brand review edits and/or change the contact email.",
)
async def patch_session(
    request: Request,
    session_id: str,
    data: SessionPatchRequest,
    background_tasks: BackgroundTasks,
    service: SessionService = Depends(get_session_service),
) -> SessionResponse | JSONResponse:
    """Patch scraped data or email; resumes the pipeline once review is complete."""
    request_id = _get_request_id(request)
    logger.debug(
        "Patch session request",
        extra={
            "request_id": request_id,
            "session_id": session_id,
            "fields": sorted(data.model_dump(exclude_unset=True)),
        },
    )

    try:
        merch_session = await service.patch_session(
            session_id,
            scraped_data=data.scraped_data,
            email=data.email,
            send_notification=data.send_notification,
        )
    except SessionNotFoundError as e:
        logger.warning(
            "Session not found",
            extra={"request_id": request_id, "session_id": session_id},
        )
        return _error(status.HTTP_404_NOT_FOUND, str(e), "NOT_FOUND", request_id)
    except SessionValidationError as e:
        logger.warning(
            "Session validation error",
            extra={
                "request_id": request_id,
                "session_id": session_id,
                "field": e.field,
                "value": e.value,
                "error_message": e.message,
            },
        )
        return _error(status.HTTP_400_BAD_REQUEST, str(e), "VALIDATION_ERROR", request_id)
    except SessionVersionConflictError as e:
        logger.warning(
            "Session update conflict",
            extra={"request_id": request_id, "session_id": session_id},
        )
        return _error(status.HTTP_409_CONFLICT, str(e), "CONFLICT", request_id)

    if data.scraped_data is not None and resume_point(merch_session) == STAGE_CONCEPT:
        logger.info(
            "Brand review complete, resuming pipeline",
            extra={"request_id": request_id, "session_id": session_id},
        )
        background_tasks.add_task(resume_session_pipeline, session_id)

    return SessionResponse.model_validate(merch_session)


async def _run_stage(
    request: Request,
    session_id: str,
    stage: str,
    operation: Callable[[], Awaitable[ApplyResult]],
) -> ApplyResult | JSONResponse:
    """Run one stage and translate pipeline errors into responses."""
    request_id = _get_request_id(request)
    logger.debug(
        "Stage request",
        extra={"request_id": request_id, "session_id": session_id, "stage": stage},
    )

    try:
        return await operation()
    except SessionNotFoundError as e:
        logger.warning(
            "Session not found",
            extra={"request_id": request_id, "session_id": session_id},
        )
        return _error(status.HTTP_404_NOT_FOUND, str(e), "NOT_FOUND", request_id)
    except PreconditionError as e:
        logger.warning(
            "Stage precondition failed",
            extra={
                "request_id": request_id,
                "session_id": session_id,
                "stage": stage,
                "missing": e.missing,
            },
        )
        return _error(
            status.HTTP_400_BAD_REQUEST, str(e), "PRECONDITION_FAILED", request_id
        )
    except SessionVersionConflictError as e:
        logger.warning(
            "Stage write conflict",
            extra={"request_id": request_id, "session_id": session_id, "stage": stage},
        )
        return _error(status.HTTP_409_CONFLICT, str(e), "CONFLICT", request_id)
    except StageExecutionError as e:
        logger.error(
            "Stage failed",
            extra={
                "request_id": request_id,
                "session_id": session_id,
                "stage": stage,
                "error_message": e.message,
            },
        )
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            str(e),
            "PROCESSING_FAILED",
            request_id,
        )


def _stage_response(result: ApplyResult) -> StageResponse:
    return StageResponse(
        session=SessionResponse.model_validate(result.session),
        advanced=result.advanced,
    )


@router.post(
    "/{session_id}/scrape",
    response_model=StageResponse,
    summary="Run the scrape stage",
    description="Fetch brand metadata and site content, then continue automatically when no manual input is needed.",
)
async def scrape_session(
    request: Request,
    session_id: str,
    background_tasks: BackgroundTasks,
    pipeline: SessionPipeline = Depends(get_pipeline),
) -> StageResponse | JSONResponse:
    """Run the scrape stage."""
    result = await _run_stage(
        request, session_id, "scrape", lambda: pipeline.run_scrape(session_id)
    )
    if isinstance(result, JSONResponse):
        return result

    if resume_point(result.session) == STAGE_CONCEPT:
        background_tasks.add_task(resume_session_pipeline, session_id)
    return _stage_response(result)


@router.post(
    "/{session_id}/concept",
    response_model=StageResponse,
    summary="Run the concept stage",
    description="Generate the merchandise concept. Set regenerate to diverge from the previous one.",
)
async def concept_session(
    request: Request,
    session_id: str,
    data: StageRequest | None = None,
    pipeline: SessionPipeline = Depends(get_pipeline),
) -> StageResponse | JSONResponse:
    """Run the concept stage."""
    regenerate = data.regenerate if data else False
    result = await _run_stage(
        request,
        session_id,
        "concept",
        lambda: pipeline.run_concept(session_id, regenerate=regenerate),
    )
    if isinstance(result, JSONResponse):
        return result
    return _stage_response(result)


@router.post(
    "/{session_id}/motif",
    response_model=StageResponse,
    summary="Run the motif stage",
    description="Generate the motif description and artwork. Set regenerate to diverge from the previous one.",
)
async def motif_session(
    request: Request,
    session_id: str,
    data: StageRequest | None = None,
    pipeline: SessionPipeline = Depends(get_pipeline),
) -> StageResponse | JSONResponse:
    """Run the motif stage."""
    regenerate = data.regenerate if data else False
    result = await _run_stage(
        request,
        session_id,
        "motif",
        lambda: pipeline.run_motif(session_id, regenerate=regenerate),
    )
    if isinstance(result, JSONResponse):
        return result
    return _stage_response(result)


@router.post(
    "/{session_id}/products",
    response_model=StageResponse,
    summary="Run the products stage",
    description="Build product mockups for the active catalog and complete the session.",
)
async def products_session(
    request: Request,
    session_id: str,
    pipeline: SessionPipeline = Depends(get_pipeline),
) -> StageResponse | JSONResponse:
    """Run the products stage."""
    result = await _run_stage(
        request, session_id, "products", lambda: pipeline.run_products(session_id)
    )
    if isinstance(result, JSONResponse):
        return result
    return _stage_response(result)


@router.post(
    "/{session_id}/process",
    response_model=ProcessAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Resume the pipeline",
    description="Continue the session from its persisted state in the background.",
)
async def process_session(
    request: Request,
    session_id: str,
    background_tasks: BackgroundTasks,
    service: SessionService = Depends(get_session_service),
) -> ProcessAcceptedResponse | JSONResponse:
    """Schedule the orchestrator for a session."""
    request_id = _get_request_id(request)
    try:
        merch_session = await service.get_session(session_id)
    except SessionNotFoundError as e:
        logger.warning(
            "Session not found",
            extra={"request_id": request_id, "session_id": session_id},
        )
        return _error(status.HTTP_404_NOT_FOUND, str(e), "NOT_FOUND", request_id)

    background_tasks.add_task(resume_session_pipeline, session_id)
    logger.info(
        "Pipeline resume scheduled",
        extra={
            "request_id": request_id,
            "session_id": session_id,
            "status": merch_session.status,
        },
    )
    return ProcessAcceptedResponse(
        session_id=session_id,
        status=merch_session.status_enum,
        message="Processing scheduled",
    )
