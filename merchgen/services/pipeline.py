"""Session pipeline: stage handlers and the in-process orchestrator.

Stages run in order: scrape -> concept -> motif -> products. Each stage
reads the session, calls its collaborators through retry_with_backoff,
and persists its output with one versioned write that advances the status
only from the expected predecessor:

    scrape    writes scraped_data; -> awaiting_approval when manual input is needed
    concept   requires scraped_data;                    scraping|awaiting_approval -> concept
    motif     requires concept and scraped_data;        concept -> motif
    products  requires scraped_data, concept, motif;    motif|products -> complete

Precondition failures raise PreconditionError and leave the session
untouched. Any other failure (including the stage's wall-clock budget
running out) marks the session failed and raises StageExecutionError.
Writes already committed by the stage are kept.

run_session_pipeline() drives a session from its persisted resume point
until it reaches awaiting_approval, complete or failed.

ERROR LOGGING REQUIREMENTS:
- Log stage start/success/failure with session_id and timing
- Log precondition failures with the missing fields
- Log status transitions at INFO level
- Log non-critical side-effect failures (notifications) without failing the stage
- Never log magic-link tokens
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar
from urllib.parse import quote

from sqlalchemy.ext.asyncio import AsyncSession

from merchgen.core.config import get_settings
from merchgen.core.database import session_scope
from merchgen.core.logging import gemini_logger, get_logger, pipeline_logger
from merchgen.core.retry import retry_with_backoff
from merchgen.integrations.brandfetch import BrandData, BrandfetchClient, get_brandfetch
from merchgen.integrations.email import EmailClient, EmailError, get_email_client
from merchgen.integrations.firecrawl import FirecrawlClient, PageContent, get_firecrawl
from merchgen.integrations.gemini import GeminiClient, GeminiError, get_gemini
from merchgen.integrations.s3 import S3Client, S3Error, get_s3
from merchgen.models.product import Product
from merchgen.models.session import MerchSession, SessionStatus
from merchgen.repositories.product import ProductRepository
from merchgen.repositories.session import (
    ApplyResult,
    SessionRepository,
    SessionVersionConflictError,
)
from merchgen.schemas.brand import compute_missing_fields, with_review_flags
from merchgen.services.brand_analyzer import BrandAnalysisError, BrandAnalyzer
from merchgen.services.magic_link import build_magic_link
from merchgen.services.notifications import NotificationService
from merchgen.services.prompts import (
    CONCEPT_GENERATION,
    MOTIF_PROMPT_GENERATION,
    PRODUCT_VARIATION,
    PromptCache,
    PromptService,
)
from merchgen.services.session import SessionNotFoundError, is_placeholder_email

logger = get_logger(__name__)

T = TypeVar("T")

# Retry policy per call site: (max attempts, initial delay seconds)
FETCH_RETRY = (3, 1.0)
ENHANCE_RETRY = (2, 1.5)
TEXT_RETRY = (3, 1.0)
IMAGE_RETRY = (2, 2.0)
EMAIL_RETRY = (3, 2.0)

STAGE_SCRAPE = "scrape"
STAGE_CONCEPT = "concept"
STAGE_MOTIF = "motif"
STAGE_PRODUCTS = "products"

NON_TERMINAL_STATUSES = frozenset(s for s in SessionStatus if not s.is_terminal)

MAX_HEADINGS = 5
MAX_ERROR_MESSAGE_LENGTH = 2000
FALLBACK_TITLE = "Unknown Brand"

IMAGE_NEGATIVE_PROMPT = (
    "text, words, letters, typography, watermarks, signatures, realistic photos, "
    "cluttered, messy, low quality, blurry, pixelated, human faces, people, "
    "portraits, complex backgrounds"
)

CONCEPT_REGENERATE_INSTRUCTION = (
    "\n\nIMPORTANT: This is a regeneration request. Create a completely different "
    "concept that explores a new creative direction."
)
MOTIF_REGENERATE_INSTRUCTION = (
    "\n\nIMPORTANT: This is a regeneration request. Describe a completely different "
    "motif with a new composition and visual approach."
)


class PipelineError(Exception):
    """Base exception for pipeline errors."""

    pass


class PreconditionError(PipelineError):
    """Raised when a stage runs before its required inputs exist."""

    def __init__(self, stage: str, session_id: str, missing: list[str]):
        self.stage = stage
        self.session_id = session_id
        self.missing = missing
        super().__init__(
            f"Cannot run {stage} stage for session {session_id}: "
            f"missing {', '.join(missing)}"
        )


class StageExecutionError(PipelineError):
    """Raised when a stage fails after retries; the session is marked failed."""

    def __init__(self, stage: str, session_id: str, message: str):
        self.stage = stage
        self.session_id = session_id
        self.message = message
        super().__init__(f"{stage} stage failed for session {session_id}: {message}")


class ScrapeError(PipelineError):
    """Raised when neither brand metadata nor page content could be fetched."""

    pass


def merge_scraped_data(brand: BrandData | None, page: PageContent | None) -> dict[str, Any]:
    """Combine brand metadata and page content.

    Brand metadata wins where both have a value. Logo, colors and fonts only
    come from brand metadata. Headings and content only come from the page.
    """
    return {
        "title": (brand and brand.title) or (page and page.title) or FALLBACK_TITLE,
        "description": (brand and brand.description) or (page and page.description) or "",
        "logo": brand.logo if brand else None,
        "colors": list(brand.colors) if brand else [],
        "fonts": list(brand.fonts) if brand else [],
        "headings": list(page.headings) if page else [],
        "content": page.content if page else "",
    }


def build_image_prompt(motif_prompt: str, colors: list[str]) -> str:
    """Motif description plus print constraints for the image model."""
    palette = ", ".join(colors) if colors else "vibrant, balanced palette"
    return (
        f"{motif_prompt}\n\n"
        "Style requirements:\n"
        "- High resolution, print-ready quality\n"
        "- Clean, professional graphic design\n"
        "- Bold, clear visual elements suitable for merchandise printing\n"
        "- Simple, impactful composition\n"
        f"- Colors: {palette}\n"
        "- No text, typography, or words in the design\n"
        "- No realistic human faces or identifiable people\n"
        "- Vector art style with clean lines\n"
        "- Solid background suitable for printing (white or transparent)"
        f"\n\nAvoid: {IMAGE_NEGATIVE_PROMPT}"
        "\n\nAspect ratio: 1:1"
    )


def _encode_uri_component(value: str) -> str:
    return quote(value, safe="-_.!~*'()")


def placeholder_motif_url(title: str | None, colors: list[str]) -> str:
    """Deterministic stand-in motif image."""
    color = colors[0].replace("#", "") if colors else "cccccc"
    text = _encode_uri_component(f"{title or FALLBACK_TITLE} Motif")
    return f"https://via.placeholder.com/1000x1000/{color}/ffffff?text={text}"


def placeholder_mockup_url(product_name: str) -> str:
    """Stand-in mockup image for one product."""
    text = _encode_uri_component(f"{product_name} Mockup")
    return f"https://via.placeholder.com/600x600.png?text={text}"


def _join(values: list[Any] | None, default: str) -> str:
    joined = ", ".join(str(v) for v in (values or []) if v)
    return joined or default


def resume_point(merch_session: MerchSession) -> str | None:
    """Next stage to run for a session, or None when the pipeline should stop."""
    status = merch_session.status_enum
    if status.is_terminal:
        return None

    if status in (SessionStatus.SCRAPING, SessionStatus.AWAITING_APPROVAL):
        if not merch_session.scraped_data:
            return STAGE_SCRAPE if status == SessionStatus.SCRAPING else None
        if compute_missing_fields(merch_session.scraped_data):
            return None
        return STAGE_CONCEPT

    if status == SessionStatus.CONCEPT:
        return STAGE_MOTIF if merch_session.concept else STAGE_CONCEPT

    # motif or products
    return STAGE_PRODUCTS if merch_session.motif_image_url else STAGE_MOTIF


class SessionPipeline:
    """Stage handlers for one database session.

    Collaborators are injected; create_pipeline() wires the process-wide
    clients. Every successful write is committed before the next step.
    """

    def __init__(
        self,
        session: AsyncSession,
        brandfetch: BrandfetchClient,
        firecrawl: FirecrawlClient,
        gemini: GeminiClient,
        s3: S3Client,
        email_client: EmailClient,
        prompt_cache: PromptCache | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.session = session
        self.sessions = SessionRepository(session)
        self.products = ProductRepository(session)
        self.prompts = PromptService(session, prompt_cache)
        self.analyzer = BrandAnalyzer(gemini, self.prompts)
        self.notifications = NotificationService(email_client)
        self._brandfetch = brandfetch
        self._firecrawl = firecrawl
        self._gemini = gemini
        self._s3 = s3
        self._email_client = email_client
        self._sleep = sleep

        settings = get_settings()
        self._max_attempts = settings.session_update_max_attempts
        self._timeouts = {
            STAGE_SCRAPE: settings.stage_timeout_scrape,
            STAGE_CONCEPT: settings.stage_timeout_concept,
            STAGE_MOTIF: settings.stage_timeout_motif,
            STAGE_PRODUCTS: settings.stage_timeout_products,
        }

    async def _retry(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: tuple[int, float],
        name: str,
    ) -> T:
        max_retries, initial_delay = policy
        return await retry_with_backoff(
            operation,
            max_retries,
            initial_delay,
            operation_name=name,
            sleep=self._sleep,
        )

    async def _load(self, session_id: str) -> MerchSession:
        merch_session = await self.sessions.get_by_id(session_id)
        if merch_session is None:
            raise SessionNotFoundError(session_id)
        return merch_session

    async def _write(
        self,
        session_id: str,
        changes: dict[str, Any],
        advance_to: SessionStatus | None = None,
        advance_from: frozenset[SessionStatus] = frozenset(),
    ) -> ApplyResult:
        result = await self.sessions.apply_changes(
            session_id,
            changes,
            advance_to=advance_to,
            advance_from=advance_from,
            max_attempts=self._max_attempts,
        )
        if result is None:
            raise SessionNotFoundError(session_id)
        await self.session.commit()
        return result

    async def _run_stage(
        self,
        stage: str,
        session_id: str,
        operation: Callable[[], Awaitable[ApplyResult]],
    ) -> ApplyResult:
        timeout = self._timeouts[stage]
        start_time = time.monotonic()
        pipeline_logger.stage_start(stage, session_id, timeout_seconds=timeout)

        try:
            result = await asyncio.wait_for(operation(), timeout=timeout)
        except PreconditionError as e:
            pipeline_logger.precondition_failed(stage, session_id, e.missing)
            raise
        except (SessionNotFoundError, SessionVersionConflictError):
            raise
        except Exception as e:
            duration_ms = (time.monotonic() - start_time) * 1000
            if isinstance(e, TimeoutError):
                message = f"{stage} stage exceeded its {timeout}s budget"
            else:
                message = str(e) or type(e).__name__
            pipeline_logger.stage_failure(stage, session_id, duration_ms, e)
            await self.mark_failed(session_id, message)
            raise StageExecutionError(stage, session_id, message) from e

        duration_ms = (time.monotonic() - start_time) * 1000
        pipeline_logger.stage_success(stage, session_id, duration_ms)
        return result

    # ------------------------------------------------------------------
    # Scrape
    # ------------------------------------------------------------------

    async def run_scrape(self, session_id: str) -> ApplyResult:
        """Collect and enhance brand data for the session's URL."""
        return await self._run_stage(
            STAGE_SCRAPE, session_id, lambda: self._scrape(session_id)
        )

    async def _fetch_brand(self, session_id: str, url: str) -> BrandData | None:
        try:
            return await self._retry(
                lambda: self._brandfetch.fetch_brand(url), FETCH_RETRY, "fetch_brand"
            )
        except Exception as e:
            pipeline_logger.side_effect_failed("fetch_brand", session_id, e)
            return None

    async def _fetch_page(self, session_id: str, url: str) -> PageContent | None:
        try:
            return await self._retry(
                lambda: self._firecrawl.scrape(url), FETCH_RETRY, "scrape_content"
            )
        except Exception as e:
            pipeline_logger.side_effect_failed("scrape_content", session_id, e)
            return None

    async def _scrape(self, session_id: str) -> ApplyResult:
        merch_session = await self._load(session_id)
        url = merch_session.url

        brand, page = await asyncio.gather(
            self._fetch_brand(session_id, url),
            self._fetch_page(session_id, url),
        )
        if brand is None and page is None:
            raise ScrapeError(f"Could not fetch brand data or content for {url}")

        merged = merge_scraped_data(brand, page)
        try:
            enhanced = await self._retry(
                lambda: self.analyzer.enhance(merged), ENHANCE_RETRY, "brand_analysis"
            )
        except (GeminiError, BrandAnalysisError) as e:
            enhanced = self.analyzer.fallback(merged, str(e))

        scraped_data = with_review_flags(enhanced)
        if scraped_data["requires_manual_input"]:
            logger.info(
                "Manual input required",
                extra={
                    "session_id": session_id,
                    "missing_fields": scraped_data["missing_fields"],
                },
            )
            return await self._write(
                session_id,
                {"scraped_data": scraped_data},
                advance_to=SessionStatus.AWAITING_APPROVAL,
                advance_from=frozenset({SessionStatus.SCRAPING}),
            )
        return await self._write(session_id, {"scraped_data": scraped_data})

    # ------------------------------------------------------------------
    # Concept
    # ------------------------------------------------------------------

    async def run_concept(self, session_id: str, regenerate: bool = False) -> ApplyResult:
        """Generate (or regenerate) the merchandise concept."""
        return await self._run_stage(
            STAGE_CONCEPT, session_id, lambda: self._concept(session_id, regenerate)
        )

    async def _concept(self, session_id: str, regenerate: bool) -> ApplyResult:
        merch_session = await self._load(session_id)
        scraped = merch_session.scraped_data
        if not scraped:
            raise PreconditionError(STAGE_CONCEPT, session_id, ["scraped_data"])
        missing = compute_missing_fields(scraped)
        if missing:
            raise PreconditionError(STAGE_CONCEPT, session_id, missing)

        instruction = ""
        if regenerate:
            instruction = CONCEPT_REGENERATE_INSTRUCTION
            if merch_session.concept:
                instruction += f"\n\nPrevious concept (do not repeat it):\n{merch_session.concept}"

        prompt = await self.prompts.render(
            CONCEPT_GENERATION,
            {
                "brandName": scraped.get("title") or "Unknown",
                "description": scraped.get("description") or "N/A",
                "colors": _join(scraped.get("colors"), "N/A"),
                "fonts": _join(scraped.get("fonts"), "N/A"),
                "headings": _join((scraped.get("headings") or [])[:MAX_HEADINGS], "N/A"),
                "regenerateInstruction": instruction,
            },
        )
        concept = await self._retry(
            lambda: self._gemini.generate_text(prompt, operation="concept_generation"),
            TEXT_RETRY,
            "concept_generation",
        )

        return await self._write(
            session_id,
            {"concept": concept},
            advance_to=SessionStatus.CONCEPT,
            advance_from=frozenset(
                {SessionStatus.SCRAPING, SessionStatus.AWAITING_APPROVAL}
            ),
        )

    # ------------------------------------------------------------------
    # Motif
    # ------------------------------------------------------------------

    async def run_motif(self, session_id: str, regenerate: bool = False) -> ApplyResult:
        """Generate (or regenerate) the motif description and artwork."""
        return await self._run_stage(
            STAGE_MOTIF, session_id, lambda: self._motif(session_id, regenerate)
        )

    async def _active_products(self, stage: str, session_id: str) -> list[Product]:
        products = await self.products.list_active()
        if not products:
            raise PreconditionError(stage, session_id, ["products"])
        return products

    async def _render_motif_image(self, session_id: str, image_prompt: str) -> str:
        image = await self._gemini.generate_image(image_prompt, operation="motif_image")
        return await self._s3.upload_motif(
            session_id, image.data, image.mime_type, image.extension
        )

    async def _motif(self, session_id: str, regenerate: bool) -> ApplyResult:
        merch_session = await self._load(session_id)
        missing = [
            name
            for name, value in (
                ("concept", merch_session.concept),
                ("scraped_data", merch_session.scraped_data),
            )
            if not value
        ]
        if missing:
            raise PreconditionError(STAGE_MOTIF, session_id, missing)

        products = await self._active_products(STAGE_MOTIF, session_id)
        reference = products[0]
        scraped = merch_session.scraped_data or {}
        colors = list(scraped.get("colors") or [])

        prompt = await self.prompts.render(
            MOTIF_PROMPT_GENERATION,
            {
                "concept": merch_session.concept,
                "colors": _join(colors, "vibrant, balanced palette"),
                "productName": reference.name,
                "printZones": _join(reference.print_zones, "front"),
                "maxColors": reference.max_colors,
                "constraints": reference.constraints or "None",
                "regenerateInstruction": MOTIF_REGENERATE_INSTRUCTION if regenerate else "",
            },
        )
        motif_prompt = await self._retry(
            lambda: self._gemini.generate_text(prompt, operation="motif_prompt_generation"),
            TEXT_RETRY,
            "motif_prompt_generation",
        )

        image_prompt = build_image_prompt(motif_prompt, colors)
        try:
            motif_image_url = await self._retry(
                lambda: self._render_motif_image(session_id, image_prompt),
                IMAGE_RETRY,
                "motif_image",
            )
        except (GeminiError, S3Error) as e:
            gemini_logger.graceful_fallback("motif_image", str(e))
            motif_image_url = placeholder_motif_url(scraped.get("title"), colors)

        return await self._write(
            session_id,
            {"motif_prompt": motif_prompt, "motif_image_url": motif_image_url},
            advance_to=SessionStatus.MOTIF,
            advance_from=frozenset({SessionStatus.CONCEPT}),
        )

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    async def run_products(self, session_id: str) -> ApplyResult:
        """Build mockup records for every active product and complete the session.

        Re-running on a finished session replaces the records and keeps the
        status. The results email goes out only when this run completes the
        session; a send failure is logged and does not affect the result.
        """
        result = await self._run_stage(
            STAGE_PRODUCTS, session_id, lambda: self._products(session_id)
        )
        if result.advanced:
            await self._notify_results(result.session)
        return result

    async def _design_notes(
        self, merch_session: MerchSession, product: Product
    ) -> str:
        scraped = merch_session.scraped_data or {}
        concept = merch_session.concept or ""
        prompt = await self.prompts.render(
            PRODUCT_VARIATION,
            {
                "concept": concept,
                "productName": product.name,
                "printZones": _join(product.print_zones, "front"),
                "maxColors": product.max_colors,
                "constraints": product.constraints or "None",
                "recommendedElements": _join(product.recommended_elements, "Any"),
                "colors": _join(scraped.get("colors"), "N/A"),
            },
        )
        try:
            return await self._retry(
                lambda: self._gemini.generate_text(prompt, operation="product_variation"),
                TEXT_RETRY,
                "product_variation",
            )
        except GeminiError as e:
            gemini_logger.graceful_fallback("product_variation", str(e))
            return f"{concept} - Applied to {product.name}"

    async def _products(self, session_id: str) -> ApplyResult:
        merch_session = await self._load(session_id)
        missing = [
            name
            for name, value in (
                ("scraped_data", merch_session.scraped_data),
                ("concept", merch_session.concept),
                ("motif_image_url", merch_session.motif_image_url),
            )
            if not value
        ]
        if missing:
            raise PreconditionError(STAGE_PRODUCTS, session_id, missing)

        products = await self._active_products(STAGE_PRODUCTS, session_id)

        # Built in full before the single write below
        product_images: list[dict[str, Any]] = []
        for product in products:
            design_notes = await self._design_notes(merch_session, product)
            product_images.append(
                {
                    "product_id": product.id,
                    "product_name": product.name,
                    "image_url": placeholder_mockup_url(product.name),
                    "print_zones": list(product.print_zones or []),
                    "design_notes": design_notes,
                }
            )

        return await self._write(
            session_id,
            {"product_images": product_images},
            advance_to=SessionStatus.COMPLETE,
            advance_from=frozenset({SessionStatus.MOTIF, SessionStatus.PRODUCTS}),
        )

    async def _notify_results(self, merch_session: MerchSession) -> bool:
        if is_placeholder_email(merch_session.email):
            return False
        if not self._email_client.available:
            logger.info(
                "Email not configured, results notification skipped",
                extra={"session_id": merch_session.id},
            )
            return False

        scraped = merch_session.scraped_data or {}
        previews = [p["image_url"] for p in merch_session.product_images or []]
        link = build_magic_link(merch_session.id, merch_session.email)
        try:
            await self._retry(
                lambda: self.notifications.send_results(
                    merch_session.email,
                    merch_session.id,
                    scraped.get("title"),
                    merch_session.concept or "",
                    link,
                    previews,
                ),
                EMAIL_RETRY,
                "send_results_email",
            )
        except EmailError as e:
            pipeline_logger.side_effect_failed("send_results_email", merch_session.id, e)
            return False
        return True

    # ------------------------------------------------------------------
    # Failure path
    # ------------------------------------------------------------------

    async def mark_failed(self, session_id: str, error: str) -> bool:
        """Best-effort move to failed. Never raises and is never retried.

        Returns:
            True if the failed status was written
        """
        try:
            await self.session.rollback()
            result = await self.sessions.apply_changes(
                session_id,
                {"error_message": error[:MAX_ERROR_MESSAGE_LENGTH]},
                advance_to=SessionStatus.FAILED,
                advance_from=NON_TERMINAL_STATUSES,
                only_if_advancing=True,
                max_attempts=1,
            )
            await self.session.commit()
        except Exception as e:
            pipeline_logger.side_effect_failed("mark_failed", session_id, e)
            return False
        return bool(result and result.applied)

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    async def advance(self, session_id: str) -> SessionStatus:
        """Run stages from the persisted resume point until a stop state.

        Returns:
            The status the session stopped at

        Raises:
            SessionNotFoundError: If the session does not exist
            PreconditionError, StageExecutionError: From the failing stage
        """
        handlers: dict[str, Callable[[], Awaitable[ApplyResult]]] = {
            STAGE_SCRAPE: lambda: self.run_scrape(session_id),
            STAGE_CONCEPT: lambda: self.run_concept(session_id),
            STAGE_MOTIF: lambda: self.run_motif(session_id),
            STAGE_PRODUCTS: lambda: self.run_products(session_id),
        }
        seen: set[str] = set()

        while True:
            merch_session = await self._load(session_id)
            stage = resume_point(merch_session)
            if stage is None or stage in seen:
                return merch_session.status_enum
            seen.add(stage)
            await handlers[stage]()


async def create_pipeline(session: AsyncSession) -> SessionPipeline:
    """SessionPipeline wired to the process-wide integration clients."""
    return SessionPipeline(
        session,
        brandfetch=await get_brandfetch(),
        firecrawl=await get_firecrawl(),
        gemini=await get_gemini(),
        s3=await get_s3(),
        email_client=get_email_client(),
    )


async def _drive(session_id: str, trigger: str) -> SessionStatus | None:
    start_time = time.monotonic()
    logger.info(
        "Pipeline run started",
        extra={"session_id": session_id, "trigger": trigger},
    )
    try:
        async with session_scope() as session:
            pipeline = await create_pipeline(session)
            status = await pipeline.advance(session_id)
    except (PipelineError, SessionNotFoundError, SessionVersionConflictError) as e:
        logger.warning(
            "Pipeline run stopped",
            extra={
                "session_id": session_id,
                "trigger": trigger,
                "error_type": type(e).__name__,
                "error_message": str(e),
            },
        )
        return None

    logger.info(
        "Pipeline run finished",
        extra={
            "session_id": session_id,
            "trigger": trigger,
            "status": status.value,
            "duration_ms": round((time.monotonic() - start_time) * 1000, 2),
        },
    )
    return status


async def run_session_pipeline(session_id: str) -> SessionStatus | None:
    """Drive a newly created session through the pipeline.

    Returns the status the session stopped at, or None if a stage failed.
    """
    return await _drive(session_id, "create")


async def resume_session_pipeline(session_id: str) -> SessionStatus | None:
    """Continue a session from its persisted state (after manual input or on request)."""
    return await _drive(session_id, "resume")
