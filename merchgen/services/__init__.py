"""Services layer - Business logic and orchestration.

Services coordinate between repositories, integrations, and other services
to implement business use cases. They contain no direct database or
external API access - that's delegated to repositories and integrations.
"""

from merchgen.services.brand_analyzer import (
    FALLBACK_ANALYSIS,
    BrandAnalysisError,
    BrandAnalyzer,
)
from merchgen.services.catalog import DEFAULT_PRODUCTS, seed_default_products
from merchgen.services.magic_link import (
    MagicLinkPayload,
    build_magic_link,
    generate_token,
    verify_token,
)
from merchgen.services.notifications import EmailMessage, NotificationService
from merchgen.services.pipeline import (
    PipelineError,
    PreconditionError,
    SessionPipeline,
    StageExecutionError,
    create_pipeline,
    resume_session_pipeline,
    run_session_pipeline,
)
from merchgen.services.prompts import (
    DEFAULT_PROMPTS,
    PromptCache,
    PromptNotFoundError,
    PromptService,
    get_prompt_cache,
    render_template,
)
from merchgen.services.recovery import (
    RecoveryService,
    RecoverySummary,
    run_recovery_sweep_job,
)
from merchgen.services.session import (
    CreateSessionResult,
    InvalidTokenError,
    SessionNotFoundError,
    SessionService,
    SessionServiceError,
    SessionValidationError,
)

__all__ = [
    # Brand analyzer
    "BrandAnalysisError",
    "BrandAnalyzer",
    "FALLBACK_ANALYSIS",
    # Catalog
    "DEFAULT_PRODUCTS",
    "seed_default_products",
    # Magic link
    "MagicLinkPayload",
    "build_magic_link",
    "generate_token",
    "verify_token",
    # Notifications
    "EmailMessage",
    "NotificationService",
    # Pipeline
    "PipelineError",
    "PreconditionError",
    "SessionPipeline",
    "StageExecutionError",
    "create_pipeline",
    "resume_session_pipeline",
    "run_session_pipeline",
    # Prompts
    "DEFAULT_PROMPTS",
    "PromptCache",
    "PromptNotFoundError",
    "PromptService",
    "get_prompt_cache",
    "render_template",
    # Recovery
    "RecoveryService",
    "RecoverySummary",
    "run_recovery_sweep_job",
    # Session
    "CreateSessionResult",
    "InvalidTokenError",
    "SessionNotFoundError",
    "SessionService",
    "SessionServiceError",
    "SessionValidationError",
]
