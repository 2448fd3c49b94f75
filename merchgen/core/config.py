"""Application configuration loaded from environment variables.

All configuration is via environment variables.
No hardcoded URLs, ports, or credentials.
"""

from functools import lru_cache

from pydantic import Field, PostgresDsn
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MAGIC_LINK_SECRET = "dev-secret-key-change-in-production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Merchgen")
    app_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # Server
    port: int = Field(default=8000, description="Port to bind to")
    host: str = Field(default="0.0.0.0", description="Host to bind to")
    public_base_url: str = Field(
        default="http://localhost:3000",
        description="Public URL used to build magic links and result links",
    )
    frontend_url: str | None = Field(
        default=None, description="Allowed CORS origin (all origins if unset)"
    )

    # Database
    database_url: PostgresDsn = Field(
        ...,
        description="PostgreSQL connection string",
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size")
    db_max_overflow: int = Field(default=10, description="Max overflow connections")
    db_pool_timeout: int = Field(default=30, description="Pool timeout in seconds")
    db_slow_query_threshold_ms: int = Field(
        default=100, description="Threshold for slow query warnings (ms)"
    )
    db_connect_timeout: int = Field(
        default=60, description="Connection timeout in seconds"
    )
    db_command_timeout: int = Field(
        default=60, description="Command timeout in seconds"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_format: str = Field(default="json", description="Log format: json or text")

    # Brandfetch (brand metadata)
    brandfetch_api_key: str | None = Field(
        default=None, description="Brandfetch API key"
    )
    brandfetch_api_url: str = Field(
        default="https://api.brandfetch.io", description="Brandfetch API base URL"
    )
    brandfetch_timeout: float = Field(
        default=30.0, description="Brandfetch request timeout in seconds"
    )
    brandfetch_circuit_failure_threshold: int = Field(
        default=5, description="Failures before circuit opens"
    )
    brandfetch_circuit_recovery_timeout: float = Field(
        default=60.0, description="Seconds before attempting recovery"
    )

    # Firecrawl (page content)
    firecrawl_api_key: str | None = Field(
        default=None, description="Firecrawl API key"
    )
    firecrawl_api_url: str = Field(
        default="https://api.firecrawl.dev", description="Firecrawl API base URL"
    )
    firecrawl_timeout: float = Field(
        default=120.0, description="Firecrawl request timeout in seconds"
    )
    firecrawl_content_token_limit: int = Field(
        default=500, description="Approximate token budget for scraped body text"
    )
    firecrawl_circuit_failure_threshold: int = Field(
        default=5, description="Failures before circuit opens"
    )
    firecrawl_circuit_recovery_timeout: float = Field(
        default=60.0, description="Seconds before attempting recovery"
    )

    # Gemini (text + image generation)
    gemini_api_key: str | None = Field(
        default=None,
        description="Google Gemini API key",
    )
    gemini_api_url: str = Field(
        default="https://generativelanguage.googleapis.com",
        description="Gemini API base URL",
    )
    gemini_text_model: str = Field(
        default="gemini-flash-latest",
        description="Model used for concept, motif prompt and brand analysis",
    )
    gemini_image_model: str = Field(
        default="gemini-2.5-flash-image",
        description="Model used for motif image generation",
    )
    gemini_timeout: float = Field(
        default=90.0, description="Gemini API request timeout in seconds"
    )
    gemini_circuit_failure_threshold: int = Field(
        default=5, description="Failures before circuit opens"
    )
    gemini_circuit_recovery_timeout: float = Field(
        default=60.0, description="Seconds before attempting recovery"
    )

    # S3 (motif image storage)
    s3_bucket: str | None = Field(default=None, description="S3 bucket name")
    s3_endpoint_url: str | None = Field(
        default=None, description="S3 endpoint URL (LocalStack/S3-compatible)"
    )
    s3_access_key: str | None = Field(default=None, description="S3 access key")
    s3_secret_key: str | None = Field(default=None, description="S3 secret key")
    s3_region: str = Field(default="us-east-1", description="S3 region")
    s3_public_base_url: str | None = Field(
        default=None,
        description="Public URL prefix for stored objects (defaults to bucket URL)",
    )
    s3_timeout: float = Field(default=30.0, description="S3 operation timeout")
    s3_circuit_failure_threshold: int = Field(
        default=5, description="Failures before circuit opens"
    )
    s3_circuit_recovery_timeout: float = Field(
        default=60.0, description="Seconds before attempting recovery"
    )

    # SMTP (notifications)
    smtp_host: str | None = Field(default=None, description="SMTP server host")
    smtp_port: int = Field(default=587, description="SMTP server port")
    smtp_username: str | None = Field(default=None, description="SMTP username")
    smtp_password: str | None = Field(default=None, description="SMTP password")
    smtp_use_tls: bool = Field(default=True, description="Upgrade with STARTTLS")
    smtp_use_ssl: bool = Field(default=False, description="Connect with implicit TLS")
    smtp_timeout: float = Field(default=30.0, description="SMTP timeout in seconds")
    smtp_from_email: str | None = Field(default=None, description="Sender address")
    smtp_from_name: str = Field(default="Merchgen", description="Sender display name")
    email_circuit_failure_threshold: int = Field(
        default=5, description="Failures before circuit opens"
    )
    email_circuit_recovery_timeout: float = Field(
        default=60.0, description="Seconds before attempting recovery"
    )

    # Pipeline stage budgets (seconds)
    stage_timeout_scrape: float = Field(default=300.0, description="Scrape stage budget")
    stage_timeout_concept: float = Field(default=60.0, description="Concept stage budget")
    stage_timeout_motif: float = Field(default=120.0, description="Motif stage budget")
    stage_timeout_products: float = Field(
        default=120.0, description="Products stage budget"
    )
    session_update_max_attempts: int = Field(
        default=3, description="Optimistic-concurrency retries for session writes"
    )

    # Magic links
    magic_link_secret: str = Field(
        default=DEFAULT_MAGIC_LINK_SECRET,
        description="HMAC secret used to sign session access tokens",
    )
    magic_link_max_age_hours: int = Field(
        default=24, description="Tokens older than this are rejected"
    )

    # Recovery sweep
    cron_secret: str | None = Field(
        default=None, description="Bearer secret for the recovery cron endpoint"
    )
    recovery_stale_hours: int = Field(
        default=24, description="Hours without progress before a session is stale"
    )
    recovery_renotify_hours: int = Field(
        default=24, description="Minimum hours between recovery emails per session"
    )
    recovery_interval_minutes: int = Field(
        default=60, description="How often the scheduled sweep runs"
    )

    # Scheduler
    scheduler_enabled: bool = Field(default=True, description="Run the scheduler")
    scheduler_job_coalesce: bool = Field(
        default=True, description="Collapse missed runs into one"
    )
    scheduler_job_default_max_instances: int = Field(
        default=1, description="Max concurrent instances per job"
    )
    scheduler_misfire_grace_time: int = Field(
        default=300, description="Seconds a missed run may still fire"
    )
    scheduler_jobstore_url: str | None = Field(
        default=None,
        description="Sync database URL for persistent jobs (in-memory if unset)",
    )

    # Catalog
    seed_default_products: bool = Field(
        default=True, description="Seed the default catalog when it is empty"
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
