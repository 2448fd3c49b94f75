"""Firecrawl integration client for homepage content scraping.

Features:
- Async HTTP client using httpx
- Circuit breaker for fault tolerance
- Single attempt per call; callers wrap calls in retry_with_backoff
- Markdown parsing into title, description, headings and body text
- Masks API tokens in all logs

ERROR LOGGING REQUIREMENTS:
- Log all outbound API calls with endpoint, method, timing
- Log and handle: timeouts, rate limits (429), auth failures (401/403)
- Mask API keys and tokens in all logs
- Log circuit breaker state changes
"""

import math
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from merchgen.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from merchgen.core.config import get_settings
from merchgen.core.logging import get_logger

logger = get_logger(__name__)

# Words-to-tokens ratio used for the body text budget
TOKENS_PER_WORD = 1.3
MIN_PARAGRAPH_LENGTH = 50
MAX_SUBHEADINGS = 3
MAX_PARAGRAPHS = 3


@dataclass
class PageContent:
    """Parsed homepage content."""

    url: str
    title: str = "Untitled"
    description: str = ""
    headings: list[str] = field(default_factory=list)
    content: str = ""


class FirecrawlError(Exception):
    """Base exception for Firecrawl API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FirecrawlTimeoutError(FirecrawlError):
    """Raised when a request times out."""

    pass


class FirecrawlRateLimitError(FirecrawlError):
    """Raised when rate limited (429)."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class FirecrawlAuthError(FirecrawlError):
    """Raised when authentication fails (401/403)."""

    pass


class FirecrawlCircuitOpenError(FirecrawlError):
    """Raised when circuit breaker is open."""

    pass


def estimate_tokens(text: str) -> int:
    """Rough token count: words times 1.3, rounded up."""
    return math.ceil(len(text.split()) * TOKENS_PER_WORD)


def truncate_to_tokens(text: str, token_limit: int) -> str:
    """Cut `text` to roughly `token_limit` tokens on word boundaries."""
    if estimate_tokens(text) <= token_limit:
        return text
    return " ".join(text.split(" ")[: math.floor(token_limit / TOKENS_PER_WORD)])


def parse_markdown(
    url: str,
    markdown: str,
    metadata: dict[str, Any] | None = None,
    token_limit: int = 500,
) -> PageContent:
    """Extract title, description, headings and body text from page markdown.

    - h1 is the first '# ' line; h2s are the first three '## ' lines
    - Paragraphs are lines over 50 characters that are not headings or bullets
    - Body text is the first three paragraphs, truncated to `token_limit`
    """
    metadata = metadata or {}
    lines = [line for line in markdown.split("\n") if line.strip()]

    h1 = next((line[2:] for line in lines if line.startswith("# ")), "")
    h2s = [line[3:] for line in lines if line.startswith("## ")][:MAX_SUBHEADINGS]
    paragraphs = [
        line
        for line in lines
        if len(line) > MIN_PARAGRAPH_LENGTH
        and not line.startswith("#")
        and not line.startswith("*")
    ][:MAX_PARAGRAPHS]

    content = truncate_to_tokens("\n\n".join(paragraphs), token_limit)

    return PageContent(
        url=url,
        title=metadata.get("title") or h1 or "Untitled",
        description=metadata.get("description") or (paragraphs[0] if paragraphs else ""),
        headings=[h for h in [h1, *h2s] if h],
        content=content,
    )


class FirecrawlClient:
    """Async client for the Firecrawl scrape API."""

    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        timeout: float | None = None,
        content_token_limit: int | None = None,
    ) -> None:
        settings = get_settings()

        self._api_key = api_key or settings.firecrawl_api_key
        self._api_url = api_url or settings.firecrawl_api_url
        self._timeout = timeout or settings.firecrawl_timeout
        self._token_limit = content_token_limit or settings.firecrawl_content_token_limit

        self._circuit_breaker = CircuitBreaker(
            CircuitBreakerConfig(
                failure_threshold=settings.firecrawl_circuit_failure_threshold,
                recovery_timeout=settings.firecrawl_circuit_recovery_timeout,
            ),
            name="firecrawl",
        )

        self._client: httpx.AsyncClient | None = None
        self._available = bool(self._api_key)

    @property
    def available(self) -> bool:
        """Check if Firecrawl is configured."""
        return self._available

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._client = httpx.AsyncClient(
                base_url=self._api_url,
                headers=headers,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
        logger.info("Firecrawl client closed")

    async def scrape(self, url: str) -> PageContent:
        """Scrape the main content of `url` as markdown and parse it.

        Raises:
            FirecrawlError: Or a subclass, on any failure or empty content
        """
        if not self._available:
            raise FirecrawlError("Firecrawl not configured (missing API key)")

        if not await self._circuit_breaker.can_execute():
            raise FirecrawlCircuitOpenError("Circuit breaker is open")

        client = await self._get_client()
        request_body = {
            "url": url,
            "formats": ["markdown"],
            "onlyMainContent": True,
            "timeout": 60000,
        }
        start_time = time.monotonic()
        logger.debug(
            "Firecrawl request", extra={"method": "POST", "endpoint": "/v1/scrape", "url": url}
        )

        try:
            response = await client.post("/v1/scrape", json=request_body)
        except httpx.TimeoutException as e:
            await self._circuit_breaker.record_failure()
            logger.warning(
                "Firecrawl request timed out",
                extra={"url": url, "timeout_seconds": self._timeout},
            )
            raise FirecrawlTimeoutError(f"Request timed out after {self._timeout}s") from e
        except httpx.RequestError as e:
            await self._circuit_breaker.record_failure()
            logger.warning(
                "Firecrawl request failed",
                extra={"url": url, "error_type": type(e).__name__, "error_message": str(e)},
            )
            raise FirecrawlError(f"Request failed: {e}") from e

        duration_ms = (time.monotonic() - start_time) * 1000
        log_extra = {
            "url": url,
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 2),
        }

        if response.status_code == 429:
            retry_after_str = response.headers.get("retry-after")
            await self._circuit_breaker.record_failure()
            logger.warning("Firecrawl rate limit hit", extra=log_extra)
            raise FirecrawlRateLimitError(
                "Rate limit exceeded",
                retry_after=float(retry_after_str) if retry_after_str else None,
            )

        if response.status_code in (401, 403):
            await self._circuit_breaker.record_failure()
            logger.error("Firecrawl authentication failed", extra=log_extra)
            raise FirecrawlAuthError(
                f"Authentication failed ({response.status_code})",
                status_code=response.status_code,
            )

        if response.status_code >= 400:
            if response.status_code >= 500:
                await self._circuit_breaker.record_failure()
            logger.warning("Firecrawl request error", extra=log_extra)
            raise FirecrawlError(
                f"Firecrawl error ({response.status_code})",
                status_code=response.status_code,
            )

        payload = response.json()
        data = payload.get("data") or {}
        markdown = data.get("markdown")
        if not payload.get("success", True) or not markdown:
            await self._circuit_breaker.record_failure()
            logger.warning("Firecrawl returned no content", extra=log_extra)
            raise FirecrawlError("No content extracted from website")

        await self._circuit_breaker.record_success()
        page = parse_markdown(
            url, markdown, data.get("metadata"), token_limit=self._token_limit
        )

        if duration_ms > 1000:
            logger.warning("Slow Firecrawl scrape", extra=log_extra)
        logger.info(
            "Firecrawl scrape complete",
            extra={**log_extra, "heading_count": len(page.headings)},
        )
        return page


# Global Firecrawl client instance
firecrawl_client: FirecrawlClient | None = None


async def init_firecrawl() -> FirecrawlClient:
    """Initialize the global Firecrawl client."""
    global firecrawl_client
    if firecrawl_client is None:
        firecrawl_client = FirecrawlClient()
        if not firecrawl_client.available:
            logger.info("Firecrawl not configured (missing API key)")
    return firecrawl_client


async def close_firecrawl() -> None:
    """Close the global Firecrawl client."""
    global firecrawl_client
    if firecrawl_client:
        await firecrawl_client.close()
        firecrawl_client = None


async def get_firecrawl() -> FirecrawlClient:
    """Dependency for getting the Firecrawl client."""
    global firecrawl_client
    if firecrawl_client is None:
        await init_firecrawl()
    return firecrawl_client  # type: ignore[return-value]
