"""Brandfetch integration client for brand metadata (logo, colors, fonts).

Features:
- Async HTTP client using httpx
- Circuit breaker for fault tolerance
- Single attempt per call; callers wrap calls in retry_with_backoff
- Handles timeouts, rate limits (429), auth failures (401/403)
- Masks API keys in all logs

ERROR LOGGING REQUIREMENTS:
- Log all outbound API calls with endpoint, method, timing
- Log response bodies at DEBUG level (truncate large responses)
- Log and handle: timeouts, rate limits (429), auth failures (401/403)
- Mask API keys and tokens in all logs
- Log circuit breaker state changes
"""

import time
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

import httpx

from merchgen.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from merchgen.core.config import get_settings
from merchgen.core.logging import get_logger
from merchgen.schemas.brand import MIN_COLORS, filter_colors

logger = get_logger(__name__)


@dataclass
class BrandData:
    """Brand metadata for one domain."""

    domain: str
    title: str | None = None
    description: str | None = None
    logo: str | None = None
    colors: list[str] = field(default_factory=list)
    fonts: list[str] = field(default_factory=list)


class BrandfetchError(Exception):
    """Base exception for Brandfetch API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BrandfetchTimeoutError(BrandfetchError):
    """Raised when a request times out."""

    pass


class BrandfetchRateLimitError(BrandfetchError):
    """Raised when rate limited (429)."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class BrandfetchAuthError(BrandfetchError):
    """Raised when authentication fails (401/403)."""

    pass


class BrandfetchNotFoundError(BrandfetchError):
    """Raised when Brandfetch has no record for the domain (404)."""

    pass


class BrandfetchCircuitOpenError(BrandfetchError):
    """Raised when circuit breaker is open."""

    pass


def domain_from_url(url: str) -> str:
    """Hostname of `url` without a leading 'www.'."""
    hostname = (urlparse(url).hostname or "").lower()
    return hostname.removeprefix("www.")


def parse_brand(domain: str, data: dict[str, Any]) -> BrandData:
    """Map a Brandfetch /v2/brands response to BrandData.

    The logo is the first logo's PNG format, else its first format.
    Colors are kept only when at least MIN_COLORS valid ones exist.
    """
    logo: str | None = None
    logos = data.get("logos") or []
    if logos:
        formats = logos[0].get("formats") or []
        png = next((f for f in formats if f.get("format") == "png"), None)
        chosen = png or (formats[0] if formats else None)
        if chosen:
            logo = chosen.get("src") or None

    colors = filter_colors([c.get("hex") for c in data.get("colors") or []])
    if len(colors) < MIN_COLORS:
        colors = []

    fonts = [f["name"] for f in data.get("fonts") or [] if f.get("name")]

    return BrandData(
        domain=domain,
        title=data.get("name") or None,
        description=data.get("description") or None,
        logo=logo,
        colors=colors,
        fonts=fonts,
    )


class BrandfetchClient:
    """Async client for the Brandfetch brand API."""

    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()

        self._api_key = api_key or settings.brandfetch_api_key
        self._api_url = api_url or settings.brandfetch_api_url
        self._timeout = timeout or settings.brandfetch_timeout

        self._circuit_breaker = CircuitBreaker(
            CircuitBreakerConfig(
                failure_threshold=settings.brandfetch_circuit_failure_threshold,
                recovery_timeout=settings.brandfetch_circuit_recovery_timeout,
            ),
            name="brandfetch",
        )

        self._client: httpx.AsyncClient | None = None
        self._available = bool(self._api_key)

    @property
    def available(self) -> bool:
        """Check if Brandfetch is configured."""
        return self._available

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"Accept": "application/json"}
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
        logger.info("Brandfetch client closed")

    async def fetch_brand(self, url: str) -> BrandData:
        """Fetch brand metadata for the domain of `url`.

        Raises:
            BrandfetchError: Or a subclass, on any failure
        """
        if not self._available:
            raise BrandfetchError("Brandfetch not configured (missing API key)")

        if not await self._circuit_breaker.can_execute():
            raise BrandfetchCircuitOpenError("Circuit breaker is open")

        domain = domain_from_url(url)
        if not domain:
            raise BrandfetchError(f"Cannot derive domain from url: {url}")

        endpoint = f"/v2/brands/{domain}"
        client = await self._get_client()
        start_time = time.monotonic()
        logger.debug("Brandfetch request", extra={"method": "GET", "endpoint": endpoint})

        try:
            response = await client.get(endpoint)
        except httpx.TimeoutException as e:
            await self._circuit_breaker.record_failure()
            logger.warning(
                "Brandfetch request timed out",
                extra={"endpoint": endpoint, "timeout_seconds": self._timeout},
            )
            raise BrandfetchTimeoutError(f"Request timed out after {self._timeout}s") from e
        except httpx.RequestError as e:
            await self._circuit_breaker.record_failure()
            logger.warning(
                "Brandfetch request failed",
                extra={
                    "endpoint": endpoint,
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                },
            )
            raise BrandfetchError(f"Request failed: {e}") from e

        duration_ms = (time.monotonic() - start_time) * 1000
        log_extra = {
            "endpoint": endpoint,
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 2),
        }

        if response.status_code == 429:
            retry_after_str = response.headers.get("retry-after")
            await self._circuit_breaker.record_failure()
            logger.warning("Brandfetch rate limit hit", extra=log_extra)
            raise BrandfetchRateLimitError(
                "Rate limit exceeded",
                retry_after=float(retry_after_str) if retry_after_str else None,
            )

        if response.status_code in (401, 403):
            await self._circuit_breaker.record_failure()
            logger.error("Brandfetch authentication failed", extra=log_extra)
            raise BrandfetchAuthError(
                f"Authentication failed ({response.status_code})",
                status_code=response.status_code,
            )

        if response.status_code == 404:
            logger.info("Brandfetch has no brand for domain", extra=log_extra)
            raise BrandfetchNotFoundError(
                f"No brand found for {domain}", status_code=404
            )

        if response.status_code >= 400:
            if response.status_code >= 500:
                await self._circuit_breaker.record_failure()
            logger.warning("Brandfetch request error", extra=log_extra)
            raise BrandfetchError(
                f"Brandfetch error ({response.status_code})",
                status_code=response.status_code,
            )

        await self._circuit_breaker.record_success()
        brand = parse_brand(domain, response.json())
        logger.info(
            "Brandfetch extraction complete",
            extra={
                **log_extra,
                "domain": domain,
                "has_logo": brand.logo is not None,
                "color_count": len(brand.colors),
                "font_count": len(brand.fonts),
            },
        )
        return brand


# Global Brandfetch client instance
brandfetch_client: BrandfetchClient | None = None


async def init_brandfetch() -> BrandfetchClient:
    """Initialize the global Brandfetch client."""
    global brandfetch_client
    if brandfetch_client is None:
        brandfetch_client = BrandfetchClient()
        if not brandfetch_client.available:
            logger.info("Brandfetch not configured (missing API key)")
    return brandfetch_client


async def close_brandfetch() -> None:
    """Close the global Brandfetch client."""
    global brandfetch_client
    if brandfetch_client:
        await brandfetch_client.close()
        brandfetch_client = None


async def get_brandfetch() -> BrandfetchClient:
    """Dependency for getting the Brandfetch client."""
    global brandfetch_client
    if brandfetch_client is None:
        await init_brandfetch()
    return brandfetch_client  # type: ignore[return-value]
