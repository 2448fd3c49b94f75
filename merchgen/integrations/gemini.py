"""Google Gemini integration client for text and image generation.

Features:
- Async HTTP client using httpx (direct REST calls to generateContent)
- Circuit breaker for fault tolerance
- Single attempt per call; callers wrap calls in retry_with_backoff
- Handles timeouts, rate limits (429), auth failures (401/403)
- Masks API keys in all logs
- Token usage logging for quota tracking

ERROR LOGGING REQUIREMENTS:
- Log all outbound API calls with model, operation, timing
- Log response bodies at DEBUG level (truncate large responses)
- Log and handle: timeouts, rate limits (429), auth failures (401/403)
- Log API token usage if available
- Mask API keys and tokens in all logs
- Log circuit breaker state changes
"""

import base64
import binascii
import time
from dataclasses import dataclass
from typing import Any

import httpx

from merchgen.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from merchgen.core.config import get_settings
from merchgen.core.logging import gemini_logger, get_logger

logger = get_logger(__name__)


@dataclass
class GeneratedImage:
    """Image bytes returned by the image model."""

    data: bytes
    mime_type: str = "image/png"

    @property
    def extension(self) -> str:
        return self.mime_type.split("/")[-1] or "png"


class GeminiError(Exception):
    """Base exception for Gemini API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class GeminiTimeoutError(GeminiError):
    """Raised when a request times out."""

    pass


class GeminiRateLimitError(GeminiError):
    """Raised when rate limited (429)."""

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        response_body: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, status_code=429, response_body=response_body)
        self.retry_after = retry_after


class GeminiAuthError(GeminiError):
    """Raised when authentication fails (401/403)."""

    pass


class GeminiCircuitOpenError(GeminiError):
    """Raised when circuit breaker is open."""

    pass


class GeminiEmptyResponseError(GeminiError):
    """Raised when the model returns no usable text or image."""

    pass


class GeminiClient:
    """Async client for the Gemini generateContent API."""

    def __init__(
        self,
        api_key: str | None = None,
        text_model: str | None = None,
        image_model: str | None = None,
        timeout: float | None = None,
        base_url: str | None = None,
    ) -> None:
        settings = get_settings()

        self._api_key = api_key or settings.gemini_api_key
        self._text_model = text_model or settings.gemini_text_model
        self._image_model = image_model or settings.gemini_image_model
        self._timeout = timeout or settings.gemini_timeout
        self._base_url = base_url or settings.gemini_api_url

        self._circuit_breaker = CircuitBreaker(
            CircuitBreakerConfig(
                failure_threshold=settings.gemini_circuit_failure_threshold,
                recovery_timeout=settings.gemini_circuit_recovery_timeout,
            ),
            name="gemini",
        )

        # HTTP client (created lazily)
        self._client: httpx.AsyncClient | None = None
        self._available = bool(self._api_key)

    @property
    def available(self) -> bool:
        """Check if Gemini is configured and available."""
        return self._available

    @property
    def text_model(self) -> str:
        return self._text_model

    @property
    def image_model(self) -> str:
        return self._image_model

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers: dict[str, str] = {
                "Content-Type": "application/json",
                "Accept": "application/json",
            }
            if self._api_key:
                headers["x-goog-api-key"] = self._api_key

            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=headers,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
        logger.info("Gemini client closed")

    async def _generate(
        self,
        model: str,
        operation: str,
        prompt: str,
        generation_config: dict[str, Any],
    ) -> dict[str, Any]:
        """POST one generateContent request and return the decoded body.

        Raises:
            GeminiError: Or a subclass, for every non-2xx outcome
        """
        if not self._available:
            raise GeminiError("Gemini not configured (missing API key)")

        if not await self._circuit_breaker.can_execute():
            gemini_logger.graceful_fallback(operation, "Circuit breaker open")
            raise GeminiCircuitOpenError("Circuit breaker is open")

        client = await self._get_client()
        request_body: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
        }

        gemini_logger.api_call_start(model, len(prompt), operation)
        start_time = time.monotonic()

        try:
            response = await client.post(
                f"/v1beta/models/{model}:generateContent", json=request_body
            )
        except httpx.TimeoutException as e:
            duration_ms = (time.monotonic() - start_time) * 1000
            gemini_logger.timeout(model, self._timeout)
            gemini_logger.api_call_error(
                model, operation, duration_ms, None, "Request timed out", "TimeoutError"
            )
            await self._circuit_breaker.record_failure()
            raise GeminiTimeoutError(f"Request timed out after {self._timeout}s") from e
        except httpx.RequestError as e:
            duration_ms = (time.monotonic() - start_time) * 1000
            gemini_logger.api_call_error(
                model, operation, duration_ms, None, str(e), type(e).__name__
            )
            await self._circuit_breaker.record_failure()
            raise GeminiError(f"Request failed: {e}") from e

        duration_ms = (time.monotonic() - start_time) * 1000

        if response.status_code == 429:
            retry_after_str = response.headers.get("retry-after")
            retry_after = float(retry_after_str) if retry_after_str else None
            gemini_logger.rate_limit(model, retry_after=retry_after)
            await self._circuit_breaker.record_failure()
            raise GeminiRateLimitError("Rate limit exceeded", retry_after=retry_after)

        if response.status_code in (401, 403):
            gemini_logger.api_call_error(
                model,
                operation,
                duration_ms,
                response.status_code,
                "Authentication failed",
                "AuthError",
            )
            await self._circuit_breaker.record_failure()
            raise GeminiAuthError(
                f"Authentication failed ({response.status_code})",
                status_code=response.status_code,
            )

        if response.status_code >= 500:
            error_msg = f"Server error ({response.status_code})"
            gemini_logger.api_call_error(
                model, operation, duration_ms, response.status_code, error_msg, "ServerError"
            )
            await self._circuit_breaker.record_failure()
            raise GeminiError(error_msg, status_code=response.status_code)

        if response.status_code >= 400:
            error_body = response.json() if response.content else None
            error_msg = (
                error_body.get("error", {}).get("message", str(error_body))
                if error_body
                else "Client error"
            )
            gemini_logger.api_call_error(
                model, operation, duration_ms, response.status_code, error_msg, "ClientError"
            )
            raise GeminiError(
                f"Client error ({response.status_code}): {error_msg}",
                status_code=response.status_code,
                response_body=error_body,
            )

        response_data: dict[str, Any] = response.json()
        usage = response_data.get("usageMetadata", {})
        gemini_logger.api_call_success(
            model,
            operation,
            duration_ms,
            prompt_tokens=usage.get("promptTokenCount"),
            output_tokens=usage.get("candidatesTokenCount"),
        )
        gemini_logger.response_body(model, response.text, duration_ms)
        await self._circuit_breaker.record_success()
        return response_data

    @staticmethod
    def _parts(response_data: dict[str, Any]) -> list[dict[str, Any]]:
        candidates = response_data.get("candidates") or []
        if not candidates:
            return []
        content = candidates[0].get("content") or {}
        return list(content.get("parts") or [])

    async def generate_text(
        self,
        prompt: str,
        operation: str = "generate_text",
        temperature: float = 0.9,
        max_output_tokens: int = 2048,
    ) -> str:
        """Generate text for a rendered prompt.

        Returns:
            The stripped response text

        Raises:
            GeminiEmptyResponseError: If the model returned no text
            GeminiError: On API failure
        """
        response_data = await self._generate(
            self._text_model,
            operation,
            prompt,
            {"temperature": temperature, "maxOutputTokens": max_output_tokens},
        )
        text = "".join(p.get("text", "") for p in self._parts(response_data)).strip()
        if not text:
            raise GeminiEmptyResponseError(f"Empty response for {operation}")
        return text

    async def generate_image(
        self,
        prompt: str,
        operation: str = "generate_image",
    ) -> GeneratedImage:
        """Generate one image for a prompt.

        Raises:
            GeminiEmptyResponseError: If no inline image data came back
            GeminiError: On API failure
        """
        response_data = await self._generate(
            self._image_model,
            operation,
            prompt,
            {"temperature": 1, "topK": 40, "topP": 0.95, "responseModalities": ["IMAGE"]},
        )

        for part in self._parts(response_data):
            inline = part.get("inlineData") or {}
            mime_type = inline.get("mimeType") or ""
            if mime_type.startswith("image/") and inline.get("data"):
                try:
                    data = base64.b64decode(inline["data"])
                except (binascii.Error, ValueError) as e:
                    raise GeminiEmptyResponseError("Undecodable image data") from e
                return GeneratedImage(data=data, mime_type=mime_type)

        text_parts = [p["text"] for p in self._parts(response_data) if p.get("text")]
        if text_parts:
            logger.warning(
                "Image model returned text instead of an image",
                extra={"model": self._image_model, "text_preview": text_parts[0][:200]},
            )
        raise GeminiEmptyResponseError("No image data in response")


# Global Gemini client instance
gemini_client: GeminiClient | None = None


async def init_gemini() -> GeminiClient:
    """Initialize the global Gemini client."""
    global gemini_client
    if gemini_client is None:
        gemini_client = GeminiClient()
        if gemini_client.available:
            logger.info(
                "Gemini client initialized",
                extra={
                    "text_model": gemini_client.text_model,
                    "image_model": gemini_client.image_model,
                },
            )
        else:
            logger.info("Gemini not configured (missing API key)")
    return gemini_client


async def close_gemini() -> None:
    """Close the global Gemini client."""
    global gemini_client
    if gemini_client:
        await gemini_client.close()
        gemini_client = None


async def get_gemini() -> GeminiClient:
    """Dependency for getting the Gemini client."""
    global gemini_client
    if gemini_client is None:
        await init_gemini()
    return gemini_client  # type: ignore[return-value]
