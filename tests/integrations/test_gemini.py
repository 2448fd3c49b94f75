"""Unit tests for the Gemini integration client.

Tests cover:
- generate_text() joins text parts and rejects empty output
- generate_image() decodes inline image data
- Status code handling and circuit breaker accounting

Uses unittest.mock with httpx for mocking HTTP requests.
"""

import base64
import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from merchgen.core.circuit_breaker import CircuitState
from merchgen.integrations.gemini import (
    GeminiAuthError,
    GeminiClient,
    GeminiEmptyResponseError,
    GeminiError,
    GeminiRateLimitError,
    GeminiTimeoutError,
    GeneratedImage,
)


@pytest.fixture
def mock_settings() -> MagicMock:
    settings = MagicMock()
    settings.gemini_api_key = "gm-test-key"
    settings.gemini_text_model = "gemini-text"
    settings.gemini_image_model = "gemini-image"
    settings.gemini_timeout = 30.0
    settings.gemini_api_url = "https://generativelanguage.googleapis.com"
    settings.gemini_circuit_failure_threshold = 2
    settings.gemini_circuit_recovery_timeout = 60.0
    return settings


@pytest.fixture
def mock_httpx_client() -> AsyncMock:
    """Create a mock httpx AsyncClient."""
    return AsyncMock(spec=httpx.AsyncClient)


@pytest.fixture
def gemini(mock_settings: MagicMock, mock_httpx_client: AsyncMock) -> GeminiClient:
    with patch("merchgen.integrations.gemini.get_settings", return_value=mock_settings):
        client = GeminiClient()
    client._client = mock_httpx_client
    return client


def make_response(
    status_code: int, json_data: Any = None, headers: dict | None = None
) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.json.return_value = json_data
    response.text = json.dumps(json_data)
    response.content = response.text.encode()
    return response


def candidate(*parts: dict[str, Any]) -> dict[str, Any]:
    return {
        "candidates": [{"content": {"parts": list(parts)}}],
        "usageMetadata": {"promptTokenCount": 10, "candidatesTokenCount": 5},
    }


class TestGenerateText:
    """Tests for generate_text()."""

    async def test_joins_parts(
        self, gemini: GeminiClient, mock_httpx_client: AsyncMock
    ) -> None:
        mock_httpx_client.post.return_value = make_response(
            200, candidate({"text": "  Bold "}, {"text": "concept  "})
        )

        text = await gemini.generate_text("prompt", operation="concept_generation")

        assert text == "Bold concept"
        call = mock_httpx_client.post.await_args
        assert call.args[0] == "/v1beta/models/gemini-text:generateContent"
        assert call.kwargs["json"]["contents"][0]["parts"][0]["text"] == "prompt"

    async def test_empty_response_raises(
        self, gemini: GeminiClient, mock_httpx_client: AsyncMock
    ) -> None:
        mock_httpx_client.post.return_value = make_response(200, {"candidates": []})

        with pytest.raises(GeminiEmptyResponseError):
            await gemini.generate_text("prompt")

    async def test_rate_limit(
        self, gemini: GeminiClient, mock_httpx_client: AsyncMock
    ) -> None:
        mock_httpx_client.post.return_value = make_response(
            429, {}, headers={"retry-after": "3"}
        )

        with pytest.raises(GeminiRateLimitError) as exc_info:
            await gemini.generate_text("prompt")

        assert exc_info.value.retry_after == 3.0

    async def test_auth_failure(
        self, gemini: GeminiClient, mock_httpx_client: AsyncMock
    ) -> None:
        mock_httpx_client.post.return_value = make_response(403, {})

        with pytest.raises(GeminiAuthError):
            await gemini.generate_text("prompt")

    async def test_client_error_does_not_trip_circuit(
        self, gemini: GeminiClient, mock_httpx_client: AsyncMock
    ) -> None:
        mock_httpx_client.post.return_value = make_response(
            400, {"error": {"message": "bad prompt"}}
        )

        for _ in range(3):
            with pytest.raises(GeminiError, match="bad prompt"):
                await gemini.generate_text("prompt")

        assert gemini.circuit_breaker.state == CircuitState.CLOSED

    async def test_server_errors_open_circuit(
        self, gemini: GeminiClient, mock_httpx_client: AsyncMock
    ) -> None:
        mock_httpx_client.post.return_value = make_response(500, {})

        for _ in range(2):
            with pytest.raises(GeminiError) as exc_info:
                await gemini.generate_text("prompt")
            assert exc_info.value.status_code == 500

        assert gemini.circuit_breaker.state == CircuitState.OPEN

    async def test_timeout(
        self, gemini: GeminiClient, mock_httpx_client: AsyncMock
    ) -> None:
        mock_httpx_client.post.side_effect = httpx.ReadTimeout("slow")

        with pytest.raises(GeminiTimeoutError):
            await gemini.generate_text("prompt")

    async def test_unconfigured(self, mock_settings: MagicMock) -> None:
        mock_settings.gemini_api_key = None
        with patch("merchgen.integrations.gemini.get_settings", return_value=mock_settings):
            client = GeminiClient()

        with pytest.raises(GeminiError, match="not configured"):
            await client.generate_text("prompt")


class TestGenerateImage:
    """Tests for generate_image()."""

    async def test_decodes_inline_image(
        self, gemini: GeminiClient, mock_httpx_client: AsyncMock
    ) -> None:
        encoded = base64.b64encode(b"\x89PNGdata").decode()
        mock_httpx_client.post.return_value = make_response(
            200,
            candidate(
                {"text": "Here is your image"},
                {"inlineData": {"mimeType": "image/png", "data": encoded}},
            ),
        )

        image = await gemini.generate_image("a mountain", operation="motif_image")

        assert image == GeneratedImage(data=b"\x89PNGdata", mime_type="image/png")
        assert image.extension == "png"
        call = mock_httpx_client.post.await_args
        assert call.args[0] == "/v1beta/models/gemini-image:generateContent"
        assert call.kwargs["json"]["generationConfig"]["responseModalities"] == ["IMAGE"]

    async def test_text_only_response_raises(
        self, gemini: GeminiClient, mock_httpx_client: AsyncMock
    ) -> None:
        mock_httpx_client.post.return_value = make_response(
            200, candidate({"text": "I can't draw that"})
        )

        with pytest.raises(GeminiEmptyResponseError, match="No image"):
            await gemini.generate_image("a mountain")
