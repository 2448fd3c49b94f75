"""Unit tests for the Brandfetch integration client.

Tests cover:
- Response parsing (logo format choice, color filtering, fonts)
- Status code handling (404, 429, 401/403, 5xx)
- Circuit breaker accounting
- Unconfigured client

Uses unittest.mock with httpx for mocking HTTP requests.
"""

from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from merchgen.core.circuit_breaker import CircuitState
from merchgen.integrations.brandfetch import (
    BrandfetchAuthError,
    BrandfetchCircuitOpenError,
    BrandfetchClient,
    BrandfetchError,
    BrandfetchNotFoundError,
    BrandfetchRateLimitError,
    BrandfetchTimeoutError,
    domain_from_url,
    parse_brand,
)

BRAND_RESPONSE: dict[str, Any] = {
    "name": "Acme Coffee",
    "description": "Small-batch roasters",
    "logos": [
        {
            "formats": [
                {"format": "svg", "src": "https://cdn.brandfetch.io/acme.svg"},
                {"format": "png", "src": "https://cdn.brandfetch.io/acme.png"},
            ]
        }
    ],
    "colors": [{"hex": "#1a2b3c"}, {"hex": "#F0E68C"}, {"hex": "bogus"}],
    "fonts": [{"name": "Inter"}, {"name": ""}],
}


@pytest.fixture
def mock_settings() -> MagicMock:
    settings = MagicMock()
    settings.brandfetch_api_key = "bf-test-key"
    settings.brandfetch_api_url = "https://api.brandfetch.io"
    settings.brandfetch_timeout = 5.0
    settings.brandfetch_circuit_failure_threshold = 2
    settings.brandfetch_circuit_recovery_timeout = 60.0
    return settings


@pytest.fixture
def mock_httpx_client() -> AsyncMock:
    """Create a mock httpx AsyncClient."""
    return AsyncMock(spec=httpx.AsyncClient)


@pytest.fixture
def brandfetch(mock_settings: MagicMock, mock_httpx_client: AsyncMock) -> BrandfetchClient:
    with patch("merchgen.integrations.brandfetch.get_settings", return_value=mock_settings):
        client = BrandfetchClient()
    client._client = mock_httpx_client
    return client


def make_response(status_code: int, json_data: Any = None, headers: dict | None = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.json.return_value = json_data
    return response


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestParseBrand:
    def test_prefers_png_logo_and_filters_colors(self) -> None:
        brand = parse_brand("acme.example.com", BRAND_RESPONSE)

        assert brand.title == "Acme Coffee"
        assert brand.logo == "https://cdn.brandfetch.io/acme.png"
        assert brand.colors == ["#1A2B3C", "#F0E68C"]
        assert brand.fonts == ["Inter"]

    def test_falls_back_to_first_format(self) -> None:
        data = {"logos": [{"formats": [{"format": "svg", "src": "https://x/logo.svg"}]}]}

        assert parse_brand("x", data).logo == "https://x/logo.svg"

    def test_single_color_is_dropped(self) -> None:
        data = {"colors": [{"hex": "#111111"}]}

        assert parse_brand("x", data).colors == []

    def test_empty_response(self) -> None:
        brand = parse_brand("x", {})

        assert brand.title is None
        assert brand.logo is None
        assert brand.colors == []


@pytest.mark.parametrize(
    "url,domain",
    [
        ("https://www.Acme.example.com/about", "acme.example.com"),
        ("http://shop.acme.io", "shop.acme.io"),
        ("not a url", ""),
    ],
)
def test_domain_from_url(url: str, domain: str) -> None:
    assert domain_from_url(url) == domain


# ---------------------------------------------------------------------------
# fetch_brand
# ---------------------------------------------------------------------------


class TestFetchBrand:
    """Tests for fetch_brand()."""

    async def test_success(
        self, brandfetch: BrandfetchClient, mock_httpx_client: AsyncMock
    ) -> None:
        mock_httpx_client.get.return_value = make_response(200, BRAND_RESPONSE)

        brand = await brandfetch.fetch_brand("https://www.acme.example.com")

        assert brand.domain == "acme.example.com"
        assert brand.logo == "https://cdn.brandfetch.io/acme.png"
        mock_httpx_client.get.assert_awaited_once_with("/v2/brands/acme.example.com")

    async def test_not_found_does_not_trip_circuit(
        self, brandfetch: BrandfetchClient, mock_httpx_client: AsyncMock
    ) -> None:
        mock_httpx_client.get.return_value = make_response(404)

        for _ in range(3):
            with pytest.raises(BrandfetchNotFoundError):
                await brandfetch.fetch_brand("https://acme.example.com")

        assert brandfetch.circuit_breaker.state == CircuitState.CLOSED

    async def test_rate_limit_carries_retry_after(
        self, brandfetch: BrandfetchClient, mock_httpx_client: AsyncMock
    ) -> None:
        mock_httpx_client.get.return_value = make_response(429, headers={"retry-after": "7"})

        with pytest.raises(BrandfetchRateLimitError) as exc_info:
            await brandfetch.fetch_brand("https://acme.example.com")

        assert exc_info.value.retry_after == 7.0
        assert exc_info.value.status_code == 429

    @pytest.mark.parametrize("status_code", [401, 403])
    async def test_auth_failure(
        self,
        brandfetch: BrandfetchClient,
        mock_httpx_client: AsyncMock,
        status_code: int,
    ) -> None:
        mock_httpx_client.get.return_value = make_response(status_code)

        with pytest.raises(BrandfetchAuthError):
            await brandfetch.fetch_brand("https://acme.example.com")

    async def test_timeout(
        self, brandfetch: BrandfetchClient, mock_httpx_client: AsyncMock
    ) -> None:
        mock_httpx_client.get.side_effect = httpx.ReadTimeout("slow")

        with pytest.raises(BrandfetchTimeoutError):
            await brandfetch.fetch_brand("https://acme.example.com")

    async def test_server_errors_open_circuit(
        self, brandfetch: BrandfetchClient, mock_httpx_client: AsyncMock
    ) -> None:
        mock_httpx_client.get.return_value = make_response(503)

        for _ in range(2):
            with pytest.raises(BrandfetchError):
                await brandfetch.fetch_brand("https://acme.example.com")

        with pytest.raises(BrandfetchCircuitOpenError):
            await brandfetch.fetch_brand("https://acme.example.com")
        assert mock_httpx_client.get.await_count == 2

    async def test_unconfigured(self, mock_settings: MagicMock) -> None:
        mock_settings.brandfetch_api_key = None
        with patch("merchgen.integrations.brandfetch.get_settings", return_value=mock_settings):
            client = BrandfetchClient()

        assert client.available is False
        with pytest.raises(BrandfetchError, match="not configured"):
            await client.fetch_brand("https://acme.example.com")
