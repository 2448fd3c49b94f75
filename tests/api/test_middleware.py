"""Tests for request logging helpers, startup checks and the error envelope."""

import logging

import pytest
from httpx import AsyncClient

from merchgen.core.config import DEFAULT_MAGIC_LINK_SECRET
from merchgen.main import sanitize_body, warn_insecure_defaults
from tests.conftest import get_test_settings


class TestSanitizeBody:
    def test_redacts_secrets_and_masks_addresses(self) -> None:
        body = {
            "email": "owner@acme.example.com",
            "url": "https://acme.example.com",
            "token": "abc.def",
            "scraped_data": {"API_KEY": "k", "colors": ["#111111"]},
        }

        assert sanitize_body(body) == {
            "email": "o***@acme.example.com",
            "url": "https://acme.example.com",
            "token": "****",
            "scraped_data": {"API_KEY": "****", "colors": ["#111111"]},
        }

    def test_non_dict_passthrough(self) -> None:
        assert sanitize_body("plain") == "plain"
        assert sanitize_body([{"secret": "s"}]) == [{"secret": "****"}]


class TestErrorEnvelope:
    async def test_validation_error_shape(self, async_client: AsyncClient) -> None:
        response = await async_client.post("/api/v1/sessions", json={})

        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert "url" in body["error"]
        assert body["request_id"] == response.headers["X-Request-ID"]


class TestInsecureDefaults:
    def test_default_secret_outside_development_warns(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        settings = get_test_settings(
            environment="production", magic_link_secret=DEFAULT_MAGIC_LINK_SECRET
        )

        with caplog.at_level(logging.WARNING, logger="merchgen.main"):
            assert warn_insecure_defaults(settings) is True

        assert any("MAGIC_LINK_SECRET" in r.getMessage() for r in caplog.records)

    @pytest.mark.parametrize(
        "environment,secret",
        [
            ("development", DEFAULT_MAGIC_LINK_SECRET),
            ("production", "rotated-secret"),
        ],
    )
    def test_no_warning(self, environment: str, secret: str) -> None:
        settings = get_test_settings(environment=environment, magic_link_secret=secret)

        assert warn_insecure_defaults(settings) is False
