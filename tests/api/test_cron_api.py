"""Tests for the recovery cron endpoint."""

from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
from fastapi import FastAPI
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from merchgen.api.v1.endpoints.cron import get_recovery_service, is_authorized
from merchgen.models.session import SessionStatus
from merchgen.services.recovery import RecoveryService
from tests.conftest import get_test_settings

CRON_SECRET = "cron-test-secret"


@pytest.fixture(autouse=True)
def override_recovery(
    app: FastAPI, db_session: AsyncSession, mock_email: MagicMock
) -> None:
    app.dependency_overrides[get_recovery_service] = lambda: RecoveryService(
        db_session, mock_email, stale_hours=24, renotify_hours=24, email_initial_delay=0
    )


@pytest.fixture
def cron_secret() -> Generator[None, None, None]:
    with patch(
        "merchgen.api.v1.endpoints.cron.get_settings",
        return_value=get_test_settings(cron_secret=CRON_SECRET),
    ):
        yield


class TestIsAuthorized:
    def test_matching_bearer(self) -> None:
        assert is_authorized(f"Bearer {CRON_SECRET}", CRON_SECRET)

    @pytest.mark.parametrize(
        "header,secret",
        [
            (None, CRON_SECRET),
            (CRON_SECRET, CRON_SECRET),
            ("Bearer wrong", CRON_SECRET),
            ("Bearer ", ""),
            ("Bearer anything", None),
        ],
    )
    def test_rejected(self, header: str | None, secret: str | None) -> None:
        assert not is_authorized(header, secret)


class TestRecoveryEndpoint:
    """Tests for GET/POST /api/v1/cron/recovery."""

    async def test_missing_header_returns_401(
        self, async_client: AsyncClient, cron_secret
    ) -> None:
        response = await async_client.post("/api/v1/cron/recovery")

        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"

    async def test_unconfigured_secret_rejects_everything(
        self, async_client: AsyncClient
    ) -> None:
        with patch(
            "merchgen.api.v1.endpoints.cron.get_settings",
            return_value=get_test_settings(cron_secret=None),
        ):
            response = await async_client.post(
                "/api/v1/cron/recovery", headers={"Authorization": "Bearer "}
            )

        assert response.status_code == 401

    @pytest.mark.parametrize("method", ["GET", "POST"])
    async def test_runs_sweep(
        self,
        async_client: AsyncClient,
        cron_secret,
        make_session,
        mock_email: MagicMock,
        method: str,
    ) -> None:
        await make_session(
            status=SessionStatus.CONCEPT,
            scraped_data={"title": "Acme Coffee"},
            updated_at=datetime.now(UTC) - timedelta(hours=30),
        )

        response = await async_client.request(
            method,
            "/api/v1/cron/recovery",
            headers={"Authorization": f"Bearer {CRON_SECRET}"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert (data["found"], data["sent"], data["failed"], data["skipped"]) == (1, 1, 0, 0)
        mock_email.send.assert_awaited_once()

    async def test_nothing_to_recover(
        self, async_client: AsyncClient, cron_secret
    ) -> None:
        response = await async_client.get(
            "/api/v1/cron/recovery", headers={"Authorization": f"Bearer {CRON_SECRET}"}
        )

        assert response.status_code == 200
        assert response.json()["found"] == 0
        assert response.json()["message"] == "Sent 0 recovery emails"
