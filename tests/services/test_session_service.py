"""Tests for SessionService.

Covers:
- Idempotent create per (email, url), including the placeholder address
- Magic-link token checks on read
- Brand review edits: color validation, review flags, email change
- Best-effort magic-link delivery
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from merchgen.integrations.email import EmailConnectionError
from merchgen.models.session import SessionStatus
from merchgen.services.magic_link import generate_token
from merchgen.services.session import (
    GUEST_EMAIL_DOMAIN,
    InvalidTokenError,
    SessionNotFoundError,
    SessionService,
    SessionValidationError,
    is_placeholder_email,
    placeholder_email,
)


@pytest.fixture
def service(db_session: AsyncSession, mock_email: MagicMock) -> SessionService:
    return SessionService(db_session, mock_email)


# ---------------------------------------------------------------------------
# Placeholder email
# ---------------------------------------------------------------------------


class TestPlaceholderEmail:
    def test_deterministic_per_url(self) -> None:
        a = placeholder_email("https://acme.example.com")

        assert a == placeholder_email("https://acme.example.com")
        assert a != placeholder_email("https://other.example.com")
        assert a.endswith(f"@{GUEST_EMAIL_DOMAIN}")

    def test_is_placeholder_email(self) -> None:
        assert is_placeholder_email(placeholder_email("https://a.example.com"))
        assert is_placeholder_email(None)
        assert not is_placeholder_email("owner@example.com")


# ---------------------------------------------------------------------------
# create_session
# ---------------------------------------------------------------------------


class TestCreateSession:
    """Test session creation."""

    async def test_creates_session_at_scraping(
        self, service: SessionService, mock_email: MagicMock
    ) -> None:
        result = await service.create_session("owner@example.com", "https://acme.example.com")

        assert result.created is True
        assert result.session.status == SessionStatus.SCRAPING.value
        assert result.session.version == 1
        assert f"/session/{result.session.id}?token=" in result.magic_link
        mock_email.send.assert_awaited_once()
        assert mock_email.send.await_args.kwargs["recipient"] == "owner@example.com"

    async def test_duplicate_returns_existing(
        self, service: SessionService, mock_email: MagicMock
    ) -> None:
        first = await service.create_session("owner@example.com", "https://acme.example.com")
        second = await service.create_session("owner@example.com", " https://acme.example.com ")

        assert second.created is False
        assert second.session.id == first.session.id
        # Only the first create sends a link
        assert mock_email.send.await_count == 1

    async def test_missing_email_uses_placeholder(
        self, service: SessionService, mock_email: MagicMock
    ) -> None:
        first = await service.create_session(None, "https://acme.example.com")
        second = await service.create_session(None, "https://acme.example.com")

        assert is_placeholder_email(first.session.email)
        assert second.session.id == first.session.id
        mock_email.send.assert_not_called()

    async def test_same_url_different_email_creates_new(
        self, service: SessionService
    ) -> None:
        a = await service.create_session("a@example.com", "https://acme.example.com")
        b = await service.create_session("b@example.com", "https://acme.example.com")

        assert a.session.id != b.session.id

    @pytest.mark.parametrize("url", ["", "   ", "ftp://acme.example.com", "not a url"])
    async def test_invalid_url_rejected(self, service: SessionService, url: str) -> None:
        with pytest.raises(SessionValidationError) as exc_info:
            await service.create_session("owner@example.com", url)

        assert exc_info.value.field == "url"

    async def test_email_failure_does_not_fail_create(
        self, service: SessionService, mock_email: MagicMock
    ) -> None:
        mock_email.send = AsyncMock(side_effect=EmailConnectionError("down"))

        with patch("merchgen.services.session.EMAIL_INITIAL_DELAY", 0):
            result = await service.create_session(
                "owner@example.com", "https://acme.example.com"
            )

        assert result.created is True
        assert mock_email.send.await_count == 3

    async def test_unconfigured_email_skips_send(
        self, db_session: AsyncSession, mock_email: MagicMock
    ) -> None:
        mock_email.available = False
        service = SessionService(db_session, mock_email)

        result = await service.create_session("owner@example.com", "https://acme.example.com")

        assert result.created is True
        mock_email.send.assert_not_called()


# ---------------------------------------------------------------------------
# get_session
# ---------------------------------------------------------------------------


class TestGetSession:
    """Test reads and token checks."""

    async def test_not_found(self, service: SessionService) -> None:
        with pytest.raises(SessionNotFoundError):
            await service.get_session("00000000-0000-0000-0000-000000000000")

    async def test_without_token(self, service: SessionService, make_session) -> None:
        merch_session = await make_session()

        loaded = await service.get_session(merch_session.id)

        assert loaded.id == merch_session.id

    async def test_valid_token(self, service: SessionService, make_session) -> None:
        merch_session = await make_session()
        token = generate_token(merch_session.id, merch_session.email)

        loaded = await service.get_session(merch_session.id, token)

        assert loaded.id == merch_session.id

    async def test_token_for_other_session_rejected(
        self, service: SessionService, make_session
    ) -> None:
        merch_session = await make_session()
        token = generate_token("another-session", merch_session.email)

        with pytest.raises(InvalidTokenError):
            await service.get_session(merch_session.id, token)

    async def test_garbage_token_rejected(
        self, service: SessionService, make_session
    ) -> None:
        merch_session = await make_session()

        with pytest.raises(InvalidTokenError):
            await service.get_session(merch_session.id, "garbage")


# ---------------------------------------------------------------------------
# patch_session
# ---------------------------------------------------------------------------


class TestPatchSession:
    """Test brand review edits."""

    async def test_supplying_missing_fields_clears_flags(
        self, service: SessionService, make_session
    ) -> None:
        merch_session = await make_session(
            status=SessionStatus.AWAITING_APPROVAL,
            scraped_data={
                "title": "Acme",
                "logo": None,
                "colors": [],
                "requires_manual_input": True,
                "missing_fields": ["logo", "colors"],
            },
        )

        updated = await service.patch_session(
            merch_session.id,
            scraped_data={
                "logo": "https://cdn.example.com/logo.png",
                "colors": ["#aabbcc", "#112233"],
            },
        )

        assert updated.scraped_data["colors"] == ["#AABBCC", "#112233"]
        assert updated.scraped_data["missing_fields"] == []
        assert updated.scraped_data["requires_manual_input"] is False
        assert updated.scraped_data["title"] == "Acme"
        assert updated.version == 2
        # Review edits never move the status
        assert updated.status == SessionStatus.AWAITING_APPROVAL.value

    @pytest.mark.parametrize(
        "colors",
        [
            ["#FFFFFF"],
            ["#FFFFFF", "#000000", "#111111", "#222222", "#333333", "#444444"],
            ["#FFF", "#000000"],
            ["red", "#000000"],
        ],
    )
    async def test_invalid_colors_rejected_without_mutation(
        self, service: SessionService, make_session, colors: list[str]
    ) -> None:
        merch_session = await make_session(
            status=SessionStatus.AWAITING_APPROVAL,
            scraped_data={"title": "Acme", "colors": []},
        )

        with pytest.raises(SessionValidationError) as exc_info:
            await service.patch_session(merch_session.id, scraped_data={"colors": colors})

        assert exc_info.value.field == "colors"
        reloaded = await service.get_session(merch_session.id)
        assert reloaded.version == 1
        assert reloaded.scraped_data == {"title": "Acme", "colors": []}

    async def test_email_change(
        self, service: SessionService, make_session, mock_email: MagicMock
    ) -> None:
        merch_session = await make_session()

        updated = await service.patch_session(
            merch_session.id, email="new@example.com", send_notification=True
        )

        assert updated.email == "new@example.com"
        assert mock_email.send.await_args.kwargs["recipient"] == "new@example.com"

    async def test_email_change_colliding_with_existing_session(
        self, service: SessionService, make_session
    ) -> None:
        await make_session(email="taken@example.com")
        merch_session = await make_session(email="owner@example.com")

        with pytest.raises(SessionValidationError) as exc_info:
            await service.patch_session(merch_session.id, email="taken@example.com")

        assert exc_info.value.field == "email"

    async def test_not_found(self, service: SessionService) -> None:
        with pytest.raises(SessionNotFoundError):
            await service.patch_session("missing", email="x@example.com")
