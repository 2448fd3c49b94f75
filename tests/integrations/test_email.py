"""Unit tests for the SMTP email client.

Tests cover:
- Message construction (multipart, From/To/Subject)
- Login only when credentials are set
- Error mapping for auth, connection and timeout failures
- Unconfigured client

Uses unittest.mock for mocking aiosmtplib.
"""

from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock, patch

import aiosmtplib
import pytest

from merchgen.integrations.email import (
    EmailAuthError,
    EmailCircuitOpenError,
    EmailClient,
    EmailConnectionError,
    EmailError,
    EmailNotConfiguredError,
    EmailTimeoutError,
    translate_error,
)
from tests.conftest import get_test_settings


@pytest.fixture
def mock_settings() -> MagicMock:
    settings = MagicMock()
    settings.smtp_host = "smtp.example.com"
    settings.smtp_port = 587
    settings.smtp_username = "mailer"
    settings.smtp_password = "secret"
    settings.smtp_use_tls = True
    settings.smtp_use_ssl = False
    settings.smtp_timeout = 10.0
    settings.smtp_from_email = "designs@merch.example.com"
    settings.smtp_from_name = "Merchgen"
    settings.email_circuit_failure_threshold = 3
    settings.email_circuit_recovery_timeout = 60.0
    return settings


@pytest.fixture
def email_client(mock_settings: MagicMock) -> EmailClient:
    with patch("merchgen.integrations.email.get_settings", return_value=mock_settings):
        return EmailClient()


@pytest.fixture
def mock_smtp() -> Generator[tuple[MagicMock, MagicMock], None, None]:
    """Patch aiosmtplib.SMTP; yields (constructor, connected server)."""
    with patch("merchgen.integrations.email.aiosmtplib.SMTP") as smtp_cls:
        server = MagicMock()
        server.login = AsyncMock()
        server.send_message = AsyncMock()
        smtp_cls.return_value.__aenter__.return_value = server
        smtp_cls.return_value.__aexit__.return_value = False
        yield smtp_cls, server


async def send(client: EmailClient):
    return await client.send(
        recipient="owner@example.com",
        subject="Hello",
        body_html="<p>Hi</p>",
        body_text="Hi",
    )


class TestSend:
    """Tests for send()."""

    async def test_sends_multipart_message(
        self, email_client: EmailClient, mock_smtp
    ) -> None:
        smtp_cls, server = mock_smtp

        result = await send(email_client)

        assert result.recipient == "owner@example.com"
        assert result.subject == "Hello"
        smtp_cls.assert_called_once_with(
            hostname="smtp.example.com",
            port=587,
            use_tls=False,
            start_tls=True,
            timeout=10.0,
        )
        server.login.assert_awaited_once_with("mailer", "secret")
        message = server.send_message.await_args.args[0]
        assert message["To"] == "owner@example.com"
        assert message["From"] == "Merchgen <designs@merch.example.com>"
        assert [p.get_content_type() for p in message.get_payload()] == [
            "text/plain",
            "text/html",
        ]

    async def test_no_login_without_credentials(
        self, mock_settings: MagicMock, mock_smtp
    ) -> None:
        _, server = mock_smtp
        mock_settings.smtp_username = None
        with patch("merchgen.integrations.email.get_settings", return_value=mock_settings):
            client = EmailClient()

        await send(client)

        server.login.assert_not_called()

    @pytest.mark.parametrize(
        "error,expected",
        [
            (aiosmtplib.SMTPAuthenticationError(535, "bad credentials"), EmailAuthError),
            (aiosmtplib.SMTPConnectError("refused"), EmailConnectionError),
            (aiosmtplib.SMTPTimeoutError("slow"), EmailTimeoutError),
            (aiosmtplib.SMTPResponseException(550, "mailbox unavailable"), EmailError),
        ],
    )
    async def test_error_mapping(
        self,
        email_client: EmailClient,
        mock_smtp,
        error: Exception,
        expected: type[EmailError],
    ) -> None:
        _, server = mock_smtp
        server.send_message.side_effect = error

        with pytest.raises(expected):
            await send(email_client)

        assert email_client.circuit_breaker.failure_count == 1

    async def test_unconfigured(self, mock_settings: MagicMock, mock_smtp) -> None:
        smtp_cls, _ = mock_smtp
        mock_settings.smtp_host = None
        with patch("merchgen.integrations.email.get_settings", return_value=mock_settings):
            client = EmailClient()

        assert client.available is False
        with pytest.raises(EmailNotConfiguredError):
            await send(client)
        smtp_cls.assert_not_called()

    async def test_open_circuit_rejects_without_connecting(
        self, email_client: EmailClient, mock_smtp
    ) -> None:
        smtp_cls, server = mock_smtp
        server.send_message.side_effect = aiosmtplib.SMTPConnectError("refused")
        for _ in range(3):
            with pytest.raises(EmailConnectionError):
                await send(email_client)
        smtp_cls.reset_mock()

        with pytest.raises(EmailCircuitOpenError):
            await send(email_client)
        smtp_cls.assert_not_called()


class TestTranslateError:
    """Tests for translate_error()."""

    def test_connect_timeout_is_a_timeout(self) -> None:
        error = translate_error(aiosmtplib.SMTPConnectTimeoutError("connect timed out"))
        assert isinstance(error, EmailTimeoutError)

    def test_socket_error_is_a_connection_error(self) -> None:
        assert isinstance(translate_error(OSError("unreachable")), EmailConnectionError)

    def test_disconnect_is_a_connection_error(self) -> None:
        error = translate_error(aiosmtplib.SMTPServerDisconnected("gone"))
        assert isinstance(error, EmailConnectionError)


class TestDefaultSettings:
    """Client built from real Settings with SMTP left unset."""

    @pytest.mark.parametrize("smtp_host", [None, "smtp.example.com"])
    def test_missing_sender_marks_unavailable(self, smtp_host: str | None) -> None:
        client = EmailClient(get_test_settings(smtp_host=smtp_host, smtp_from_email=None))

        assert client.available is False

    async def test_send_without_sender_raises_not_configured(self, mock_smtp) -> None:
        smtp_cls, _ = mock_smtp
        client = EmailClient(get_test_settings(smtp_host=None, smtp_from_email=None))

        with pytest.raises(EmailNotConfiguredError):
            await send(client)
        smtp_cls.assert_not_called()
