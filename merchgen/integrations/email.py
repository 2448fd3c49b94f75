"""SMTP transport for merchgen notifications.

One connection per message: sends are rare (magic links, results, recovery
nudges) so pooling buys nothing. Messages are multipart/alternative with a
plain-text part first. There is a single attempt per call; callers wrap
sends in retry_with_backoff.

ERROR LOGGING REQUIREMENTS:
- Log every send with masked recipient, subject and timing
- Map timeouts, connection errors and auth failures to typed exceptions
- Never log SMTP credentials or full recipient addresses
- Log circuit breaker state changes
"""

import time
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr, make_msgid

import aiosmtplib

from merchgen.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from merchgen.core.config import Settings, get_settings
from merchgen.core.logging import get_logger, mask_email

logger = get_logger(__name__)

SUBJECT_LOG_LENGTH = 50


@dataclass
class EmailResult:
    """Result of a successful email send."""

    recipient: str
    subject: str
    duration_ms: float = 0.0


class EmailError(Exception):
    """Base exception for email errors."""


class EmailNotConfiguredError(EmailError):
    pass


class EmailConnectionError(EmailError):
    pass


class EmailAuthError(EmailError):
    pass


class EmailTimeoutError(EmailError):
    pass


class EmailCircuitOpenError(EmailError):
    pass


def translate_error(error: Exception) -> EmailError:
    """Map an aiosmtplib/socket failure onto the EmailError hierarchy."""
    # Timeout first: SMTPConnectTimeoutError is also an SMTPConnectError
    if isinstance(error, (TimeoutError, aiosmtplib.SMTPTimeoutError)):
        return EmailTimeoutError(f"Timed out: {error}")
    if isinstance(error, aiosmtplib.SMTPAuthenticationError):
        return EmailAuthError(f"Authentication failed: {error}")
    if isinstance(
        error, (aiosmtplib.SMTPConnectError, aiosmtplib.SMTPServerDisconnected, OSError)
    ):
        return EmailConnectionError(f"Connection error: {error}")
    return EmailError(f"Send failed: {error}")


class EmailClient:
    """Sends one message per SMTP connection."""

    def __init__(self, settings: Settings | None = None) -> None:
        """Configure from SMTP_* settings.

        SMTP_USE_SSL means implicit TLS on connect (port 465). SMTP_USE_TLS
        means STARTTLS after connecting and is ignored when SSL is on.
        """
        settings = settings or get_settings()
        sender_address = settings.smtp_from_email

        self._host = settings.smtp_host
        self._port = settings.smtp_port
        # Login only with a full credential pair
        self._credentials = (
            (settings.smtp_username, settings.smtp_password)
            if settings.smtp_username and settings.smtp_password
            else None
        )
        self._use_ssl = settings.smtp_use_ssl
        self._start_tls = settings.smtp_use_tls and not settings.smtp_use_ssl
        self._timeout = settings.smtp_timeout
        self._from_name = settings.smtp_from_name
        self._from_email = sender_address

        self._circuit_breaker = CircuitBreaker(
            CircuitBreakerConfig(
                failure_threshold=settings.email_circuit_failure_threshold,
                recovery_timeout=settings.email_circuit_recovery_timeout,
            ),
            name="email",
        )

        self._available = bool(self._host and sender_address)

    @property
    def available(self) -> bool:
        return self._available

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    def build_message(
        self, recipient: str, subject: str, body_html: str, body_text: str
    ) -> EmailMessage:
        message = EmailMessage()
        message["From"] = formataddr((self._from_name, self._from_email))
        message["To"] = recipient
        message["Subject"] = subject
        message["Message-ID"] = make_msgid(domain=self._from_email.rpartition("@")[2] or None)
        message.set_content(body_text)
        message.add_alternative(body_html, subtype="html")
        return message

    async def _deliver(self, message: EmailMessage) -> None:
        async with aiosmtplib.SMTP(
            hostname=self._host,
            port=self._port,
            use_tls=self._use_ssl,
            start_tls=self._start_tls,
            timeout=self._timeout,
        ) as smtp:
            if self._credentials:
                await smtp.login(*self._credentials)
            await smtp.send_message(message)

    async def send(
        self,
        recipient: str,
        subject: str,
        body_html: str,
        body_text: str,
    ) -> EmailResult:
        """Send one email.

        Raises:
            EmailNotConfiguredError: If SMTP settings are missing
            EmailCircuitOpenError: If circuit breaker is open
            EmailAuthError, EmailTimeoutError, EmailConnectionError, EmailError:
                From the SMTP exchange (see translate_error)
        """
        log_extra = {
            "recipient": mask_email(recipient),
            "subject": subject[:SUBJECT_LOG_LENGTH],
        }

        if not self._available:
            logger.warning("Email client not configured", extra=log_extra)
            raise EmailNotConfiguredError("Email client not configured (missing SMTP settings)")
        if not await self._circuit_breaker.can_execute():
            logger.warning("Email circuit breaker open, rejecting send", extra=log_extra)
            raise EmailCircuitOpenError("Circuit breaker is open")

        start_time = time.monotonic()
        try:
            await self._deliver(self.build_message(recipient, subject, body_html, body_text))
        except (aiosmtplib.SMTPException, OSError) as e:
            await self._circuit_breaker.record_failure()
            error = translate_error(e)
            logger.error(
                "Email send failed",
                extra={
                    **log_extra,
                    "duration_ms": round((time.monotonic() - start_time) * 1000, 2),
                    "error_type": type(error).__name__,
                    "error_message": str(e),
                },
            )
            raise error from e

        duration_ms = (time.monotonic() - start_time) * 1000
        await self._circuit_breaker.record_success()
        logger.info("Email sent", extra={**log_extra, "duration_ms": round(duration_ms, 2)})
        return EmailResult(recipient=recipient, subject=subject, duration_ms=duration_ms)


_email_client: EmailClient | None = None


def get_email_client() -> EmailClient:
    """Get or create the process-wide email client."""
    global _email_client
    if _email_client is None:
        _email_client = EmailClient()
    return _email_client


async def close_email_client() -> None:
    # No persistent connection; dropping the instance re-reads settings next time
    global _email_client
    _email_client = None
