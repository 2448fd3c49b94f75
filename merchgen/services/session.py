"""SessionService for creating, reading and editing merchandise sessions.

Orchestrates business logic between the API layer and SessionRepository:
- Idempotent create per (email, url)
- Magic-link access checks on read
- Brand review edits with color validation and review-flag recomputation

ERROR LOGGING REQUIREMENTS:
- Log method entry/exit at DEBUG level with parameters (sanitized)
- Log all exceptions with full stack trace and context
- Include entity IDs (session_id) in all service logs
- Log validation failures with field names and rejected values
- Add timing logs for operations >1 second
"""

import hashlib
import time
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from merchgen.core.logging import get_logger, mask_email
from merchgen.core.retry import retry_with_backoff
from merchgen.integrations.email import EmailClient, EmailError
from merchgen.models.session import MerchSession
from merchgen.repositories.session import SessionRepository
from merchgen.schemas.brand import ScrapedDataUpdate, validate_colors, with_review_flags
from merchgen.schemas.session import normalize_url
from merchgen.services.magic_link import build_magic_link, verify_token
from merchgen.services.notifications import NotificationService

logger = get_logger(__name__)

SLOW_OPERATION_THRESHOLD_MS = 1000

GUEST_EMAIL_DOMAIN = "guest.merchgen.invalid"

EMAIL_MAX_RETRIES = 3
EMAIL_INITIAL_DELAY = 2.0


def placeholder_email(url: str) -> str:
    """Deterministic stand-in address for sessions created without an email."""
    digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]
    return f"guest-{digest}@{GUEST_EMAIL_DOMAIN}"


def is_placeholder_email(email: str | None) -> bool:
    return not email or email.endswith(f"@{GUEST_EMAIL_DOMAIN}")


class SessionServiceError(Exception):
    """Base exception for SessionService errors."""

    pass


class SessionNotFoundError(SessionServiceError):
    """Raised when a session is not found."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class SessionValidationError(SessionServiceError):
    """Raised when session input fails validation."""

    def __init__(self, field: str, value: Any, message: str):
        self.field = field
        self.value = value
        self.message = message
        super().__init__(f"Validation error for {field}: {message}")


class InvalidTokenError(SessionServiceError):
    """Raised when a magic-link token does not grant access to a session."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__("Invalid or expired token")


@dataclass
class CreateSessionResult:
    """Outcome of SessionService.create_session."""

    session: MerchSession
    created: bool
    magic_link: str


class SessionService:
    """Service for session lifecycle outside the pipeline stages."""

    def __init__(
        self,
        session: AsyncSession,
        email_client: EmailClient | None = None,
    ) -> None:
        self.session = session
        self.repository = SessionRepository(session)
        self._email_client = email_client

    def _log_slow(self, operation: str, start_time: float, session_id: str | None) -> None:
        duration_ms = (time.monotonic() - start_time) * 1000
        if duration_ms > SLOW_OPERATION_THRESHOLD_MS:
            logger.warning(
                f"Slow session operation: {operation}",
                extra={
                    "session_id": session_id,
                    "duration_ms": round(duration_ms, 2),
                },
            )

    async def create_session(self, email: str | None, url: str) -> CreateSessionResult:
        """Create a session for (email, url) or return the existing one.

        Raises:
            SessionValidationError: If the URL is invalid
        """
        start_time = time.monotonic()
        try:
            url = normalize_url(url)
        except ValueError as e:
            logger.warning(
                "Session URL rejected",
                extra={"field": "url", "rejected_value": url[:200], "error": str(e)},
            )
            raise SessionValidationError("url", url, str(e)) from e

        email = email.strip() if email else placeholder_email(url)
        logger.debug(
            "Creating session",
            extra={"email": mask_email(email), "url": url},
        )

        existing = await self.repository.get_by_email_url(email, url)
        if existing is not None:
            logger.info(
                "Returning existing session for duplicate request",
                extra={"session_id": existing.id},
            )
            return CreateSessionResult(
                session=existing,
                created=False,
                magic_link=build_magic_link(existing.id, existing.email),
            )

        try:
            merch_session = await self.repository.create(email, url)
            await self.session.commit()
        except IntegrityError:
            # Lost an insert race for the same (email, url)
            await self.session.rollback()
            winner = await self.repository.get_by_email_url(email, url)
            if winner is None:
                raise
            logger.info(
                "Concurrent create resolved to existing session",
                extra={"session_id": winner.id},
            )
            return CreateSessionResult(
                session=winner,
                created=False,
                magic_link=build_magic_link(winner.id, winner.email),
            )

        magic_link = build_magic_link(merch_session.id, merch_session.email)
        logger.info(
            "Session created",
            extra={"session_id": merch_session.id, "url": url},
        )

        await self.send_access_link(merch_session, magic_link)
        self._log_slow("create_session", start_time, merch_session.id)
        return CreateSessionResult(
            session=merch_session, created=True, magic_link=magic_link
        )

    async def get_session(self, session_id: str, token: str | None = None) -> MerchSession:
        """Load a session, checking the magic-link token when one is given.

        Raises:
            SessionNotFoundError: If the session does not exist
            InvalidTokenError: If the token is invalid, expired or for another session
        """
        merch_session = await self.repository.get_by_id(session_id)
        if merch_session is None:
            raise SessionNotFoundError(session_id)

        if token is not None:
            payload = verify_token(token)
            if payload is None or payload.session_id != session_id:
                logger.warning(
                    "Magic link token rejected",
                    extra={"session_id": session_id},
                )
                raise InvalidTokenError(session_id)

        return merch_session

    async def patch_session(
        self,
        session_id: str,
        scraped_data: ScrapedDataUpdate | dict[str, Any] | None = None,
        email: str | None = None,
        send_notification: bool = False,
    ) -> MerchSession:
        """Apply brand review edits and/or an email change.

        Raises:
            SessionNotFoundError: If the session does not exist
            SessionValidationError: If colors are invalid or the new email
                collides with another session for the same URL
        """
        start_time = time.monotonic()
        merch_session = await self.repository.get_by_id(session_id)
        if merch_session is None:
            raise SessionNotFoundError(session_id)

        if isinstance(scraped_data, ScrapedDataUpdate):
            updates = scraped_data.model_dump(exclude_unset=True)
        else:
            updates = dict(scraped_data or {})

        if updates.get("colors") is not None:
            try:
                updates["colors"] = validate_colors(updates["colors"])
            except ValueError as e:
                logger.warning(
                    "Color validation failed",
                    extra={
                        "session_id": session_id,
                        "field": "colors",
                        "rejected_value": updates["colors"],
                    },
                )
                raise SessionValidationError("colors", updates["colors"], str(e)) from e

        changes: dict[str, Any] = {}
        if updates:
            changes["scraped_data"] = with_review_flags(
                {**(merch_session.scraped_data or {}), **updates}
            )
        if email is not None and email != merch_session.email:
            changes["email"] = email

        if changes:
            try:
                result = await self.repository.apply_changes(session_id, changes)
                await self.session.commit()
            except IntegrityError as e:
                await self.session.rollback()
                logger.warning(
                    "Email change collides with an existing session",
                    extra={"session_id": session_id, "email": mask_email(email)},
                )
                raise SessionValidationError(
                    "email", email, "A session for this email and URL already exists"
                ) from e
            if result is None:
                raise SessionNotFoundError(session_id)
            merch_session = result.session
            logger.info(
                "Session updated",
                extra={"session_id": session_id, "fields": sorted(changes)},
            )

        if send_notification:
            await self.send_access_link(merch_session)

        self._log_slow("patch_session", start_time, session_id)
        return merch_session

    async def send_access_link(
        self, merch_session: MerchSession, magic_link: str | None = None
    ) -> bool:
        """Email the session's magic link. Never raises on delivery failure.

        Returns:
            True if the email was sent
        """
        if is_placeholder_email(merch_session.email):
            logger.debug(
                "Skipping magic link for placeholder email",
                extra={"session_id": merch_session.id},
            )
            return False
        if self._email_client is None or not self._email_client.available:
            logger.info(
                "Email not configured, magic link not sent",
                extra={"session_id": merch_session.id},
            )
            return False

        notifications = NotificationService(self._email_client)
        link = magic_link or build_magic_link(merch_session.id, merch_session.email)
        brand_name = (merch_session.scraped_data or {}).get("title")
        try:
            await retry_with_backoff(
                lambda: notifications.send_magic_link(
                    merch_session.email, merch_session.id, link, brand_name
                ),
                EMAIL_MAX_RETRIES,
                EMAIL_INITIAL_DELAY,
                retry_on=(EmailError,),
                operation_name="send_magic_link",
            )
        except EmailError as e:
            logger.error(
                "Failed to send magic link",
                extra={
                    "session_id": merch_session.id,
                    "recipient": mask_email(merch_session.email),
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                },
            )
            return False
        return True
