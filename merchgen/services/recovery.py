"""Abandoned-session recovery sweep.

Finds sessions that have sat at the concept or motif stage longer than the
staleness threshold and emails each owner a fresh magic link with a coarse
progress percentage. A successful send stamps last_notified_at so the same
session is not re-notified until the renotify interval has passed.

Triggered by the scheduler (run_recovery_sweep_job) and by the cron
endpoint.

ERROR LOGGING REQUIREMENTS:
- Log sweep start/end with counts and timing
- Log each per-session failure with session_id; never abort the sweep
- Never log magic-link tokens
"""

import time
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from merchgen.core.config import get_settings
from merchgen.core.database import session_scope
from merchgen.core.logging import get_logger, mask_email
from merchgen.core.retry import retry_with_backoff
from merchgen.integrations.email import EmailClient, EmailError, get_email_client
from merchgen.models.session import STATUS_PROGRESS, MerchSession, SessionStatus
from merchgen.repositories.session import SessionRepository
from merchgen.services.magic_link import build_magic_link
from merchgen.services.notifications import NotificationService
from merchgen.services.session import is_placeholder_email

logger = get_logger(__name__)

SLOW_OPERATION_THRESHOLD_MS = 1000

# Mid-pipeline statuses where the user has something to come back to
RECOVERABLE_STATUSES = (SessionStatus.CONCEPT, SessionStatus.MOTIF)

EMAIL_MAX_RETRIES = 3
EMAIL_INITIAL_DELAY = 2.0


@dataclass
class RecoverySummary:
    """Aggregate counts for one sweep."""

    found: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    duration_ms: float = 0.0

    def record(self, outcome: str) -> None:
        if outcome == "sent":
            self.sent += 1
        elif outcome == "skipped":
            self.skipped += 1
        else:
            self.failed += 1


@dataclass(frozen=True)
class RecoveryCandidate:
    """Fields the sweep needs, read before any per-session rollback can expire the row."""

    session_id: str
    email: str
    status: SessionStatus
    brand_name: str | None

    @classmethod
    def from_session(cls, merch_session: MerchSession) -> "RecoveryCandidate":
        return cls(
            session_id=merch_session.id,
            email=merch_session.email,
            status=merch_session.status_enum,
            brand_name=(merch_session.scraped_data or {}).get("title"),
        )


class RecoveryService:
    """Sends recovery emails for stalled sessions."""

    def __init__(
        self,
        session: AsyncSession,
        email_client: EmailClient,
        stale_hours: int | None = None,
        renotify_hours: int | None = None,
        email_initial_delay: float = EMAIL_INITIAL_DELAY,
    ) -> None:
        settings = get_settings()
        self.session = session
        self.repository = SessionRepository(session)
        self.notifications = NotificationService(email_client)
        self._email_client = email_client
        self.stale_hours = stale_hours if stale_hours is not None else settings.recovery_stale_hours
        self.renotify_hours = (
            renotify_hours if renotify_hours is not None else settings.recovery_renotify_hours
        )
        self._email_initial_delay = email_initial_delay

    async def find_candidates(self, now: datetime | None = None) -> list[MerchSession]:
        """Stale concept/motif sessions not notified within the renotify window."""
        now = now or datetime.now(UTC)
        return await self.repository.find_abandoned(
            RECOVERABLE_STATUSES,
            stale_before=now - timedelta(hours=self.stale_hours),
            notified_before=now - timedelta(hours=self.renotify_hours),
        )

    async def _notify(self, candidate: RecoveryCandidate) -> None:
        link = build_magic_link(candidate.session_id, candidate.email)
        await retry_with_backoff(
            lambda: self.notifications.send_recovery(
                candidate.email,
                candidate.session_id,
                candidate.brand_name,
                link,
                STATUS_PROGRESS.get(candidate.status, 0),
            ),
            EMAIL_MAX_RETRIES,
            self._email_initial_delay,
            retry_on=(EmailError,),
            operation_name="send_recovery_email",
        )

    async def _recover(self, candidate: RecoveryCandidate, now: datetime) -> str:
        """Handle one session; returns the summary counter to bump."""
        if is_placeholder_email(candidate.email):
            return "skipped"

        if not self._email_client.available:
            logger.warning(
                "Email not configured, recovery email not sent",
                extra={"session_id": candidate.session_id},
            )
            return "failed"

        try:
            await self._notify(candidate)
        except EmailError as e:
            logger.error(
                "Recovery email failed",
                extra={
                    "session_id": candidate.session_id,
                    "recipient": mask_email(candidate.email),
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                },
            )
            return "failed"

        await self.repository.mark_notified(candidate.session_id, now)
        await self.session.commit()
        logger.info(
            "Recovery email sent",
            extra={
                "session_id": candidate.session_id,
                "status": candidate.status.value,
                "recipient": mask_email(candidate.email),
            },
        )
        return "sent"

    async def run_sweep(self, now: datetime | None = None) -> RecoverySummary:
        """Notify every candidate session; per-session failures are counted."""
        start_time = time.monotonic()
        summary = RecoverySummary()
        logger.info(
            "Recovery sweep started",
            extra={"stale_hours": self.stale_hours, "renotify_hours": self.renotify_hours},
        )

        now = now or datetime.now(UTC)
        candidates = await self.find_candidates(now)
        summary.found = len(candidates)

        for candidate in [RecoveryCandidate.from_session(s) for s in candidates]:
            try:
                outcome = await self._recover(candidate, now)
            except Exception as e:
                outcome = "failed"
                await self.session.rollback()
                logger.error(
                    "Recovery failed for session",
                    extra={
                        "session_id": candidate.session_id,
                        "error_type": type(e).__name__,
                        "error_message": str(e),
                    },
                    exc_info=True,
                )
            summary.record(outcome)

        summary.duration_ms = (time.monotonic() - start_time) * 1000
        logger.info(
            "Recovery sweep completed",
            extra={
                "found": summary.found,
                "sent": summary.sent,
                "failed": summary.failed,
                "skipped": summary.skipped,
                "duration_ms": round(summary.duration_ms, 2),
            },
        )
        if summary.duration_ms > SLOW_OPERATION_THRESHOLD_MS:
            logger.warning(
                "Slow recovery sweep",
                extra={"duration_ms": round(summary.duration_ms, 2)},
            )
        return summary


async def run_recovery_sweep_job() -> RecoverySummary:
    """Scheduler entry point: one sweep in its own database session."""
    async with session_scope() as session:
        service = RecoveryService(session, get_email_client())
        return await service.run_sweep()
