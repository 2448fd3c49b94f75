"""SessionRepository with versioned updates.

Handles all database operations for MerchSession entities.
Follows the layered architecture pattern: API -> Service -> Repository -> Database.

Every pipeline write goes through apply_changes(), a single
UPDATE ... WHERE id = :id AND version = :version. The status column is only
advanced when the freshly read status is one of the allowed predecessors, so
two racing stage invocations can never move a session backwards.

ERROR LOGGING REQUIREMENTS:
- Log method entry/exit at DEBUG level with parameters (sanitized)
- Log all exceptions with full stack trace and context
- Include entity IDs (session_id) in all logs
- Log state transitions at INFO level
- Log version conflicts at WARNING level
- Add timing logs for operations >1 second
"""

import time
from collections.abc import Collection
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from merchgen.core.logging import db_logger, get_logger, mask_email, pipeline_logger
from merchgen.models.session import MerchSession, SessionStatus

logger = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


class SessionVersionConflictError(Exception):
    """Raised when a versioned update keeps losing to concurrent writers."""

    def __init__(self, session_id: str, attempts: int) -> None:
        self.session_id = session_id
        self.attempts = attempts
        super().__init__(
            f"Session {session_id} was modified concurrently "
            f"({attempts} attempts exhausted)"
        )


@dataclass
class ApplyResult:
    """Outcome of SessionRepository.apply_changes."""

    session: MerchSession
    applied: bool
    advanced: bool
    previous_status: SessionStatus


class SessionRepository:
    """Repository for MerchSession persistence.

    All methods accept an AsyncSession. Writes are flushed, not committed;
    the caller owns the transaction.
    """

    TABLE_NAME = "sessions"
    SLOW_OPERATION_THRESHOLD_MS = 1000  # 1 second

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def _check_slow(self, query: str, start_time: float) -> float:
        duration_ms = (time.monotonic() - start_time) * 1000
        if duration_ms > self.SLOW_OPERATION_THRESHOLD_MS:
            db_logger.slow_query(
                query=query, duration_ms=duration_ms, table=self.TABLE_NAME
            )
        return duration_ms

    async def create(self, email: str, url: str) -> MerchSession:
        """Insert a new session at status 'scraping'.

        Raises:
            IntegrityError: If a session already exists for (email, url)
            SQLAlchemyError: On other database errors
        """
        start_time = time.monotonic()
        logger.debug(
            "Creating session",
            extra={"email": mask_email(email), "url": url},
        )

        try:
            merch_session = MerchSession(
                email=email,
                url=url,
                status=SessionStatus.SCRAPING.value,
                version=1,
            )
            self.session.add(merch_session)
            await self.session.flush()
            await self.session.refresh(merch_session)

            duration_ms = self._check_slow("INSERT INTO sessions", start_time)
            logger.debug(
                "Session created successfully",
                extra={
                    "session_id": merch_session.id,
                    "duration_ms": round(duration_ms, 2),
                },
            )
            return merch_session

        except IntegrityError:
            logger.info(
                "Session insert hit unique (email, url) constraint",
                extra={"email": mask_email(email), "url": url},
            )
            raise

        except SQLAlchemyError as e:
            db_logger.transaction_failure(
                e, table=self.TABLE_NAME, context=f"Creating session url={url}"
            )
            raise

    async def get_by_id(self, session_id: str) -> MerchSession | None:
        """Load a session, always refreshing from the database."""
        start_time = time.monotonic()
        try:
            result = await self.session.execute(
                select(MerchSession)
                .where(MerchSession.id == session_id)
                .execution_options(populate_existing=True)
            )
            merch_session = result.scalar_one_or_none()
            self._check_slow(f"SELECT FROM sessions WHERE id={session_id}", start_time)
            return merch_session

        except SQLAlchemyError as e:
            logger.error(
                "Failed to fetch session by ID",
                extra={
                    "session_id": session_id,
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                },
                exc_info=True,
            )
            raise

    async def get_by_email_url(self, email: str, url: str) -> MerchSession | None:
        """Find the session for an (email, url) pair."""
        try:
            result = await self.session.execute(
                select(MerchSession)
                .where(MerchSession.email == email, MerchSession.url == url)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()

        except SQLAlchemyError as e:
            logger.error(
                "Failed to fetch session by email and url",
                extra={
                    "email": mask_email(email),
                    "url": url,
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                },
                exc_info=True,
            )
            raise

    async def _read_state(self, session_id: str) -> tuple[SessionStatus, int] | None:
        result = await self.session.execute(
            select(MerchSession.status, MerchSession.version).where(
                MerchSession.id == session_id
            )
        )
        row = result.one_or_none()
        if row is None:
            return None
        return SessionStatus(row.status), row.version

    async def apply_changes(
        self,
        session_id: str,
        changes: dict[str, Any],
        advance_to: SessionStatus | None = None,
        advance_from: Collection[SessionStatus] = (),
        only_if_advancing: bool = False,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> ApplyResult | None:
        """Write `changes` and optionally advance the status, as one versioned update.

        The status moves to `advance_to` only if the current status is in
        `advance_from` and the move is a legal forward transition. Data fields
        are written either way, unless `only_if_advancing` is set, in which
        case nothing is written when the status cannot advance.

        Args:
            session_id: Session to update
            changes: Column values to write
            advance_to: Target status, if this write is a stage transition
            advance_from: Statuses the target may be entered from
            only_if_advancing: Skip the write entirely when not advancing
            max_attempts: Re-read and retry this many times on version conflict

        Returns:
            ApplyResult, or None when the session does not exist

        Raises:
            SessionVersionConflictError: If every attempt lost a race
            SQLAlchemyError: On database errors
        """
        start_time = time.monotonic()
        logger.debug(
            "Applying session changes",
            extra={
                "session_id": session_id,
                "fields": sorted(changes),
                "advance_to": advance_to.value if advance_to else None,
            },
        )

        try:
            for attempt in range(1, max_attempts + 1):
                state = await self._read_state(session_id)
                if state is None:
                    return None
                current, version = state

                advance = (
                    advance_to is not None
                    and current in advance_from
                    and current.can_transition_to(advance_to)
                )

                if not advance and only_if_advancing:
                    merch_session = await self.get_by_id(session_id)
                    assert merch_session is not None
                    return ApplyResult(
                        session=merch_session,
                        applied=False,
                        advanced=False,
                        previous_status=current,
                    )

                values: dict[str, Any] = {
                    **changes,
                    "version": version + 1,
                    "updated_at": datetime.now(UTC),
                }
                if advance:
                    assert advance_to is not None
                    values["status"] = advance_to.value

                result = await self.session.execute(
                    update(MerchSession)
                    .where(
                        MerchSession.id == session_id,
                        MerchSession.version == version,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )

                if result.rowcount != 1:
                    db_logger.version_conflict(
                        table=self.TABLE_NAME,
                        entity_id=session_id,
                        expected_version=version,
                        attempt=attempt,
                    )
                    continue

                if advance:
                    assert advance_to is not None
                    pipeline_logger.status_transition(
                        session_id, current.value, advance_to.value
                    )
                elif advance_to is not None:
                    pipeline_logger.status_kept(
                        session_id, current.value, advance_to.value
                    )

                merch_session = await self.get_by_id(session_id)
                assert merch_session is not None
                self._check_slow("UPDATE sessions (versioned)", start_time)
                return ApplyResult(
                    session=merch_session,
                    applied=True,
                    advanced=advance,
                    previous_status=current,
                )

        except SQLAlchemyError as e:
            db_logger.transaction_failure(
                e,
                table=self.TABLE_NAME,
                context=f"Versioned update session_id={session_id}",
            )
            raise

        raise SessionVersionConflictError(session_id, max_attempts)

    async def find_abandoned(
        self,
        statuses: Collection[SessionStatus],
        stale_before: datetime,
        notified_before: datetime,
    ) -> list[MerchSession]:
        """Sessions stuck in `statuses` since before `stale_before`.

        Sessions notified at or after `notified_before` are excluded.
        Newest first.
        """
        start_time = time.monotonic()
        try:
            result = await self.session.execute(
                select(MerchSession)
                .where(
                    MerchSession.status.in_([s.value for s in statuses]),
                    MerchSession.updated_at < stale_before,
                    or_(
                        MerchSession.last_notified_at.is_(None),
                        MerchSession.last_notified_at < notified_before,
                    ),
                )
                .order_by(MerchSession.updated_at.desc())
                .execution_options(populate_existing=True)
            )
            sessions = list(result.scalars().all())
            duration_ms = self._check_slow("SELECT abandoned sessions", start_time)
            logger.debug(
                "Abandoned session query completed",
                extra={"count": len(sessions), "duration_ms": round(duration_ms, 2)},
            )
            return sessions

        except SQLAlchemyError as e:
            logger.error(
                "Failed to query abandoned sessions",
                extra={"error_type": type(e).__name__, "error_message": str(e)},
                exc_info=True,
            )
            raise

    async def mark_notified(self, session_id: str, at: datetime) -> bool:
        """Record a recovery notification. Leaves updated_at untouched."""
        try:
            result = await self.session.execute(
                update(MerchSession)
                .where(MerchSession.id == session_id)
                .values(last_notified_at=at, version=MerchSession.version + 1)
                .execution_options(synchronize_session=False)
            )
            return bool(result.rowcount)

        except SQLAlchemyError as e:
            db_logger.transaction_failure(
                e,
                table=self.TABLE_NAME,
                context=f"Marking session notified session_id={session_id}",
            )
            raise
