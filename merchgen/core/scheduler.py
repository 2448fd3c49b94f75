"""Periodic jobs on the application's event loop.

Only the abandoned-session recovery sweep is registered today. The manager is
generic so a second job needs no changes here.

AsyncIOScheduler runs coroutine jobs on the app loop, so jobs share the
engine and integration clients created in the lifespan. Jobs are kept in
memory unless SCHEDULER_JOBSTORE_URL points at a database.

ERROR LOGGING REQUIREMENTS:
- Job failures with job_id, error type and duration
- Jobs slower than SLOW_JOB_THRESHOLD_MS at WARNING
- Missed runs at WARNING
- Start/stop at INFO
"""

import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from apscheduler.events import (
    EVENT_JOB_ADDED,
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    EVENT_JOB_REMOVED,
    EVENT_JOB_SUBMITTED,
    EVENT_SCHEDULER_SHUTDOWN,
    EVENT_SCHEDULER_STARTED,
    JobExecutionEvent,
    SchedulerEvent,
)
from apscheduler.jobstores.base import BaseJobStore
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from merchgen.core.config import get_settings
from merchgen.core.logging import get_logger, scheduler_logger

logger = get_logger(__name__)

SLOW_JOB_THRESHOLD_MS = 1000
JOBSTORE_TABLE = "apscheduler_jobs"

_LISTENED_EVENTS = (
    EVENT_SCHEDULER_STARTED
    | EVENT_SCHEDULER_SHUTDOWN
    | EVENT_JOB_ADDED
    | EVENT_JOB_REMOVED
    | EVENT_JOB_SUBMITTED
    | EVENT_JOB_EXECUTED
    | EVENT_JOB_ERROR
    | EVENT_JOB_MISSED
)


class SchedulerState(Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"


def build_jobstore(url: str | None) -> BaseJobStore:
    """Memory store, or a SQLAlchemy store on a sync (psycopg2) URL."""
    if not url:
        return MemoryJobStore()
    for prefix in ("postgres://", "postgresql+asyncpg://"):
        if url.startswith(prefix):
            url = "postgresql://" + url[len(prefix):]
    return SQLAlchemyJobStore(url=url, tablename=JOBSTORE_TABLE)


def build_trigger(kind: str, **args: Any) -> BaseTrigger:
    """'interval' (minutes=..., hours=...) or 'cron' (cron='0 3 * * *' or fields)."""
    if kind == "cron":
        if "cron" in args:
            return CronTrigger.from_crontab(args.pop("cron"), timezone="UTC")
        return CronTrigger(timezone="UTC", **args)
    if kind == "interval":
        return IntervalTrigger(**args)
    raise ValueError(f"Unknown trigger type: {kind}")


class SchedulerManager:
    """Owns the process-wide AsyncIOScheduler."""

    def __init__(self) -> None:
        self._scheduler: AsyncIOScheduler | None = None
        self._state = SchedulerState.STOPPED
        self._submitted_at: dict[str, float] = {}

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == SchedulerState.RUNNING

    def _job_name(self, job_id: str) -> str | None:
        job = self._scheduler.get_job(job_id) if self._scheduler else None
        return job.name if job else None

    def _on_event(self, event: SchedulerEvent) -> None:
        code = event.code
        if code == EVENT_SCHEDULER_STARTED:
            scheduler_logger.scheduler_start(
                len(self._scheduler.get_jobs()) if self._scheduler else 0
            )
        elif code == EVENT_SCHEDULER_SHUTDOWN:
            scheduler_logger.scheduler_stop(graceful=True)
        elif code == EVENT_JOB_ADDED:
            job = self._scheduler.get_job(event.job_id) if self._scheduler else None
            next_run = getattr(job, "next_run_time", None)
            scheduler_logger.job_added(
                job_id=event.job_id,
                job_name=job.name if job else None,
                trigger=str(job.trigger) if job else "unknown",
                next_run=next_run.isoformat() if next_run else None,
            )
        elif code == EVENT_JOB_REMOVED:
            scheduler_logger.job_removed(event.job_id, self._job_name(event.job_id))
        elif code == EVENT_JOB_SUBMITTED:
            self._submitted_at[event.job_id] = time.monotonic()
        else:
            self._on_job_finished(event)

    def _on_job_finished(self, event: JobExecutionEvent) -> None:
        job_name = self._job_name(event.job_id)
        started = self._submitted_at.pop(event.job_id, None)
        duration_ms = (time.monotonic() - started) * 1000 if started else 0.0

        if event.code == EVENT_JOB_MISSED:
            scheduled = event.scheduled_run_time
            scheduler_logger.job_missed(
                job_id=event.job_id,
                job_name=job_name,
                scheduled_time=scheduled.isoformat() if scheduled else "unknown",
                misfire_grace_time=get_settings().scheduler_misfire_grace_time,
            )
        elif event.exception is not None:
            scheduler_logger.job_execution_error(
                job_id=event.job_id,
                job_name=job_name,
                duration_ms=duration_ms,
                error=str(event.exception),
                error_type=type(event.exception).__name__,
            )
        else:
            scheduler_logger.job_execution_success(
                job_id=event.job_id,
                job_name=job_name,
                duration_ms=duration_ms,
                result=event.retval,
            )
            if duration_ms > SLOW_JOB_THRESHOLD_MS:
                scheduler_logger.slow_job_execution(
                    job_id=event.job_id,
                    job_name=job_name,
                    duration_ms=duration_ms,
                    threshold_ms=SLOW_JOB_THRESHOLD_MS,
                )

    def init_scheduler(self) -> bool:
        """Create the scheduler. False when disabled by config or on error."""
        settings = get_settings()
        if not settings.scheduler_enabled:
            logger.info("Scheduler disabled by configuration")
            return False
        if self._scheduler is not None:
            return True

        try:
            scheduler = AsyncIOScheduler(
                jobstores={"default": build_jobstore(settings.scheduler_jobstore_url)},
                job_defaults={
                    "coalesce": settings.scheduler_job_coalesce,
                    "max_instances": settings.scheduler_job_default_max_instances,
                    "misfire_grace_time": settings.scheduler_misfire_grace_time,
                },
                timezone="UTC",
            )
        except Exception as e:
            logger.error(
                "Failed to create scheduler",
                extra={"error_type": type(e).__name__, "error_message": str(e)},
                exc_info=True,
            )
            return False

        scheduler.add_listener(self._on_event, _LISTENED_EVENTS)
        self._scheduler = scheduler
        return True

    def start(self) -> bool:
        """Start on the running event loop, creating the scheduler if needed."""
        if not self.init_scheduler() or self._scheduler is None:
            return False
        if self.is_running:
            return True

        try:
            self._scheduler.start()
        except Exception as e:
            logger.error(
                "Failed to start scheduler",
                extra={"error_type": type(e).__name__, "error_message": str(e)},
                exc_info=True,
            )
            return False
        self._state = SchedulerState.RUNNING
        return True

    def stop(self, wait: bool = True) -> None:
        """Shut down; with ``wait`` running jobs finish first."""
        if self._scheduler is None or not self.is_running:
            return

        self._state = SchedulerState.SHUTTING_DOWN
        try:
            self._scheduler.shutdown(wait=wait)
        except Exception as e:
            logger.error(
                "Error during scheduler shutdown",
                extra={"error_type": type(e).__name__, "error_message": str(e)},
                exc_info=True,
            )
        finally:
            self._scheduler = None
            self._submitted_at.clear()
            self._state = SchedulerState.STOPPED

    def add_job(
        self,
        func: Callable[..., Any],
        trigger: str = "interval",
        id: str | None = None,
        name: str | None = None,
        replace_existing: bool = True,
        **trigger_args: Any,
    ) -> str | None:
        """Register ``func``; returns the job id, or None if it was not added.

        Example:
            scheduler_manager.add_job(run_recovery_sweep_job, id="recovery_sweep", minutes=60)
        """
        if self._scheduler is None:
            scheduler_logger.scheduler_not_available("add_job", "Scheduler is not initialized")
            return None

        try:
            job = self._scheduler.add_job(
                func,
                trigger=build_trigger(trigger, **trigger_args),
                id=id,
                name=name,
                replace_existing=replace_existing,
            )
        except Exception as e:
            logger.error(
                "Failed to add job",
                extra={
                    "job_id": id,
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                },
                exc_info=True,
            )
            return None
        return str(job.id)

    def check_health(self) -> dict[str, Any]:
        """Status for GET /health/scheduler."""
        jobs = self._scheduler.get_jobs() if self._scheduler else []
        if self._scheduler is None:
            status = "not_initialized"
        else:
            status = "ok" if self.is_running else "degraded"
        return {
            "status": status,
            "running": self.is_running,
            "state": self._state.value,
            "job_count": len(jobs),
        }


scheduler_manager = SchedulerManager()
