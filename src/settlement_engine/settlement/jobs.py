"""Background jobs - transactional outbox and worker.

Side effects that may run after the request (failure mail, system log
entries, activity rows) are written to the queued_job table inside the
caller's transaction. A job therefore exists exactly when the work that
produced it was committed. The worker drains queued jobs and retries
failures until max_attempts is reached, which gives at-least-once
execution: handlers must tolerate running twice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_engine.config import get_settings
from settlement_engine.database import current_tenant, tenant_scope
from settlement_engine.models import QueuedJob
from settlement_engine.settlement.events.types import serialize_value

logger = logging.getLogger(__name__)

JobHandler = Callable[[Session, dict[str, Any]], None]

# Job names
PAYMENT_FAILURE_MAIL = "payment_failure_mail"
SYSTEM_LOG = "system_log"
INVOICE_PAID_ACTIVITY = "invoice_paid_activity"
PAYMENT_CREATED_ACTIVITY = "payment_created_activity"


class JobQueue:
    """Enqueues jobs into the outbox of the current session."""

    def __init__(
        self,
        db: Session,
        *,
        tenant_id: str | None = None,
        max_attempts: int | None = None,
    ):
        self.db = db
        self.tenant_id = tenant_id
        self.max_attempts = max_attempts or get_settings().job_max_attempts

    def enqueue(
        self,
        name: str,
        payload: dict[str, Any],
        *,
        tenant_id: str | None = None,
    ) -> QueuedJob:
        """Add a job to the outbox (flushed, not committed)."""
        job = QueuedJob(
            tenant_id=tenant_id or self.tenant_id or current_tenant(),
            name=name,
            payload=serialize_value(payload),
            status="queued",
            attempts=0,
            max_attempts=self.max_attempts,
        )
        self.db.add(job)
        self.db.flush()
        logger.debug("Enqueued job %s (%s)", job.queued_job_id, name)
        return job

    def pending(self, name: str | None = None) -> list[QueuedJob]:
        """Jobs still waiting to run."""
        stmt = select(QueuedJob).where(QueuedJob.status == "queued")
        if name is not None:
            stmt = stmt.where(QueuedJob.name == name)
        return list(self.db.scalars(stmt.order_by(QueuedJob.created_at)))


@dataclass(frozen=True)
class WorkerResult:
    """Summary of one worker pass."""

    processed: int
    succeeded: int
    retried: int
    failed: int
    failed_job_ids: tuple[UUID, ...] = ()


class JobWorker:
    """Runs queued jobs through registered handlers.

    Each job runs inside a savepoint with its tenant selected, so a
    failing handler leaves no partial writes and other jobs still run.
    """

    def __init__(self, handlers: dict[str, JobHandler] | None = None) -> None:
        self._handlers: dict[str, JobHandler] = dict(handlers or {})

    def register(self, name: str, handler: JobHandler) -> None:
        """Register the handler for a job name."""
        self._handlers[name] = handler

    @property
    def job_names(self) -> set[str]:
        """Names of jobs this worker can run."""
        return set(self._handlers)

    def run_pending(self, db: Session, limit: int = 100) -> WorkerResult:
        """Run up to `limit` queued jobs."""
        jobs = list(
            db.scalars(
                select(QueuedJob)
                .where(QueuedJob.status == "queued")
                .order_by(QueuedJob.created_at)
                .limit(limit)
            )
        )

        succeeded = retried = failed = 0
        failed_ids: list[UUID] = []

        for job in jobs:
            job.attempts += 1
            handler = self._handlers.get(job.name)

            try:
                if handler is None:
                    raise LookupError(f"No handler registered for job '{job.name}'")
                with tenant_scope(job.tenant_id):
                    with db.begin_nested():
                        handler(db, dict(job.payload))
            except Exception as exc:
                logger.exception(
                    "Job %s (%s) failed on attempt %d",
                    job.queued_job_id,
                    job.name,
                    job.attempts,
                )
                job.last_error = f"{type(exc).__name__}: {exc}"
                if job.attempts >= job.max_attempts:
                    job.status = "failed"
                    job.finished_at = datetime.now(timezone.utc)
                    failed += 1
                    failed_ids.append(job.queued_job_id)
                else:
                    retried += 1
            else:
                job.status = "done"
                job.finished_at = datetime.now(timezone.utc)
                succeeded += 1

            db.flush()

        if jobs:
            logger.info(
                "Job worker pass: %d processed, %d succeeded, %d retried, %d failed",
                len(jobs),
                succeeded,
                retried,
                failed,
            )

        return WorkerResult(
            processed=len(jobs),
            succeeded=succeeded,
            retried=retried,
            failed=failed,
            failed_job_ids=tuple(failed_ids),
        )
