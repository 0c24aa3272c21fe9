from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any, Callable

from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from frontdesk.database import utcnow
from frontdesk.logging_config import get_logger
from frontdesk.models import InboundJob
from frontdesk.schemas.inbound import InboundMessage
from frontdesk.services.errors import StorageError
from frontdesk.services.pipeline import OUTCOME_DUPLICATE, OUTCOME_INVALID, Pipeline

logger = get_logger("inbound_queue")


def claim_pending_jobs(db: Session, *, limit: int = 10) -> list[InboundJob]:
    """Move up to `limit` due PENDING jobs to PROCESSING. Row locks skip jobs another worker holds."""
    now = utcnow()
    jobs = (
        db.query(InboundJob)
        .filter(
            InboundJob.status == "PENDING",
            (InboundJob.next_attempt_at.is_(None)) | (InboundJob.next_attempt_at <= now),
        )
        .order_by(InboundJob.created_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
        .all()
    )
    for job in jobs:
        job.status = "PROCESSING"
        job.attempts = (job.attempts or 0) + 1
        job.updated_at = now
    db.commit()
    return jobs


def mark_job_status(
    db: Session,
    *,
    job: InboundJob,
    status: str,
    last_error: str | None = None,
    next_attempt_at=None,
) -> None:
    job.status = status
    job.last_error = last_error
    job.next_attempt_at = next_attempt_at
    job.updated_at = utcnow()
    db.commit()


def process_job(
    db: Session,
    pipeline: Pipeline,
    job: InboundJob,
    *,
    max_attempts: int,
    retry_backoff_seconds: float,
) -> str:
    """Run one claimed job and record its final (or retry) status. Returns the status written."""
    context = {"job_id": str(job.id), "business_id": str(job.business_id), "attempt": job.attempts}
    try:
        message = InboundMessage.model_validate(job.payload_json)
    except ValidationError as e:
        logger.error(f"Queued payload is invalid: {e}", extra={"context": context})
        mark_job_status(db, job=job, status="FAILED", last_error="invalid_payload")
        return "FAILED"

    try:
        outcome = pipeline.process_inbound(db, message)
    except StorageError as e:
        if job.attempts < max_attempts:
            retry_at = utcnow() + timedelta(seconds=retry_backoff_seconds * job.attempts)
            logger.warning(f"Job will be retried: {e}", extra={"context": context})
            mark_job_status(db, job=job, status="PENDING", last_error=str(e), next_attempt_at=retry_at)
            return "PENDING"
        logger.error(f"Job failed after {job.attempts} attempts: {e}", extra={"context": context})
        mark_job_status(db, job=job, status="FAILED", last_error=str(e))
        return "FAILED"
    except Exception as e:
        # The user turn may already be stored; retrying could send a second reply.
        db.rollback()
        logger.error(f"Job failed: {e}", exc_info=True, extra={"context": context})
        mark_job_status(db, job=job, status="FAILED", last_error=f"{e.__class__.__name__}: {e}"[:500])
        return "FAILED"

    if outcome.status == OUTCOME_DUPLICATE:
        status = "DUPLICATE"
    elif outcome.status == OUTCOME_INVALID or outcome.error:
        status = "FAILED"
    else:
        status = "DONE"
    mark_job_status(db, job=job, status=status, last_error=outcome.error)
    return status


class InboundWorker:
    """Background poller for the inbound job table, run on the app's event loop."""

    def __init__(
        self,
        pipeline: Pipeline,
        session_factory: Callable[[], Session],
        *,
        interval_seconds: float = 1.0,
        batch_limit: int = 10,
        max_attempts: int = 3,
        retry_backoff_seconds: float = 5.0,
    ):
        self.pipeline = pipeline
        self.session_factory = session_factory
        self.interval_seconds = max(interval_seconds, 0.1)
        self.batch_limit = batch_limit
        self.max_attempts = max_attempts
        self.retry_backoff_seconds = retry_backoff_seconds
        self._task: asyncio.Task | None = None

    def run_once(self) -> dict[str, Any]:
        """Claim and process one batch. Returns counts per resulting status."""
        results: dict[str, Any] = {}
        db = self.session_factory()
        try:
            jobs = claim_pending_jobs(db, limit=self.batch_limit)
            for job in jobs:
                status = process_job(
                    db,
                    self.pipeline,
                    job,
                    max_attempts=self.max_attempts,
                    retry_backoff_seconds=self.retry_backoff_seconds,
                )
                results[status] = results.get(status, 0) + 1
        finally:
            db.close()
        return results

    async def _loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval_seconds)
                results = await run_in_threadpool(self.run_once)
                if results:
                    logger.info("Inbound worker processed", extra={"context": results})
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error(
                    "Inbound worker loop failed",
                    extra={"context": {"error": str(exc)}},
                )

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())
            logger.info("Inbound worker started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
