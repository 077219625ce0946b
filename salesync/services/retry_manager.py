# salesync/services/retry_manager.py
"""
Recovery of delisting jobs.

retry_failed_delistings resets eligible failed / partially failed jobs to
pending and runs them again once their backoff has elapsed.
process_pending_jobs runs every due, confirmed pending job in small batches.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from salesync.core.concurrency import run_in_batches
from salesync.core.config import Settings, get_settings
from salesync.core.enums import AuditAction, DelistingErrorCode, DelistingJobStatus
from salesync.core.exceptions import JobStateError
from salesync.core.utils import utc_now
from salesync.models.delisting_job import DelistingJob
from salesync.schemas.delisting import PendingRunResult, RetryRunResult
from salesync.services.audit_logger import AuditLogger
from salesync.services.delisting_engine import EXECUTION_ERROR_KEY, DelistingEngine
from salesync.services.delisting_errors import is_permanent_error

logger = logging.getLogger(__name__)

MAX_RETRY_DELAY_SECONDS = 3600

BASE_RETRY_DELAYS = {
    DelistingErrorCode.RATE_LIMITED.value: 60,
    DelistingErrorCode.API_UNAVAILABLE.value: 30,
    DelistingErrorCode.TIMEOUT.value: 10,
    DelistingErrorCode.NETWORK_ERROR.value: 5,
}
DEFAULT_BASE_DELAY = 15


def get_retry_delay(retry_count: int, error_code: Optional[str] = None) -> timedelta:
    """Exponential backoff: base(error_code) * 2**retry_count, capped at one hour."""
    base = BASE_RETRY_DELAYS.get(error_code, DEFAULT_BASE_DELAY)
    seconds = min(base * (2 ** max(retry_count, 0)), MAX_RETRY_DELAY_SECONDS)
    return timedelta(seconds=seconds)


def _marketplace_errors(job: DelistingJob) -> List[Dict[str, Any]]:
    return [
        entry for key, entry in (job.error_log or {}).items()
        if key != EXECUTION_ERROR_KEY and isinstance(entry, dict)
    ]


def dominant_error_code(job: DelistingJob) -> Optional[str]:
    """The recorded error code that calls for the longest wait"""
    codes = [entry.get("code") for entry in _marketplace_errors(job) if entry.get("code")]
    if not codes:
        return None
    return max(codes, key=lambda code: BASE_RETRY_DELAYS.get(code, DEFAULT_BASE_DELAY))


def has_only_permanent_failures(job: DelistingJob) -> bool:
    """
    True when every recorded marketplace failure is permanent, so another
    attempt cannot change the outcome. A job that failed on an execution
    error has no marketplace entries and stays retryable.
    """
    errors = _marketplace_errors(job)
    if not errors:
        return False
    return all(entry.get("permanent") or is_permanent_error(entry.get("code")) for entry in errors)


class RetryManager:
    def __init__(
        self,
        engine: Optional[DelistingEngine] = None,
        session_factory: Optional[async_sessionmaker] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        if session_factory is None:
            session_factory = engine.session_factory if engine is not None else None
        self.engine = engine or DelistingEngine(session_factory=session_factory)
        self.session_factory = session_factory or self.engine.session_factory

    async def reset_for_retry(self, db: AsyncSession, job: DelistingJob) -> DelistingJob:
        """
        Move a failed or partially failed job back to pending and count the attempt.

        Raises:
            JobStateError: If the job is in another status or has no retries left
        """
        if job.status not in DelistingJobStatus.retryable():
            raise JobStateError(f"Delisting job {job.id} cannot be retried (status: {job.status})")
        if job.retry_count >= job.max_retries:
            raise JobStateError(
                f"Delisting job {job.id} has reached its retry limit ({job.retry_count}/{job.max_retries})"
            )

        previous_status = job.status
        job.status = DelistingJobStatus.PENDING.value
        job.retry_count = job.retry_count + 1
        job.scheduled_for = utc_now()
        job.completed_at = None
        await AuditLogger(db).log_event(
            user_id=job.user_id,
            action=AuditAction.JOB_RETRIED,
            delisting_job_id=job.id,
            context_data={"retry_count": job.retry_count, "previous_status": previous_status},
        )
        await db.commit()
        logger.info(f"Reset delisting job {job.id} for retry {job.retry_count}/{job.max_retries}")
        return job

    async def _get_retry_candidates(self, db: AsyncSession) -> List[DelistingJob]:
        result = await db.execute(
            select(DelistingJob)
            .where(
                DelistingJob.status.in_(DelistingJobStatus.retryable()),
                DelistingJob.retry_count < DelistingJob.max_retries,
            )
            .order_by(DelistingJob.created_at.asc())
        )
        return list(result.scalars().all())

    def _backoff_elapsed(self, job: DelistingJob) -> bool:
        delay = get_retry_delay(job.retry_count, dominant_error_code(job))
        last_attempt = job.completed_at or job.updated_at
        return last_attempt is None or utc_now() - last_attempt >= delay

    async def abandon_retries(self, db: AsyncSession, job: DelistingJob) -> DelistingJob:
        """
        Use up the job's remaining retries so sweeps stop selecting it.
        The job keeps its failed / partially failed status and logs.
        """
        codes = sorted({entry.get("code") for entry in _marketplace_errors(job) if entry.get("code")})
        job.retry_count = job.max_retries
        await AuditLogger(db).log_event(
            user_id=job.user_id,
            action=AuditAction.JOB_RETRIES_ABANDONED,
            delisting_job_id=job.id,
            context_data={"reason": "permanent_failures", "error_codes": codes},
        )
        await db.commit()
        logger.info(f"Abandoned retries of delisting job {job.id}: all failures are permanent")
        return job

    async def retry_failed_delistings(self, max_jobs: Optional[int] = None) -> RetryRunResult:
        """
        Retry up to max_jobs failed / partially failed jobs, oldest first.

        Jobs whose failures are all permanent have their retries used up and
        are counted as skipped, so they never hold a place in later sweeps.
        Jobs still inside their backoff window are skipped without change.
        Each retried job runs through the engine sequentially; one job's
        failure does not stop the others.
        """
        max_jobs = max_jobs or self.settings.DELISTING_RETRY_MAX_JOBS
        retried = 0
        skipped = 0
        errors: List[str] = []

        try:
            async with self.session_factory() as db:
                jobs = await self._get_retry_candidates(db)
                logger.info(f"Found {len(jobs)} delisting jobs eligible for retry")

                for job in jobs:
                    if retried >= max_jobs:
                        break
                    job_id = job.id
                    if has_only_permanent_failures(job):
                        await self.abandon_retries(db, job)
                        skipped += 1
                        continue
                    if not self._backoff_elapsed(job):
                        logger.debug(f"Skipping retry of job {job_id}: backoff not elapsed")
                        skipped += 1
                        continue

                    try:
                        await self.reset_for_retry(db, job)
                    except Exception as e:
                        logger.error(f"Failed to reset delisting job {job_id} for retry: {e}", exc_info=True)
                        await db.rollback()
                        errors.append(f"{job_id}: {e}")
                        continue

                    result = await self.engine.execute_delisting_job(job_id)
                    retried += 1
                    if not result.success:
                        errors.append(f"{job_id}: {result.error or result.status}")

        except Exception as e:
            logger.error(f"Retry sweep failed: {e}", exc_info=True)
            return RetryRunResult(success=False, jobs_retried=retried, jobs_skipped=skipped, errors=errors + [str(e)])

        logger.info(f"Retry sweep finished: {retried} retried, {skipped} skipped, {len(errors)} errors")
        return RetryRunResult(success=True, jobs_retried=retried, jobs_skipped=skipped, errors=errors)

    async def get_pending_job_ids(self, limit: Optional[int] = None) -> List[str]:
        """Ids of pending jobs that are due, not cancelled, and confirmed when confirmation is required"""
        limit = limit or self.settings.DELISTING_PENDING_LIMIT
        async with self.session_factory() as db:
            result = await db.execute(
                select(DelistingJob.id)
                .where(
                    DelistingJob.status == DelistingJobStatus.PENDING.value,
                    DelistingJob.scheduled_for <= utc_now(),
                    DelistingJob.user_cancelled_at.is_(None),
                    or_(
                        DelistingJob.requires_user_confirmation.is_(False),
                        DelistingJob.user_confirmed_at.isnot(None),
                    ),
                )
                .order_by(DelistingJob.scheduled_for.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def process_pending_jobs(
        self,
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
    ) -> PendingRunResult:
        """Run due pending jobs through the engine in batches of batch_size"""
        batch_size = batch_size or self.settings.DELISTING_BATCH_SIZE
        if batch_delay is None:
            batch_delay = self.settings.DELISTING_BATCH_DELAY_MS / 1000

        try:
            job_ids = await self.get_pending_job_ids()
        except Exception as e:
            logger.error(f"Failed to load pending delisting jobs: {e}", exc_info=True)
            return PendingRunResult(success=False, errors=[str(e)])

        if not job_ids:
            logger.debug("No pending delisting jobs due")
            return PendingRunResult(success=True)

        logger.info(f"Processing {len(job_ids)} pending delisting jobs")
        outcomes = await run_in_batches(job_ids, self.engine.execute_delisting_job, batch_size, batch_delay)

        processed = 0
        failed = 0
        errors: List[str] = []
        for job_id, outcome in zip(job_ids, outcomes):
            if outcome.ok and outcome.value.success:
                processed += 1
                continue
            failed += 1
            reason = outcome.error if not outcome.ok else (outcome.value.error or outcome.value.status)
            errors.append(f"{job_id}: {reason}")

        logger.info(f"Pending sweep finished: {processed} processed, {failed} failed")
        return PendingRunResult(success=True, jobs_processed=processed, jobs_failed=failed, errors=errors)
