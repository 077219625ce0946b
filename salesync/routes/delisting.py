# salesync/routes/delisting.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from salesync.core.config import Settings, get_settings
from salesync.core.enums import DelistingJobStatus
from salesync.core.exceptions import AuthorizationError, JobNotFoundError, JobStateError
from salesync.core.security import Caller, get_caller, require_operator
from salesync.dependencies import get_db, get_session_factory
from salesync.models.delisting_job import DelistingJob
from salesync.schemas.delisting import (
    CancelJobRequest,
    DelistingJobRead,
    DelistingJobResult,
    PendingRunResult,
    ProcessJobRequest,
    RetryRunResult,
)
from salesync.services.delisting_engine import DelistingEngine
from salesync.services.delisting_scheduler import DelistingJobScheduler
from salesync.services.retry_manager import RetryManager

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/delisting", tags=["delisting"])


def get_delisting_engine(session_factory=Depends(get_session_factory)) -> DelistingEngine:
    return DelistingEngine(session_factory=session_factory)


def get_retry_manager(
    engine: DelistingEngine = Depends(get_delisting_engine),
    settings: Settings = Depends(get_settings),
) -> RetryManager:
    return RetryManager(engine=engine, settings=settings)


async def _get_accessible_job(db: AsyncSession, job_id: str, caller: Caller) -> DelistingJob:
    job = await db.get(DelistingJob, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Delisting job not found: {job_id}")
    if not caller.can_access(job.user_id):
        raise HTTPException(status_code=403, detail="Not allowed to access this delisting job")
    return job


@router.post("/process-job", response_model=DelistingJobResult)
async def process_job(
    request: ProcessJobRequest,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    engine: DelistingEngine = Depends(get_delisting_engine),
    retry_manager: RetryManager = Depends(get_retry_manager),
):
    """
    Run one delisting job now.

    Pending jobs run as they are; failed and partially failed jobs are first
    reset for another attempt, which counts against their retry limit.
    """
    job_id = str(request.job_id)
    job = await _get_accessible_job(db, job_id, caller)

    allowed = [DelistingJobStatus.PENDING.value] + DelistingJobStatus.retryable()
    if job.status not in allowed:
        raise HTTPException(
            status_code=400,
            detail=f"Delisting job {job_id} cannot be processed (status: {job.status})",
        )

    if job.status in DelistingJobStatus.retryable():
        try:
            await retry_manager.reset_for_retry(db, job)
        except JobStateError as e:
            raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"Manual processing of delisting job {job_id} requested by "
                f"{'operator' if caller.is_operator else caller.user_id}")
    return await engine.execute_delisting_job(job_id)


@router.get("/process-pending", response_model=PendingRunResult)
async def process_pending(
    _: Caller = Depends(require_operator),
    retry_manager: RetryManager = Depends(get_retry_manager),
):
    """Run every due pending job (used by external cron triggers)"""
    return await retry_manager.process_pending_jobs()


@router.post("/retry-failed", response_model=RetryRunResult)
async def retry_failed(
    max_jobs: Optional[int] = Query(None, ge=1, le=100),
    _: Caller = Depends(require_operator),
    retry_manager: RetryManager = Depends(get_retry_manager),
):
    return await retry_manager.retry_failed_delistings(max_jobs=max_jobs)


@router.get("/jobs/{job_id}", response_model=DelistingJobRead)
async def get_job(
    job_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    job = await _get_accessible_job(db, job_id, caller)
    return DelistingJobRead.from_orm_model(job)


@router.post("/jobs/{job_id}/confirm", response_model=DelistingJobRead)
async def confirm_job(
    job_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Confirm a job held for the owner's approval"""
    scheduler = DelistingJobScheduler(db)
    try:
        job = await scheduler.confirm_job(job_id, user_id=None if caller.is_operator else caller.user_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AuthorizationError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except JobStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    await db.commit()
    return DelistingJobRead.from_orm_model(job)


@router.post("/jobs/{job_id}/cancel", response_model=DelistingJobRead)
async def cancel_job(
    job_id: str,
    request: Optional[CancelJobRequest] = None,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    scheduler = DelistingJobScheduler(db)
    reason = request.reason if request else None
    try:
        job = await scheduler.cancel_job(
            job_id, user_id=None if caller.is_operator else caller.user_id, reason=reason
        )
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AuthorizationError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except JobStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    await db.commit()
    return DelistingJobRead.from_orm_model(job)
