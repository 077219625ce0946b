# tests/unit/services/test_retry_manager.py
from datetime import timedelta

import pytest
from sqlalchemy import select

from salesync.core.enums import AuditAction, DelistingErrorCode, DelistingJobStatus, MarketplaceType
from salesync.core.exceptions import JobStateError
from salesync.core.utils import utc_now
from salesync.models import DelistingAuditLog
from salesync.schemas.delisting import DelistingJobResult
from salesync.services.delisting_engine import DelistingEngine
from salesync.services.retry_manager import (
    MAX_RETRY_DELAY_SECONDS,
    RetryManager,
    dominant_error_code,
    get_retry_delay,
    has_only_permanent_failures,
)

E = DelistingErrorCode

LONG_AGO = timedelta(days=1)


def error_entry(code, permanent=False):
    return {"code": code.value, "permanent": permanent, "error": code.value.lower()}


@pytest.fixture
def engine(session_factory, adapter_factory):
    return DelistingEngine(session_factory=session_factory, adapter_factory=adapter_factory)


@pytest.fixture
def manager(engine, settings):
    return RetryManager(engine=engine, settings=settings)


@pytest.fixture
def mock_engine(mocker, session_factory):
    engine = mocker.Mock()
    engine.session_factory = session_factory
    engine.execute_delisting_job = mocker.AsyncMock(
        side_effect=lambda job_id: DelistingJobResult(success=True, job_id=job_id, status="completed")
    )
    return engine


@pytest.fixture
def create_failed_job(create_job):
    async def _create(error_log=None, completed_ago=LONG_AGO, **overrides):
        data = {
            "status": DelistingJobStatus.FAILED.value,
            "error_log": error_log if error_log is not None else {"ebay": error_entry(E.NETWORK_ERROR)},
            "completed_at": utc_now() - completed_ago,
        }
        data.update(overrides)
        return await create_job(**data)
    return _create

"""
1. Backoff policy
"""

def test_retry_delay_doubles_per_attempt():
    assert get_retry_delay(0, "NETWORK_ERROR") == timedelta(seconds=5)
    assert get_retry_delay(1, "NETWORK_ERROR") == timedelta(seconds=10)
    assert get_retry_delay(3, "NETWORK_ERROR") == timedelta(seconds=40)


def test_retry_delay_depends_on_error_code():
    """Rate limits wait longest, network blips shortest"""
    delays = [get_retry_delay(1, code.value) for code in (E.RATE_LIMITED, E.API_UNAVAILABLE, E.TIMEOUT, E.NETWORK_ERROR)]
    assert delays == sorted(delays, reverse=True)
    assert get_retry_delay(0, None) == timedelta(seconds=15)


def test_retry_delay_is_capped():
    assert get_retry_delay(20, "RATE_LIMITED") == timedelta(seconds=MAX_RETRY_DELAY_SECONDS)


@pytest.mark.asyncio
async def test_dominant_error_code_and_permanence(create_job):
    mixed = await create_job(error_log={
        "ebay": error_entry(E.NETWORK_ERROR),
        "poshmark": error_entry(E.RATE_LIMITED),
        "depop": error_entry(E.LISTING_NOT_FOUND, permanent=True),
    })
    permanent = await create_job(error_log={"ebay": error_entry(E.INVALID_TOKEN, permanent=True)})
    execution = await create_job(error_log={"execution_error": {"error": "boom"}})

    assert dominant_error_code(mixed) == E.RATE_LIMITED.value
    assert has_only_permanent_failures(mixed) is False
    assert has_only_permanent_failures(permanent) is True
    assert has_only_permanent_failures(execution) is False
    assert dominant_error_code(execution) is None

"""
2. Reset for retry
"""

@pytest.mark.asyncio
async def test_reset_for_retry(manager, db_session, create_failed_job):
    job = await create_failed_job(status=DelistingJobStatus.PARTIALLY_FAILED.value)

    await manager.reset_for_retry(db_session, job)

    assert job.status == DelistingJobStatus.PENDING.value
    assert job.retry_count == 1
    assert job.completed_at is None
    assert job.scheduled_for <= utc_now()
    entry = (await db_session.execute(
        select(DelistingAuditLog).where(DelistingAuditLog.delisting_job_id == job.id)
    )).scalar_one()
    assert entry.action == AuditAction.JOB_RETRIED.value
    assert entry.context_data == {"retry_count": 1, "previous_status": "partially_failed"}


@pytest.mark.asyncio
async def test_reset_for_retry_rejects_wrong_status_and_exhausted_jobs(manager, db_session, create_job, create_failed_job):
    pending = await create_job()
    exhausted = await create_failed_job(retry_count=3, max_retries=3)

    with pytest.raises(JobStateError, match="cannot be retried"):
        await manager.reset_for_retry(db_session, pending)
    with pytest.raises(JobStateError, match="retry limit"):
        await manager.reset_for_retry(db_session, exhausted)

"""
3. Retry sweep
"""

@pytest.mark.asyncio
async def test_retry_sweep_runs_failed_job_to_completion(
    manager, db_session, create_failed_job, create_listing, create_connection
):
    await create_listing(MarketplaceType.EBAY)
    await create_connection(MarketplaceType.EBAY)
    job = await create_failed_job(targets=("ebay",))

    result = await manager.retry_failed_delistings()

    assert result.success is True
    assert result.jobs_retried == 1
    assert result.errors == []
    await db_session.refresh(job)
    assert job.status == DelistingJobStatus.COMPLETED.value
    assert job.retry_count == 1
    assert job.marketplaces_completed == ["ebay"]


@pytest.mark.asyncio
async def test_retry_sweep_skips_permanent_and_backing_off_jobs(
    mock_engine, settings, db_session, create_failed_job
):
    manager = RetryManager(engine=mock_engine, settings=settings)
    permanent = await create_failed_job(error_log={"ebay": error_entry(E.LISTING_NOT_FOUND, permanent=True)})
    backing_off = await create_failed_job(
        error_log={"ebay": error_entry(E.RATE_LIMITED)}, completed_ago=timedelta(seconds=5)
    )
    due = await create_failed_job()

    result = await manager.retry_failed_delistings()

    assert result.jobs_retried == 1
    assert result.jobs_skipped == 2
    mock_engine.execute_delisting_job.assert_awaited_once_with(due.id)
    await db_session.refresh(permanent)
    await db_session.refresh(backing_off)
    assert permanent.retry_count == permanent.max_retries
    assert permanent.status == DelistingJobStatus.FAILED.value
    assert backing_off.retry_count == 0


@pytest.mark.asyncio
async def test_permanent_failures_do_not_starve_retryable_jobs(
    mock_engine, settings, db_session, create_failed_job
):
    """Older permanent-only jobs beyond max_jobs must not keep newer jobs from being retried"""
    manager = RetryManager(engine=mock_engine, settings=settings)
    for _ in range(3):
        await create_failed_job(
            error_log={"ebay": error_entry(E.INVALID_TOKEN, permanent=True)},
            created_at=utc_now() - timedelta(days=2),
        )
    retryable = await create_failed_job(error_log={"ebay": error_entry(E.NETWORK_ERROR)})

    first = await manager.retry_failed_delistings(max_jobs=2)
    second = await manager.retry_failed_delistings(max_jobs=2)

    assert first.jobs_retried == 1
    assert first.jobs_skipped == 3
    mock_engine.execute_delisting_job.assert_awaited_once_with(retryable.id)
    await db_session.refresh(retryable)
    assert retryable.retry_count == 1
    assert second.jobs_skipped == 0

    abandoned = (await db_session.execute(
        select(DelistingAuditLog).where(DelistingAuditLog.action == AuditAction.JOB_RETRIES_ABANDONED.value)
    )).scalars().all()
    assert len(abandoned) == 3
    assert abandoned[0].context_data == {"reason": "permanent_failures", "error_codes": ["INVALID_TOKEN"]}


@pytest.mark.asyncio
async def test_retry_sweep_ignores_exhausted_jobs(mock_engine, settings, create_failed_job):
    manager = RetryManager(engine=mock_engine, settings=settings)
    await create_failed_job(retry_count=3, max_retries=3)

    result = await manager.retry_failed_delistings()

    assert result.jobs_retried == 0
    mock_engine.execute_delisting_job.assert_not_awaited()


@pytest.mark.asyncio
async def test_retry_sweep_reports_unsuccessful_runs(mock_engine, settings, create_failed_job):
    mock_engine.execute_delisting_job.side_effect = lambda job_id: DelistingJobResult(
        success=False, job_id=job_id, status="failed"
    )
    manager = RetryManager(engine=mock_engine, settings=settings)
    job = await create_failed_job()

    result = await manager.retry_failed_delistings()

    assert result.success is True
    assert result.jobs_retried == 1
    assert result.errors == [f"{job.id}: failed"]

"""
4. Pending sweep
"""

@pytest.mark.asyncio
async def test_pending_sweep_selects_only_due_confirmed_jobs(mock_engine, settings, create_job):
    manager = RetryManager(engine=mock_engine, settings=settings)
    due = await create_job()
    confirmed = await create_job(requires_user_confirmation=True, user_confirmed_at=utc_now())
    await create_job(requires_user_confirmation=True)
    await create_job(scheduled_for=utc_now() + timedelta(hours=1))
    await create_job(status=DelistingJobStatus.CANCELLED.value)
    await create_job(status=DelistingJobStatus.FAILED.value)

    result = await manager.process_pending_jobs(batch_size=2, batch_delay=0)

    assert result.success is True
    assert result.jobs_processed == 2
    assert result.jobs_failed == 0
    called = {call.args[0] for call in mock_engine.execute_delisting_job.await_args_list}
    assert called == {due.id, confirmed.id}


@pytest.mark.asyncio
async def test_pending_sweep_counts_failures(mock_engine, settings, create_job):
    async def execute(job_id):
        if job_id == bad.id:
            raise RuntimeError("engine crashed")
        return DelistingJobResult(success=True, job_id=job_id, status="completed")

    manager = RetryManager(engine=mock_engine, settings=settings)
    await create_job()
    bad = await create_job()
    mock_engine.execute_delisting_job.side_effect = execute

    result = await manager.process_pending_jobs(batch_size=5, batch_delay=0)

    assert result.jobs_processed == 1
    assert result.jobs_failed == 1
    assert result.errors == [f"{bad.id}: engine crashed"]


@pytest.mark.asyncio
async def test_pending_sweep_with_nothing_due(mock_engine, settings):
    manager = RetryManager(engine=mock_engine, settings=settings)

    result = await manager.process_pending_jobs()

    assert result.success is True
    assert result.jobs_processed == 0
    mock_engine.execute_delisting_job.assert_not_awaited()
