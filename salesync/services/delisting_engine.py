# salesync/services/delisting_engine.py
"""
Executes delisting jobs.

execute_delisting_job runs one job to a terminal state: it ends the item's
listing on every targeted marketplace concurrently, records each outcome
independently, and aggregates them into the job's status and logs. It never
raises; callers get a DelistingJobResult either way.

Each call opens its own session. The per-listing tasks of one job share that
session, so their database work is serialised with an asyncio.Lock while the
marketplace calls themselves run in parallel.
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from salesync.core.concurrency import gather_settled
from salesync.core.enums import (
    AuditAction,
    ConnectionStatus,
    DelistingErrorCode,
    DelistingJobStatus,
    ListingStatus,
)
from salesync.core.exceptions import DelistingError, JobNotFoundError, JobStateError, MarketplaceAPIError, ValidationError
from salesync.core.utils import to_iso, utc_now
from salesync.integrations.base import EndListingOptions
from salesync.integrations.setup import AdapterFactory, create_adapter
from salesync.models.delisting_job import DelistingJob
from salesync.models.listing import Listing
from salesync.models.marketplace_connection import MarketplaceConnection
from salesync.schemas.delisting import DelistingErrorDetail, DelistingJobResult, DelistingResult
from salesync.services.audit_logger import AuditLogger
from salesync.services.delisting_errors import map_adapter_error

logger = logging.getLogger(__name__)

DELIST_REASON = "Item sold on another marketplace"
EXECUTION_ERROR_KEY = "execution_error"


def validate_job_id(job_id: Any) -> str:
    try:
        return str(uuid.UUID(str(job_id)))
    except (TypeError, ValueError, AttributeError) as e:
        raise ValidationError(f"Invalid delisting job id: {job_id}") from e


class DelistingEngine:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        adapter_factory: Optional[AdapterFactory] = None,
    ):
        if session_factory is None:
            from salesync.database import async_session
            session_factory = async_session
        self.session_factory = session_factory
        self.adapter_factory = adapter_factory or create_adapter

    """
    1. Job execution
    """

    async def execute_delisting_job(self, job_id: str) -> DelistingJobResult:
        """
        Run one pending, due, confirmed job.

        Precondition failures (bad id, not found, not pending, awaiting
        confirmation, scheduled in the future) leave the job untouched and
        come back as an unsuccessful result naming the reason. Unexpected
        errors mark the job failed.
        """
        async with self.session_factory() as db:
            try:
                job = await self._load_job_for_execution(db, job_id)
            except (ValidationError, JobNotFoundError, JobStateError) as e:
                logger.warning(f"Delisting job {job_id} not executed: {e}")
                return DelistingJobResult(success=False, job_id=str(job_id), error=str(e))
            except Exception as e:
                logger.error(f"Failed to load delisting job {job_id}: {e}", exc_info=True)
                return DelistingJobResult(success=False, job_id=str(job_id), error=f"Failed to load delisting job: {e}")

            job_key = job.id
            try:
                return await self._run_job(db, job)
            except Exception as e:
                logger.error(f"Delisting job {job_key} failed unexpectedly: {e}", exc_info=True)
                await self._mark_job_failed(db, job_key, e)
                return DelistingJobResult(
                    success=False,
                    job_id=job_key,
                    status=DelistingJobStatus.FAILED.value,
                    error=str(e),
                )

    async def _load_job_for_execution(self, db: AsyncSession, job_id: str) -> DelistingJob:
        job_id = validate_job_id(job_id)
        job = await db.get(DelistingJob, job_id)
        if job is None:
            raise JobNotFoundError(f"Delisting job not found: {job_id}")
        if job.status != DelistingJobStatus.PENDING.value:
            raise JobStateError(f"Delisting job {job_id} is not in pending status (status: {job.status})")
        if job.awaiting_confirmation:
            raise JobStateError(f"Delisting job {job_id} requires user confirmation")
        if job.scheduled_for is not None and job.scheduled_for > utc_now():
            raise JobStateError(
                f"Delisting job {job_id} is scheduled for future execution at {to_iso(job.scheduled_for)}"
            )
        return job

    async def _get_target_listings(self, db: AsyncSession, job: DelistingJob, skip: Set[str]) -> List[Listing]:
        targets = [m for m in (job.marketplaces_targeted or []) if m not in skip]
        if not targets:
            return []
        result = await db.execute(
            select(Listing)
            .where(
                Listing.user_id == job.user_id,
                Listing.inventory_item_id == job.inventory_item_id,
                Listing.marketplace_type.in_(targets),
                Listing.status.in_(ListingStatus.delistable()),
                Listing.deleted_at.is_(None),
            )
            .order_by(Listing.marketplace_type)
        )
        return list(result.scalars().all())

    async def _run_job(self, db: AsyncSession, job: DelistingJob) -> DelistingJobResult:
        job.status = DelistingJobStatus.PROCESSING.value
        job.started_at = utc_now()
        job.completed_at = None
        await db.commit()
        logger.info(f"Processing delisting job {job.id} (attempt {job.retry_count + 1}/{job.max_retries + 1})")

        # Failures recorded as permanent on an earlier attempt are not attempted again
        carried_errors = {
            m: e for m, e in (job.error_log or {}).items()
            if m != EXECUTION_ERROR_KEY and isinstance(e, dict) and e.get("permanent")
        }
        prior_success = dict(job.success_log or {})
        prior_delisted = (job.total_delisted or 0) if prior_success else 0

        listings = await self._get_target_listings(db, job, skip=set(carried_errors))
        if not listings:
            logger.info(f"No active listings left for delisting job {job.id}")

        lock = asyncio.Lock()
        outcomes = await gather_settled(
            *(self.delist_from_marketplace(db, listing, job, lock) for listing in listings)
        )

        results: List[DelistingResult] = []
        for listing, outcome in zip(listings, outcomes):
            if outcome.ok:
                results.append(outcome.value)
            else:
                error = map_adapter_error(outcome.error, listing.marketplace_type, listing.id, listing.external_listing_id)
                results.append(DelistingResult(
                    marketplace=listing.marketplace_type,
                    listing_id=listing.id,
                    success=False,
                    error=DelistingErrorDetail(**error.to_dict()),
                ))

        return await self._finalize_job(db, job, results, carried_errors, prior_success, prior_delisted)

    async def _finalize_job(
        self,
        db: AsyncSession,
        job: DelistingJob,
        results: List[DelistingResult],
        carried_errors: Dict[str, Any],
        prior_success: Dict[str, Any],
        prior_delisted: int,
    ) -> DelistingJobResult:
        now_iso = to_iso(utc_now())
        succeeded = [r for r in results if r.success]
        failed = [r for r in results if not r.success]

        success_log = dict(prior_success)
        for r in succeeded:
            success_log[r.marketplace] = {
                "listing_id": r.listing_id,
                "delisted_at": r.delisted_at,
                "external_response": r.external_response,
                "duration_ms": r.duration_ms,
            }

        error_log = dict(carried_errors)
        for r in failed:
            error_log[r.marketplace] = {
                "listing_id": r.listing_id,
                "error": r.error.message if r.error else "Unknown error",
                "code": r.error.code if r.error else DelistingErrorCode.UNKNOWN_ERROR.value,
                "permanent": r.error.permanent if r.error else False,
                "retry_after": r.error.retry_after if r.error else None,
                "timestamp": now_iso,
                "retry_count": job.retry_count,
                "duration_ms": r.duration_ms,
            }

        total_delisted = prior_delisted + len(succeeded)
        total_failed = len(failed) + len(carried_errors)

        if total_failed == 0:
            status = DelistingJobStatus.COMPLETED
        elif total_delisted > 0:
            status = DelistingJobStatus.PARTIALLY_FAILED
        else:
            status = DelistingJobStatus.FAILED

        job.success_log = success_log
        job.error_log = error_log
        job.marketplaces_completed = sorted(success_log)
        job.marketplaces_failed = sorted(error_log)
        job.total_delisted = total_delisted
        job.total_failed = total_failed
        job.status = status.value
        job.completed_at = utc_now()

        await AuditLogger(db).log_event(
            user_id=job.user_id,
            action=AuditAction.JOB_COMPLETED,
            delisting_job_id=job.id,
            success=status == DelistingJobStatus.COMPLETED,
            context_data={
                "status": status.value,
                "total_targeted": len(results),
                "total_completed": len(succeeded),
                "total_failed": len(failed),
                "retry_count": job.retry_count,
            },
        )
        await db.commit()

        logger.info(
            f"Delisting job {job.id} finished as {status.value}: "
            f"{len(succeeded)} delisted, {len(failed)} failed of {len(results)} targeted"
        )

        return DelistingJobResult(
            success=status != DelistingJobStatus.FAILED,
            job_id=job.id,
            status=status.value,
            total_targeted=len(results),
            total_completed=len(succeeded),
            total_failed=len(failed),
            results=results,
        )

    async def _mark_job_failed(self, db: AsyncSession, job_id: str, error: Exception) -> None:
        try:
            await db.rollback()
            job = await db.get(DelistingJob, job_id, populate_existing=True)
            if job is None:
                return
            error_log = dict(job.error_log or {})
            error_log[EXECUTION_ERROR_KEY] = {"error": str(error), "timestamp": to_iso(utc_now())}
            job.error_log = error_log
            job.status = DelistingJobStatus.FAILED.value
            job.completed_at = utc_now()
            await db.commit()
        except Exception as e:
            logger.error(f"Could not mark delisting job {job_id} as failed: {e}", exc_info=True)

    """
    2. Per-marketplace delisting
    """

    async def _get_active_connection(
        self, db: AsyncSession, user_id: str, marketplace: str
    ) -> Optional[MarketplaceConnection]:
        result = await db.execute(
            select(MarketplaceConnection)
            .where(
                MarketplaceConnection.user_id == user_id,
                MarketplaceConnection.marketplace_type == marketplace,
                MarketplaceConnection.status == ConnectionStatus.ACTIVE.value,
                MarketplaceConnection.deleted_at.is_(None),
            )
            .order_by(MarketplaceConnection.updated_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def delist_from_marketplace(
        self,
        db: AsyncSession,
        listing: Listing,
        job: DelistingJob,
        lock: Optional[asyncio.Lock] = None,
    ) -> DelistingResult:
        """
        End one listing on its marketplace. Never raises.

        Success marks the listing cancelled; both outcomes write an audit entry
        with the wall-clock duration.
        """
        lock = lock or asyncio.Lock()
        marketplace = listing.marketplace_type
        listing_id = listing.id
        external_id = listing.external_listing_id
        user_id = job.user_id
        job_id = job.id
        sold_to_buyer = job.sale_external_id
        started = time.monotonic()

        try:
            async with lock:
                connection = await self._get_active_connection(db, user_id, marketplace)
            if connection is None:
                raise DelistingError(
                    code=DelistingErrorCode.INVALID_TOKEN.value,
                    message=f"No active connection for {marketplace}",
                    marketplace=marketplace,
                    listing_id=listing_id,
                    external_id=external_id,
                    permanent=True,
                )

            try:
                adapter = self.adapter_factory(connection)
            except Exception as e:
                raise DelistingError(
                    code=DelistingErrorCode.INTERNAL_ERROR.value,
                    message=f"Failed to create adapter for {marketplace}: {e}",
                    marketplace=marketplace,
                    listing_id=listing_id,
                    external_id=external_id,
                ) from e

            options = EndListingOptions(reason=DELIST_REASON, sold_to_buyer=sold_to_buyer)
            try:
                response = await adapter.end_listing(external_id, options)
                if isinstance(response, dict) and response.get("success") is False:
                    raise MarketplaceAPIError(
                        response.get("error") or f"Failed to end {marketplace} listing", marketplace
                    )
            except Exception as e:
                raise map_adapter_error(e, marketplace, listing_id, external_id) from e

            duration_ms = int((time.monotonic() - started) * 1000)
            delisted_at = to_iso(utc_now())
            async with lock:
                listing.status = ListingStatus.CANCELLED.value
                listing.updated_at = utc_now()
                await AuditLogger(db).log_event(
                    user_id=user_id,
                    action=AuditAction.LISTING_DELISTED,
                    delisting_job_id=job_id,
                    listing_id=listing_id,
                    marketplace_type=marketplace,
                    duration_ms=duration_ms,
                    context_data={"external_listing_id": external_id},
                )
                await db.commit()

            logger.info(f"Delisted {marketplace} listing {external_id} for job {job_id} in {duration_ms}ms")
            return DelistingResult(
                marketplace=marketplace,
                listing_id=listing_id,
                success=True,
                delisted_at=delisted_at,
                external_response=response,
                duration_ms=duration_ms,
            )

        except DelistingError as e:
            error = e
        except Exception as e:
            error = DelistingError(
                code=DelistingErrorCode.INTERNAL_ERROR.value,
                message=str(e) or type(e).__name__,
                marketplace=marketplace,
                listing_id=listing_id,
                external_id=external_id,
            )

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.warning(
            f"Failed to delist {marketplace} listing {external_id} for job {job_id}: "
            f"{error.code} {error.message}"
        )
        async with lock:
            await self._record_failure(db, error, user_id, job_id, listing_id, marketplace, duration_ms)

        return DelistingResult(
            marketplace=marketplace,
            listing_id=listing_id,
            success=False,
            duration_ms=duration_ms,
            error=DelistingErrorDetail(**error.to_dict()),
        )

    async def _record_failure(
        self,
        db: AsyncSession,
        error: DelistingError,
        user_id: str,
        job_id: str,
        listing_id: str,
        marketplace: str,
        duration_ms: int,
    ) -> None:
        try:
            await AuditLogger(db).log_event(
                user_id=user_id,
                action=AuditAction.LISTING_DELIST_FAILED,
                delisting_job_id=job_id,
                listing_id=listing_id,
                marketplace_type=marketplace,
                success=False,
                error_message=error.message,
                error_code=error.code,
                duration_ms=duration_ms,
                context_data={"permanent": error.permanent, "retry_after": error.retry_after},
            )
            await db.commit()
        except Exception as e:
            logger.error(f"Could not record delisting failure for job {job_id}: {e}")
            await db.rollback()
