# salesync/services/sale_ingestion.py
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from salesync.core.config import Settings, get_settings
from salesync.core.enums import SaleEventSource
from salesync.integrations.events import SaleEventDraft
from salesync.models.sale_event import SaleEvent
from salesync.schemas.sale_event import IngestResult, JobDerivationResult
from salesync.services.delisting_scheduler import DelistingJobScheduler
from salesync.services.sale_event_store import SaleEventStore

logger = logging.getLogger(__name__)


def awaiting_job_derivation(event: SaleEvent, settings: Optional[Settings] = None) -> bool:
    """
    True for a verified, matched event that was never settled and still has
    processing attempts left.
    """
    settings = settings or get_settings()
    return (
        bool(event.verified)
        and event.inventory_item_id is not None
        and not event.processed
        and (event.verification_attempts or 0) < settings.SALE_EVENT_MAX_PROCESSING_ATTEMPTS
    )


async def derive_delisting_job(
    db: AsyncSession,
    event_id: str,
    requires_confirmation: Optional[bool] = None,
) -> JobDerivationResult:
    """
    Derive the delisting job for a stored sale event and commit.

    An event that needs no job (nothing else listed, auto-delisting off, ...)
    is marked processed. A failure is stored on the event as processing_error
    and reported in the result; the event stays unprocessed for a later attempt.
    """
    store = SaleEventStore(db)
    event = await store.get(event_id)
    if event is None:
        return JobDerivationResult(event_id=event_id, error=f"Sale event not found: {event_id}")

    try:
        job = await DelistingJobScheduler(db).create_job_for_sale_event(
            event, requires_confirmation=requires_confirmation
        )
        if job is None:
            await store.mark_processed(event)
        await db.commit()
    except Exception as e:
        logger.error(f"Failed to derive delisting job for sale event {event_id}: {e}", exc_info=True)
        await db.rollback()
        event = await store.get(event_id)
        if event is not None:
            await store.mark_processing_error(event, str(e))
            await db.commit()
        return JobDerivationResult(event_id=event_id, error=str(e))

    return JobDerivationResult(event_id=event_id, processed=True, job_id=job.id if job is not None else None)


async def retry_job_derivation(
    db: AsyncSession,
    event: SaleEvent,
    requires_confirmation: Optional[bool] = None,
) -> JobDerivationResult:
    """Count one more processing attempt on the event, then derive its job again"""
    event_id = event.id
    attempts = await SaleEventStore(db).count_processing_attempt(event)
    await db.commit()
    logger.info(f"Retrying job derivation for sale event {event_id} (attempt {attempts})")
    return await derive_delisting_job(db, event_id, requires_confirmation=requires_confirmation)


async def ingest_sale_event(
    db: AsyncSession,
    draft: SaleEventDraft,
    user_id: str,
    inventory_item_id: Optional[str] = None,
    listing_id: Optional[str] = None,
    verified: bool = True,
    source: SaleEventSource = SaleEventSource.WEBHOOK,
    requires_confirmation: Optional[bool] = None,
) -> IngestResult:
    """
    Record a normalized sale and, when it is new, verified and tied to an
    inventory item, derive its delisting job. Commits on success.

    A failure while deriving the job is stored on the event and logged; the
    event itself is kept so the sale is never lost. A later signal for the
    same sale (webhook redelivery or a poll) derives the job again while the
    event has attempts left, as does the sale event queue sweep.

    Raises:
        SaleEventStoreError: If the event could not be stored
    """
    store = SaleEventStore(db)
    recorded = await store.record_event(
        draft,
        user_id=user_id,
        inventory_item_id=inventory_item_id,
        listing_id=listing_id,
        verified=verified,
        source=source,
    )
    if recorded.duplicate:
        existing = await store.get(recorded.event_id)
        job_id = existing.delisting_job_id if existing is not None else None
        if existing is not None and awaiting_job_derivation(existing):
            derivation = await retry_job_derivation(db, existing, requires_confirmation=requires_confirmation)
            job_id = derivation.job_id
        return IngestResult(success=True, event_id=recorded.event_id, job_id=job_id, duplicate=True)

    await db.commit()

    job_id = None
    if verified and inventory_item_id:
        derivation = await derive_delisting_job(db, recorded.event_id, requires_confirmation=requires_confirmation)
        job_id = derivation.job_id

    return IngestResult(success=True, event_id=recorded.event_id, job_id=job_id, duplicate=False)
