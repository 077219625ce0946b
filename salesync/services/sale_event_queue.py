# salesync/services/sale_event_queue.py
"""
Sweep for sale events that were stored but never turned into a delisting job.

Job derivation runs right after a sale is recorded. When it fails the event
keeps processed=False and a processing_error; this sweep derives the job
again, counting each try in verification_attempts until
SALE_EVENT_MAX_PROCESSING_ATTEMPTS is reached.
"""

import logging
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from salesync.core.config import Settings, get_settings
from salesync.core.enums import AuditAction
from salesync.database import async_session
from salesync.models.sale_event import SaleEvent
from salesync.schemas.sale_event import SaleEventQueueRunResult, SaleEventQueueStats
from salesync.services.audit_logger import AuditLogger
from salesync.services.sale_event_store import SaleEventStore
from salesync.services.sale_ingestion import awaiting_job_derivation, retry_job_derivation

logger = logging.getLogger(__name__)


class SaleEventQueue:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory or async_session
        self.settings = settings or get_settings()

    def _awaiting_filter(self):
        return (
            SaleEvent.processed.is_(False),
            SaleEvent.verified.is_(True),
            SaleEvent.inventory_item_id.isnot(None),
            SaleEvent.verification_attempts < self.settings.SALE_EVENT_MAX_PROCESSING_ATTEMPTS,
        )

    async def get_unprocessed_event_ids(self, limit: Optional[int] = None) -> List[str]:
        """Oldest unsettled events that still have processing attempts left"""
        limit = limit or self.settings.SALE_EVENT_QUEUE_BATCH_SIZE
        async with self.session_factory() as db:
            result = await db.execute(
                select(SaleEvent.id)
                .where(*self._awaiting_filter())
                .order_by(SaleEvent.created_at.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def _process_event(self, event_id: str):
        async with self.session_factory() as db:
            event = await SaleEventStore(db).get(event_id)
            if event is None or not awaiting_job_derivation(event, self.settings):
                return None
            derivation = await retry_job_derivation(db, event)
            if derivation.job_id:
                await AuditLogger(db).log_event(
                    user_id=event.user_id,
                    action=AuditAction.SALE_EVENT_PROCESSED,
                    delisting_job_id=derivation.job_id,
                    marketplace_type=event.marketplace_type,
                    context_data={
                        "sale_event_id": event_id,
                        "external_listing_id": event.external_listing_id,
                        "attempt": event.verification_attempts,
                    },
                )
                await db.commit()
            return derivation

    async def process_unprocessed_sale_events(self, limit: Optional[int] = None) -> SaleEventQueueRunResult:
        """
        Derive delisting jobs for unsettled sale events, oldest first.

        Events are handled one at a time, each in its own session; one
        event's failure does not stop the others.
        """
        try:
            event_ids = await self.get_unprocessed_event_ids(limit)
        except Exception as e:
            logger.error(f"Failed to load unprocessed sale events: {e}", exc_info=True)
            return SaleEventQueueRunResult(success=False, errors=[str(e)])

        if not event_ids:
            logger.debug("No unprocessed sale events")
            return SaleEventQueueRunResult(success=True)

        logger.info(f"Processing {len(event_ids)} unprocessed sale events")
        result = SaleEventQueueRunResult(success=True)
        for event_id in event_ids:
            try:
                derivation = await self._process_event(event_id)
            except Exception as e:
                logger.error(f"Failed to process sale event {event_id}: {e}", exc_info=True)
                result.events_failed += 1
                result.errors.append(f"{event_id}: {e}")
                continue

            if derivation is None:
                continue
            if derivation.error:
                result.events_failed += 1
                result.errors.append(f"{event_id}: {derivation.error}")
                continue
            result.events_processed += 1
            if derivation.job_id:
                result.jobs_created += 1

        logger.info(
            f"Sale event sweep finished: {result.events_processed} processed, "
            f"{result.jobs_created} jobs created, {result.events_failed} failed"
        )
        return result

    async def get_queue_stats(self) -> SaleEventQueueStats:
        max_attempts = self.settings.SALE_EVENT_MAX_PROCESSING_ATTEMPTS
        async with self.session_factory() as db:
            unprocessed = await db.scalar(
                select(func.count()).select_from(SaleEvent).where(SaleEvent.processed.is_(False))
            )
            with_errors = await db.scalar(
                select(func.count()).select_from(SaleEvent).where(SaleEvent.processing_error.isnot(None))
            )
            exhausted = await db.scalar(
                select(func.count()).select_from(SaleEvent).where(
                    SaleEvent.processed.is_(False),
                    SaleEvent.verification_attempts >= max_attempts,
                )
            )
        return SaleEventQueueStats(
            unprocessed_events=unprocessed or 0,
            processing_errors=with_errors or 0,
            exhausted_events=exhausted or 0,
        )
