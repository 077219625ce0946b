# salesync/services/sale_event_store.py
"""
Persistence and deduplication of sale events.

record_event is first-caller-wins on event_hash: a second signal for the same
sale (from another webhook delivery or from polling) reports the existing
row as a duplicate instead of inserting.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from salesync.core.enums import SaleEventSource
from salesync.core.exceptions import SaleEventStoreError
from salesync.core.utils import utc_now
from salesync.integrations.events import SaleEventDraft
from salesync.models.sale_event import SaleEvent
from salesync.schemas.sale_event import RecordEventResult

logger = logging.getLogger(__name__)


class SaleEventStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_hash(self, event_hash: str) -> Optional[SaleEvent]:
        result = await self.db.execute(select(SaleEvent).where(SaleEvent.event_hash == event_hash))
        return result.scalar_one_or_none()

    async def get(self, event_id: str) -> Optional[SaleEvent]:
        return await self.db.get(SaleEvent, event_id)

    async def record_event(
        self,
        draft: SaleEventDraft,
        user_id: str,
        inventory_item_id: Optional[str] = None,
        listing_id: Optional[str] = None,
        verified: bool = True,
        source: SaleEventSource = SaleEventSource.WEBHOOK,
    ) -> RecordEventResult:
        """
        Insert the event unless one with the same hash exists.

        The insert is flushed, not committed; the caller owns the transaction.

        Raises:
            SaleEventStoreError: If the store cannot be read or written. Retryable.
        """
        if not draft.event_hash:
            raise ValueError("Sale event draft has no event_hash")

        try:
            existing = await self.get_by_hash(draft.event_hash)
            if existing is not None:
                logger.info(
                    f"Duplicate {draft.marketplace_type.value} sale event for listing "
                    f"{draft.external_listing_id} (existing event {existing.id})"
                )
                return RecordEventResult(event_id=existing.id, created=False, duplicate=True)

            source = SaleEventSource(source)
            event = SaleEvent(
                user_id=user_id,
                inventory_item_id=inventory_item_id,
                listing_id=listing_id,
                marketplace_type=draft.marketplace_type.value,
                source=source.value,
                event_type=draft.event_type,
                external_event_id=draft.external_event_id,
                external_listing_id=draft.external_listing_id,
                external_transaction_id=draft.external_transaction_id,
                sale_price=draft.sale_price,
                sale_currency=draft.sale_currency or "USD",
                sale_date=draft.sale_datetime,
                buyer_id=draft.buyer_id,
                payment_status=draft.payment_status,
                raw_webhook_data=draft.raw_data if source == SaleEventSource.WEBHOOK else None,
                raw_polling_data=draft.raw_data if source == SaleEventSource.POLLING else None,
                event_hash=draft.event_hash,
                verified=verified,
                verification_attempts=1 if verified else 0,
                processed=False,
            )
            self.db.add(event)
            await self.db.flush()

        except IntegrityError:
            # Another writer inserted the same hash between our lookup and insert
            await self.db.rollback()
            existing = await self._get_existing_after_race(draft.event_hash)
            return RecordEventResult(event_id=existing.id, created=False, duplicate=True)

        except SQLAlchemyError as e:
            logger.error(f"Failed to store sale event {draft.event_hash}: {e}", exc_info=True)
            raise SaleEventStoreError(f"Failed to store sale event: {e}") from e

        logger.info(
            f"Recorded {draft.marketplace_type.value} sale event {event.id} "
            f"(listing {draft.external_listing_id}, source {source.value})"
        )
        return RecordEventResult(event_id=event.id, created=True, duplicate=False)

    async def _get_existing_after_race(self, event_hash: str) -> SaleEvent:
        try:
            existing = await self.get_by_hash(event_hash)
        except SQLAlchemyError as e:
            raise SaleEventStoreError(f"Failed to read sale event after conflict: {e}") from e
        if existing is None:
            raise SaleEventStoreError(f"Sale event {event_hash} conflicted on insert but was not found")
        return existing

    async def mark_processing_error(self, event: SaleEvent, message: str) -> None:
        event.processing_error = message[:2000]
        event.updated_at = utc_now()
        await self.db.flush()

    async def mark_processed(self, event: SaleEvent) -> None:
        """Settle an event that needed no delisting job"""
        if event.processed:
            return
        event.processed = True
        event.processed_at = utc_now()
        event.processing_error = None
        await self.db.flush()

    async def count_processing_attempt(self, event: SaleEvent) -> int:
        event.verification_attempts = (event.verification_attempts or 0) + 1
        event.updated_at = utc_now()
        await self.db.flush()
        return event.verification_attempts
