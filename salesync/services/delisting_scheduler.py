# salesync/services/delisting_scheduler.py
"""
Derives delisting jobs from sale events and handles the owner's
confirm / cancel decisions on jobs that are held for confirmation.
"""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from salesync.core.config import Settings, get_settings
from salesync.core.enums import (
    AuditAction,
    DelistingJobStatus,
    DelistingPreference,
    DelistingTriggerType,
    ListingStatus,
    MarketplaceType,
)
from salesync.core.exceptions import AuthorizationError, JobNotFoundError, JobStateError, ValidationError
from salesync.core.utils import utc_now
from salesync.models.delisting_job import DelistingJob
from salesync.models.delisting_preferences import UserDelistingPreferences
from salesync.models.listing import Listing
from salesync.models.sale_event import SaleEvent
from salesync.services.audit_logger import AuditLogger

logger = logging.getLogger(__name__)


class DelistingJobScheduler:
    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.audit = AuditLogger(db)

    async def get_preferences(self, user_id: str) -> UserDelistingPreferences:
        """Stored preferences, or the defaults for users who never saved any"""
        result = await self.db.execute(
            select(UserDelistingPreferences).where(UserDelistingPreferences.user_id == user_id)
        )
        prefs = result.scalar_one_or_none()
        if prefs is None:
            prefs = UserDelistingPreferences(
                user_id=user_id,
                auto_delist_enabled=True,
                default_preference=DelistingPreference.IMMEDIATE.value,
                delay_minutes=0,
                require_confirmation=False,
                exclude_marketplaces=[],
            )
        return prefs

    async def find_target_marketplaces(
        self,
        inventory_item_id: str,
        exclude: Sequence[str] = (),
    ) -> List[str]:
        """Distinct marketplaces with an active or pending listing of the item"""
        query = (
            select(Listing.marketplace_type)
            .where(
                Listing.inventory_item_id == inventory_item_id,
                Listing.status.in_(ListingStatus.delistable()),
                Listing.deleted_at.is_(None),
            )
            .distinct()
        )
        if exclude:
            query = query.where(Listing.marketplace_type.notin_(list(exclude)))
        result = await self.db.execute(query)
        return sorted(result.scalars().all())

    def _schedule(self, prefs: UserDelistingPreferences, requires_confirmation: bool):
        now = utc_now()
        preference = prefs.default_preference or DelistingPreference.IMMEDIATE.value
        if requires_confirmation or preference == DelistingPreference.MANUAL_CONFIRMATION.value:
            return now + timedelta(days=self.settings.MANUAL_CONFIRMATION_WINDOW_DAYS)
        if preference == DelistingPreference.DELAYED.value:
            return now + timedelta(minutes=prefs.delay_minutes or 0)
        return now

    @staticmethod
    def _outside_sale_range(prefs: UserDelistingPreferences, amount: Optional[Decimal]) -> bool:
        if amount is None:
            return False
        if prefs.min_sale_amount is not None and amount < Decimal(str(prefs.min_sale_amount)):
            return True
        if prefs.max_sale_amount is not None and amount > Decimal(str(prefs.max_sale_amount)):
            return True
        return False

    async def create_job_for_sale_event(
        self,
        sale_event: SaleEvent,
        requires_confirmation: Optional[bool] = None,
    ) -> Optional[DelistingJob]:
        """
        Create the delisting job for a sale, or return None when nothing should be delisted.

        Args:
            sale_event: A verified event with a known inventory item
            requires_confirmation: Policy decision from the caller; when None the
                user's preferences decide

        Returns:
            The new job (flushed, not committed), or None when the event is
            unverified, unmatched, auto-delisting is off, the sale is outside the
            user's amount range, or no other marketplace has a live listing
        """
        if not sale_event.verified or not sale_event.inventory_item_id:
            logger.debug(f"Sale event {sale_event.id} not eligible for delisting (verified={sale_event.verified})")
            return None
        if sale_event.processed:
            logger.info(f"Sale event {sale_event.id} already processed (job {sale_event.delisting_job_id})")
            return None

        prefs = await self.get_preferences(sale_event.user_id)
        if not prefs.auto_delist_enabled:
            logger.info(f"Auto-delisting disabled for user {sale_event.user_id}, skipping event {sale_event.id}")
            return None

        if self._outside_sale_range(prefs, sale_event.sale_price):
            logger.info(f"Sale amount {sale_event.sale_price} outside user range, skipping event {sale_event.id}")
            return None

        exclude = [sale_event.marketplace_type] + list(prefs.exclude_marketplaces or [])
        targets = await self.find_target_marketplaces(sale_event.inventory_item_id, exclude)
        if not targets:
            logger.info(f"No other live listings for item {sale_event.inventory_item_id}, no job needed")
            return None

        if requires_confirmation is None:
            requires_confirmation = bool(prefs.require_confirmation) or (
                prefs.default_preference == DelistingPreference.MANUAL_CONFIRMATION.value
            )

        job = DelistingJob(
            user_id=sale_event.user_id,
            inventory_item_id=sale_event.inventory_item_id,
            trigger_type=DelistingTriggerType.SALE_DETECTED.value,
            trigger_data={
                "sale_event_id": sale_event.id,
                "marketplace": sale_event.marketplace_type,
                "external_listing_id": sale_event.external_listing_id,
            },
            status=DelistingJobStatus.PENDING.value,
            sold_on_marketplace=sale_event.marketplace_type,
            sale_price=sale_event.sale_price,
            sale_date=sale_event.sale_date,
            sale_external_id=sale_event.external_transaction_id,
            marketplaces_targeted=targets,
            marketplaces_completed=[],
            marketplaces_failed=[],
            success_log={},
            error_log={},
            requires_user_confirmation=requires_confirmation,
            scheduled_for=self._schedule(prefs, requires_confirmation),
            max_retries=self.settings.DELISTING_MAX_RETRIES,
        )
        self.db.add(job)
        await self.db.flush()

        sale_event.processed = True
        sale_event.processed_at = utc_now()
        sale_event.delisting_job_id = job.id
        sale_event.processing_error = None

        await self.audit.log_event(
            user_id=job.user_id,
            action=AuditAction.JOB_CREATED,
            delisting_job_id=job.id,
            marketplace_type=sale_event.marketplace_type,
            context_data={
                "triggered_by": "sale_event",
                "sale_event_id": sale_event.id,
                "marketplaces_count": len(targets),
            },
        )
        await self.db.flush()

        logger.info(
            f"Created delisting job {job.id} for item {job.inventory_item_id} targeting {targets} "
            f"(scheduled {job.scheduled_for.isoformat()}, confirmation={requires_confirmation})"
        )
        return job

    async def create_manual_job(
        self,
        user_id: str,
        inventory_item_id: str,
        marketplaces: Optional[Sequence[str]] = None,
        reason: Optional[str] = None,
    ) -> DelistingJob:
        """
        Create an immediate job ending the item's listings on the given marketplaces
        (all live ones when none are given).

        Raises:
            ValidationError: If a marketplace is unknown or there is nothing to delist
        """
        try:
            requested = [MarketplaceType(m).value for m in (marketplaces or [])]
        except ValueError as e:
            raise ValidationError(str(e)) from e

        live = await self.find_target_marketplaces(inventory_item_id)
        targets = [m for m in live if not requested or m in requested]
        if not targets:
            raise ValidationError(f"No active listings to delist for item {inventory_item_id}")

        job = DelistingJob(
            user_id=user_id,
            inventory_item_id=inventory_item_id,
            trigger_type=DelistingTriggerType.MANUAL.value,
            trigger_data={"reason": reason} if reason else {},
            status=DelistingJobStatus.PENDING.value,
            marketplaces_targeted=targets,
            marketplaces_completed=[],
            marketplaces_failed=[],
            success_log={},
            error_log={},
            requires_user_confirmation=False,
            scheduled_for=utc_now(),
            max_retries=self.settings.DELISTING_MAX_RETRIES,
        )
        self.db.add(job)
        await self.db.flush()
        await self.audit.log_event(
            user_id=user_id,
            action=AuditAction.JOB_CREATED,
            delisting_job_id=job.id,
            context_data={"triggered_by": "manual", "marketplaces_count": len(targets)},
        )
        return job

    async def _get_owned_pending_job(self, job_id: str, user_id: Optional[str]) -> DelistingJob:
        job = await self.db.get(DelistingJob, job_id)
        if job is None:
            raise JobNotFoundError(f"Delisting job not found: {job_id}")
        if user_id is not None and job.user_id != user_id:
            raise AuthorizationError(f"Delisting job {job_id} does not belong to user {user_id}")
        if job.status != DelistingJobStatus.PENDING.value or job.user_cancelled_at is not None:
            raise JobStateError(f"Delisting job {job_id} is not in pending status (status: {job.status})")
        return job

    async def confirm_job(self, job_id: str, user_id: Optional[str] = None) -> DelistingJob:
        """Release a job held for confirmation; it runs on the next pending sweep"""
        job = await self._get_owned_pending_job(job_id, user_id)
        now = utc_now()
        job.user_confirmed_at = now
        job.scheduled_for = min(job.scheduled_for, now)
        await self.audit.log_event(
            user_id=job.user_id, action=AuditAction.JOB_CONFIRMED, delisting_job_id=job.id
        )
        await self.db.flush()
        logger.info(f"Delisting job {job.id} confirmed")
        return job

    async def cancel_job(self, job_id: str, user_id: Optional[str] = None, reason: Optional[str] = None) -> DelistingJob:
        job = await self._get_owned_pending_job(job_id, user_id)
        job.status = DelistingJobStatus.CANCELLED.value
        job.user_cancelled_at = utc_now()
        job.cancellation_reason = reason
        await self.audit.log_event(
            user_id=job.user_id,
            action=AuditAction.JOB_CANCELLED,
            delisting_job_id=job.id,
            context_data={"reason": reason} if reason else None,
        )
        await self.db.flush()
        logger.info(f"Delisting job {job.id} cancelled: {reason or 'no reason given'}")
        return job
