# salesync/services/sale_poller.py
"""
Sale detection by polling, for marketplaces that do not push webhooks.

For every user with an active connection to a marketplace, the poller fetches
the current snapshot of each of their live listings. A snapshot that reports
the listing as sold marks the listing sold and is ingested as a verified
sale event, which in turn schedules the delisting job.

Users are polled one after another with an adaptive pause that grows while
users keep failing. A per-marketplace circuit breaker stops polling a
marketplace whose sweeps keep failing as a whole.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, NamedTuple, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from salesync.core.concurrency import chunked, retry_with_backoff
from salesync.core.enums import ConnectionStatus, ListingStatus, MarketplaceType, SaleEventSource
from salesync.core.exceptions import MarketplaceAPIError
from salesync.core.utils import parse_datetime, to_decimal, to_iso, utc_now
from salesync.integrations.base import MarketplaceAdapter
from salesync.integrations.setup import AdapterFactory, create_adapter
from salesync.models.listing import Listing
from salesync.models.marketplace_connection import MarketplaceConnection
from salesync.schemas.polling import (
    MarketplacePollResult,
    MarketplacePollingStatus,
    PollAllResult,
    UserPollResult,
)
from salesync.services.circuit_breaker import CircuitBreaker, get_circuit_breaker, polling_key
from salesync.services.event_normalizer import normalize_polled_listing
from salesync.services.marketplace_registry import MarketplaceProfile, all_profiles, get_profile
from salesync.services.sale_ingestion import ingest_sale_event

logger = logging.getLogger(__name__)

LISTING_BATCH_SIZE = 10


class ListingRef(NamedTuple):
    """Plain copy of the listing fields polling needs; survives session rollbacks"""
    id: str
    external_listing_id: str


@dataclass
class PollingDelays:
    """Pauses between units of polling work, in milliseconds"""
    between_users_ms: int = 500
    max_user_backoff_ms: int = 5000
    between_batches_ms: int = 1000
    between_marketplaces_ms: int = 2000


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 10.0


async def _sleep_ms(ms: float) -> None:
    if ms > 0:
        await asyncio.sleep(ms / 1000)


class SalePoller:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        adapter_factory: Optional[AdapterFactory] = None,
        delays: Optional[PollingDelays] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        if session_factory is None:
            from salesync.database import async_session
            session_factory = async_session
        self.session_factory = session_factory
        self.circuit_breaker = circuit_breaker or get_circuit_breaker()
        self.adapter_factory = adapter_factory or create_adapter
        self.delays = delays or PollingDelays()
        self.retry_policy = retry_policy or RetryPolicy()
        self._last_polled: Dict[str, datetime] = {}

    # --- Queries ---

    async def _get_user_ids(self, marketplace: MarketplaceType) -> List[str]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(MarketplaceConnection.user_id)
                .where(
                    MarketplaceConnection.marketplace_type == marketplace.value,
                    MarketplaceConnection.status == ConnectionStatus.ACTIVE.value,
                    MarketplaceConnection.deleted_at.is_(None),
                )
                .distinct()
                .order_by(MarketplaceConnection.user_id)
            )
            return list(result.scalars().all())

    async def _get_connection(
        self, db: AsyncSession, user_id: str, marketplace: MarketplaceType
    ) -> Optional[MarketplaceConnection]:
        result = await db.execute(
            select(MarketplaceConnection)
            .where(
                MarketplaceConnection.user_id == user_id,
                MarketplaceConnection.marketplace_type == marketplace.value,
                MarketplaceConnection.status == ConnectionStatus.ACTIVE.value,
                MarketplaceConnection.deleted_at.is_(None),
            )
            .order_by(MarketplaceConnection.updated_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _get_live_listings(
        self, db: AsyncSession, user_id: str, marketplace: MarketplaceType, limit: int
    ) -> List[ListingRef]:
        query = (
            select(Listing.id, Listing.external_listing_id)
            .where(
                Listing.user_id == user_id,
                Listing.marketplace_type == marketplace.value,
                Listing.status.in_(ListingStatus.delistable()),
                Listing.external_listing_id.isnot(None),
                Listing.deleted_at.is_(None),
            )
            .order_by(Listing.updated_at.asc())
        )
        if limit > 0:
            query = query.limit(limit)
        result = await db.execute(query)
        return [ListingRef(*row) for row in result.all()]

    # --- Per user ---

    async def poll_user_listings(self, marketplace, user_id: str) -> UserPollResult:
        """
        Check one user's live listings on one marketplace. Never raises.

        Failures that abort the whole user (no connection, adapter or query
        errors) are retried with exponential backoff; failures of a single
        listing are logged and the remaining listings are still checked.
        """
        marketplace = MarketplaceType(marketplace)
        profile = get_profile(marketplace)
        policy = self.retry_policy
        try:
            return await retry_with_backoff(
                lambda: self._poll_user_listings(profile, user_id),
                max_attempts=policy.max_attempts,
                initial_delay=policy.initial_delay,
                multiplier=policy.multiplier,
                max_delay=policy.max_delay,
                description=f"Polling {marketplace.value} for user {user_id}",
            )
        except Exception as e:
            logger.error(f"Polling {marketplace.value} for user {user_id} failed: {e}", exc_info=True)
            return UserPollResult(success=False, user_id=user_id, error=str(e))

    async def _poll_user_listings(self, profile: MarketplaceProfile, user_id: str) -> UserPollResult:
        marketplace = profile.marketplace
        result = UserPollResult(success=True, user_id=user_id)

        async with self.session_factory() as db:
            connection = await self._get_connection(db, user_id, marketplace)
            if connection is None:
                raise MarketplaceAPIError(f"No active {marketplace.value} connection for user {user_id}", marketplace.value)
            adapter = self.adapter_factory(connection)
            listings = await self._get_live_listings(db, user_id, marketplace, profile.polling.max_items_per_poll)

            for index, batch in enumerate(chunked(listings, LISTING_BATCH_SIZE)):
                if index:
                    await _sleep_ms(self.delays.between_batches_ms)
                for ref in batch:
                    external_id = ref.external_listing_id
                    result.listings_checked += 1
                    try:
                        if await self._check_listing(db, adapter, ref, marketplace):
                            result.sales_found += 1
                    except Exception as e:
                        await db.rollback()
                        result.listings_failed += 1
                        result.errors.append(f"{external_id}: {e}")
                        logger.warning(f"Failed to check {marketplace.value} listing {external_id}: {e}")

        if result.listings_checked and result.listings_failed == result.listings_checked:
            result.success = False
            result.error = f"All {result.listings_checked} listing checks failed"
        return result

    async def _check_listing(
        self,
        db: AsyncSession,
        adapter: MarketplaceAdapter,
        ref: ListingRef,
        marketplace: MarketplaceType,
    ) -> bool:
        """Returns True when the listing turned out sold and a new sale was recorded"""
        snapshot = await adapter.get_listing_by_id(ref.external_listing_id)
        if not snapshot or snapshot.get("status") != ListingStatus.SOLD.value:
            return False
        snapshot = {"id": ref.external_listing_id, **snapshot}
        listing = await db.get(Listing, ref.id)
        if listing is None:
            return False

        # Committed together with the sale event by ingest_sale_event
        listing.status = ListingStatus.SOLD.value
        listing.sale_price = to_decimal(snapshot.get("sale_price"))
        listing.sale_date = parse_datetime(snapshot.get("sale_date") or snapshot.get("sold_date")) or utc_now()
        listing.updated_at = utc_now()

        normalized = normalize_polled_listing(marketplace, snapshot)
        if not normalized.is_sale:
            await db.commit()
            logger.warning(f"Sold {marketplace.value} listing {listing.external_listing_id} could not be normalized: {normalized.error}")
            return False

        ingested = await ingest_sale_event(
            db,
            normalized.draft,
            user_id=listing.user_id,
            inventory_item_id=listing.inventory_item_id,
            listing_id=listing.id,
            verified=True,
            source=SaleEventSource.POLLING,
        )
        if ingested.duplicate:
            await db.commit()
            logger.info(f"Sale of {marketplace.value} listing {listing.external_listing_id} already recorded")
            return False

        logger.info(
            f"Detected sale of {marketplace.value} listing {listing.external_listing_id} "
            f"(event {ingested.event_id}, job {ingested.job_id})"
        )
        return True

    # --- Per marketplace ---

    async def poll_marketplace(self, marketplace) -> MarketplacePollResult:
        """Poll every connected user of one marketplace. Never raises."""
        try:
            profile = get_profile(marketplace)
        except ValueError:
            return MarketplacePollResult(
                marketplace=str(marketplace), success=False, supported=False,
                error=f"Unknown marketplace: {marketplace}",
            )
        name = profile.marketplace.value

        if not profile.polling.enabled:
            return MarketplacePollResult(marketplace=name, success=True, message="Polling disabled")
        if not profile.supports_polling:
            return MarketplacePollResult(
                marketplace=name, success=False, supported=False,
                error=profile.unsupported_reason or f"Polling not supported for marketplace: {name}",
            )

        key = polling_key(profile.marketplace)
        if not self.circuit_breaker.can_execute(key):
            state = self.circuit_breaker.get_state(key).state
            logger.warning(f"Skipping {name} poll, circuit breaker {getattr(state, 'value', state)}")
            return MarketplacePollResult(
                marketplace=name, success=False,
                error=f"Circuit breaker {getattr(state, 'value', state)}",
            )

        result = MarketplacePollResult(marketplace=name, success=True)
        try:
            user_ids = await self._get_user_ids(profile.marketplace)
            logger.info(f"Polling {name} for {len(user_ids)} users")
            consecutive_failures = 0
            for index, user_id in enumerate(user_ids):
                if index:
                    pause = min(
                        self.delays.between_users_ms * (2 ** consecutive_failures),
                        self.delays.max_user_backoff_ms,
                    )
                    await _sleep_ms(pause)
                user_result = await self.poll_user_listings(profile.marketplace, user_id)
                result.users_polled += 1
                result.total_sales_found += user_result.sales_found
                if user_result.success:
                    consecutive_failures = 0
                else:
                    result.users_failed += 1
                    consecutive_failures += 1
        except Exception as e:
            logger.error(f"Polling {name} failed: {e}", exc_info=True)
            self.circuit_breaker.record_failure(key)
            result.success = False
            result.error = str(e)
            return result
        finally:
            self._last_polled[name] = utc_now()

        if result.users_polled and result.users_failed == result.users_polled:
            self.circuit_breaker.record_failure(key)
            result.success = False
            result.error = f"All {result.users_polled} user polls failed"
        else:
            self.circuit_breaker.record_success(key)

        logger.info(
            f"Polled {name}: {result.users_polled} users, {result.users_failed} failed, "
            f"{result.total_sales_found} sales found"
        )
        return result

    async def poll_all_marketplaces(self) -> PollAllResult:
        """Poll each enabled, supported marketplace in turn. Never raises."""
        result = PollAllResult(success=True)
        try:
            profiles = [p for p in all_profiles() if p.polling.enabled and p.supports_polling]
            for index, profile in enumerate(profiles):
                if index:
                    await _sleep_ms(self.delays.between_marketplaces_ms)
                marketplace_result = await self.poll_marketplace(profile.marketplace)
                result.results[profile.marketplace.value] = marketplace_result
                result.total_sales_found += marketplace_result.total_sales_found
        except Exception as e:
            logger.error(f"Polling sweep failed: {e}", exc_info=True)
            result.success = False
            result.error = str(e)
        return result

    def get_polling_status(self) -> List[MarketplacePollingStatus]:
        statuses = []
        for profile in all_profiles():
            name = profile.marketplace.value
            state = self.circuit_breaker.get_state(polling_key(profile.marketplace)).state
            last = self._last_polled.get(name)
            next_poll = None
            if profile.polling.enabled and profile.supports_polling and last is not None:
                next_poll = to_iso(last + timedelta(minutes=profile.polling.interval_minutes))
            statuses.append(MarketplacePollingStatus(
                marketplace=name,
                enabled=profile.polling.enabled,
                supported=profile.supports_polling,
                interval_minutes=profile.polling.interval_minutes,
                circuit_state=getattr(state, "value", state),
                next_poll_at=next_poll,
            ))
        return statuses
