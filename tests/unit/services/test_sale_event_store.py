# tests/unit/services/test_sale_event_store.py
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from salesync.core.enums import DelistingJobStatus, MarketplaceType, SaleEventSource
from salesync.core.exceptions import SaleEventStoreError
from salesync.models import DelistingJob, SaleEvent
from salesync.services.delisting_scheduler import DelistingJobScheduler
from salesync.services.event_normalizer import normalize_webhook_payload
from salesync.services.sale_event_store import SaleEventStore
from salesync.services.sale_ingestion import ingest_sale_event
from tests.conftest import ITEM_ID, USER_ID


def ebay_draft(notification_id="notif-1", item_id="ebay-ext-1", price="99.99"):
    payload = {
        "notificationId": notification_id,
        "itemId": item_id,
        "transactionId": "txn-1",
        "currentPrice": {"amount": price, "currency": "USD"},
        "saleDate": "2026-01-15T10:30:00Z",
    }
    return normalize_webhook_payload(MarketplaceType.EBAY, payload).draft


async def count_events(db_session):
    return (await db_session.execute(select(func.count()).select_from(SaleEvent))).scalar_one()

"""
1. Recording and deduplication
"""

@pytest.mark.asyncio
async def test_record_event_inserts_new_event(db_session):
    """A new hash is stored with all normalized fields"""
    store = SaleEventStore(db_session)
    draft = ebay_draft()

    result = await store.record_event(draft, user_id=USER_ID, inventory_item_id=ITEM_ID)
    await db_session.commit()

    assert result.created is True
    assert result.duplicate is False
    event = await store.get(result.event_id)
    assert event.event_hash == draft.event_hash
    assert event.sale_price == Decimal("99.99")
    assert event.source == SaleEventSource.WEBHOOK.value
    assert event.raw_webhook_data == draft.raw_data
    assert event.raw_polling_data is None
    assert event.verified is True
    assert event.processed is False


@pytest.mark.asyncio
async def test_record_event_same_hash_is_duplicate(db_session):
    """Second signal for the same sale returns the first event's id and inserts nothing"""
    store = SaleEventStore(db_session)
    first = await store.record_event(ebay_draft(), user_id=USER_ID)
    await db_session.commit()

    second = await store.record_event(ebay_draft(), user_id=USER_ID, source=SaleEventSource.POLLING)

    assert second.duplicate is True
    assert second.created is False
    assert second.event_id == first.event_id
    assert await count_events(db_session) == 1


@pytest.mark.asyncio
async def test_record_event_polling_source_stores_raw_polling_data(db_session):
    store = SaleEventStore(db_session)
    result = await store.record_event(ebay_draft(), user_id=USER_ID, source=SaleEventSource.POLLING)

    event = await store.get(result.event_id)
    assert event.raw_polling_data is not None
    assert event.raw_webhook_data is None
    assert event.raw_data == event.raw_polling_data


@pytest.mark.asyncio
async def test_record_event_storage_failure_raises_store_error(db_session, mocker):
    store = SaleEventStore(db_session)
    mocker.patch.object(
        store, "get_by_hash",
        side_effect=OperationalError("SELECT", {}, Exception("database is locked")),
    )

    with pytest.raises(SaleEventStoreError) as exc_info:
        await store.record_event(ebay_draft(), user_id=USER_ID)

    assert exc_info.value.retryable is True

"""
2. Ingestion
"""

@pytest.mark.asyncio
async def test_ingest_creates_event_and_job(db_session, create_listing):
    await create_listing(MarketplaceType.EBAY, external_listing_id="ebay-ext-1")
    await create_listing(MarketplaceType.POSHMARK, external_listing_id="posh-1")

    result = await ingest_sale_event(db_session, ebay_draft(), user_id=USER_ID, inventory_item_id=ITEM_ID)

    assert result.success is True
    assert result.duplicate is False
    assert result.job_id is not None
    job = await db_session.get(DelistingJob, result.job_id)
    assert job.marketplaces_targeted == ["poshmark"]
    assert job.status == DelistingJobStatus.PENDING.value
    event = await db_session.get(SaleEvent, result.event_id)
    assert event.processed is True
    assert event.delisting_job_id == job.id


@pytest.mark.asyncio
async def test_ingest_duplicate_returns_existing_job(db_session, create_listing):
    """Webhook and poll of the same sale produce one event and one job"""
    await create_listing(MarketplaceType.EBAY, external_listing_id="ebay-ext-1")
    await create_listing(MarketplaceType.POSHMARK, external_listing_id="posh-1")

    first = await ingest_sale_event(db_session, ebay_draft(), user_id=USER_ID, inventory_item_id=ITEM_ID)
    second = await ingest_sale_event(
        db_session, ebay_draft(), user_id=USER_ID, inventory_item_id=ITEM_ID, source=SaleEventSource.POLLING
    )

    assert second.duplicate is True
    assert second.event_id == first.event_id
    assert second.job_id == first.job_id
    jobs = (await db_session.execute(select(func.count()).select_from(DelistingJob))).scalar_one()
    assert jobs == 1


@pytest.mark.asyncio
async def test_ingest_unverified_event_creates_no_job(db_session, create_listing):
    await create_listing(MarketplaceType.POSHMARK, external_listing_id="posh-1")

    result = await ingest_sale_event(
        db_session, ebay_draft(), user_id=USER_ID, inventory_item_id=ITEM_ID, verified=False
    )

    assert result.job_id is None
    event = await db_session.get(SaleEvent, result.event_id)
    assert event.processed is False


@pytest.mark.asyncio
async def test_ingest_keeps_event_when_job_derivation_fails(db_session, create_listing, mocker):
    await create_listing(MarketplaceType.POSHMARK, external_listing_id="posh-1")
    mocker.patch(
        "salesync.services.sale_ingestion.DelistingJobScheduler.create_job_for_sale_event",
        side_effect=RuntimeError("scheduler exploded"),
    )

    result = await ingest_sale_event(db_session, ebay_draft(), user_id=USER_ID, inventory_item_id=ITEM_ID)

    assert result.success is True
    assert result.job_id is None
    event = await db_session.get(SaleEvent, result.event_id)
    await db_session.refresh(event)
    assert event.processing_error == "scheduler exploded"
    assert event.processed is False


@pytest.mark.asyncio
async def test_redelivered_sale_derives_job_after_earlier_failure(db_session, create_listing, mocker):
    """A transient failure on first delivery is recovered by the next signal for the same sale"""
    await create_listing(MarketplaceType.EBAY, external_listing_id="ebay-ext-1")
    await create_listing(MarketplaceType.POSHMARK, external_listing_id="posh-1")
    original = DelistingJobScheduler.create_job_for_sale_event
    calls = []

    async def flaky_create_job(self, sale_event, requires_confirmation=None):
        calls.append(sale_event.id)
        if len(calls) == 1:
            raise RuntimeError("transient db blip")
        return await original(self, sale_event, requires_confirmation=requires_confirmation)

    mocker.patch.object(DelistingJobScheduler, "create_job_for_sale_event", flaky_create_job)

    first = await ingest_sale_event(db_session, ebay_draft(), user_id=USER_ID, inventory_item_id=ITEM_ID)
    second = await ingest_sale_event(db_session, ebay_draft(), user_id=USER_ID, inventory_item_id=ITEM_ID)

    assert first.job_id is None
    assert second.duplicate is True
    assert second.event_id == first.event_id
    assert second.job_id is not None
    jobs = (await db_session.execute(select(func.count()).select_from(DelistingJob))).scalar_one()
    assert jobs == 1
    event = await db_session.get(SaleEvent, first.event_id)
    await db_session.refresh(event)
    assert event.processed is True
    assert event.processing_error is None
    assert event.delisting_job_id == second.job_id
    assert event.verification_attempts == 2


@pytest.mark.asyncio
async def test_redelivery_stops_deriving_once_attempts_are_used_up(db_session, create_listing, settings, mocker):
    await create_listing(MarketplaceType.POSHMARK, external_listing_id="posh-1")
    create_job = mocker.patch(
        "salesync.services.sale_ingestion.DelistingJobScheduler.create_job_for_sale_event",
        side_effect=RuntimeError("still broken"),
    )

    first = await ingest_sale_event(db_session, ebay_draft(), user_id=USER_ID, inventory_item_id=ITEM_ID)
    for _ in range(settings.SALE_EVENT_MAX_PROCESSING_ATTEMPTS + 1):
        await ingest_sale_event(db_session, ebay_draft(), user_id=USER_ID, inventory_item_id=ITEM_ID)

    assert create_job.await_count == settings.SALE_EVENT_MAX_PROCESSING_ATTEMPTS
    event = await db_session.get(SaleEvent, first.event_id)
    await db_session.refresh(event)
    assert event.processed is False
    assert event.verification_attempts == settings.SALE_EVENT_MAX_PROCESSING_ATTEMPTS
    assert event.processing_error == "still broken"


@pytest.mark.asyncio
async def test_ingest_settles_event_that_needs_no_job(db_session, create_listing):
    """Nothing else is listed, so the event is processed without a job"""
    await create_listing(MarketplaceType.EBAY, external_listing_id="ebay-ext-1")

    result = await ingest_sale_event(db_session, ebay_draft(), user_id=USER_ID, inventory_item_id=ITEM_ID)

    assert result.job_id is None
    event = await db_session.get(SaleEvent, result.event_id)
    assert event.processed is True
    assert event.delisting_job_id is None
