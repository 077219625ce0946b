# tests/unit/services/test_sale_event_queue.py
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from salesync.core.enums import AuditAction, MarketplaceType
from salesync.models import DelistingAuditLog, DelistingJob, SaleEvent
from salesync.services.delisting_scheduler import DelistingJobScheduler
from salesync.services.sale_event_queue import SaleEventQueue
from tests.conftest import ITEM_ID, USER_ID

DERIVE = "salesync.services.sale_ingestion.DelistingJobScheduler.create_job_for_sale_event"


@pytest.fixture
def queue(session_factory, settings):
    return SaleEventQueue(session_factory=session_factory, settings=settings)


@pytest.fixture
def create_sale_event(db_session):
    """An ebay sale whose job derivation failed once on ingestion"""
    counter = {"n": 0}

    async def _create(**overrides):
        counter["n"] += 1
        data = {
            "user_id": USER_ID,
            "inventory_item_id": ITEM_ID,
            "marketplace_type": MarketplaceType.EBAY.value,
            "source": "webhook",
            "event_type": "item.sold",
            "external_event_id": f"notif-{counter['n']}",
            "external_listing_id": "ebay-ext-1",
            "sale_price": Decimal("80.00"),
            "sale_currency": "USD",
            "event_hash": f"{counter['n']:064d}",
            "verified": True,
            "verification_attempts": 1,
            "processed": False,
            "processing_error": "connection reset",
        }
        data.update(overrides)
        event = SaleEvent(**data)
        db_session.add(event)
        await db_session.commit()
        return event
    return _create


@pytest.fixture
async def crosslisted(create_listing):
    await create_listing(MarketplaceType.EBAY, external_listing_id="ebay-ext-1")
    await create_listing(MarketplaceType.POSHMARK, external_listing_id="posh-1")

"""
1. Sweep
"""

@pytest.mark.asyncio
async def test_sweep_derives_job_for_stranded_event(queue, db_session, crosslisted, create_sale_event):
    event = await create_sale_event()

    result = await queue.process_unprocessed_sale_events()

    assert result.success is True
    assert result.events_processed == 1
    assert result.jobs_created == 1
    assert result.events_failed == 0
    await db_session.refresh(event)
    assert event.processed is True
    assert event.processing_error is None
    assert event.verification_attempts == 2
    job = await db_session.get(DelistingJob, event.delisting_job_id)
    assert job.marketplaces_targeted == ["poshmark"]

    entry = (await db_session.execute(
        select(DelistingAuditLog).where(DelistingAuditLog.action == AuditAction.SALE_EVENT_PROCESSED.value)
    )).scalar_one()
    assert entry.delisting_job_id == job.id
    assert entry.context_data["sale_event_id"] == event.id


@pytest.mark.asyncio
async def test_sweep_settles_event_without_targets(queue, db_session, create_listing, create_sale_event):
    await create_listing(MarketplaceType.EBAY, external_listing_id="ebay-ext-1")
    event = await create_sale_event()

    result = await queue.process_unprocessed_sale_events()

    assert result.events_processed == 1
    assert result.jobs_created == 0
    await db_session.refresh(event)
    assert event.processed is True
    assert event.delisting_job_id is None


@pytest.mark.asyncio
async def test_sweep_stops_after_max_attempts(queue, db_session, settings, crosslisted, create_sale_event, mocker):
    derive = mocker.patch(DERIVE, side_effect=RuntimeError("deadlock detected"))
    event = await create_sale_event()

    runs = [await queue.process_unprocessed_sale_events() for _ in range(settings.SALE_EVENT_MAX_PROCESSING_ATTEMPTS)]

    assert [run.events_failed for run in runs] == [1, 1, 0]
    assert runs[0].errors == [f"{event.id}: deadlock detected"]
    assert derive.await_count == settings.SALE_EVENT_MAX_PROCESSING_ATTEMPTS - 1
    await db_session.refresh(event)
    assert event.processed is False
    assert event.verification_attempts == settings.SALE_EVENT_MAX_PROCESSING_ATTEMPTS
    assert event.processing_error == "deadlock detected"


@pytest.mark.asyncio
async def test_one_failing_event_does_not_stop_the_others(queue, db_session, crosslisted, create_sale_event, mocker):
    bad = await create_sale_event()
    good = await create_sale_event()

    original = DelistingJobScheduler.create_job_for_sale_event

    async def derive(self, sale_event, requires_confirmation=None):
        if sale_event.id == bad.id:
            raise RuntimeError("lock timeout")
        return await original(self, sale_event, requires_confirmation=requires_confirmation)

    mocker.patch.object(DelistingJobScheduler, "create_job_for_sale_event", derive)

    result = await queue.process_unprocessed_sale_events()

    assert result.events_processed == 1
    assert result.events_failed == 1
    assert result.errors == [f"{bad.id}: lock timeout"]
    await db_session.refresh(good)
    assert good.processed is True
    assert good.delisting_job_id is not None


@pytest.mark.asyncio
async def test_sweep_selects_only_eligible_events(queue, crosslisted, create_sale_event, mocker):
    derive = mocker.patch(DERIVE, return_value=None)
    eligible = await create_sale_event()
    await create_sale_event(verified=False, verification_attempts=0)
    await create_sale_event(processed=True, processing_error=None)
    await create_sale_event(inventory_item_id=None)
    await create_sale_event(verification_attempts=3)

    ids = await queue.get_unprocessed_event_ids()
    result = await queue.process_unprocessed_sale_events()

    assert ids == [eligible.id]
    assert result.events_processed == 1
    assert derive.await_count == 1


@pytest.mark.asyncio
async def test_sweep_with_nothing_to_do(queue):
    result = await queue.process_unprocessed_sale_events()

    assert result.success is True
    assert result.events_processed == 0
    assert result.errors == []

"""
2. Stats
"""

@pytest.mark.asyncio
async def test_queue_stats(queue, db_session, create_sale_event):
    await create_sale_event()
    await create_sale_event(verification_attempts=3)
    await create_sale_event(processed=True, processing_error=None)
    await create_sale_event(verified=False, verification_attempts=0, processing_error=None)

    stats = await queue.get_queue_stats()

    assert stats.unprocessed_events == 3
    assert stats.processing_errors == 2
    assert stats.exhausted_events == 1
    total = (await db_session.execute(select(func.count()).select_from(SaleEvent))).scalar_one()
    assert total == 4
