# tests/conftest.py
import os

# Settings and the module-level engine are built at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["BASIC_AUTH_USERNAME"] = "admin"
os.environ["BASIC_AUTH_PASSWORD"] = "test-password"
os.environ["EBAY_WEBHOOK_SECRET"] = "ebay-test-secret"
os.environ["POSHMARK_WEBHOOK_SECRET"] = "poshmark-test-secret"
os.environ["FACEBOOK_WEBHOOK_SECRET"] = "facebook-test-secret"
os.environ["FACEBOOK_WEBHOOK_VERIFY_TOKEN"] = "facebook-verify-token"
os.environ["SCHEDULER_ENABLED"] = "false"

from datetime import timedelta
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from salesync.core.config import Settings, clear_settings_cache, get_settings
from salesync.core.enums import (
    ConnectionStatus,
    DelistingJobStatus,
    DelistingTriggerType,
    ListingStatus,
    MarketplaceType,
)
from salesync.core.security import sign_user_token
from salesync.core.utils import utc_now
from salesync.database import Base
from salesync.dependencies import get_db, get_sale_poller, get_session_factory
from salesync.main import app
from salesync.models import DelistingJob, Listing, MarketplaceConnection, UserDelistingPreferences
from salesync.routes.delisting import get_delisting_engine
from salesync.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from salesync.services.delisting_engine import DelistingEngine
from salesync.services.marketplace_registry import reset_registry
from salesync.services.sale_poller import PollingDelays, RetryPolicy, SalePoller
from tests.mocks.mock_marketplace import MockAdapterFactory

TEST_DATABASE_URL = "sqlite+aiosqlite://"

USER_ID = "11111111-1111-4111-8111-111111111111"
OTHER_USER_ID = "22222222-2222-4222-8222-222222222222"
ITEM_ID = "33333333-3333-4333-8333-333333333333"

OPERATOR_AUTH = ("admin", "test-password")


def user_headers(user_id: str = USER_ID) -> dict:
    return {"Authorization": f"Bearer {sign_user_token(user_id, os.environ['SECRET_KEY'])}"}


@pytest.fixture
def settings() -> Settings:
    """Provide test settings"""
    clear_settings_cache()
    return get_settings()


@pytest.fixture(autouse=True)
def _restore_registry():
    yield
    reset_registry()


@pytest.fixture(scope="function")
async def test_engine():
    """In-memory database shared by every session of one test"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Provide a database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def adapter_factory():
    return MockAdapterFactory()


@pytest.fixture
def circuit_breaker():
    return CircuitBreaker(CircuitBreakerConfig(failure_threshold=2, reset_timeout_ms=60000, half_open_max_attempts=1))


@pytest.fixture
def test_poller(session_factory, circuit_breaker, adapter_factory):
    return SalePoller(
        session_factory=session_factory,
        circuit_breaker=circuit_breaker,
        adapter_factory=adapter_factory,
        delays=PollingDelays(0, 0, 0, 0),
        retry_policy=RetryPolicy(max_attempts=1, initial_delay=0),
    )


@pytest.fixture
async def client(session_factory, adapter_factory, test_poller):
    """HTTP client against the app, wired to the test database and mock marketplaces"""
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_delisting_engine] = lambda: DelistingEngine(
        session_factory=session_factory, adapter_factory=adapter_factory
    )
    app.dependency_overrides[get_sale_poller] = lambda: test_poller

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# --- Row factories ---

@pytest.fixture
def create_listing(db_session):
    async def _create(marketplace=MarketplaceType.EBAY, **overrides):
        marketplace = MarketplaceType(marketplace)
        data = {
            "user_id": USER_ID,
            "inventory_item_id": ITEM_ID,
            "marketplace_type": marketplace.value,
            "external_listing_id": f"{marketplace.value}-ext-1",
            "status": ListingStatus.ACTIVE.value,
        }
        data.update(overrides)
        listing = Listing(**data)
        db_session.add(listing)
        await db_session.commit()
        return listing
    return _create


@pytest.fixture
def create_connection(db_session):
    async def _create(marketplace=MarketplaceType.EBAY, **overrides):
        data = {
            "user_id": USER_ID,
            "marketplace_type": MarketplaceType(marketplace).value,
            "status": ConnectionStatus.ACTIVE.value,
            "access_token": "test-token",
        }
        data.update(overrides)
        connection = MarketplaceConnection(**data)
        db_session.add(connection)
        await db_session.commit()
        return connection
    return _create


@pytest.fixture
def create_job(db_session):
    async def _create(targets=("ebay", "poshmark"), **overrides):
        data = {
            "user_id": USER_ID,
            "inventory_item_id": ITEM_ID,
            "trigger_type": DelistingTriggerType.SALE_DETECTED.value,
            "trigger_data": {},
            "status": DelistingJobStatus.PENDING.value,
            "sold_on_marketplace": MarketplaceType.MERCARI.value,
            "sale_price": Decimal("50.00"),
            "sale_external_id": "txn-1",
            "marketplaces_targeted": list(targets),
            "marketplaces_completed": [],
            "marketplaces_failed": [],
            "success_log": {},
            "error_log": {},
            "requires_user_confirmation": False,
            "scheduled_for": utc_now() - timedelta(seconds=1),
            "max_retries": 3,
        }
        data.update(overrides)
        job = DelistingJob(**data)
        db_session.add(job)
        await db_session.commit()
        return job
    return _create


@pytest.fixture
def create_preferences(db_session):
    async def _create(**overrides):
        data = {"user_id": USER_ID, "exclude_marketplaces": []}
        data.update(overrides)
        prefs = UserDelistingPreferences(**data)
        db_session.add(prefs)
        await db_session.commit()
        return prefs
    return _create
