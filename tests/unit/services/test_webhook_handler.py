# tests/unit/services/test_webhook_handler.py
import hashlib
import hmac
import json

import pytest
from sqlalchemy import select

from salesync.core.enums import MarketplaceType
from salesync.core.exceptions import SaleEventStoreError
from salesync.models import DelistingJob, SaleEvent
from salesync.services.webhook_handler import WebhookHandler, verify_signature

EBAY_SECRET = "ebay-test-secret"


def sign(body: bytes, secret: str = EBAY_SECRET, prefix: str = "sha256=") -> str:
    return prefix + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def ebay_body(item_id="ebay-ext-1", **extra) -> bytes:
    payload = {
        "notificationId": "notif-1",
        "itemId": item_id,
        "transactionId": "txn-1",
        "currentPrice": {"amount": "99.99", "currency": "USD"},
        "saleDate": "2026-01-15T10:30:00Z",
    }
    payload.update(extra)
    return json.dumps(payload).encode()


@pytest.fixture
def handler(db_session, settings):
    return WebhookHandler(db_session, settings)


@pytest.fixture
async def ebay_item(create_listing):
    """Item listed on ebay and poshmark"""
    listing = await create_listing(MarketplaceType.EBAY)
    await create_listing(MarketplaceType.POSHMARK)
    return listing

"""
1. Signature verification
"""

def test_verify_signature_accepts_valid_hex_digest():
    body = b'{"a": 1}'
    assert verify_signature(body, sign(body), EBAY_SECRET, "sha256=") is True
    assert verify_signature(body, sign(body, prefix=""), EBAY_SECRET) is True


def test_verify_signature_rejects_bad_input():
    body = b'{"a": 1}'
    assert verify_signature(body, sign(body, secret="other"), EBAY_SECRET, "sha256=") is False
    assert verify_signature(body, "sha256=not-hex", EBAY_SECRET, "sha256=") is False
    assert verify_signature(body, None, EBAY_SECRET) is False
    assert verify_signature(body, sign(body), "", "sha256=") is False
    assert verify_signature(b'{"a": 2}', sign(body), EBAY_SECRET, "sha256=") is False

"""
2. Request handling
"""

@pytest.mark.asyncio
async def test_valid_sale_webhook_records_event_and_job(handler, ebay_item, db_session):
    body = ebay_body()

    status, content = await handler.handle_webhook("ebay", body, {"x-ebay-signature": sign(body)})

    assert status == 200
    assert content["success"] is True
    assert content["duplicate"] is False
    assert content["job_id"] is not None

    event = await db_session.get(SaleEvent, content["event_id"])
    assert event.listing_id == ebay_item.id
    assert event.raw_webhook_data["itemId"] == "ebay-ext-1"
    job = await db_session.get(DelistingJob, content["job_id"])
    assert job.marketplaces_targeted == ["poshmark"]


@pytest.mark.asyncio
async def test_redelivered_webhook_is_duplicate(handler, ebay_item, db_session):
    body = ebay_body()
    headers = {"x-ebay-signature": sign(body)}

    _, first = await handler.handle_webhook("ebay", body, headers)
    status, second = await handler.handle_webhook("ebay", body, headers)

    assert status == 200
    assert second["duplicate"] is True
    assert second["event_id"] == first["event_id"]
    assert second["job_id"] == first["job_id"]
    events = (await db_session.execute(select(SaleEvent))).scalars().all()
    assert len(events) == 1


@pytest.mark.asyncio
async def test_unknown_marketplace(handler):
    status, content = await handler.handle_webhook("nowhere", b"{}", {})
    assert status == 404


@pytest.mark.asyncio
async def test_marketplace_without_webhooks(handler):
    status, content = await handler.handle_webhook("mercari", b"{}", {})
    assert status == 501
    assert "mercari" in content["error"]


@pytest.mark.asyncio
async def test_missing_secret(db_session, settings):
    handler = WebhookHandler(db_session, settings.model_copy(update={"EBAY_WEBHOOK_SECRET": ""}))
    body = ebay_body()

    status, content = await handler.handle_webhook("ebay", body, {"x-ebay-signature": sign(body)})

    assert status == 501
    assert content["error"] == "Webhook secret not configured for ebay"


@pytest.mark.asyncio
async def test_signature_required_and_checked(handler):
    body = ebay_body()

    status, content = await handler.handle_webhook("ebay", body, {})
    assert (status, content["error"]) == (401, "No signature provided")

    status, content = await handler.handle_webhook("ebay", body, {"x-ebay-signature": sign(b"other body")})
    assert (status, content["error"]) == (401, "Invalid signature")


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [b"not json", b"[1, 2, 3]"])
async def test_invalid_json(handler, body):
    status, content = await handler.handle_webhook("ebay", body, {"x-ebay-signature": sign(body)})
    assert status == 400
    assert content["error"] == "Invalid JSON payload"


@pytest.mark.asyncio
async def test_malformed_payload(handler):
    body = json.dumps({"event_id": "e", "data": "oops"}).encode()
    signature = sign(body, secret="poshmark-test-secret")

    status, content = await handler.handle_webhook("poshmark", body, {"x-poshmark-signature": signature})

    assert status == 400
    assert content["error"].startswith("Malformed payload")


@pytest.mark.asyncio
async def test_non_sale_notification_is_acknowledged(handler, db_session):
    body = json.dumps({"entry": [{"id": "p", "time": 1, "changes": [{"field": "feed", "value": {}}]}]}).encode()
    signature = sign(body, secret="facebook-test-secret")

    status, content = await handler.handle_webhook(
        "facebook_marketplace", body, {"x-hub-signature-256": signature}
    )

    assert status == 200
    assert content == {"success": True, "message": "Webhook acknowledged, not a sale event"}
    assert (await db_session.execute(select(SaleEvent))).first() is None


@pytest.mark.asyncio
async def test_sale_for_unknown_listing(handler):
    body = ebay_body(item_id="never-listed")

    status, content = await handler.handle_webhook("ebay", body, {"x-ebay-signature": sign(body)})

    assert status == 404
    assert content["error"] == "Listing not found: never-listed"


@pytest.mark.asyncio
async def test_store_failure_returns_500(handler, ebay_item, mocker):
    mocker.patch(
        "salesync.services.webhook_handler.ingest_sale_event",
        side_effect=SaleEventStoreError("database is locked"),
    )
    body = ebay_body()

    status, content = await handler.handle_webhook("ebay", body, {"x-ebay-signature": sign(body)})

    assert status == 500
    assert content["error"] == "Failed to store sale event"

"""
3. Subscription handshake
"""

def test_facebook_handshake_echoes_challenge(handler):
    params = {"hub.mode": "subscribe", "hub.verify_token": "facebook-verify-token", "hub.challenge": "12345"}

    assert handler.validate_webhook("facebook_marketplace", params) == (200, "12345")


def test_facebook_handshake_rejects_wrong_token(handler):
    params = {"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "12345"}

    status, _ = handler.validate_webhook("facebook_marketplace", params)

    assert status == 403


def test_facebook_handshake_without_configured_token(db_session, settings):
    handler = WebhookHandler(db_session, settings.model_copy(update={"FACEBOOK_WEBHOOK_VERIFY_TOKEN": ""}))

    status, _ = handler.validate_webhook("facebook_marketplace", {"hub.mode": "subscribe"})

    assert status == 501


def test_validate_reports_webhook_support(handler):
    assert handler.validate_webhook("ebay", {}) == (
        200, {"success": True, "marketplace": "ebay", "webhooks_supported": True}
    )
    assert handler.validate_webhook("depop", {})[1]["webhooks_supported"] is False
    assert handler.validate_webhook("nowhere", {})[0] == 404
