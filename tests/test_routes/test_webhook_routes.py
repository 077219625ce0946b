# tests/test_routes/test_webhook_routes.py
import hashlib
import hmac
import json

import pytest

from salesync.core.enums import MarketplaceType


def signed(payload: dict, secret: str = "ebay-test-secret"):
    body = json.dumps(payload).encode()
    signature = "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return body, signature


EBAY_SALE = {
    "notificationId": "notif-42",
    "itemId": "ebay-ext-1",
    "transactionId": "txn-42",
    "currentPrice": {"amount": "250.00", "currency": "USD"},
    "saleDate": "2026-03-01T12:00:00Z",
}


@pytest.mark.asyncio
async def test_signed_ebay_sale_is_ingested(client, create_listing):
    await create_listing(MarketplaceType.EBAY)
    await create_listing(MarketplaceType.POSHMARK)
    body, signature = signed(EBAY_SALE)

    response = await client.post(
        "/webhooks/ebay",
        content=body,
        headers={"Content-Type": "application/json", "X-EBAY-SIGNATURE": signature},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["duplicate"] is False
    assert data["job_id"] is not None


@pytest.mark.asyncio
async def test_unsigned_webhook_is_rejected(client):
    response = await client.post("/webhooks/ebay", content=json.dumps(EBAY_SALE).encode())

    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "No signature provided"}


@pytest.mark.asyncio
async def test_webhook_for_unsupported_marketplace(client):
    response = await client.post("/webhooks/depop", content=b"{}")
    assert response.status_code == 501


@pytest.mark.asyncio
async def test_webhook_for_unknown_marketplace(client):
    response = await client.post("/webhooks/nowhere", content=b"{}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_facebook_subscription_handshake(client):
    response = await client.get(
        "/webhooks/facebook_marketplace",
        params={"hub.mode": "subscribe", "hub.verify_token": "facebook-verify-token", "hub.challenge": "98765"},
    )

    assert response.status_code == 200
    assert response.text == "98765"


@pytest.mark.asyncio
async def test_facebook_handshake_with_wrong_token(client):
    response = await client.get(
        "/webhooks/facebook_marketplace",
        params={"hub.mode": "subscribe", "hub.verify_token": "guess", "hub.challenge": "98765"},
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_webhook_status_check(client):
    response = await client.get("/webhooks/poshmark")

    assert response.status_code == 200
    assert response.json() == {"success": True, "marketplace": "poshmark", "webhooks_supported": True}
