# salesync/services/webhook_handler.py
"""
Sale detection by webhook.

handle_webhook authenticates a pushed notification with the marketplace's
HMAC-SHA256 secret, normalizes the body, matches it to the user's listing and
ingests it as a verified sale event. It returns (status_code, body) so the
route stays a thin wrapper.
"""

import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from salesync.core.config import Settings, get_settings
from salesync.core.enums import MarketplaceType, SaleEventSource
from salesync.core.exceptions import SaleEventStoreError
from salesync.models.listing import Listing
from salesync.services.event_normalizer import normalize_webhook_payload
from salesync.services.marketplace_registry import MarketplaceProfile, get_profile
from salesync.services.sale_ingestion import ingest_sale_event

logger = logging.getLogger(__name__)

WebhookResponse = Tuple[int, Dict[str, Any]]


def verify_signature(body: bytes, signature: Optional[str], secret: str, prefix: Optional[str] = None) -> bool:
    """Constant-time check of a hex HMAC-SHA256 signature of the raw body"""
    if not signature or not secret:
        return False
    signature = signature.strip()
    if prefix and signature.startswith(prefix):
        signature = signature[len(prefix):]
    try:
        provided = bytes.fromhex(signature)
    except ValueError:
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    return hmac.compare_digest(provided, expected)


class WebhookHandler:
    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    def _resolve(self, marketplace: str) -> Optional[MarketplaceProfile]:
        try:
            return get_profile(marketplace)
        except ValueError:
            return None

    def _secret_for(self, profile: MarketplaceProfile) -> str:
        return getattr(self.settings, profile.webhook.secret_setting, "") or ""

    async def _find_listing(self, marketplace: MarketplaceType, external_listing_id: Optional[str]) -> Optional[Listing]:
        if not external_listing_id:
            return None
        result = await self.db.execute(
            select(Listing)
            .where(
                Listing.marketplace_type == marketplace.value,
                Listing.external_listing_id == external_listing_id,
                Listing.deleted_at.is_(None),
            )
            .order_by(Listing.updated_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def handle_webhook(self, marketplace: str, body: bytes, headers: Mapping[str, str]) -> WebhookResponse:
        profile = self._resolve(marketplace)
        if profile is None:
            return 404, {"success": False, "error": f"Unknown marketplace: {marketplace}"}
        name = profile.marketplace.value

        if not profile.supports_webhooks:
            return 501, {
                "success": False,
                "error": profile.unsupported_reason or f"Webhooks not supported for marketplace: {name}",
            }

        secret = self._secret_for(profile)
        if not secret:
            logger.error(f"Webhook secret {profile.webhook.secret_setting} is not configured")
            return 501, {"success": False, "error": f"Webhook secret not configured for {name}"}

        signature = headers.get(profile.webhook.signature_header)
        if not signature:
            logger.warning(f"{name} webhook received without signature")
            return 401, {"success": False, "error": "No signature provided"}
        if not verify_signature(body, signature, secret, profile.webhook.signature_prefix):
            logger.warning(f"{name} webhook signature verification failed")
            return 401, {"success": False, "error": "Invalid signature"}

        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            return 400, {"success": False, "error": "Invalid JSON payload"}
        if not isinstance(payload, dict):
            return 400, {"success": False, "error": "Invalid JSON payload"}

        try:
            normalized = normalize_webhook_payload(profile.marketplace, payload)
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Malformed {name} webhook payload: {e}")
            return 400, {"success": False, "error": f"Malformed payload: {e}"}

        if not normalized.supported:
            return 501, {"success": False, "error": normalized.error}
        if not normalized.is_sale:
            return 200, {"success": True, "message": "Webhook acknowledged, not a sale event"}

        draft = normalized.draft
        listing = await self._find_listing(profile.marketplace, draft.external_listing_id)
        if listing is None:
            logger.warning(f"{name} sale webhook for unknown listing {draft.external_listing_id}")
            return 404, {"success": False, "error": f"Listing not found: {draft.external_listing_id}"}

        try:
            result = await ingest_sale_event(
                self.db,
                draft,
                user_id=listing.user_id,
                inventory_item_id=listing.inventory_item_id,
                listing_id=listing.id,
                verified=True,
                source=SaleEventSource.WEBHOOK,
            )
        except SaleEventStoreError as e:
            logger.error(f"Failed to store {name} sale webhook: {e}")
            return 500, {"success": False, "error": "Failed to store sale event"}

        logger.info(
            f"Processed {name} sale webhook for listing {draft.external_listing_id} "
            f"(event {result.event_id}, job {result.job_id}, duplicate={result.duplicate})"
        )
        return 200, {
            "success": True,
            "event_id": result.event_id,
            "job_id": result.job_id,
            "duplicate": result.duplicate,
        }

    def validate_webhook(self, marketplace: str, params: Mapping[str, str]) -> Tuple[int, Any]:
        """
        Subscription handshake (GET). Facebook echoes hub.challenge when the
        verify token matches; other marketplaces just report webhook status.
        """
        profile = self._resolve(marketplace)
        if profile is None:
            return 404, {"success": False, "error": f"Unknown marketplace: {marketplace}"}

        if profile.marketplace == MarketplaceType.FACEBOOK_MARKETPLACE and params.get("hub.mode") == "subscribe":
            verify_token = self.settings.FACEBOOK_WEBHOOK_VERIFY_TOKEN
            if not verify_token:
                return 501, {"success": False, "error": "Webhook verify token not configured"}
            provided = params.get("hub.verify_token") or ""
            if not hmac.compare_digest(provided.encode(), verify_token.encode()):
                return 403, {"success": False, "error": "Verification token mismatch"}
            return 200, params.get("hub.challenge", "")

        return 200, {
            "success": True,
            "marketplace": profile.marketplace.value,
            "webhooks_supported": profile.supports_webhooks,
        }
