"""
Facebook Marketplace adapter over the Graph API.
"""

import logging
from typing import Any, Dict

from salesync.core.enums import ListingStatus, MarketplaceType
from salesync.core.utils import utc_now, to_iso
from salesync.integrations.base import EndListingOptions, MarketplaceAdapter

logger = logging.getLogger(__name__)

LISTING_FIELDS = "id,name,price,currency,marketplace_listing_id,status,created_time,updated_time"


class FacebookMarketplaceAdapter(MarketplaceAdapter):
    marketplace = MarketplaceType.FACEBOOK_MARKETPLACE
    BASE_URL = "https://graph.facebook.com/v18.0"

    async def get_listing_by_id(self, external_id: str) -> Dict[str, Any]:
        data = await self._make_request("GET", external_id, params={"fields": LISTING_FIELDS})
        snapshot = dict(data)
        status = str(data.get("status", "")).lower()
        snapshot["id"] = external_id
        snapshot["status"] = ListingStatus.SOLD.value if status == "sold" else ListingStatus.ACTIVE.value
        if snapshot["status"] == ListingStatus.SOLD.value:
            snapshot["sale_price"] = data.get("price")
            snapshot["sale_date"] = data.get("updated_time")
        return snapshot

    async def end_listing(self, external_id: str, options: EndListingOptions) -> Dict[str, Any]:
        logger.info(f"Ending Facebook Marketplace listing {external_id}: {options.reason}")
        response = await self._make_request("DELETE", external_id)
        return {"ended_at": to_iso(utc_now()), **response}
