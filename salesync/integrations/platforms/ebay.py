"""
eBay adapter over the Sell Inventory API.

Listings are tracked by offer id; ending a listing withdraws the offer.
"""

import logging
from typing import Any, Dict

from salesync.core.enums import ListingStatus, MarketplaceType
from salesync.core.utils import utc_now, to_iso
from salesync.integrations.base import EndListingOptions, MarketplaceAdapter

logger = logging.getLogger(__name__)

EBAY_LISTING_STATUS = {
    "ACTIVE": ListingStatus.ACTIVE.value,
    "OUT_OF_STOCK": ListingStatus.SOLD.value,
    "SOLD": ListingStatus.SOLD.value,
    "ENDED": ListingStatus.CANCELLED.value,
    "INACTIVE": ListingStatus.CANCELLED.value,
}


class EbayAdapter(MarketplaceAdapter):
    marketplace = MarketplaceType.EBAY
    BASE_URL = "https://api.ebay.com"

    async def get_listing_by_id(self, external_id: str) -> Dict[str, Any]:
        data = await self._make_request("GET", f"sell/inventory/v1/offer/{external_id}")
        listing = data.get("listing") or {}
        price = (data.get("pricingSummary") or {}).get("price") or {}
        snapshot = dict(data)
        snapshot.update({
            "id": external_id,
            "status": EBAY_LISTING_STATUS.get(listing.get("listingStatus", ""), ListingStatus.ACTIVE.value),
            "price": price.get("value"),
            "currency": price.get("currency", "USD"),
        })
        if snapshot["status"] == ListingStatus.SOLD.value:
            snapshot["sale_price"] = price.get("value")
            snapshot["sale_date"] = listing.get("soldDate")
        return snapshot

    async def end_listing(self, external_id: str, options: EndListingOptions) -> Dict[str, Any]:
        logger.info(f"Ending eBay listing {external_id}: {options.reason}")
        response = await self._make_request("POST", f"sell/inventory/v1/offer/{external_id}/withdraw")
        return {"ended_at": to_iso(utc_now()), "listing_id": response.get("listingId", external_id), **response}
