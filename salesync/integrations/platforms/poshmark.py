"""
Poshmark adapter.

Poshmark has no dedicated end-listing call: the listing is deleted from the
closet, falling back to marking it unavailable when deletion is refused.
"""

import logging
from typing import Any, Dict

from salesync.core.enums import ListingStatus, MarketplaceType
from salesync.core.exceptions import MarketplaceAPIError
from salesync.core.utils import utc_now, to_iso
from salesync.integrations.base import EndListingOptions, MarketplaceAdapter

logger = logging.getLogger(__name__)


class PoshmarkAdapter(MarketplaceAdapter):
    marketplace = MarketplaceType.POSHMARK
    BASE_URL = "https://api.poshmark.com/api/v1"

    async def get_listing_by_id(self, external_id: str) -> Dict[str, Any]:
        data = await self._make_request("GET", f"closets/listings/{external_id}")
        snapshot = dict(data)
        status = str(data.get("status", "available")).lower()
        snapshot["id"] = external_id
        if status in ("sold", "sold_out"):
            snapshot["status"] = ListingStatus.SOLD.value
            snapshot["sale_price"] = data.get("sold_price", data.get("price"))
            snapshot["sale_date"] = data.get("sold_at")
        elif status in ("not_for_sale", "unavailable", "removed"):
            snapshot["status"] = ListingStatus.CANCELLED.value
        else:
            snapshot["status"] = ListingStatus.ACTIVE.value
        return snapshot

    async def end_listing(self, external_id: str, options: EndListingOptions) -> Dict[str, Any]:
        logger.info(f"Ending Poshmark listing {external_id}: {options.reason}")
        try:
            response = await self._make_request("DELETE", f"closets/listings/{external_id}")
        except MarketplaceAPIError as e:
            if e.status not in (400, 405, 409):
                raise
            logger.info(f"Poshmark refused deletion of {external_id}, marking it unavailable instead")
            response = await self._make_request(
                "PUT",
                f"closets/listings/{external_id}",
                data={"status": "unavailable", "notes": options.reason}
            )
        return {"ended_at": to_iso(utc_now()), **response}
