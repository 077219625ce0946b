"""
Purpose: Defines the canonical shape of a detected sale before it is stored.

SaleEventDraft is what every marketplace-specific webhook body or polled
listing snapshot is normalized into. Both detection paths produce the same
draft (and therefore the same event_hash) for the same real-world sale.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from pydantic import BaseModel

from salesync.core.enums import MarketplaceType
from salesync.core.utils import parse_datetime


class SaleEventDraft(BaseModel):
    marketplace_type: MarketplaceType
    event_type: str
    external_event_id: Optional[str] = None
    external_listing_id: Optional[str] = None
    external_transaction_id: Optional[str] = None
    sale_price: Optional[Decimal] = None
    sale_currency: str = "USD"
    sale_date: Optional[str] = None
    buyer_id: Optional[str] = None
    payment_status: Optional[str] = None
    raw_data: Dict[str, Any] = {}
    event_hash: str = ""

    @property
    def sale_datetime(self) -> Optional[datetime]:
        return parse_datetime(self.sale_date)
