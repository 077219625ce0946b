from typing import Dict, List, Optional

from pydantic import BaseModel


class UserPollResult(BaseModel):
    success: bool
    user_id: str
    listings_checked: int = 0
    listings_failed: int = 0
    sales_found: int = 0
    errors: List[str] = []
    error: Optional[str] = None


class MarketplacePollResult(BaseModel):
    marketplace: str
    success: bool
    supported: bool = True
    message: Optional[str] = None
    users_polled: int = 0
    users_failed: int = 0
    total_sales_found: int = 0
    error: Optional[str] = None


class PollAllResult(BaseModel):
    success: bool
    results: Dict[str, MarketplacePollResult] = {}
    total_sales_found: int = 0
    error: Optional[str] = None


class MarketplacePollingStatus(BaseModel):
    marketplace: str
    enabled: bool
    supported: bool
    interval_minutes: int
    circuit_state: str
    next_poll_at: Optional[str] = None
