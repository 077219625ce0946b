# salesync/routes/polling.py
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from salesync.core.enums import MarketplaceType
from salesync.core.security import Caller, get_caller, require_operator
from salesync.dependencies import get_sale_poller
from salesync.schemas.polling import MarketplacePollingStatus, MarketplacePollResult, PollAllResult
from salesync.services.sale_poller import SalePoller

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/polling", tags=["polling"])


@router.post("/run")
async def run_polling(
    marketplace: Optional[str] = Query(None),
    _: Caller = Depends(require_operator),
    poller: SalePoller = Depends(get_sale_poller),
):
    """Poll one marketplace, or all enabled ones when none is given"""
    if marketplace is None:
        result: PollAllResult = await poller.poll_all_marketplaces()
        return result

    try:
        MarketplaceType(marketplace)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown marketplace: {marketplace}")
    result: MarketplacePollResult = await poller.poll_marketplace(marketplace)
    return result


@router.get("/status", response_model=List[MarketplacePollingStatus])
async def polling_status(
    _: Caller = Depends(get_caller),
    poller: SalePoller = Depends(get_sale_poller),
):
    return poller.get_polling_status()
