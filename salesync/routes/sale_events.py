# salesync/routes/sale_events.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import async_sessionmaker

from salesync.core.security import Caller, require_operator
from salesync.dependencies import get_session_factory
from salesync.schemas.sale_event import SaleEventQueueRunResult, SaleEventQueueStats
from salesync.services.sale_event_queue import SaleEventQueue

router = APIRouter(prefix="/api/sale-events", tags=["sale-events"])


def get_sale_event_queue(session_factory: async_sessionmaker = Depends(get_session_factory)) -> SaleEventQueue:
    return SaleEventQueue(session_factory=session_factory)


@router.post("/process", response_model=SaleEventQueueRunResult)
async def process_sale_events(
    limit: int = Query(50, ge=1, le=500),
    _: Caller = Depends(require_operator),
    queue: SaleEventQueue = Depends(get_sale_event_queue),
):
    """Derive delisting jobs for sale events left unprocessed"""
    return await queue.process_unprocessed_sale_events(limit=limit)


@router.get("/queue", response_model=SaleEventQueueStats)
async def sale_event_queue_stats(
    _: Caller = Depends(require_operator),
    queue: SaleEventQueue = Depends(get_sale_event_queue),
):
    return await queue.get_queue_stats()
