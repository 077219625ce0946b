from functools import lru_cache
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession

from salesync.database import async_session
from salesync.services.sale_poller import SalePoller

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()

def get_session_factory():
    """Dependency for services that open their own sessions (engine, poller)."""
    return async_session

@lru_cache()
def get_sale_poller() -> SalePoller:
    """Process-wide poller, shared by the scheduler and the polling routes so last-poll times agree."""
    return SalePoller(session_factory=async_session)
