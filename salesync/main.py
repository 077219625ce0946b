# salesync/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from salesync.core.config import get_settings
from salesync.core.logging_config import configure_logging
from salesync.core.security import require_operator
from salesync.routes import delisting, health, polling, sale_events, webhooks
from salesync.scheduler import get_scheduler_status, start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    settings = get_settings()
    if settings.SCHEDULER_ENABLED:
        try:
            await start_scheduler()
        except Exception as e:
            logger.exception(f"Failed to start scheduler: {e}")
    else:
        logger.info("Scheduler disabled. Set SCHEDULER_ENABLED=true to enable")

    yield

    await stop_scheduler()


app = FastAPI(title="salesync", lifespan=lifespan)

app.include_router(health.router)
app.include_router(webhooks.router)
app.include_router(delisting.router)
app.include_router(polling.router)
app.include_router(sale_events.router)


@app.get("/api/scheduler/status", dependencies=[Depends(require_operator)])
async def scheduler_status():
    return await get_scheduler_status()
