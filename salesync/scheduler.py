"""
Scheduled tasks for salesync.

Runs inside the FastAPI process: the pending-job sweep, the retry sweep, the
unprocessed sale event sweep, and one polling job per marketplace that is
enabled and supported, each at that marketplace's polling interval. Services
are called directly.
"""

import logging
from datetime import datetime
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_ERROR

from salesync.core.config import get_settings
from salesync.dependencies import get_sale_poller
from salesync.services.marketplace_registry import all_profiles
from salesync.services.retry_manager import RetryManager
from salesync.services.sale_event_queue import SaleEventQueue

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


async def process_pending_delistings_task():
    """Task to run every due pending delisting job"""
    try:
        result = await RetryManager().process_pending_jobs()
        if result.jobs_processed or result.jobs_failed:
            logger.info(
                f"Scheduled pending sweep: {result.jobs_processed} processed, {result.jobs_failed} failed"
            )
    except Exception as e:
        logger.exception(f"Error in pending delisting task: {str(e)}")


async def retry_failed_delistings_task():
    """Task to retry failed and partially failed delisting jobs"""
    try:
        result = await RetryManager().retry_failed_delistings()
        if result.jobs_retried:
            logger.info(f"Scheduled retry sweep: {result.jobs_retried} retried, {result.jobs_skipped} skipped")
    except Exception as e:
        logger.exception(f"Error in retry delisting task: {str(e)}")


async def process_sale_events_task():
    """Task to derive delisting jobs for sale events left unprocessed"""
    try:
        result = await SaleEventQueue().process_unprocessed_sale_events()
        if result.events_processed or result.events_failed:
            logger.info(
                f"Scheduled sale event sweep: {result.events_processed} processed, {result.events_failed} failed"
            )
    except Exception as e:
        logger.exception(f"Error in sale event task: {str(e)}")


async def poll_marketplace_task(marketplace: str):
    """Task to poll one marketplace for sales"""
    try:
        result = await get_sale_poller().poll_marketplace(marketplace)
        if not result.success:
            logger.warning(f"Scheduled {marketplace} poll failed: {result.error}")
    except Exception as e:
        logger.exception(f"Error in {marketplace} polling task: {str(e)}")


def job_listener(event):
    """Listen to job events for logging"""
    if event.exception:
        logger.error(f"Job {event.job_id} crashed: {event.exception}")
    else:
        logger.debug(f"Job {event.job_id} executed successfully at {datetime.now()}")


def create_scheduler() -> AsyncIOScheduler:
    """Create and configure the scheduler"""
    global scheduler

    if scheduler is not None:
        return scheduler

    settings = get_settings()
    scheduler = AsyncIOScheduler()
    scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    scheduler.add_job(
        process_pending_delistings_task,
        IntervalTrigger(seconds=settings.PROCESS_PENDING_INTERVAL_SECONDS),
        id="process_pending_delistings",
        name="Process Pending Delistings",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        retry_failed_delistings_task,
        IntervalTrigger(seconds=settings.RETRY_FAILED_INTERVAL_SECONDS),
        id="retry_failed_delistings",
        name="Retry Failed Delistings",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        process_sale_events_task,
        IntervalTrigger(seconds=settings.PROCESS_SALE_EVENTS_INTERVAL_SECONDS),
        id="process_sale_events",
        name="Process Unprocessed Sale Events",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    if settings.POLLING_ENABLED:
        for profile in all_profiles():
            if not (profile.polling.enabled and profile.supports_polling):
                continue
            name = profile.marketplace.value
            scheduler.add_job(
                poll_marketplace_task,
                IntervalTrigger(minutes=profile.polling.interval_minutes),
                args=[name],
                id=f"poll_{name}",
                name=f"Poll {profile.marketplace.display_name}",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            logger.info(f"Polling job added for {name} every {profile.polling.interval_minutes} minutes")
    else:
        logger.info("Sale polling is disabled. Set POLLING_ENABLED=true to enable")

    return scheduler


async def start_scheduler():
    """Start the scheduler"""
    global scheduler

    if scheduler is None:
        scheduler = create_scheduler()

    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started successfully")

        jobs = scheduler.get_jobs()
        logger.info(f"Active scheduled jobs: {len(jobs)}")
        for job in jobs:
            logger.info(f"  - {job.name}: {job.trigger}")


async def stop_scheduler():
    """Stop the scheduler gracefully"""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Scheduler stopped successfully")
    scheduler = None


async def get_scheduler_status():
    """Get current scheduler status and job information"""
    global scheduler

    if scheduler is None:
        return {"status": "not_initialized", "jobs": []}

    jobs_info = []
    for job in scheduler.get_jobs():
        jobs_info.append({
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None,
            "trigger": str(job.trigger)
        })

    return {
        "status": "running" if scheduler.running else "stopped",
        "jobs": jobs_info
    }
