"""
Scheduled tasks for the sync engine.
Runs inside the FastAPI process on the same event loop as the engine.
"""

import logging
from datetime import datetime
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from stockrelay.core.config import get_settings

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


async def purge_idempotency_records_task(engine):
    """Delete idempotency keys past their TTL"""
    try:
        purged = await engine.events.purge_expired()
        logger.info(f"Purged {purged} expired idempotency records")
    except Exception as e:
        logger.exception(f"Error purging idempotency records: {str(e)}")


async def restart_queue_task(engine):
    """Restart the flush loop if updates are waiting and it has stopped"""
    if engine.queue.start_if_idle():
        logger.info(f"Restarted inventory batch processor for {len(engine.queue)} pending updates")


def job_listener(event):
    """Listen to job events for logging"""
    if event.exception:
        logger.error(f"Job {event.job_id} crashed: {event.exception}")
    else:
        logger.debug(f"Job {event.job_id} executed successfully at {datetime.now()}")


def create_scheduler(engine) -> AsyncIOScheduler:
    """Create and configure the scheduler"""
    global scheduler

    if scheduler is not None:
        return scheduler

    settings = get_settings()
    scheduler = AsyncIOScheduler()
    scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    scheduler.add_job(
        purge_idempotency_records_task,
        IntervalTrigger(minutes=settings.IDEMPOTENCY_PURGE_INTERVAL_MINUTES),
        args=[engine],
        id="purge_idempotency_records",
        name="Purge Idempotency Records",
        replace_existing=True,
        max_instances=1
    )
    scheduler.add_job(
        restart_queue_task,
        IntervalTrigger(minutes=1),
        args=[engine],
        id="restart_propagation_queue",
        name="Restart Propagation Queue",
        replace_existing=True,
        max_instances=1
    )
    return scheduler


async def start_scheduler(engine):
    """Start the scheduler"""
    global scheduler

    if scheduler is None:
        scheduler = create_scheduler(engine)

    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started successfully")
        for job in scheduler.get_jobs():
            logger.info(f"  - {job.name}: {job.trigger}")


async def stop_scheduler():
    """Stop the scheduler gracefully"""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped successfully")
    scheduler = None


def get_scheduler_status():
    """Get current scheduler status and job information"""
    if scheduler is None:
        return {"status": "not_initialized", "jobs": []}

    jobs_info = []
    for job in scheduler.get_jobs():
        jobs_info.append({
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            "trigger": str(job.trigger)
        })

    return {
        "status": "running" if scheduler.running else "stopped",
        "jobs": jobs_info
    }
