"""
Application Scheduler - APScheduler Integration

Runs periodic queue maintenance: delayed jobs whose backoff has elapsed are
promoted back to waiting, and active jobs whose lock expired are reclaimed.
"""

import logging
from typing import TYPE_CHECKING

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.config import settings

if TYPE_CHECKING:
    from app.queues.registry import QueueRegistry

logger = logging.getLogger(__name__)

MAINTENANCE_JOB_ID = "queue_maintenance"

# Global scheduler instance
scheduler = AsyncIOScheduler(
    timezone="UTC",
    job_defaults={
        "coalesce": True,  # Combine multiple missed executions into one
        "max_instances": 1,  # Only one instance of each job at a time
        "misfire_grace_time": 60,
    },
)


def scheduler_listener(event):
    """Log failed scheduler runs; successful maintenance runs stay at debug level."""
    if event.exception:
        logger.error(
            f"❌ Job '{event.job_id}' failed with exception: {event.exception}",
            exc_info=True,
        )
    else:
        logger.debug(f"Job '{event.job_id}' executed successfully")


scheduler.add_listener(scheduler_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)


async def run_queue_maintenance(registry: "QueueRegistry") -> dict:
    """Scheduled task: promote due delayed jobs and reclaim stalled ones."""
    summary = await registry.run_maintenance()
    promoted = sum(item["promoted"] for item in summary.values())
    stalled = sum(item["stalled"] for item in summary.values())
    if promoted or stalled:
        logger.info(f"🔁 Queue maintenance: promoted={promoted} stalled={stalled}")
    return summary


def setup_jobs(registry: "QueueRegistry") -> None:
    scheduler.add_job(
        run_queue_maintenance,
        trigger=IntervalTrigger(seconds=settings.QUEUE_MAINTENANCE_INTERVAL_SECONDS),
        args=[registry],
        id=MAINTENANCE_JOB_ID,
        name="Queue maintenance (delayed promotion, stalled reclaim)",
        replace_existing=True,
    )


def start_scheduler(registry: "QueueRegistry") -> None:
    """
    Start the scheduler with the maintenance job.

    Called during application or worker startup.
    """
    if not scheduler.running:
        setup_jobs(registry)
        scheduler.start()
        logger.info("🚀 Scheduler started successfully")
        for job in scheduler.get_jobs():
            logger.info(f"   • {job.name} (ID: {job.id}, trigger: {job.trigger})")
    else:
        logger.warning("⚠️  Scheduler already running")


def stop_scheduler() -> None:
    """Stop the scheduler. Called during shutdown."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("🛑 Scheduler stopped")
    else:
        logger.warning("⚠️  Scheduler not running")


def get_scheduler_status() -> dict:
    jobs = scheduler.get_jobs()
    return {
        "running": scheduler.running,
        "total_jobs": len(jobs),
        "jobs": [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger),
            }
            for job in jobs
        ],
    }
