"""SAQ queue configuration for background tasks."""

from saq import CronJob, Queue

from taskbridge.config import settings

# Main task queue
queue = Queue.from_url(settings.redis_url)

# Batch sync walks every linked list; give it room
SYNC_TIMEOUT_SECONDS = 15 * 60
PROCESS_TIMEOUT_SECONDS = 5 * 60


def get_queue_settings() -> dict:
    """Get SAQ queue settings for the worker."""
    # Import here to avoid circular imports
    from taskbridge.tasks.sync import sync_event_tasks
    from taskbridge.tasks.workflows import process_queued_workflows, sweep_queued_runs

    return {
        "queue": queue,
        "functions": [
            process_queued_workflows,
            sweep_queued_runs,
            sync_event_tasks,
        ],
        "cron_jobs": [
            CronJob(sweep_queued_runs, cron=settings.sweep_cron, timeout=PROCESS_TIMEOUT_SECONDS),
            CronJob(sync_event_tasks, cron=settings.sync_cron, timeout=SYNC_TIMEOUT_SECONDS),
        ],
        "concurrency": 2,
        "startup": startup,
        "shutdown": shutdown,
    }


async def startup(_ctx: dict) -> None:
    """Called when worker starts."""
    pass


async def shutdown(_ctx: dict) -> None:
    """Called when worker shuts down."""
    from taskbridge.database import close_db

    await close_db()
