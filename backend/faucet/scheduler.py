"""Background sweep of expired challenge sessions (sql session backend only).

Expired rows are already invisible to reads and claims; the sweep only keeps
the table small. Redis expires keys natively and needs no job.
"""

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from faucet.config import settings
from faucet.logging_config import get_logger
from faucet.services.discord_service import send_error_alert_sync
from faucet.services.session_store import SessionStoreError, SqlSessionStore

logger = get_logger("scheduler")

scheduler: BackgroundScheduler | None = None


def cleanup_job(store: SqlSessionStore) -> None:
    """Purge expired challenge sessions."""
    try:
        purged = store.purge_expired()
        if purged:
            logger.info("expired_sessions_purged", count=purged)
    except SessionStoreError as e:
        logger.error("cleanup_failed", error=str(e))
        send_error_alert_sync(
            error_type="Scheduler Job Failed",
            message=str(e),
            context={"job_name": "purge_expired_sessions"},
        )


def start_scheduler(store: SqlSessionStore) -> None:
    """Start the background scheduler."""
    global scheduler
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        cleanup_job,
        trigger=IntervalTrigger(minutes=settings.cleanup_interval_minutes),
        args=[store],
        id="purge_expired_sessions",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("scheduler_started", interval_minutes=settings.cleanup_interval_minutes)


def shutdown_scheduler() -> None:
    """Shutdown the scheduler if it was started."""
    global scheduler
    if scheduler is None:
        return
    scheduler.shutdown()
    scheduler = None
    logger.info("scheduler_stopped")
