import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.jobstores.memory import MemoryJobStore

from app.core.clock import SystemClock
from app.core.config import settings

logger = logging.getLogger(__name__)

CLEANUP_JOB_ID = "ratelimit_cleanup"

scheduler = BackgroundScheduler(
    jobstores={"default": MemoryJobStore()},
    job_defaults={"coalesce": True, "max_instances": 1},
)


def run_rate_limit_cleanup() -> int:
    """Sweep expired login attempts and blocks in a session of its own."""
    from app.core.database import SessionLocal
    from app.services.rate_limit_service import RateLimitService, SqlRateLimitStore

    db = SessionLocal()
    try:
        service = RateLimitService.from_settings(settings, SqlRateLimitStore(db), SystemClock())
        return service.cleanup()
    except Exception as e:
        # Expired rows are ignored on read; a missed sweep only delays reclaiming storage
        logger.error(f"Rate limit cleanup failed: {e}")
        return 0
    finally:
        db.close()


def start_scheduler():
    """Start the scheduler with the periodic rate limit cleanup job."""
    interval = settings.RATE_LIMIT_CLEANUP_INTERVAL_MINUTES
    if interval <= 0:
        logger.info("Rate limit cleanup job disabled")
        return

    scheduler.add_job(
        run_rate_limit_cleanup,
        trigger="interval",
        minutes=interval,
        id=CLEANUP_JOB_ID,
        replace_existing=True,
    )
    scheduler.start()
    logger.info(f"APScheduler started, rate limit cleanup every {interval} minute(s)")


def shutdown_scheduler():
    """Gracefully shut down the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("APScheduler shut down")
