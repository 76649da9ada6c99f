# ===== counselbook/tasks/maintenance_tasks.py =====
import logging

from redis.exceptions import RedisError

from counselbook.config.celery_config import celery_app
from counselbook.config.database import SessionLocal
from counselbook.config.redis import RedisKeys, get_redis
from counselbook.config.settings import get_settings
from counselbook.services.appointment.reaper import expire_stale_pending_appointments

logger = logging.getLogger(__name__)
settings = get_settings()


@celery_app.task
def expire_pending_appointments():
    """
    Beat task: release abandoned public bookings.

    Only one worker reaps at a time; a run that finds the lock taken exits
    immediately and the next beat tick tries again.
    """
    try:
        lock = get_redis().lock(
            RedisKeys.REAPER_LOCK,
            timeout=settings.REAPER_LOCK_TIMEOUT_SECONDS,
            blocking=False,
        )
        acquired = lock.acquire()
    except RedisError as e:
        logger.error(f"Reaper could not reach Redis, skipping run: {e}")
        return {"status": "skipped", "reason": "redis_unavailable"}

    if not acquired:
        logger.info("Reaper already running on another worker, skipping")
        return {"status": "skipped", "reason": "locked"}

    db = SessionLocal()
    try:
        cancelled = expire_stale_pending_appointments(db)
        return {"status": "success", "cancelled": cancelled}
    finally:
        db.close()
        try:
            lock.release()
        except RedisError as e:
            # Lock expires on its own after REAPER_LOCK_TIMEOUT_SECONDS
            logger.warning(f"Failed to release reaper lock: {e}")
