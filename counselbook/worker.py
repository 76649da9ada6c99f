"""
Celery worker entry point
Runs appointment side effects and the pending-appointment reaper
"""
import logging
from celery.signals import worker_ready, worker_shutdown

from counselbook.config.celery_config import celery_app
from counselbook.utils.my_logging import setup_logging

# Setup logging first
setup_logging()
logger = logging.getLogger(__name__)


@worker_ready.connect
def worker_ready_handler(sender=None, **kwargs):
    """Handle worker startup"""
    logger.info("Celery worker ready")
    logger.info(f"Registered tasks: {sorted(name for name in celery_app.tasks.keys() if name.startswith('counselbook.'))}")


@worker_shutdown.connect
def worker_shutdown_handler(sender=None, **kwargs):
    """Handle worker shutdown"""
    logger.info("Celery worker shutting down")


if __name__ == "__main__":
    # Run worker with an embedded beat scheduler for the reaper
    celery_app.start([
        'worker',
        '--beat',
        '--loglevel=info',
        '--concurrency=4',
        '--queues=appointments,maintenance',
        '--max-tasks-per-child=1000'
    ])
