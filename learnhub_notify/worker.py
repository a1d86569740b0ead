"""
ARQ Worker Configuration

Running the Worker:
------------------
    # From project root directory
    arq learnhub_notify.worker.WorkerSettings

    # With verbose logging
    arq learnhub_notify.worker.WorkerSettings --verbose

Scheduled jobs:
--------------
- deliver_due_notifications: every minute, delivers pending
  notifications whose scheduled time has passed
- cleanup_expired_notifications: hourly expiry sweep

Several workers can share the queue. Before calling a transport the
worker claims the channel with a conditional UPDATE, so the on-create
job and an overlapping poll never both send it. A store outage during
deliver_notification raises Retry until DELIVERY_MAX_TRIES is reached.
"""

import logging
from typing import Any, Dict

from arq import cron

from learnhub_notify.core.config import settings
from learnhub_notify.db.database import check_db_connection
from learnhub_notify.db.redis import get_arq_redis_settings
from learnhub_notify.tasks import (
    cleanup_expired_notifications,
    deliver_due_notifications,
    deliver_notification,
)

# ============================================================
# Logging Configuration
# ============================================================

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


# ============================================================
# Startup and Shutdown Hooks
# ============================================================

async def startup(ctx: Dict[str, Any]) -> None:
    logger.info("ARQ Worker starting up...")

    if await check_db_connection():
        logger.info("Database connection established")
    else:
        logger.warning("Database unreachable, jobs will fail until it is back")

    logger.info("ARQ Worker ready to deliver notifications")


async def shutdown(ctx: Dict[str, Any]) -> None:
    logger.info("ARQ Worker shutdown complete")


# ============================================================
# Worker Configuration Class
# ============================================================

class WorkerSettings:
    """
    ARQ Worker settings.

    This class is discovered by ARQ when you run:
        arq learnhub_notify.worker.WorkerSettings
    """

    # ========================================
    # Task Functions
    # ========================================
    functions = [
        deliver_notification,
    ]

    cron_jobs = [
        cron(deliver_due_notifications, second=0, run_at_startup=True),
        cron(cleanup_expired_notifications, minute=0, second=0),
    ]

    # ========================================
    # Redis Connection
    # ========================================
    redis_settings = get_arq_redis_settings()

    # ========================================
    # Lifecycle Hooks
    # ========================================
    on_startup = startup
    on_shutdown = shutdown

    # ========================================
    # Job Settings
    # ========================================
    job_timeout = 120
    keep_result = 3600     # 1 hour
    max_tries = settings.DELIVERY_MAX_TRIES

    # ========================================
    # Concurrency Settings
    # ========================================
    max_jobs = 10
    poll_delay = 0.5

    queue_name = "arq:queue"
    health_check_interval = 10
