"""
Notification Delivery Tasks

Background tasks run by the ARQ worker:

- deliver_notification: deliver one notification right away
  (enqueued by the API on create)
- deliver_due_notifications: cron poll for pending notifications
  whose scheduled time has passed
- cleanup_expired_notifications: cron sweep of expired records
"""

import logging
from typing import Any, Dict
from uuid import UUID

from arq.worker import Retry

from learnhub_notify.core.config import settings
from learnhub_notify.core.exceptions import NotificationError, PersistenceError
from learnhub_notify.db.database import AsyncSessionLocal
from learnhub_notify.services.delivery_service import DeliveryService
from learnhub_notify.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

RETRY_BACKOFF_SECONDS = 10


# ============================================================
# SINGLE DELIVERY TASK
# ============================================================

async def deliver_notification(
    ctx: Dict[str, Any],
    notification_id: str
) -> Dict[str, Any]:
    """
    Deliver one notification through its pending channels.

    Args:
        ctx: ARQ context (job_id, redis, etc.)
        notification_id: UUID of the notification

    Returns:
        Dict with the resulting status
    """
    job_id = ctx.get('job_id', 'unknown')
    job_try = ctx.get('job_try', 1)

    logger.info(
        f"Delivering notification {notification_id} "
        f"(job: {job_id}, attempt: {job_try})"
    )

    try:
        notification_uuid = UUID(notification_id)
    except ValueError:
        logger.error(f"Invalid notification ID: {notification_id}")
        return {"success": False, "error": "Invalid notification ID"}

    async with AsyncSessionLocal() as session:
        try:
            notification = await DeliveryService(session).deliver(notification_uuid)
        except PersistenceError as e:
            # Store outage: let ARQ run the job again later. Channels
            # already claimed are not resent before their claim goes stale.
            if job_try < settings.DELIVERY_MAX_TRIES:
                logger.warning(
                    f"Delivery of {notification_id} hit a store error, "
                    f"retrying (attempt {job_try}/{settings.DELIVERY_MAX_TRIES})"
                )
                raise Retry(defer=job_try * RETRY_BACKOFF_SECONDS)
            logger.error(f"Delivery of {notification_id} gave up after {job_try} attempts")
            return {"success": False, "error": e.message}
        except NotificationError as e:
            logger.error(f"Delivery of {notification_id} failed: {e.message}")
            return {"success": False, "error": e.message}

    if notification is None:
        return {"success": True, "notification_id": notification_id, "skipped": True}

    return {
        "success": True,
        "notification_id": notification_id,
        "status": notification.status.value,
    }


# ============================================================
# CRON: DUE POLL
# ============================================================

async def deliver_due_notifications(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deliver every notification that is due, urgent first.

    One bad notification does not stop the batch.
    """
    delivered = 0
    failed = 0

    async with AsyncSessionLocal() as session:
        due = await NotificationService(session).find_due(limit=settings.DELIVERY_BATCH_SIZE)
        if not due:
            return {"due": 0, "delivered": 0, "failed": 0}

        logger.info(f"Delivery poll: {len(due)} notifications due")
        ids = [notification.id for notification in due]

        delivery = DeliveryService(session)
        for notification_id in ids:
            try:
                await delivery.deliver(notification_id)
                delivered += 1
            except NotificationError as e:
                failed += 1
                logger.error(f"Delivery of {notification_id} failed: {e.message}")

    logger.info(f"Delivery poll finished: {delivered} delivered, {failed} failed")
    return {"due": len(ids), "delivered": delivered, "failed": failed}


# ============================================================
# CRON: EXPIRY SWEEP
# ============================================================

async def cleanup_expired_notifications(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Delete expired notifications that were read, cancelled or dismissed."""
    async with AsyncSessionLocal() as session:
        deleted = await NotificationService(session).cleanup_expired()
    return {"deleted": deleted}
