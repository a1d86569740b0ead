"""
Delivery Service

Hands a due notification to each of its channel transports and
records the outcome per channel:

- in_app: the stored record is the inbox, delivered immediately
- email: SMTP (utils/email.py)
- push: Firebase Cloud Messaging
- webhook: JSON POST to NOTIFICATION_WEBHOOK_URL
- sms: no provider is configured, always recorded as failed

Retries belong to the queue; this module only records what happened.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import firebase_admin
import httpx
from firebase_admin import credentials, exceptions, messaging
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub_notify.core.config import settings
from learnhub_notify.models.notification import (
    ChannelStatus,
    ChannelType,
    Notification,
    NotificationStatus,
)
from learnhub_notify.models.user import User
from learnhub_notify.repositories.user_repo import UserRepository
from learnhub_notify.services.notification_service import NotificationService
from learnhub_notify.utils.email import send_notification_email, smtp_configured
from learnhub_notify.utils.time import utcnow

logger = logging.getLogger(__name__)

_firebase_initialized = False


@dataclass
class ChannelOutcome:
    status: ChannelStatus
    reason: Optional[str] = None
    external_id: Optional[str] = None


def _ensure_firebase():
    """Initialize Firebase Admin SDK once."""
    global _firebase_initialized
    if _firebase_initialized:
        return
    try:
        key_path = settings.FIREBASE_SERVICE_ACCOUNT_KEY_PATH
        if key_path:
            cred = credentials.Certificate(key_path)
            firebase_admin.initialize_app(cred)
        else:
            firebase_admin.initialize_app()
        _firebase_initialized = True
        logger.info("Firebase Admin SDK initialized")
    except (ValueError, OSError) as e:
        logger.warning("Firebase Admin SDK init failed (push disabled): %s", e)


def build_payload(notification: Notification) -> Dict[str, Any]:
    """Webhook body: the notification without delivery bookkeeping."""
    return {
        "id": str(notification.id),
        "recipient_id": str(notification.recipient_id),
        "type": notification.type.value,
        "priority": notification.priority.value,
        "title": notification.title,
        "message": notification.message,
        "short_message": notification.short_message,
        "related_url": notification.related_url,
        "course_id": str(notification.course_id) if notification.course_id else None,
        "assignment_id": str(notification.assignment_id) if notification.assignment_id else None,
        "metadata": notification.extra_data or {},
        "content": notification.content,
        "personalization": notification.personalization,
        "batch_id": notification.batch_id,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


# ============================================================
# Channel senders
# ============================================================

async def send_in_app(notification: Notification, recipient: User) -> ChannelOutcome:
    return ChannelOutcome(ChannelStatus.DELIVERED)


async def send_email_channel(notification: Notification, recipient: User) -> ChannelOutcome:
    if not recipient.email:
        return ChannelOutcome(ChannelStatus.FAILED, "Recipient has no email address")
    if not smtp_configured():
        return ChannelOutcome(ChannelStatus.FAILED, "SMTP is not configured")

    # smtplib blocks; keep it off the event loop
    loop = asyncio.get_running_loop()
    sent = await loop.run_in_executor(
        None,
        send_notification_email,
        recipient.email,
        notification.title,
        notification.message,
        notification.priority.value,
        notification.related_url,
    )
    if not sent:
        return ChannelOutcome(ChannelStatus.FAILED, "SMTP delivery failed")
    return ChannelOutcome(ChannelStatus.SENT)


async def send_push(notification: Notification, recipient: User) -> ChannelOutcome:
    """Send a push notification to the recipient's registered device."""
    if not recipient.fcm_token:
        return ChannelOutcome(ChannelStatus.FAILED, "Recipient has no registered device")

    _ensure_firebase()
    if not _firebase_initialized:
        return ChannelOutcome(ChannelStatus.FAILED, "Push is not configured")

    message = messaging.Message(
        notification=messaging.Notification(
            title=notification.title,
            body=notification.short_message,
        ),
        data={
            "notification_id": str(notification.id),
            "type": notification.type.value,
            "priority": notification.priority.value,
        },
        token=recipient.fcm_token,
    )
    loop = asyncio.get_running_loop()
    try:
        message_id = await loop.run_in_executor(None, messaging.send, message)
    except messaging.UnregisteredError:
        logger.warning("FCM token expired/unregistered: %s...", recipient.fcm_token[:20])
        return ChannelOutcome(ChannelStatus.FAILED, "Device token is no longer registered")
    except exceptions.FirebaseError as e:
        logger.error("Failed to send push: %s", e)
        return ChannelOutcome(ChannelStatus.FAILED, f"FCM error: {e}")

    logger.info("Push sent to token %s...", recipient.fcm_token[:20])
    return ChannelOutcome(ChannelStatus.SENT, external_id=message_id)


async def send_webhook(notification: Notification, recipient: User) -> ChannelOutcome:
    if not settings.NOTIFICATION_WEBHOOK_URL:
        return ChannelOutcome(ChannelStatus.FAILED, "Webhook URL is not configured")

    try:
        async with httpx.AsyncClient(timeout=settings.WEBHOOK_TIMEOUT_SECONDS) as client:
            response = await client.post(
                str(settings.NOTIFICATION_WEBHOOK_URL),
                json=build_payload(notification),
            )
            response.raise_for_status()
    except httpx.HTTPStatusError as e:
        return ChannelOutcome(ChannelStatus.FAILED, f"Webhook returned {e.response.status_code}")
    except httpx.HTTPError as e:
        return ChannelOutcome(ChannelStatus.FAILED, f"Webhook request failed: {e}")

    # A 2xx means the receiver has it
    return ChannelOutcome(ChannelStatus.DELIVERED)


async def send_sms(notification: Notification, recipient: User) -> ChannelOutcome:
    return ChannelOutcome(ChannelStatus.FAILED, "No SMS provider configured")


SENDERS = {
    ChannelType.IN_APP: send_in_app,
    ChannelType.EMAIL: send_email_channel,
    ChannelType.PUSH: send_push,
    ChannelType.WEBHOOK: send_webhook,
    ChannelType.SMS: send_sms,
}


class DeliveryService:
    """Delivers due notifications through their channels."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.notification_service = NotificationService(db)
        self.user_repo = UserRepository(db)

    async def deliver(self, notification_id) -> Optional[Notification]:
        """
        Deliver every still-pending channel of one notification.

        Notifications that are no longer pending, not yet due or
        expired are left alone. Each channel is claimed before its
        transport is called; a channel another worker already claimed
        is skipped, so overlapping jobs never send it twice.

        Returns:
            The updated notification, or None if nothing was sent
        """
        notification = await self.notification_service.get(notification_id)
        now = utcnow()

        if not notification.is_due(now):
            logger.info(
                f"Notification {notification.id} skipped "
                f"(status {notification.status.value}, scheduled {notification.scheduled_for})"
            )
            return None
        if notification.is_expired:
            logger.info(f"Notification {notification.id} expired before delivery")
            return None

        recipient = await self.user_repo.get_active_by_id(notification.recipient_id)

        pending = [
            channel_type for channel_type, channel in notification.channels.items()
            if channel.status == ChannelStatus.PENDING
        ]
        claimed = 0
        for channel_type in pending:
            channel_type = ChannelType(channel_type)
            if not await self.notification_service.claim_channel(notification, channel_type):
                logger.info(f"Notification {notification.id}: {channel_type.value} claimed by another worker")
                continue
            claimed += 1

            if recipient is None:
                outcome = ChannelOutcome(ChannelStatus.FAILED, "Recipient no longer exists")
            else:
                outcome = await SENDERS[channel_type](notification, recipient)

            notification = await self.notification_service.update_channel_status(
                notification.id,
                channel_type,
                outcome.status,
                reason=outcome.reason,
                external_id=outcome.external_id,
            )

        if not claimed:
            return None
        if notification.status == NotificationStatus.PENDING:
            logger.warning(f"Notification {notification.id} has failed channels, left pending")
        else:
            logger.info(f"Notification {notification.id} -> {notification.status.value}")
        return notification
