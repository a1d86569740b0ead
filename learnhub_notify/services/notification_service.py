"""
Notification Service

Business logic for notifications: creation, scheduling, broadcast
fan-out, lifecycle transitions, listing and analytics.

Every write is its own commit. A broadcast is one independent write
per recipient; a failed recipient is counted and skipped.
"""

import logging
import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from learnhub_notify.core.config import settings
from learnhub_notify.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    NotificationError,
    PersistenceError,
    ValidationError,
)
from learnhub_notify.db.redis import get_arq_pool
from learnhub_notify.models.notification import (
    ChannelStatus,
    ChannelType,
    Notification,
    NotificationChannel,
    NotificationPriority,
    NotificationType,
    MESSAGE_MAX_LENGTH,
    SHORT_MESSAGE_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    resolve_type_filter,
)
from learnhub_notify.models.notification_preference import NotificationPreference
from learnhub_notify.models.user import User, UserRole
from learnhub_notify.repositories.notification_repo import NotificationRepository
from learnhub_notify.repositories.preference_repo import PreferenceRepository
from learnhub_notify.repositories.user_repo import UserRepository
from learnhub_notify.schemas.notification import NotificationContext, Personalization, RichContent
from learnhub_notify.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)


RECIPIENT_GROUPS: Dict[str, Optional[UserRole]] = {
    "all": None,
    "students": UserRole.STUDENT,
    "instructors": UserRole.INSTRUCTOR,
    "admins": UserRole.ADMIN,
}

# Channels a user can switch off in their preferences
PREFERENCE_FLAGS: Dict[ChannelType, str] = {
    ChannelType.EMAIL: "email_enabled",
    ChannelType.PUSH: "push_enabled",
    ChannelType.SMS: "sms_enabled",
}


# ============================================================
# Result types
# ============================================================

@dataclass
class NotificationDraft:
    """Validated notification content, not yet bound to a recipient."""
    type: NotificationType
    title: str
    message: str
    short_message: Optional[str]
    priority: NotificationPriority
    context: NotificationContext
    content: Optional[RichContent]
    personalization: Optional[Personalization]
    channels: List[ChannelType]
    sender_id: Optional[UUID] = None
    scheduled_for: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    group_id: Optional[str] = None
    batch_id: Optional[str] = None


@dataclass
class BroadcastResult:
    """Tally of a broadcast. Partial failure is reported here, never raised."""
    batch_id: str
    requested: int = 0
    created: int = 0
    failed: int = 0
    failed_recipients: List[str] = field(default_factory=list)
    notification_ids: List[UUID] = field(default_factory=list)


@dataclass
class NotificationPage:
    items: List[Notification]
    total: int
    unread_count: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


# ============================================================
# Validation helpers
# ============================================================

def _coerce_enum(enum_cls, value, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Invalid {label}: {value}")


def _coerce_uuid(value, label: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {label}: {value}")


def _coerce_channels(channels: Optional[Iterable]) -> List[ChannelType]:
    if channels is None:
        return [ChannelType.IN_APP]
    coerced = [_coerce_enum(ChannelType, c, "channel") for c in channels]
    if not coerced:
        raise ValidationError("At least one delivery channel is required")
    if len(set(coerced)) != len(coerced):
        raise ValidationError("Each delivery channel may only be requested once")
    return coerced


def _coerce_model(schema, value, label: str):
    """Validate an optional nested block given as a model or a dict."""
    if value is None or isinstance(value, schema):
        return value
    try:
        return schema.model_validate(value)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid notification {label}: {e.errors()[0]['msg']}")


def _dump_block(block) -> Optional[Dict[str, Any]]:
    """JSON column value for an optional block; empty blocks are not stored."""
    if block is None:
        return None
    return block.model_dump(mode="json", exclude_defaults=True) or None


def _apply_preferences(
    channels: List[ChannelType],
    preference: Optional[NotificationPreference],
    notification_type: NotificationType,
    priority: NotificationPriority,
) -> List[ChannelType]:
    """
    Drop the external channels the recipient opted out of.

    A muted type or a priority below the user's minimum drops every
    external channel. In-app and webhook are always kept, and a
    notification left with no channel falls back to in-app.
    """
    if preference is None:
        return channels

    muted = notification_type.value in (preference.muted_types or [])
    if preference.min_priority is not None:
        muted = muted or priority.rank < NotificationPriority(preference.min_priority).rank

    kept = []
    for channel in channels:
        flag = PREFERENCE_FLAGS.get(channel)
        if flag is not None and (muted or not getattr(preference, flag)):
            continue
        kept.append(channel)
    return kept or [ChannelType.IN_APP]


class NotificationService:
    """Service class for notification operations."""

    def __init__(self, db: AsyncSession):
        """Initialize with database session."""
        self.db = db
        self.notification_repo = NotificationRepository(db)
        self.user_repo = UserRepository(db)
        self.preference_repo = PreferenceRepository(db)

    async def _guard(self, operation: str, awaitable):
        """Run a store call; store failures become a generic PersistenceError."""
        try:
            return await awaitable
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"{operation} failed: {e}")
            raise PersistenceError()

    # ============================================================
    # Create
    # ============================================================
    def prepare(
        self,
        type: Union[NotificationType, str],
        title: str,
        message: str,
        priority: Union[NotificationPriority, str] = NotificationPriority.NORMAL,
        context: Optional[Union[NotificationContext, Dict[str, Any]]] = None,
        content: Optional[Union[RichContent, Dict[str, Any]]] = None,
        personalization: Optional[Union[Personalization, Dict[str, Any]]] = None,
        channels: Optional[Iterable] = None,
        sender_id: Optional[UUID] = None,
        short_message: Optional[str] = None,
        scheduled_for: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
        group_id: Optional[str] = None,
    ) -> NotificationDraft:
        """
        Validate notification content.

        Raises:
            ValidationError: On bad lengths, unknown enum values or
                duplicate channels
        """
        title = (title or "").strip()
        if not title:
            raise ValidationError("Notification title is required")
        if len(title) > TITLE_MAX_LENGTH:
            raise ValidationError(f"Title cannot exceed {TITLE_MAX_LENGTH} characters")

        if not message or not message.strip():
            raise ValidationError("Notification message is required")
        if len(message) > MESSAGE_MAX_LENGTH:
            raise ValidationError(f"Message cannot exceed {MESSAGE_MAX_LENGTH} characters")

        if short_message is not None and len(short_message) > SHORT_MESSAGE_MAX_LENGTH:
            raise ValidationError(f"Short message cannot exceed {SHORT_MESSAGE_MAX_LENGTH} characters")

        scheduled_for = as_utc(scheduled_for)
        expires_at = as_utc(expires_at)
        if expires_at is not None and expires_at <= (scheduled_for or utcnow()):
            raise ValidationError("Expiry must be later than the delivery time")

        return NotificationDraft(
            type=_coerce_enum(NotificationType, type, "notification type"),
            title=title,
            message=message,
            short_message=short_message or None,
            priority=_coerce_enum(NotificationPriority, priority, "priority"),
            context=_coerce_model(NotificationContext, context, "context") or NotificationContext(),
            content=_coerce_model(RichContent, content, "content"),
            personalization=_coerce_model(Personalization, personalization, "personalization"),
            channels=_coerce_channels(channels),
            sender_id=_coerce_uuid(sender_id, "sender id") if sender_id is not None else None,
            scheduled_for=scheduled_for,
            expires_at=expires_at,
            group_id=group_id,
        )

    async def create(self, recipient_id: Union[UUID, str], **fields) -> Notification:
        """
        Create a notification for one recipient.

        Args:
            recipient_id: ID of the receiving user
            **fields: Content accepted by `prepare`

        Returns:
            The persisted notification, status pending

        Raises:
            ValidationError: Invalid content
            NotFoundError: Recipient does not exist or was deleted
            PersistenceError: The store rejected the write
        """
        draft = self.prepare(**fields)
        return await self._persist(draft, recipient_id)

    async def schedule(self, at_time: datetime, recipient_id: Union[UUID, str], **fields) -> Notification:
        """Create a notification that stays inert until `at_time`."""
        if at_time is None:
            raise ValidationError("A delivery time is required to schedule a notification")
        return await self.create(recipient_id, scheduled_for=at_time, **fields)

    async def _persist(self, draft: NotificationDraft, recipient_id) -> Notification:
        recipient_uuid = _coerce_uuid(recipient_id, "recipient id")
        recipient = await self._guard("Recipient lookup", self.user_repo.get_active_by_id(recipient_uuid))
        if recipient is None:
            raise NotFoundError(f"Recipient {recipient_uuid} not found")

        preference = await self._guard(
            "Preference lookup", self.preference_repo.get_for_user(recipient_uuid)
        )
        channels = _apply_preferences(draft.channels, preference, draft.type, draft.priority)

        context = draft.context
        notification = Notification(
            recipient_id=recipient_uuid,
            sender_id=draft.sender_id,
            type=draft.type,
            priority=draft.priority,
            title=draft.title,
            message=draft.message,
            short_message=draft.short_message,
            course_id=context.course_id,
            assignment_id=context.assignment_id,
            discussion_id=context.discussion_id,
            certificate_id=context.certificate_id,
            learning_path_id=context.learning_path_id,
            related_url=context.related_url,
            extra_data=dict(context.metadata) or None,
            content=_dump_block(draft.content),
            personalization=_dump_block(draft.personalization),
            scheduled_for=draft.scheduled_for,
            expires_at=draft.expires_at,
            group_id=draft.group_id,
            batch_id=draft.batch_id,
        )
        notification.channels = {
            channel: NotificationChannel(channel=channel, status=ChannelStatus.PENDING)
            for channel in channels
        }
        notification.fill_defaults(settings.NOTIFICATION_EXPIRY_DAYS)

        await self._guard("Notification insert", self.notification_repo.add(notification))
        logger.info(
            f"Notification {notification.id} ({draft.type.value}) created for {recipient_uuid}"
        )
        return notification

    # ============================================================
    # Broadcast
    # ============================================================
    async def resolve_recipients(self, selector: Union[str, Sequence]) -> List[Any]:
        """
        Expand a recipient selector into the ids to notify.

        A group name is resolved against the user directory once;
        an explicit list is used as given, duplicates removed.
        """
        if isinstance(selector, str):
            if selector not in RECIPIENT_GROUPS:
                raise ValidationError(f"Unknown recipient selector: {selector}")
            return await self._guard(
                "Recipient resolution",
                self.user_repo.get_recipient_ids(RECIPIENT_GROUPS[selector]),
            )

        recipients = list(dict.fromkeys(selector or []))
        if not recipients:
            raise ValidationError("Recipient list cannot be empty")
        return recipients

    async def broadcast(self, recipients: Union[str, Sequence], **fields) -> BroadcastResult:
        """
        Create one notification per resolved recipient.

        The content is validated once up front; after that a failing
        recipient is logged and counted, and the rest still get theirs.

        Returns:
            BroadcastResult with created and failed counts
        """
        draft = self.prepare(**fields)
        recipient_ids = await self.resolve_recipients(recipients)

        result = BroadcastResult(batch_id=uuid.uuid4().hex, requested=len(recipient_ids))
        draft = replace(draft, batch_id=result.batch_id)

        for recipient_id in recipient_ids:
            try:
                notification = await self._persist(draft, recipient_id)
            except NotificationError as e:
                result.failed += 1
                result.failed_recipients.append(str(recipient_id))
                logger.warning(f"Broadcast {result.batch_id}: skipped {recipient_id}: {e.message}")
                continue
            result.created += 1
            result.notification_ids.append(notification.id)

        logger.info(
            f"Broadcast {result.batch_id} ({draft.type.value}): "
            f"{result.created}/{result.requested} created, {result.failed} failed"
        )
        return result

    async def queue_delivery(self, notification: Notification) -> bool:
        """
        Enqueue an immediate delivery job for a notification that is due.

        Best effort: if the queue is unreachable the worker's poll
        delivers it on its next run.
        """
        if not settings.DELIVERY_ENQUEUE_ON_CREATE or not notification.is_due():
            return False
        try:
            pool = await get_arq_pool()
            await pool.enqueue_job(
                "deliver_notification",
                notification_id=str(notification.id)
            )
            logger.info(f"Notification {notification.id} queued for delivery (ARQ)")
            return True
        except Exception as e:
            logger.warning(f"ARQ queue unavailable ({e}), {notification.id} left for the delivery poll")
            return False

    # ============================================================
    # Lookup and ownership
    # ============================================================
    async def get(self, notification_id: Union[UUID, str]) -> Notification:
        notification_uuid = _coerce_uuid(notification_id, "notification id")
        notification = await self._guard(
            "Notification lookup", self.notification_repo.get_by_id(notification_uuid)
        )
        if notification is None:
            raise NotFoundError()
        return notification

    async def get_for_recipient(self, notification_id, user: User, allow_admin: bool = False) -> Notification:
        """
        Get a notification owned by `user`.

        `allow_admin` is for operations that return no content (delete);
        admins never read another user's notification through it.

        Raises:
            NotFoundError: No such notification
            AuthorizationError: It belongs to someone else
        """
        notification = await self.get(notification_id)
        if notification.recipient_id != user.id and not (allow_admin and user.is_admin):
            raise AuthorizationError()
        return notification

    async def _get_managed(self, notification_id, user: User) -> Notification:
        """Get a notification the user sent, or any notification for an admin."""
        notification = await self.get(notification_id)
        if not user.is_admin and notification.sender_id != user.id:
            raise AuthorizationError("Only the sender or an admin can manage this notification")
        return notification

    # ============================================================
    # Recipient actions
    # ============================================================
    async def mark_as_read(self, notification_id, user: User) -> Notification:
        notification = await self.get_for_recipient(notification_id, user)
        if notification.mark_as_read():
            await self._guard("Mark read", self.notification_repo.save(notification))
        return notification

    async def mark_as_clicked(self, notification_id, user: User) -> Notification:
        notification = await self.get_for_recipient(notification_id, user)
        notification.mark_as_clicked()
        await self._guard("Mark clicked", self.notification_repo.save(notification))
        return notification

    async def dismiss(self, notification_id, user: User) -> Notification:
        """Archive a notification. The record is kept."""
        notification = await self.get_for_recipient(notification_id, user)
        notification.dismiss()
        await self._guard("Dismiss", self.notification_repo.save(notification))
        return notification

    async def take_action(self, notification_id, user: User, action: str, metadata: Optional[Dict[str, str]] = None) -> Notification:
        notification = await self.get_for_recipient(notification_id, user)
        notification.take_action(action, metadata)
        await self._guard("Take action", self.notification_repo.save(notification))
        return notification

    async def delete(self, notification_id, user: User) -> None:
        """Delete a notification. Allowed for its recipient and for admins."""
        notification = await self.get_for_recipient(notification_id, user, allow_admin=True)
        await self._guard("Delete", self.notification_repo.delete(notification))
        logger.info(f"Notification {notification.id} deleted by {user.id}")

    # ============================================================
    # Sender / admin actions
    # ============================================================
    async def cancel(self, notification_id, user: User) -> Notification:
        notification = await self._get_managed(notification_id, user)
        notification.cancel()
        await self._guard("Cancel", self.notification_repo.save(notification))
        logger.info(f"Notification {notification.id} cancelled by {user.id}")
        return notification

    async def reschedule(self, notification_id, user: User, new_time: datetime) -> Notification:
        if new_time is None:
            raise ValidationError("A new delivery time is required")
        notification = await self._get_managed(notification_id, user)
        notification.reschedule(as_utc(new_time))
        await self._guard("Reschedule", self.notification_repo.save(notification))
        return notification

    # ============================================================
    # Delivery tracking (worker-facing)
    # ============================================================
    async def update_channel_status(
        self,
        notification_id,
        channel: Union[ChannelType, str],
        status: Union[ChannelStatus, str],
        reason: Optional[str] = None,
        external_id: Optional[str] = None,
    ) -> Notification:
        """
        Record one channel's delivery outcome and promote the aggregate.

        Raises:
            ValidationError: Unknown channel or status value
            NotFoundError: No such notification, or it has no such channel
        """
        channel = _coerce_enum(ChannelType, channel, "channel")
        status = _coerce_enum(ChannelStatus, status, "channel status")
        notification = await self.get(notification_id)
        notification.update_channel_status(channel, status, reason=reason, external_id=external_id)
        await self._guard("Channel status update", self.notification_repo.save(notification))
        if status == ChannelStatus.FAILED:
            logger.warning(f"Notification {notification.id}: {channel.value} failed: {reason}")
        return notification

    async def claim_channel(self, notification: Notification, channel: ChannelType) -> bool:
        """Claim one pending channel for sending. False if another worker holds it."""
        channel_row = notification.channels.get(channel)
        if channel_row is None:
            raise NotFoundError(f"Notification has no {channel.value} channel")
        now = utcnow()
        stale_before = now - timedelta(seconds=settings.DELIVERY_CLAIM_TIMEOUT_SECONDS)
        claimed = await self._guard(
            "Channel claim",
            self.notification_repo.claim_channel(channel_row.id, now, stale_before),
        )
        if claimed:
            # Mirror the bulk UPDATE on the loaded row without marking it dirty
            set_committed_value(channel_row, "claimed_at", now)
        return claimed

    async def find_due(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> List[Notification]:
        """Pending notifications whose scheduled time has passed, urgent first."""
        return await self._guard(
            "Due poll",
            self.notification_repo.find_due(
                as_utc(now) or utcnow(), limit or settings.DELIVERY_BATCH_SIZE
            ),
        )

    async def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        deleted = await self._guard(
            "Expiry sweep", self.notification_repo.delete_expired(as_utc(now) or utcnow())
        )
        if deleted:
            logger.info(f"Expiry sweep removed {deleted} notifications")
        return deleted

    # ============================================================
    # Queries
    # ============================================================
    async def list_for_recipient(
        self,
        recipient_id: UUID,
        type: Optional[str] = None,
        unread_only: bool = False,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> NotificationPage:
        """
        Get a page of a recipient's notifications, newest first.

        Raises:
            ValidationError: page < 1, or limit outside 1..max page size
        """
        limit = settings.NOTIFICATION_DEFAULT_PAGE_SIZE if limit is None else limit
        if page < 1:
            raise ValidationError("Page must be a positive integer")
        if limit < 1 or limit > settings.NOTIFICATION_MAX_PAGE_SIZE:
            raise ValidationError(f"Limit must be between 1 and {settings.NOTIFICATION_MAX_PAGE_SIZE}")

        types = resolve_type_filter(type) if type else None
        repo = self.notification_repo
        items = await self._guard(
            "List notifications",
            repo.list_for_recipient(recipient_id, types, unread_only, (page - 1) * limit, limit),
        )
        total = await self._guard("Count notifications", repo.count_for_recipient(recipient_id, types, unread_only))
        unread = await self._guard("Unread count", repo.unread_count(recipient_id, types))
        return NotificationPage(items=items, total=total, unread_count=unread, page=page, limit=limit)

    async def unread_count(self, recipient_id: UUID, type: Optional[str] = None) -> int:
        types = resolve_type_filter(type) if type else None
        return await self._guard("Unread count", self.notification_repo.unread_count(recipient_id, types))

    async def mark_all_read(
        self,
        recipient_id: UUID,
        type: Optional[str] = None,
        before: Optional[datetime] = None,
    ) -> int:
        """Mark every unread notification of the recipient as read. Returns the count."""
        types = resolve_type_filter(type) if type else None
        modified = await self._guard(
            "Mark all read",
            self.notification_repo.mark_all_read(recipient_id, utcnow(), types, as_utc(before)),
        )
        logger.info(f"Marked {modified} notifications read for {recipient_id}")
        return modified

    # ============================================================
    # Analytics
    # ============================================================
    @staticmethod
    def analytics_scope(user: User, recipient_id: Optional[UUID] = None) -> Optional[UUID]:
        """
        Recipient filter a user may run analytics with.

        Admins may look at anyone or at everything; other users only
        at their own notifications.
        """
        if user.is_admin:
            return recipient_id
        if recipient_id is not None and recipient_id != user.id:
            raise AuthorizationError("Only admins can view analytics for other users")
        return user.id

    async def analytics(
        self,
        recipient_id: Optional[UUID] = None,
        type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Aggregate engagement over the matched notifications.

        Returns:
            Dict with counts, read_rate and click_rate percentages and
            distributions by type, priority, status and channel
        """
        start, end = as_utc(start), as_utc(end)
        if start is not None and end is not None and start > end:
            raise ValidationError("Start date must be before end date")

        types = resolve_type_filter(type) if type else None
        stats = await self._guard(
            "Analytics", self.notification_repo.aggregate(recipient_id, types, start, end)
        )

        total = stats["total"]

        def rate(count: int) -> float:
            return round(count / total * 100, 2) if total else 0.0

        return {
            "total": total,
            "read": stats["read"],
            "clicked": stats["clicked"],
            "dismissed": stats["dismissed"],
            "read_rate": rate(stats["read"]),
            "click_rate": rate(stats["clicked"]),
            "type_distribution": stats["by_type"],
            "priority_distribution": stats["by_priority"],
            "status_distribution": stats["by_status"],
            "channel_distribution": stats["by_channel"],
        }
