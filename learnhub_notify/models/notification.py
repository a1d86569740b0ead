"""
Notification Models

- Notification: one message addressed to exactly one recipient, with its
  aggregate lifecycle status.
- NotificationChannel: delivery state of that message on one transport.
  A notification holds at most one channel row per channel type.

Aggregate status:
    pending -> sent -> delivered -> read
    pending -> cancelled
    any     -> pending  (reschedule)

A failed channel never fails the aggregate.
"""

import enum
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import (
    Column,
    String,
    Text,
    DateTime,
    ForeignKey,
    Enum,
    JSON,
    Uuid,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.orm.collections import attribute_keyed_dict

from learnhub_notify.core.exceptions import NotFoundError, StateTransitionError, ValidationError
from learnhub_notify.utils.time import as_utc, utcnow
from .base import BaseModel


TITLE_MAX_LENGTH = 200
MESSAGE_MAX_LENGTH = 1000
SHORT_MESSAGE_MAX_LENGTH = 100
DEFAULT_EXPIRY_DAYS = 30


# ============================================================
# ENUMS
# ============================================================

class NotificationCategory(str, enum.Enum):
    COURSE = "course"
    ASSIGNMENT = "assignment"
    DISCUSSION = "discussion"
    SYSTEM = "system"
    SOCIAL = "social"
    INSTRUCTOR = "instructor"
    GENERAL = "general"


class NotificationType(str, enum.Enum):
    # Course
    COURSE_ENROLLMENT = "course_enrollment"
    COURSE_COMPLETION = "course_completion"
    COURSE_UPDATE = "course_update"
    NEW_COURSE_AVAILABLE = "new_course_available"
    # Assignment
    ASSIGNMENT_CREATED = "assignment_created"
    ASSIGNMENT_DUE_SOON = "assignment_due_soon"
    ASSIGNMENT_GRADED = "assignment_graded"
    ASSIGNMENT_FEEDBACK = "assignment_feedback"
    # Discussion
    DISCUSSION_REPLY = "discussion_reply"
    DISCUSSION_MENTION = "discussion_mention"
    DISCUSSION_LIKE = "discussion_like"
    NEW_DISCUSSION = "new_discussion"
    # System
    SYSTEM_MAINTENANCE = "system_maintenance"
    ACCOUNT_UPDATE = "account_update"
    PASSWORD_CHANGED = "password_changed"
    EMAIL_VERIFIED = "email_verified"
    # Social
    PEER_REVIEW_REQUEST = "peer_review_request"
    PEER_REVIEW_COMPLETED = "peer_review_completed"
    ACHIEVEMENT_UNLOCKED = "achievement_unlocked"
    CERTIFICATE_ISSUED = "certificate_issued"
    # Instructor
    NEW_STUDENT_ENROLLED = "new_student_enrolled"
    ASSIGNMENT_SUBMITTED = "assignment_submitted"
    QUESTION_ASKED = "question_asked"
    # General
    ANNOUNCEMENT = "announcement"
    REMINDER = "reminder"
    WELCOME = "welcome"
    CUSTOM = "custom"
    INFO = "info"

    @property
    def category(self) -> NotificationCategory:
        return TYPE_CATEGORIES[self]


TYPE_CATEGORIES: Dict[NotificationType, NotificationCategory] = {
    NotificationType.COURSE_ENROLLMENT: NotificationCategory.COURSE,
    NotificationType.COURSE_COMPLETION: NotificationCategory.COURSE,
    NotificationType.COURSE_UPDATE: NotificationCategory.COURSE,
    NotificationType.NEW_COURSE_AVAILABLE: NotificationCategory.COURSE,
    NotificationType.ASSIGNMENT_CREATED: NotificationCategory.ASSIGNMENT,
    NotificationType.ASSIGNMENT_DUE_SOON: NotificationCategory.ASSIGNMENT,
    NotificationType.ASSIGNMENT_GRADED: NotificationCategory.ASSIGNMENT,
    NotificationType.ASSIGNMENT_FEEDBACK: NotificationCategory.ASSIGNMENT,
    NotificationType.DISCUSSION_REPLY: NotificationCategory.DISCUSSION,
    NotificationType.DISCUSSION_MENTION: NotificationCategory.DISCUSSION,
    NotificationType.DISCUSSION_LIKE: NotificationCategory.DISCUSSION,
    NotificationType.NEW_DISCUSSION: NotificationCategory.DISCUSSION,
    NotificationType.SYSTEM_MAINTENANCE: NotificationCategory.SYSTEM,
    NotificationType.ACCOUNT_UPDATE: NotificationCategory.SYSTEM,
    NotificationType.PASSWORD_CHANGED: NotificationCategory.SYSTEM,
    NotificationType.EMAIL_VERIFIED: NotificationCategory.SYSTEM,
    NotificationType.PEER_REVIEW_REQUEST: NotificationCategory.SOCIAL,
    NotificationType.PEER_REVIEW_COMPLETED: NotificationCategory.SOCIAL,
    NotificationType.ACHIEVEMENT_UNLOCKED: NotificationCategory.SOCIAL,
    NotificationType.CERTIFICATE_ISSUED: NotificationCategory.SOCIAL,
    NotificationType.NEW_STUDENT_ENROLLED: NotificationCategory.INSTRUCTOR,
    NotificationType.ASSIGNMENT_SUBMITTED: NotificationCategory.INSTRUCTOR,
    NotificationType.QUESTION_ASKED: NotificationCategory.INSTRUCTOR,
    NotificationType.ANNOUNCEMENT: NotificationCategory.GENERAL,
    NotificationType.REMINDER: NotificationCategory.GENERAL,
    NotificationType.WELCOME: NotificationCategory.GENERAL,
    NotificationType.CUSTOM: NotificationCategory.GENERAL,
    NotificationType.INFO: NotificationCategory.GENERAL,
}


class NotificationPriority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return PRIORITY_RANK[self]


PRIORITY_RANK: Dict[NotificationPriority, int] = {
    NotificationPriority.LOW: 1,
    NotificationPriority.NORMAL: 2,
    NotificationPriority.HIGH: 3,
    NotificationPriority.URGENT: 4,
}


class NotificationStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ChannelType(str, enum.Enum):
    IN_APP = "in_app"
    EMAIL = "email"
    PUSH = "push"
    SMS = "sms"
    WEBHOOK = "webhook"


class ChannelStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


SENT_OR_DELIVERED = (ChannelStatus.SENT, ChannelStatus.DELIVERED)


def _enum_column(enum_cls, name: str):
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda x: [e.value for e in x]
    )


# ============================================================
# HELPERS
# ============================================================

def build_short_message(message: str) -> str:
    """Preview text: the message itself, or its first 97 chars plus '...'."""
    if len(message) > SHORT_MESSAGE_MAX_LENGTH:
        return message[:SHORT_MESSAGE_MAX_LENGTH - 3] + "..."
    return message


def default_expiry(created_at: Optional[datetime] = None, days: int = DEFAULT_EXPIRY_DAYS) -> datetime:
    return (created_at or utcnow()) + timedelta(days=days)


def resolve_type_filter(value) -> List[NotificationType]:
    """
    Turn a type filter into the concrete types it matches.

    Accepts an exact type ("course_update") or a category ("course").
    """
    if isinstance(value, NotificationType):
        return [value]
    if isinstance(value, NotificationCategory):
        category = value
    else:
        try:
            return [NotificationType(value)]
        except ValueError:
            pass
        try:
            category = NotificationCategory(value)
        except ValueError:
            raise ValidationError(f"Unknown notification type: {value}")
    return [t for t, c in TYPE_CATEGORIES.items() if c == category]


# ============================================================
# MODELS
# ============================================================

class NotificationChannel(BaseModel):
    __tablename__ = "notification_channels"

    notification_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("notifications.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    channel = Column(_enum_column(ChannelType, "channel_type"), nullable=False)
    status = Column(
        _enum_column(ChannelStatus, "channel_status"),
        default=ChannelStatus.PENDING,
        nullable=False
    )
    sent_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    failure_reason = Column(String(500), nullable=True)
    external_id = Column(String(255), nullable=True)  # Tracking id from the transport
    claimed_at = Column(DateTime(timezone=True), nullable=True)  # Set by the worker sending it

    notification = relationship("Notification", back_populates="channels")

    __table_args__ = (
        UniqueConstraint("notification_id", "channel", name="uq_notification_channel"),
    )

    def reset(self) -> None:
        self.status = ChannelStatus.PENDING
        self.sent_at = None
        self.delivered_at = None
        self.failure_reason = None
        self.claimed_at = None


class Notification(BaseModel):
    __tablename__ = "notifications"

    recipient_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    # Classification
    type = Column(_enum_column(NotificationType, "notification_type"), nullable=False, index=True)
    priority = Column(
        _enum_column(NotificationPriority, "notification_priority"),
        default=NotificationPriority.NORMAL,
        nullable=False,
        index=True
    )

    # Content
    title = Column(String(TITLE_MAX_LENGTH), nullable=False)
    message = Column(Text, nullable=False)
    short_message = Column(String(SHORT_MESSAGE_MAX_LENGTH), nullable=False)
    content = Column(JSON, nullable=True)  # html, markdown, attachments, action_buttons
    personalization = Column(JSON, nullable=True)  # user_name, course_name, instructor_name, custom_data

    # Context
    course_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    assignment_id = Column(Uuid(as_uuid=True), nullable=True)
    discussion_id = Column(Uuid(as_uuid=True), nullable=True)
    certificate_id = Column(Uuid(as_uuid=True), nullable=True)
    learning_path_id = Column(Uuid(as_uuid=True), nullable=True)
    related_url = Column(String(500), nullable=True)
    extra_data = Column(JSON, nullable=True)  # {"key": "value"} string map

    # Aggregate status
    status = Column(
        _enum_column(NotificationStatus, "notification_status"),
        default=NotificationStatus.PENDING,
        nullable=False,
        index=True
    )

    # Scheduling
    scheduled_for = Column(DateTime(timezone=True), nullable=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    # User interaction
    read_at = Column(DateTime(timezone=True), nullable=True)
    clicked_at = Column(DateTime(timezone=True), nullable=True)
    dismissed_at = Column(DateTime(timezone=True), nullable=True)
    action_taken = Column(String(100), nullable=True)
    action_taken_at = Column(DateTime(timezone=True), nullable=True)
    action_metadata = Column(JSON, nullable=True)

    # Grouping
    group_id = Column(String(100), nullable=True, index=True)
    batch_id = Column(String(100), nullable=True, index=True)  # Shared by one broadcast

    channels = relationship(
        "NotificationChannel",
        back_populates="notification",
        collection_class=attribute_keyed_dict("channel"),
        cascade="all, delete-orphan",
        order_by="NotificationChannel.created_at",
        lazy="selectin"
    )

    __table_args__ = (
        Index("ix_notifications_recipient_status_created", "recipient_id", "status", "created_at"),
        Index("ix_notifications_recipient_read", "recipient_id", "read_at"),
        Index("ix_notifications_status_scheduled", "status", "scheduled_for"),
    )

    # -----------------------------
    # Derived state
    # -----------------------------
    @property
    def is_read(self) -> bool:
        return self.read_at is not None

    @property
    def is_dismissed(self) -> bool:
        return self.dismissed_at is not None

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and utcnow() > as_utc(self.expires_at)

    @property
    def is_scheduled(self) -> bool:
        return self.scheduled_for is not None and utcnow() < as_utc(self.scheduled_for)

    def is_due(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return (
            self.status == NotificationStatus.PENDING
            and (self.scheduled_for is None or as_utc(self.scheduled_for) <= now)
        )

    def fill_defaults(self, expiry_days: int = DEFAULT_EXPIRY_DAYS) -> None:
        """Derive short_message and expires_at when they were not supplied."""
        if not self.short_message and self.message:
            self.short_message = build_short_message(self.message)
        if self.expires_at is None:
            self.expires_at = default_expiry(as_utc(self.created_at), expiry_days)

    # -----------------------------
    # State transitions
    # -----------------------------
    def mark_as_read(self, now: Optional[datetime] = None) -> bool:
        """
        Mark as read. Returns False when it was already read.

        A cancelled notification keeps its status; only read_at is set.
        """
        if self.read_at is not None:
            return False
        self.read_at = now or utcnow()
        if self.status != NotificationStatus.CANCELLED:
            self.status = NotificationStatus.READ
        return True

    def mark_as_clicked(self, now: Optional[datetime] = None) -> None:
        if self.clicked_at is None:
            self.clicked_at = now or utcnow()

    def dismiss(self, now: Optional[datetime] = None) -> None:
        if self.dismissed_at is None:
            self.dismissed_at = now or utcnow()

    def take_action(self, action: str, metadata: Optional[Dict[str, str]] = None, now: Optional[datetime] = None) -> None:
        self.action_taken = action
        self.action_taken_at = now or utcnow()
        self.action_metadata = dict(metadata or {})

    def cancel(self) -> None:
        if self.status == NotificationStatus.CANCELLED:
            return
        if self.status != NotificationStatus.PENDING:
            raise StateTransitionError(
                f"Only pending notifications can be cancelled (status is {self.status.value})"
            )
        self.status = NotificationStatus.CANCELLED

    def reschedule(self, new_time: datetime) -> None:
        self.scheduled_for = new_time
        self.status = NotificationStatus.PENDING
        for channel in self.channels.values():
            channel.reset()

    def update_channel_status(
        self,
        channel_type: ChannelType,
        status: ChannelStatus,
        reason: Optional[str] = None,
        external_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> NotificationChannel:
        """
        Record a delivery outcome on one channel, then promote the aggregate.

        pending -> sent once every channel is sent or delivered;
        pending/sent -> delivered once every channel is delivered.
        """
        channel_type = ChannelType(channel_type)
        status = ChannelStatus(status)
        channel = self.channels.get(channel_type)
        if channel is None:
            raise NotFoundError(f"Notification has no {channel_type.value} channel")

        now = now or utcnow()
        channel.status = status
        if status == ChannelStatus.SENT:
            channel.sent_at = now
        elif status == ChannelStatus.DELIVERED:
            channel.delivered_at = now
            if channel.sent_at is None:
                channel.sent_at = now
        elif status == ChannelStatus.FAILED:
            channel.failure_reason = (reason or "Delivery failed")[:500]
        if external_id:
            channel.external_id = external_id

        statuses = [c.status for c in self.channels.values()]
        if all(s == ChannelStatus.DELIVERED for s in statuses):
            if self.status in (NotificationStatus.PENDING, NotificationStatus.SENT):
                self.status = NotificationStatus.DELIVERED
        elif all(s in SENT_OR_DELIVERED for s in statuses):
            if self.status == NotificationStatus.PENDING:
                self.status = NotificationStatus.SENT
        return channel
