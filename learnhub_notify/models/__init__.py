from learnhub_notify.models.base import Base
from learnhub_notify.models.user import User, UserRole
from learnhub_notify.models.notification import (
    Notification,
    NotificationChannel,
    NotificationType,
    NotificationCategory,
    NotificationPriority,
    NotificationStatus,
    ChannelType,
    ChannelStatus,
)
from learnhub_notify.models.notification_preference import NotificationPreference

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Notification",
    "NotificationChannel",
    "NotificationType",
    "NotificationCategory",
    "NotificationPriority",
    "NotificationStatus",
    "ChannelType",
    "ChannelStatus",
    "NotificationPreference",
]
