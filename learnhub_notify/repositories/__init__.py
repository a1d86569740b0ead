from learnhub_notify.repositories.base import BaseRepository
from learnhub_notify.repositories.user_repo import UserRepository
from learnhub_notify.repositories.notification_repo import NotificationRepository
from learnhub_notify.repositories.preference_repo import PreferenceRepository

__all__ = [
    "BaseRepository",
    "UserRepository",
    "NotificationRepository",
    "PreferenceRepository",
]
