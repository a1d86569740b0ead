"""
Notification Preference Repository
"""

from typing import Optional
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from learnhub_notify.repositories.base import BaseRepository
from learnhub_notify.models.notification_preference import NotificationPreference


class PreferenceRepository(BaseRepository[NotificationPreference]):
    """Repository for NotificationPreference model."""

    def __init__(self, db: AsyncSession):
        super().__init__(NotificationPreference, db)

    async def get_for_user(self, user_id: UUID) -> Optional[NotificationPreference]:
        result = await self.db.execute(
            select(NotificationPreference).where(NotificationPreference.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_or_create(self, user_id: UUID) -> NotificationPreference:
        """Get the user's preferences, creating the default row on first use."""
        preference = await self.get_for_user(user_id)
        if preference is None:
            preference = await self.add(NotificationPreference(
                user_id=user_id,
                email_enabled=True,
                push_enabled=True,
                sms_enabled=False,
                muted_types=[],
            ))
        return preference
