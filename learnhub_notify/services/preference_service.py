"""
Preference Service

Per-user delivery preferences. Read at create time by
NotificationService to drop channels the recipient opted out of.
"""

import logging
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub_notify.core.exceptions import PersistenceError
from learnhub_notify.models.notification_preference import NotificationPreference
from learnhub_notify.repositories.preference_repo import PreferenceRepository
from learnhub_notify.schemas.preference import PreferenceUpdate

logger = logging.getLogger(__name__)


class PreferenceService:
    """Service class for notification preferences."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.preference_repo = PreferenceRepository(db)

    async def get(self, user_id: UUID) -> NotificationPreference:
        """Get the user's preferences, creating the defaults on first access."""
        try:
            return await self.preference_repo.get_or_create(user_id)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Preference lookup for {user_id} failed: {e}")
            raise PersistenceError()

    async def update(self, user_id: UUID, data: PreferenceUpdate) -> NotificationPreference:
        """Apply the provided fields; omitted fields keep their value."""
        preference = await self.get(user_id)

        update_data = data.model_dump(exclude_unset=True)
        if "muted_types" in update_data:
            # Stored as plain values in a JSON column
            update_data["muted_types"] = sorted({t.value for t in data.muted_types or []})

        for field, value in update_data.items():
            setattr(preference, field, value)

        try:
            await self.preference_repo.save(preference)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Preference update for {user_id} failed: {e}")
            raise PersistenceError()

        logger.info(f"Preferences updated for {user_id}: {sorted(update_data)}")
        return preference
