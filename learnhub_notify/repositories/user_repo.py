"""
User Repository

Read access to the user directory: recipient lookup and
role-based recipient resolution for broadcasts.
"""

from typing import List, Optional
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from learnhub_notify.repositories.base import BaseRepository
from learnhub_notify.models import User, UserRole


class UserRepository(BaseRepository[User]):
    """Repository for User model."""

    def __init__(self, db: AsyncSession):
        super().__init__(User, db)

    # =================
    # Get live user
    # =================
    async def get_active_by_id(self, user_id: UUID) -> Optional[User]:
        """Get a user that has not been deleted."""
        result = await self.db.execute(
            select(User).where(User.id == user_id, User.is_deleted.is_(False))
        )
        return result.scalar_one_or_none()

    # =================
    # Broadcast recipients
    # =================
    async def get_recipient_ids(self, role: Optional[UserRole] = None) -> List[UUID]:
        """
        Ids of every non-deleted user, optionally of one role.

        Ordered by creation date so fan-out order is deterministic.
        """
        stmt = select(User.id).where(User.is_deleted.is_(False))
        if role is not None:
            stmt = stmt.where(User.role == role)
        stmt = stmt.order_by(User.created_at.asc())
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
