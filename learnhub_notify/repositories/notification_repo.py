"""
Notification Repository

Data access layer for Notification and its delivery channels:
paginated listing, unread counts, bulk read marking, the delivery
poll, the expiry sweep and analytics aggregation.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub_notify.repositories.base import BaseRepository
from learnhub_notify.models.notification import (
    Notification,
    ChannelStatus,
    NotificationChannel,
    NotificationStatus,
    NotificationType,
    PRIORITY_RANK,
)


def _recipient_filters(
    recipient_id: UUID,
    types: Optional[Sequence[NotificationType]] = None,
    unread_only: bool = False,
) -> list:
    filters = [Notification.recipient_id == recipient_id]
    if types:
        filters.append(Notification.type.in_(list(types)))
    if unread_only:
        filters.extend(_unread_filters())
    return filters


def _unread_filters() -> list:
    return [
        Notification.read_at.is_(None),
        Notification.status != NotificationStatus.CANCELLED,
    ]


class NotificationRepository(BaseRepository[Notification]):
    """Repository for Notification model."""

    def __init__(self, db: AsyncSession):
        super().__init__(Notification, db)

    async def get_by_id(self, id: Any) -> Optional[Notification]:
        """Get a notification, refreshing any stale copy held by the session."""
        result = await self.db.execute(
            select(Notification)
            .where(Notification.id == id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # ============================================================
    # Listing
    # ============================================================
    async def list_for_recipient(
        self,
        recipient_id: UUID,
        types: Optional[Sequence[NotificationType]] = None,
        unread_only: bool = False,
        skip: int = 0,
        limit: int = 20,
    ) -> List[Notification]:
        """
        Get a page of notifications for one recipient.

        Returns:
            Notifications ordered newest first
        """
        stmt = (
            select(Notification)
            .where(*_recipient_filters(recipient_id, types, unread_only))
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(skip)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count_for_recipient(
        self,
        recipient_id: UUID,
        types: Optional[Sequence[NotificationType]] = None,
        unread_only: bool = False,
    ) -> int:
        stmt = select(func.count(Notification.id)).where(
            *_recipient_filters(recipient_id, types, unread_only)
        )
        result = await self.db.execute(stmt)
        return result.scalar() or 0

    async def unread_count(
        self,
        recipient_id: UUID,
        types: Optional[Sequence[NotificationType]] = None,
    ) -> int:
        """Count notifications with no read_at that are not cancelled."""
        return await self.count_for_recipient(recipient_id, types, unread_only=True)

    # ============================================================
    # Bulk read
    # ============================================================
    async def mark_all_read(
        self,
        recipient_id: UUID,
        now: datetime,
        types: Optional[Sequence[NotificationType]] = None,
        before: Optional[datetime] = None,
    ) -> int:
        """
        Mark every unread notification of a recipient as read.

        Returns:
            Number of notifications modified
        """
        filters = _recipient_filters(recipient_id, types, unread_only=True)
        if before is not None:
            filters.append(Notification.created_at <= before)

        stmt = (
            update(Notification)
            .where(*filters)
            .values(read_at=now, status=NotificationStatus.READ, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount or 0

    # ============================================================
    # Delivery poll
    # ============================================================
    async def find_due(self, now: datetime, limit: int = 100) -> List[Notification]:
        """
        Pending notifications whose send time has come.

        Ordered by priority (urgent first), then oldest first.
        Expired notifications are never picked up.
        """
        priority_rank = case(
            *[(Notification.priority == priority, rank) for priority, rank in PRIORITY_RANK.items()],
            else_=0,
        )
        stmt = (
            select(Notification)
            .where(
                Notification.status == NotificationStatus.PENDING,
                or_(
                    Notification.scheduled_for.is_(None),
                    Notification.scheduled_for <= now,
                ),
                Notification.expires_at > now,
                # Nothing left to send once every channel has an outcome
                Notification.channels.any(
                    NotificationChannel.status == ChannelStatus.PENDING
                ),
            )
            .order_by(priority_rank.desc(), Notification.created_at.asc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def claim_channel(self, channel_id: UUID, now: datetime, stale_before: datetime) -> bool:
        """
        Take a pending channel for sending.

        A single conditional UPDATE, so of two workers racing for the same
        channel only one gets a row back. Claims older than `stale_before`
        can be taken again.

        Returns:
            True if this caller now owns the send
        """
        stmt = (
            update(NotificationChannel)
            .where(
                NotificationChannel.id == channel_id,
                NotificationChannel.status == ChannelStatus.PENDING,
                or_(
                    NotificationChannel.claimed_at.is_(None),
                    NotificationChannel.claimed_at < stale_before,
                ),
            )
            .values(claimed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount == 1

    # ============================================================
    # Expiry sweep
    # ============================================================
    async def delete_expired(self, now: datetime) -> int:
        """
        Delete expired notifications that are read, cancelled or dismissed.

        Unread pending notifications are kept even after expiry.
        """
        result = await self.db.execute(
            select(Notification.id).where(
                Notification.expires_at < now,
                or_(
                    Notification.status.in_([NotificationStatus.READ, NotificationStatus.CANCELLED]),
                    Notification.dismissed_at.is_not(None),
                ),
            )
        )
        ids = list(result.scalars().all())
        if not ids:
            return 0

        # Bulk deletes skip ORM cascades
        await self.db.execute(
            delete(NotificationChannel)
            .where(NotificationChannel.notification_id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(
            delete(Notification)
            .where(Notification.id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return len(ids)

    # ============================================================
    # Analytics
    # ============================================================
    async def aggregate(
        self,
        recipient_id: Optional[UUID] = None,
        types: Optional[Sequence[NotificationType]] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Aggregate counts and distributions over the matched notifications.

        Returns:
            Dict with total/read/clicked/dismissed counts and
            by_type, by_priority, by_status, by_channel distributions
        """
        filters = []
        if recipient_id is not None:
            filters.append(Notification.recipient_id == recipient_id)
        if types:
            filters.append(Notification.type.in_(list(types)))
        if start is not None:
            filters.append(Notification.created_at >= start)
        if end is not None:
            filters.append(Notification.created_at <= end)

        totals = (
            await self.db.execute(
                select(
                    func.count(Notification.id),
                    func.count(Notification.read_at),
                    func.count(Notification.clicked_at),
                    func.count(Notification.dismissed_at),
                ).where(*filters)
            )
        ).one()

        by_type = await self._distribution(Notification.type, filters)
        by_priority = await self._distribution(Notification.priority, filters)
        by_status = await self._distribution(Notification.status, filters)

        channel_rows = await self.db.execute(
            select(
                NotificationChannel.channel,
                NotificationChannel.status,
                func.count(NotificationChannel.id),
            )
            .join(Notification, NotificationChannel.notification_id == Notification.id)
            .where(*filters)
            .group_by(NotificationChannel.channel, NotificationChannel.status)
        )
        by_channel: Dict[str, Dict[str, int]] = {}
        for channel, status, count in channel_rows.all():
            by_channel.setdefault(channel.value, {})[status.value] = count

        return {
            "total": totals[0] or 0,
            "read": totals[1] or 0,
            "clicked": totals[2] or 0,
            "dismissed": totals[3] or 0,
            "by_type": by_type,
            "by_priority": by_priority,
            "by_status": by_status,
            "by_channel": by_channel,
        }

    async def _distribution(self, column, filters: list) -> Dict[str, int]:
        result = await self.db.execute(
            select(column, func.count(Notification.id))
            .where(*filters)
            .group_by(column)
        )
        return {value.value: count for value, count in result.all()}
