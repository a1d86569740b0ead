"""
Notification Endpoints

Endpoints:
----------
- GET    /notifications                  - List the current user's notifications
- GET    /notifications/unread-count     - Unread count
- POST   /notifications                  - Create one notification (instructor/admin)
- POST   /notifications/broadcast        - Broadcast to a group or id list (instructor/admin)
- POST   /notifications/mark-all-read    - Mark all as read
- GET    /notifications/analytics        - Engagement analytics
- GET    /notifications/preferences      - Delivery preferences
- PUT    /notifications/preferences      - Update delivery preferences
- GET    /notifications/{id}             - Get one notification
- POST   /notifications/{id}/read        - Mark as read
- POST   /notifications/{id}/click       - Record a click
- POST   /notifications/{id}/archive     - Dismiss
- POST   /notifications/{id}/action      - Record an action taken
- POST   /notifications/{id}/cancel      - Cancel before delivery (sender/admin)
- POST   /notifications/{id}/reschedule  - Move the delivery time (sender/admin)
- DELETE /notifications/{id}             - Delete
"""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub_notify.db.database import get_db
from learnhub_notify.api.deps import get_current_user, require_privileged
from learnhub_notify.models.user import User
from learnhub_notify.schemas.notification import (
    ActionRequest,
    AnalyticsResponse,
    BroadcastRequest,
    BroadcastResponse,
    MarkAllReadRequest,
    MarkAllReadResponse,
    NotificationCreate,
    NotificationListResponse,
    NotificationResponse,
    RescheduleRequest,
    UnreadCountResponse,
)
from learnhub_notify.schemas.preference import PreferenceResponse, PreferenceUpdate
from learnhub_notify.services.notification_service import NotificationService
from learnhub_notify.services.preference_service import PreferenceService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


# ============================================================
# Listing
# ============================================================
@router.get(
    "",
    response_model=NotificationListResponse,
    summary="List notifications for the current user",
)
async def list_notifications(
    type: Optional[str] = Query(None, description="Notification type or category"),
    unread_only: bool = Query(False),
    page: int = Query(1, description="1-based page number"),
    limit: Optional[int] = Query(None, description="Page size, at most 50"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Newest first. The unread count ignores `unread_only` but honours `type`."""
    service = NotificationService(db)
    result = await service.list_for_recipient(
        current_user.id, type=type, unread_only=unread_only, page=page, limit=limit
    )
    return NotificationListResponse(
        items=[NotificationResponse.model_validate(n) for n in result.items],
        total=result.total,
        unread_count=result.unread_count,
        page=result.page,
        limit=result.limit,
        pages=result.pages,
    )


@router.get(
    "/unread-count",
    response_model=UnreadCountResponse,
    summary="Get unread notification count",
)
async def unread_count(
    type: Optional[str] = Query(None, description="Notification type or category"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    count = await NotificationService(db).unread_count(current_user.id, type=type)
    return UnreadCountResponse(unread_count=count)


# ============================================================
# Create / Broadcast
# ============================================================
@router.post(
    "",
    response_model=NotificationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        201: {"description": "Notification created"},
        403: {"description": "Only instructors and admins can send notifications"},
        404: {"description": "Recipient not found"},
    }
)
async def create_notification(
    data: NotificationCreate,
    current_user: User = Depends(require_privileged),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a notification for one recipient.

    Channels the recipient disabled in their preferences are dropped.
    Notifications due now are queued for immediate delivery.
    """
    service = NotificationService(db)
    fields = data.model_dump(exclude={"recipient_id"})
    notification = await service.create(data.recipient_id, sender_id=current_user.id, **fields)
    await service.queue_delivery(notification)
    return notification


@router.post(
    "/broadcast",
    response_model=BroadcastResponse,
    status_code=status.HTTP_201_CREATED,
)
async def broadcast_notification(
    data: BroadcastRequest,
    current_user: User = Depends(require_privileged),
    db: AsyncSession = Depends(get_db),
):
    """
    Send one notification to every resolved recipient.

    Recipients that fail are reported in the response; the others
    still get theirs. Delivery happens on the worker's next poll.
    """
    service = NotificationService(db)
    fields = data.model_dump(exclude={"recipients"})
    result = await service.broadcast(data.recipients, sender_id=current_user.id, **fields)
    return BroadcastResponse(
        batch_id=result.batch_id,
        requested=result.requested,
        created=result.created,
        failed=result.failed,
        failed_recipients=result.failed_recipients,
    )


@router.post(
    "/mark-all-read",
    response_model=MarkAllReadResponse,
    summary="Mark all notifications as read",
)
async def mark_all_read(
    data: Optional[MarkAllReadRequest] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    data = data or MarkAllReadRequest()
    modified = await NotificationService(db).mark_all_read(
        current_user.id, type=data.type, before=data.before
    )
    return MarkAllReadResponse(modified=modified)


# ============================================================
# Analytics
# ============================================================
@router.get(
    "/analytics",
    response_model=AnalyticsResponse,
)
async def notification_analytics(
    recipient_id: Optional[UUID] = Query(None, description="Admins only, omit for the whole platform"),
    type: Optional[str] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Read and click rates plus distributions.

    Non-admins only see their own notifications.
    """
    scope = NotificationService.analytics_scope(current_user, recipient_id)
    stats = await NotificationService(db).analytics(
        recipient_id=scope, type=type, start=start, end=end
    )
    return AnalyticsResponse(**stats)


# ============================================================
# Preferences
# ============================================================
@router.get("/preferences", response_model=PreferenceResponse)
async def get_preferences(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await PreferenceService(db).get(current_user.id)


@router.put("/preferences", response_model=PreferenceResponse)
async def update_preferences(
    data: PreferenceUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await PreferenceService(db).update(current_user.id, data)


# ============================================================
# Single notification
# ============================================================
@router.get("/{notification_id}", response_model=NotificationResponse)
async def get_notification(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await NotificationService(db).get_for_recipient(notification_id, current_user)


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await NotificationService(db).mark_as_read(notification_id, current_user)


@router.post("/{notification_id}/click", response_model=NotificationResponse)
async def mark_clicked(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await NotificationService(db).mark_as_clicked(notification_id, current_user)


@router.post("/{notification_id}/archive", response_model=NotificationResponse)
async def archive_notification(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await NotificationService(db).dismiss(notification_id, current_user)


@router.post("/{notification_id}/action", response_model=NotificationResponse)
async def take_action(
    notification_id: UUID,
    data: ActionRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await NotificationService(db).take_action(
        notification_id, current_user, data.action, data.metadata
    )


@router.post(
    "/{notification_id}/cancel",
    response_model=NotificationResponse,
    responses={409: {"description": "Notification is no longer pending"}},
)
async def cancel_notification(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await NotificationService(db).cancel(notification_id, current_user)


@router.post("/{notification_id}/reschedule", response_model=NotificationResponse)
async def reschedule_notification(
    notification_id: UUID,
    data: RescheduleRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Move the delivery time. Every channel goes back to pending."""
    return await NotificationService(db).reschedule(
        notification_id, current_user, data.scheduled_for
    )


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await NotificationService(db).delete(notification_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
