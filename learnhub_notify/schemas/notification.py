"""
Notification Schemas
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from learnhub_notify.models.notification import (
    ChannelStatus,
    ChannelType,
    NotificationPriority,
    NotificationStatus,
    NotificationType,
    MESSAGE_MAX_LENGTH,
    SHORT_MESSAGE_MAX_LENGTH,
    TITLE_MAX_LENGTH,
)


# ============================================================
# Shared
# ============================================================

class NotificationContext(BaseModel):
    """References to the platform objects a notification is about."""

    course_id: Optional[UUID] = None
    assignment_id: Optional[UUID] = None
    discussion_id: Optional[UUID] = None
    certificate_id: Optional[UUID] = None
    learning_path_id: Optional[UUID] = None
    related_url: Optional[str] = Field(None, max_length=500)
    metadata: Dict[str, str] = Field(default_factory=dict)


class Attachment(BaseModel):
    file_name: str = Field(..., min_length=1, max_length=255)
    file_url: str = Field(..., max_length=500)
    mime_type: Optional[str] = Field(None, max_length=100)


class ActionButton(BaseModel):
    text: str = Field(..., min_length=1, max_length=50)
    url: str = Field(..., max_length=500)
    style: Literal["primary", "secondary", "success", "warning", "danger"] = "primary"


class RichContent(BaseModel):
    """
    Optional rich rendering of a notification.

    `message` stays the plain-text body every channel can fall back to.
    """

    html: Optional[str] = Field(None, max_length=10000)
    markdown: Optional[str] = Field(None, max_length=10000)
    attachments: List[Attachment] = Field(default_factory=list, max_length=10)
    action_buttons: List[ActionButton] = Field(default_factory=list, max_length=5)


class Personalization(BaseModel):
    """Display names resolved by the sender at creation time."""

    user_name: Optional[str] = Field(None, max_length=200)
    course_name: Optional[str] = Field(None, max_length=200)
    instructor_name: Optional[str] = Field(None, max_length=200)
    custom_data: Dict[str, str] = Field(default_factory=dict)


RecipientGroup = Literal["all", "students", "instructors", "admins"]


# ============================================================
# Request Schemas (What client sends)
# ============================================================

class NotificationContent(BaseModel):
    """Fields shared by single and broadcast creation."""

    type: NotificationType
    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH)
    message: str = Field(..., min_length=1, max_length=MESSAGE_MAX_LENGTH)
    short_message: Optional[str] = Field(None, max_length=SHORT_MESSAGE_MAX_LENGTH)
    priority: NotificationPriority = NotificationPriority.NORMAL
    context: Optional[NotificationContext] = None
    content: Optional[RichContent] = None
    personalization: Optional[Personalization] = None
    channels: Optional[List[ChannelType]] = Field(
        None,
        description="Delivery channels, defaults to in-app only",
    )
    scheduled_for: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    group_id: Optional[str] = Field(None, max_length=100)

    @field_validator("title")
    @classmethod
    def normalize_title(cls, value: str) -> str:
        """Trim whitespace and ensure title is not empty."""
        normalized = value.strip()
        if not normalized:
            raise ValueError("Title cannot be empty")
        return normalized


class NotificationCreate(NotificationContent):
    """Schema for creating a notification for one recipient."""

    recipient_id: UUID

    class Config:
        json_schema_extra = {
            "example": {
                "recipient_id": "550e8400-e29b-41d4-a716-446655440000",
                "type": "assignment_due_soon",
                "title": "Assignment Due Soon",
                "message": "Assignment \"Essay 2\" is due in 24 hours",
                "priority": "high",
                "channels": ["in_app", "email"],
            }
        }


class BroadcastRequest(NotificationContent):
    """Schema for broadcasting one notification to many recipients."""

    recipients: Union[RecipientGroup, List[UUID]] = Field(
        ...,
        description="'all', 'students', 'instructors', 'admins' or a list of user ids",
    )

    class Config:
        json_schema_extra = {
            "example": {
                "recipients": "students",
                "type": "announcement",
                "title": "Scheduled maintenance",
                "message": "The platform will be unavailable on Sunday 02:00-03:00 UTC.",
                "priority": "normal",
            }
        }


class MarkAllReadRequest(BaseModel):
    type: Optional[str] = Field(None, description="Notification type or category")
    before: Optional[datetime] = None


class ActionRequest(BaseModel):
    action: str = Field(..., min_length=1, max_length=100)
    metadata: Dict[str, str] = Field(default_factory=dict)


class RescheduleRequest(BaseModel):
    scheduled_for: datetime


# ============================================================
# Response Schemas (What server sends back)
# ============================================================

class ChannelResponse(BaseModel):
    channel: ChannelType
    status: ChannelStatus
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    external_id: Optional[str] = None

    class Config:
        from_attributes = True


class NotificationResponse(BaseModel):
    """Schema for notification data returned from the API."""

    id: UUID
    recipient_id: UUID
    sender_id: Optional[UUID] = None
    type: NotificationType
    priority: NotificationPriority
    status: NotificationStatus
    title: str
    message: str
    short_message: str
    course_id: Optional[UUID] = None
    assignment_id: Optional[UUID] = None
    discussion_id: Optional[UUID] = None
    certificate_id: Optional[UUID] = None
    learning_path_id: Optional[UUID] = None
    related_url: Optional[str] = None
    metadata: Optional[Dict[str, str]] = Field(None, validation_alias="extra_data")
    content: Optional[RichContent] = None
    personalization: Optional[Personalization] = None
    channels: List[ChannelResponse] = Field(default_factory=list)
    scheduled_for: Optional[datetime] = None
    expires_at: datetime
    read_at: Optional[datetime] = None
    clicked_at: Optional[datetime] = None
    dismissed_at: Optional[datetime] = None
    action_taken: Optional[str] = None
    action_taken_at: Optional[datetime] = None
    group_id: Optional[str] = None
    batch_id: Optional[str] = None
    is_read: bool = False
    created_at: datetime
    updated_at: datetime

    @field_validator("channels", mode="before")
    @classmethod
    def channels_as_list(cls, value):
        """Channels are stored keyed by type; the API returns them as a list."""
        if isinstance(value, dict):
            return list(value.values())
        return value

    class Config:
        from_attributes = True


class NotificationListResponse(BaseModel):
    items: List[NotificationResponse]
    total: int
    unread_count: int
    page: int
    limit: int
    pages: int


class UnreadCountResponse(BaseModel):
    unread_count: int


class MarkAllReadResponse(BaseModel):
    modified: int


class BroadcastResponse(BaseModel):
    batch_id: str
    requested: int
    created: int
    failed: int
    failed_recipients: List[str] = Field(default_factory=list)


class AnalyticsResponse(BaseModel):
    total: int
    read: int
    clicked: int
    dismissed: int
    read_rate: float
    click_rate: float
    type_distribution: Dict[str, int]
    priority_distribution: Dict[str, int]
    status_distribution: Dict[str, int]
    channel_distribution: Dict[str, Dict[str, int]]
