from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from learnhub_notify.models.notification import NotificationPriority, NotificationType


class PreferenceResponse(BaseModel):
    user_id: UUID
    email_enabled: bool
    push_enabled: bool
    sms_enabled: bool
    muted_types: List[NotificationType] = Field(default_factory=list)
    min_priority: Optional[NotificationPriority] = None

    @field_validator("muted_types", mode="before")
    @classmethod
    def default_muted_types(cls, value):
        return value or []

    class Config:
        from_attributes = True


class PreferenceUpdate(BaseModel):
    """Only provided fields are updated."""

    email_enabled: Optional[bool] = None
    push_enabled: Optional[bool] = None
    sms_enabled: Optional[bool] = None
    muted_types: Optional[List[NotificationType]] = None
    min_priority: Optional[NotificationPriority] = None

    @field_validator("email_enabled", "push_enabled", "sms_enabled")
    @classmethod
    def flag_not_null(cls, value):
        # Omit a flag to keep it; null is not a setting
        if value is None:
            raise ValueError("must be true or false")
        return value
