from sqlalchemy import Column, Boolean, ForeignKey, JSON, Uuid
from sqlalchemy.orm import relationship
from .base import BaseModel
from .notification import NotificationPriority, _enum_column


class NotificationPreference(BaseModel):
    __tablename__ = "notification_preferences"

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)
    email_enabled = Column(Boolean, default=True, nullable=False)
    push_enabled = Column(Boolean, default=True, nullable=False)
    sms_enabled = Column(Boolean, default=False, nullable=False)
    muted_types = Column(JSON, nullable=True)  # ["discussion_like", ...]
    min_priority = Column(_enum_column(NotificationPriority, "notification_priority"), nullable=True)

    user = relationship("User", back_populates="notification_preference")
