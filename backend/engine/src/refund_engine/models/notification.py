"""Outbound notification log model."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import NotificationStatus, NotificationTemplate


class NotificationRecord(BaseModel):
    """Audit entry for a notification handed to the delivery collaborator."""

    notification_id: str
    template_id: NotificationTemplate
    recipient_id: str
    recipient_email: str | None = None
    subject: str
    data: dict[str, Any] = Field(default_factory=dict)
    status: NotificationStatus = NotificationStatus.PENDING
    error: str | None = None
    created_at: datetime
    sent_at: datetime | None = None
