from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from .models import Audience, EmailStatus, NotificationType


class NotificationRead(BaseModel):
    id: str
    type: NotificationType
    title: str
    message: str
    edition_id: Optional[str] = None
    is_global: bool
    created_at: datetime
    read_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UnreadCount(BaseModel):
    count: int


class MarkAllReadResult(BaseModel):
    updated: int


class EmailLogRead(BaseModel):
    id: str
    recipient_email: str
    recipient_name: Optional[str] = None
    type: str
    subject: str
    status: EmailStatus
    error_message: Optional[str] = None
    edition_id: Optional[str] = None
    created_at: datetime
    sent_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class NotificationPreferenceRead(BaseModel):
    id: str
    type: str
    audience: Audience
    label: str
    description: Optional[str] = None
    is_enabled: bool
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class NotificationPreferenceUpdate(BaseModel):
    audience: Optional[Audience] = None
    is_enabled: bool
