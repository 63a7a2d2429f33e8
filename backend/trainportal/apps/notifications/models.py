from __future__ import annotations

from datetime import datetime, timezone
import enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)

from trainportal.database import Base
from trainportal.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationType(str, enum.Enum):
    NEW_EDITION = "NEW_EDITION"
    EDITION_DATES_CHANGED = "EDITION_DATES_CHANGED"
    EDITION_CANCELLED = "EDITION_CANCELLED"
    CERTIFICATES_AVAILABLE = "CERTIFICATES_AVAILABLE"
    REMINDER_DEADLINE_7D = "REMINDER_DEADLINE_7D"
    REMINDER_DEADLINE_2D = "REMINDER_DEADLINE_2D"
    CERTIFICATE_EXPIRING_60D = "CERTIFICATE_EXPIRING_60D"
    CERTIFICATE_EXPIRING_30D = "CERTIFICATE_EXPIRING_30D"
    ADMIN_DEADLINE_EXPIRED = "ADMIN_DEADLINE_EXPIRED"


class Audience(str, enum.Enum):
    CLIENT = "CLIENT"
    ADMIN = "ADMIN"


class EmailStatus(str, enum.Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class Notification(Base):
    """
    In-portal notification (bell / inbox).

    Written once per qualifying transition; only `read_at` changes afterwards.
    `fingerprint` identifies the trigger so a retried mutation cannot insert
    the same notification twice.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        UniqueConstraint("fingerprint", name="uq_notifications_fingerprint"),
        Index("ix_notifications_client_created", "client_id", "created_at"),
        Index("ix_notifications_edition_type", "edition_id", "type"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    type = Column(
        SAEnum(NotificationType, name="notification_type_enum", native_enum=False),
        nullable=False,
        index=True,
    )
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    edition_id = Column(
        String(36),
        ForeignKey("course_editions.id", ondelete="SET NULL"),
        nullable=True,
    )
    client_id = Column(String(36), ForeignKey("clients.id", ondelete="CASCADE"), nullable=True)
    is_global = Column(Boolean, nullable=False, default=False)
    fingerprint = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    read_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Notification id={self.id} type={self.type} edition_id={self.edition_id}>"


class EmailLog(Base):
    __tablename__ = "email_logs"
    __table_args__ = (
        Index("ix_email_logs_created", "created_at"),
        Index("ix_email_logs_status", "status"),
        Index("ix_email_logs_type_edition", "type", "edition_id"),
        Index("ix_email_logs_recipient", "recipient_email"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    sent_at = Column(DateTime(timezone=True), nullable=True)

    recipient_email = Column(String(255), nullable=False)
    recipient_name = Column(String(255), nullable=True)
    recipient_id = Column(String(36), nullable=True)
    type = Column(String(64), nullable=False)
    subject = Column(String(255), nullable=False)
    status = Column(
        SAEnum(EmailStatus, name="email_status_enum", native_enum=False),
        nullable=False,
    )
    error_message = Column(Text, nullable=True)
    edition_id = Column(String(36), nullable=True)

    def __repr__(self) -> str:
        return f"<EmailLog id={self.id} recipient={self.recipient_email} status={self.status}>"


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"
    __table_args__ = (UniqueConstraint("type", "audience", name="uq_notification_preferences_type_audience"),)

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    type = Column(String(64), nullable=False)
    audience = Column(
        SAEnum(Audience, name="notification_audience_enum", native_enum=False),
        nullable=False,
    )
    label = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    is_enabled = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
