from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Index, String

from trainportal.database import Base
from trainportal.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEvent(Base):
    __tablename__ = "audit_events"
    __table_args__ = (Index("ix_audit_events_entity", "entity_type", "entity_id", "occurred_at"),)

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    entity_type = Column(String(64), nullable=False)
    entity_id = Column(String(36), nullable=False)
    action = Column(String(64), nullable=False)
    actor_user_id = Column(String(36), nullable=True)
    before = Column(JSON, nullable=True)
    after = Column(JSON, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
