# backend/trainportal/apps/accounts/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Index, String
from sqlalchemy.orm import relationship

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccountRole(str, enum.Enum):
    ADMIN = "ADMIN"
    CLIENT = "CLIENT"


class Client(Base):
    """
    A customer company that buys training editions.

    The referent is the person who receives client-audience emails
    (new editions, reminders, certificates).
    """

    __tablename__ = "clients"

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    company_name = Column(String(255), nullable=False, index=True)
    vat_number = Column(String(32), nullable=True, unique=True)
    referent_name = Column(String(255), nullable=True)
    referent_email = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    users = relationship("User", back_populates="client", lazy="selectin")

    @property
    def display_name(self) -> str:
        return (self.referent_name or "").strip() or self.company_name

    def __repr__(self) -> str:
        return f"<Client id={self.id} company_name={self.company_name!r}>"


class User(Base):
    """
    Portal account.

    ADMIN users run the training catalogue; CLIENT users are scoped to
    their client and only see that client's editions and notifications.
    """

    __tablename__ = "users"
    __table_args__ = (Index("ix_users_role_active", "role", "is_active"),)

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    email = Column(String(255), nullable=False, unique=True, index=True)
    full_name = Column(String(255), nullable=True)
    hashed_password = Column(String(255), nullable=True)
    role = Column(
        Enum(AccountRole, name="account_role_enum", native_enum=False),
        nullable=False,
        default=AccountRole.CLIENT,
    )
    client_id = Column(
        String(36),
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    client = relationship("Client", back_populates="users")

    @property
    def is_admin(self) -> bool:
        return self.role == AccountRole.ADMIN

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email} role={self.role}>"
