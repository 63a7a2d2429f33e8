# backend/trainportal/apps/courses/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------


class EditionStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    CLOSED = "CLOSED"
    ARCHIVED = "ARCHIVED"


class AttendanceStatus(str, enum.Enum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    JUSTIFIED = "JUSTIFIED"


class RegistrationStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    CONFIRMED = "CONFIRMED"


# ---------------------------------------------------------------------------
# CATALOGUE
# ---------------------------------------------------------------------------


class Course(Base):
    __tablename__ = "courses"

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    title = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    duration_hours = Column(Float, nullable=True)
    min_attendance_percentage = Column(
        Integer,
        nullable=True,
        doc="Overrides ATTENDANCE_MIN_PERCENTAGE for certificate eligibility warnings.",
    )

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    editions = relationship("CourseEdition", back_populates="course", lazy="selectin")


class CourseEdition(Base):
    """
    One scheduled run of a course for one client.

    Dependent rows (lessons, attendance, registrations, certificates,
    notifications) are removed by explicit cleanup in the router, not by a
    database cascade: certificate files have to be released first.
    """

    __tablename__ = "course_editions"
    __table_args__ = (
        UniqueConstraint("course_id", "client_id", "edition_number", name="uq_course_editions_number"),
        Index("ix_course_editions_status_deadline", "status", "registration_deadline"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    course_id = Column(String(36), ForeignKey("courses.id"), nullable=False, index=True)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False, index=True)
    edition_number = Column(Integer, nullable=False, default=1)

    status = Column(
        Enum(EditionStatus, name="edition_status_enum", native_enum=False),
        nullable=False,
        default=EditionStatus.DRAFT,
        index=True,
    )
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    registration_deadline = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    revision = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    course = relationship("Course", back_populates="editions", lazy="joined")
    client = relationship("Client", lazy="joined")
    lessons = relationship(
        "Lesson",
        back_populates="edition",
        order_by="Lesson.date",
        lazy="selectin",
    )
    registrations = relationship("Registration", back_populates="edition", lazy="selectin")

    def __repr__(self) -> str:
        return f"<CourseEdition id={self.id} number={self.edition_number} status={self.status}>"


class Lesson(Base):
    __tablename__ = "lessons"
    __table_args__ = (Index("ix_lessons_edition_date", "edition_id", "date"),)

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    edition_id = Column(String(36), ForeignKey("course_editions.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    duration_hours = Column(Float, nullable=False)
    title = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    edition = relationship("CourseEdition", back_populates="lessons")


# ---------------------------------------------------------------------------
# REGISTRY / ATTENDANCE
# ---------------------------------------------------------------------------


class Employee(Base):
    __tablename__ = "employees"
    __table_args__ = (UniqueConstraint("client_id", "fiscal_code", name="uq_employees_client_fiscal_code"),)

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    fiscal_code = Column(String(16), nullable=False)
    email = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.last_name} {self.first_name}".strip()


class Registration(Base):
    __tablename__ = "registrations"
    __table_args__ = (UniqueConstraint("edition_id", "employee_id", name="uq_registrations_edition_employee"),)

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    edition_id = Column(String(36), ForeignKey("course_editions.id"), nullable=False, index=True)
    employee_id = Column(String(36), ForeignKey("employees.id"), nullable=False, index=True)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False, index=True)
    status = Column(
        Enum(RegistrationStatus, name="registration_status_enum", native_enum=False),
        nullable=False,
        default=RegistrationStatus.DRAFT,
    )
    submitted_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    edition = relationship("CourseEdition", back_populates="registrations")
    employee = relationship("Employee", lazy="joined")


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint("lesson_id", "employee_id", name="uq_attendance_lesson_employee"),
        Index("ix_attendance_edition_employee", "edition_id", "employee_id"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    lesson_id = Column(String(36), ForeignKey("lessons.id"), nullable=False, index=True)
    edition_id = Column(String(36), ForeignKey("course_editions.id"), nullable=False)
    employee_id = Column(String(36), ForeignKey("employees.id"), nullable=False)
    status = Column(
        Enum(AttendanceStatus, name="attendance_status_enum", native_enum=False),
        nullable=False,
    )
    notes = Column(Text, nullable=True)
    recorded_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    recorded_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class Certificate(Base):
    __tablename__ = "certificates"
    __table_args__ = (Index("ix_certificates_expires_at", "expires_at"),)

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    edition_id = Column(String(36), ForeignKey("course_editions.id"), nullable=True, index=True)
    employee_id = Column(String(36), ForeignKey("employees.id"), nullable=False, index=True)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False, index=True)
    file_path = Column(String(512), nullable=False)
    achieved_at = Column(Date, nullable=True)
    expires_at = Column(Date, nullable=True)
    uploaded_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    employee = relationship("Employee", lazy="joined")
    edition = relationship("CourseEdition", lazy="joined")
