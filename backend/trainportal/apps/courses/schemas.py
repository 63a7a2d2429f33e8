# backend/trainportal/apps/courses/schemas.py

from __future__ import annotations

import datetime as dt
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from trainportal.apps.notifications.schemas import NotificationRead

from .models import AttendanceStatus, EditionStatus


# ---------------------------------------------------------------------------
# EDITIONS
# ---------------------------------------------------------------------------


class EditionCreate(BaseModel):
    """New editions always start in DRAFT."""

    client_id: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    registration_deadline: Optional[datetime] = None
    notes: Optional[str] = None


class EditionUpdate(BaseModel):
    """
    Partial update. Fields left out, or sent as null, keep their stored value.
    """

    status: Optional[EditionStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    registration_deadline: Optional[datetime] = None
    client_id: Optional[str] = None
    notes: Optional[str] = None


class EditionRead(BaseModel):
    id: str
    course_id: str
    client_id: str
    edition_number: int
    status: EditionStatus
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    registration_deadline: Optional[datetime] = None
    notes: Optional[str] = None
    revision: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class EditionUpdateResult(BaseModel):
    edition: EditionRead
    notifications: List[NotificationRead] = Field(
        default_factory=list,
        description="Notifications created by this update, for UI toast feedback.",
    )


class EditionDeleteResult(BaseModel):
    edition_id: str
    lessons: int
    attendance_records: int
    registrations: int
    certificates: int
    notifications: int
    files_released: int


# ---------------------------------------------------------------------------
# LESSONS
# ---------------------------------------------------------------------------


class LessonCreate(BaseModel):
    date: dt.date
    duration_hours: float = Field(..., gt=0)
    title: Optional[str] = None
    notes: Optional[str] = None


class LessonUpdate(BaseModel):
    date: Optional[dt.date] = None
    duration_hours: Optional[float] = Field(None, gt=0)
    title: Optional[str] = None
    notes: Optional[str] = None


class LessonRead(BaseModel):
    id: str
    edition_id: str
    date: dt.date
    duration_hours: float
    title: Optional[str] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# ATTENDANCE
# ---------------------------------------------------------------------------


class AttendanceEntry(BaseModel):
    lesson_id: str
    employee_id: str
    status: AttendanceStatus
    notes: Optional[str] = None


class AttendanceBulkUpsert(BaseModel):
    records: List[AttendanceEntry] = Field(..., min_length=1)


class AttendanceBulkResult(BaseModel):
    created: int
    updated: int


class AttendanceStatsRead(BaseModel):
    employee_id: str
    employee_name: str
    total_lessons: int
    present: int
    absent: int
    justified: int
    percentage: int
    total_hours: float
    attended_hours: float
    below_minimum: bool


# ---------------------------------------------------------------------------
# CERTIFICATES
# ---------------------------------------------------------------------------


class CertificateEntry(BaseModel):
    employee_id: str
    file_path: str = Field(..., description="Path returned by the storage service for the uploaded PDF.")
    achieved_at: Optional[dt.date] = None
    expires_at: Optional[dt.date] = None


class CertificateRegister(BaseModel):
    certificates: List[CertificateEntry] = Field(..., min_length=1)


class CertificateRead(BaseModel):
    id: str
    edition_id: Optional[str] = None
    employee_id: str
    client_id: str
    file_path: str
    achieved_at: Optional[dt.date] = None
    expires_at: Optional[dt.date] = None

    class Config:
        from_attributes = True


class CertificateRegisterResult(BaseModel):
    certificates: List[CertificateRead]
    warnings: List[AttendanceStatsRead] = Field(
        default_factory=list,
        description="Employees whose attendance is below the minimum (advisory).",
    )
    notifications: List[NotificationRead] = Field(default_factory=list)
