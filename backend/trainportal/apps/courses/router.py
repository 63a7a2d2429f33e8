# backend/trainportal/apps/courses/router.py

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy import func
from sqlalchemy.orm import Session

from trainportal.apps.accounts import models as account_models
from trainportal.apps.audit import services as audit_services
from trainportal.apps.notifications import models as notification_models
from trainportal.apps.notifications import templates
from trainportal.apps.notifications.dispatcher import (
    EditionSnapshot,
    NotificationDispatcher,
    get_dispatcher,
)
from trainportal.apps.notifications.schemas import NotificationRead
from trainportal.apps.workflow import EditionState, TransitionError, apply_update, validate_new_edition
from trainportal.database import get_db
from trainportal.security import ensure_client_scope, get_current_active_user, require_admin

from . import attendance, models, schemas, storage

logger = logging.getLogger(__name__)

router = APIRouter(tags=["courses"])

_ERROR_STATUS = {"edition_archived": status.HTTP_403_FORBIDDEN}


# ---------------------------------------------------------------------------
# HELPERS
# ---------------------------------------------------------------------------


def _transition_error_response(exc: TransitionError) -> JSONResponse:
    return JSONResponse(
        status_code=_ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST),
        content={"error": exc.code, "detail": exc.detail},
    )


def _get_course(db: Session, course_id: str) -> models.Course:
    course = db.get(models.Course, course_id)
    if not course:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Course not found")
    return course


def _get_client(db: Session, client_id: str) -> account_models.Client:
    client = db.get(account_models.Client, client_id)
    if not client:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found")
    return client


def _get_edition(
    db: Session,
    course_id: str,
    edition_id: str,
    *,
    for_update: bool = False,
) -> models.CourseEdition:
    qs = db.query(models.CourseEdition).filter(
        models.CourseEdition.id == edition_id,
        models.CourseEdition.course_id == course_id,
    )
    if for_update:
        qs = qs.with_for_update(of=models.CourseEdition)
    edition = qs.first()
    if not edition:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Edition not found")
    return edition


def _get_edition_by_id(db: Session, edition_id: str) -> models.CourseEdition:
    edition = db.get(models.CourseEdition, edition_id)
    if not edition:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Edition not found")
    return edition


def _ensure_not_archived(edition: models.CourseEdition) -> None:
    if edition.status == models.EditionStatus.ARCHIVED:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Archived editions cannot be modified",
        )


def _next_edition_number(db: Session, course_id: str, client_id: str) -> int:
    current = (
        db.query(func.max(models.CourseEdition.edition_number))
        .filter(
            models.CourseEdition.course_id == course_id,
            models.CourseEdition.client_id == client_id,
        )
        .scalar()
    )
    return (current or 0) + 1


def _lesson_has_attendance(db: Session, lesson_id: str) -> bool:
    return (
        db.query(models.AttendanceRecord.id)
        .filter(models.AttendanceRecord.lesson_id == lesson_id)
        .first()
        is not None
    )


def _roster(db: Session, edition: models.CourseEdition) -> Dict[str, str]:
    """Registered employees of an edition, id -> display name, sorted by name."""
    registrations = (
        db.query(models.Registration)
        .filter(models.Registration.edition_id == edition.id)
        .all()
    )
    pairs = [
        (registration.employee_id, registration.employee.full_name if registration.employee else registration.employee_id)
        for registration in registrations
    ]
    return dict(sorted(pairs, key=lambda pair: pair[1].lower()))


def _edition_stats(db: Session, edition: models.CourseEdition) -> List[attendance.AttendanceStats]:
    lessons = (
        db.query(models.Lesson)
        .filter(models.Lesson.edition_id == edition.id)
        .order_by(models.Lesson.date)
        .all()
    )
    records = (
        db.query(models.AttendanceRecord)
        .filter(models.AttendanceRecord.edition_id == edition.id)
        .all()
    )
    roster = _roster(db, edition)
    extra_ids = {record.employee_id for record in records} - set(roster)
    if extra_ids:
        for employee in db.query(models.Employee).filter(models.Employee.id.in_(extra_ids)).all():
            roster[employee.id] = employee.full_name
    return attendance.compute_stats(
        lessons,
        records,
        attendance.effective_minimum(edition.course),
        employees=roster,
    )


def _notification_reads(notifications) -> List[NotificationRead]:
    return [NotificationRead.model_validate(notification) for notification in notifications]


# ---------------------------------------------------------------------------
# EDITIONS
# ---------------------------------------------------------------------------


@router.post(
    "/courses/{course_id}/editions",
    response_model=schemas.EditionRead,
    status_code=status.HTTP_201_CREATED,
)
def create_edition(
    course_id: str,
    payload: schemas.EditionCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_admin),
):
    _get_course(db, course_id)
    _get_client(db, payload.client_id)

    state = EditionState(
        status=models.EditionStatus.DRAFT,
        client_id=payload.client_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        registration_deadline=payload.registration_deadline,
        notes=payload.notes,
    )
    try:
        validate_new_edition(state)
    except TransitionError as exc:
        return _transition_error_response(exc)

    edition = models.CourseEdition(
        course_id=course_id,
        client_id=payload.client_id,
        edition_number=_next_edition_number(db, course_id, payload.client_id),
        status=models.EditionStatus.DRAFT,
        start_date=state.start_date,
        end_date=state.end_date,
        registration_deadline=state.registration_deadline,
        notes=state.notes,
        revision=0,
    )
    db.add(edition)
    db.commit()
    db.refresh(edition)
    return schemas.EditionRead.model_validate(edition)


@router.get("/courses/{course_id}/editions/{edition_id}", response_model=schemas.EditionRead)
def get_edition(
    course_id: str,
    edition_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    edition = _get_edition(db, course_id, edition_id)
    ensure_client_scope(current_user, edition.client_id)
    return schemas.EditionRead.model_validate(edition)


@router.put(
    "/courses/{course_id}/editions/{edition_id}",
    response_model=schemas.EditionUpdateResult,
)
def update_edition(
    course_id: str,
    edition_id: str,
    payload: schemas.EditionUpdate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_admin),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    # Fresh read under a row lock: two admins racing on the same edition
    # serialise here, so the archived check sees the committed status.
    edition = _get_edition(db, course_id, edition_id, for_update=True)
    current = EditionState.from_model(edition)

    try:
        new_state, descriptor = apply_update(current, payload.model_dump(exclude_unset=True))
    except TransitionError as exc:
        db.rollback()
        logger.info(
            "Edition update rejected",
            extra={"edition_id": edition_id, "code": exc.code},
        )
        return _transition_error_response(exc)

    client = _get_client(db, new_state.client_id)
    if descriptor.client_changed:
        edition.edition_number = _next_edition_number(db, course_id, new_state.client_id)

    edition.status = new_state.status
    edition.client_id = new_state.client_id
    edition.start_date = new_state.start_date
    edition.end_date = new_state.end_date
    edition.registration_deadline = new_state.registration_deadline
    edition.notes = new_state.notes
    edition.revision = new_state.revision
    db.flush()

    result = dispatcher.on_edition_transition(db, descriptor, edition, client)

    audit_services.log_event(
        db,
        actor_user_id=current_user.id,
        entity_type="course_edition",
        entity_id=edition.id,
        action="update",
        before=current.as_dict(),
        after=new_state.as_dict(),
        metadata={
            "revision": new_state.revision,
            "notifications": [notification.type.value for notification in result.notifications],
        },
    )
    db.commit()
    dispatcher.schedule_emails(result.emails)

    db.refresh(edition)
    return schemas.EditionUpdateResult(
        edition=schemas.EditionRead.model_validate(edition),
        notifications=_notification_reads(result.notifications),
    )


@router.delete(
    "/courses/{course_id}/editions/{edition_id}",
    response_model=schemas.EditionDeleteResult,
)
def delete_edition(
    course_id: str,
    edition_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_admin),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Remove an edition and everything hanging off it.

    Certificate files are released before any row is deleted; a file that
    cannot be released is logged and left behind. A PUBLISHED edition tells
    its client it was cancelled.
    """
    edition = _get_edition(db, course_id, edition_id, for_update=True)
    snapshot = EditionSnapshot.from_model(edition)
    client = edition.client
    before = EditionState.from_model(edition).as_dict()

    certificates = (
        db.query(models.Certificate)
        .filter(models.Certificate.edition_id == edition_id)
        .all()
    )
    files_released = storage.release_certificate_files(cert.file_path for cert in certificates)

    counts = {
        "attendance_records": db.query(models.AttendanceRecord)
        .filter(models.AttendanceRecord.edition_id == edition_id)
        .delete(synchronize_session=False),
        "lessons": db.query(models.Lesson)
        .filter(models.Lesson.edition_id == edition_id)
        .delete(synchronize_session=False),
        "registrations": db.query(models.Registration)
        .filter(models.Registration.edition_id == edition_id)
        .delete(synchronize_session=False),
        "certificates": db.query(models.Certificate)
        .filter(models.Certificate.edition_id == edition_id)
        .delete(synchronize_session=False),
        "notifications": db.query(notification_models.Notification)
        .filter(notification_models.Notification.edition_id == edition_id)
        .delete(synchronize_session=False),
    }
    db.query(models.CourseEdition).filter(models.CourseEdition.id == edition_id).delete(
        synchronize_session=False
    )
    db.expunge(edition)

    result = dispatcher.on_edition_deleted(db, snapshot, client)

    audit_services.log_event(
        db,
        actor_user_id=current_user.id,
        entity_type="course_edition",
        entity_id=edition_id,
        action="delete",
        before=before,
        metadata={**counts, "files_released": files_released},
    )
    db.commit()
    dispatcher.schedule_emails(result.emails)

    return schemas.EditionDeleteResult(edition_id=edition_id, files_released=files_released, **counts)


# ---------------------------------------------------------------------------
# LESSONS
# ---------------------------------------------------------------------------


@router.get("/editions/{edition_id}/lessons", response_model=List[schemas.LessonRead])
def list_lessons(
    edition_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    edition = _get_edition_by_id(db, edition_id)
    ensure_client_scope(current_user, edition.client_id)
    return (
        db.query(models.Lesson)
        .filter(models.Lesson.edition_id == edition_id)
        .order_by(models.Lesson.date)
        .all()
    )


@router.post(
    "/editions/{edition_id}/lessons",
    response_model=schemas.LessonRead,
    status_code=status.HTTP_201_CREATED,
)
def create_lesson(
    edition_id: str,
    payload: schemas.LessonCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_admin),
):
    edition = _get_edition_by_id(db, edition_id)
    _ensure_not_archived(edition)

    lesson = models.Lesson(edition_id=edition_id, **payload.model_dump())
    db.add(lesson)
    db.commit()
    db.refresh(lesson)
    return lesson


def _get_mutable_lesson(db: Session, edition_id: str, lesson_id: str) -> models.Lesson:
    edition = _get_edition_by_id(db, edition_id)
    _ensure_not_archived(edition)
    lesson = (
        db.query(models.Lesson)
        .filter(models.Lesson.id == lesson_id, models.Lesson.edition_id == edition_id)
        .first()
    )
    if not lesson:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lesson not found")
    if _lesson_has_attendance(db, lesson_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Lesson has recorded attendance and can no longer be changed",
        )
    return lesson


@router.put("/editions/{edition_id}/lessons/{lesson_id}", response_model=schemas.LessonRead)
def update_lesson(
    edition_id: str,
    lesson_id: str,
    payload: schemas.LessonUpdate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_admin),
):
    lesson = _get_mutable_lesson(db, edition_id, lesson_id)
    for key, value in payload.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(lesson, key, value)
    db.commit()
    db.refresh(lesson)
    return lesson


@router.delete(
    "/editions/{edition_id}/lessons/{lesson_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_lesson(
    edition_id: str,
    lesson_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_admin),
):
    lesson = _get_mutable_lesson(db, edition_id, lesson_id)
    db.delete(lesson)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# ATTENDANCE
# ---------------------------------------------------------------------------


@router.post("/editions/{edition_id}/attendance", response_model=schemas.AttendanceBulkResult)
def upsert_attendance(
    edition_id: str,
    payload: schemas.AttendanceBulkUpsert,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_admin),
):
    edition = _get_edition_by_id(db, edition_id)
    _ensure_not_archived(edition)

    lesson_ids = {
        row.id for row in db.query(models.Lesson.id).filter(models.Lesson.edition_id == edition_id).all()
    }
    registered = set(_roster(db, edition))

    unknown_lessons = sorted({entry.lesson_id for entry in payload.records} - lesson_ids)
    unknown_employees = sorted({entry.employee_id for entry in payload.records} - registered)
    if unknown_lessons or unknown_employees:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "unknown_lessons": unknown_lessons,
                "unknown_employees": unknown_employees,
            },
        )

    existing = {
        (record.lesson_id, record.employee_id): record
        for record in db.query(models.AttendanceRecord)
        .filter(models.AttendanceRecord.edition_id == edition_id)
        .all()
    }
    now = datetime.now(timezone.utc)
    created = updated = 0
    for entry in payload.records:
        record = existing.get((entry.lesson_id, entry.employee_id))
        if record is None:
            record = models.AttendanceRecord(
                lesson_id=entry.lesson_id,
                edition_id=edition_id,
                employee_id=entry.employee_id,
            )
            db.add(record)
            existing[(entry.lesson_id, entry.employee_id)] = record
            created += 1
        else:
            updated += 1
        record.status = entry.status
        record.notes = entry.notes
        record.recorded_by_user_id = current_user.id
        record.recorded_at = now
    db.commit()
    return schemas.AttendanceBulkResult(created=created, updated=updated)


@router.get(
    "/editions/{edition_id}/attendance/stats",
    response_model=List[schemas.AttendanceStatsRead],
)
def attendance_stats(
    edition_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    edition = _get_edition_by_id(db, edition_id)
    ensure_client_scope(current_user, edition.client_id)
    return [schemas.AttendanceStatsRead(**row.as_dict()) for row in _edition_stats(db, edition)]


# ---------------------------------------------------------------------------
# CERTIFICATES
# ---------------------------------------------------------------------------


@router.post(
    "/editions/{edition_id}/certificates",
    response_model=schemas.CertificateRegisterResult,
    status_code=status.HTTP_201_CREATED,
)
def register_certificates(
    edition_id: str,
    payload: schemas.CertificateRegister,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_admin),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Record already-stored certificate files for registered employees.

    Attendance below the minimum is reported back as a warning; it never
    blocks the upload.
    """
    edition = _get_edition_by_id(db, edition_id)
    registered = set(_roster(db, edition))
    unknown = sorted({entry.employee_id for entry in payload.certificates} - registered)
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"unknown_employees": unknown},
        )

    certificates: List[models.Certificate] = []
    for entry in payload.certificates:
        certificate = models.Certificate(
            edition_id=edition_id,
            employee_id=entry.employee_id,
            client_id=edition.client_id,
            file_path=entry.file_path,
            achieved_at=entry.achieved_at,
            expires_at=entry.expires_at,
            uploaded_by_user_id=current_user.id,
        )
        db.add(certificate)
        certificates.append(certificate)
    db.flush()

    batch_employees = {entry.employee_id for entry in payload.certificates}
    warnings = [
        row
        for row in _edition_stats(db, edition)
        if row.below_minimum and row.employee_id in batch_employees
    ]

    client: Optional[account_models.Client] = edition.client
    rendered = templates.certificates_available(
        course_title=edition.course.title if edition.course else "Course",
        edition_number=edition.edition_number,
        certificate_count=len(certificates),
        recipient_name=client.display_name if client else None,
    )
    result = dispatcher.notify(
        db,
        notification_type=notification_models.NotificationType.CERTIFICATES_AVAILABLE,
        rendered=rendered,
        client=client,
        edition_id=edition_id,
        trigger_key=certificates[-1].id,
    )
    db.commit()
    dispatcher.schedule_emails(result.emails)

    return schemas.CertificateRegisterResult(
        certificates=[schemas.CertificateRead.model_validate(cert) for cert in certificates],
        warnings=[schemas.AttendanceStatsRead(**row.as_dict()) for row in warnings],
        notifications=_notification_reads(result.notifications),
    )
