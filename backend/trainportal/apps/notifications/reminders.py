from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from trainportal.apps.accounts import models as account_models
from trainportal.apps.courses import models as course_models
from trainportal.utils.dates import normalize_instant

from . import models, templates
from .dispatcher import DispatchResult, NotificationDispatcher

logger = logging.getLogger(__name__)

NotificationType = models.NotificationType

DEADLINE_REMINDERS = {
    7: NotificationType.REMINDER_DEADLINE_7D,
    2: NotificationType.REMINDER_DEADLINE_2D,
}
CERTIFICATE_REMINDERS = {
    60: NotificationType.CERTIFICATE_EXPIRING_60D,
    30: NotificationType.CERTIFICATE_EXPIRING_30D,
}


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _registered_count(db: Session, edition_id: str) -> int:
    return (
        db.query(func.count(course_models.Registration.id))
        .filter(course_models.Registration.edition_id == edition_id)
        .scalar()
        or 0
    )


def _deadline_reminders(
    db: Session,
    dispatcher: NotificationDispatcher,
    today: date,
) -> DispatchResult:
    result = DispatchResult()
    window_start = _day_start(today - timedelta(days=1))
    window_end = _day_start(today + timedelta(days=max(DEADLINE_REMINDERS) + 1))
    editions = (
        db.query(course_models.CourseEdition)
        .filter(
            course_models.CourseEdition.status == course_models.EditionStatus.PUBLISHED,
            course_models.CourseEdition.registration_deadline.isnot(None),
            course_models.CourseEdition.registration_deadline >= window_start,
            course_models.CourseEdition.registration_deadline < window_end,
        )
        .all()
    )

    admins = None
    for edition in editions:
        deadline = normalize_instant(edition.registration_deadline)
        days_remaining = (deadline.date() - today).days
        client = edition.client
        course_title = edition.course.title if edition.course else "Course"

        if days_remaining in DEADLINE_REMINDERS:
            if client is None or not client.is_active:
                continue
            rendered = templates.deadline_reminder(
                course_title=course_title,
                edition_number=edition.edition_number,
                registration_deadline=deadline,
                days_remaining=days_remaining,
                registered_count=_registered_count(db, edition.id),
                recipient_name=client.display_name,
            )
            result.extend(
                dispatcher.notify(
                    db,
                    notification_type=DEADLINE_REMINDERS[days_remaining],
                    rendered=rendered,
                    client=client,
                    edition_id=edition.id,
                    trigger_key=today.isoformat(),
                )
            )
        elif days_remaining == -1:
            if _admin_email_logged(db, edition.id):
                continue
            if admins is None:
                admins = (
                    db.query(account_models.User)
                    .filter(
                        account_models.User.role == account_models.AccountRole.ADMIN,
                        account_models.User.is_active.is_(True),
                    )
                    .all()
                )
            registered = _registered_count(db, edition.id)
            client_name = client.company_name if client is not None else "-"

            def build(admin, edition=edition, registered=registered, client_name=client_name,
                      course_title=course_title, deadline=deadline):
                return templates.admin_deadline_expired(
                    client_name=client_name,
                    course_title=course_title,
                    edition_number=edition.edition_number,
                    registration_deadline=deadline,
                    registered_count=registered,
                    recipient_name=admin.full_name,
                )

            result.extend(
                dispatcher.admin_emails(
                    db,
                    notification_type=NotificationType.ADMIN_DEADLINE_EXPIRED,
                    admins=admins,
                    build=build,
                    edition_id=edition.id,
                )
            )
    return result


def _admin_email_logged(db: Session, edition_id: str) -> bool:
    # Admin notices are email-only, so the email log is their dedup record.
    return (
        db.query(models.EmailLog.id)
        .filter(
            models.EmailLog.type == NotificationType.ADMIN_DEADLINE_EXPIRED.value,
            models.EmailLog.edition_id == edition_id,
        )
        .first()
        is not None
    )


def _certificate_reminders(
    db: Session,
    dispatcher: NotificationDispatcher,
    today: date,
) -> DispatchResult:
    result = DispatchResult()
    for days_remaining, notification_type in CERTIFICATE_REMINDERS.items():
        target = today + timedelta(days=days_remaining)
        certificates = (
            db.query(course_models.Certificate)
            .filter(course_models.Certificate.expires_at == target)
            .all()
        )
        for certificate in certificates:
            client = db.get(account_models.Client, certificate.client_id)
            if client is None or not client.is_active:
                continue
            edition = certificate.edition
            course_title = "Course"
            if edition is not None and edition.course is not None:
                course_title = edition.course.title
            employee_name = certificate.employee.full_name if certificate.employee else "-"
            rendered = templates.certificate_expiring(
                employee_name=employee_name,
                course_title=course_title,
                expires_at=certificate.expires_at,
                days_remaining=days_remaining,
                recipient_name=client.display_name,
            )
            result.extend(
                dispatcher.notify(
                    db,
                    notification_type=notification_type,
                    rendered=rendered,
                    client=client,
                    edition_id=certificate.edition_id,
                    fingerprint_edition_id=f"certificate:{certificate.id}",
                    trigger_key=today.isoformat(),
                )
            )
    return result


def run_reminders(
    db: Session,
    dispatcher: NotificationDispatcher,
    today: Optional[date] = None,
) -> DispatchResult:
    """
    Scheduled reminders for one calendar day.

    Writes notification rows in `db` (caller commits) and returns the email
    jobs for the caller to schedule after commit. Re-running on the same day
    does not duplicate notifications.
    """
    today = today or datetime.now(timezone.utc).date()
    result = DispatchResult()
    result.extend(_deadline_reminders(db, dispatcher, today))
    result.extend(_certificate_reminders(db, dispatcher, today))
    logger.info(
        "Reminder run complete",
        extra={
            "day": today.isoformat(),
            "notifications": len(result.notifications),
            "emails": len(result.emails),
        },
    )
    return result
