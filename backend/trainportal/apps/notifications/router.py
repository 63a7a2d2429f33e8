from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from trainportal.apps.accounts.models import User
from trainportal.database import get_db
from trainportal.security import get_current_active_user, require_admin

from . import models, schemas
from .dispatcher import NotificationDispatcher, get_dispatcher
from .preferences import PREFERENCE_CATALOG

router = APIRouter(tags=["notifications"])


def _visible_notifications(db: Session, current_user: User):
    qs = db.query(models.Notification)
    if current_user.is_admin:
        return qs
    return qs.filter(
        or_(
            models.Notification.client_id == current_user.client_id,
            models.Notification.is_global.is_(True),
        )
    )


# ---------------------------------------------------------------------------
# INBOX
# ---------------------------------------------------------------------------


@router.get("/notifications", response_model=List[schemas.NotificationRead])
def list_notifications(
    unread_only: bool = False,
    notification_type: Optional[models.NotificationType] = Query(None, alias="type"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    qs = _visible_notifications(db, current_user)
    if unread_only:
        qs = qs.filter(models.Notification.read_at.is_(None))
    if notification_type:
        qs = qs.filter(models.Notification.type == notification_type)
    return (
        qs.order_by(models.Notification.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


@router.get("/notifications/unread-count", response_model=schemas.UnreadCount)
def unread_count(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    count = (
        _visible_notifications(db, current_user)
        .filter(models.Notification.read_at.is_(None))
        .count()
    )
    return schemas.UnreadCount(count=count)


@router.post("/notifications/{notification_id}/read", response_model=schemas.NotificationRead)
def mark_read(
    notification_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    notification = (
        _visible_notifications(db, current_user)
        .filter(models.Notification.id == notification_id)
        .first()
    )
    if not notification:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    if notification.read_at is None:
        notification.read_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(notification)
    return notification


@router.post("/notifications/read-all", response_model=schemas.MarkAllReadResult)
def mark_all_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    now = datetime.now(timezone.utc)
    unread = (
        _visible_notifications(db, current_user)
        .filter(models.Notification.read_at.is_(None))
        .all()
    )
    for notification in unread:
        notification.read_at = now
    db.commit()
    return schemas.MarkAllReadResult(updated=len(unread))


# ---------------------------------------------------------------------------
# ADMIN: EMAIL LOG
# ---------------------------------------------------------------------------


@router.get("/email-logs", response_model=List[schemas.EmailLogRead])
def list_email_logs(
    status_filter: Optional[models.EmailStatus] = Query(None, alias="status"),
    email_type: Optional[str] = Query(None, alias="type"),
    recipient: Optional[str] = None,
    edition_id: Optional[str] = None,
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    qs = db.query(models.EmailLog)
    if status_filter:
        qs = qs.filter(models.EmailLog.status == status_filter)
    if email_type:
        qs = qs.filter(models.EmailLog.type == email_type)
    if recipient:
        qs = qs.filter(models.EmailLog.recipient_email.ilike(f"%{recipient}%"))
    if edition_id:
        qs = qs.filter(models.EmailLog.edition_id == edition_id)
    if start:
        qs = qs.filter(models.EmailLog.created_at >= start)
    if end:
        qs = qs.filter(models.EmailLog.created_at <= end)
    return qs.order_by(models.EmailLog.created_at.desc()).limit(limit).all()


# ---------------------------------------------------------------------------
# ADMIN: PREFERENCE MATRIX
# ---------------------------------------------------------------------------


@router.get("/notification-preferences", response_model=List[schemas.NotificationPreferenceRead])
def list_preferences(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    return dispatcher.gate.list_preferences(db)


@router.put(
    "/notification-preferences/{notification_type}",
    response_model=schemas.NotificationPreferenceRead,
)
def update_preference(
    notification_type: str,
    payload: schemas.NotificationPreferenceUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    audiences = [audience for (type_value, audience) in PREFERENCE_CATALOG if type_value == notification_type]
    if not audiences:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown notification type")
    audience = payload.audience or audiences[0]
    if audience not in audiences:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown notification type")

    pref = dispatcher.gate.set_enabled(db, notification_type, audience, payload.is_enabled)
    db.commit()
    db.refresh(pref)
    # The flush inside set_enabled dropped the cache; drop it again so no
    # reader refilled it from the uncommitted state in between.
    dispatcher.gate.invalidate()
    return pref
