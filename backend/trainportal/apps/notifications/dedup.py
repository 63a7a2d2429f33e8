from __future__ import annotations

import hashlib
from typing import Optional

from sqlalchemy.orm import Session

from . import models


def fingerprint(edition_id: Optional[str], notification_type, trigger_key) -> str:
    """sha256 over ``edition_id|type|trigger_key``; trigger_key is the revision, "deleted" or a day."""
    type_value = getattr(notification_type, "value", notification_type)
    raw = f"{edition_id or ''}|{type_value}|{trigger_key}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def should_fire(
    db: Session,
    edition_id: Optional[str],
    notification_type,
    fingerprint_value: str,
) -> bool:
    """
    False when a notification with this fingerprint already exists.

    Rules only fire on transition edges, so this is the second line: it stops
    a retried request (same revision) or a re-run reminder job from firing
    again. The unique constraint on the column catches the remaining races.
    """
    type_value = models.NotificationType(getattr(notification_type, "value", notification_type))
    exists = (
        db.query(models.Notification.id)
        .filter(
            models.Notification.type == type_value,
            models.Notification.fingerprint == fingerprint_value,
        )
        .first()
    )
    return exists is None
