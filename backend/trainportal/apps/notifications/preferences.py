from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)

NotificationType = models.NotificationType
Audience = models.Audience

# (type, audience) -> (label, description). Seeded enabled.
PREFERENCE_CATALOG: Dict[Tuple[str, Audience], Tuple[str, str]] = {
    (NotificationType.NEW_EDITION.value, Audience.CLIENT): (
        "New edition",
        "A new course edition has been published for the client.",
    ),
    (NotificationType.REMINDER_DEADLINE_7D.value, Audience.CLIENT): (
        "Registration deadline in 7 days",
        "Reminder sent one week before the registration deadline.",
    ),
    (NotificationType.REMINDER_DEADLINE_2D.value, Audience.CLIENT): (
        "Registration deadline in 2 days",
        "Reminder sent two days before the registration deadline.",
    ),
    (NotificationType.CERTIFICATES_AVAILABLE.value, Audience.CLIENT): (
        "Certificates available",
        "Certificates for an edition have been uploaded.",
    ),
    (NotificationType.CERTIFICATE_EXPIRING_60D.value, Audience.CLIENT): (
        "Certificate expiring in 60 days",
        "An employee certificate expires in two months.",
    ),
    (NotificationType.CERTIFICATE_EXPIRING_30D.value, Audience.CLIENT): (
        "Certificate expiring in 30 days",
        "An employee certificate expires in one month.",
    ),
    (NotificationType.EDITION_DATES_CHANGED.value, Audience.CLIENT): (
        "Edition dates changed",
        "The dates of a published edition have changed.",
    ),
    (NotificationType.EDITION_CANCELLED.value, Audience.CLIENT): (
        "Edition cancelled",
        "A published edition has been closed, archived or removed.",
    ),
    (NotificationType.ADMIN_DEADLINE_EXPIRED.value, Audience.ADMIN): (
        "Registration deadline expired",
        "Administrators are told when an edition's registration window closes.",
    ),
}


def _key(notification_type, audience) -> Tuple[str, Audience]:
    type_value = getattr(notification_type, "value", notification_type)
    return str(type_value), Audience(audience)


def seed_preferences(db: Session) -> int:
    """Insert catalogue rows that do not exist yet. Returns the number created."""
    existing = {
        (row.type, Audience(row.audience))
        for row in db.query(models.NotificationPreference).all()
    }
    created = 0
    for (type_value, audience), (label, description) in PREFERENCE_CATALOG.items():
        if (type_value, audience) in existing:
            continue
        db.add(
            models.NotificationPreference(
                type=type_value,
                audience=audience,
                label=label,
                description=description,
                is_enabled=True,
            )
        )
        created += 1
    if created:
        db.flush()
    return created


class PreferenceGate:
    """
    Read-through cache over the notification_preferences table.

    Missing rows and lookup failures both count as enabled. The cache is
    loaded in one query and dropped on every write made through the gate.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cache: Optional[Dict[Tuple[str, Audience], bool]] = None
        self._generation = 0

    def invalidate(self) -> None:
        with self._lock:
            self._cache = None
            self._generation += 1

    def _load(self, db: Session) -> Dict[Tuple[str, Audience], bool]:
        with self._lock:
            if self._cache is not None:
                return self._cache
            generation = self._generation
        rows = db.query(models.NotificationPreference).all()
        snapshot = {(row.type, Audience(row.audience)): bool(row.is_enabled) for row in rows}
        with self._lock:
            # Rows read before an invalidate() are never cached.
            if self._generation == generation:
                self._cache = snapshot
        return snapshot

    def is_enabled(self, db: Session, notification_type, audience=Audience.CLIENT) -> bool:
        key = _key(notification_type, audience)
        try:
            return self._load(db).get(key, True)
        except Exception:
            logger.warning(
                "Preference lookup failed; treating notification as enabled",
                exc_info=True,
                extra={"notification_type": key[0], "audience": key[1].value},
            )
            return True

    def set_enabled(
        self,
        db: Session,
        notification_type,
        audience,
        is_enabled: bool,
    ) -> models.NotificationPreference:
        type_value, audience = _key(notification_type, audience)
        pref = (
            db.query(models.NotificationPreference)
            .filter(
                models.NotificationPreference.type == type_value,
                models.NotificationPreference.audience == audience,
            )
            .first()
        )
        if pref is None:
            label, description = PREFERENCE_CATALOG.get((type_value, audience), (type_value, None))
            pref = models.NotificationPreference(
                type=type_value,
                audience=audience,
                label=label,
                description=description,
            )
            db.add(pref)
        pref.is_enabled = is_enabled
        db.flush()
        self.invalidate()
        return pref

    def list_preferences(self, db: Session) -> List[models.NotificationPreference]:
        return (
            db.query(models.NotificationPreference)
            .order_by(models.NotificationPreference.audience, models.NotificationPreference.type)
            .all()
        )
