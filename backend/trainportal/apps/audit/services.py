from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)


def _jsonable(payload: Optional[dict]) -> Optional[dict]:
    if payload is None:
        return None
    out: dict[str, Any] = {}
    for key, value in payload.items():
        if isinstance(value, (datetime, date)):
            out[key] = value.isoformat()
        elif hasattr(value, "value"):
            out[key] = value.value
        else:
            out[key] = value
    return out


def log_event(
    db: Session,
    *,
    actor_user_id: Optional[str],
    entity_type: str,
    entity_id: str,
    action: str,
    before: Optional[dict] = None,
    after: Optional[dict] = None,
    metadata: Optional[dict] = None,
    critical: bool = False,
) -> Optional[models.AuditEvent]:
    """
    Best-effort audit event logger.
    - For critical actions, raise on failure.
    - Otherwise log a warning and continue; the surrounding transaction
      is protected by a savepoint.
    """
    try:
        with db.begin_nested():
            event = models.AuditEvent(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                actor_user_id=actor_user_id,
                before=_jsonable(before),
                after=_jsonable(after),
                metadata_json=metadata,
            )
            db.add(event)
            db.flush()
        return event
    except Exception:
        logger.warning(
            "Failed to log audit event",
            extra={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "action": action,
                "critical": critical,
            },
        )
        if critical:
            raise
        return None
