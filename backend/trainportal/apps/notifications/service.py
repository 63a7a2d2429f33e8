from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from trainportal.database import WriteSessionLocal

from . import models, providers

logger = logging.getLogger(__name__)

NO_PROVIDER_ERROR = "No SMTP account configured"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def send_email(
    message: providers.OutboundEmail,
    *,
    provider: Optional[providers.EmailProvider] = None,
    db: Optional[Session] = None,
) -> models.EmailLog:
    """
    Attempt one send and record it in email_logs.

    The row is written PENDING first and moves to SENT or FAILED within the
    same call. Provider and transport errors never propagate; they end up in
    `error_message`.
    """
    owns_session = db is None
    db = db or WriteSessionLocal()
    log = models.EmailLog(
        recipient_email=message.recipient_email,
        recipient_name=message.recipient_name,
        recipient_id=message.recipient_id,
        type=message.notification_type,
        subject=message.subject,
        status=models.EmailStatus.PENDING,
        edition_id=message.edition_id,
    )
    try:
        db.add(log)
        db.flush()

        resolve_error = None
        if provider is None:
            try:
                provider, configured = providers.get_email_provider()
            except Exception as exc:
                provider, configured = None, False
                resolve_error = str(exc)
        else:
            configured = True
        if resolve_error is not None:
            log.status = models.EmailStatus.FAILED
            log.error_message = resolve_error
            logger.warning(
                "Email not sent: provider configuration is invalid",
                extra={
                    "email_log_id": log.id,
                    "notification_type": message.notification_type,
                    "error": resolve_error,
                },
            )
        elif not configured:
            log.status = models.EmailStatus.FAILED
            log.error_message = NO_PROVIDER_ERROR
            logger.warning(
                "Email not sent: no provider configured",
                extra={"email_log_id": log.id, "notification_type": message.notification_type},
            )
        else:
            try:
                provider.send(message)
                log.status = models.EmailStatus.SENT
                log.sent_at = _utcnow()
            except Exception as exc:
                log.status = models.EmailStatus.FAILED
                log.error_message = str(exc)
                logger.warning(
                    "Email send failed",
                    extra={
                        "email_log_id": log.id,
                        "notification_type": message.notification_type,
                        "error": str(exc),
                    },
                )
        db.add(log)
        if owns_session:
            db.commit()
        else:
            db.flush()
        return log
    finally:
        if owns_session:
            db.close()
