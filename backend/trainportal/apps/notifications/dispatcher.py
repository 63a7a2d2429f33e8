from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from trainportal.apps.courses.models import EditionStatus
from trainportal.apps.workflow.engine import EditionState, TransitionDescriptor

from . import dedup, models, templates
from .outbox import EmailOutbox
from .preferences import PreferenceGate
from .providers import OutboundEmail

logger = logging.getLogger(__name__)

NotificationType = models.NotificationType
Audience = models.Audience

_CANCELLED_TARGETS = {EditionStatus.CLOSED, EditionStatus.ARCHIVED}


@dataclass
class DispatchResult:
    notifications: List[models.Notification] = field(default_factory=list)
    emails: List[OutboundEmail] = field(default_factory=list)
    suppressed: List[str] = field(default_factory=list)

    def extend(self, other: "DispatchResult") -> None:
        self.notifications.extend(other.notifications)
        self.emails.extend(other.emails)
        self.suppressed.extend(other.suppressed)


@dataclass(frozen=True)
class EditionSnapshot:
    """What is left of an edition once its rows are gone, for cancellation notices."""

    edition_id: str
    client_id: Optional[str]
    status: EditionStatus
    course_title: str
    edition_number: Optional[int]

    @classmethod
    def from_model(cls, edition: Any) -> "EditionSnapshot":
        course = getattr(edition, "course", None)
        return cls(
            edition_id=edition.id,
            client_id=edition.client_id,
            status=EditionStatus(edition.status),
            course_title=getattr(course, "title", None) or "Course",
            edition_number=edition.edition_number,
        )


def _course_title(edition: Any) -> str:
    course = getattr(edition, "course", None)
    return getattr(course, "title", None) or "Course"


class NotificationDispatcher:
    """
    Turns lifecycle descriptors into in-portal notifications and email jobs.

    Notification rows are written in the caller's session inside a SAVEPOINT;
    emails are only collected here and handed to the outbox by
    `schedule_emails` once the caller has committed. Nothing in here raises
    to the caller of an edition mutation.
    """

    def __init__(self, gate: PreferenceGate, outbox: Optional[EmailOutbox] = None) -> None:
        self.gate = gate
        self.outbox = outbox

    # ------------------------------------------------------------------
    # Lifecycle rules
    # ------------------------------------------------------------------

    def on_edition_transition(
        self,
        db: Session,
        descriptor: TransitionDescriptor,
        edition: Any,
        client: Any = None,
    ) -> DispatchResult:
        result = DispatchResult()
        client = client if client is not None else getattr(edition, "client", None)
        before, after = descriptor.status_before, descriptor.status_after
        published = EditionStatus.PUBLISHED
        try:
            if before != published and after == published:
                result.extend(self._emit_new_edition(db, descriptor, edition, client))
            if after == published and descriptor.dates_changed:
                result.extend(self._emit_dates_changed(db, descriptor, edition, client))
            if before == published and after in _CANCELLED_TARGETS:
                rendered = templates.edition_cancelled(
                    course_title=_course_title(edition),
                    edition_number=edition.edition_number,
                    recipient_name=getattr(client, "display_name", None),
                )
                result.extend(
                    self.notify(
                        db,
                        notification_type=NotificationType.EDITION_CANCELLED,
                        rendered=rendered,
                        client=client,
                        edition_id=edition.id,
                        trigger_key=descriptor.revision,
                    )
                )
            if before == published and after == published and descriptor.client_changed:
                result.extend(self._emit_new_edition(db, descriptor, edition, client))
        except Exception:
            logger.exception(
                "Edition notification dispatch failed",
                extra={"edition_id": descriptor.edition_id, "revision": descriptor.revision},
            )
        return result

    def on_edition_deleted(
        self,
        db: Session,
        snapshot: EditionSnapshot,
        client: Any = None,
    ) -> DispatchResult:
        if snapshot.status != EditionStatus.PUBLISHED:
            return DispatchResult()
        try:
            rendered = templates.edition_cancelled(
                course_title=snapshot.course_title,
                edition_number=snapshot.edition_number,
                reason="The edition has been removed from the calendar.",
                recipient_name=getattr(client, "display_name", None),
            )
            return self.notify(
                db,
                notification_type=NotificationType.EDITION_CANCELLED,
                rendered=rendered,
                client=client,
                edition_id=None,
                fingerprint_edition_id=snapshot.edition_id,
                email_edition_id=snapshot.edition_id,
                trigger_key="deleted",
            )
        except Exception:
            logger.exception(
                "Edition deletion dispatch failed",
                extra={"edition_id": snapshot.edition_id},
            )
            return DispatchResult()

    def _emit_new_edition(
        self,
        db: Session,
        descriptor: TransitionDescriptor,
        edition: Any,
        client: Any,
    ) -> DispatchResult:
        after: EditionState = descriptor.after
        rendered = templates.new_edition(
            course_title=_course_title(edition),
            edition_number=edition.edition_number,
            start_date=after.start_date,
            end_date=after.end_date,
            registration_deadline=after.registration_deadline,
            recipient_name=getattr(client, "display_name", None),
        )
        return self.notify(
            db,
            notification_type=NotificationType.NEW_EDITION,
            rendered=rendered,
            client=client,
            edition_id=edition.id,
            trigger_key=descriptor.revision,
        )

    def _emit_dates_changed(
        self,
        db: Session,
        descriptor: TransitionDescriptor,
        edition: Any,
        client: Any,
    ) -> DispatchResult:
        rendered = templates.dates_changed(
            course_title=_course_title(edition),
            edition_number=edition.edition_number,
            before=descriptor.before.dates(),
            after=descriptor.after.dates(),
            recipient_name=getattr(client, "display_name", None),
        )
        return self.notify(
            db,
            notification_type=NotificationType.EDITION_DATES_CHANGED,
            rendered=rendered,
            client=client,
            edition_id=edition.id,
            trigger_key=descriptor.revision,
        )

    # ------------------------------------------------------------------
    # Generic emission
    # ------------------------------------------------------------------

    def notify(
        self,
        db: Session,
        *,
        notification_type: NotificationType,
        rendered: templates.Rendered,
        client: Any,
        edition_id: Optional[str],
        trigger_key: Any,
        fingerprint_edition_id: Optional[str] = None,
        email_edition_id: Optional[str] = None,
        is_global: bool = False,
    ) -> DispatchResult:
        """
        Gate, dedup and persist one client-audience notification, and queue
        the matching email job on the result when the client has a referent
        email.
        """
        result = DispatchResult()
        type_value = notification_type.value
        if not self.gate.is_enabled(db, notification_type, Audience.CLIENT):
            result.suppressed.append(type_value)
            logger.info(
                "Notification disabled by preference",
                extra={"notification_type": type_value, "edition_id": edition_id},
            )
            return result

        key_edition = fingerprint_edition_id or edition_id
        fingerprint = dedup.fingerprint(key_edition, notification_type, trigger_key)
        if not dedup.should_fire(db, key_edition, notification_type, fingerprint):
            result.suppressed.append(type_value)
            logger.info(
                "Notification already fired",
                extra={"notification_type": type_value, "edition_id": key_edition},
            )
            return result

        client_id = getattr(client, "id", None)
        try:
            with db.begin_nested():
                notification = models.Notification(
                    type=notification_type,
                    title=rendered.title,
                    message=rendered.message,
                    edition_id=edition_id,
                    client_id=None if is_global else client_id,
                    is_global=is_global,
                    fingerprint=fingerprint,
                )
                db.add(notification)
                db.flush()
        except IntegrityError:
            result.suppressed.append(type_value)
            logger.info(
                "Notification raced with an identical insert",
                extra={"notification_type": type_value, "edition_id": key_edition},
            )
            return result
        except Exception:
            logger.exception(
                "Failed to persist notification",
                extra={"notification_type": type_value, "edition_id": key_edition},
            )
            return result

        result.notifications.append(notification)

        recipient_email = (getattr(client, "referent_email", None) or "").strip()
        if recipient_email:
            result.emails.append(
                OutboundEmail(
                    recipient_email=recipient_email,
                    recipient_name=getattr(client, "display_name", None),
                    recipient_id=client_id,
                    subject=rendered.subject,
                    body_text=rendered.body_text,
                    body_html=rendered.body_html,
                    notification_type=type_value,
                    edition_id=email_edition_id or edition_id,
                )
            )
        return result

    def admin_emails(
        self,
        db: Session,
        *,
        notification_type: NotificationType,
        admins: Iterable[Any],
        build,
        edition_id: Optional[str] = None,
    ) -> DispatchResult:
        """Email-only fan-out to administrators, gated on the ADMIN audience."""
        result = DispatchResult()
        if not self.gate.is_enabled(db, notification_type, Audience.ADMIN):
            result.suppressed.append(notification_type.value)
            return result
        for admin in admins:
            email = (getattr(admin, "email", None) or "").strip()
            if not email:
                continue
            rendered: templates.Rendered = build(admin)
            result.emails.append(
                OutboundEmail(
                    recipient_email=email,
                    recipient_name=getattr(admin, "full_name", None),
                    recipient_id=getattr(admin, "id", None),
                    subject=rendered.subject,
                    body_text=rendered.body_text,
                    body_html=rendered.body_html,
                    notification_type=notification_type.value,
                    edition_id=edition_id,
                )
            )
        return result

    # ------------------------------------------------------------------
    # After commit
    # ------------------------------------------------------------------

    def schedule_emails(self, emails: Iterable[OutboundEmail]) -> int:
        """Hand email jobs to the outbox. Call only after the caller committed."""
        if self.outbox is None:
            emails = list(emails)
            if emails:
                logger.warning("No email outbox configured; dropping %d email(s)", len(emails))
            return 0
        scheduled = 0
        for message in emails:
            if self.outbox.submit(message):
                scheduled += 1
        return scheduled


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------

_default_lock = threading.Lock()
_default_dispatcher: Optional[NotificationDispatcher] = None


def build_default_dispatcher() -> NotificationDispatcher:
    from trainportal.database import WriteSessionLocal

    outbox = EmailOutbox(WriteSessionLocal)
    outbox.start()
    return NotificationDispatcher(PreferenceGate(), outbox)


def get_dispatcher() -> NotificationDispatcher:
    """Process-wide dispatcher for routers; tests override this dependency."""
    global _default_dispatcher
    with _default_lock:
        if _default_dispatcher is None:
            _default_dispatcher = build_default_dispatcher()
        return _default_dispatcher


def shutdown_dispatcher() -> None:
    global _default_dispatcher
    with _default_lock:
        dispatcher, _default_dispatcher = _default_dispatcher, None
    if dispatcher is not None and dispatcher.outbox is not None:
        dispatcher.outbox.stop()
