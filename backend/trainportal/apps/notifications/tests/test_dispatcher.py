from __future__ import annotations

from trainportal.apps.courses.models import EditionStatus
from trainportal.apps.notifications import models
from trainportal.apps.notifications.dispatcher import EditionSnapshot, NotificationDispatcher
from trainportal.apps.workflow import EditionState, apply_update

NotificationType = models.NotificationType


def _transition(edition, patch):
    new_state, descriptor = apply_update(EditionState.from_model(edition), patch)
    edition.status = new_state.status
    edition.start_date = new_state.start_date
    edition.end_date = new_state.end_date
    edition.registration_deadline = new_state.registration_deadline
    edition.revision = new_state.revision
    return descriptor


def _types(result):
    return [notification.type for notification in result.notifications]


def test_publish_emits_single_new_edition(db_session, dispatcher, make_edition):
    edition = make_edition()
    descriptor = _transition(edition, {"status": "PUBLISHED"})

    result = dispatcher.on_edition_transition(db_session, descriptor, edition)
    db_session.commit()

    assert _types(result) == [NotificationType.NEW_EDITION]
    assert len(result.emails) == 1
    email = result.emails[0]
    assert email.recipient_email == "hr@acme.example"
    assert email.notification_type == "NEW_EDITION"
    assert "Fire Safety" in email.subject
    assert db_session.query(models.Notification).count() == 1


def test_publish_with_new_dates_emits_both_in_rule_order(db_session, dispatcher, make_edition):
    edition = make_edition()
    descriptor = _transition(edition, {"status": "PUBLISHED", "start_date": "2025-01-11T09:00:00Z"})

    result = dispatcher.on_edition_transition(db_session, descriptor, edition)

    assert _types(result) == [NotificationType.NEW_EDITION, NotificationType.EDITION_DATES_CHANGED]
    assert len(result.emails) == 2


def test_date_change_on_published_edition(db_session, dispatcher, make_edition):
    edition = make_edition(status=EditionStatus.PUBLISHED, revision=1)
    descriptor = _transition(edition, {"start_date": "2025-01-12T09:00:00Z"})

    result = dispatcher.on_edition_transition(db_session, descriptor, edition)

    assert _types(result) == [NotificationType.EDITION_DATES_CHANGED]
    assert "12/01/2025" in result.emails[0].body_text


def test_notes_only_update_is_silent(db_session, dispatcher, make_edition):
    edition = make_edition(status=EditionStatus.PUBLISHED)
    descriptor = _transition(edition, {"notes": "Bring a badge"})

    result = dispatcher.on_edition_transition(db_session, descriptor, edition)

    assert result.notifications == []
    assert result.emails == []


def test_draft_date_change_is_silent(db_session, dispatcher, make_edition):
    edition = make_edition()
    descriptor = _transition(edition, {"start_date": "2025-01-12T09:00:00Z"})

    result = dispatcher.on_edition_transition(db_session, descriptor, edition)

    assert result.notifications == []


def test_closing_published_edition_emits_cancelled(db_session, dispatcher, make_edition):
    edition = make_edition(status=EditionStatus.PUBLISHED)
    descriptor = _transition(edition, {"status": "CLOSED"})

    result = dispatcher.on_edition_transition(db_session, descriptor, edition)

    assert _types(result) == [NotificationType.EDITION_CANCELLED]


def test_closing_then_archiving_does_not_cancel_twice(db_session, dispatcher, make_edition):
    edition = make_edition(status=EditionStatus.PUBLISHED)
    first = dispatcher.on_edition_transition(db_session, _transition(edition, {"status": "CLOSED"}), edition)
    second = dispatcher.on_edition_transition(db_session, _transition(edition, {"status": "ARCHIVED"}), edition)

    assert _types(first) == [NotificationType.EDITION_CANCELLED]
    assert second.notifications == []


def test_disabled_preference_suppresses_notification_and_email(db_session, gate, dispatcher, make_edition):
    gate.set_enabled(db_session, NotificationType.NEW_EDITION, models.Audience.CLIENT, False)
    db_session.commit()
    edition = make_edition()
    descriptor = _transition(edition, {"status": "PUBLISHED"})

    result = dispatcher.on_edition_transition(db_session, descriptor, edition)

    assert result.notifications == []
    assert result.emails == []
    assert result.suppressed == ["NEW_EDITION"]
    assert db_session.query(models.Notification).count() == 0


def test_retried_transition_is_deduplicated(db_session, dispatcher, make_edition):
    edition = make_edition()
    descriptor = _transition(edition, {"status": "PUBLISHED"})

    first = dispatcher.on_edition_transition(db_session, descriptor, edition)
    db_session.commit()
    retry = dispatcher.on_edition_transition(db_session, descriptor, edition)
    db_session.commit()

    assert len(first.notifications) == 1
    assert retry.notifications == []
    assert retry.suppressed == ["NEW_EDITION"]
    assert db_session.query(models.Notification).count() == 1


def test_republish_after_draft_notifies_again(db_session, dispatcher, make_edition):
    edition = make_edition()
    first = dispatcher.on_edition_transition(db_session, _transition(edition, {"status": "PUBLISHED"}), edition)
    dispatcher.on_edition_transition(db_session, _transition(edition, {"status": "DRAFT"}), edition)
    again = dispatcher.on_edition_transition(db_session, _transition(edition, {"status": "PUBLISHED"}), edition)

    assert _types(first) == [NotificationType.NEW_EDITION]
    assert _types(again) == [NotificationType.NEW_EDITION]


def test_client_without_referent_email_gets_notification_only(db_session, dispatcher, client, make_edition):
    client.referent_email = "   "
    db_session.commit()
    edition = make_edition()

    result = dispatcher.on_edition_transition(db_session, _transition(edition, {"status": "PUBLISHED"}), edition)

    assert len(result.notifications) == 1
    assert result.emails == []


def test_deleted_published_edition_emits_cancelled(db_session, dispatcher, client, make_edition):
    edition = make_edition(status=EditionStatus.PUBLISHED)
    snapshot = EditionSnapshot.from_model(edition)

    result = dispatcher.on_edition_deleted(db_session, snapshot, client)

    assert _types(result) == [NotificationType.EDITION_CANCELLED]
    assert result.notifications[0].edition_id is None
    assert result.emails[0].edition_id == edition.id


def test_deleted_draft_edition_is_silent(db_session, dispatcher, client, make_edition):
    snapshot = EditionSnapshot.from_model(make_edition())
    assert dispatcher.on_edition_deleted(db_session, snapshot, client).notifications == []


def test_dispatch_failure_is_contained(db_session, dispatcher, make_edition, monkeypatch):
    edition = make_edition()
    descriptor = _transition(edition, {"status": "PUBLISHED"})

    def boom(*args, **kwargs):
        raise RuntimeError("template exploded")

    monkeypatch.setattr("trainportal.apps.notifications.templates.new_edition", boom)

    result = dispatcher.on_edition_transition(db_session, descriptor, edition)

    assert result.notifications == []
    assert result.emails == []


def test_schedule_emails_hands_jobs_to_outbox(db_session, dispatcher, outbox, make_edition):
    edition = make_edition()
    result = dispatcher.on_edition_transition(db_session, _transition(edition, {"status": "PUBLISHED"}), edition)
    db_session.commit()

    assert dispatcher.schedule_emails(result.emails) == 1
    assert outbox.submitted == result.emails


def test_schedule_emails_without_outbox_drops_jobs(db_session, gate, make_edition):
    dispatcher = NotificationDispatcher(gate, outbox=None)
    edition = make_edition()
    result = dispatcher.on_edition_transition(db_session, _transition(edition, {"status": "PUBLISHED"}), edition)

    assert len(result.emails) == 1
    assert dispatcher.schedule_emails(result.emails) == 0
