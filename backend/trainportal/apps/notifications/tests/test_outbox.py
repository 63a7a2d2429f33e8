from __future__ import annotations

import threading

from trainportal.apps.notifications import models, providers
from trainportal.apps.notifications.outbox import EmailOutbox


def _message(recipient="hr@acme.example", **overrides):
    values = {
        "recipient_email": recipient,
        "subject": "Certificates available - Fire Safety (Ed. #1)",
        "body_text": "Hello",
        "notification_type": "CERTIFICATES_AVAILABLE",
        "edition_id": "edition-1",
    }
    values.update(overrides)
    return providers.OutboundEmail(**values)


class RecordingProvider(providers.EmailProvider):
    def __init__(self):
        self.sent = []
        self._lock = threading.Lock()

    def send(self, message):
        with self._lock:
            self.sent.append(message.recipient_email)


class PickyProvider(providers.EmailProvider):
    def send(self, message):
        if message.recipient_email.endswith(".invalid"):
            raise OSError("mailbox unavailable")


def test_outbox_delivers_and_logs_every_job(file_session_factory):
    provider = RecordingProvider()
    outbox = EmailOutbox(file_session_factory, provider_factory=lambda: provider, workers=2)
    outbox.start()
    try:
        for index in range(5):
            assert outbox.submit(_message(recipient=f"user{index}@acme.example"))
        outbox.join()
    finally:
        outbox.stop()

    assert sorted(provider.sent) == sorted(f"user{index}@acme.example" for index in range(5))

    db = file_session_factory()
    try:
        logs = db.query(models.EmailLog).all()
        assert len(logs) == 5
        assert {log.status for log in logs} == {models.EmailStatus.SENT}
    finally:
        db.close()


def test_failed_send_does_not_stop_the_queue(file_session_factory):
    outbox = EmailOutbox(file_session_factory, provider_factory=PickyProvider, workers=1)
    outbox.start()
    try:
        outbox.submit(_message(recipient="broken@acme.invalid"))
        outbox.submit(_message(recipient="ok@acme.example"))
        outbox.join()
    finally:
        outbox.stop()

    db = file_session_factory()
    try:
        by_recipient = {log.recipient_email: log for log in db.query(models.EmailLog).all()}
    finally:
        db.close()
    assert by_recipient["broken@acme.invalid"].status == models.EmailStatus.FAILED
    assert by_recipient["broken@acme.invalid"].error_message == "mailbox unavailable"
    assert by_recipient["ok@acme.example"].status == models.EmailStatus.SENT


def test_misconfigured_provider_still_logs_the_attempt(file_session_factory, monkeypatch):
    monkeypatch.setenv("EMAIL_PROVIDER", "sendgrid")
    outbox = EmailOutbox(file_session_factory, workers=1)
    outbox.start()
    try:
        outbox.submit(_message())
        outbox.join()
    finally:
        outbox.stop()

    db = file_session_factory()
    try:
        [log] = db.query(models.EmailLog).all()
    finally:
        db.close()
    assert log.status == models.EmailStatus.FAILED
    assert log.error_message == "Unsupported email provider: sendgrid"


def test_full_queue_drops_jobs(file_session_factory):
    outbox = EmailOutbox(file_session_factory, maxsize=1, workers=1)

    assert outbox.submit(_message()) is True
    assert outbox.submit(_message(recipient="second@acme.example")) is False
    assert outbox.running is False


def test_stop_is_idempotent(file_session_factory):
    outbox = EmailOutbox(file_session_factory, workers=1)
    outbox.start()
    assert outbox.running is True
    outbox.stop()
    outbox.stop()
    assert outbox.running is False
