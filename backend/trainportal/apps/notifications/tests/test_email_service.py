from __future__ import annotations

import pytest

from trainportal.apps.notifications import models, providers, service


def _message(**overrides):
    values = {
        "recipient_email": "hr@acme.example",
        "recipient_name": "Mario Rossi",
        "subject": "New edition available - Fire Safety (Ed. #1)",
        "body_text": "Hello",
        "body_html": "<p>Hello</p>",
        "notification_type": "NEW_EDITION",
        "edition_id": "edition-1",
    }
    values.update(overrides)
    return providers.OutboundEmail(**values)


class RecordingProvider(providers.EmailProvider):
    def __init__(self):
        self.sent = []

    def send(self, message):
        self.sent.append(message)


class FailingProvider(providers.EmailProvider):
    def send(self, message):
        raise ConnectionRefusedError("smtp down")


def test_successful_send_is_logged_as_sent(db_session):
    provider = RecordingProvider()

    log = service.send_email(_message(), provider=provider, db=db_session)
    db_session.commit()

    assert provider.sent[0].recipient_email == "hr@acme.example"
    assert log.status == models.EmailStatus.SENT
    assert log.sent_at is not None
    assert log.error_message is None
    assert log.edition_id == "edition-1"
    assert log.type == "NEW_EDITION"


def test_transport_error_is_logged_as_failed(db_session):
    log = service.send_email(_message(), provider=FailingProvider(), db=db_session)
    db_session.commit()

    assert log.status == models.EmailStatus.FAILED
    assert log.error_message == "smtp down"
    assert log.sent_at is None


def test_unconfigured_provider_is_logged_as_failed(db_session, monkeypatch):
    monkeypatch.setattr(providers, "get_email_provider", lambda: (providers.NoopProvider(), False))

    log = service.send_email(_message(), db=db_session)
    db_session.commit()

    assert log.status == models.EmailStatus.FAILED
    assert log.error_message == service.NO_PROVIDER_ERROR
    assert db_session.query(models.EmailLog).count() == 1


def test_get_email_provider_reads_env(monkeypatch):
    monkeypatch.setenv("EMAIL_PROVIDER", "smtp")
    monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
    monkeypatch.setenv("SMTP_FROM", "portal@example.com")
    monkeypatch.setenv("SMTP_PORT", "2525")
    monkeypatch.setenv("SMTP_USER", "mailer")
    monkeypatch.delenv("SMTP_PASSWORD", raising=False)
    monkeypatch.setenv("SMTP_PASS", "secret")

    provider, configured = providers.get_email_provider()

    assert configured is True
    assert isinstance(provider, providers.SmtpProvider)
    assert provider.port == 2525
    assert provider.password == "secret"


def test_get_email_provider_without_host_is_unconfigured(monkeypatch):
    monkeypatch.setenv("EMAIL_PROVIDER", "smtp")
    monkeypatch.delenv("SMTP_HOST", raising=False)
    provider, configured = providers.get_email_provider()
    assert configured is False
    assert isinstance(provider, providers.NoopProvider)


def test_get_email_provider_rejects_unknown_backend(monkeypatch):
    monkeypatch.setenv("EMAIL_PROVIDER", "carrier-pigeon")
    with pytest.raises(ValueError):
        providers.get_email_provider()


def test_smtp_message_has_text_and_html_parts():
    provider = providers.SmtpProvider(host="localhost", port=25, sender="portal@example.com")
    msg = provider.build_message(_message())

    assert msg["To"] == "Mario Rossi <hr@acme.example>"
    assert msg["From"] == "portal@example.com"
    assert msg.get_body(preferencelist=("plain",)).get_content().strip() == "Hello"
    assert "<p>Hello</p>" in msg.get_body(preferencelist=("html",)).get_content()


@pytest.mark.parametrize(
    "env,error",
    [
        ({"EMAIL_PROVIDER": "sendgrid"}, "Unsupported email provider: sendgrid"),
        (
            {"EMAIL_PROVIDER": "smtp", "SMTP_HOST": "smtp.example.com", "SMTP_FROM": "portal@example.com", "SMTP_PORT": "tls"},
            "invalid literal for int() with base 10: 'tls'",
        ),
    ],
)
def test_invalid_provider_config_is_logged_as_failed(db_session, monkeypatch, env, error):
    for name, value in env.items():
        monkeypatch.setenv(name, value)

    log = service.send_email(_message(), db=db_session)
    db_session.commit()

    assert log.status == models.EmailStatus.FAILED
    assert log.error_message == error
    assert db_session.query(models.EmailLog).count() == 1
