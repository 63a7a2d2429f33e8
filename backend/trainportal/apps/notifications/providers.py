from __future__ import annotations

import os
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage as MimeMessage
from typing import Optional, Tuple


@dataclass(frozen=True)
class OutboundEmail:
    recipient_email: str
    subject: str
    body_text: str
    notification_type: str
    recipient_name: Optional[str] = None
    recipient_id: Optional[str] = None
    edition_id: Optional[str] = None
    body_html: Optional[str] = None


class EmailProvider:
    def send(self, message: OutboundEmail) -> None:
        raise NotImplementedError


class NoopProvider(EmailProvider):
    def send(self, message: OutboundEmail) -> None:
        return None


class SmtpProvider(EmailProvider):
    def __init__(
        self,
        *,
        host: str,
        port: int,
        sender: str,
        user: Optional[str] = None,
        password: Optional[str] = None,
        starttls: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.user = user
        self.password = password
        self.starttls = starttls
        self.timeout = timeout

    def build_message(self, message: OutboundEmail) -> MimeMessage:
        msg = MimeMessage()
        msg["From"] = self.sender
        if message.recipient_name:
            msg["To"] = f"{message.recipient_name} <{message.recipient_email}>"
        else:
            msg["To"] = message.recipient_email
        msg["Subject"] = message.subject
        msg.set_content(message.body_text)
        if message.body_html:
            msg.add_alternative(message.body_html, subtype="html")
        return msg

    def send(self, message: OutboundEmail) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.starttls:
                smtp.starttls()
            if self.user and self.password:
                smtp.login(self.user, self.password)
            smtp.send_message(self.build_message(message))


def _env_flag(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def get_email_provider() -> Tuple[EmailProvider, bool]:
    """
    Resolve the outbound provider from env.

    EMAIL_PROVIDER=smtp (or unset with SMTP_HOST present) selects SMTP;
    none/noop/disabled, or no SMTP host, returns an unconfigured NoopProvider.
    """
    provider_name = (os.getenv("EMAIL_PROVIDER") or "").strip().lower()
    if provider_name in {"none", "noop", "disabled"}:
        return NoopProvider(), False

    host = os.getenv("SMTP_HOST")
    sender = os.getenv("SMTP_FROM")
    if provider_name not in {"", "smtp"}:
        raise ValueError(f"Unsupported email provider: {provider_name}")
    if not (host and sender):
        return NoopProvider(), False

    return (
        SmtpProvider(
            host=host,
            port=int(os.getenv("SMTP_PORT", "587")),
            sender=sender,
            user=os.getenv("SMTP_USER"),
            password=os.getenv("SMTP_PASSWORD") or os.getenv("SMTP_PASS"),
            starttls=_env_flag("SMTP_STARTTLS"),
        ),
        True,
    )
