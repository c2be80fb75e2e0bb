"""Outbound delivery of rendered membership emails."""
from __future__ import annotations

import logging
import smtplib
from collections import deque
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Deque, Dict, NamedTuple, Optional

from .config import EmailConfig

logger = logging.getLogger(__name__)


class MembershipEmail(NamedTuple):
    """A rendered notification addressed to one subscriber."""

    to: str
    subject: str
    text_body: str
    html_body: str
    template_id: str
    membership_id: Optional[str] = None


class EmailProvider:
    """Base provider; subclasses deliver a :class:`MembershipEmail` or raise."""

    name = "base"

    def __init__(self, *, from_email: str, reply_to: Optional[str] = None) -> None:
        self.from_email = from_email
        self.reply_to = reply_to

    def deliver(self, message: MembershipEmail) -> None:
        raise NotImplementedError

    def describe(self) -> Dict[str, str]:
        return {"email_provider": self.name, "email_sender": self.from_email}


class DevPrintProvider(EmailProvider):
    """Logs messages and keeps the most recent ones in ``outbox``."""

    name = "dev"

    def __init__(self, *, from_email: str, reply_to: Optional[str] = None, outbox_size: int = 50) -> None:
        super().__init__(from_email=from_email, reply_to=reply_to)
        self.outbox: Deque[MembershipEmail] = deque(maxlen=outbox_size)

    def deliver(self, message: MembershipEmail) -> None:
        self.outbox.append(message)
        logger.info(
            "Dev email dispatch",
            extra={
                "email_recipient": message.to,
                "email_subject": message.subject,
                "email_template": message.template_id,
                "membership_id": message.membership_id,
            },
        )


class SMTPProvider(EmailProvider):
    name = "smtp"

    def __init__(
        self,
        *,
        from_email: str,
        reply_to: Optional[str],
        host: str,
        port: int,
        username: Optional[str],
        password: Optional[str],
        use_tls: bool,
        timeout_seconds: float,
    ) -> None:
        super().__init__(from_email=from_email, reply_to=reply_to)
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout_seconds = timeout_seconds

    def build_mime(self, message: MembershipEmail) -> MIMEMultipart:
        mime = MIMEMultipart("alternative")
        mime["From"] = self.from_email
        mime["To"] = message.to
        mime["Subject"] = message.subject
        if self.reply_to:
            mime["Reply-To"] = self.reply_to
        mime["X-Membership-Template"] = message.template_id
        if message.membership_id:
            mime["X-Membership-Id"] = message.membership_id
        mime.attach(MIMEText(message.text_body, "plain", "utf-8"))
        mime.attach(MIMEText(message.html_body, "html", "utf-8"))
        return mime

    def deliver(self, message: MembershipEmail) -> None:
        payload = self.build_mime(message).as_string()
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds) as client:
            if self.use_tls:
                client.starttls()
            if self.username and self.password:
                client.login(self.username, self.password)
            client.sendmail(self.from_email, [message.to], payload)


def create_email_provider(config: EmailConfig) -> EmailProvider:
    provider = (config.provider_name or "dev").strip().lower()
    if provider == "smtp":
        return SMTPProvider(
            from_email=config.from_email,
            reply_to=config.reply_to,
            host=config.smtp_host,
            port=config.smtp_port,
            username=config.smtp_username,
            password=config.smtp_password,
            use_tls=config.smtp_use_tls,
            timeout_seconds=config.smtp_timeout_seconds,
        )
    if provider != "dev":
        logger.warning("Unknown email provider %r, falling back to dev provider", provider)
    return DevPrintProvider(from_email=config.from_email, reply_to=config.reply_to)


__all__ = [
    "DevPrintProvider",
    "EmailProvider",
    "MembershipEmail",
    "SMTPProvider",
    "create_email_provider",
]
