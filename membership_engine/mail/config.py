"""Settings for membership notification email."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from ..config import _to_bool, _to_float, _to_int


@dataclass(frozen=True)
class EmailConfig:
    provider_name: str
    from_email: str
    reply_to: Optional[str]
    smtp_host: str
    smtp_port: int
    smtp_username: Optional[str]
    smtp_password: Optional[str]
    smtp_use_tls: bool
    smtp_timeout_seconds: float
    app_base_url: str


def load_email_config(env: Optional[Mapping[str, str]] = None) -> EmailConfig:
    """Load :class:`EmailConfig` from environment variables.

    ``APP_BASE_URL`` is used to build the manage-membership links in reminders.
    """

    env_mapping = os.environ if env is None else env

    timeout = _to_float(env_mapping.get("SMTP_TIMEOUT_SECONDS"), default=30.0)
    if timeout is None or timeout <= 0:
        raise ValueError("SMTP_TIMEOUT_SECONDS must be positive")

    return EmailConfig(
        provider_name=(env_mapping.get("EMAIL_PROVIDER") or "dev").strip().lower() or "dev",
        from_email=env_mapping.get("FROM_EMAIL", "memberships@example.com"),
        reply_to=env_mapping.get("REPLY_TO_EMAIL") or None,
        smtp_host=env_mapping.get("SMTP_HOST", "localhost"),
        smtp_port=_to_int(env_mapping.get("SMTP_PORT"), default=587),
        smtp_username=env_mapping.get("SMTP_USER") or None,
        smtp_password=env_mapping.get("SMTP_PASS") or None,
        smtp_use_tls=_to_bool(env_mapping.get("SMTP_USE_TLS"), default=True),
        smtp_timeout_seconds=timeout,
        app_base_url=env_mapping.get("APP_BASE_URL", "http://localhost:5173").rstrip("/"),
    )


__all__ = ["EmailConfig", "load_email_config"]
