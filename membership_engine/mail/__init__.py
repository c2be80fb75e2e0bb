"""Membership notification email: settings, providers and templates."""

from .config import EmailConfig, load_email_config
from .providers import (
    DevPrintProvider,
    EmailProvider,
    MembershipEmail,
    SMTPProvider,
    create_email_provider,
)
from .renderer import render_template_set, template_exists

__all__ = [
    "DevPrintProvider",
    "EmailConfig",
    "EmailProvider",
    "MembershipEmail",
    "SMTPProvider",
    "create_email_provider",
    "load_email_config",
    "render_template_set",
    "template_exists",
]
