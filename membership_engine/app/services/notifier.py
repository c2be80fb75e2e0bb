"""Email delivery of membership notifications."""
from __future__ import annotations

import logging
from typing import Any, Dict, NamedTuple, Optional, Protocol

from ...mail import EmailProvider, MembershipEmail, render_template_set, template_exists
from ..db import PostgresRepository
from ..memberships import MembershipNotifier

logger = logging.getLogger(__name__)


class SubscriberContact(NamedTuple):
    email: Optional[str]
    display_name: str


class SubscriberDirectory(Protocol):
    """Resolves subscribers and communities to human-facing details."""

    def lookup(self, subscriber_id: str) -> Optional[SubscriberContact]:
        ...

    def community_name(self, community_id: str) -> Optional[str]:
        ...


class PostgresSubscriberDirectory(PostgresRepository):
    def lookup(self, subscriber_id: str) -> Optional[SubscriberContact]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT email, username
                FROM users
                WHERE id = %s
                LIMIT 1
                """,
                (subscriber_id,),
            )
            row = cursor.fetchone()
            if not row:
                return None
            return SubscriberContact(email=row.get("email"), display_name=row.get("username") or "there")

    def community_name(self, community_id: str) -> Optional[str]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT name
                FROM communities
                WHERE id = %s
                LIMIT 1
                """,
                (community_id,),
            )
            row = cursor.fetchone()
            return row["name"] if row else None


class EmailMembershipNotifier(MembershipNotifier):
    """Renders a template family and sends it through an :class:`EmailProvider`.

    Raises when the subscriber has no deliverable address so the caller can
    count the failure.
    """

    def __init__(self, *, provider: EmailProvider, directory: SubscriberDirectory, app_base_url: str) -> None:
        self._provider = provider
        self._directory = directory
        self._app_base_url = app_base_url.rstrip("/")

    def _template_context(self, contact: SubscriberContact, context: Dict[str, Any]) -> Dict[str, Any]:
        community_id = str(context.get("community_id", ""))
        community_name = self._directory.community_name(community_id) if community_id else None
        if context.get("auto_renew"):
            renewal_line = "It will renew automatically, so there is nothing you need to do."
        else:
            renewal_line = "Auto-renew is off. Renew before it expires to keep your access."
        return {
            **context,
            "recipient_name": contact.display_name,
            "community_name": community_name or "your community",
            "renewal_line": renewal_line,
            "manage_url": f"{self._app_base_url}/memberships/{context.get('membership_id', '')}",
        }

    def notify(self, subscriber_id: str, template_id: str, context: Dict[str, Any]) -> None:
        if not template_exists(template_id):
            raise ValueError(f"Unknown email template {template_id!r}")

        contact = self._directory.lookup(subscriber_id)
        if contact is None or not contact.email:
            raise LookupError(f"No email address for subscriber {subscriber_id}")

        subject, text_body, html_body = render_template_set(template_id, self._template_context(contact, context))
        membership_id = context.get("membership_id")
        self._provider.deliver(
            MembershipEmail(
                to=contact.email,
                subject=subject,
                text_body=text_body,
                html_body=html_body,
                template_id=template_id,
                membership_id=str(membership_id) if membership_id else None,
            )
        )
        logger.info(
            "Membership email sent",
            extra={
                "subscriber_id": subscriber_id,
                "email_template": template_id,
                **self._provider.describe(),
            },
        )


__all__ = [
    "EmailMembershipNotifier",
    "PostgresSubscriberDirectory",
    "SubscriberContact",
    "SubscriberDirectory",
]
