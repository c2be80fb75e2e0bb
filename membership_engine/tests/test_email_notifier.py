from __future__ import annotations

from typing import Dict, Optional

import pytest

from membership_engine.app.services.notifier import EmailMembershipNotifier, SubscriberContact
from membership_engine.mail import DevPrintProvider, MembershipEmail, SMTPProvider, render_template_set


class StaticDirectory:
    def __init__(self, contacts: Dict[str, SubscriberContact], communities: Dict[str, str]) -> None:
        self.contacts = contacts
        self.communities = communities

    def lookup(self, subscriber_id: str) -> Optional[SubscriberContact]:
        return self.contacts.get(subscriber_id)

    def community_name(self, community_id: str) -> Optional[str]:
        return self.communities.get(community_id)


@pytest.fixture
def provider() -> DevPrintProvider:
    return DevPrintProvider(from_email="memberships@example.com")


@pytest.fixture
def notifier(provider) -> EmailMembershipNotifier:
    directory = StaticDirectory(
        {
            "fan_1": SubscriberContact(email="fan1@example.com", display_name="Robin"),
            "fan_2": SubscriberContact(email=None, display_name="there"),
        },
        {"com_1": "Night Owls"},
    )
    return EmailMembershipNotifier(provider=provider, directory=directory, app_base_url="https://fans.example/")


def _context(**overrides):
    context = {
        "membership_id": "mem_1",
        "community_id": "com_1",
        "expires_on": "2024-05-18",
        "days_remaining": 3,
        "auto_renew": False,
        "collection_name": "Inner Circle",
        "price": "9.99",
        "currency": "USDC",
        "billing_period": "month",
    }
    context.update(overrides)
    return context


def test_reminder_email_is_rendered_and_sent(notifier, provider):
    notifier.notify("fan_1", "renewal_reminder", _context())

    assert len(provider.outbox) == 1
    message = provider.outbox[0]
    assert message.to == "fan1@example.com"
    assert message.template_id == "renewal_reminder"
    assert message.membership_id == "mem_1"
    assert message.subject == "Your Night Owls membership expires in 3 day(s)"
    assert message.text_body.startswith("Hi Robin,")
    assert "Auto-renew is off" in message.text_body
    assert "9.99 USDC per month" in message.text_body
    assert "https://fans.example/memberships/mem_1" in message.html_body


def test_unknown_community_uses_generic_name(notifier, provider):
    notifier.notify("fan_1", "renewal_reminder", _context(community_id="com_404", auto_renew=True))

    message = provider.outbox[0]
    assert message.subject == "Your your community membership expires in 3 day(s)"
    assert "renew automatically" in message.text_body


def test_missing_address_raises_lookup_error(notifier, provider):
    with pytest.raises(LookupError):
        notifier.notify("fan_2", "renewal_reminder", _context())
    with pytest.raises(LookupError):
        notifier.notify("fan_404", "renewal_reminder", _context())
    assert list(provider.outbox) == []


def test_unknown_template_raises_value_error(notifier):
    with pytest.raises(ValueError):
        notifier.notify("fan_1", "welcome_letter", _context())


def test_missing_placeholders_render_empty():
    subject, _, _ = render_template_set("renewal_reminder", {"days_remaining": 1})

    assert subject == "Your  membership expires in 1 day(s)"


def test_smtp_message_carries_membership_headers():
    provider = SMTPProvider(
        from_email="memberships@example.com",
        reply_to="support@example.com",
        host="localhost",
        port=587,
        username=None,
        password=None,
        use_tls=True,
        timeout_seconds=5.0,
    )

    mime = provider.build_mime(
        MembershipEmail(
            to="fan1@example.com",
            subject="Renew soon",
            text_body="text",
            html_body="<p>html</p>",
            template_id="renewal_reminder",
            membership_id="mem_1",
        )
    )

    assert mime["To"] == "fan1@example.com"
    assert mime["Reply-To"] == "support@example.com"
    assert mime["X-Membership-Template"] == "renewal_reminder"
    assert mime["X-Membership-Id"] == "mem_1"
    assert [part.get_content_type() for part in mime.get_payload()] == ["text/plain", "text/html"]
