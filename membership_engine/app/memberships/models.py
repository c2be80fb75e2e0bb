"""Domain models for timed community memberships."""
from __future__ import annotations

import calendar
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, NamedTuple, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BillingInterval(str, Enum):
    """Supported billing frequencies for a collection."""

    MONTHLY = "monthly"
    ANNUAL = "annual"


def add_billing_period(moment: datetime, interval: BillingInterval) -> datetime:
    """Advance ``moment`` by one calendar billing period.

    The day of month is clamped so that January 31st plus one month lands on the
    last day of February rather than overflowing into March.
    """

    months = 12 if interval == BillingInterval.ANNUAL else 1
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


class MembershipKey(NamedTuple):
    """Composite key identifying a subscriber within a community."""

    subscriber_id: str
    community_id: str


class Collection(BaseModel):
    """Pricing and plan definition under which memberships are minted."""

    collection_id: str
    community_id: str
    issuer_id: str
    name: str = ""
    price_per_period: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = Field(default="USDC", min_length=1)
    billing_interval: BillingInterval = BillingInterval.MONTHLY
    max_supply: Optional[int] = Field(default=None, ge=0)
    issued_count: int = Field(default=0, ge=0)
    is_active: bool = True

    model_config = ConfigDict(frozen=True)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()

    @property
    def supply_exhausted(self) -> bool:
        return self.max_supply is not None and self.issued_count >= self.max_supply


class Membership(BaseModel):
    """A subscriber's timed access grant to a community."""

    membership_id: str = Field(default_factory=lambda: f"mem_{uuid4().hex}")
    subscriber_id: str
    community_id: str
    collection_id: str
    issuer_id: str
    proof_token: str = ""
    transaction_ref: str = ""
    expires_at: datetime
    minted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    is_active: bool = True
    auto_renew: bool = True
    reminder_sent: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    @property
    def key(self) -> MembershipKey:
        return MembershipKey(self.subscriber_id, self.community_id)

    def grants_access(self, now: datetime) -> bool:
        return self.is_active and self.expires_at > now


class MintReceipt(BaseModel):
    """Result of a successful mint from the minting collaborator."""

    proof_token: str
    transaction_ref: str

    model_config = ConfigDict(frozen=True)


class RenewalReceipt(BaseModel):
    """Result of a successful renewal from the minting collaborator."""

    transaction_ref: str

    model_config = ConfigDict(frozen=True)


class AccessCheck(BaseModel):
    """Answer to whether a subscriber currently has access to a community."""

    has_access: bool
    membership: Optional[Membership] = None
    expires_at: Optional[datetime] = None
    days_remaining: Optional[int] = None

    model_config = ConfigDict(frozen=True)


class ExpirySummary(BaseModel):
    """Outcome of an expiry sweep."""

    processed_items: int = 0
    candidates: int = 0
    expired_by_community: Dict[str, int] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @property
    def communities_affected(self) -> int:
        return len(self.expired_by_community)


class ReminderSummary(BaseModel):
    """Outcome of a renewal reminder sweep."""

    processed_items: int = 0
    candidates: int = 0
    notification_failures: int = 0

    model_config = ConfigDict(frozen=True)


class RenewalSummary(BaseModel):
    """Outcome of an auto-renewal sweep."""

    processed_items: int = 0
    candidates: int = 0
    failed_renewals: int = 0

    model_config = ConfigDict(frozen=True)

    @property
    def successful_renewals(self) -> int:
        return self.processed_items


class SnapshotSummary(BaseModel):
    """Outcome of an active-membership snapshot refresh."""

    processed_items: int = 0
    collections: int = 0
    active_by_community: Dict[str, int] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)
