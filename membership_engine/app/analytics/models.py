"""Domain models for day-keyed subscription analytics."""
from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AnalyticsKey(NamedTuple):
    """Unique key of an analytics row: one per issuer, community and calendar day."""

    issuer_id: str
    community_id: str
    day: date


class SnapshotPolicy(str, Enum):
    """How an upsert combines ``total_active_subscriptions`` with an existing row."""

    INCREMENT = "increment"
    MAX = "max"
    REPLACE = "replace"


class AnalyticsDelta(BaseModel):
    """Change applied to a day's analytics row."""

    collection_id: str
    new_subscribers: int = Field(default=0, ge=0)
    renewed_subscriptions: int = Field(default=0, ge=0)
    expired_subscriptions: int = Field(default=0, ge=0)
    cancelled_subscriptions: int = Field(default=0, ge=0)
    total_active_subscriptions: int = Field(default=0, ge=0)
    revenue: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = "USDC"

    model_config = ConfigDict(frozen=True)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class AnalyticsRecord(BaseModel):
    """Persisted daily aggregate for an issuer's community."""

    issuer_id: str
    community_id: str
    collection_id: str
    day: date
    new_subscribers: int = Field(default=0, ge=0)
    renewed_subscriptions: int = Field(default=0, ge=0)
    expired_subscriptions: int = Field(default=0, ge=0)
    cancelled_subscriptions: int = Field(default=0, ge=0)
    total_active_subscriptions: int = Field(default=0, ge=0)
    revenue: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = "USDC"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    @property
    def key(self) -> AnalyticsKey:
        return AnalyticsKey(self.issuer_id, self.community_id, self.day)

    @property
    def net_growth(self) -> int:
        return (self.new_subscribers + self.renewed_subscriptions) - (
            self.expired_subscriptions + self.cancelled_subscriptions
        )

    def apply(self, delta: AnalyticsDelta, policy: SnapshotPolicy) -> "AnalyticsRecord":
        """Return this record with ``delta`` merged in under ``policy``."""

        if policy == SnapshotPolicy.MAX:
            active = max(self.total_active_subscriptions, delta.total_active_subscriptions)
        elif policy == SnapshotPolicy.REPLACE:
            active = delta.total_active_subscriptions
        else:
            active = self.total_active_subscriptions + delta.total_active_subscriptions
        return self.model_copy(
            update={
                "new_subscribers": self.new_subscribers + delta.new_subscribers,
                "renewed_subscriptions": self.renewed_subscriptions + delta.renewed_subscriptions,
                "expired_subscriptions": self.expired_subscriptions + delta.expired_subscriptions,
                "cancelled_subscriptions": self.cancelled_subscriptions + delta.cancelled_subscriptions,
                "total_active_subscriptions": active,
                "revenue": self.revenue + delta.revenue,
                "updated_at": datetime.now(timezone.utc),
            }
        )

    @classmethod
    def from_delta(cls, key: AnalyticsKey, delta: AnalyticsDelta) -> "AnalyticsRecord":
        return cls(
            issuer_id=key.issuer_id,
            community_id=key.community_id,
            day=key.day,
            collection_id=delta.collection_id,
            new_subscribers=delta.new_subscribers,
            renewed_subscriptions=delta.renewed_subscriptions,
            expired_subscriptions=delta.expired_subscriptions,
            cancelled_subscriptions=delta.cancelled_subscriptions,
            total_active_subscriptions=delta.total_active_subscriptions,
            revenue=delta.revenue,
            currency=delta.currency,
        )


class EarningsOverview(BaseModel):
    """Aggregated earnings for an issuer over a trailing period."""

    issuer_id: str
    period_days: int
    total_earnings: Decimal
    new_subscribers: int
    renewed_subscriptions: int
    expired_subscriptions: int
    total_active_subscriptions: int
    renewal_rate: float
    earnings_growth: float
    week_over_week_growth: float
    next_payout_date: date

    model_config = ConfigDict(frozen=True)


class EarningsHistoryItem(BaseModel):
    """One day of earnings history."""

    day: date
    earnings: Decimal = Decimal("0")
    new_subscribers: int = 0
    renewed_subscriptions: int = 0
    total_active_subscriptions: int = 0

    model_config = ConfigDict(frozen=True)


class TrendPoint(BaseModel):
    """One day of subscription movement."""

    day: date
    new_subscriptions: int = 0
    renewals: int = 0
    expirations: int = 0
    cancellations: int = 0
    net_growth: int = 0
    revenue: Decimal = Decimal("0")

    model_config = ConfigDict(frozen=True)


class CommunityAnalytics(BaseModel):
    """Summary of a single community over a trailing period."""

    community_id: str
    period_days: int
    total_revenue: Decimal
    total_new_subscribers: int
    total_renewals: int
    total_expirations: int
    active_memberships: int
    daily: List[AnalyticsRecord] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class TopCommunity(BaseModel):
    """Community ranked by revenue for an issuer."""

    community_id: str
    revenue: Decimal
    new_subscribers: int
    renewed_subscriptions: int
    peak_active_subscriptions: int
    collection_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)
