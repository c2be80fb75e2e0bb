"""Analytics domain package aggregating membership events per community and day."""

from .models import (
    AnalyticsDelta,
    AnalyticsKey,
    AnalyticsRecord,
    CommunityAnalytics,
    EarningsHistoryItem,
    EarningsOverview,
    SnapshotPolicy,
    TopCommunity,
    TrendPoint,
)
from .service import (
    AnalyticsLedger,
    AnalyticsRepository,
    growth_percentage,
    next_payout_date,
    renewal_rate,
)

__all__ = [
    "AnalyticsDelta",
    "AnalyticsKey",
    "AnalyticsLedger",
    "AnalyticsRecord",
    "AnalyticsRepository",
    "CommunityAnalytics",
    "EarningsHistoryItem",
    "EarningsOverview",
    "SnapshotPolicy",
    "TopCommunity",
    "TrendPoint",
    "growth_percentage",
    "next_payout_date",
    "renewal_rate",
]
