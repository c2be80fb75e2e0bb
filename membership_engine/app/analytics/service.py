"""Day-keyed analytics ledger for membership events."""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

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

logger = logging.getLogger(__name__)


class AnalyticsRepository(Protocol):
    """Persistence operations required by the analytics ledger."""

    def find_by_key(self, key: AnalyticsKey) -> Optional[AnalyticsRecord]:
        ...

    def upsert_by_key(
        self,
        key: AnalyticsKey,
        delta: AnalyticsDelta,
        policy: SnapshotPolicy,
    ) -> AnalyticsRecord:
        """Create the row from ``delta`` or merge ``delta`` into it atomically."""

    def list_for_issuer(self, issuer_id: str, start: date, end: date) -> Sequence[AnalyticsRecord]:
        """Return rows with ``start <= day <= end``."""

    def list_for_community(self, community_id: str, start: date, end: date) -> Sequence[AnalyticsRecord]:
        """Return rows with ``start <= day <= end``."""


def growth_percentage(current: Decimal | int | float, previous: Decimal | int | float) -> float:
    """Percentage change from ``previous`` to ``current``; zero when there is no baseline."""

    if not previous:
        return 0.0
    return float((Decimal(str(current)) - Decimal(str(previous))) / Decimal(str(previous)) * 100)


def renewal_rate(renewed: int, expired: int) -> float:
    if expired <= 0:
        return 0.0
    return renewed / expired * 100


def next_payout_date(today: date) -> date:
    """Payouts happen on the 15th of the month following ``today``."""

    if today.month == 12:
        return date(today.year + 1, 1, 15)
    return date(today.year, today.month + 1, 15)


def _sum_revenue(records: Iterable[AnalyticsRecord]) -> Decimal:
    return sum((record.revenue for record in records), Decimal("0"))


def _latest_snapshot_total(records: Iterable[AnalyticsRecord]) -> int:
    latest: Dict[str, AnalyticsRecord] = {}
    for record in records:
        current = latest.get(record.community_id)
        if current is None or record.day > current.day:
            latest[record.community_id] = record
    return sum(record.total_active_subscriptions for record in latest.values())


@dataclass
class AnalyticsLedger:
    """Idempotent, day-keyed aggregation of membership events."""

    repository: AnalyticsRepository
    currency: str = "USDC"

    def _today(self) -> date:
        return datetime.now(timezone.utc).date()

    def record_daily(
        self,
        key: AnalyticsKey,
        delta: AnalyticsDelta,
        *,
        snapshot: SnapshotPolicy = SnapshotPolicy.INCREMENT,
    ) -> AnalyticsRecord:
        """Upsert ``delta`` into the row identified by ``key``."""

        record = self.repository.upsert_by_key(key, delta, snapshot)
        logger.debug(
            "Recorded daily analytics",
            extra={
                "issuer_id": key.issuer_id,
                "community_id": key.community_id,
                "day": key.day.isoformat(),
                "snapshot_policy": snapshot.value,
            },
        )
        return record

    def record_expirations(
        self,
        *,
        issuer_id: str,
        community_id: str,
        collection_id: str,
        count: int,
        day: Optional[date] = None,
    ) -> AnalyticsRecord:
        key = AnalyticsKey(issuer_id, community_id, day or self._today())
        delta = AnalyticsDelta(
            collection_id=collection_id,
            expired_subscriptions=count,
            currency=self.currency,
        )
        return self.record_daily(key, delta)

    def record_renewal(
        self,
        *,
        issuer_id: str,
        community_id: str,
        collection_id: str,
        revenue: Decimal,
        day: Optional[date] = None,
    ) -> AnalyticsRecord:
        key = AnalyticsKey(issuer_id, community_id, day or self._today())
        delta = AnalyticsDelta(
            collection_id=collection_id,
            renewed_subscriptions=1,
            revenue=revenue,
            currency=self.currency,
        )
        return self.record_daily(key, delta)

    def record_new_subscription(
        self,
        *,
        issuer_id: str,
        community_id: str,
        collection_id: str,
        revenue: Decimal,
        active_count: int,
        day: Optional[date] = None,
    ) -> AnalyticsRecord:
        key = AnalyticsKey(issuer_id, community_id, day or self._today())
        delta = AnalyticsDelta(
            collection_id=collection_id,
            new_subscribers=1,
            total_active_subscriptions=active_count,
            revenue=revenue,
            currency=self.currency,
        )
        return self.record_daily(key, delta, snapshot=SnapshotPolicy.MAX)

    def record_cancellation(
        self,
        *,
        issuer_id: str,
        community_id: str,
        collection_id: str,
        day: Optional[date] = None,
    ) -> AnalyticsRecord:
        key = AnalyticsKey(issuer_id, community_id, day or self._today())
        delta = AnalyticsDelta(
            collection_id=collection_id,
            cancelled_subscriptions=1,
            currency=self.currency,
        )
        return self.record_daily(key, delta)

    def record_active_snapshot(
        self,
        *,
        issuer_id: str,
        community_id: str,
        collection_id: str,
        active_count: int,
        day: Optional[date] = None,
    ) -> AnalyticsRecord:
        key = AnalyticsKey(issuer_id, community_id, day or self._today())
        delta = AnalyticsDelta(
            collection_id=collection_id,
            total_active_subscriptions=active_count,
            currency=self.currency,
        )
        return self.record_daily(key, delta, snapshot=SnapshotPolicy.MAX)

    def get_overview(
        self,
        issuer_id: str,
        period_days: int = 30,
        *,
        today: Optional[date] = None,
    ) -> EarningsOverview:
        if period_days < 1:
            raise ValueError("period_days must be >= 1")
        end = today or self._today()
        start = end - timedelta(days=period_days)
        previous_start = start - timedelta(days=period_days)
        week_start = end - timedelta(days=6)
        previous_week_start = week_start - timedelta(days=7)

        records = self.repository.list_for_issuer(
            issuer_id, min(previous_start, previous_week_start), end
        )
        current = [record for record in records if start <= record.day <= end]
        previous = [record for record in records if previous_start <= record.day < start]
        this_week = [record for record in records if week_start <= record.day <= end]
        last_week = [record for record in records if previous_week_start <= record.day < week_start]

        total_earnings = _sum_revenue(current)
        renewed = sum(record.renewed_subscriptions for record in current)
        expired = sum(record.expired_subscriptions for record in current)

        return EarningsOverview(
            issuer_id=issuer_id,
            period_days=period_days,
            total_earnings=total_earnings,
            new_subscribers=sum(record.new_subscribers for record in current),
            renewed_subscriptions=renewed,
            expired_subscriptions=expired,
            total_active_subscriptions=_latest_snapshot_total(current),
            renewal_rate=renewal_rate(renewed, expired),
            earnings_growth=growth_percentage(total_earnings, _sum_revenue(previous)),
            week_over_week_growth=growth_percentage(_sum_revenue(this_week), _sum_revenue(last_week)),
            next_payout_date=next_payout_date(end),
        )

    def get_history(
        self,
        issuer_id: str,
        period_days: int = 30,
        *,
        today: Optional[date] = None,
    ) -> List[EarningsHistoryItem]:
        end = today or self._today()
        records = self.repository.list_for_issuer(issuer_id, end - timedelta(days=period_days), end)

        grouped: Dict[date, Dict[str, object]] = defaultdict(
            lambda: {
                "earnings": Decimal("0"),
                "new_subscribers": 0,
                "renewed_subscriptions": 0,
                "total_active_subscriptions": 0,
            }
        )
        for record in records:
            entry = grouped[record.day]
            entry["earnings"] += record.revenue
            entry["new_subscribers"] += record.new_subscribers
            entry["renewed_subscriptions"] += record.renewed_subscriptions
            entry["total_active_subscriptions"] = max(
                int(entry["total_active_subscriptions"]), record.total_active_subscriptions
            )
        return [EarningsHistoryItem(day=day, **values) for day, values in sorted(grouped.items())]

    def get_trends(
        self,
        issuer_id: str,
        period_days: int = 30,
        *,
        today: Optional[date] = None,
    ) -> List[TrendPoint]:
        end = today or self._today()
        records = self.repository.list_for_issuer(issuer_id, end - timedelta(days=period_days), end)

        by_day: Dict[date, List[AnalyticsRecord]] = defaultdict(list)
        for record in records:
            by_day[record.day].append(record)

        points: List[TrendPoint] = []
        for day in sorted(by_day):
            day_records = by_day[day]
            points.append(
                TrendPoint(
                    day=day,
                    new_subscriptions=sum(r.new_subscribers for r in day_records),
                    renewals=sum(r.renewed_subscriptions for r in day_records),
                    expirations=sum(r.expired_subscriptions for r in day_records),
                    cancellations=sum(r.cancelled_subscriptions for r in day_records),
                    net_growth=sum(r.net_growth for r in day_records),
                    revenue=_sum_revenue(day_records),
                )
            )
        return points

    def get_community_analytics(
        self,
        community_id: str,
        period_days: int = 30,
        *,
        today: Optional[date] = None,
    ) -> CommunityAnalytics:
        end = today or self._today()
        records = sorted(
            self.repository.list_for_community(community_id, end - timedelta(days=period_days), end),
            key=lambda record: record.day,
            reverse=True,
        )
        return CommunityAnalytics(
            community_id=community_id,
            period_days=period_days,
            total_revenue=_sum_revenue(records),
            total_new_subscribers=sum(record.new_subscribers for record in records),
            total_renewals=sum(record.renewed_subscriptions for record in records),
            total_expirations=sum(record.expired_subscriptions for record in records),
            active_memberships=records[0].total_active_subscriptions if records else 0,
            daily=records,
        )

    def get_top_communities(
        self,
        issuer_id: str,
        *,
        limit: int = 5,
        period_days: int = 30,
        today: Optional[date] = None,
    ) -> List[TopCommunity]:
        end = today or self._today()
        records = self.repository.list_for_issuer(issuer_id, end - timedelta(days=period_days), end)

        by_community: Dict[str, List[AnalyticsRecord]] = defaultdict(list)
        for record in records:
            by_community[record.community_id].append(record)

        ranked = [
            TopCommunity(
                community_id=community_id,
                revenue=_sum_revenue(community_records),
                new_subscribers=sum(r.new_subscribers for r in community_records),
                renewed_subscriptions=sum(r.renewed_subscriptions for r in community_records),
                peak_active_subscriptions=max(r.total_active_subscriptions for r in community_records),
                collection_id=community_records[-1].collection_id,
            )
            for community_id, community_records in by_community.items()
        ]
        ranked.sort(key=lambda entry: (entry.revenue, entry.new_subscribers), reverse=True)
        return ranked[: max(0, limit)]


__all__ = [
    "AnalyticsLedger",
    "AnalyticsRepository",
    "growth_percentage",
    "next_payout_date",
    "renewal_rate",
]
