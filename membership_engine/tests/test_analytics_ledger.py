from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest

from membership_engine.app.analytics import (
    AnalyticsDelta,
    AnalyticsKey,
    SnapshotPolicy,
    growth_percentage,
    next_payout_date,
    renewal_rate,
)

TODAY = date(2024, 5, 15)


def test_record_daily_creates_then_increments(ledger, analytics_repository):
    key = AnalyticsKey("artist_1", "com_1", TODAY)

    created = ledger.record_daily(key, AnalyticsDelta(collection_id="col_1", new_subscribers=1, revenue=Decimal("5")))
    updated = ledger.record_daily(
        key,
        AnalyticsDelta(collection_id="col_1", renewed_subscriptions=2, revenue=Decimal("10")),
    )

    assert created.new_subscribers == 1
    assert updated.new_subscribers == 1
    assert updated.renewed_subscriptions == 2
    assert updated.revenue == Decimal("15")
    assert updated.currency == "USDC"
    assert len(analytics_repository.rows) == 1


@pytest.mark.parametrize(
    ("policy", "expected"),
    [
        (SnapshotPolicy.INCREMENT, 12),
        (SnapshotPolicy.MAX, 7),
        (SnapshotPolicy.REPLACE, 5),
    ],
)
def test_snapshot_policies(ledger, policy, expected):
    key = AnalyticsKey("artist_1", "com_1", TODAY)
    ledger.record_daily(key, AnalyticsDelta(collection_id="col_1", total_active_subscriptions=7))

    record = ledger.record_daily(
        key,
        AnalyticsDelta(collection_id="col_1", total_active_subscriptions=5),
        snapshot=policy,
    )

    assert record.total_active_subscriptions == expected


def test_event_increment_leaves_snapshot_untouched(ledger):
    ledger.record_active_snapshot(
        issuer_id="artist_1", community_id="com_1", collection_id="col_1", active_count=4, day=TODAY
    )

    record = ledger.record_expirations(
        issuer_id="artist_1", community_id="com_1", collection_id="col_1", count=2, day=TODAY
    )

    assert record.expired_subscriptions == 2
    assert record.total_active_subscriptions == 4


def test_delta_rejects_negative_counts():
    with pytest.raises(ValueError):
        AnalyticsDelta(collection_id="col_1", expired_subscriptions=-1)


def test_growth_and_rate_helpers():
    assert growth_percentage(Decimal("150"), Decimal("100")) == pytest.approx(50.0)
    assert growth_percentage(10, 0) == 0.0
    assert renewal_rate(3, 4) == pytest.approx(75.0)
    assert renewal_rate(3, 0) == 0.0
    assert next_payout_date(date(2024, 5, 20)) == date(2024, 6, 15)
    assert next_payout_date(date(2024, 12, 2)) == date(2025, 1, 15)


def _seed(ledger):
    ledger.record_renewal(
        issuer_id="artist_1", community_id="com_1", collection_id="col_1", revenue=Decimal("30"), day=TODAY
    )
    ledger.record_new_subscription(
        issuer_id="artist_1",
        community_id="com_1",
        collection_id="col_1",
        revenue=Decimal("10"),
        active_count=5,
        day=TODAY - timedelta(days=2),
    )
    ledger.record_expirations(
        issuer_id="artist_1", community_id="com_1", collection_id="col_1", count=4, day=TODAY - timedelta(days=2)
    )
    ledger.record_active_snapshot(
        issuer_id="artist_1", community_id="com_2", collection_id="col_2", active_count=3, day=TODAY - timedelta(days=1)
    )
    ledger.record_cancellation(
        issuer_id="artist_1", community_id="com_2", collection_id="col_2", day=TODAY - timedelta(days=1)
    )
    # previous period and previous week
    ledger.record_renewal(
        issuer_id="artist_1",
        community_id="com_1",
        collection_id="col_1",
        revenue=Decimal("20"),
        day=TODAY - timedelta(days=40),
    )
    ledger.record_renewal(
        issuer_id="artist_1",
        community_id="com_2",
        collection_id="col_2",
        revenue=Decimal("8"),
        day=TODAY - timedelta(days=10),
    )


def test_overview_aggregates_period(ledger):
    _seed(ledger)

    overview = ledger.get_overview("artist_1", 30, today=TODAY)

    assert overview.total_earnings == Decimal("48")
    assert overview.new_subscribers == 1
    assert overview.renewed_subscriptions == 2
    assert overview.expired_subscriptions == 4
    assert overview.renewal_rate == pytest.approx(50.0)
    assert overview.total_active_subscriptions == 3
    assert overview.earnings_growth == pytest.approx((48 - 20) / 20 * 100)
    assert overview.week_over_week_growth == pytest.approx((40 - 8) / 8 * 100)
    assert overview.next_payout_date == date(2024, 6, 15)


def test_overview_rejects_empty_period(ledger):
    with pytest.raises(ValueError):
        ledger.get_overview("artist_1", 0, today=TODAY)


def test_history_and_trends_group_by_day(ledger):
    _seed(ledger)

    history = ledger.get_history("artist_1", 7, today=TODAY)
    trends = ledger.get_trends("artist_1", 7, today=TODAY)

    assert [item.day for item in history] == [TODAY - timedelta(days=2), TODAY - timedelta(days=1), TODAY]
    assert history[0].earnings == Decimal("10")
    assert history[0].total_active_subscriptions == 5
    assert history[1].total_active_subscriptions == 3

    by_day = {point.day: point for point in trends}
    assert by_day[TODAY - timedelta(days=2)].net_growth == 1 - 4
    assert by_day[TODAY - timedelta(days=1)].net_growth == -1
    assert by_day[TODAY].net_growth == 1
    assert by_day[TODAY].revenue == Decimal("30")


def test_community_analytics_and_top_communities(ledger):
    _seed(ledger)

    community = ledger.get_community_analytics("com_1", 30, today=TODAY)
    top = ledger.get_top_communities("artist_1", limit=1, today=TODAY)

    assert community.total_revenue == Decimal("40")
    assert community.total_expirations == 4
    assert community.daily[0].day == TODAY
    assert [entry.community_id for entry in top] == ["com_1"]
    assert top[0].peak_active_subscriptions == 5
