"""PostgreSQL persistence for daily analytics rows."""
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from ..db import PostgresRepository
from .models import AnalyticsDelta, AnalyticsKey, AnalyticsRecord, SnapshotPolicy

_ACTIVE_MERGE = {
    SnapshotPolicy.INCREMENT: "creator_analytics.total_active_subscriptions + EXCLUDED.total_active_subscriptions",
    SnapshotPolicy.MAX: "GREATEST(creator_analytics.total_active_subscriptions, EXCLUDED.total_active_subscriptions)",
    SnapshotPolicy.REPLACE: "EXCLUDED.total_active_subscriptions",
}


def _row_to_record(row: dict) -> AnalyticsRecord:
    return AnalyticsRecord(
        issuer_id=row["issuer_id"],
        community_id=row["community_id"],
        collection_id=row["collection_id"],
        day=row["day"],
        new_subscribers=int(row["new_subscribers"]),
        renewed_subscriptions=int(row["renewed_subscriptions"]),
        expired_subscriptions=int(row["expired_subscriptions"]),
        cancelled_subscriptions=int(row["cancelled_subscriptions"]),
        total_active_subscriptions=int(row["total_active_subscriptions"]),
        revenue=Decimal(str(row["revenue"])),
        currency=row["currency"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresAnalyticsRepository(PostgresRepository):
    """Stores one ``creator_analytics`` row per (issuer, community, day)."""

    def find_by_key(self, key: AnalyticsKey) -> Optional[AnalyticsRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM creator_analytics
                WHERE issuer_id = %s AND community_id = %s AND day = %s
                LIMIT 1
                """,
                (key.issuer_id, key.community_id, key.day),
            )
            row = cursor.fetchone()
            return _row_to_record(row) if row else None

    def upsert_by_key(
        self,
        key: AnalyticsKey,
        delta: AnalyticsDelta,
        policy: SnapshotPolicy,
    ) -> AnalyticsRecord:
        """Insert the row or merge ``delta`` into it in a single statement."""

        active_merge = _ACTIVE_MERGE[policy]
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                INSERT INTO creator_analytics (
                    issuer_id,
                    community_id,
                    collection_id,
                    day,
                    new_subscribers,
                    renewed_subscriptions,
                    expired_subscriptions,
                    cancelled_subscriptions,
                    total_active_subscriptions,
                    revenue,
                    currency
                )
                VALUES (%(issuer_id)s, %(community_id)s, %(collection_id)s, %(day)s,
                        %(new_subscribers)s, %(renewed_subscriptions)s,
                        %(expired_subscriptions)s, %(cancelled_subscriptions)s,
                        %(total_active_subscriptions)s, %(revenue)s, %(currency)s)
                ON CONFLICT (issuer_id, community_id, day) DO UPDATE SET
                    new_subscribers = creator_analytics.new_subscribers + EXCLUDED.new_subscribers,
                    renewed_subscriptions = creator_analytics.renewed_subscriptions + EXCLUDED.renewed_subscriptions,
                    expired_subscriptions = creator_analytics.expired_subscriptions + EXCLUDED.expired_subscriptions,
                    cancelled_subscriptions = creator_analytics.cancelled_subscriptions + EXCLUDED.cancelled_subscriptions,
                    total_active_subscriptions = {active_merge},
                    revenue = creator_analytics.revenue + EXCLUDED.revenue,
                    updated_at = NOW()
                RETURNING *
                """,
                {
                    "issuer_id": key.issuer_id,
                    "community_id": key.community_id,
                    "collection_id": delta.collection_id,
                    "day": key.day,
                    "new_subscribers": delta.new_subscribers,
                    "renewed_subscriptions": delta.renewed_subscriptions,
                    "expired_subscriptions": delta.expired_subscriptions,
                    "cancelled_subscriptions": delta.cancelled_subscriptions,
                    "total_active_subscriptions": delta.total_active_subscriptions,
                    "revenue": delta.revenue,
                    "currency": delta.currency,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist analytics row")
            return _row_to_record(row)

    def list_for_issuer(self, issuer_id: str, start: date, end: date) -> list[AnalyticsRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM creator_analytics
                WHERE issuer_id = %s AND day BETWEEN %s AND %s
                ORDER BY day ASC, community_id ASC
                """,
                (issuer_id, start, end),
            )
            rows = cursor.fetchall() or []
            return [_row_to_record(row) for row in rows]

    def list_for_community(self, community_id: str, start: date, end: date) -> list[AnalyticsRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM creator_analytics
                WHERE community_id = %s AND day BETWEEN %s AND %s
                ORDER BY day DESC
                """,
                (community_id, start, end),
            )
            rows = cursor.fetchall() or []
            return [_row_to_record(row) for row in rows]


__all__ = ["PostgresAnalyticsRepository"]
