"""PostgreSQL persistence for memberships and collections."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from ..db import PostgresRepository
from .models import BillingInterval, Collection, Membership, MembershipKey


def _row_to_membership(row: dict) -> Membership:
    return Membership(
        membership_id=row["membership_id"],
        subscriber_id=row["subscriber_id"],
        community_id=row["community_id"],
        collection_id=row["collection_id"],
        issuer_id=row["issuer_id"],
        proof_token=row.get("proof_token") or "",
        transaction_ref=row.get("transaction_ref") or "",
        expires_at=row["expires_at"],
        minted_at=row["minted_at"],
        is_active=bool(row["is_active"]),
        auto_renew=bool(row["auto_renew"]),
        reminder_sent=bool(row["reminder_sent"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_collection(row: dict) -> Collection:
    return Collection(
        collection_id=row["collection_id"],
        community_id=row["community_id"],
        issuer_id=row["issuer_id"],
        name=row.get("name") or "",
        price_per_period=Decimal(str(row["price_per_period"])),
        currency=row["currency"],
        billing_interval=BillingInterval(row["billing_interval"]),
        max_supply=row.get("max_supply"),
        issued_count=int(row.get("issued_count") or 0),
        is_active=bool(row["is_active"]),
    )


class PostgresMembershipRepository(PostgresRepository):
    """Stores memberships and mirrors their state onto ``community_members``."""

    def get(self, membership_id: str) -> Optional[Membership]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM memberships
                WHERE membership_id = %s
                LIMIT 1
                """,
                (membership_id,),
            )
            row = cursor.fetchone()
            return _row_to_membership(row) if row else None

    def find_active(self, key: MembershipKey, now: datetime) -> Optional[Membership]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM memberships
                WHERE subscriber_id = %s
                  AND community_id = %s
                  AND is_active
                  AND expires_at > %s
                ORDER BY expires_at DESC
                LIMIT 1
                """,
                (key.subscriber_id, key.community_id, now),
            )
            row = cursor.fetchone()
            return _row_to_membership(row) if row else None

    def list_expired(self, now: datetime) -> list[Membership]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM memberships
                WHERE is_active AND expires_at < %s
                ORDER BY expires_at ASC
                """,
                (now,),
            )
            rows = cursor.fetchall() or []
            return [_row_to_membership(row) for row in rows]

    def list_reminder_candidates(self, start: datetime, end: datetime) -> list[Membership]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM memberships
                WHERE is_active
                  AND NOT reminder_sent
                  AND expires_at BETWEEN %s AND %s
                ORDER BY expires_at ASC
                """,
                (start, end),
            )
            rows = cursor.fetchall() or []
            return [_row_to_membership(row) for row in rows]

    def list_renewal_candidates(self, start: datetime, end: datetime) -> list[Membership]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM memberships
                WHERE is_active
                  AND auto_renew
                  AND expires_at BETWEEN %s AND %s
                ORDER BY expires_at ASC
                """,
                (start, end),
            )
            rows = cursor.fetchall() or []
            return [_row_to_membership(row) for row in rows]

    def deactivate(self, membership_id: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE memberships
                SET is_active = FALSE, updated_at = NOW()
                WHERE membership_id = %s AND is_active
                RETURNING subscriber_id, community_id
                """,
                (membership_id,),
            )
            row = cursor.fetchone()
            if not row:
                return False
            cursor.execute(
                """
                UPDATE community_members
                SET status = 'expired', updated_at = NOW()
                WHERE user_id = %s AND community_id = %s
                """,
                (row["subscriber_id"], row["community_id"]),
            )
            return True

    def claim_reminder(self, membership_id: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE memberships
                SET reminder_sent = TRUE, updated_at = NOW()
                WHERE membership_id = %s AND NOT reminder_sent
                """,
                (membership_id,),
            )
            return cursor.rowcount > 0

    def extend_expiration(
        self,
        membership_id: str,
        *,
        previous_expires_at: datetime,
        new_expires_at: datetime,
        transaction_ref: str,
    ) -> Optional[Membership]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE memberships
                SET expires_at = %s,
                    transaction_ref = %s,
                    reminder_sent = FALSE,
                    updated_at = NOW()
                WHERE membership_id = %s
                  AND is_active
                  AND expires_at = %s
                  AND %s > expires_at
                RETURNING *
                """,
                (new_expires_at, transaction_ref, membership_id, previous_expires_at, new_expires_at),
            )
            row = cursor.fetchone()
            return _row_to_membership(row) if row else None

    def set_auto_renew(self, membership_id: str, enabled: bool) -> Optional[Membership]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE memberships
                SET auto_renew = %s, updated_at = NOW()
                WHERE membership_id = %s
                RETURNING *
                """,
                (enabled, membership_id),
            )
            row = cursor.fetchone()
            return _row_to_membership(row) if row else None

    def cancel(self, membership_id: str) -> Optional[Membership]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE memberships
                SET is_active = FALSE, auto_renew = FALSE, updated_at = NOW()
                WHERE membership_id = %s
                RETURNING *
                """,
                (membership_id,),
            )
            row = cursor.fetchone()
            if not row:
                return None
            cursor.execute(
                """
                UPDATE community_members
                SET status = 'cancelled', updated_at = NOW()
                WHERE user_id = %s AND community_id = %s
                """,
                (row["subscriber_id"], row["community_id"]),
            )
            return _row_to_membership(row)

    def create(self, membership: Membership) -> Membership:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO memberships (
                    membership_id,
                    subscriber_id,
                    community_id,
                    collection_id,
                    issuer_id,
                    proof_token,
                    transaction_ref,
                    expires_at,
                    minted_at,
                    is_active,
                    auto_renew,
                    reminder_sent
                )
                VALUES (%(membership_id)s, %(subscriber_id)s, %(community_id)s, %(collection_id)s,
                        %(issuer_id)s, %(proof_token)s, %(transaction_ref)s, %(expires_at)s,
                        %(minted_at)s, %(is_active)s, %(auto_renew)s, %(reminder_sent)s)
                RETURNING *
                """,
                {
                    "membership_id": membership.membership_id,
                    "subscriber_id": membership.subscriber_id,
                    "community_id": membership.community_id,
                    "collection_id": membership.collection_id,
                    "issuer_id": membership.issuer_id,
                    "proof_token": membership.proof_token,
                    "transaction_ref": membership.transaction_ref,
                    "expires_at": membership.expires_at,
                    "minted_at": membership.minted_at,
                    "is_active": membership.is_active,
                    "auto_renew": membership.auto_renew,
                    "reminder_sent": membership.reminder_sent,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist membership")
            cursor.execute(
                """
                INSERT INTO community_members (user_id, community_id, status)
                VALUES (%s, %s, 'active')
                ON CONFLICT (user_id, community_id) DO UPDATE SET
                    status = 'active',
                    updated_at = NOW()
                """,
                (membership.subscriber_id, membership.community_id),
            )
            return _row_to_membership(row)

    def count_active(self, community_id: str, now: datetime) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT COUNT(DISTINCT subscriber_id) AS active_count
                FROM memberships
                WHERE community_id = %s AND is_active AND expires_at > %s
                """,
                (community_id, now),
            )
            row = cursor.fetchone()
            return int(row["active_count"]) if row else 0


class PostgresCollectionRepository(PostgresRepository):
    """Read access to membership collections plus the issued-supply counter."""

    def get(self, collection_id: str) -> Optional[Collection]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM membership_collections
                WHERE collection_id = %s
                LIMIT 1
                """,
                (collection_id,),
            )
            row = cursor.fetchone()
            return _row_to_collection(row) if row else None

    def find_active_for_community(self, community_id: str) -> Optional[Collection]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM membership_collections
                WHERE community_id = %s AND is_active
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (community_id,),
            )
            row = cursor.fetchone()
            return _row_to_collection(row) if row else None

    def list_active(self) -> list[Collection]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM membership_collections
                WHERE is_active
                ORDER BY community_id ASC, collection_id ASC
                """
            )
            rows = cursor.fetchall() or []
            return [_row_to_collection(row) for row in rows]

    def increment_issued(self, collection_id: str) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE membership_collections
                SET issued_count = issued_count + 1, updated_at = NOW()
                WHERE collection_id = %s
                """,
                (collection_id,),
            )


__all__ = ["PostgresCollectionRepository", "PostgresMembershipRepository"]
