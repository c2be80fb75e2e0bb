"""Membership lifecycle: expiry, reminders, auto-renewal and purchases."""
from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Protocol, Sequence

from ..analytics.service import AnalyticsLedger
from .models import (
    AccessCheck,
    BillingInterval,
    Collection,
    ExpirySummary,
    Membership,
    MembershipKey,
    MintReceipt,
    ReminderSummary,
    RenewalReceipt,
    RenewalSummary,
    SnapshotSummary,
    add_billing_period,
)

logger = logging.getLogger(__name__)

RENEWAL_REMINDER_TEMPLATE = "renewal_reminder"


class MembershipError(Exception):
    """Base error for membership lifecycle failures."""


class MembershipConflictError(MembershipError):
    """Raised when a subscriber already holds an active membership."""


class SupplyExhaustedError(MembershipError):
    """Raised when a collection has issued its maximum supply."""


class MembershipNotFoundError(MembershipError, LookupError):
    """Raised when a membership does not exist or belongs to another subscriber."""


class MembershipRepository(Protocol):
    """Persistence operations required by the membership lifecycle."""

    def get(self, membership_id: str) -> Optional[Membership]:
        ...

    def find_active(self, key: MembershipKey, now: datetime) -> Optional[Membership]:
        ...

    def list_expired(self, now: datetime) -> Sequence[Membership]:
        """Return memberships with ``is_active`` set and ``expires_at < now``."""

    def list_reminder_candidates(self, start: datetime, end: datetime) -> Sequence[Membership]:
        """Return active, unreminded memberships expiring within ``[start, end]``."""

    def list_renewal_candidates(self, start: datetime, end: datetime) -> Sequence[Membership]:
        """Return active auto-renewing memberships expiring within ``[start, end]``."""

    def deactivate(self, membership_id: str) -> bool:
        """Deactivate the membership and its community membership atomically.

        Returns ``False`` when the membership was already inactive.
        """

    def claim_reminder(self, membership_id: str) -> bool:
        """Set ``reminder_sent`` if it is not set yet; ``True`` when this call set it."""

    def extend_expiration(
        self,
        membership_id: str,
        *,
        previous_expires_at: datetime,
        new_expires_at: datetime,
        transaction_ref: str,
    ) -> Optional[Membership]:
        """Move ``expires_at`` forward and reset ``reminder_sent``.

        Only applies while the membership is active and still expires at
        ``previous_expires_at``; returns ``None`` otherwise.
        """

    def set_auto_renew(self, membership_id: str, enabled: bool) -> Optional[Membership]:
        ...

    def cancel(self, membership_id: str) -> Optional[Membership]:
        ...

    def create(self, membership: Membership) -> Membership:
        """Insert the membership and activate the community membership atomically."""

    def count_active(self, community_id: str, now: datetime) -> int:
        ...


class CollectionRepository(Protocol):
    """Lookup of the collections memberships are minted from."""

    def get(self, collection_id: str) -> Optional[Collection]:
        ...

    def find_active_for_community(self, community_id: str) -> Optional[Collection]:
        ...

    def list_active(self) -> Sequence[Collection]:
        ...

    def increment_issued(self, collection_id: str) -> None:
        ...


class MintingGateway(Protocol):
    """Issues and renews membership proofs. Any exception means failure."""

    def mint(self, subscriber_id: str, collection: Collection) -> MintReceipt:
        ...

    def renew(self, subscriber_id: str, membership_id: str) -> RenewalReceipt:
        ...


class MembershipNotifier(Protocol):
    """Delivers subscriber-facing membership notifications."""

    def notify(self, subscriber_id: str, template_id: str, context: Dict[str, Any]) -> None:
        ...


def _days_until(moment: datetime, now: datetime) -> int:
    return max(0, math.ceil((moment - now).total_seconds() / 86400))


@dataclass
class MembershipLifecycle:
    """Applies time-driven membership transitions and their side effects."""

    memberships: MembershipRepository
    collections: CollectionRepository
    minting: MintingGateway
    notifier: MembershipNotifier
    analytics: AnalyticsLedger
    reminder_window_days: int = 7
    renewal_window_hours: int = 24

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _collection(
        self,
        collection_id: str,
        seen: Dict[str, Optional[Collection]],
    ) -> Optional[Collection]:
        # ``seen`` is owned by a single sweep call.
        if collection_id not in seen:
            seen[collection_id] = self.collections.get(collection_id)
        return seen[collection_id]

    # ------------------------------------------------------------------
    # Time-driven sweeps
    # ------------------------------------------------------------------
    def expire_due_memberships(self, *, now: Optional[datetime] = None) -> ExpirySummary:
        """Deactivate every active membership whose expiry has passed."""

        current = now or self._now()
        candidates = list(self.memberships.list_expired(current))

        expired: Counter[str] = Counter()
        exemplar: Dict[str, Membership] = {}
        for membership in candidates:
            try:
                if not self.memberships.deactivate(membership.membership_id):
                    logger.info(
                        "Membership already inactive, skipping",
                        extra={"membership_id": membership.membership_id},
                    )
                    continue
            except Exception:
                logger.exception(
                    "Failed to expire membership",
                    extra={
                        "membership_id": membership.membership_id,
                        "subscriber_id": membership.subscriber_id,
                        "community_id": membership.community_id,
                    },
                )
                continue
            expired[membership.community_id] += 1
            exemplar.setdefault(membership.community_id, membership)

        for community_id, count in expired.items():
            sample = exemplar[community_id]
            try:
                self.analytics.record_expirations(
                    issuer_id=sample.issuer_id,
                    community_id=community_id,
                    collection_id=sample.collection_id,
                    count=count,
                    day=current.date(),
                )
            except Exception:
                logger.exception(
                    "Failed to record expiry analytics",
                    extra={"community_id": community_id, "expired_count": count},
                )

        summary = ExpirySummary(
            processed_items=sum(expired.values()),
            candidates=len(candidates),
            expired_by_community=dict(expired),
        )
        logger.info(
            "Expired memberships",
            extra={
                "processed_items": summary.processed_items,
                "candidates": summary.candidates,
                "communities_affected": summary.communities_affected,
            },
        )
        return summary

    def send_renewal_reminders(
        self,
        *,
        window_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ReminderSummary:
        """Notify subscribers whose membership expires within the reminder window."""

        current = now or self._now()
        window = self.reminder_window_days if window_days is None else window_days
        if window < 0:
            raise ValueError("window_days must be >= 0")
        seen_collections: Dict[str, Optional[Collection]] = {}

        candidates = list(self.memberships.list_reminder_candidates(current, current + timedelta(days=window)))
        processed = 0
        failures = 0
        for membership in candidates:
            try:
                if not self.memberships.claim_reminder(membership.membership_id):
                    continue
            except Exception:
                logger.exception(
                    "Failed to claim renewal reminder",
                    extra={"membership_id": membership.membership_id},
                )
                continue

            processed += 1
            try:
                self.notifier.notify(
                    membership.subscriber_id,
                    RENEWAL_REMINDER_TEMPLATE,
                    self._reminder_context(membership, current, seen_collections),
                )
            except Exception:
                failures += 1
                logger.exception(
                    "Renewal reminder delivery failed",
                    extra={
                        "membership_id": membership.membership_id,
                        "subscriber_id": membership.subscriber_id,
                    },
                )

        logger.info(
            "Sent renewal reminders",
            extra={"processed_items": processed, "candidates": len(candidates), "failures": failures},
        )
        return ReminderSummary(processed_items=processed, candidates=len(candidates), notification_failures=failures)

    def _reminder_context(
        self,
        membership: Membership,
        now: datetime,
        seen_collections: Dict[str, Optional[Collection]],
    ) -> Dict[str, Any]:
        context: Dict[str, Any] = {
            "membership_id": membership.membership_id,
            "community_id": membership.community_id,
            "collection_id": membership.collection_id,
            "expires_at": membership.expires_at.isoformat(),
            "expires_on": membership.expires_at.date().isoformat(),
            "days_remaining": _days_until(membership.expires_at, now),
            "auto_renew": membership.auto_renew,
        }
        collection = self._collection(membership.collection_id, seen_collections)
        if collection is not None:
            context.update(
                {
                    "collection_name": collection.name,
                    "price": str(collection.price_per_period),
                    "currency": collection.currency,
                    "billing_period": "year" if collection.billing_interval == BillingInterval.ANNUAL else "month",
                }
            )
        return context

    def auto_renew_due_memberships(
        self,
        *,
        window_hours: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> RenewalSummary:
        """Attempt renewal of auto-renewing memberships expiring within the window.

        A failed renewal turns ``auto_renew`` off so the membership is not retried
        on later sweeps; it then expires normally.
        """

        current = now or self._now()
        window = self.renewal_window_hours if window_hours is None else window_hours
        if window < 0:
            raise ValueError("window_hours must be >= 0")
        seen_collections: Dict[str, Optional[Collection]] = {}

        candidates = list(self.memberships.list_renewal_candidates(current, current + timedelta(hours=window)))
        renewed = 0
        failed = 0
        for candidate in candidates:
            try:
                membership = self.memberships.get(candidate.membership_id)
            except Exception:
                failed += 1
                logger.exception(
                    "Failed to reload renewal candidate",
                    extra={"membership_id": candidate.membership_id},
                )
                continue
            if membership is None or not membership.is_active or not membership.auto_renew:
                logger.info(
                    "Skipping renewal of inactive membership",
                    extra={"membership_id": candidate.membership_id},
                )
                continue

            try:
                collection = self._collection(membership.collection_id, seen_collections)
            except Exception:
                failed += 1
                logger.exception(
                    "Failed to load collection for renewal",
                    extra={"membership_id": membership.membership_id, "collection_id": membership.collection_id},
                )
                continue
            if collection is None:
                failed += 1
                logger.error(
                    "Collection missing for renewal",
                    extra={"membership_id": membership.membership_id, "collection_id": membership.collection_id},
                )
                self._disable_auto_renew(membership)
                continue

            try:
                receipt = self.minting.renew(membership.subscriber_id, membership.membership_id)
            except Exception:
                failed += 1
                logger.exception(
                    "Auto-renewal failed",
                    extra={
                        "membership_id": membership.membership_id,
                        "subscriber_id": membership.subscriber_id,
                    },
                )
                self._disable_auto_renew(membership)
                continue

            new_expires_at = add_billing_period(membership.expires_at, collection.billing_interval)
            try:
                updated = self.memberships.extend_expiration(
                    membership.membership_id,
                    previous_expires_at=membership.expires_at,
                    new_expires_at=new_expires_at,
                    transaction_ref=receipt.transaction_ref,
                )
            except Exception:
                failed += 1
                logger.exception(
                    "Renewal charged but expiry not stored; reconciliation required",
                    extra={
                        "membership_id": membership.membership_id,
                        "subscriber_id": membership.subscriber_id,
                        "transaction_ref": receipt.transaction_ref,
                        "reconciliation_required": True,
                    },
                )
                continue
            if updated is None:
                logger.error(
                    "Renewal charged but membership changed concurrently; reconciliation required",
                    extra={
                        "membership_id": membership.membership_id,
                        "subscriber_id": membership.subscriber_id,
                        "transaction_ref": receipt.transaction_ref,
                        "reconciliation_required": True,
                    },
                )
                continue

            renewed += 1
            try:
                self.analytics.record_renewal(
                    issuer_id=membership.issuer_id,
                    community_id=membership.community_id,
                    collection_id=membership.collection_id,
                    revenue=collection.price_per_period,
                    day=current.date(),
                )
            except Exception:
                logger.exception(
                    "Failed to record renewal analytics",
                    extra={"membership_id": membership.membership_id},
                )

        logger.info(
            "Processed auto-renewals",
            extra={"processed_items": renewed, "candidates": len(candidates), "failed_renewals": failed},
        )
        return RenewalSummary(processed_items=renewed, candidates=len(candidates), failed_renewals=failed)

    def _disable_auto_renew(self, membership: Membership) -> None:
        try:
            self.memberships.set_auto_renew(membership.membership_id, False)
        except Exception:
            logger.exception(
                "Failed to disable auto-renew",
                extra={"membership_id": membership.membership_id},
            )

    def refresh_daily_active_snapshot(self, *, now: Optional[datetime] = None) -> SnapshotSummary:
        """Record today's active membership count for every active collection."""

        current = now or self._now()
        collections = list(self.collections.list_active())

        processed = 0
        active_by_community: Dict[str, int] = {}
        for collection in collections:
            try:
                if collection.community_id not in active_by_community:
                    active_by_community[collection.community_id] = self.memberships.count_active(
                        collection.community_id, current
                    )
                self.analytics.record_active_snapshot(
                    issuer_id=collection.issuer_id,
                    community_id=collection.community_id,
                    collection_id=collection.collection_id,
                    active_count=active_by_community[collection.community_id],
                    day=current.date(),
                )
            except Exception:
                logger.exception(
                    "Failed to refresh active snapshot",
                    extra={"collection_id": collection.collection_id, "community_id": collection.community_id},
                )
                continue
            processed += 1

        return SnapshotSummary(
            processed_items=processed,
            collections=len(collections),
            active_by_community=active_by_community,
        )

    # ------------------------------------------------------------------
    # Subscriber operations
    # ------------------------------------------------------------------
    def purchase_membership(
        self,
        subscriber_id: str,
        community_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> Membership:
        current = now or self._now()
        collection = self.collections.find_active_for_community(community_id)
        if collection is None:
            raise LookupError(f"No active collection for community {community_id}")
        if collection.supply_exhausted:
            raise SupplyExhaustedError(f"Collection {collection.collection_id} has reached its maximum supply")

        key = MembershipKey(subscriber_id, community_id)
        if self.memberships.find_active(key, current) is not None:
            raise MembershipConflictError("Subscriber already has an active membership for this community")

        receipt = self.minting.mint(subscriber_id, collection)
        membership = self.memberships.create(
            Membership(
                subscriber_id=subscriber_id,
                community_id=community_id,
                collection_id=collection.collection_id,
                issuer_id=collection.issuer_id,
                proof_token=receipt.proof_token,
                transaction_ref=receipt.transaction_ref,
                expires_at=add_billing_period(current, collection.billing_interval),
                minted_at=current,
                created_at=current,
                updated_at=current,
            )
        )
        self.collections.increment_issued(collection.collection_id)
        logger.info(
            "Minted membership",
            extra={
                "membership_id": membership.membership_id,
                "subscriber_id": subscriber_id,
                "community_id": community_id,
                "transaction_ref": receipt.transaction_ref,
            },
        )

        try:
            self.analytics.record_new_subscription(
                issuer_id=collection.issuer_id,
                community_id=community_id,
                collection_id=collection.collection_id,
                revenue=collection.price_per_period,
                active_count=self.memberships.count_active(community_id, current),
                day=current.date(),
            )
        except Exception:
            logger.exception(
                "Failed to record purchase analytics",
                extra={"membership_id": membership.membership_id},
            )
        return membership

    def _owned(self, membership_id: str, subscriber_id: str) -> Membership:
        membership = self.memberships.get(membership_id)
        if membership is None or membership.subscriber_id != subscriber_id:
            raise MembershipNotFoundError(f"Membership {membership_id} not found")
        return membership

    def cancel_membership(
        self,
        membership_id: str,
        subscriber_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> Membership:
        current = now or self._now()
        membership = self._owned(membership_id, subscriber_id)
        if not membership.is_active:
            return membership

        cancelled = self.memberships.cancel(membership_id)
        if cancelled is None:
            raise MembershipNotFoundError(f"Membership {membership_id} not found")

        try:
            self.analytics.record_cancellation(
                issuer_id=membership.issuer_id,
                community_id=membership.community_id,
                collection_id=membership.collection_id,
                day=current.date(),
            )
        except Exception:
            logger.exception("Failed to record cancellation analytics", extra={"membership_id": membership_id})
        return cancelled

    def set_auto_renew(self, membership_id: str, subscriber_id: str, enabled: bool) -> Membership:
        self._owned(membership_id, subscriber_id)
        updated = self.memberships.set_auto_renew(membership_id, enabled)
        if updated is None:
            raise MembershipNotFoundError(f"Membership {membership_id} not found")
        return updated

    def check_access(
        self,
        subscriber_id: str,
        community_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> AccessCheck:
        current = now or self._now()
        membership = self.memberships.find_active(MembershipKey(subscriber_id, community_id), current)
        if membership is None or not membership.grants_access(current):
            return AccessCheck(has_access=False)
        return AccessCheck(
            has_access=True,
            membership=membership,
            expires_at=membership.expires_at,
            days_remaining=_days_until(membership.expires_at, current),
        )


__all__ = [
    "CollectionRepository",
    "MembershipConflictError",
    "MembershipError",
    "MembershipLifecycle",
    "MembershipNotFoundError",
    "MembershipNotifier",
    "MembershipRepository",
    "MintingGateway",
    "RENEWAL_REMINDER_TEMPLATE",
    "SupplyExhaustedError",
]
