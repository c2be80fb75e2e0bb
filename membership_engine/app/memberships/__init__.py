"""Membership domain package: timed access grants and their lifecycle."""

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
from .service import (
    RENEWAL_REMINDER_TEMPLATE,
    CollectionRepository,
    MembershipConflictError,
    MembershipError,
    MembershipLifecycle,
    MembershipNotFoundError,
    MembershipNotifier,
    MembershipRepository,
    MintingGateway,
    SupplyExhaustedError,
)

__all__ = [
    "AccessCheck",
    "BillingInterval",
    "Collection",
    "CollectionRepository",
    "ExpirySummary",
    "Membership",
    "MembershipConflictError",
    "MembershipError",
    "MembershipKey",
    "MembershipLifecycle",
    "MembershipNotFoundError",
    "MembershipNotifier",
    "MembershipRepository",
    "MintReceipt",
    "MintingGateway",
    "RENEWAL_REMINDER_TEMPLATE",
    "ReminderSummary",
    "RenewalReceipt",
    "RenewalSummary",
    "SnapshotSummary",
    "SupplyExhaustedError",
    "add_billing_period",
]
