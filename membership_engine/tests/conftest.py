"""In-memory collaborators shared by the membership engine tests."""
from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from membership_engine.app.analytics import (
    AnalyticsDelta,
    AnalyticsKey,
    AnalyticsLedger,
    AnalyticsRecord,
    AnalyticsRepository,
    SnapshotPolicy,
)
from membership_engine.app.jobs import (
    JobCatalog,
    JobExecutionRecord,
    JobExecutionRepository,
    JobRunner,
    JobStatistic,
)
from membership_engine.app.memberships import (
    BillingInterval,
    Collection,
    CollectionRepository,
    Membership,
    MembershipKey,
    MembershipLifecycle,
    MembershipNotifier,
    MembershipRepository,
    MintingGateway,
    MintReceipt,
    RenewalReceipt,
)


class InMemoryMembershipRepository(MembershipRepository):
    def __init__(self) -> None:
        self.rows: Dict[str, Membership] = {}
        self.community_members: Dict[Tuple[str, str], str] = {}
        self.failing_deactivations: set[str] = set()

    def add(self, membership: Membership) -> Membership:
        self.rows[membership.membership_id] = membership
        self.community_members[(membership.subscriber_id, membership.community_id)] = (
            "active" if membership.is_active else "expired"
        )
        return membership

    def _update(self, membership_id: str, **changes) -> Membership:
        updated = self.rows[membership_id].model_copy(
            update={**changes, "updated_at": datetime.now(timezone.utc)}
        )
        self.rows[membership_id] = updated
        return updated

    def get(self, membership_id: str) -> Optional[Membership]:
        return self.rows.get(membership_id)

    def find_active(self, key: MembershipKey, now: datetime) -> Optional[Membership]:
        matches = [row for row in self.rows.values() if row.key == key and row.grants_access(now)]
        return max(matches, key=lambda row: row.expires_at) if matches else None

    def list_expired(self, now: datetime) -> Sequence[Membership]:
        return [row for row in self.rows.values() if row.is_active and row.expires_at < now]

    def list_reminder_candidates(self, start: datetime, end: datetime) -> Sequence[Membership]:
        return [
            row
            for row in self.rows.values()
            if row.is_active and not row.reminder_sent and start <= row.expires_at <= end
        ]

    def list_renewal_candidates(self, start: datetime, end: datetime) -> Sequence[Membership]:
        return [
            row
            for row in self.rows.values()
            if row.is_active and row.auto_renew and start <= row.expires_at <= end
        ]

    def deactivate(self, membership_id: str) -> bool:
        if membership_id in self.failing_deactivations:
            raise RuntimeError("database unavailable")
        row = self.rows.get(membership_id)
        if row is None or not row.is_active:
            return False
        self._update(membership_id, is_active=False)
        self.community_members[(row.subscriber_id, row.community_id)] = "expired"
        return True

    def claim_reminder(self, membership_id: str) -> bool:
        row = self.rows.get(membership_id)
        if row is None or row.reminder_sent:
            return False
        self._update(membership_id, reminder_sent=True)
        return True

    def extend_expiration(
        self,
        membership_id: str,
        *,
        previous_expires_at: datetime,
        new_expires_at: datetime,
        transaction_ref: str,
    ) -> Optional[Membership]:
        row = self.rows.get(membership_id)
        if (
            row is None
            or not row.is_active
            or row.expires_at != previous_expires_at
            or new_expires_at <= row.expires_at
        ):
            return None
        return self._update(
            membership_id,
            expires_at=new_expires_at,
            transaction_ref=transaction_ref,
            reminder_sent=False,
        )

    def set_auto_renew(self, membership_id: str, enabled: bool) -> Optional[Membership]:
        if membership_id not in self.rows:
            return None
        return self._update(membership_id, auto_renew=enabled)

    def cancel(self, membership_id: str) -> Optional[Membership]:
        row = self.rows.get(membership_id)
        if row is None:
            return None
        self.community_members[(row.subscriber_id, row.community_id)] = "cancelled"
        return self._update(membership_id, is_active=False, auto_renew=False)

    def create(self, membership: Membership) -> Membership:
        self.rows[membership.membership_id] = membership
        self.community_members[(membership.subscriber_id, membership.community_id)] = "active"
        return membership

    def count_active(self, community_id: str, now: datetime) -> int:
        return len(
            {
                row.subscriber_id
                for row in self.rows.values()
                if row.community_id == community_id and row.grants_access(now)
            }
        )


class InMemoryCollectionRepository(CollectionRepository):
    def __init__(self) -> None:
        self.rows: Dict[str, Collection] = {}

    def add(self, collection: Collection) -> Collection:
        self.rows[collection.collection_id] = collection
        return collection

    def get(self, collection_id: str) -> Optional[Collection]:
        return self.rows.get(collection_id)

    def find_active_for_community(self, community_id: str) -> Optional[Collection]:
        for collection in self.rows.values():
            if collection.community_id == community_id and collection.is_active:
                return collection
        return None

    def list_active(self) -> Sequence[Collection]:
        return [collection for collection in self.rows.values() if collection.is_active]

    def increment_issued(self, collection_id: str) -> None:
        collection = self.rows[collection_id]
        self.rows[collection_id] = collection.model_copy(update={"issued_count": collection.issued_count + 1})


class InMemoryAnalyticsRepository(AnalyticsRepository):
    def __init__(self) -> None:
        self.rows: Dict[AnalyticsKey, AnalyticsRecord] = {}
        self.failing_communities: set[str] = set()

    def find_by_key(self, key: AnalyticsKey) -> Optional[AnalyticsRecord]:
        return self.rows.get(key)

    def upsert_by_key(self, key: AnalyticsKey, delta: AnalyticsDelta, policy: SnapshotPolicy) -> AnalyticsRecord:
        if key.community_id in self.failing_communities:
            raise RuntimeError("analytics store unavailable")
        existing = self.rows.get(key)
        record = AnalyticsRecord.from_delta(key, delta) if existing is None else existing.apply(delta, policy)
        self.rows[key] = record
        return record

    def list_for_issuer(self, issuer_id: str, start: date, end: date) -> Sequence[AnalyticsRecord]:
        return sorted(
            (row for row in self.rows.values() if row.issuer_id == issuer_id and start <= row.day <= end),
            key=lambda row: (row.day, row.community_id),
        )

    def list_for_community(self, community_id: str, start: date, end: date) -> Sequence[AnalyticsRecord]:
        return sorted(
            (row for row in self.rows.values() if row.community_id == community_id and start <= row.day <= end),
            key=lambda row: row.day,
            reverse=True,
        )


class InMemoryJobExecutionRepository(JobExecutionRepository):
    def __init__(self) -> None:
        self.records: List[JobExecutionRecord] = []
        self.fail_writes = False

    def record(self, record: JobExecutionRecord) -> None:
        if self.fail_writes:
            raise RuntimeError("log table unavailable")
        self.records.append(record)

    def list_history(self, *, job_name: Optional[str] = None, limit: int = 50) -> Sequence[JobExecutionRecord]:
        matching = [record for record in self.records if job_name is None or record.job_name == job_name]
        return sorted(matching, key=lambda record: record.started_at, reverse=True)[:limit]

    def statistics(self, since: datetime) -> Sequence[JobStatistic]:
        groups: Dict[Tuple[str, str], List[JobExecutionRecord]] = defaultdict(list)
        for record in self.records:
            if record.started_at >= since:
                groups[(record.job_name, record.status.value)].append(record)
        return [
            JobStatistic(
                job_name=job_name,
                status=status,
                count=len(records),
                avg_duration_ms=sum(r.duration_ms for r in records) / len(records),
                avg_processed_items=sum(r.processed_items for r in records) / len(records),
            )
            for (job_name, status), records in sorted(groups.items())
        ]


class FakeMintingGateway(MintingGateway):
    def __init__(self) -> None:
        self.minted: List[Tuple[str, str]] = []
        self.renewed: List[Tuple[str, str]] = []
        self.failing_renewals: set[str] = set()

    def mint(self, subscriber_id: str, collection: Collection) -> MintReceipt:
        self.minted.append((subscriber_id, collection.collection_id))
        return MintReceipt(proof_token=f"proof-{len(self.minted)}", transaction_ref=f"0xmint{len(self.minted)}")

    def renew(self, subscriber_id: str, membership_id: str) -> RenewalReceipt:
        if membership_id in self.failing_renewals:
            raise RuntimeError("insufficient balance")
        self.renewed.append((subscriber_id, membership_id))
        return RenewalReceipt(transaction_ref=f"0xrenew{len(self.renewed)}")


class RecordingNotifier(MembershipNotifier):
    def __init__(self) -> None:
        self.sent: List[Tuple[str, str, Dict[str, object]]] = []
        self.failing_subscribers: set[str] = set()

    def notify(self, subscriber_id: str, template_id: str, context: Dict[str, object]) -> None:
        if subscriber_id in self.failing_subscribers:
            raise ConnectionError("smtp unavailable")
        self.sent.append((subscriber_id, template_id, context))


NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def memberships() -> InMemoryMembershipRepository:
    return InMemoryMembershipRepository()


@pytest.fixture
def collections() -> InMemoryCollectionRepository:
    repository = InMemoryCollectionRepository()
    repository.add(
        Collection(
            collection_id="col_1",
            community_id="com_1",
            issuer_id="artist_1",
            name="Inner Circle",
            price_per_period=Decimal("9.99"),
            billing_interval=BillingInterval.MONTHLY,
            max_supply=100,
        )
    )
    return repository


@pytest.fixture
def analytics_repository() -> InMemoryAnalyticsRepository:
    return InMemoryAnalyticsRepository()


@pytest.fixture
def ledger(analytics_repository: InMemoryAnalyticsRepository) -> AnalyticsLedger:
    return AnalyticsLedger(repository=analytics_repository)


@pytest.fixture
def minting() -> FakeMintingGateway:
    return FakeMintingGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def lifecycle(memberships, collections, minting, notifier, ledger) -> MembershipLifecycle:
    return MembershipLifecycle(
        memberships=memberships,
        collections=collections,
        minting=minting,
        notifier=notifier,
        analytics=ledger,
    )


@pytest.fixture
def job_repository() -> InMemoryJobExecutionRepository:
    return InMemoryJobExecutionRepository()


@pytest.fixture
def runner(job_repository: InMemoryJobExecutionRepository) -> JobRunner:
    return JobRunner(repository=job_repository)


@pytest.fixture
def catalog(lifecycle: MembershipLifecycle, runner: JobRunner) -> JobCatalog:
    return JobCatalog(lifecycle=lifecycle, runner=runner)


def _build_membership(**overrides) -> Membership:
    values = {
        "subscriber_id": "fan_1",
        "community_id": "com_1",
        "collection_id": "col_1",
        "issuer_id": "artist_1",
        "proof_token": "proof-0",
        "transaction_ref": "0xmint0",
        "expires_at": NOW,
    }
    values.update(overrides)
    return Membership(**values)


@pytest.fixture
def make_membership():
    return _build_membership
