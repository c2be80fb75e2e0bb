"""Application wiring for the membership lifecycle, jobs and scheduler."""
from __future__ import annotations

import logging
from functools import lru_cache
from uuid import uuid4

from ...config import EngineConfig, load_engine_config
from ...mail import create_email_provider, load_email_config
from ...scheduler import Scheduler, install_default_triggers
from ..analytics import AnalyticsLedger
from ..analytics.repository import PostgresAnalyticsRepository
from ..jobs import JobCatalog, JobRunner
from ..jobs.repository import PostgresJobExecutionRepository
from ..memberships import Collection, MembershipLifecycle, MintingGateway, MintReceipt, RenewalReceipt
from ..memberships.repository import PostgresCollectionRepository, PostgresMembershipRepository
from .notifier import EmailMembershipNotifier, PostgresSubscriberDirectory

logger = logging.getLogger("memberships")


class LocalSandboxMintingGateway(MintingGateway):
    """Minting gateway for local development that issues fake proofs."""

    def mint(self, subscriber_id: str, collection: Collection) -> MintReceipt:
        receipt = MintReceipt(proof_token=f"proof_{uuid4().hex}", transaction_ref=f"0x{uuid4().hex}")
        logger.info(
            "Sandbox mint subscriber=%s collection=%s tx=%s",
            subscriber_id,
            collection.collection_id,
            receipt.transaction_ref,
        )
        return receipt

    def renew(self, subscriber_id: str, membership_id: str) -> RenewalReceipt:
        receipt = RenewalReceipt(transaction_ref=f"0x{uuid4().hex}")
        logger.info(
            "Sandbox renewal subscriber=%s membership=%s tx=%s",
            subscriber_id,
            membership_id,
            receipt.transaction_ref,
        )
        return receipt


@lru_cache(maxsize=1)
def get_engine_config() -> EngineConfig:
    return load_engine_config()


@lru_cache(maxsize=1)
def get_analytics_ledger() -> AnalyticsLedger:
    config = get_engine_config()
    return AnalyticsLedger(repository=PostgresAnalyticsRepository(), currency=config.analytics_currency)


@lru_cache(maxsize=1)
def get_membership_lifecycle() -> MembershipLifecycle:
    config = get_engine_config()
    email_config = load_email_config()
    notifier = EmailMembershipNotifier(
        provider=create_email_provider(email_config),
        directory=PostgresSubscriberDirectory(),
        app_base_url=email_config.app_base_url,
    )
    return MembershipLifecycle(
        memberships=PostgresMembershipRepository(),
        collections=PostgresCollectionRepository(),
        minting=LocalSandboxMintingGateway(),
        notifier=notifier,
        analytics=get_analytics_ledger(),
        reminder_window_days=config.reminder_window_days,
        renewal_window_hours=config.renewal_window_hours,
    )


@lru_cache(maxsize=1)
def get_job_runner() -> JobRunner:
    return JobRunner(repository=PostgresJobExecutionRepository())


@lru_cache(maxsize=1)
def get_job_catalog() -> JobCatalog:
    return JobCatalog(lifecycle=get_membership_lifecycle(), runner=get_job_runner())


@lru_cache(maxsize=1)
def get_scheduler() -> Scheduler:
    return Scheduler(get_job_runner(), catalog=get_job_catalog())


def start_membership_scheduler() -> Scheduler:
    """Install the default triggers unless scheduling is disabled."""

    config = get_engine_config()
    scheduler = get_scheduler()
    if not config.scheduler_enabled:
        logger.info("Membership scheduler disabled by configuration")
        return scheduler
    results = install_default_triggers(
        scheduler,
        get_job_catalog(),
        schedules=config.schedules,
        timezone=config.scheduler_timezone,
    )
    rejected = sorted(name for name, accepted in results.items() if not accepted)
    if rejected:
        logger.error("Membership triggers rejected: %s", ", ".join(rejected))
    return scheduler


def shutdown_membership_scheduler() -> None:
    get_scheduler().shutdown()


__all__ = [
    "LocalSandboxMintingGateway",
    "get_analytics_ledger",
    "get_engine_config",
    "get_job_catalog",
    "get_job_runner",
    "get_membership_lifecycle",
    "get_scheduler",
    "shutdown_membership_scheduler",
    "start_membership_scheduler",
]
