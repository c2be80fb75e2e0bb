"""Named membership jobs and the composite daily sweep."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from ..memberships.service import MembershipLifecycle
from .models import JobExecutionRecord, JobMetadata, JobOutcome, JobStatus, TriggerSource
from .runner import JobRunner, UnitOfWork

logger = logging.getLogger(__name__)


class JobName(str, Enum):
    CHECK_EXPIRED = "check-expired-memberships"
    SEND_REMINDERS = "send-renewal-reminders"
    AUTO_RENEW = "auto-renew-memberships"
    UPDATE_ANALYTICS = "update-daily-analytics"
    RUN_ALL_DAILY = "run-all-daily-jobs"


DAILY_SEQUENCE = (
    JobName.CHECK_EXPIRED,
    JobName.SEND_REMINDERS,
    JobName.AUTO_RENEW,
    JobName.UPDATE_ANALYTICS,
)


@dataclass
class JobCatalog:
    """Binds public job names to lifecycle operations run through a :class:`JobRunner`."""

    lifecycle: MembershipLifecycle
    runner: JobRunner

    def __contains__(self, job_name: object) -> bool:
        try:
            JobName(job_name)
        except ValueError:
            return False
        return True

    def check_expired(self) -> JobOutcome:
        summary = self.lifecycle.expire_due_memberships()
        return JobOutcome(
            processed_items=summary.processed_items,
            metadata=JobMetadata(
                candidates=summary.candidates,
                communities_affected=summary.communities_affected,
                expired_by_community=summary.expired_by_community,
            ),
        )

    def send_reminders(self) -> JobOutcome:
        summary = self.lifecycle.send_renewal_reminders()
        return JobOutcome(
            processed_items=summary.processed_items,
            metadata=JobMetadata(
                candidates=summary.candidates,
                notification_failures=summary.notification_failures,
            ),
        )

    def auto_renew(self) -> JobOutcome:
        summary = self.lifecycle.auto_renew_due_memberships()
        return JobOutcome(
            processed_items=summary.processed_items,
            metadata=JobMetadata(
                candidates=summary.candidates,
                successful_renewals=summary.successful_renewals,
                failed_renewals=summary.failed_renewals,
            ),
        )

    def update_analytics(self) -> JobOutcome:
        summary = self.lifecycle.refresh_daily_active_snapshot()
        return JobOutcome(
            processed_items=summary.processed_items,
            metadata=JobMetadata(
                candidates=summary.collections,
                collections_processed=summary.processed_items,
                communities_affected=len(summary.active_by_community),
            ),
        )

    def _single_jobs(self) -> Dict[JobName, UnitOfWork]:
        return {
            JobName.CHECK_EXPIRED: self.check_expired,
            JobName.SEND_REMINDERS: self.send_reminders,
            JobName.AUTO_RENEW: self.auto_renew,
            JobName.UPDATE_ANALYTICS: self.update_analytics,
        }

    def run_all_daily(self, trigger_source: TriggerSource) -> JobOutcome:
        """Run every daily job in order, each recorded separately.

        A failing step does not stop the sequence; its status is reported in
        ``sub_jobs``.
        """

        units = self._single_jobs()
        processed = 0
        statuses: Dict[str, JobStatus] = {}
        for job in DAILY_SEQUENCE:
            record = self.runner.execute(job.value, units[job], trigger_source=trigger_source)
            statuses[job.value] = record.status
            processed += record.processed_items
            if record.status == JobStatus.FAILED:
                logger.warning(
                    "Daily sweep step failed",
                    extra={"job_name": job.value, "error_message": record.error_message},
                )
        return JobOutcome(processed_items=processed, metadata=JobMetadata(sub_jobs=statuses))

    def unit_for(self, job_name: str, trigger_source: TriggerSource) -> Optional[UnitOfWork]:
        """Return the unit of work for ``job_name`` or ``None`` when it is unknown."""

        try:
            job = JobName(job_name)
        except ValueError:
            return None
        if job == JobName.RUN_ALL_DAILY:
            return lambda: self.run_all_daily(trigger_source)
        return self._single_jobs()[job]

    def run(
        self,
        job_name: str,
        *,
        trigger_source: TriggerSource = TriggerSource.SCHEDULED,
        raise_on_failure: bool = False,
    ) -> JobExecutionRecord:
        unit = self.unit_for(job_name, trigger_source)
        if unit is None:
            raise KeyError(job_name)
        return self.runner.execute(
            JobName(job_name).value,
            unit,
            trigger_source=trigger_source,
            raise_on_failure=raise_on_failure,
        )


__all__ = ["DAILY_SEQUENCE", "JobCatalog", "JobName"]
