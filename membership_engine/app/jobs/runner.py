"""Execution envelope recording exactly one audit row per job invocation."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol, Sequence

from .models import (
    JobExecutionRecord,
    JobMetadata,
    JobOutcome,
    JobStatistic,
    JobStatus,
    TriggerSource,
)

logger = logging.getLogger(__name__)

UnitOfWork = Callable[[], JobOutcome]


class JobExecutionError(RuntimeError):
    """Raised for manual executions that failed, after the record is stored."""

    def __init__(self, record: JobExecutionRecord) -> None:
        super().__init__(record.error_message or f"Job {record.job_name} failed")
        self.record = record


class JobExecutionRepository(Protocol):
    """Append-only store of job execution records."""

    def record(self, record: JobExecutionRecord) -> None:
        ...

    def list_history(self, *, job_name: Optional[str] = None, limit: int = 50) -> Sequence[JobExecutionRecord]:
        """Return the newest records first."""

    def statistics(self, since: datetime) -> Sequence[JobStatistic]:
        ...


def describe_error(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


@dataclass
class JobRunner:
    """Runs a unit of work and persists its outcome."""

    repository: JobExecutionRepository

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def execute(
        self,
        job_name: str,
        unit_of_work: UnitOfWork,
        *,
        trigger_source: TriggerSource = TriggerSource.SCHEDULED,
        raise_on_failure: bool = False,
    ) -> JobExecutionRecord:
        """Run ``unit_of_work`` and store one :class:`JobExecutionRecord` for it.

        Failures never escape unless ``raise_on_failure`` is set, in which case a
        :class:`JobExecutionError` is raised once the failed record is stored.
        Partial progress is read from a ``processed_items`` attribute on the
        raised exception.
        """

        started_at = self._now()
        logger.info("Job started", extra={"job_name": job_name, "trigger_source": trigger_source.value})
        try:
            outcome = unit_of_work()
        except Exception as exc:
            completed_at = self._now()
            partial = getattr(exc, "processed_items", 0)
            record = JobExecutionRecord(
                job_name=job_name,
                trigger_source=trigger_source,
                status=JobStatus.FAILED,
                started_at=started_at,
                completed_at=completed_at,
                processed_items=partial if isinstance(partial, int) and partial >= 0 else 0,
                error_message=describe_error(exc),
            )
            logger.exception(
                "Job failed",
                extra={
                    "job_name": job_name,
                    "trigger_source": trigger_source.value,
                    "duration_ms": record.duration_ms,
                },
            )
            self._persist(record)
            if raise_on_failure:
                raise JobExecutionError(record) from exc
            return record

        record = JobExecutionRecord(
            job_name=job_name,
            trigger_source=trigger_source,
            status=JobStatus.SUCCESS,
            started_at=started_at,
            completed_at=self._now(),
            processed_items=outcome.processed_items,
            metadata=outcome.metadata or JobMetadata(),
        )
        logger.info(
            "Job completed",
            extra={
                "job_name": job_name,
                "trigger_source": trigger_source.value,
                "processed_items": record.processed_items,
                "duration_ms": record.duration_ms,
            },
        )
        self._persist(record)
        return record

    def _persist(self, record: JobExecutionRecord) -> None:
        try:
            self.repository.record(record)
        except Exception:
            logger.exception(
                "Failed to store job execution record",
                extra={"job_name": record.job_name, "execution_id": record.execution_id},
            )


__all__ = [
    "JobExecutionError",
    "JobExecutionRepository",
    "JobRunner",
    "UnitOfWork",
    "describe_error",
]
