"""Background job envelope, catalog and execution audit models."""

from .catalog import DAILY_SEQUENCE, JobCatalog, JobName
from .models import (
    HealthReport,
    HealthStatus,
    JobExecutionRecord,
    JobMetadata,
    JobOutcome,
    JobStatistic,
    JobStatus,
    TriggerSource,
    TriggerState,
    TriggerStatus,
)
from .runner import JobExecutionError, JobExecutionRepository, JobRunner, UnitOfWork

__all__ = [
    "DAILY_SEQUENCE",
    "HealthReport",
    "HealthStatus",
    "JobCatalog",
    "JobExecutionError",
    "JobExecutionRecord",
    "JobExecutionRepository",
    "JobMetadata",
    "JobName",
    "JobOutcome",
    "JobRunner",
    "JobStatistic",
    "JobStatus",
    "TriggerSource",
    "TriggerState",
    "TriggerStatus",
    "UnitOfWork",
]
