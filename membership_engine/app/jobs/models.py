"""Models describing background job executions and scheduler health."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field


class JobStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class TriggerSource(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"


class JobMetadata(BaseModel):
    """Counters reported by a job body; unset fields are omitted when stored."""

    candidates: Optional[int] = None
    communities_affected: Optional[int] = None
    expired_by_community: Optional[Dict[str, int]] = None
    notification_failures: Optional[int] = None
    successful_renewals: Optional[int] = None
    failed_renewals: Optional[int] = None
    collections_processed: Optional[int] = None
    sub_jobs: Optional[Dict[str, JobStatus]] = None

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    def as_payload(self) -> Dict[str, object]:
        return self.model_dump(mode="json", exclude_none=True)


class JobOutcome(BaseModel):
    """What a unit of work returns on success."""

    processed_items: int = Field(default=0, ge=0)
    metadata: JobMetadata = Field(default_factory=JobMetadata)

    model_config = ConfigDict(frozen=True)


class JobExecutionRecord(BaseModel):
    """Audit row written once per job invocation."""

    execution_id: str = Field(default_factory=lambda: f"job_{uuid4().hex}")
    job_name: str
    trigger_source: TriggerSource
    status: JobStatus
    started_at: datetime
    completed_at: datetime
    processed_items: int = Field(default=0, ge=0)
    error_message: Optional[str] = None
    metadata: JobMetadata = Field(default_factory=JobMetadata)

    model_config = ConfigDict(frozen=True)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def duration_ms(self) -> int:
        return max(0, int((self.completed_at - self.started_at).total_seconds() * 1000))


class JobStatistic(BaseModel):
    """Aggregate of executions sharing a job name and status."""

    job_name: str
    status: JobStatus
    count: int
    avg_duration_ms: float
    avg_processed_items: float

    model_config = ConfigDict(frozen=True)


class TriggerState(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"


class TriggerStatus(BaseModel):
    name: str
    state: TriggerState
    cadence: str
    timezone: str = "UTC"
    next_run: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class HealthReport(BaseModel):
    status: HealthStatus
    total_jobs: int
    running_jobs: int
    stopped_jobs: int
    jobs: List[TriggerStatus] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)


__all__ = [
    "HealthReport",
    "HealthStatus",
    "JobExecutionRecord",
    "JobMetadata",
    "JobOutcome",
    "JobStatistic",
    "JobStatus",
    "TriggerSource",
    "TriggerState",
    "TriggerStatus",
]
