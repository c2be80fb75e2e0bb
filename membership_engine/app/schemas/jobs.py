"""API schemas for membership job operations."""
from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field

from ..jobs import JobExecutionRecord, JobStatistic


class TriggerJobResponse(BaseModel):
    job_name: str = Field(alias="jobName")
    success: bool

    model_config = ConfigDict(populate_by_name=True)


class TriggerControlResponse(BaseModel):
    trigger: str
    running: bool


class JobHistoryResponse(BaseModel):
    executions: List[JobExecutionRecord] = Field(default_factory=list)


class JobStatisticsResponse(BaseModel):
    window_days: int = Field(alias="windowDays")
    statistics: List[JobStatistic] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)
