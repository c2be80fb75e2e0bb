from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from membership_engine.app.jobs import (
    JobExecutionError,
    JobMetadata,
    JobOutcome,
    JobStatus,
    TriggerSource,
)


class PartialFailure(RuntimeError):
    def __init__(self, message: str, processed_items: int) -> None:
        super().__init__(message)
        self.processed_items = processed_items


def test_success_records_counts_and_metadata(runner, job_repository):
    record = runner.execute(
        "check-expired-memberships",
        lambda: JobOutcome(processed_items=3, metadata=JobMetadata(candidates=4, communities_affected=2)),
    )

    assert record.status == JobStatus.SUCCESS
    assert record.processed_items == 3
    assert record.trigger_source == TriggerSource.SCHEDULED
    assert record.error_message is None
    assert record.metadata.as_payload() == {"candidates": 4, "communities_affected": 2}
    assert job_repository.records == [record]


def test_failure_before_any_work_records_zero(runner, job_repository):
    def body():
        raise RuntimeError("boom")

    record = runner.execute("update-daily-analytics", body)

    assert record.status == JobStatus.FAILED
    assert record.processed_items == 0
    assert record.error_message == "RuntimeError: boom"
    assert job_repository.records == [record]


def test_failure_keeps_partial_progress(runner):
    def body():
        raise PartialFailure("lost connection", processed_items=7)

    record = runner.execute("auto-renew-memberships", body, trigger_source=TriggerSource.MANUAL)

    assert record.processed_items == 7
    assert record.trigger_source == TriggerSource.MANUAL
    assert record.error_message == "PartialFailure: lost connection"


def test_store_failure_does_not_mask_outcome(runner, job_repository):
    job_repository.fail_writes = True

    record = runner.execute("send-renewal-reminders", lambda: JobOutcome(processed_items=1))

    assert record.status == JobStatus.SUCCESS
    assert job_repository.records == []


def test_raise_on_failure_raises_after_persisting(runner, job_repository):
    def body():
        raise ValueError("bad window")

    with pytest.raises(JobExecutionError) as excinfo:
        runner.execute("send-renewal-reminders", body, raise_on_failure=True)

    assert excinfo.value.record.status == JobStatus.FAILED
    assert job_repository.records == [excinfo.value.record]


def test_duration_is_derived_from_timestamps(runner, monkeypatch):
    start = datetime(2024, 5, 15, 2, 0, tzinfo=timezone.utc)
    moments = iter([start, start + timedelta(milliseconds=1500)])
    monkeypatch.setattr(runner, "_now", lambda: next(moments))

    record = runner.execute("check-expired-memberships", lambda: JobOutcome())

    assert record.started_at == start
    assert record.duration_ms == 1500
