from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from membership_engine.app.jobs import DAILY_SEQUENCE, JobName, JobStatus, TriggerSource


@pytest.fixture
def pinned_clock(lifecycle, monkeypatch, now):
    monkeypatch.setattr(lifecycle, "_now", lambda: now)
    return now


def test_catalog_knows_public_job_names(catalog):
    assert "check-expired-memberships" in catalog
    assert "run-all-daily-jobs" in catalog
    assert "daily-jobs" not in catalog
    assert catalog.unit_for("does-not-exist", TriggerSource.MANUAL) is None
    with pytest.raises(KeyError):
        catalog.run("does-not-exist")


def test_check_expired_job_reports_metadata(catalog, memberships, make_membership, pinned_clock):
    memberships.add(make_membership(expires_at=pinned_clock - timedelta(hours=1)))
    memberships.add(make_membership(subscriber_id="fan_2", community_id="com_2", expires_at=pinned_clock - timedelta(hours=3)))

    record = catalog.run("check-expired-memberships")

    assert record.status == JobStatus.SUCCESS
    assert record.processed_items == 2
    assert record.metadata.candidates == 2
    assert record.metadata.communities_affected == 2
    assert record.metadata.expired_by_community == {"com_1": 1, "com_2": 1}


def test_auto_renew_job_reports_successes_and_failures(catalog, memberships, minting, make_membership, pinned_clock):
    memberships.add(make_membership(expires_at=pinned_clock + timedelta(hours=20)))
    failing = memberships.add(make_membership(subscriber_id="fan_2", expires_at=pinned_clock + timedelta(hours=10)))
    minting.failing_renewals.add(failing.membership_id)

    record = catalog.run("auto-renew-memberships", trigger_source=TriggerSource.MANUAL)

    assert record.processed_items == 1
    assert record.metadata.successful_renewals == 1
    assert record.metadata.failed_renewals == 1
    assert record.trigger_source == TriggerSource.MANUAL


def test_run_all_daily_records_each_step_and_itself(catalog, job_repository, memberships, make_membership, pinned_clock):
    memberships.add(make_membership(expires_at=pinned_clock - timedelta(hours=1)))
    memberships.add(make_membership(subscriber_id="fan_2", expires_at=pinned_clock + timedelta(days=3)))

    record = catalog.run("run-all-daily-jobs")

    names = [entry.job_name for entry in job_repository.records]
    assert names == [job.value for job in DAILY_SEQUENCE] + ["run-all-daily-jobs"]
    assert all(entry.trigger_source == TriggerSource.SCHEDULED for entry in job_repository.records)
    assert record.status == JobStatus.SUCCESS
    # one expiry, one reminder, one collection snapshot
    assert record.processed_items == 3
    assert record.metadata.sub_jobs == {job.value: JobStatus.SUCCESS for job in DAILY_SEQUENCE}


def test_run_all_daily_continues_after_failed_step(catalog, job_repository, memberships, monkeypatch, pinned_clock):
    def broken(*args):
        raise ConnectionError("database down")

    monkeypatch.setattr(memberships, "list_reminder_candidates", broken)

    record = catalog.run("run-all-daily-jobs", trigger_source=TriggerSource.MANUAL)

    assert record.status == JobStatus.SUCCESS
    assert record.metadata.sub_jobs[JobName.SEND_REMINDERS.value] == JobStatus.FAILED
    assert record.metadata.sub_jobs[JobName.UPDATE_ANALYTICS.value] == JobStatus.SUCCESS
    failed = [entry for entry in job_repository.records if entry.status == JobStatus.FAILED]
    assert [entry.job_name for entry in failed] == [JobName.SEND_REMINDERS.value]
    assert failed[0].error_message == "ConnectionError: database down"
    assert all(entry.trigger_source == TriggerSource.MANUAL for entry in job_repository.records)


def test_job_failure_before_query_records_zero(catalog, memberships, monkeypatch):
    def broken(*args):
        raise ConnectionError("database down")

    monkeypatch.setattr(memberships, "list_expired", broken)

    record = catalog.run("check-expired-memberships")

    assert record.status == JobStatus.FAILED
    assert record.processed_items == 0
    assert record.completed_at >= record.started_at
    assert record.started_at <= datetime.now(timezone.utc)
