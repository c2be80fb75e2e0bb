"""PostgreSQL persistence for job execution records."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

import psycopg2.extras

from ..db import PostgresRepository
from .models import JobExecutionRecord, JobMetadata, JobStatistic, JobStatus, TriggerSource


def _row_to_record(row: dict) -> JobExecutionRecord:
    return JobExecutionRecord(
        execution_id=row["execution_id"],
        job_name=row["job_name"],
        trigger_source=TriggerSource(row["trigger_source"]),
        status=JobStatus(row["status"]),
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        processed_items=int(row.get("processed_items") or 0),
        error_message=row.get("error_message"),
        metadata=JobMetadata(**(row.get("metadata") or {})),
    )


class PostgresJobExecutionRepository(PostgresRepository):
    """Append-only ``cron_job_logs`` table."""

    def record(self, record: JobExecutionRecord) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO cron_job_logs (
                    execution_id,
                    job_name,
                    trigger_source,
                    status,
                    started_at,
                    completed_at,
                    duration_ms,
                    processed_items,
                    error_message,
                    metadata
                )
                VALUES (%(execution_id)s, %(job_name)s, %(trigger_source)s, %(status)s,
                        %(started_at)s, %(completed_at)s, %(duration_ms)s,
                        %(processed_items)s, %(error_message)s, %(metadata)s)
                ON CONFLICT (execution_id) DO NOTHING
                """,
                {
                    "execution_id": record.execution_id,
                    "job_name": record.job_name,
                    "trigger_source": record.trigger_source.value,
                    "status": record.status.value,
                    "started_at": record.started_at,
                    "completed_at": record.completed_at,
                    "duration_ms": record.duration_ms,
                    "processed_items": record.processed_items,
                    "error_message": record.error_message,
                    "metadata": psycopg2.extras.Json(record.metadata.as_payload()),
                },
            )

    def list_history(self, *, job_name: Optional[str] = None, limit: int = 50) -> list[JobExecutionRecord]:
        with self._cursor() as cursor:
            if job_name:
                cursor.execute(
                    """
                    SELECT *
                    FROM cron_job_logs
                    WHERE job_name = %s
                    ORDER BY started_at DESC
                    LIMIT %s
                    """,
                    (job_name, limit),
                )
            else:
                cursor.execute(
                    """
                    SELECT *
                    FROM cron_job_logs
                    ORDER BY started_at DESC
                    LIMIT %s
                    """,
                    (limit,),
                )
            rows = cursor.fetchall() or []
            return [_row_to_record(row) for row in rows]

    def statistics(self, since: datetime) -> list[JobStatistic]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT
                    job_name,
                    status,
                    COUNT(*) AS count,
                    COALESCE(AVG(duration_ms), 0) AS avg_duration_ms,
                    COALESCE(AVG(processed_items), 0) AS avg_processed_items
                FROM cron_job_logs
                WHERE started_at >= %s
                GROUP BY job_name, status
                ORDER BY job_name ASC, status ASC
                """,
                (since,),
            )
            rows = cursor.fetchall() or []
            return [
                JobStatistic(
                    job_name=row["job_name"],
                    status=JobStatus(row["status"]),
                    count=int(row["count"]),
                    avg_duration_ms=float(row["avg_duration_ms"]),
                    avg_processed_items=float(row["avg_processed_items"]),
                )
                for row in rows
            ]


__all__ = ["PostgresJobExecutionRepository"]
