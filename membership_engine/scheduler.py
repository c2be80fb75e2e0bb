"""Registry of named recurring triggers, each driven by its own worker thread."""
from __future__ import annotations

import logging
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from threading import Event, Lock, Thread
from typing import Any, ContextManager, Dict, List, Optional, Sequence, Tuple, Union

from .app.jobs.catalog import JobCatalog, JobName
from .app.jobs.models import (
    HealthReport,
    HealthStatus,
    JobExecutionRecord,
    JobStatistic,
    TriggerSource,
    TriggerState,
    TriggerStatus,
)
from .app.jobs.runner import JobExecutionError, JobRunner, UnitOfWork
from .cadence import Cadence, InvalidCadenceError, parse_cadence
from .config import ScheduleConfig

logger = logging.getLogger(__name__)

CadenceSpec = Union[str, int, float, timedelta, Cadence]


class ManualTriggerTimeout(TimeoutError):
    """Raised when a manual trigger does not finish before its deadline.

    The job keeps running in the background and still stores its record.
    """


@dataclass
class _Trigger:
    name: str
    job_name: str
    cadence: Cadence
    unit_of_work: UnitOfWork
    lock: Lock = field(default_factory=Lock)
    worker: Optional["_TriggerWorker"] = None
    next_run: Optional[datetime] = None

    @property
    def running(self) -> bool:
        return self.worker is not None and self.worker.is_alive() and not self.worker.stopping


class _TriggerWorker(Thread):
    def __init__(self, scheduler: "Scheduler", trigger: _Trigger) -> None:
        super().__init__(name=f"trigger-{trigger.name}", daemon=True)
        self._scheduler = scheduler
        self._trigger = trigger
        self._stop_event = Event()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:
        while not self._stop_event.is_set():
            now = self._scheduler._now()
            next_run = self._trigger.cadence.next_after(now)
            self._trigger.next_run = next_run
            if self._stop_event.wait(max((next_run - now).total_seconds(), 0.0)):
                break
            self._scheduler._fire(self._trigger)


class Scheduler:
    """Runs named jobs on cron or interval cadences through a :class:`JobRunner`.

    Executions of the same trigger never overlap, including across a
    stop/start; different triggers run concurrently.
    """

    def __init__(self, runner: JobRunner, *, catalog: Optional[JobCatalog] = None) -> None:
        self._runner = runner
        self._catalog = catalog
        self._triggers: Dict[str, _Trigger] = {}
        self._registry_lock = Lock()

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _fire(self, trigger: _Trigger) -> Optional[JobExecutionRecord]:
        with trigger.lock:
            try:
                return self._runner.execute(
                    trigger.job_name,
                    trigger.unit_of_work,
                    trigger_source=TriggerSource.SCHEDULED,
                )
            except Exception:
                logger.exception("Scheduled trigger raised", extra={"trigger": trigger.name})
                return None

    def schedule(
        self,
        name: str,
        cadence: CadenceSpec,
        unit_of_work: UnitOfWork,
        *,
        timezone: str = "UTC",
        job_name: Optional[str] = None,
    ) -> bool:
        """Register and start a trigger, replacing any trigger with the same name."""

        try:
            parsed = parse_cadence(cadence, timezone)
            first_run = parsed.next_after(self._now())
        except (InvalidCadenceError, OverflowError) as exc:
            logger.error(
                "Rejected trigger with invalid cadence",
                extra={"trigger": name, "cadence": str(cadence), "timezone": timezone, "error": str(exc)},
            )
            return False

        self.remove(name)
        trigger = _Trigger(
            name=name,
            job_name=job_name or name,
            cadence=parsed,
            unit_of_work=unit_of_work,
            next_run=first_run,
        )
        with self._registry_lock:
            self._triggers[name] = trigger
            self._start_worker(trigger)
        logger.info(
            "Trigger scheduled",
            extra={"trigger": name, "cadence": parsed.describe(), "next_run": first_run.isoformat()},
        )
        return True

    def _start_worker(self, trigger: _Trigger) -> None:
        worker = _TriggerWorker(self, trigger)
        trigger.worker = worker
        worker.start()

    def start(self, name: str) -> bool:
        with self._registry_lock:
            trigger = self._triggers.get(name)
            if trigger is None:
                return False
            if not trigger.running:
                self._start_worker(trigger)
                logger.info("Trigger started", extra={"trigger": name})
            return True

    def stop(self, name: str) -> bool:
        with self._registry_lock:
            trigger = self._triggers.get(name)
            if trigger is None:
                return False
            if trigger.worker is not None:
                trigger.worker.stop()
            trigger.next_run = None
            logger.info("Trigger stopped", extra={"trigger": name})
            return True

    def remove(self, name: str) -> bool:
        with self._registry_lock:
            trigger = self._triggers.pop(name, None)
        if trigger is None:
            return False
        if trigger.worker is not None:
            trigger.worker.stop()
        logger.info("Trigger removed", extra={"trigger": name})
        return True

    def shutdown(self, *, join_timeout: float = 1.0) -> None:
        with self._registry_lock:
            triggers = list(self._triggers.values())
            self._triggers.clear()
        workers = [trigger.worker for trigger in triggers if trigger.worker is not None]
        for worker in workers:
            worker.stop()
        for worker in workers:
            worker.join(timeout=join_timeout)
        logger.info("Scheduler stopped", extra={"trigger_count": len(triggers)})

    def trigger_names(self) -> List[str]:
        with self._registry_lock:
            return sorted(self._triggers)

    def knows(self, name: str) -> bool:
        """Whether ``name`` is a catalog job or a registered trigger."""

        if self._catalog is not None and name in self._catalog:
            return True
        with self._registry_lock:
            return name in self._triggers

    def trigger_manually(self, name: str, timeout: Optional[float] = None) -> bool:
        """Run a catalog job or registered trigger now.

        Returns ``False`` when the name is unknown or the job failed. With a
        ``timeout`` a :class:`ManualTriggerTimeout` is raised if the job has not
        finished in time.
        """

        resolved = self._resolve_manual(name)
        if resolved is None:
            logger.warning("Manual trigger for unknown job", extra={"job_name": name})
            return False
        job_name, unit_of_work, lock = resolved

        outcome: Dict[str, bool] = {}

        def _run() -> None:
            with lock:
                try:
                    self._runner.execute(
                        job_name,
                        unit_of_work,
                        trigger_source=TriggerSource.MANUAL,
                        raise_on_failure=True,
                    )
                except JobExecutionError as exc:
                    logger.warning(
                        "Manual job failed",
                        extra={"job_name": job_name, "error_message": exc.record.error_message},
                    )
                    outcome["success"] = False
                else:
                    outcome["success"] = True

        if timeout is None:
            _run()
            return outcome.get("success", False)

        thread = Thread(target=_run, name=f"manual-{job_name}", daemon=True)
        thread.start()
        thread.join(timeout)
        if thread.is_alive():
            logger.warning("Manual trigger timed out", extra={"job_name": job_name, "timeout_seconds": timeout})
            raise ManualTriggerTimeout(f"Job {job_name} did not finish within {timeout} seconds")
        return outcome.get("success", False)

    def _resolve_manual(self, name: str) -> Optional[Tuple[str, UnitOfWork, ContextManager[Any]]]:
        if self._catalog is not None and name in self._catalog:
            unit = self._catalog.unit_for(name, TriggerSource.MANUAL)
            return JobName(name).value, unit, nullcontext()

        with self._registry_lock:
            trigger = self._triggers.get(name)
        if trigger is None:
            return None
        if self._catalog is not None and trigger.job_name in self._catalog:
            unit = self._catalog.unit_for(trigger.job_name, TriggerSource.MANUAL)
        else:
            unit = trigger.unit_of_work
        return trigger.job_name, unit, trigger.lock

    def health_check(self) -> HealthReport:
        with self._registry_lock:
            triggers = list(self._triggers.values())

        statuses = [
            TriggerStatus(
                name=trigger.name,
                state=TriggerState.RUNNING if trigger.running else TriggerState.STOPPED,
                cadence=trigger.cadence.describe(),
                timezone=trigger.cadence.timezone_name,
                next_run=trigger.next_run if trigger.running else None,
            )
            for trigger in sorted(triggers, key=lambda item: item.name)
        ]
        running = sum(1 for status in statuses if status.state == TriggerState.RUNNING)
        stopped = len(statuses) - running

        if statuses and stopped == len(statuses):
            status = HealthStatus.UNHEALTHY
        elif stopped:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY

        return HealthReport(
            status=status,
            total_jobs=len(statuses),
            running_jobs=running,
            stopped_jobs=stopped,
            jobs=statuses,
            checked_at=self._now(),
        )

    def list_history(self, job_name: Optional[str] = None, limit: int = 50) -> Sequence[JobExecutionRecord]:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        return self._runner.repository.list_history(job_name=job_name, limit=limit)

    def statistics(self, window_days: int = 30) -> Sequence[JobStatistic]:
        if window_days < 1:
            raise ValueError("window_days must be >= 1")
        return self._runner.repository.statistics(self._now() - timedelta(days=window_days))


DEFAULT_TRIGGERS = (
    ("daily-jobs", "daily_jobs", JobName.RUN_ALL_DAILY),
    ("hourly-expired-check", "expiry_check", JobName.CHECK_EXPIRED),
    ("auto-renew-check", "auto_renew", JobName.AUTO_RENEW),
    ("analytics-update", "analytics_update", JobName.UPDATE_ANALYTICS),
)


def install_default_triggers(
    scheduler: Scheduler,
    catalog: JobCatalog,
    *,
    schedules: Optional[ScheduleConfig] = None,
    timezone: str = "UTC",
) -> Dict[str, bool]:
    """Register the production triggers; returns whether each was accepted."""

    cadences = schedules or ScheduleConfig()
    results: Dict[str, bool] = {}
    for trigger_name, setting, job in DEFAULT_TRIGGERS:
        unit = catalog.unit_for(job.value, TriggerSource.SCHEDULED)
        results[trigger_name] = scheduler.schedule(
            trigger_name,
            getattr(cadences, setting),
            unit,
            timezone=timezone,
            job_name=job.value,
        )
    logger.info("Default triggers installed", extra={"results": results})
    return results


__all__ = [
    "DEFAULT_TRIGGERS",
    "ManualTriggerTimeout",
    "Scheduler",
    "install_default_triggers",
]
