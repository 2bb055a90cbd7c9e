"""APScheduler setup for the weekly sweep and maintenance jobs."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import AppConfig
from services.autopilot import AutopilotEngine
from services.trigger_inbox import TriggerSource

WEEKLY_JOB_ID = "weekly_autopilot_sweep"
MAINTENANCE_JOB_ID = "draft_maintenance"


@dataclass
class SchedulerRuntime:
    """Runtime wrapper around APScheduler jobs used by the worker process."""

    config: AppConfig
    engine: AutopilotEngine
    trigger_source_factory: Callable[[], TriggerSource]
    scheduler: BackgroundScheduler | None = None

    def start(self) -> None:
        timezone = ZoneInfo(self.config.timezone)
        scheduler = BackgroundScheduler(timezone=timezone)
        scheduler.add_job(
            self._weekly_sweep_job,
            trigger=CronTrigger(
                day_of_week=self.config.sweep_day,
                hour=self.config.sweep_hour,
                minute=0,
                timezone=timezone,
            ),
            id=WEEKLY_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=3600,
        )

        scheduler.add_job(
            self._maintenance_job,
            trigger=IntervalTrigger(
                hours=self.config.maintenance_interval_hours,
                timezone=timezone,
            ),
            id=MAINTENANCE_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        scheduler.start()
        self.scheduler = scheduler

    def shutdown(self) -> None:
        """Shutdown scheduler and wait for in-flight jobs to finish."""
        if self.scheduler is None:
            return
        self.scheduler.shutdown(wait=True)
        self.scheduler = None

    def next_sweep_at(self) -> datetime | None:
        if self.scheduler is None:
            return None
        job = self.scheduler.get_job(WEEKLY_JOB_ID)
        if job is None or job.next_run_time is None:
            return None
        return job.next_run_time.astimezone(UTC)

    def _weekly_sweep_job(self) -> None:
        self.engine.run_sweep(self.trigger_source_factory())

    def _maintenance_job(self) -> None:
        self.engine.run_maintenance()
