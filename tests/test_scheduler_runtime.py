"""Tests for APScheduler runtime wiring."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC
from typing import Any

from config import AppConfig
from scheduler import MAINTENANCE_JOB_ID, WEEKLY_JOB_ID, SchedulerRuntime


@dataclass
class _FakeEngine:
    sweep_sources: list[Any] = field(default_factory=list)
    maintenance_calls: int = 0

    def run_sweep(self, trigger_source: Any) -> Any:
        self.sweep_sources.append(trigger_source)
        return type("Summary", (), {"accepted": True, "reason": "completed"})()

    def run_maintenance(self) -> Any:
        self.maintenance_calls += 1
        return type("Summary", (), {"accepted": True, "reason": "completed"})()


def _runtime(app_config: AppConfig, engine: _FakeEngine) -> SchedulerRuntime:
    return SchedulerRuntime(
        config=app_config,
        engine=engine,  # type: ignore[arg-type]
        trigger_source_factory=lambda: "fresh-source",  # type: ignore[arg-type,return-value]
    )


def test_scheduler_start_registers_both_jobs(app_config: AppConfig) -> None:
    runtime = _runtime(app_config, _FakeEngine())

    runtime.start()
    try:
        assert runtime.scheduler is not None
        assert runtime.scheduler.get_job(WEEKLY_JOB_ID) is not None
        assert runtime.scheduler.get_job(MAINTENANCE_JOB_ID) is not None
    finally:
        runtime.shutdown()

    assert runtime.scheduler is None


def test_scheduler_jobs_invoke_engine_methods(app_config: AppConfig) -> None:
    engine = _FakeEngine()
    runtime = _runtime(app_config, engine)

    runtime.start()
    try:
        runtime._weekly_sweep_job()  # noqa: SLF001
        runtime._maintenance_job()  # noqa: SLF001

        assert engine.sweep_sources == ["fresh-source"]
        assert engine.maintenance_calls == 1
    finally:
        runtime.shutdown()


def test_next_sweep_is_utc_monday_when_available(app_config: AppConfig) -> None:
    runtime = _runtime(app_config, _FakeEngine())

    runtime.start()
    try:
        next_run = runtime.next_sweep_at()
        assert next_run is not None
        assert next_run.tzinfo == UTC
        assert next_run.astimezone(runtime.scheduler.timezone).weekday() == 0  # type: ignore[union-attr]
    finally:
        runtime.shutdown()


def test_next_sweep_is_none_before_start(app_config: AppConfig) -> None:
    runtime = _runtime(app_config, _FakeEngine())

    assert runtime.next_sweep_at() is None
    runtime.shutdown()
