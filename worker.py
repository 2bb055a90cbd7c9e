"""Autopilot worker entrypoint.

Builds the draft pipeline and either runs the scheduler (default) or a single
sweep or maintenance pass and exits.
"""

from __future__ import annotations

import argparse
import signal
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from config import AppConfig, get_config
from scheduler import SchedulerRuntime
from services.autopilot import AutopilotEngine
from services.brief_generator import BriefGenerator
from services.deduplicator import TriggerDeduplicator
from services.directory import SqliteDirectory
from services.draft_manager import DraftManager
from services.draft_store import DraftStore
from services.lifecycle import OccasionLifecycleManager
from services.llm import OpenRouterClient
from services.materializer import DraftMaterializer
from services.observability import LogContext, get_logger
from services.recheck import RecheckScheduler
from services.runtime_paths import bootstrap_runtime_paths, trigger_archive_dir
from services.trigger_inbox import FileTriggerSource, TriggerSource
from services.visibility import AnswerEngineVisibilityChecker


@dataclass(frozen=True)
class WorkerRuntime:
    """Container for initialized worker dependencies."""

    engine: AutopilotEngine
    draft_manager: DraftManager
    scheduler: SchedulerRuntime
    trigger_source_factory: Callable[[], TriggerSource]


def build_runtime(config: AppConfig) -> WorkerRuntime:
    store = DraftStore(config.draft_store_db_path)
    store.initialize()
    directory = SqliteDirectory(config.draft_store_db_path)
    directory.initialize()

    # One client, so one pacer spaces every outbound call in the process.
    llm_client = OpenRouterClient(config)

    materializer = DraftMaterializer(
        store=store,
        directory=directory,
        brief_generator=BriefGenerator(llm_client),
        pending_cap=config.pending_draft_cap,
    )
    engine = AutopilotEngine(
        config=config,
        store=store,
        directory=directory,
        deduplicator=TriggerDeduplicator(store),
        materializer=materializer,
        lifecycle=OccasionLifecycleManager(
            store=store,
            directory=directory,
            grace_days=config.occasion_grace_days,
            timezone=config.timezone,
        ),
        rechecks=RecheckScheduler(
            store=store,
            checker=AnswerEngineVisibilityChecker(llm_client, directory),
        ),
    )

    def trigger_source_factory() -> TriggerSource:
        return FileTriggerSource(config.trigger_drop_dir, trigger_archive_dir(config))

    return WorkerRuntime(
        engine=engine,
        draft_manager=DraftManager(config, store),
        scheduler=SchedulerRuntime(
            config=config,
            engine=engine,
            trigger_source_factory=trigger_source_factory,
        ),
        trigger_source_factory=trigger_source_factory,
    )


def _install_signal_handlers(scheduler: SchedulerRuntime, stop_event: threading.Event) -> None:
    def _shutdown(_signum: int, _frame: Any) -> None:
        scheduler.shutdown()
        stop_event.set()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Autopilot content draft worker")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="run a single sweep and exit")
    mode.add_argument(
        "--maintenance",
        action="store_true",
        help="run occasion archival and rechecks once and exit",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the autopilot worker process."""
    args = _parse_args(argv)
    config = get_config()
    bootstrap_runtime_paths(config)

    runtime = build_runtime(config)
    logger = get_logger()

    if args.once:
        summary = runtime.engine.run_sweep(runtime.trigger_source_factory())
        return 0 if summary.accepted else 1
    if args.maintenance:
        summary = runtime.engine.run_maintenance()
        return 0 if summary.accepted else 1

    stop_event = threading.Event()
    runtime.scheduler.start()
    _install_signal_handlers(runtime.scheduler, stop_event)
    logger.info(
        "worker_started",
        context=LogContext(),
        next_sweep_at=runtime.scheduler.next_sweep_at(),
        generation_available=config.has_generation_credential,
    )
    stop_event.wait()
    logger.info("worker_stopped", context=LogContext())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
