"""Post-publication rechecks of a draft's target query."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from models import ContentDraft, DraftStatus, RecheckSweepResult, RecheckTask
from services.draft_store import DraftStore
from services.observability import LogContext, get_logger
from services.visibility import VisibilityChecker

RECHECK_DELAY_DAYS = 14


def publish_with_recheck(
    store: DraftStore,
    draft: ContentDraft,
    *,
    delay_days: int = RECHECK_DELAY_DAYS,
    now: datetime | None = None,
) -> tuple[ContentDraft, RecheckTask | None]:
    """Publish ``draft`` and queue its recheck atomically."""
    published_at = (now or datetime.now(UTC)).astimezone(UTC)
    updated, task = store.publish_draft(
        draft.draft_id,
        published_at=published_at,
        recheck_due_at=published_at + timedelta(days=delay_days),
    )
    if task is not None:
        _log_scheduled(updated, task)
    return updated, task


def schedule_recheck(
    store: DraftStore,
    draft: ContentDraft,
    *,
    delay_days: int = RECHECK_DELAY_DAYS,
) -> RecheckTask | None:
    """Queue or reset the recheck for an already published draft.

    No-op without a target prompt.
    """
    if draft.status != DraftStatus.PUBLISHED:
        raise ValueError(f"Draft {draft.draft_id} is {draft.status.value}, not published")
    if not draft.target_prompt or not draft.target_prompt.strip():
        return None

    published_at = draft.published_at or datetime.now(UTC)
    task = store.enqueue_recheck(
        draft_id=draft.draft_id,
        tenant_id=draft.tenant_id,
        location_id=draft.location_id,
        target_query=draft.target_prompt,
        due_at=published_at + timedelta(days=delay_days),
    )
    _log_scheduled(draft, task)
    return task


def _log_scheduled(draft: ContentDraft, task: RecheckTask) -> None:
    get_logger().info(
        "recheck_scheduled",
        context=LogContext(
            tenant_id=draft.tenant_id,
            location_id=draft.location_id,
            draft_id=draft.draft_id,
        ),
        due_at=task.due_at.isoformat(),
    )


class RecheckScheduler:
    """Consumes due recheck tasks; one failure never blocks the rest."""

    def __init__(self, *, store: DraftStore, checker: VisibilityChecker) -> None:
        self._store = store
        self._checker = checker
        self._events = get_logger()

    def run_recheck_sweep(
        self,
        *,
        now: datetime | None = None,
        sweep_id: str | None = None,
    ) -> RecheckSweepResult:
        now_utc = (now or datetime.now(UTC)).astimezone(UTC)
        try:
            tasks = self._store.list_due_rechecks(now_utc)
        except Exception as exc:
            self._events.error(
                "recheck_queue_read_failed",
                context=LogContext(sweep_id=sweep_id),
                error=str(exc),
            )
            return RecheckSweepResult(completed=0, failed=0)

        completed = 0
        failed = 0
        for task in tasks:
            context = LogContext(
                sweep_id=sweep_id,
                tenant_id=task.tenant_id,
                location_id=task.location_id,
                draft_id=task.draft_id,
            )
            try:
                cited = self._checker.cited_for(task.target_query, task.location_id)
                self._store.complete_recheck(task.draft_id, cited=cited, now=now_utc)
            except Exception as exc:
                failed += 1
                self._events.error(
                    "recheck_failed",
                    context=context,
                    target_query=task.target_query,
                    attempts=task.attempts + 1,
                    error=str(exc),
                )
                self._record_failure(task, str(exc), context)
                continue

            completed += 1
            self._events.info(
                "recheck_completed",
                context=context,
                target_query=task.target_query,
                cited=cited,
            )

        return RecheckSweepResult(completed=completed, failed=failed)

    def _record_failure(self, task: RecheckTask, error: str, context: LogContext) -> None:
        try:
            self._store.record_recheck_failure(task.draft_id, error)
        except Exception as exc:
            self._events.error("recheck_failure_not_recorded", context=context, error=str(exc))
