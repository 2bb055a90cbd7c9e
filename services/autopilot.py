"""Sweep orchestration: per-tenant dedup and materialization, then maintenance passes."""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from typing import Any, Protocol

from config import AppConfig
from models import (
    DraftTrigger,
    SkipReason,
    StepOutcome,
    SweepSummary,
    TenantRecord,
    TenantRunResult,
    TriggerKind,
)
from services.deduplicator import TriggerDeduplicator
from services.directory import SqliteDirectory
from services.draft_store import DraftStore, DraftStoreError
from services.failures import save_dead_letter
from services.lifecycle import OccasionLifecycleManager
from services.materializer import DraftMaterializer
from services.observability import LogContext, StructuredLogger, get_logger
from services.recheck import RecheckScheduler
from services.trigger_inbox import TriggerSource

AUTOPILOT_FEATURE = "autopilot"

TRIGGER_PRIORITY: tuple[TriggerKind, ...] = (
    TriggerKind.COMPETITOR_GAP,
    TriggerKind.PROMPT_MISSING,
    TriggerKind.OCCASION,
    TriggerKind.FIRST_MOVER,
    TriggerKind.REVIEW_GAP,
    TriggerKind.SCHEMA_GAP,
    TriggerKind.MANUAL,
)

_PRIORITY_RANK = {kind: rank for rank, kind in enumerate(TRIGGER_PRIORITY)}


class PlanGate(Protocol):
    def allows(self, plan: str, feature: str) -> bool: ...


class ConfiguredPlanGate:
    """Allows autopilot for the plan tiers listed in configuration."""

    def __init__(self, plans: Iterable[str]) -> None:
        self._plans = frozenset(plan.strip().lower() for plan in plans)

    def allows(self, plan: str, feature: str) -> bool:
        return feature == AUTOPILOT_FEATURE and plan.strip().lower() in self._plans


def sort_by_priority(triggers: Iterable[DraftTrigger]) -> list[DraftTrigger]:
    """Stable sort so higher-value kinds claim pending-cap slots first."""
    return sorted(triggers, key=lambda trigger: _PRIORITY_RANK[trigger.kind])


class AutopilotEngine:
    """Coordinate sweeps; tenant and trigger failures are recorded, never raised."""

    def __init__(
        self,
        *,
        config: AppConfig,
        store: DraftStore,
        directory: SqliteDirectory,
        deduplicator: TriggerDeduplicator,
        materializer: DraftMaterializer,
        lifecycle: OccasionLifecycleManager,
        rechecks: RecheckScheduler,
        plan_gate: PlanGate | None = None,
        logger: StructuredLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._directory = directory
        self._deduplicator = deduplicator
        self._materializer = materializer
        self._lifecycle = lifecycle
        self._rechecks = rechecks
        self._plan_gate = plan_gate or ConfiguredPlanGate(config.autopilot_plans)
        self._logger = logger or get_logger()
        self._clock = clock or (lambda: datetime.now(UTC))

    def run_for_tenant(
        self,
        tenant: TenantRecord,
        triggers: Sequence[DraftTrigger],
        *,
        sweep_id: str | None = None,
    ) -> TenantRunResult:
        """Deduplicate and materialize one tenant's triggers in priority order."""
        result = TenantRunResult(tenant_id=tenant.tenant_id, triggers_received=len(triggers))
        active_locations = set(tenant.location_ids)
        eligible = [trigger for trigger in triggers if trigger.location_id in active_locations]
        result.skipped_inactive = len(triggers) - len(eligible)
        if result.skipped_inactive:
            self._logger.warning(
                "triggers_for_inactive_location",
                context=LogContext(sweep_id=sweep_id, tenant_id=tenant.tenant_id),
                location_ids=sorted(
                    {t.location_id for t in triggers if t.location_id not in active_locations}
                ),
                skipped=result.skipped_inactive,
            )
        if not eligible:
            return result

        now = self._clock()
        ordered = sort_by_priority(eligible)
        admitted = self._deduplicator.deduplicate(ordered, tenant.tenant_id, now=now)
        result.skipped_dedup = len(ordered) - len(admitted)

        for trigger in admitted:
            context = LogContext(
                sweep_id=sweep_id,
                tenant_id=tenant.tenant_id,
                location_id=trigger.location_id,
            )
            try:
                outcome = self._materializer.materialize(
                    trigger,
                    tenant.tenant_id,
                    now=now,
                    sweep_id=sweep_id,
                )
            except DraftStoreError as exc:
                result.write_failures += 1
                result.errors.append(f"{trigger.kind.value}:{trigger.source_id}: {exc}")
                self._logger.error(
                    "draft_write_failed",
                    context=context,
                    trigger_kind=trigger.kind.value,
                    source_id=trigger.source_id,
                    error=str(exc),
                )
                self._record_failure(
                    sweep_id=sweep_id or "adhoc",
                    tenant_id=tenant.tenant_id,
                    stage="draft_write",
                    error=str(exc),
                    payload=_trigger_payload(trigger),
                )
                continue
            except Exception as exc:  # noqa: BLE001
                result.trigger_failures += 1
                result.errors.append(f"{trigger.kind.value}:{trigger.source_id}: {exc}")
                self._logger.error(
                    "trigger_failed",
                    context=context,
                    trigger_kind=trigger.kind.value,
                    source_id=trigger.source_id,
                    error=str(exc),
                )
                self._record_failure(
                    sweep_id=sweep_id or "adhoc",
                    tenant_id=tenant.tenant_id,
                    stage="trigger",
                    error=str(exc),
                    payload=_trigger_payload(trigger),
                )
                continue

            if outcome.created:
                result.drafts_created += 1
            elif outcome.skip_reason == SkipReason.DUPLICATE:
                result.skipped_dedup += 1
            elif outcome.skip_reason == SkipReason.PENDING_CAP:
                result.skipped_cap += 1
            elif outcome.skip_reason in {SkipReason.GENERATION_FAILED, SkipReason.EMPTY_BRIEF}:
                result.generation_failures += 1

        return result

    def run_sweep(self, trigger_source: TriggerSource) -> SweepSummary:
        """Run one full sweep. Returns the summary; never raises."""
        started_at = self._clock()
        sweep_id = _generate_sweep_id(started_at)
        summary = SweepSummary(sweep_id=sweep_id, started_at=started_at)

        if not self._acquire_lock(summary):
            return summary

        context = LogContext(sweep_id=sweep_id)
        try:
            self._logger.info("sweep_started", context=context)
            if self._process_tenants(summary, trigger_source):
                try:
                    trigger_source.acknowledge()
                except Exception as exc:  # noqa: BLE001
                    self._logger.error("trigger_ack_failed", context=context, error=str(exc))
            else:
                # Inbox stays in place for the next sweep; dedup absorbs replays.
                self._logger.warning(
                    "trigger_ack_deferred",
                    context=context,
                    tenants_failed=summary.tenants_failed,
                )
            self._run_maintenance_steps(summary)
        finally:
            self._release_lock(sweep_id)

        self._logger.info("sweep_completed", context=context, **_summary_fields(summary))
        return summary

    def run_maintenance(self) -> SweepSummary:
        """Archival and recheck passes only."""
        started_at = self._clock()
        sweep_id = _generate_sweep_id(started_at, label="maintenance")
        summary = SweepSummary(sweep_id=sweep_id, started_at=started_at)

        if not self._acquire_lock(summary):
            return summary

        try:
            self._run_maintenance_steps(summary)
        finally:
            self._release_lock(sweep_id)

        self._logger.info(
            "maintenance_completed",
            context=LogContext(sweep_id=sweep_id),
            **_summary_fields(summary),
        )
        return summary

    def _acquire_lock(self, summary: SweepSummary) -> bool:
        context = LogContext(sweep_id=summary.sweep_id)
        try:
            acquired = self._store.try_acquire_sweep_lock(summary.sweep_id)
            locked = None if acquired else self._store.get_locked_sweep_id()
        except Exception as exc:  # noqa: BLE001
            summary.accepted = False
            summary.reason = "lock_unavailable"
            self._logger.error("sweep_lock_failed", context=context, error=str(exc))
            return False

        if not acquired:
            summary.accepted = False
            summary.reason = f"sweep_locked:{locked or 'unknown'}"
            self._logger.info("sweep_rejected", context=context, reason=summary.reason)
        return acquired

    def _release_lock(self, sweep_id: str) -> None:
        try:
            self._store.release_sweep_lock(sweep_id)
        except Exception as exc:  # noqa: BLE001
            self._logger.error(
                "sweep_lock_release_failed",
                context=LogContext(sweep_id=sweep_id),
                error=str(exc),
            )

    def _process_tenants(self, summary: SweepSummary, trigger_source: TriggerSource) -> bool:
        """Process every gated tenant; False when any tenant went unprocessed."""
        context = LogContext(sweep_id=summary.sweep_id)
        try:
            tenants = self._directory.list_tenants()
        except Exception as exc:  # noqa: BLE001
            self._logger.error("tenant_listing_failed", context=context, error=str(exc))
            summary.steps.append(StepOutcome(name="tenants", ok=False, error=str(exc)))
            return False

        for tenant in tenants:
            tenant_context = LogContext(sweep_id=summary.sweep_id, tenant_id=tenant.tenant_id)
            if not self._plan_gate.allows(tenant.plan, AUTOPILOT_FEATURE):
                summary.tenants_skipped_plan += 1
                continue

            try:
                triggers = trigger_source.triggers_for(tenant.tenant_id)
                result = self.run_for_tenant(tenant, triggers, sweep_id=summary.sweep_id)
            except Exception as exc:  # noqa: BLE001
                summary.tenants_failed += 1
                self._logger.error("tenant_failed", context=tenant_context, error=str(exc))
                self._record_failure(
                    sweep_id=summary.sweep_id,
                    tenant_id=tenant.tenant_id,
                    stage="tenant",
                    error=str(exc),
                    payload={"plan": tenant.plan},
                )
                continue

            summary.tenants_processed += 1
            summary.drafts_created += result.drafts_created
            summary.drafts_skipped_dedup += result.skipped_dedup
            summary.drafts_skipped_cap += result.skipped_cap
            summary.drafts_skipped_inactive += result.skipped_inactive
            summary.generation_failures += result.generation_failures
            summary.write_failures += result.write_failures
            summary.trigger_failures += result.trigger_failures
            if result.triggers_received:
                self._logger.info(
                    "tenant_processed",
                    context=tenant_context,
                    triggers_received=result.triggers_received,
                    drafts_created=result.drafts_created,
                    skipped_dedup=result.skipped_dedup,
                    skipped_cap=result.skipped_cap,
                    skipped_inactive=result.skipped_inactive,
                    generation_failures=result.generation_failures,
                    write_failures=result.write_failures,
                    trigger_failures=result.trigger_failures,
                )

        summary.steps.append(StepOutcome(name="tenants", ok=True, count=summary.tenants_processed))
        return summary.tenants_failed == 0

    def _run_maintenance_steps(self, summary: SweepSummary) -> None:
        now = self._clock()
        try:
            archived = self._lifecycle.archive_expired_occasion_drafts(
                now=now,
                sweep_id=summary.sweep_id,
            )
            summary.archived = archived
            summary.steps.append(StepOutcome(name="archive_occasions", ok=True, count=archived))
        except Exception as exc:  # noqa: BLE001
            summary.steps.append(StepOutcome(name="archive_occasions", ok=False, error=str(exc)))

        try:
            recheck_result = self._rechecks.run_recheck_sweep(now=now, sweep_id=summary.sweep_id)
            summary.rechecks_completed = recheck_result.completed
            summary.rechecks_failed = recheck_result.failed
            summary.steps.append(
                StepOutcome(name="rechecks", ok=True, count=recheck_result.completed)
            )
        except Exception as exc:  # noqa: BLE001
            summary.steps.append(StepOutcome(name="rechecks", ok=False, error=str(exc)))

    def _record_failure(
        self,
        *,
        sweep_id: str,
        tenant_id: str,
        stage: str,
        error: str,
        payload: dict[str, Any],
    ) -> None:
        try:
            save_dead_letter(
                failure_dir=self._config.failure_log_dir,
                stage=stage,
                sweep_id=sweep_id,
                tenant_id=tenant_id,
                error=error,
                payload=payload,
            )
        except OSError as exc:
            self._logger.error(
                "dead_letter_write_failed",
                context=LogContext(sweep_id=sweep_id, tenant_id=tenant_id),
                stage=stage,
                error=str(exc),
            )


def _generate_sweep_id(now: datetime, *, label: str = "sweep") -> str:
    return f"{now.strftime('%Y-%m-%d')}-{label}-{now.strftime('%H%M%S')}-{uuid.uuid4().hex[:6]}"


def _trigger_payload(trigger: DraftTrigger) -> dict[str, Any]:
    return {
        "kind": trigger.kind.value,
        "source_id": trigger.source_id,
        "location_id": trigger.location_id,
        "target_query": trigger.target_query,
    }


def _summary_fields(summary: SweepSummary) -> dict[str, Any]:
    return {
        "tenants_processed": summary.tenants_processed,
        "tenants_failed": summary.tenants_failed,
        "tenants_skipped_plan": summary.tenants_skipped_plan,
        "drafts_created": summary.drafts_created,
        "drafts_skipped_dedup": summary.drafts_skipped_dedup,
        "drafts_skipped_cap": summary.drafts_skipped_cap,
        "drafts_skipped_inactive": summary.drafts_skipped_inactive,
        "generation_failures": summary.generation_failures,
        "write_failures": summary.write_failures,
        "trigger_failures": summary.trigger_failures,
        "archived": summary.archived,
        "rechecks_completed": summary.rechecks_completed,
        "rechecks_failed": summary.rechecks_failed,
        "failed_steps": [step.name for step in summary.steps if not step.ok],
    }
