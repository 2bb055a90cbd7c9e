"""Tests for sweep orchestration across tenants."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from conftest import LOCATION_ID, NOW, TENANT_ID, make_trigger
from config import AppConfig
from models import (
    ContentDraft,
    ContentType,
    DraftTrigger,
    ManualContext,
    OccasionContext,
    TriggerKind,
)
from services.autopilot import AutopilotEngine, ConfiguredPlanGate, sort_by_priority
from services.brief_generator import BriefGenerator
from services.deduplicator import TriggerDeduplicator
from services.directory import SqliteDirectory
from services.draft_store import DraftStore, DraftStoreError
from services.lifecycle import OccasionLifecycleManager
from services.materializer import DraftMaterializer
from services.recheck import RecheckScheduler


class _ListSource:
    def __init__(self, by_tenant: dict[str, list[DraftTrigger]] | None = None) -> None:
        self.by_tenant = by_tenant or {}
        self.acknowledged = False

    def triggers_for(self, tenant_id: str) -> list[DraftTrigger]:
        return list(self.by_tenant.get(tenant_id, []))

    def acknowledge(self) -> None:
        self.acknowledged = True


class _FailingSource(_ListSource):
    def triggers_for(self, tenant_id: str) -> list[DraftTrigger]:
        raise RuntimeError("upstream feed unavailable")


class _UnknownProfileDirectory(SqliteDirectory):
    def get_location_profile(self, location_id: str) -> Any:
        raise KeyError(location_id)


class _UnlistableDirectory(SqliteDirectory):
    def list_tenants(self) -> Any:
        raise RuntimeError("directory unavailable")


class _NeverCited:
    def cited_for(self, query: str, location_id: str) -> bool:
        return False


class _BrokenLifecycle:
    def archive_expired_occasion_drafts(self, **kwargs: Any) -> int:
        raise RuntimeError("calendar offline")


class _BrokenWriteStore(DraftStore):
    def insert_draft(self, **kwargs: Any) -> ContentDraft:
        raise DraftStoreError("disk I/O error")


def _engine(
    app_config: AppConfig,
    store: DraftStore,
    directory: SqliteDirectory,
    *,
    write_store: DraftStore | None = None,
    pending_cap: int = 5,
    lifecycle: Any = None,
) -> AutopilotEngine:
    return AutopilotEngine(
        config=app_config,
        store=store,
        directory=directory,
        deduplicator=TriggerDeduplicator(store),
        materializer=DraftMaterializer(
            store=write_store or store,
            directory=directory,
            brief_generator=BriefGenerator(None),
            pending_cap=pending_cap,
        ),
        lifecycle=lifecycle or OccasionLifecycleManager(store=store, directory=directory),
        rechecks=RecheckScheduler(store=store, checker=_NeverCited()),
        clock=lambda: NOW,
    )


def test_sort_by_priority_is_stable() -> None:
    manual = make_trigger(TriggerKind.MANUAL, source_id="m1", context=ManualContext())
    occasion = make_trigger(
        TriggerKind.OCCASION,
        source_id="occ-1",
        context=OccasionContext(occasion_name="Valentine's Day"),
    )
    gap_a = make_trigger(source_id="a")
    gap_b = make_trigger(source_id="b")

    ordered = sort_by_priority([manual, gap_a, occasion, gap_b])

    assert [trigger.source_id for trigger in ordered] == ["a", "b", "occ-1", "m1"]


def test_plan_gate_matches_configured_tiers() -> None:
    gate = ConfiguredPlanGate(["growth", "agency"])

    assert gate.allows("Growth", "autopilot")
    assert not gate.allows("starter", "autopilot")
    assert not gate.allows("growth", "reporting")


def test_sweep_creates_drafts_and_releases_lock(
    app_config: AppConfig, store: DraftStore, directory: SqliteDirectory
) -> None:
    source = _ListSource({TENANT_ID: [make_trigger(source_id="a"), make_trigger(source_id="a")]})

    summary = _engine(app_config, store, directory).run_sweep(source)

    assert summary.accepted is True
    assert summary.tenants_processed == 1
    assert summary.drafts_created == 1
    assert summary.drafts_skipped_dedup == 1
    assert [step.name for step in summary.steps] == ["tenants", "archive_occasions", "rechecks"]
    assert all(step.ok for step in summary.steps)
    assert source.acknowledged is True
    assert store.get_locked_sweep_id() is None
    assert len(store.list_drafts(tenant_id=TENANT_ID)) == 1


def test_sweep_skips_tenants_without_autopilot_plan(
    app_config: AppConfig, store: DraftStore, directory: SqliteDirectory
) -> None:
    directory.upsert_tenant("org-starter", "starter")
    directory.upsert_location(
        tenant_id="org-starter",
        location_id="loc-201",
        business_name="Corner Deli",
        city="Austin",
        state="TX",
        categories=["Deli"],
    )
    source = _ListSource(
        {"org-starter": [make_trigger(tenant_id="org-starter", location_id="loc-201")]}
    )

    summary = _engine(app_config, store, directory).run_sweep(source)

    assert summary.tenants_skipped_plan == 1
    assert store.list_drafts(tenant_id="org-starter") == []


def test_sweep_rejected_while_lock_held(
    app_config: AppConfig, store: DraftStore, directory: SqliteDirectory
) -> None:
    assert store.try_acquire_sweep_lock("sweep-in-flight")
    source = _ListSource({TENANT_ID: [make_trigger()]})

    summary = _engine(app_config, store, directory).run_sweep(source)

    assert summary.accepted is False
    assert summary.reason == "sweep_locked:sweep-in-flight"
    assert source.acknowledged is False
    assert store.list_drafts(tenant_id=TENANT_ID) == []
    assert store.get_locked_sweep_id() == "sweep-in-flight"


def test_tenant_failure_is_dead_lettered(
    app_config: AppConfig, store: DraftStore, directory: SqliteDirectory
) -> None:
    source = _FailingSource()

    summary = _engine(app_config, store, directory).run_sweep(source)

    assert summary.tenants_failed == 1
    assert source.acknowledged is False
    assert summary.tenants_processed == 0
    failures = list(app_config.failure_log_dir.glob("*_tenant_*.json"))
    assert len(failures) == 1
    assert store.get_locked_sweep_id() is None


def test_write_failure_is_counted_and_dead_lettered(
    app_config: AppConfig, store: DraftStore, directory: SqliteDirectory
) -> None:
    engine = _engine(
        app_config,
        store,
        directory,
        write_store=_BrokenWriteStore(store.db_path),
    )

    summary = engine.run_sweep(_ListSource({TENANT_ID: [make_trigger()]}))

    assert summary.write_failures == 1
    assert summary.drafts_created == 0
    assert summary.tenants_processed == 1
    assert len(list(app_config.failure_log_dir.glob("*_draft_write_*.json"))) == 1


def test_higher_priority_triggers_claim_pending_slots(
    app_config: AppConfig, store: DraftStore, directory: SqliteDirectory
) -> None:
    manual = make_trigger(TriggerKind.MANUAL, source_id="m1", context=ManualContext())
    gap = make_trigger(source_id="gap-1")
    engine = _engine(app_config, store, directory, pending_cap=1)

    result = engine.run_for_tenant(directory.list_tenants()[0], [manual, gap])

    assert result.drafts_created == 1
    assert result.skipped_cap == 1
    drafts = store.list_drafts(tenant_id=TENANT_ID)
    assert [draft.trigger_kind for draft in drafts] == [TriggerKind.COMPETITOR_GAP]


def test_run_for_tenant_with_no_triggers_is_noop(
    app_config: AppConfig, store: DraftStore, directory: SqliteDirectory
) -> None:
    result = _engine(app_config, store, directory).run_for_tenant(directory.list_tenants()[0], [])

    assert result.triggers_received == 0
    assert result.drafts_created == 0


def test_maintenance_archives_expired_occasions(
    app_config: AppConfig, store: DraftStore, directory: SqliteDirectory
) -> None:
    directory.upsert_occasion("occ-valentines", "Valentine's Day", "02-14")
    store.insert_draft(
        tenant_id=TENANT_ID,
        location_id=LOCATION_ID,
        trigger_kind=TriggerKind.OCCASION,
        source_id="occ-valentines",
        title="Valentine's Day Dinner",
        body="Body",
        target_prompt=None,
        content_type=ContentType.OCCASION_PAGE,
        estimated_score=60,
        target_keywords=[],
        created_at=NOW,
    )

    summary = _engine(app_config, store, directory).run_maintenance()

    assert summary.accepted is True
    assert summary.archived == 1
    assert [step.name for step in summary.steps] == ["archive_occasions", "rechecks"]
    assert store.get_locked_sweep_id() is None


def test_maintenance_step_failure_does_not_block_rechecks(
    app_config: AppConfig, store: DraftStore, directory: SqliteDirectory
) -> None:
    engine = _engine(app_config, store, directory, lifecycle=_BrokenLifecycle())

    summary = engine.run_maintenance()

    archive_step, recheck_step = summary.steps
    assert archive_step.ok is False
    assert archive_step.error == "calendar offline"
    assert recheck_step.ok is True


def test_unexpected_trigger_error_is_counted_and_dead_lettered(
    app_config: AppConfig, store: DraftStore, directory: SqliteDirectory
) -> None:
    broken = _UnknownProfileDirectory(directory.db_path)
    engine = _engine(app_config, store, broken)

    summary = engine.run_sweep(_ListSource({TENANT_ID: [make_trigger(source_id="a")]}))

    assert summary.trigger_failures == 1
    assert summary.drafts_created == 0
    assert summary.tenants_processed == 1
    assert len(list(app_config.failure_log_dir.glob("*_trigger_*.json"))) == 1


def test_raw_sqlite_error_counts_as_write_failure(
    app_config: AppConfig, store: DraftStore, directory: SqliteDirectory, tmp_path: Path
) -> None:
    engine = _engine(
        app_config,
        store,
        directory,
        write_store=DraftStore(tmp_path / "uninitialized.db"),
    )

    summary = engine.run_sweep(_ListSource({TENANT_ID: [make_trigger()]}))

    assert summary.write_failures == 1
    assert summary.tenants_failed == 0
    assert len(list(app_config.failure_log_dir.glob("*_draft_write_*.json"))) == 1


def test_triggers_for_inactive_location_are_skipped(
    app_config: AppConfig, store: DraftStore, directory: SqliteDirectory
) -> None:
    directory.upsert_location(
        tenant_id=TENANT_ID,
        location_id="loc-closed",
        business_name="Bella Napoli Downtown",
        city="Austin",
        state="TX",
        categories=["Italian Restaurant"],
        is_active=False,
    )
    source = _ListSource(
        {
            TENANT_ID: [
                make_trigger(source_id="closed-gap", location_id="loc-closed"),
                make_trigger(source_id="open-gap"),
            ]
        }
    )

    summary = _engine(app_config, store, directory).run_sweep(source)

    assert summary.drafts_skipped_inactive == 1
    assert summary.drafts_created == 1
    drafts = store.list_drafts(tenant_id=TENANT_ID)
    assert [draft.location_id for draft in drafts] == [LOCATION_ID]


def test_inbox_kept_when_tenant_listing_fails(
    app_config: AppConfig, store: DraftStore, directory: SqliteDirectory
) -> None:
    source = _ListSource({TENANT_ID: [make_trigger()]})
    engine = _engine(app_config, store, _UnlistableDirectory(directory.db_path))

    summary = engine.run_sweep(source)

    assert summary.steps[0].name == "tenants"
    assert summary.steps[0].ok is False
    assert source.acknowledged is False
    assert store.get_locked_sweep_id() is None


def test_repeated_sweep_does_not_duplicate_drafts(
    app_config: AppConfig, store: DraftStore, directory: SqliteDirectory
) -> None:
    engine = _engine(app_config, store, directory)
    triggers = {TENANT_ID: [make_trigger(source_id="gap-7")]}

    first = engine.run_sweep(_ListSource(triggers))
    second = engine.run_sweep(_ListSource(triggers))

    assert first.drafts_created == 1
    assert second.drafts_created == 0
    assert second.drafts_skipped_dedup == 1
    assert len(store.list_drafts(tenant_id=TENANT_ID)) == 1
