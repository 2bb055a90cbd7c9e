"""Tests for trigger deduplication against existing drafts."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from conftest import LOCATION_ID, NOW, TENANT_ID, make_trigger
from models import (
    ContentType,
    DraftStatus,
    FirstMoverContext,
    ManualContext,
    ReviewGapContext,
    SchemaGapContext,
    TriggerKind,
)
from services.deduplicator import COOLDOWN_DAYS, TriggerDeduplicator, normalize_query
from services.draft_store import DraftStore


def _seed(
    store: DraftStore,
    *,
    kind: TriggerKind = TriggerKind.COMPETITOR_GAP,
    source_id: str | None = "trigger-001",
    target_prompt: str | None = "best pizza austin",
    days_ago: int = 0,
    location_id: str = LOCATION_ID,
    status: DraftStatus | None = None,
) -> str:
    draft = store.insert_draft(
        tenant_id=TENANT_ID,
        location_id=location_id,
        trigger_kind=kind,
        source_id=source_id,
        title="Existing",
        body="Existing body",
        target_prompt=target_prompt,
        content_type=ContentType.FAQ_PAGE,
        estimated_score=60,
        target_keywords=["pizza"],
        created_at=NOW - timedelta(days=days_ago),
    )
    if status is not None:
        store.transition_status(draft.draft_id, status)
    return draft.draft_id


class _FailingStore:
    def list_drafts_for_dedup(self, tenant_id: str, *, since: datetime) -> list[Any]:
        raise RuntimeError("connection refused")


class _CountingStore:
    def __init__(self) -> None:
        self.calls = 0

    def list_drafts_for_dedup(self, tenant_id: str, *, since: datetime) -> list[Any]:
        self.calls += 1
        return []


def test_empty_batch_does_not_read_store() -> None:
    counting = _CountingStore()
    deduplicator = TriggerDeduplicator(counting)  # type: ignore[arg-type]

    assert deduplicator.deduplicate([], TENANT_ID, now=NOW) == []
    assert counting.calls == 0


def test_read_failure_fails_open() -> None:
    deduplicator = TriggerDeduplicator(_FailingStore())  # type: ignore[arg-type]
    triggers = [make_trigger(), make_trigger(source_id="trigger-002")]

    assert deduplicator.deduplicate(triggers, TENANT_ID, now=NOW) == triggers


def test_exact_source_match_rejects_regardless_of_age(store: DraftStore) -> None:
    _seed(store, target_prompt="something else entirely", days_ago=120)

    result = TriggerDeduplicator(store).deduplicate([make_trigger()], TENANT_ID, now=NOW)

    assert result == []


def test_exact_match_ignores_terminal_drafts_outside_cooldown(store: DraftStore) -> None:
    _seed(store, days_ago=45, status=DraftStatus.REJECTED)

    result = TriggerDeduplicator(store).deduplicate([make_trigger()], TENANT_ID, now=NOW)

    assert len(result) == 1


def test_semantic_cooldown_rejects_inside_window(store: DraftStore) -> None:
    _seed(store, source_id="other-gap", days_ago=13)

    result = TriggerDeduplicator(store).deduplicate([make_trigger()], TENANT_ID, now=NOW)

    assert result == []


def test_semantic_cooldown_admits_after_window(store: DraftStore) -> None:
    _seed(store, source_id="other-gap", days_ago=15)

    result = TriggerDeduplicator(store).deduplicate([make_trigger()], TENANT_ID, now=NOW)

    assert len(result) == 1


def test_semantic_cooldown_normalizes_case_and_whitespace(store: DraftStore) -> None:
    _seed(store, source_id="other-gap", target_prompt="  Best   PIZZA austin ", days_ago=2)

    result = TriggerDeduplicator(store).deduplicate([make_trigger()], TENANT_ID, now=NOW)

    assert result == []


def test_semantic_cooldown_counts_rejected_drafts(store: DraftStore) -> None:
    _seed(store, source_id="other-gap", days_ago=5, status=DraftStatus.REJECTED)

    result = TriggerDeduplicator(store).deduplicate([make_trigger()], TENANT_ID, now=NOW)

    assert result == []


def test_semantic_cooldown_is_scoped_to_kind_and_location(store: DraftStore) -> None:
    _seed(store, kind=TriggerKind.FIRST_MOVER, source_id="fm-1", days_ago=1)
    _seed(store, source_id="other-loc", location_id="loc-999", days_ago=1)

    result = TriggerDeduplicator(store).deduplicate([make_trigger()], TENANT_ID, now=NOW)

    assert len(result) == 1


def test_review_gap_rate_limited_per_location(store: DraftStore) -> None:
    _seed(store, kind=TriggerKind.REVIEW_GAP, source_id="rg-old", target_prompt=None, days_ago=59)
    trigger = make_trigger(
        TriggerKind.REVIEW_GAP,
        source_id="rg-new",
        context=ReviewGapContext(top_negative_keywords=("slow",), negative_review_count=6),
    )

    deduplicator = TriggerDeduplicator(store)

    assert deduplicator.deduplicate([trigger], TENANT_ID, now=NOW) == []
    later = NOW + timedelta(days=2)
    assert deduplicator.deduplicate([trigger], TENANT_ID, now=later) == [trigger]


def test_schema_gap_rate_limit_uses_30_day_window(store: DraftStore) -> None:
    _seed(store, kind=TriggerKind.SCHEMA_GAP, source_id="sg-old", target_prompt=None, days_ago=31)
    trigger = make_trigger(
        TriggerKind.SCHEMA_GAP,
        source_id="sg-new",
        context=SchemaGapContext(schema_health_score=40, missing_page_types=("faq",)),
    )

    assert TriggerDeduplicator(store).deduplicate([trigger], TENANT_ID, now=NOW) == [trigger]


def test_manual_triggers_have_no_semantic_cooldown(store: DraftStore) -> None:
    _seed(store, kind=TriggerKind.MANUAL, source_id=None, days_ago=0)
    trigger = make_trigger(
        TriggerKind.MANUAL,
        source_id=None,
        context=ManualContext(target_query="best pizza austin"),
    )

    assert TriggerDeduplicator(store).deduplicate([trigger], TENANT_ID, now=NOW) == [trigger]


def test_same_batch_duplicates_collapse_to_one(store: DraftStore) -> None:
    first = make_trigger(
        TriggerKind.FIRST_MOVER,
        source_id="fm-1",
        context=FirstMoverContext(target_query="late night tacos"),
    )
    second = make_trigger(
        TriggerKind.FIRST_MOVER,
        source_id="fm-2",
        context=FirstMoverContext(target_query="Late Night  Tacos"),
    )

    result = TriggerDeduplicator(store).deduplicate([first, second], TENANT_ID, now=NOW)

    assert result == [first]


def test_admitted_order_is_preserved(store: DraftStore) -> None:
    triggers = [
        make_trigger(
            TriggerKind.FIRST_MOVER,
            source_id=f"fm-{index}",
            context=FirstMoverContext(target_query=f"query {index}"),
        )
        for index in range(3)
    ]

    assert TriggerDeduplicator(store).deduplicate(triggers, TENANT_ID, now=NOW) == triggers


def test_normalize_query_and_cooldown_table() -> None:
    assert normalize_query("  Best \t Pizza\nAustin ") == "best pizza austin"
    assert normalize_query("   ") is None
    assert COOLDOWN_DAYS[TriggerKind.COMPETITOR_GAP] == 14
    assert COOLDOWN_DAYS[TriggerKind.REVIEW_GAP] == 60
    assert COOLDOWN_DAYS[TriggerKind.MANUAL] == 0
