"""Tests for core typed models."""

from __future__ import annotations

import pytest

from models import (
    ACTIVE_DRAFT_STATUSES,
    DraftStatus,
    DraftTrigger,
    FirstMoverContext,
    LocationProfile,
    MaterializeOutcome,
    PromptMissingContext,
    ReviewGapContext,
    SkipReason,
    TriggerKind,
)


def test_trigger_rejects_mismatched_context() -> None:
    with pytest.raises(ValueError, match="requires FirstMoverContext"):
        DraftTrigger(
            kind=TriggerKind.FIRST_MOVER,
            source_id="q-1",
            tenant_id="org",
            location_id="loc",
            context=ReviewGapContext(top_negative_keywords=("slow",), negative_review_count=4),
        )


def test_prompt_missing_target_query_is_first_zero_citation_query() -> None:
    trigger = DraftTrigger(
        kind=TriggerKind.PROMPT_MISSING,
        source_id=None,
        tenant_id="org",
        location_id="loc",
        context=PromptMissingContext(zero_citation_queries=("late night food", "patio dining")),
    )

    assert trigger.target_query == "late night food"


def test_review_gap_has_no_target_query() -> None:
    trigger = DraftTrigger(
        kind=TriggerKind.REVIEW_GAP,
        source_id=None,
        tenant_id="org",
        location_id="loc",
        context=ReviewGapContext(top_negative_keywords=("slow",), negative_review_count=4),
    )

    assert trigger.target_query is None


def test_blank_target_query_is_treated_as_missing() -> None:
    trigger = DraftTrigger(
        kind=TriggerKind.FIRST_MOVER,
        source_id="q-1",
        tenant_id="org",
        location_id="loc",
        context=FirstMoverContext(target_query="   "),
    )

    assert trigger.target_query is None


def test_active_statuses_and_profile_defaults() -> None:
    assert ACTIVE_DRAFT_STATUSES == {DraftStatus.DRAFT, DraftStatus.APPROVED, DraftStatus.PUBLISHED}
    assert LocationProfile(location_id="loc", business_name="Cafe").primary_category == (
        "local business"
    )


def test_materialize_outcome_created_flag() -> None:
    assert MaterializeOutcome(draft_id="d-1").created is True
    assert MaterializeOutcome(draft_id="d-1", skip_reason=SkipReason.DUPLICATE).created is False
