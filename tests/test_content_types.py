"""Tests for trigger kind to content type mapping."""

from __future__ import annotations

import pytest

from conftest import make_trigger
from models import (
    ContentType,
    FirstMoverContext,
    ManualContext,
    OccasionContext,
    PromptMissingContext,
    ReviewGapContext,
    SchemaGapContext,
    TriggerContext,
    TriggerKind,
)
from services.content_types import resolve_content_type


@pytest.mark.parametrize(
    ("kind", "context", "expected"),
    [
        (TriggerKind.COMPETITOR_GAP, None, ContentType.FAQ_PAGE),
        (
            TriggerKind.PROMPT_MISSING,
            PromptMissingContext(zero_citation_queries=("patio dining",)),
            ContentType.FAQ_PAGE,
        ),
        (TriggerKind.FIRST_MOVER, FirstMoverContext(target_query="q"), ContentType.FAQ_PAGE),
        (
            TriggerKind.OCCASION,
            OccasionContext(occasion_name="Valentine's Day"),
            ContentType.OCCASION_PAGE,
        ),
        (TriggerKind.MANUAL, ManualContext(), ContentType.BLOG_POST),
        (
            TriggerKind.MANUAL,
            ManualContext(content_type=ContentType.LANDING_PAGE),
            ContentType.LANDING_PAGE,
        ),
        (
            TriggerKind.REVIEW_GAP,
            ReviewGapContext(top_negative_keywords=("wait",), negative_review_count=3),
            ContentType.GBP_POST,
        ),
        (
            TriggerKind.SCHEMA_GAP,
            SchemaGapContext(schema_health_score=35, missing_page_types=("menu",)),
            ContentType.LANDING_PAGE,
        ),
    ],
)
def test_resolve_content_type(
    kind: TriggerKind,
    context: TriggerContext | None,
    expected: ContentType,
) -> None:
    trigger = make_trigger(kind, context=context)

    assert resolve_content_type(trigger) == expected
