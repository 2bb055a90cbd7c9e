"""Map trigger kinds to the content artifact a draft should be."""

from __future__ import annotations

from models import (
    CompetitorGapContext,
    ContentType,
    DraftTrigger,
    FirstMoverContext,
    ManualContext,
    OccasionContext,
    PromptMissingContext,
    ReviewGapContext,
    SchemaGapContext,
)


def resolve_content_type(trigger: DraftTrigger) -> ContentType:
    context = trigger.context
    if isinstance(context, (CompetitorGapContext, PromptMissingContext, FirstMoverContext)):
        return ContentType.FAQ_PAGE
    if isinstance(context, OccasionContext):
        return ContentType.OCCASION_PAGE
    if isinstance(context, ManualContext):
        return context.content_type or ContentType.BLOG_POST
    if isinstance(context, ReviewGapContext):
        return ContentType.GBP_POST
    if isinstance(context, SchemaGapContext):
        return ContentType.LANDING_PAGE
    raise TypeError(f"Unsupported trigger context: {type(context).__name__}")
