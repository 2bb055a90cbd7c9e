"""Draft brief generation: kind-specific prompts, model output, offline fallback."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from models import (
    CompetitorGapContext,
    ContentType,
    DraftBrief,
    DraftTrigger,
    FirstMoverContext,
    GenerationStatus,
    LocationProfile,
    ManualContext,
    OccasionContext,
    PromptMissingContext,
    ReviewGapContext,
    SchemaGapContext,
)
from services.llm import OpenRouterClient
from services.schemas import DRAFT_BRIEF_SCHEMA
from services.scoring import score_content
from services.validator import ContentValidationError, extract_json_payload, validate_json_payload

logger = logging.getLogger(__name__)

# Score assigned when the model answered but broke the output contract.
DEGRADED_BRIEF_SCORE = 70

_MAX_PROMPT_QUERIES = 5
_MAX_PAGE_RECOMMENDATIONS = 3

BRIEF_JSON_CONTRACT = (
    "Return JSON with this exact structure:\n"
    "{\n"
    '  "title": "SEO-optimized title (max 60 chars)",\n'
    '  "content": "Full draft content (250-350 words)",\n'
    '  "estimated_aeo_score": <number 0-100>,\n'
    '  "target_keywords": ["keyword1", "keyword2", "keyword3", "keyword4", "keyword5"]\n'
    "}\n"
    "Output ONLY the JSON object. No markdown code fences or commentary."
)

_FORMAT_GUIDANCE: dict[ContentType, str] = {
    ContentType.FAQ_PAGE: 'FAQ pages: include 3-5 Q&A pairs formatted as "Q: ..." / "A: ..."',
    ContentType.OCCASION_PAGE: (
        "occasion pages: emphasize timing, seasonal specials, and why this business "
        "is the ideal choice"
    ),
    ContentType.BLOG_POST: (
        "blog posts: write engaging, informative content with a clear narrative"
    ),
    ContentType.LANDING_PAGE: (
        "landing pages: state services, hours, location, and contact details plainly "
        "so they can be marked up as structured data"
    ),
    ContentType.GBP_POST: (
        "business profile posts: keep it under 150 words and answer the concern "
        "customers raised in reviews"
    ),
}


def _city(profile: LocationProfile) -> str:
    return profile.city or "the area"


def build_context_block(trigger: DraftTrigger, profile: LocationProfile) -> str:
    """Narrative prompt section carrying why this draft is being written."""
    name = profile.business_name
    city = _city(profile)
    category = profile.primary_category
    context = trigger.context
    lines: list[str]

    if isinstance(context, CompetitorGapContext):
        lines = [
            "TRIGGER: Competitor Gap Alert",
            f'Your business "{name}" in {city} is losing visibility to a competitor.',
            f"Competitor: {context.competitor_name}" if context.competitor_name else "",
            f"They're winning on: {context.winning_factor}" if context.winning_factor else "",
            f'Target query: "{context.target_query}"' if context.target_query else "",
            f"Category: {category}",
        ]
    elif isinstance(context, OccasionContext):
        lines = [
            "TRIGGER: Seasonal Occasion Alert",
            f'Business: "{name}" in {city} ({category})',
            f"Occasion: {context.occasion_name}" if context.occasion_name else "",
            (
                f"Days until peak: {context.days_until_peak}"
                if context.days_until_peak is not None
                else ""
            ),
            f'Target query: "{context.target_query}"' if context.target_query else "",
            f'No AI engine is currently citing "{name}" for this occasion.',
            "Create timely content to capture this seasonal search traffic.",
        ]
    elif isinstance(context, PromptMissingContext):
        lines = [
            "TRIGGER: Prompt Gap (Zero Citation)",
            f'Business: "{name}" in {city} ({category})',
        ]
        if context.zero_citation_queries:
            lines.append("Queries where NO business is cited:")
            lines.extend(
                f'  - "{query}"' for query in context.zero_citation_queries[:_MAX_PROMPT_QUERIES]
            )
        if context.page_recommendations:
            lines.append("Page audit recommendations:")
            lines.extend(
                f"  - {rec.issue}: {rec.fix}"
                for rec in context.page_recommendations[:_MAX_PAGE_RECOMMENDATIONS]
            )
    elif isinstance(context, FirstMoverContext):
        lines = [
            "TRIGGER: First Mover Opportunity",
            f'Business: "{name}" in {city} ({category})',
            f'Target query: "{context.target_query}"' if context.target_query else "",
            "No business is currently being recommended by AI for this query.",
            "Create content to be the first business cited.",
        ]
    elif isinstance(context, ReviewGapContext):
        lines = [
            "TRIGGER: Review Gap",
            f'Business: "{name}" in {city} ({category})',
            f"Negative reviews in the last period: {context.negative_review_count}",
            (
                "Recurring complaints: " + ", ".join(context.top_negative_keywords)
                if context.top_negative_keywords
                else ""
            ),
            "Write a post that addresses these concerns directly and honestly.",
        ]
    elif isinstance(context, SchemaGapContext):
        lines = [
            "TRIGGER: Schema Gap",
            f'Business: "{name}" in {city} ({category})',
            f"Structured data health score: {context.schema_health_score}/100",
            (
                "Missing page types: " + ", ".join(context.missing_page_types)
                if context.missing_page_types
                else ""
            ),
            "Create a page that AI engines can parse and cite for this business.",
        ]
    elif isinstance(context, ManualContext):
        lines = [
            "TRIGGER: Manual Draft Request",
            f'Business: "{name}" in {city} ({category})',
            f"User context: {context.additional_context}" if context.additional_context else "",
            f'Target query: "{context.target_query}"' if context.target_query else "",
        ]
    else:
        lines = [f'Business: "{name}" in {city} ({category})']

    return "\n".join(line for line in lines if line)


def build_system_prompt(content_type: ContentType) -> str:
    """Writing rules plus the structured output contract."""
    return (
        "You are an AEO (Answer Engine Optimization) content writer for local businesses.\n"
        "Your job is to create content that AI assistants (ChatGPT, Perplexity, Gemini) "
        "will cite when answering user queries.\n\n"
        "Rules:\n"
        "1. Answer-first: The opening sentence MUST directly answer the likely query. "
        'No "Welcome to" or generic intros.\n'
        "2. Include the business name and city in the first paragraph.\n"
        "3. Be factual and specific about offerings, location, and what sets the business apart.\n"
        f"4. For {_FORMAT_GUIDANCE[content_type]}.\n"
        "5. Include a call-to-action (reserve, visit, call) in the closing paragraph.\n"
        "6. Keep content between 250-350 words.\n"
        "7. Title should be under 60 characters and include the city name.\n\n"
        + BRIEF_JSON_CONTRACT
    )


def derive_keywords(trigger: DraftTrigger, profile: LocationProfile) -> tuple[str, ...]:
    """Profile-derived keyword list; never empty."""
    city = profile.city or ""
    category = profile.primary_category
    query = trigger.target_query or (f"best {category} in {city}" if city else f"best {category}")
    candidates = [profile.business_name, city, category, query, f"best {category}"]
    keywords: list[str] = []
    for candidate in candidates:
        value = candidate.strip()
        if value and value.lower() not in {kw.lower() for kw in keywords}:
            keywords.append(value)
    return tuple(keywords)


class BriefStrategy(Protocol):
    def generate(
        self,
        trigger: DraftTrigger,
        profile: LocationProfile,
        content_type: ContentType,
    ) -> DraftBrief: ...


class MockBriefStrategy:
    """Deterministic offline brief used when no generation credential is configured."""

    def generate(
        self,
        trigger: DraftTrigger,
        profile: LocationProfile,
        content_type: ContentType,
    ) -> DraftBrief:
        name = profile.business_name
        city = profile.city or "your area"
        category = profile.primary_category
        query = trigger.target_query or f"best {category} in {city}"

        title = f"{name}: Best {category} in {city}"
        if content_type == ContentType.FAQ_PAGE:
            body = (
                f"{name} is {city}'s trusted {category}, known for quality and service.\n\n"
                f"Q: What makes {name} the best {category} in {city}?\n"
                f"A: {name} stands out with its commitment to quality, authentic offerings, "
                "and a welcoming atmosphere that has made it a local favorite.\n\n"
                f"Q: Where is {name} located?\n"
                f"A: {name} is located in {city}, easy to reach for locals and visitors.\n\n"
                f"Q: Is {name} a good answer for \"{query}\"?\n"
                f"A: Yes. {name} focuses on exactly what people in {city} look for in a "
                f"{category}.\n\n"
                f"Visit {name} today to experience the difference. Call us to reserve your spot."
            )
        else:
            body = (
                f"{name} is {city}'s trusted {category}, offering an unmatched experience for "
                f'anyone searching for "{query}". Located in {city}, {name} has built a '
                "reputation for quality and authenticity.\n\n"
                f"What sets {name} apart is attention to every detail. Whether you are a "
                "first-time visitor or a long-time regular, the team makes every visit "
                "memorable.\n\n"
                f"Visit {name} today and see why locals recommend it as the top {category} "
                f"in {city}. Call us to reserve or stop by."
            )

        return DraftBrief(
            title=title,
            body=body,
            target_keywords=derive_keywords(trigger, profile),
            estimated_score=score_content(body, title, profile),
        )


class LLMBriefStrategy:
    """One structured-output generation call; contract violations degrade the brief."""

    def __init__(self, llm_client: OpenRouterClient) -> None:
        self._llm_client = llm_client

    def generate(
        self,
        trigger: DraftTrigger,
        profile: LocationProfile,
        content_type: ContentType,
    ) -> DraftBrief:
        # ExternalServiceError propagates; the materializer skips the trigger.
        result = self._llm_client.generate_brief(
            system_prompt=build_system_prompt(content_type),
            user_prompt=build_context_block(trigger, profile),
        )

        payload: dict[str, Any] | None = None
        try:
            payload = extract_json_payload(result.content)
            validate_json_payload(payload, DRAFT_BRIEF_SCHEMA)
        except ContentValidationError as exc:
            logger.warning(
                "Brief for %s trigger %s failed output contract, degrading: %s",
                trigger.kind.value,
                trigger.source_id,
                exc,
            )
            return _degraded_brief(trigger, profile, raw_text=result.content, payload=payload)

        return DraftBrief(
            title=payload["title"].strip(),
            body=payload["content"].strip(),
            target_keywords=tuple(kw.strip() for kw in payload["target_keywords"] if kw.strip())
            or derive_keywords(trigger, profile),
            estimated_score=max(0, min(100, round(payload["estimated_aeo_score"]))),
        )


def _degraded_brief(
    trigger: DraftTrigger,
    profile: LocationProfile,
    *,
    raw_text: str,
    payload: dict[str, Any] | None,
) -> DraftBrief:
    body = raw_text.strip()
    title = f"{profile.business_name} in {_city(profile)}"
    if payload is not None:
        content = payload.get("content")
        if isinstance(content, str) and content.strip():
            body = content.strip()
        candidate_title = payload.get("title")
        if isinstance(candidate_title, str) and candidate_title.strip():
            title = candidate_title.strip()
    return DraftBrief(
        title=title,
        body=body,
        target_keywords=derive_keywords(trigger, profile),
        estimated_score=DEGRADED_BRIEF_SCORE,
        degraded=True,
    )


class BriefGenerator:
    """Pick the generation strategy from the capability check, then generate."""

    def __init__(
        self,
        llm_client: OpenRouterClient | None,
        *,
        mock_strategy: BriefStrategy | None = None,
        llm_strategy: BriefStrategy | None = None,
    ) -> None:
        self._llm_client = llm_client
        self._mock_strategy = mock_strategy or MockBriefStrategy()
        self._llm_strategy = llm_strategy
        if self._llm_strategy is None and llm_client is not None:
            self._llm_strategy = LLMBriefStrategy(llm_client)

    def generation_status(self) -> GenerationStatus:
        if self._llm_client is None or self._llm_strategy is None:
            return GenerationStatus.UNAVAILABLE
        return self._llm_client.generation_status()

    def strategy(self) -> BriefStrategy:
        if self.generation_status() == GenerationStatus.AVAILABLE and self._llm_strategy:
            return self._llm_strategy
        return self._mock_strategy

    def generate(
        self,
        trigger: DraftTrigger,
        profile: LocationProfile,
        content_type: ContentType,
    ) -> DraftBrief:
        return self.strategy().generate(trigger, profile, content_type)
