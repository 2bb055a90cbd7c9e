"""Core typed models used across the autopilot draft pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Union


class TriggerKind(StrEnum):
    """Upstream signal kinds that may produce a content draft."""

    COMPETITOR_GAP = "competitor_gap"
    OCCASION = "occasion"
    PROMPT_MISSING = "prompt_missing"
    FIRST_MOVER = "first_mover"
    REVIEW_GAP = "review_gap"
    SCHEMA_GAP = "schema_gap"
    MANUAL = "manual"


class ContentType(StrEnum):
    """Kinds of content artifact a draft can be."""

    FAQ_PAGE = "faq_page"
    OCCASION_PAGE = "occasion_page"
    BLOG_POST = "blog_post"
    LANDING_PAGE = "landing_page"
    GBP_POST = "gbp_post"


class DraftStatus(StrEnum):
    """Content draft lifecycle status."""

    DRAFT = "draft"
    APPROVED = "approved"
    PUBLISHED = "published"
    ARCHIVED = "archived"
    REJECTED = "rejected"


ACTIVE_DRAFT_STATUSES: frozenset[DraftStatus] = frozenset(
    {DraftStatus.DRAFT, DraftStatus.APPROVED, DraftStatus.PUBLISHED}
)


class SkipReason(StrEnum):
    """Reason codes for triggers that did not produce a draft."""

    DUPLICATE = "duplicate"
    PENDING_CAP = "pending_cap"
    GENERATION_FAILED = "generation_failed"
    EMPTY_BRIEF = "empty_brief"


class GenerationStatus(StrEnum):
    """Availability of the generative content capability."""

    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


class RecheckStatus(StrEnum):
    """Post-publication recheck task state."""

    PENDING = "pending"
    COMPLETED = "completed"


@dataclass(frozen=True)
class PageRecommendation:
    """Page audit recommendation attached to a prompt gap."""

    issue: str
    fix: str


@dataclass(frozen=True)
class CompetitorGapContext:
    competitor_name: str
    winning_factor: str
    target_query: str


@dataclass(frozen=True)
class OccasionContext:
    occasion_name: str
    days_until_peak: int | None = None
    target_query: str | None = None


@dataclass(frozen=True)
class PromptMissingContext:
    zero_citation_queries: tuple[str, ...]
    page_recommendations: tuple[PageRecommendation, ...] = ()


@dataclass(frozen=True)
class FirstMoverContext:
    target_query: str


@dataclass(frozen=True)
class ReviewGapContext:
    top_negative_keywords: tuple[str, ...]
    negative_review_count: int


@dataclass(frozen=True)
class SchemaGapContext:
    schema_health_score: int
    missing_page_types: tuple[str, ...]


@dataclass(frozen=True)
class ManualContext:
    target_query: str | None = None
    content_type: ContentType | None = None
    additional_context: str | None = None


TriggerContext = Union[
    CompetitorGapContext,
    OccasionContext,
    PromptMissingContext,
    FirstMoverContext,
    ReviewGapContext,
    SchemaGapContext,
    ManualContext,
]

CONTEXT_TYPES: dict[TriggerKind, type] = {
    TriggerKind.COMPETITOR_GAP: CompetitorGapContext,
    TriggerKind.OCCASION: OccasionContext,
    TriggerKind.PROMPT_MISSING: PromptMissingContext,
    TriggerKind.FIRST_MOVER: FirstMoverContext,
    TriggerKind.REVIEW_GAP: ReviewGapContext,
    TriggerKind.SCHEMA_GAP: SchemaGapContext,
    TriggerKind.MANUAL: ManualContext,
}


@dataclass(frozen=True)
class DraftTrigger:
    """A signal that a content draft may be worth generating. Never persisted."""

    kind: TriggerKind
    source_id: str | None
    tenant_id: str
    location_id: str
    context: TriggerContext

    def __post_init__(self) -> None:
        expected = CONTEXT_TYPES[self.kind]
        if not isinstance(self.context, expected):
            raise ValueError(
                f"Trigger kind {self.kind.value} requires {expected.__name__}, "
                f"got {type(self.context).__name__}"
            )

    @property
    def target_query(self) -> str | None:
        """Query string the draft would target, when the signal carries one."""
        context = self.context
        if isinstance(context, (CompetitorGapContext, FirstMoverContext)):
            query: str | None = context.target_query
        elif isinstance(context, (OccasionContext, ManualContext)):
            query = context.target_query
        elif isinstance(context, PromptMissingContext):
            query = context.zero_citation_queries[0] if context.zero_citation_queries else None
        else:
            query = None
        if query is None or not query.strip():
            return None
        return query


@dataclass(frozen=True)
class LocationProfile:
    """Business profile read from the location record."""

    location_id: str
    business_name: str
    city: str | None = None
    state: str | None = None
    categories: tuple[str, ...] = ()

    @property
    def primary_category(self) -> str:
        return self.categories[0] if self.categories else "local business"


@dataclass(frozen=True)
class TenantRecord:
    """Tenant row with plan tier and active locations."""

    tenant_id: str
    plan: str
    location_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class DraftBrief:
    """Structured draft content produced by the brief generator."""

    title: str
    body: str
    target_keywords: tuple[str, ...]
    estimated_score: int
    degraded: bool = False


@dataclass(frozen=True)
class ContentDraft:
    """Persistent content draft row from the SQLite store."""

    draft_id: str
    tenant_id: str
    location_id: str
    trigger_kind: TriggerKind
    source_id: str | None
    title: str
    body: str
    target_prompt: str | None
    content_type: ContentType
    estimated_score: int
    target_keywords: tuple[str, ...]
    status: DraftStatus
    human_approved: bool
    created_at: datetime
    published_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_DRAFT_STATUSES


@dataclass(frozen=True)
class RecheckTask:
    """Persistent post-publication visibility recheck."""

    draft_id: str
    tenant_id: str
    location_id: str
    target_query: str
    due_at: datetime
    status: RecheckStatus
    attempts: int
    last_error: str | None
    cited: bool | None
    created_at: datetime
    completed_at: datetime | None = None


@dataclass(frozen=True)
class MaterializeOutcome:
    """Result of materializing one trigger: a draft id or a skip reason."""

    draft_id: str | None = None
    skip_reason: SkipReason | None = None

    @property
    def created(self) -> bool:
        return self.skip_reason is None and self.draft_id is not None


@dataclass(frozen=True)
class RecheckSweepResult:
    completed: int
    failed: int


@dataclass(frozen=True)
class StepOutcome:
    """Recorded outcome of a best-effort sweep sub-step."""

    name: str
    ok: bool
    count: int = 0
    error: str | None = None


@dataclass
class TenantRunResult:
    """Per-tenant counters for one sweep."""

    tenant_id: str
    triggers_received: int = 0
    drafts_created: int = 0
    skipped_dedup: int = 0
    skipped_cap: int = 0
    skipped_inactive: int = 0
    generation_failures: int = 0
    write_failures: int = 0
    trigger_failures: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class SweepSummary:
    """Aggregated sweep outcome returned instead of raising."""

    sweep_id: str
    started_at: datetime
    tenants_processed: int = 0
    tenants_failed: int = 0
    tenants_skipped_plan: int = 0
    drafts_created: int = 0
    drafts_skipped_dedup: int = 0
    drafts_skipped_cap: int = 0
    drafts_skipped_inactive: int = 0
    generation_failures: int = 0
    write_failures: int = 0
    trigger_failures: int = 0
    archived: int = 0
    rechecks_completed: int = 0
    rechecks_failed: int = 0
    accepted: bool = True
    reason: str = "completed"
    steps: list[StepOutcome] = field(default_factory=list)
