"""Turn one admitted trigger into at most one persisted draft."""

from __future__ import annotations

from datetime import datetime

from models import DraftTrigger, LocationProfile, MaterializeOutcome, SkipReason
from services.brief_generator import BriefGenerator
from services.content_types import resolve_content_type
from services.directory import SqliteDirectory
from services.draft_store import DraftStore, DuplicateDraftError
from services.observability import LogContext, get_logger
from services.resilience import ExternalServiceError

DEFAULT_BUSINESS_NAME = "Local Business"


class DraftMaterializer:
    """Idempotency re-check, pending cap, generation, then a single insert.

    This is the only component that creates draft rows. A write failure other
    than a uniqueness collision raises ``DraftStoreError`` to the caller.
    """

    def __init__(
        self,
        *,
        store: DraftStore,
        directory: SqliteDirectory,
        brief_generator: BriefGenerator,
        pending_cap: int = 5,
    ) -> None:
        self._store = store
        self._directory = directory
        self._brief_generator = brief_generator
        self._pending_cap = pending_cap
        self._events = get_logger()

    def materialize(
        self,
        trigger: DraftTrigger,
        tenant_id: str,
        *,
        now: datetime | None = None,
        sweep_id: str | None = None,
    ) -> MaterializeOutcome:
        if trigger.tenant_id != tenant_id:
            raise ValueError(
                f"Trigger belongs to tenant {trigger.tenant_id}, not {tenant_id}"
            )

        log_context = LogContext(
            sweep_id=sweep_id,
            tenant_id=tenant_id,
            location_id=trigger.location_id,
        )

        if trigger.source_id is not None:
            existing = self._store.find_active_by_source(tenant_id, trigger.kind, trigger.source_id)
            if existing is not None:
                return self._skipped(
                    SkipReason.DUPLICATE,
                    trigger,
                    log_context,
                    draft_id=existing.draft_id,
                )

        pending = self._store.count_pending(tenant_id, trigger.location_id)
        if pending >= self._pending_cap:
            return self._skipped(SkipReason.PENDING_CAP, trigger, log_context, pending=pending)

        content_type = resolve_content_type(trigger)
        profile = self._directory.get_location_profile(trigger.location_id) or LocationProfile(
            location_id=trigger.location_id,
            business_name=DEFAULT_BUSINESS_NAME,
        )

        try:
            brief = self._brief_generator.generate(trigger, profile, content_type)
        except ExternalServiceError as exc:
            return self._skipped(
                SkipReason.GENERATION_FAILED,
                trigger,
                log_context,
                error=str(exc),
            )

        if not brief.body.strip():
            return self._skipped(SkipReason.EMPTY_BRIEF, trigger, log_context)

        try:
            draft = self._store.insert_draft(
                tenant_id=tenant_id,
                location_id=trigger.location_id,
                trigger_kind=trigger.kind,
                source_id=trigger.source_id,
                title=brief.title,
                body=brief.body,
                target_prompt=trigger.target_query,
                content_type=content_type,
                estimated_score=brief.estimated_score,
                target_keywords=brief.target_keywords,
                created_at=now,
            )
        except DuplicateDraftError:
            existing = (
                self._store.find_active_by_source(tenant_id, trigger.kind, trigger.source_id)
                if trigger.source_id is not None
                else None
            )
            return self._skipped(
                SkipReason.DUPLICATE,
                trigger,
                log_context,
                draft_id=existing.draft_id if existing else None,
            )

        self._events.info(
            "draft_created",
            context=LogContext(
                sweep_id=sweep_id,
                tenant_id=tenant_id,
                location_id=trigger.location_id,
                draft_id=draft.draft_id,
            ),
            trigger_kind=trigger.kind.value,
            source_id=trigger.source_id,
            content_type=content_type.value,
            estimated_score=draft.estimated_score,
            degraded=brief.degraded,
        )
        return MaterializeOutcome(draft_id=draft.draft_id)

    def _skipped(
        self,
        reason: SkipReason,
        trigger: DraftTrigger,
        log_context: LogContext,
        *,
        draft_id: str | None = None,
        **fields: object,
    ) -> MaterializeOutcome:
        self._events.info(
            "draft_skipped",
            context=log_context,
            reason=reason.value,
            trigger_kind=trigger.kind.value,
            source_id=trigger.source_id,
            existing_draft_id=draft_id,
            **fields,
        )
        return MaterializeOutcome(draft_id=draft_id, skip_reason=reason)
