"""Filter trigger batches against drafts the tenant already has."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from models import DraftTrigger, TriggerKind
from services.draft_store import DraftStore
from services.observability import LogContext, get_logger

logger = logging.getLogger(__name__)

COOLDOWN_DAYS: dict[TriggerKind, int] = {
    TriggerKind.COMPETITOR_GAP: 14,
    TriggerKind.FIRST_MOVER: 14,
    TriggerKind.PROMPT_MISSING: 30,
    TriggerKind.OCCASION: 30,
    TriggerKind.SCHEMA_GAP: 30,
    TriggerKind.REVIEW_GAP: 60,
    TriggerKind.MANUAL: 0,
}

# Kinds limited to one draft per location per cooldown window.
LOCATION_RATE_LIMITED_KINDS = frozenset({TriggerKind.REVIEW_GAP, TriggerKind.SCHEMA_GAP})

DEDUP_LOOKBACK_DAYS = max(COOLDOWN_DAYS.values())


def normalize_query(value: str | None) -> str | None:
    """Trim, lower-case, and collapse internal whitespace."""
    if value is None:
        return None
    collapsed = " ".join(value.split()).lower()
    return collapsed or None


@dataclass(frozen=True)
class _PriorDraft:
    trigger_kind: TriggerKind
    source_id: str | None
    location_id: str
    query_key: str | None
    created_at: datetime
    active: bool


class TriggerDeduplicator:
    """Drop triggers that would repeat a recent or still-active draft."""

    def __init__(self, store: DraftStore) -> None:
        self._store = store
        self._events = get_logger()

    def deduplicate(
        self,
        triggers: Sequence[DraftTrigger],
        tenant_id: str,
        *,
        now: datetime | None = None,
    ) -> list[DraftTrigger]:
        """Return the admitted subset of ``triggers`` in their original order.

        Reading existing drafts fails open: on any store error the batch is
        returned unfiltered and the materializer's own idempotency check plus
        the store's unique index remain the backstop.
        """
        if not triggers:
            return []

        now_utc = (now or datetime.now(UTC)).astimezone(UTC)
        since = now_utc - timedelta(days=DEDUP_LOOKBACK_DAYS)
        try:
            existing = self._store.list_drafts_for_dedup(tenant_id, since=since)
        except Exception as exc:
            self._events.warning(
                "dedup_read_failed",
                context=LogContext(tenant_id=tenant_id),
                error=str(exc),
                trigger_count=len(triggers),
            )
            return list(triggers)

        seen = [
            _PriorDraft(
                trigger_kind=draft.trigger_kind,
                source_id=draft.source_id,
                location_id=draft.location_id,
                query_key=normalize_query(draft.target_prompt),
                created_at=draft.created_at,
                active=draft.is_active,
            )
            for draft in existing
        ]

        admitted: list[DraftTrigger] = []
        for trigger in triggers:
            reason = _rejection_reason(trigger, seen, now_utc)
            if reason is not None:
                logger.debug(
                    "Dropping %s trigger source=%s location=%s: %s",
                    trigger.kind.value,
                    trigger.source_id,
                    trigger.location_id,
                    reason,
                )
                continue
            admitted.append(trigger)
            # Later triggers in the same batch compare against this admission.
            seen.append(
                _PriorDraft(
                    trigger_kind=trigger.kind,
                    source_id=trigger.source_id,
                    location_id=trigger.location_id,
                    query_key=normalize_query(trigger.target_query),
                    created_at=now_utc,
                    active=True,
                )
            )

        if len(admitted) != len(triggers):
            self._events.info(
                "dedup_filtered",
                context=LogContext(tenant_id=tenant_id),
                received=len(triggers),
                admitted=len(admitted),
            )
        return admitted


def _rejection_reason(
    trigger: DraftTrigger,
    seen: Sequence[_PriorDraft],
    now: datetime,
) -> str | None:
    if trigger.source_id is not None:
        for prior in seen:
            if (
                prior.active
                and prior.trigger_kind == trigger.kind
                and prior.source_id == trigger.source_id
            ):
                return "active draft for same source"

    cooldown_days = COOLDOWN_DAYS[trigger.kind]
    if cooldown_days <= 0:
        return None
    window_start = now - timedelta(days=cooldown_days)
    in_window = [
        prior
        for prior in seen
        if prior.trigger_kind == trigger.kind
        and prior.location_id == trigger.location_id
        and prior.created_at >= window_start
    ]

    query_key = normalize_query(trigger.target_query)
    if query_key is not None and any(prior.query_key == query_key for prior in in_window):
        return f"same query inside {cooldown_days}-day cooldown"

    if trigger.kind in LOCATION_RATE_LIMITED_KINDS and in_window:
        return f"location already has a {trigger.kind.value} draft inside {cooldown_days} days"

    return None
