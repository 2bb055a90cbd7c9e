"""File drop-box transport for triggers emitted by upstream producers."""

from __future__ import annotations

import json
import logging
import shutil
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from models import (
    CompetitorGapContext,
    ContentType,
    DraftTrigger,
    FirstMoverContext,
    ManualContext,
    OccasionContext,
    PageRecommendation,
    PromptMissingContext,
    ReviewGapContext,
    SchemaGapContext,
    TriggerContext,
    TriggerKind,
)
from services.observability import get_logger

logger = logging.getLogger(__name__)


class TriggerSource(Protocol):
    def triggers_for(self, tenant_id: str) -> list[DraftTrigger]: ...

    def acknowledge(self) -> None: ...


def _required_str(raw: Mapping[str, Any], key: str) -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Field {key!r} must be a non-empty string")
    return value.strip()


def _optional_str(raw: Mapping[str, Any], key: str) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"Field {key!r} must be a string")
    return value.strip() or None


def _str_tuple(raw: Mapping[str, Any], key: str) -> tuple[str, ...]:
    value = raw.get(key) or []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"Field {key!r} must be a list of strings")
    return tuple(item.strip() for item in value if item.strip())


def _int(raw: Mapping[str, Any], key: str) -> int:
    value = raw.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Field {key!r} must be an integer")
    return value


def parse_context(kind: TriggerKind, raw: Mapping[str, Any]) -> TriggerContext:
    if kind == TriggerKind.COMPETITOR_GAP:
        return CompetitorGapContext(
            competitor_name=_required_str(raw, "competitor_name"),
            winning_factor=_required_str(raw, "winning_factor"),
            target_query=_required_str(raw, "target_query"),
        )
    if kind == TriggerKind.OCCASION:
        days = raw.get("days_until_peak")
        return OccasionContext(
            occasion_name=_required_str(raw, "occasion_name"),
            days_until_peak=_int(raw, "days_until_peak") if days is not None else None,
            target_query=_optional_str(raw, "target_query"),
        )
    if kind == TriggerKind.PROMPT_MISSING:
        recs_raw = raw.get("page_recommendations") or []
        if not isinstance(recs_raw, list):
            raise ValueError("Field 'page_recommendations' must be a list")
        recommendations = tuple(
            PageRecommendation(issue=_required_str(rec, "issue"), fix=_required_str(rec, "fix"))
            for rec in recs_raw
            if isinstance(rec, Mapping)
        )
        return PromptMissingContext(
            zero_citation_queries=_str_tuple(raw, "zero_citation_queries"),
            page_recommendations=recommendations,
        )
    if kind == TriggerKind.FIRST_MOVER:
        return FirstMoverContext(target_query=_required_str(raw, "target_query"))
    if kind == TriggerKind.REVIEW_GAP:
        return ReviewGapContext(
            top_negative_keywords=_str_tuple(raw, "top_negative_keywords"),
            negative_review_count=_int(raw, "negative_review_count"),
        )
    if kind == TriggerKind.SCHEMA_GAP:
        return SchemaGapContext(
            schema_health_score=_int(raw, "schema_health_score"),
            missing_page_types=_str_tuple(raw, "missing_page_types"),
        )
    content_type = _optional_str(raw, "content_type")
    return ManualContext(
        target_query=_optional_str(raw, "target_query"),
        content_type=ContentType(content_type) if content_type else None,
        additional_context=_optional_str(raw, "additional_context"),
    )


def parse_trigger(raw: Any) -> DraftTrigger:
    """Build a trigger from its JSON object form; ValueError when malformed."""
    if not isinstance(raw, Mapping):
        raise ValueError("Trigger entry must be an object")
    kind = TriggerKind(_required_str(raw, "kind"))
    context_raw = raw.get("context") or {}
    if not isinstance(context_raw, Mapping):
        raise ValueError("Field 'context' must be an object")
    return DraftTrigger(
        kind=kind,
        source_id=_optional_str(raw, "source_id"),
        tenant_id=_required_str(raw, "tenant_id"),
        location_id=_required_str(raw, "location_id"),
        context=parse_context(kind, context_raw),
    )


class FileTriggerSource:
    """Reads ``*.json`` trigger batches from a drop directory.

    Each file holds a JSON list of trigger objects. Files are loaded once per
    sweep and moved to ``archive_dir`` by ``acknowledge()``.
    """

    def __init__(self, drop_dir: Path, archive_dir: Path) -> None:
        self._drop_dir = drop_dir
        self._archive_dir = archive_dir
        self._by_tenant: dict[str, list[DraftTrigger]] | None = None
        self._consumed: list[Path] = []
        self._events = get_logger()

    def triggers_for(self, tenant_id: str) -> list[DraftTrigger]:
        if self._by_tenant is None:
            self._by_tenant = self._load()
        return list(self._by_tenant.get(tenant_id, []))

    def acknowledge(self) -> None:
        """Move every consumed file into the archive directory."""
        if not self._consumed:
            return
        self._archive_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
        for path in self._consumed:
            if path.exists():
                shutil.move(str(path), self._archive_dir / f"{stamp}_{path.name}")
        self._consumed = []
        self._by_tenant = None

    def _load(self) -> dict[str, list[DraftTrigger]]:
        grouped: dict[str, list[DraftTrigger]] = {}
        if not self._drop_dir.exists():
            return grouped

        for path in sorted(self._drop_dir.glob("*.json")):
            self._consumed.append(path)
            try:
                entries = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                # ValueError covers JSONDecodeError and UnicodeDecodeError.
                self._events.warning("trigger_file_unreadable", file=path.name, error=str(exc))
                continue
            if not isinstance(entries, list):
                self._events.warning("trigger_file_not_a_list", file=path.name)
                continue

            for index, entry in enumerate(entries):
                try:
                    trigger = parse_trigger(entry)
                except ValueError as exc:
                    self._events.warning(
                        "trigger_entry_invalid",
                        file=path.name,
                        index=index,
                        error=str(exc),
                    )
                    continue
                grouped.setdefault(trigger.tenant_id, []).append(trigger)

        logger.info(
            "Loaded %d trigger(s) for %d tenant(s) from %s",
            sum(len(items) for items in grouped.values()),
            len(grouped),
            self._drop_dir,
        )
        return grouped
