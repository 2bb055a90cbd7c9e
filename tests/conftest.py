"""Shared pytest fixtures."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from config import AppConfig
from models import (
    CompetitorGapContext,
    DraftTrigger,
    LocationProfile,
    TriggerContext,
    TriggerKind,
)
from services.directory import SqliteDirectory
from services.draft_store import DraftStore

TENANT_ID = "org-001"
LOCATION_ID = "loc-001"
NOW = datetime(2026, 3, 10, 15, 0, tzinfo=UTC)


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    data_dir = tmp_path / "data"
    return AppConfig(
        openrouter_api_key="sk-or-v1-test",
        generation_model="openai/gpt-4o-mini",
        visibility_model="perplexity/sonar",
        timezone="America/Chicago",
        sweep_day="mon",
        sweep_hour=6,
        draft_store_db_path=data_dir / "drafts.db",
        failure_log_dir=data_dir / "failures",
        trigger_drop_dir=data_dir / "inbox",
        outbound_call_delay_ms=0,
    )


@pytest.fixture
def store(app_config: AppConfig) -> DraftStore:
    draft_store = DraftStore(app_config.draft_store_db_path)
    draft_store.initialize()
    return draft_store


@pytest.fixture
def directory(app_config: AppConfig) -> SqliteDirectory:
    records = SqliteDirectory(app_config.draft_store_db_path)
    records.initialize()
    records.upsert_tenant(TENANT_ID, "growth")
    records.upsert_location(
        tenant_id=TENANT_ID,
        location_id=LOCATION_ID,
        business_name="Bella Napoli",
        city="Austin",
        state="TX",
        categories=["Italian Restaurant"],
    )
    return records


@pytest.fixture
def profile() -> LocationProfile:
    return LocationProfile(
        location_id=LOCATION_ID,
        business_name="Bella Napoli",
        city="Austin",
        state="TX",
        categories=("Italian Restaurant",),
    )


def make_trigger(
    kind: TriggerKind = TriggerKind.COMPETITOR_GAP,
    *,
    source_id: str | None = "trigger-001",
    tenant_id: str = TENANT_ID,
    location_id: str = LOCATION_ID,
    context: TriggerContext | None = None,
) -> DraftTrigger:
    return DraftTrigger(
        kind=kind,
        source_id=source_id,
        tenant_id=tenant_id,
        location_id=location_id,
        context=context
        or CompetitorGapContext(
            competitor_name="Luigi's",
            winning_factor="late-night hours",
            target_query="best pizza austin",
        ),
    )
