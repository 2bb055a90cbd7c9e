"""Tests for runtime path bootstrap logic."""

from __future__ import annotations

from config import AppConfig
from services.directory import SqliteDirectory
from services.draft_store import DraftStore
from services.runtime_paths import bootstrap_runtime_paths, trigger_archive_dir


def test_bootstrap_runtime_paths_creates_expected_artifacts(app_config: AppConfig) -> None:
    bootstrap_runtime_paths(app_config)

    assert app_config.draft_store_db_path.exists()
    assert app_config.failure_log_dir.is_dir()
    assert app_config.trigger_drop_dir.is_dir()
    assert trigger_archive_dir(app_config) == app_config.trigger_drop_dir / "archive"
    assert trigger_archive_dir(app_config).is_dir()


def test_bootstrap_is_idempotent_and_tables_are_usable(app_config: AppConfig) -> None:
    bootstrap_runtime_paths(app_config)
    bootstrap_runtime_paths(app_config)

    assert DraftStore(app_config.draft_store_db_path).get_locked_sweep_id() is None
    assert SqliteDirectory(app_config.draft_store_db_path).list_tenants() == []
