"""Runtime directory/database bootstrap helpers."""

from __future__ import annotations

from pathlib import Path

from config import AppConfig
from services.directory import SqliteDirectory
from services.draft_store import DraftStore

ARCHIVE_DIR_NAME = "archive"


def trigger_archive_dir(config: AppConfig) -> Path:
    return config.trigger_drop_dir / ARCHIVE_DIR_NAME


def bootstrap_runtime_paths(config: AppConfig) -> None:
    """Create runtime directories and initialize persistent storage."""
    config.draft_store_db_path.parent.mkdir(parents=True, exist_ok=True)
    config.failure_log_dir.mkdir(parents=True, exist_ok=True)
    config.trigger_drop_dir.mkdir(parents=True, exist_ok=True)
    trigger_archive_dir(config).mkdir(parents=True, exist_ok=True)

    DraftStore(config.draft_store_db_path).initialize()
    SqliteDirectory(config.draft_store_db_path).initialize()
