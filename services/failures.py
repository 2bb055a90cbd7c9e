"""Dead-letter utilities for tenant and draft-write failures."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any


def save_dead_letter(
    *,
    failure_dir: Path,
    stage: str,
    sweep_id: str,
    error: str,
    tenant_id: str | None = None,
    payload: dict[str, Any] | None = None,
) -> Path:
    """Persist a failure record for manual replay."""
    failure_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S%fZ")
    scope = f"_{tenant_id}" if tenant_id else ""
    out_path = failure_dir / f"failure_{sweep_id}{scope}_{stage}_{timestamp}.json"
    body = {
        "sweep_id": sweep_id,
        "tenant_id": tenant_id,
        "stage": stage,
        "error": error,
        "payload": payload or {},
        "created_at": datetime.now(UTC).isoformat(),
    }
    out_path.write_text(json.dumps(body, indent=2, sort_keys=True, default=str), encoding="utf-8")
    return out_path
