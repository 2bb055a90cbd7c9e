"""Content draft and recheck queue persistence with transition guards."""

from __future__ import annotations

import json
import sqlite3
import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential_jitter

from models import (
    ACTIVE_DRAFT_STATUSES,
    ContentDraft,
    ContentType,
    DraftStatus,
    RecheckStatus,
    RecheckTask,
    TriggerKind,
)


class DraftStoreError(RuntimeError):
    """Raised when draft store operations fail."""


class DuplicateDraftError(DraftStoreError):
    """Raised when an insert collides with an active draft for the same source."""


class InvalidTransitionError(DraftStoreError):
    """Raised when a status change is not allowed from the current status."""


ALLOWED_TRANSITIONS: dict[DraftStatus, set[DraftStatus]] = {
    DraftStatus.DRAFT: {DraftStatus.APPROVED, DraftStatus.REJECTED, DraftStatus.ARCHIVED},
    DraftStatus.APPROVED: {DraftStatus.PUBLISHED, DraftStatus.REJECTED, DraftStatus.ARCHIVED},
    DraftStatus.PUBLISHED: {DraftStatus.ARCHIVED},
    DraftStatus.ARCHIVED: set(),
    DraftStatus.REJECTED: set(),
}

_ACTIVE_SQL = ", ".join(f"'{status.value}'" for status in sorted(ACTIVE_DRAFT_STATUSES))

_DRAFT_COLUMNS = """
    draft_id,
    tenant_id,
    location_id,
    trigger_kind,
    source_id,
    title,
    body,
    target_prompt,
    content_type,
    estimated_score,
    target_keywords_json,
    status,
    human_approved,
    created_at,
    published_at
"""

_RECHECK_COLUMNS = """
    draft_id,
    tenant_id,
    location_id,
    target_query,
    due_at,
    status,
    attempts,
    last_error,
    cited,
    created_at,
    completed_at
"""

_UPSERT_RECHECK_SQL = f"""
    INSERT INTO recheck_tasks ({_RECHECK_COLUMNS})
    VALUES (?, ?, ?, ?, ?, ?, 0, NULL, NULL, ?, NULL)
    ON CONFLICT(draft_id) DO UPDATE SET
        target_query = excluded.target_query,
        due_at = excluded.due_at,
        status = excluded.status,
        attempts = 0,
        last_error = NULL,
        cited = NULL,
        completed_at = NULL
"""


def _is_lock_error(exc: BaseException) -> bool:
    if isinstance(exc, DraftStoreError) and exc.__cause__ is not None:
        exc = exc.__cause__
    return isinstance(exc, sqlite3.OperationalError) and "locked" in str(exc).lower()


# SQLite reports writer contention as "database is locked"; a short retry
# covers a concurrent review action touching the same file.
_retry_on_lock = retry(
    retry=retry_if_exception(_is_lock_error),
    stop=stop_after_attempt(3),
    wait=wait_exponential_jitter(initial=0.05, max=1.0),
    reraise=True,
)


class DraftStore:
    """SQLite-backed store for content drafts, recheck tasks, and the sweep lock."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    def initialize(self) -> None:
        """Initialize SQLite tables and indexes if they do not exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS content_drafts (
                    draft_id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    location_id TEXT NOT NULL,
                    trigger_kind TEXT NOT NULL,
                    source_id TEXT,
                    title TEXT NOT NULL,
                    body TEXT NOT NULL,
                    target_prompt TEXT,
                    content_type TEXT NOT NULL,
                    estimated_score INTEGER NOT NULL
                        CHECK (estimated_score BETWEEN 0 AND 100),
                    target_keywords_json TEXT NOT NULL,
                    status TEXT NOT NULL,
                    human_approved INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    published_at TEXT
                )
                """
            )
            # The store is the authority on idempotency: one active draft per source.
            conn.execute(
                f"""
                CREATE UNIQUE INDEX IF NOT EXISTS ux_content_drafts_active_source
                ON content_drafts (tenant_id, trigger_kind, source_id)
                WHERE source_id IS NOT NULL AND status IN ({_ACTIVE_SQL})
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS ix_content_drafts_scope
                ON content_drafts (tenant_id, location_id, status, created_at)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS recheck_tasks (
                    draft_id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    location_id TEXT NOT NULL,
                    target_query TEXT NOT NULL,
                    due_at TEXT NOT NULL,
                    status TEXT NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    cited INTEGER,
                    created_at TEXT NOT NULL,
                    completed_at TEXT,
                    FOREIGN KEY(draft_id) REFERENCES content_drafts(draft_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sweep_lock (
                    lock_id INTEGER PRIMARY KEY CHECK (lock_id = 1),
                    sweep_id TEXT NOT NULL,
                    acquired_at TEXT NOT NULL
                )
                """
            )

    @_retry_on_lock
    def insert_draft(
        self,
        *,
        tenant_id: str,
        location_id: str,
        trigger_kind: TriggerKind,
        source_id: str | None,
        title: str,
        body: str,
        target_prompt: str | None,
        content_type: ContentType,
        estimated_score: int,
        target_keywords: Iterable[str],
        created_at: datetime | None = None,
    ) -> ContentDraft:
        """Insert one draft in ``draft`` status; raise DuplicateDraftError on collision."""
        draft_id = str(uuid.uuid4())
        created = (created_at or datetime.now(UTC)).astimezone(UTC).isoformat()
        try:
            with self._connect() as conn:
                conn.execute(
                    f"""
                    INSERT INTO content_drafts ({_DRAFT_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        draft_id,
                        tenant_id,
                        location_id,
                        trigger_kind.value,
                        source_id,
                        title,
                        body,
                        target_prompt,
                        content_type.value,
                        int(estimated_score),
                        json.dumps(list(target_keywords)),
                        DraftStatus.DRAFT.value,
                        0,
                        created,
                        None,
                    ),
                )
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" in str(exc).upper():
                raise DuplicateDraftError(
                    f"Active draft already exists for {tenant_id}/{trigger_kind.value}/{source_id}"
                ) from exc
            raise DraftStoreError(f"Draft insert rejected: {exc}") from exc
        except sqlite3.Error as exc:
            raise DraftStoreError(f"Draft insert failed: {exc}") from exc

        record = self.get_draft(draft_id)
        if record is None:
            raise DraftStoreError(f"Failed to read inserted draft: {draft_id}")
        return record

    def get_draft(self, draft_id: str) -> ContentDraft | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_DRAFT_COLUMNS} FROM content_drafts WHERE draft_id = ?",
                (draft_id,),
            ).fetchone()
        return _row_to_draft(row) if row is not None else None

    def find_active_by_source(
        self,
        tenant_id: str,
        trigger_kind: TriggerKind,
        source_id: str,
    ) -> ContentDraft | None:
        """Return the active draft for a source, if any."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"""
                    SELECT {_DRAFT_COLUMNS}
                    FROM content_drafts
                    WHERE tenant_id = ?
                      AND trigger_kind = ?
                      AND source_id = ?
                      AND status IN ({_ACTIVE_SQL})
                    LIMIT 1
                    """,
                    (tenant_id, trigger_kind.value, source_id),
                ).fetchone()
        except sqlite3.Error as exc:
            raise DraftStoreError(f"Active draft lookup failed: {exc}") from exc
        return _row_to_draft(row) if row is not None else None

    def list_drafts_for_dedup(self, tenant_id: str, *, since: datetime) -> list[ContentDraft]:
        """Return every active draft plus every draft created since ``since``."""
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_DRAFT_COLUMNS}
                FROM content_drafts
                WHERE tenant_id = ?
                  AND (status IN ({_ACTIVE_SQL}) OR created_at >= ?)
                ORDER BY created_at DESC
                """,
                (tenant_id, since.astimezone(UTC).isoformat()),
            ).fetchall()
        return [_row_to_draft(row) for row in rows]

    def count_pending(self, tenant_id: str, location_id: str) -> int:
        """Count ``draft``-status rows awaiting review for a tenant location."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    SELECT COUNT(*) AS pending
                    FROM content_drafts
                    WHERE tenant_id = ? AND location_id = ? AND status = ?
                    """,
                    (tenant_id, location_id, DraftStatus.DRAFT.value),
                ).fetchone()
        except sqlite3.Error as exc:
            raise DraftStoreError(f"Pending draft count failed: {exc}") from exc
        return int(row["pending"])

    def list_drafts(
        self,
        *,
        tenant_id: str | None = None,
        location_id: str | None = None,
        trigger_kind: TriggerKind | None = None,
        statuses: Iterable[DraftStatus] | None = None,
    ) -> list[ContentDraft]:
        """Scoped select ordered by creation time."""
        clauses: list[str] = []
        params: list[Any] = []
        if tenant_id is not None:
            clauses.append("tenant_id = ?")
            params.append(tenant_id)
        if location_id is not None:
            clauses.append("location_id = ?")
            params.append(location_id)
        if trigger_kind is not None:
            clauses.append("trigger_kind = ?")
            params.append(trigger_kind.value)
        if statuses is not None:
            status_values = [status.value for status in statuses]
            if not status_values:
                return []
            clauses.append(f"status IN ({', '.join('?' for _ in status_values)})")
            params.extend(status_values)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_DRAFT_COLUMNS} FROM content_drafts {where} ORDER BY created_at ASC",
                params,
            ).fetchall()
        return [_row_to_draft(row) for row in rows]

    @_retry_on_lock
    def transition_status(
        self,
        draft_id: str,
        next_status: DraftStatus,
        *,
        human_approved: bool | None = None,
        now: datetime | None = None,
    ) -> ContentDraft:
        """Move a draft to its next status with transition validation."""
        current = self.get_draft(draft_id)
        if current is None:
            raise DraftStoreError(f"Draft not found: {draft_id}")

        if next_status not in ALLOWED_TRANSITIONS[current.status]:
            raise InvalidTransitionError(
                f"Invalid transition for {draft_id}: "
                f"{current.status.value} -> {next_status.value}"
            )

        approved = current.human_approved if human_approved is None else human_approved
        published_at = current.published_at
        if next_status == DraftStatus.PUBLISHED:
            published_at = (now or datetime.now(UTC)).astimezone(UTC)

        with self._connect() as conn:
            conn.execute(
                """
                UPDATE content_drafts
                SET status = ?, human_approved = ?, published_at = ?
                WHERE draft_id = ? AND status = ?
                """,
                (
                    next_status.value,
                    1 if approved else 0,
                    published_at.isoformat() if published_at else None,
                    draft_id,
                    current.status.value,
                ),
            )

        updated = self.get_draft(draft_id)
        if updated is None or updated.status != next_status:
            raise DraftStoreError(f"Concurrent status change for draft {draft_id}")
        return updated

    @_retry_on_lock
    def enqueue_recheck(
        self,
        *,
        draft_id: str,
        tenant_id: str,
        location_id: str,
        target_query: str,
        due_at: datetime,
    ) -> RecheckTask:
        """Create or reset the pending recheck for a published draft."""
        with self._connect() as conn:
            conn.execute(
                _UPSERT_RECHECK_SQL,
                _recheck_params(draft_id, tenant_id, location_id, target_query, due_at),
            )

        task = self.get_recheck(draft_id)
        if task is None:
            raise DraftStoreError(f"Failed to persist recheck for draft {draft_id}")
        return task

    @_retry_on_lock
    def publish_draft(
        self,
        draft_id: str,
        *,
        published_at: datetime,
        recheck_due_at: datetime | None,
    ) -> tuple[ContentDraft, RecheckTask | None]:
        """Publish a draft and queue its recheck in one transaction.

        The recheck is queued only when ``recheck_due_at`` is given and the
        draft has a target prompt. Either both rows change or neither does.
        """
        current = self.get_draft(draft_id)
        if current is None:
            raise DraftStoreError(f"Draft not found: {draft_id}")
        if DraftStatus.PUBLISHED not in ALLOWED_TRANSITIONS[current.status]:
            raise InvalidTransitionError(
                f"Invalid transition for {draft_id}: "
                f"{current.status.value} -> {DraftStatus.PUBLISHED.value}"
            )

        target_query = (current.target_prompt or "").strip()
        queue_recheck = recheck_due_at is not None and bool(target_query)
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    UPDATE content_drafts
                    SET status = ?, published_at = ?
                    WHERE draft_id = ? AND status = ?
                    """,
                    (
                        DraftStatus.PUBLISHED.value,
                        published_at.astimezone(UTC).isoformat(),
                        draft_id,
                        current.status.value,
                    ),
                )
                if cursor.rowcount != 1:
                    raise DraftStoreError(f"Concurrent status change for draft {draft_id}")
                if queue_recheck:
                    conn.execute(
                        _UPSERT_RECHECK_SQL,
                        _recheck_params(
                            draft_id,
                            current.tenant_id,
                            current.location_id,
                            target_query,
                            recheck_due_at,  # type: ignore[arg-type]
                        ),
                    )
        except sqlite3.Error as exc:
            raise DraftStoreError(f"Publish failed for draft {draft_id}: {exc}") from exc

        updated = self.get_draft(draft_id)
        if updated is None:
            raise DraftStoreError(f"Failed to read published draft: {draft_id}")
        return updated, self.get_recheck(draft_id) if queue_recheck else None

    def get_recheck(self, draft_id: str) -> RecheckTask | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_RECHECK_COLUMNS} FROM recheck_tasks WHERE draft_id = ?",
                (draft_id,),
            ).fetchone()
        return _row_to_recheck(row) if row is not None else None

    def list_due_rechecks(self, now: datetime) -> list[RecheckTask]:
        """Return pending recheck tasks whose due time has passed."""
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_RECHECK_COLUMNS}
                FROM recheck_tasks
                WHERE status = ? AND due_at <= ?
                ORDER BY due_at ASC
                """,
                (RecheckStatus.PENDING.value, now.astimezone(UTC).isoformat()),
            ).fetchall()
        return [_row_to_recheck(row) for row in rows]

    @_retry_on_lock
    def complete_recheck(self, draft_id: str, *, cited: bool, now: datetime | None = None) -> None:
        completed_at = (now or datetime.now(UTC)).astimezone(UTC).isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE recheck_tasks
                SET status = ?, cited = ?, completed_at = ?, attempts = attempts + 1
                WHERE draft_id = ?
                """,
                (RecheckStatus.COMPLETED.value, 1 if cited else 0, completed_at, draft_id),
            )

    @_retry_on_lock
    def record_recheck_failure(self, draft_id: str, error_message: str) -> None:
        """Keep the task pending for a later sweep and record why it failed."""
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE recheck_tasks
                SET attempts = attempts + 1, last_error = ?
                WHERE draft_id = ?
                """,
                (error_message, draft_id),
            )

    def try_acquire_sweep_lock(self, sweep_id: str) -> bool:
        """Acquire the singleton sweep lock."""
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO sweep_lock(lock_id, sweep_id, acquired_at) VALUES (1, ?, ?)",
                    (sweep_id, _now_iso()),
                )
        except sqlite3.IntegrityError:
            return False
        return True

    def release_sweep_lock(self, sweep_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM sweep_lock WHERE lock_id = 1 AND sweep_id = ?",
                (sweep_id,),
            )

    def get_locked_sweep_id(self) -> str | None:
        with self._connect() as conn:
            row = conn.execute("SELECT sweep_id FROM sweep_lock WHERE lock_id = 1").fetchone()
        if row is None:
            return None
        return str(row["sweep_id"])

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=5.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()


def _row_to_draft(row: sqlite3.Row) -> ContentDraft:
    return ContentDraft(
        draft_id=row["draft_id"],
        tenant_id=row["tenant_id"],
        location_id=row["location_id"],
        trigger_kind=TriggerKind(row["trigger_kind"]),
        source_id=row["source_id"],
        title=row["title"],
        body=row["body"],
        target_prompt=row["target_prompt"],
        content_type=ContentType(row["content_type"]),
        estimated_score=int(row["estimated_score"]),
        target_keywords=tuple(json.loads(row["target_keywords_json"])),
        status=DraftStatus(row["status"]),
        human_approved=bool(row["human_approved"]),
        created_at=_parse_iso(row["created_at"]),
        published_at=_parse_iso(row["published_at"]) if row["published_at"] else None,
    )


def _row_to_recheck(row: sqlite3.Row) -> RecheckTask:
    cited = row["cited"]
    return RecheckTask(
        draft_id=row["draft_id"],
        tenant_id=row["tenant_id"],
        location_id=row["location_id"],
        target_query=row["target_query"],
        due_at=_parse_iso(row["due_at"]),
        status=RecheckStatus(row["status"]),
        attempts=int(row["attempts"]),
        last_error=row["last_error"],
        cited=None if cited is None else bool(cited),
        created_at=_parse_iso(row["created_at"]),
        completed_at=_parse_iso(row["completed_at"]) if row["completed_at"] else None,
    )


def _recheck_params(
    draft_id: str,
    tenant_id: str,
    location_id: str,
    target_query: str,
    due_at: datetime,
) -> tuple[Any, ...]:
    return (
        draft_id,
        tenant_id,
        location_id,
        target_query,
        due_at.astimezone(UTC).isoformat(),
        RecheckStatus.PENDING.value,
        _now_iso(),
    )


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(value)
