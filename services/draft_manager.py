"""Human review actions over persisted drafts."""

from __future__ import annotations

from datetime import datetime

from config import AppConfig
from models import ContentDraft, DraftStatus
from services.draft_store import DraftStore, DraftStoreError
from services.observability import LogContext, get_logger
from services.recheck import publish_with_recheck


class DraftManager:
    """Tenant-scoped approve, reject, and publish actions."""

    def __init__(self, config: AppConfig, store: DraftStore) -> None:
        self._config = config
        self._store = store
        self._events = get_logger()

    def get_pending(self, tenant_id: str, *, location_id: str | None = None) -> list[ContentDraft]:
        """Drafts awaiting review, oldest first."""
        return self._store.list_drafts(
            tenant_id=tenant_id,
            location_id=location_id,
            statuses=[DraftStatus.DRAFT],
        )

    def approve(self, tenant_id: str, draft_id: str) -> ContentDraft:
        self._require_owned(tenant_id, draft_id)
        updated = self._store.transition_status(
            draft_id,
            DraftStatus.APPROVED,
            human_approved=True,
        )
        self._log("draft_approved", updated)
        return updated

    def reject(self, tenant_id: str, draft_id: str) -> ContentDraft:
        self._require_owned(tenant_id, draft_id)
        updated = self._store.transition_status(draft_id, DraftStatus.REJECTED)
        self._log("draft_rejected", updated)
        return updated

    def publish(
        self,
        tenant_id: str,
        draft_id: str,
        *,
        now: datetime | None = None,
    ) -> ContentDraft:
        """Publish an approved draft and queue its visibility recheck."""
        current = self._require_owned(tenant_id, draft_id)
        if not current.human_approved:
            raise DraftStoreError(f"Draft {draft_id} has not been approved by a reviewer")

        updated, _task = publish_with_recheck(
            self._store,
            current,
            delay_days=self._config.recheck_delay_days,
            now=now,
        )
        self._log("draft_published", updated)
        return updated

    def _require_owned(self, tenant_id: str, draft_id: str) -> ContentDraft:
        draft = self._store.get_draft(draft_id)
        if draft is None or draft.tenant_id != tenant_id:
            raise DraftStoreError(f"Draft not found: {draft_id}")
        return draft

    def _log(self, event: str, draft: ContentDraft) -> None:
        self._events.info(
            event,
            context=LogContext(
                tenant_id=draft.tenant_id,
                location_id=draft.location_id,
                draft_id=draft.draft_id,
            ),
            status=draft.status.value,
        )
