"""Archive occasion drafts once the occasion has passed."""

from __future__ import annotations

import calendar
from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo

from models import DraftStatus, TriggerKind
from services.directory import SqliteDirectory
from services.draft_store import DraftStore
from services.observability import LogContext, get_logger

# A peak further ahead than this is treated as last year's occurrence.
_LOOKAHEAD_MONTHS = 6


def _add_months(value: date, months: int) -> date:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _annual_date_in_year(month: int, day: int, year: int) -> date:
    if month == 2 and day == 29 and not calendar.isleap(year):
        day = 28
    return date(year, month, day)


def resolve_peak_date(annual_date: str, today: date) -> date:
    """Resolve an MM-DD occasion date to its most recent relevant occurrence.

    This year's date is used unless it lies more than six months ahead of
    ``today``, in which case the occurrence is last year's.
    """
    try:
        month_raw, day_raw = annual_date.split("-")
        month, day = int(month_raw), int(day_raw)
    except ValueError as exc:
        raise ValueError(f"Occasion date must be MM-DD, got {annual_date!r}") from exc

    peak = _annual_date_in_year(month, day, today.year)
    if peak > _add_months(today, _LOOKAHEAD_MONTHS):
        peak = _annual_date_in_year(month, day, today.year - 1)
    return peak


class OccasionLifecycleManager:
    """Archives occasion drafts whose peak date plus grace period has passed."""

    def __init__(
        self,
        *,
        store: DraftStore,
        directory: SqliteDirectory,
        grace_days: int = 7,
        timezone: str = "UTC",
    ) -> None:
        self._store = store
        self._directory = directory
        self._grace = timedelta(days=grace_days)
        self._zone = ZoneInfo(timezone)
        self._events = get_logger()

    def archive_expired_occasion_drafts(
        self,
        *,
        now: datetime | None = None,
        include_published: bool = False,
        sweep_id: str | None = None,
    ) -> int:
        """Return the number of drafts archived. Never raises."""
        today = (now or datetime.now(UTC)).astimezone(self._zone).date()
        statuses = {DraftStatus.DRAFT, DraftStatus.APPROVED}
        if include_published:
            statuses.add(DraftStatus.PUBLISHED)

        context = LogContext(sweep_id=sweep_id)
        try:
            candidates = self._store.list_drafts(
                trigger_kind=TriggerKind.OCCASION,
                statuses=statuses,
            )
            occasion_ids = {draft.source_id for draft in candidates if draft.source_id}
            peak_dates = self._directory.get_occasion_peak_dates(occasion_ids)
        except Exception as exc:
            self._events.error("occasion_archive_read_failed", context=context, error=str(exc))
            return 0

        archived = 0
        for draft in candidates:
            if draft.source_id is None:
                continue
            annual_date = peak_dates.get(draft.source_id)
            if annual_date is None:
                # Unknown or evergreen occasion.
                continue

            draft_context = LogContext(
                sweep_id=sweep_id,
                tenant_id=draft.tenant_id,
                location_id=draft.location_id,
                draft_id=draft.draft_id,
            )
            try:
                peak = resolve_peak_date(annual_date, today)
                if today <= peak + self._grace:
                    continue
                self._store.transition_status(draft.draft_id, DraftStatus.ARCHIVED, now=now)
            except Exception as exc:
                self._events.error(
                    "occasion_archive_failed",
                    context=draft_context,
                    occasion_id=draft.source_id,
                    error=str(exc),
                )
                continue

            archived += 1
            self._events.info(
                "occasion_draft_archived",
                context=draft_context,
                occasion_id=draft.source_id,
                peak_date=peak.isoformat(),
            )

        return archived
