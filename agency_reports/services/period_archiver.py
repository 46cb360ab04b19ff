"""
Period Transition Archiver

Moves cache entries whose period has closed into the permanent summary
store, keeping the full campaign detail, and evicts them from the cache.
Run at every period boundary, before retention.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from agency_reports.config import get_settings
from agency_reports.exceptions import PersistenceError
from agency_reports.models.campaign_cache import CampaignCache
from agency_reports.services.cache_store import CacheStore
from agency_reports.services.period_calculator import current_period, summary_type_for
from agency_reports.services.summary_store import SKIPPED, SummaryRecord, SummaryStore
from agency_reports.utils.helpers import metric
from agency_reports.utils.logger import log

DATA_SOURCE = "period_transition_archive"


@dataclass
class ArchiveResult:
    scope: str
    archived: List[Dict] = field(default_factory=list)  # summary written
    evicted: List[Dict] = field(default_factory=list)  # cache row deleted
    errors: List[Dict] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "scope": self.scope,
            "archived": len(self.archived),
            "evicted": len(self.evicted),
            "errors": list(self.errors),
        }


def _key(entry: CampaignCache) -> Dict:
    return {"client_id": entry.client_id, "platform": entry.platform, "period_id": entry.period_id}


class PeriodArchiver:
    """Cache to permanent store migration for closed periods"""

    def __init__(self, db, settings=None):
        self.db = db
        self.settings = settings or get_settings()
        self.cache = CacheStore(db)
        self.summaries = SummaryStore(db)

    def archive_completed_periods(self, scope: str, now: Optional[datetime] = None) -> ArchiveResult:
        """
        Archive and evict every cache entry of `scope` that is no longer current

        Idempotent: a second run finds no closed entries left in the cache.
        """
        now = now or datetime.now(timezone.utc)
        summary_type = summary_type_for(scope)
        current = current_period(scope, now, self.settings.reporting_timezone)
        result = ArchiveResult(scope=scope)

        try:
            entries = self.cache.list_for_scope(scope)
        except PersistenceError as e:
            result.errors.append({"error": str(e), "error_class": "persistence"})
            return result

        closed = [e for e in entries if e.period_id != current.period_id]
        log.info(f"Archiving {len(closed)} closed {scope} cache entries (current period {current.period_id})")

        for entry in closed:
            key = _key(entry)

            if entry.period_start > current.start_date:
                log.warning(f"Cache entry {entry.period_id} is ahead of current period {current.period_id}, leaving it")
                continue

            try:
                self._archive_entry(entry, summary_type, key, result)
            except PersistenceError as e:
                log.error(f"Archiving {key} failed: {e}")
                result.errors.append({**key, "error": str(e), "error_class": "persistence"})

        log.info(
            f"Archive {scope}: {len(result.archived)} archived, "
            f"{len(result.evicted)} evicted, {len(result.errors)} errors"
        )
        return result

    def _archive_entry(self, entry: CampaignCache, summary_type: str, key: Dict, result: ArchiveResult) -> None:
        metrics = dict(entry.aggregated_metrics or {})
        raw_rows = list(entry.raw_campaign_rows or [])

        if metric(metrics, "spend") > 0 and not raw_rows:
            existing = self.summaries.get(entry.client_id, entry.platform, summary_type, entry.period_start)
            if existing is not None and existing.is_complete:
                self.cache.delete(entry.client_id, entry.platform, entry.period_id)
                result.evicted.append(key)
                return
            # Leave the entry so the gap-fill collector can backfill the period
            result.errors.append({
                **key,
                "error": "Cache entry has spend but no campaign rows, not archived",
                "error_class": "incomplete",
            })
            log.warning(f"Refusing to archive {key}: spend {metric(metrics, 'spend'):.2f} without campaign rows")
            return

        outcome = self.summaries.upsert(SummaryRecord(
            client_id=entry.client_id,
            platform=entry.platform,
            summary_type=summary_type,
            summary_date=entry.period_start,
            aggregated_metrics=metrics,
            raw_campaign_rows=raw_rows,
            data_source=DATA_SOURCE
        ), force=True)

        if outcome != SKIPPED:
            result.archived.append({**key, "outcome": outcome})

        self.cache.delete(entry.client_id, entry.platform, entry.period_id)
        result.evicted.append(key)
