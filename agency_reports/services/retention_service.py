"""
Retention Enforcer

Deletes permanent summaries older than their horizon:
  - daily:   retention_daily_days (default 90)
  - weekly:  retention_weekly_weeks (default 54)
  - monthly: retention_monthly_months (default 14)

A row dated exactly on the cutoff is kept. Cache rows get the same horizon
as their scope's summaries, measured from period_end: entries the archiver
refused, and day-scope entries that are never archived, would otherwise
stay forever.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional

from dateutil.relativedelta import relativedelta

from agency_reports.config import get_settings
from agency_reports.exceptions import PersistenceError
from agency_reports.services.cache_store import CacheStore
from agency_reports.services.period_calculator import SCOPES, summary_type_for, to_reporting_date
from agency_reports.services.summary_store import SummaryStore
from agency_reports.utils.logger import log


@dataclass
class RetentionResult:
    daily_deleted: int = 0
    weekly_deleted: int = 0
    monthly_deleted: int = 0
    cache_deleted: Dict[str, int] = field(default_factory=dict)  # scope -> rows
    cutoffs: Dict[str, date] = field(default_factory=dict)
    errors: List[Dict] = field(default_factory=list)  # {summary_type, store, error}

    @property
    def total_deleted(self) -> int:
        """Summaries deleted; cache rows are counted in cache_deleted."""
        return self.daily_deleted + self.weekly_deleted + self.monthly_deleted

    def to_dict(self) -> dict:
        return {
            "daily_deleted": self.daily_deleted,
            "weekly_deleted": self.weekly_deleted,
            "monthly_deleted": self.monthly_deleted,
            "cache_deleted": dict(self.cache_deleted),
            "cutoffs": {k: v.isoformat() for k, v in self.cutoffs.items()},
            "errors": list(self.errors),
        }


def compute_cutoffs(now=None, settings=None) -> Dict[str, date]:
    """Oldest summary_date kept for each summary type."""
    settings = settings or get_settings()
    today = to_reporting_date(now, settings.reporting_timezone)
    return {
        "daily": today - timedelta(days=settings.retention_daily_days),
        "weekly": today - timedelta(weeks=settings.retention_weekly_weeks),
        "monthly": today - relativedelta(months=settings.retention_monthly_months),
    }


class RetentionEnforcer:
    """Applies retention horizons to the permanent store and the cache"""

    def __init__(self, db, settings=None):
        self.db = db
        self.settings = settings or get_settings()
        self.store = SummaryStore(db)
        self.cache = CacheStore(db)

    def enforce_retention(self, now: Optional[datetime] = None) -> RetentionResult:
        now = now or datetime.now(timezone.utc)
        result = RetentionResult(cutoffs=compute_cutoffs(now, self.settings))

        for summary_type, cutoff in result.cutoffs.items():
            try:
                deleted = self.store.delete_older_than(summary_type, cutoff)
            except PersistenceError as e:
                log.error(f"Retention for {summary_type} summaries failed: {e}")
                result.errors.append({"summary_type": summary_type, "store": "summaries", "error": str(e)})
                continue

            setattr(result, f"{summary_type}_deleted", deleted)
            if deleted:
                log.info(f"Retention: deleted {deleted} {summary_type} summaries before {cutoff}")

        for scope in SCOPES:
            summary_type = summary_type_for(scope)
            cutoff = result.cutoffs[summary_type]
            try:
                deleted = self.cache.delete_older_than(scope, cutoff)
            except PersistenceError as e:
                log.error(f"Retention for {scope} cache rows failed: {e}")
                result.errors.append({"summary_type": summary_type, "store": "cache", "error": str(e)})
                continue

            result.cache_deleted[scope] = deleted
            if deleted:
                log.warning(f"Retention: deleted {deleted} unarchived {scope} cache rows ending before {cutoff}")

        log.info(
            f"Retention complete: {result.total_deleted} summaries and "
            f"{sum(result.cache_deleted.values())} cache rows deleted"
        )
        return result
