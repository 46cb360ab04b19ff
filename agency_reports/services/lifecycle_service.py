"""
Lifecycle Service

Batch entry points invoked by the scheduler and the operator CLI:
  - refresh:           current-period cache refresh for one or all clients
  - collect_missing:   gap-fill of closed periods for all clients
  - archive_period:    closed cache entries to permanent summaries
  - enforce_retention: delete summaries and cache rows past their horizon

Every job returns a JobResult with per-unit outcomes. A failing unit
(one client, one cache entry, one summary type) never aborts the job.
"""
import asyncio
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from agency_reports.config import get_settings
from agency_reports.connectors.base import AdPlatformConnector
from agency_reports.exceptions import PersistenceError
from agency_reports.services.accounts import active_client_ids
from agency_reports.services.cache_store import CacheStore
from agency_reports.services.gap_fill_collector import GapFillCollector
from agency_reports.services.period_archiver import PeriodArchiver
from agency_reports.services.period_calculator import summary_type_for
from agency_reports.services.retention_service import RetentionEnforcer
from agency_reports.services.smart_cache_service import SmartCacheService
from agency_reports.services.summary_store import SummaryStore
from agency_reports.utils.helpers import chunk_list
from agency_reports.utils.logger import log

ALL_CLIENTS = "all"


@dataclass
class UnitResult:
    """Outcome for one unit of a batch job"""
    unit: str
    status: str  # success, failed, skipped
    detail: Optional[dict] = None
    error: Optional[str] = None


@dataclass
class JobResult:
    """Tracks batch job results for logging"""
    job: str
    status: str = "success"  # success, failed, partial
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    units: List[UnitResult] = field(default_factory=list)
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    def add(self, unit: UnitResult) -> None:
        self.units.append(unit)
        if unit.status == "success":
            self.succeeded += 1
        elif unit.status == "skipped":
            self.skipped += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict:
        return {
            "job": self.job,
            "status": self.status,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "duration_seconds": round(self.duration_seconds, 2),
            "error_message": self.error_message,
            "units": [
                {"unit": u.unit, "status": u.status, "error": u.error, "detail": u.detail}
                for u in self.units
            ],
        }


@contextmanager
def track_job(job: str):
    """
    Context manager to track job timing and settle the final status.

    Usage:
        with track_job("archive_month") as result:
            result.add(UnitResult("c1/meta/2025-01", "success"))
    """
    result = JobResult(job=job)
    result.started_at = datetime.utcnow()
    start_time = time.time()

    try:
        yield result
    except Exception as e:
        result.status = "failed"
        result.error_message = str(e)
        log.error(f"Job {job} failed: {e}")
        raise
    finally:
        result.completed_at = datetime.utcnow()
        result.duration_seconds = time.time() - start_time

        # Determine final status
        if result.status != "failed":
            if result.failed > 0 and result.succeeded > 0:
                result.status = "partial"
            elif result.failed > 0 and result.succeeded == 0:
                result.status = "failed"

        log.info(
            f"Job {job} {result.status}: {result.succeeded} succeeded, "
            f"{result.failed} failed, {result.skipped} skipped in {result.duration_seconds:.1f}s"
        )


class LifecycleService:
    """Batch entry points for the cache and data lifecycle"""

    def __init__(
        self,
        db,
        connectors: Optional[Dict[str, AdPlatformConnector]] = None,
        settings=None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.db = db
        self.connectors = connectors or {}
        self.settings = settings or get_settings()
        self._sleep = sleep
        self.cache_service = SmartCacheService(db, self.connectors, settings=self.settings, sleep=sleep)
        self.collector = GapFillCollector(db, self.connectors, settings=self.settings, sleep=sleep)
        self.archiver = PeriodArchiver(db, settings=self.settings)
        self.retention = RetentionEnforcer(db, settings=self.settings)

    def _target_clients(self, client_id_or_all: Optional[str], platform: str) -> List[str]:
        if client_id_or_all in (None, ALL_CLIENTS):
            return active_client_ids(self.db, platform)
        return [client_id_or_all]

    async def _run_in_batches(
        self,
        client_ids: List[str],
        run_one: Callable[[str], Awaitable[UnitResult]],
        result: JobResult,
        platform: str
    ):
        """
        Run clients concurrently in small batches, pausing between batches.

        An exception escaping one client becomes that client's failed unit;
        the rest of the batch and later batches still run.
        """
        batches = chunk_list(client_ids, self.settings.client_batch_size)
        for index, batch in enumerate(batches):
            if index > 0:
                await self._sleep(self.settings.inter_batch_delay_seconds)
            outcomes = await asyncio.gather(
                *[run_one(client_id) for client_id in batch],
                return_exceptions=True
            )
            for client_id, outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    log.error(f"{result.job}: {client_id}/{platform} raised {type(outcome).__name__}: {outcome}")
                    outcome = UnitResult(f"{client_id}/{platform}", "failed", error=str(outcome) or type(outcome).__name__)
                elif isinstance(outcome, BaseException):
                    raise outcome
                result.add(outcome)

    async def refresh(
        self,
        client_id_or_all: Optional[str],
        platform: str,
        force_refresh: bool = False,
        scope: str = "month",
        now: Optional[datetime] = None
    ) -> JobResult:
        """Refresh the current-period cache for one client or every active client."""
        now = now or datetime.now(timezone.utc)

        async def run_one(client_id: str) -> UnitResult:
            cached = await self.cache_service.get_or_refresh(
                client_id, platform, scope=scope, force_refresh=force_refresh, now=now
            )
            unit = f"{client_id}/{platform}/{cached.period_id}"
            status = "success" if cached.success else "failed"
            return UnitResult(unit, status, detail=cached.to_dict(), error=cached.error)

        with track_job(f"refresh_{platform}_{scope}") as result:
            await self._run_in_batches(self._target_clients(client_id_or_all, platform), run_one, result, platform)
        return result

    async def collect_missing(
        self,
        platform: str,
        lookback_periods: Optional[int] = None,
        batch_offset: int = 0,
        batch_size: Optional[int] = None,
        scope: str = "week",
        now: Optional[datetime] = None
    ) -> JobResult:
        """
        Gap-fill closed periods for every active client on a platform

        lookback_periods defaults to gap_fill_lookback_weeks or
        gap_fill_lookback_months depending on scope. batch_size caps the
        upstream fetches per client and defaults to gap_fill_batch_size.
        """
        now = now or datetime.now(timezone.utc)
        if lookback_periods is None:
            lookback_periods = (
                self.settings.gap_fill_lookback_months if scope == "month"
                else self.settings.gap_fill_lookback_weeks
            )

        async def run_one(client_id: str) -> UnitResult:
            collected = await self.collector.collect_missing(
                client_id, platform, lookback_periods,
                scope=scope, now=now, batch_offset=batch_offset, batch_size=batch_size
            )
            unit = f"{client_id}/{platform}"
            if not collected.success:
                errors = [e["error"] for e in collected.errors] + [
                    f"{f['period_id']} flagged" for f in collected.flagged
                ]
                return UnitResult(unit, "failed", detail=collected.to_dict(), error="; ".join(errors))
            status = "success" if collected.collected else "skipped"
            return UnitResult(unit, status, detail=collected.to_dict())

        with track_job(f"collect_missing_{platform}_{scope}") as result:
            await self._run_in_batches(active_client_ids(self.db, platform), run_one, result, platform)
        return result

    async def archive_period(self, scope: str, now: Optional[datetime] = None) -> JobResult:
        """Archive closed cache entries of a scope into permanent summaries."""
        with track_job(f"archive_{scope}") as result:
            archived = self.archiver.archive_completed_periods(scope, now=now)

            written = {(a["client_id"], a["platform"], a["period_id"]) for a in archived.archived}
            for evicted in archived.evicted:
                key = (evicted["client_id"], evicted["platform"], evicted["period_id"])
                status = "success" if key in written else "skipped"
                result.add(UnitResult("/".join(key), status, detail=evicted))
            for error in archived.errors:
                unit = "/".join(str(error.get(k)) for k in ("client_id", "platform", "period_id"))
                result.add(UnitResult(unit, "failed", detail=error, error=error.get("error")))
        return result

    async def enforce_retention(self, now: Optional[datetime] = None) -> JobResult:
        """Delete summaries and cache rows past their retention horizon."""
        with track_job("enforce_retention") as result:
            retained = self.retention.enforce_retention(now=now)
            failed_types = {e["summary_type"]: e["error"] for e in retained.errors}
            cache_by_type = {summary_type_for(scope): n for scope, n in retained.cache_deleted.items()}

            for summary_type, cutoff in retained.cutoffs.items():
                if summary_type in failed_types:
                    result.add(UnitResult(summary_type, "failed", error=failed_types[summary_type]))
                    continue
                result.add(UnitResult(summary_type, "success", detail={
                    "cutoff": cutoff.isoformat(),
                    "deleted": getattr(retained, f"{summary_type}_deleted"),
                    "cache_deleted": cache_by_type.get(summary_type, 0),
                }))
        return result

    def get_lifecycle_status(self) -> Dict[str, Any]:
        """Cache and permanent store counts for monitoring."""
        try:
            cache_counts = CacheStore(self.db).count_by_scope()
            summaries = SummaryStore(self.db)
            summary_count = summaries.count()
            oldest, newest = summaries.date_range()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Lifecycle status query failed: {e}") from e

        return {
            "cache_entries": cache_counts,
            "cache_total": sum(cache_counts.values()),
            "summaries": summary_count,
            "oldest_summary": oldest.isoformat() if oldest else None,
            "newest_summary": newest.isoformat() if newest else None,
            "retention": {
                "daily_days": self.settings.retention_daily_days,
                "weekly_weeks": self.settings.retention_weekly_weeks,
                "monthly_months": self.settings.retention_monthly_months,
            },
            "checked_at": datetime.utcnow().isoformat(),
        }
