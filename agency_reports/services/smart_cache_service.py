"""
Smart Cache Service

Serves current-period campaign metrics from the cache while they are
fresh and refreshes them from the upstream platform otherwise.

Decision flow for get_or_refresh():
1. Compute the current period for the scope
2. Serve the cache entry if it is younger than the staleness threshold
   and no force refresh was asked for
3. Otherwise fetch period-to-date rows (with retries), aggregate,
   validate and replace the cache entry
4. If the refresh fails, fall back to the existing entry marked
   "cache-stale", or report failure when there is nothing to serve
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from agency_reports.config import get_settings
from agency_reports.connectors.base import AdPlatformConnector, ensure_campaign_rows
from agency_reports.exceptions import (
    AccountResolutionError,
    MetricsValidationError,
    PersistenceError,
    TerminalUpstreamError,
)
from agency_reports.models.campaign_cache import CampaignCache
from agency_reports.services.accounts import ResolvedAccount, resolve_account
from agency_reports.services.cache_store import CacheEntry, CacheStore
from agency_reports.services.metrics_aggregator import build_snapshot
from agency_reports.services.period_calculator import PeriodInfo, current_period, to_reporting_date
from agency_reports.utils.helpers import to_utc_naive
from agency_reports.utils.logger import log
from agency_reports.utils.retry import TERMINAL, RetryExecutor, RetryPolicy

SOURCE_CACHE = "cache"
SOURCE_REFRESHED = "refreshed"
SOURCE_CACHE_STALE = "cache-stale"


@dataclass
class CacheResult:
    """What get_or_refresh() hands back to callers"""
    success: bool
    data: Optional[Dict] = None
    cache_age: Optional[float] = None  # Seconds since last refresh
    source: Optional[str] = None  # cache, refreshed, cache-stale
    period_id: Optional[str] = None
    error: Optional[str] = None
    error_class: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "source": self.source,
            "period_id": self.period_id,
            "cache_age": round(self.cache_age, 1) if self.cache_age is not None else None,
            "error": self.error,
            "error_class": self.error_class,
        }


@dataclass
class _RefreshOutcome:
    success: bool
    row: Optional[CampaignCache] = None
    error: Optional[str] = None
    error_class: Optional[str] = None


def entry_payload(row: CampaignCache) -> Dict[str, Any]:
    """Serialize a cache row for callers."""
    return {
        "client_id": row.client_id,
        "platform": row.platform,
        "scope": row.scope,
        "period_id": row.period_id,
        "period_start": row.period_start.isoformat(),
        "period_end": row.period_end.isoformat(),
        "last_refreshed_at": row.last_refreshed_at.isoformat(),
        "aggregated_metrics": dict(row.aggregated_metrics or {}),
        "raw_campaign_rows": list(row.raw_campaign_rows or []),
    }


class SmartCacheService:
    """Current-period cache coordinator"""

    def __init__(
        self,
        db,
        connectors: Dict[str, AdPlatformConnector],
        settings=None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.db = db
        self.connectors = connectors or {}
        self.settings = settings or get_settings()
        self.cache = CacheStore(db)
        self.executor = RetryExecutor(retry_policy or RetryPolicy.from_settings(self.settings), sleep=sleep)
        self._in_flight: Dict[Tuple[str, str, str], asyncio.Future] = {}

    @property
    def stale_threshold_seconds(self) -> float:
        return self.settings.cache_stale_threshold_hours * 3600

    async def get_or_refresh(
        self,
        client_id: str,
        platform: str,
        scope: str = "month",
        force_refresh: bool = False,
        now: Optional[datetime] = None
    ) -> CacheResult:
        """
        Current-period metrics for a client and platform

        Args:
            client_id: Client id
            platform: 'meta' or 'google'
            scope: 'month', 'week' or 'day'
            force_refresh: Skip the freshness check and always hit upstream
            now: Reference instant (defaults to the current UTC time)

        Returns:
            CacheResult. A failed refresh with a usable existing entry is
            still success=True with source="cache-stale".
        """
        now = now or datetime.now(timezone.utc)
        period = current_period(scope, now, self.settings.reporting_timezone)

        try:
            account = resolve_account(self.db, client_id, platform, self.connectors)
        except (AccountResolutionError, PersistenceError) as e:
            log.warning(f"Cannot serve {client_id}/{platform}/{period.period_id}: {e}")
            return CacheResult(success=False, period_id=period.period_id, error=str(e), error_class="account")

        try:
            entry = self.cache.get(client_id, platform, period.period_id)
        except PersistenceError as e:
            log.error(f"Cache lookup failed, refreshing from upstream: {e}")
            entry = None

        age = self._age_seconds(entry, now)
        is_fresh = entry is not None and age < self.stale_threshold_seconds

        if is_fresh and not force_refresh:
            log.debug(f"Cache hit for {client_id}/{platform}/{period.period_id} (age {age:.0f}s)")
            return CacheResult(
                success=True,
                data=entry_payload(entry),
                cache_age=age,
                source=SOURCE_CACHE,
                period_id=period.period_id
            )

        outcome = await self._refresh_shared(account, platform, period, now)

        if outcome.success:
            return CacheResult(
                success=True,
                data=entry_payload(outcome.row),
                cache_age=self._age_seconds(outcome.row, now),
                source=SOURCE_REFRESHED,
                period_id=period.period_id
            )

        # A forced refresh never serves data past the staleness threshold
        if entry is not None and (is_fresh or not force_refresh):
            log.warning(
                f"Refresh failed for {client_id}/{platform}/{period.period_id}, "
                f"serving cached data aged {age:.0f}s: {outcome.error}"
            )
            return CacheResult(
                success=True,
                data=entry_payload(entry),
                cache_age=age,
                source=SOURCE_CACHE_STALE,
                period_id=period.period_id,
                error=outcome.error,
                error_class=outcome.error_class
            )

        return CacheResult(
            success=False,
            period_id=period.period_id,
            error=outcome.error,
            error_class=outcome.error_class
        )

    async def _refresh_shared(
        self,
        account: ResolvedAccount,
        platform: str,
        period: PeriodInfo,
        now: datetime
    ) -> _RefreshOutcome:
        """Collapse concurrent refreshes of one key into a single fetch."""
        if not self.settings.single_flight_enabled:
            return await self._refresh(account, platform, period, now)

        key = (account.client.id, platform, period.period_id)
        pending = self._in_flight.get(key)
        if pending is not None:
            log.debug(f"Joining in-flight refresh for {'/'.join(key)}")
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(self._refresh(account, platform, period, now))
        self._in_flight[key] = task
        try:
            return await asyncio.shield(task)
        finally:
            if self._in_flight.get(key) is task:
                del self._in_flight[key]

    async def _refresh(
        self,
        account: ResolvedAccount,
        platform: str,
        period: PeriodInfo,
        now: datetime
    ) -> _RefreshOutcome:
        client_id = account.client.id
        label = f"{client_id}/{platform}/{period.period_id}"
        today = to_reporting_date(now, self.settings.reporting_timezone)
        end_date = min(period.end_date, today)

        log.info(f"Refreshing {label} ({period.start_date} to {end_date})")
        fetched = await self.executor.execute(
            account.connector.fetch_campaign_insights,
            account.account_ref,
            period.start_date,
            end_date
        )
        if not fetched.success:
            return _RefreshOutcome(success=False, error=fetched.error, error_class=fetched.error_class)

        try:
            rows = ensure_campaign_rows(fetched.data, platform=platform)
        except TerminalUpstreamError as e:
            log.error(f"Unusable upstream payload for {label}: {e}")
            return _RefreshOutcome(success=False, error=str(e), error_class=TERMINAL)

        try:
            metrics, raw_rows = build_snapshot(rows, label)
        except MetricsValidationError as e:
            return _RefreshOutcome(success=False, error=str(e), error_class="validation")

        try:
            row = self.cache.upsert(CacheEntry(
                client_id=client_id,
                platform=platform,
                scope=period.scope,
                period_id=period.period_id,
                period_start=period.start_date,
                period_end=period.end_date,
                last_refreshed_at=now,
                aggregated_metrics=metrics,
                raw_campaign_rows=raw_rows
            ))
        except PersistenceError as e:
            log.error(f"Could not store refreshed cache for {label}: {e}")
            return _RefreshOutcome(success=False, error=str(e), error_class="persistence")

        log.info(
            f"Refreshed {label}: {metrics['total_campaigns']} campaigns, "
            f"spend {metrics['spend']:.2f}, {fetched.attempts} attempt(s)"
        )
        return _RefreshOutcome(success=True, row=row)

    @staticmethod
    def _age_seconds(entry: Optional[CampaignCache], now: datetime) -> float:
        if entry is None or entry.last_refreshed_at is None:
            return float("inf")
        age = (to_utc_naive(now) - entry.last_refreshed_at).total_seconds()
        return max(age, 0.0)
