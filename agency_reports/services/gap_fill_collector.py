"""
Background Gap-Fill Collector

Backfills closed periods that have no permanent summary, or whose summary
was stored with spend but without campaign detail rows. Periods are
collected one at a time with a pause between upstream calls. Each run
fetches at most gap_fill_batch_size missing periods, newest first, so
repeating the same call walks back through the lookback until no gaps
remain.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from agency_reports.config import get_settings
from agency_reports.connectors.base import AdPlatformConnector, ensure_campaign_rows
from agency_reports.exceptions import (
    AccountResolutionError,
    MetricsValidationError,
    PersistenceError,
    TerminalUpstreamError,
)
from agency_reports.models.campaign_summary import CampaignSummary
from agency_reports.services.accounts import resolve_account
from agency_reports.services.metrics_aggregator import build_snapshot
from agency_reports.services.period_calculator import PeriodInfo, previous_periods
from agency_reports.services.summary_store import SKIPPED, SummaryRecord, SummaryStore
from agency_reports.utils.helpers import metric
from agency_reports.utils.logger import log
from agency_reports.utils.retry import TERMINAL, RetryExecutor, RetryPolicy

DATA_SOURCE = "gap_fill_collector"


@dataclass
class CollectionResult:
    """Outcome of one collect_missing() call"""
    client_id: str
    platform: str
    scope: str
    collected: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    flagged: List[Dict] = field(default_factory=list)  # {period_id, reasons}
    errors: List[Dict] = field(default_factory=list)  # {period_id, error, error_class}
    deferred: List[str] = field(default_factory=list)  # missing, over the fetch limit

    @property
    def success(self) -> bool:
        return not self.errors and not self.flagged

    def to_dict(self) -> dict:
        return {
            "client_id": self.client_id,
            "platform": self.platform,
            "scope": self.scope,
            "collected": list(self.collected),
            "skipped": list(self.skipped),
            "flagged": list(self.flagged),
            "errors": list(self.errors),
            "deferred": list(self.deferred),
        }


def needs_collection(summary: Optional[CampaignSummary]) -> bool:
    """
    True if a period has to be fetched again.

    Spend without detail rows means the summary was written from totals
    only (or the detail was lost) and can't be rendered in a report.
    """
    if summary is None:
        return True
    return metric(summary.aggregated_metrics, "spend") > 0 and not summary.raw_campaign_rows


class GapFillCollector:
    """Collects missing historical summaries for one client at a time"""

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
        self.store = SummaryStore(db)
        self.executor = RetryExecutor(retry_policy or RetryPolicy.from_settings(self.settings), sleep=sleep)
        self._sleep = sleep

    async def collect_missing(
        self,
        client_id: str,
        platform: str,
        lookback_periods: int,
        scope: str = "week",
        now: Optional[datetime] = None,
        batch_offset: int = 0,
        batch_size: Optional[int] = None
    ) -> CollectionResult:
        """
        Fetch and store every closed period in the lookback that is missing

        Args:
            client_id: Client id
            platform: 'meta' or 'google'
            lookback_periods: Number of completed periods to consider
            scope: 'week' or 'month' ('day' also works)
            now: Reference instant
            batch_offset: Skip this many of the most recent periods
            batch_size: Fetch at most this many missing periods; None uses
                gap_fill_batch_size, 0 or less means no limit. Periods past
                the limit are reported in deferred for the next run.
        """
        now = now or datetime.now(timezone.utc)
        result = CollectionResult(client_id=client_id, platform=platform, scope=scope)

        try:
            account = resolve_account(self.db, client_id, platform, self.connectors)
        except (AccountResolutionError, PersistenceError) as e:
            log.warning(f"Gap fill skipped for {client_id}/{platform}: {e}")
            result.errors.append({"period_id": None, "error": str(e), "error_class": "account"})
            return result

        # The current period belongs to the cache, so start one back
        periods = previous_periods(scope, now, lookback_periods, offset=1, tz_name=self.settings.reporting_timezone)
        window = periods[batch_offset:]
        limit = self.settings.gap_fill_batch_size if batch_size is None else batch_size

        log.info(
            f"Gap fill {client_id}/{platform}: checking {len(window)} {scope} period(s) "
            f"(offset {batch_offset}, lookback {lookback_periods}, up to {limit} fetches)"
        )

        fetches = 0
        for period in window:
            try:
                existing = self.store.get(client_id, platform, period.summary_type, period.start_date)
            except PersistenceError as e:
                result.errors.append({"period_id": period.period_id, "error": str(e), "error_class": "persistence"})
                continue

            if not needs_collection(existing):
                result.skipped.append(period.period_id)
                continue

            if limit > 0 and fetches >= limit:
                result.deferred.append(period.period_id)
                continue

            if fetches:
                await self._sleep(self.settings.gap_fill_inter_call_delay_seconds)
            fetches += 1

            await self._collect_period(account, platform, period, result)

        log.info(
            f"Gap fill {client_id}/{platform} done: {len(result.collected)} collected, "
            f"{len(result.skipped)} present, {len(result.deferred)} deferred, "
            f"{len(result.flagged)} flagged, {len(result.errors)} errors"
        )
        return result

    async def _collect_period(self, account, platform: str, period: PeriodInfo, result: CollectionResult) -> None:
        client_id = account.client.id
        label = f"{client_id}/{platform}/{period.period_id}"

        fetched = await self.executor.execute(
            account.connector.fetch_campaign_insights,
            account.account_ref,
            period.start_date,
            period.end_date
        )
        if not fetched.success:
            result.errors.append({
                "period_id": period.period_id,
                "error": fetched.error,
                "error_class": fetched.error_class,
            })
            return

        try:
            rows = ensure_campaign_rows(fetched.data, platform=platform)
        except TerminalUpstreamError as e:
            result.errors.append({"period_id": period.period_id, "error": str(e), "error_class": TERMINAL})
            return

        try:
            metrics, raw_rows = build_snapshot(rows, label)
        except MetricsValidationError as e:
            result.flagged.append({"period_id": period.period_id, "reasons": e.errors or [str(e)]})
            return

        try:
            outcome = self.store.upsert(SummaryRecord(
                client_id=client_id,
                platform=platform,
                summary_type=period.summary_type,
                summary_date=period.start_date,
                aggregated_metrics=metrics,
                raw_campaign_rows=raw_rows,
                data_source=DATA_SOURCE
            ), force=True)
        except PersistenceError as e:
            result.errors.append({"period_id": period.period_id, "error": str(e), "error_class": "persistence"})
            return

        if outcome == SKIPPED:
            # A complete summary landed while we were fetching
            result.skipped.append(period.period_id)
        else:
            log.info(f"Collected {label}: {metrics['total_campaigns']} campaigns, spend {metrics['spend']:.2f}")
            result.collected.append(period.period_id)
