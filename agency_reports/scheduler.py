"""
Scheduler for the cache and data lifecycle jobs

Uses APScheduler to trigger the lifecycle batch jobs. All cron
expressions are evaluated in the reporting timezone.

Jobs:
- Cache refresh:  every 3 hours (current month and week, all platforms)
- Month archive:  00:05 on the 1st (closes last month's cache entries)
- Week archive:   00:05 on Mondays (closes last week's cache entries)
- Gap fill:       Sundays 2:00am (weekly and monthly lookback)
- Retention:      daily 3:30am (after the archives have run)
"""
from typing import Dict, Optional

import pytz
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from agency_reports.config import get_settings
from agency_reports.connectors.base import AdPlatformConnector
from agency_reports.models.base import get_db
from agency_reports.services.lifecycle_service import LifecycleService
from agency_reports.utils.logger import log

settings = get_settings()
scheduler = AsyncIOScheduler()

Connectors = Dict[str, AdPlatformConnector]


# Job functions

async def refresh_current_caches(connectors: Connectors):
    """Refresh current-period caches for every active client"""
    db = next(get_db())
    try:
        service = LifecycleService(db, connectors)
        for platform in connectors:
            for scope in ("month", "week"):
                result = await service.refresh("all", platform, scope=scope)
                log.info(f"Cache refresh {platform}/{scope}: {result.status} ({result.succeeded} ok, {result.failed} failed)")
    except Exception as e:
        log.error(f"Cache refresh job failed: {str(e)}")
    finally:
        db.close()


async def archive_closed_periods(scope: str):
    """Move last period's cache entries into permanent summaries"""
    db = next(get_db())
    try:
        result = await LifecycleService(db).archive_period(scope)
        log.info(f"{scope.capitalize()} archive: {result.status} ({result.succeeded} archived, {result.failed} failed)")
    except Exception as e:
        log.error(f"{scope.capitalize()} archive job failed: {str(e)}")
    finally:
        db.close()


async def collect_missing_history(connectors: Connectors):
    """Backfill closed weeks and months, gap_fill_batch_size fetches per client per run"""
    db = next(get_db())
    try:
        service = LifecycleService(db, connectors)
        for platform in connectors:
            for scope in ("week", "month"):
                result = await service.collect_missing(platform, scope=scope)
                log.info(f"Gap fill {platform}/{scope}: {result.status} ({result.succeeded} clients filled)")
    except Exception as e:
        log.error(f"Gap fill job failed: {str(e)}")
    finally:
        db.close()


async def enforce_retention():
    """Delete summaries and cache rows past their retention horizon"""
    db = next(get_db())
    try:
        result = await LifecycleService(db).enforce_retention()
        log.info(f"Retention: {result.status}")
    except Exception as e:
        log.error(f"Retention job failed: {str(e)}")
    finally:
        db.close()


def _cron(expression: str) -> CronTrigger:
    return CronTrigger.from_crontab(expression, timezone=pytz.timezone(settings.reporting_timezone))


def configure_jobs(target: AsyncIOScheduler, connectors: Connectors) -> AsyncIOScheduler:
    """Register the lifecycle jobs on a scheduler"""

    # ── Current-period cache ─────────────────────────────
    target.add_job(
        refresh_current_caches,
        trigger=_cron(settings.schedule_cache_refresh),
        args=[connectors],
        id='cache_refresh',
        name='Current Period Cache Refresh',
        replace_existing=True,
        max_instances=1
    )

    # ── Period transitions ───────────────────────────────
    target.add_job(
        archive_closed_periods,
        trigger=_cron(settings.schedule_month_archive),
        args=['month'],
        id='archive_month',
        name='Monthly Period Archive',
        replace_existing=True,
        max_instances=1
    )
    target.add_job(
        archive_closed_periods,
        trigger=_cron(settings.schedule_week_archive),
        args=['week'],
        id='archive_week',
        name='Weekly Period Archive',
        replace_existing=True,
        max_instances=1
    )

    # ── History ──────────────────────────────────────────
    target.add_job(
        collect_missing_history,
        trigger=_cron(settings.schedule_gap_fill),
        args=[connectors],
        id='gap_fill',
        name='Missing History Collection',
        replace_existing=True,
        max_instances=1
    )
    target.add_job(
        enforce_retention,
        trigger=_cron(settings.schedule_retention),
        id='retention',
        name='Retention Enforcement',
        replace_existing=True,
        max_instances=1
    )

    return target


def start_scheduler(connectors: Connectors):
    """Start the scheduler"""
    configure_jobs(scheduler, connectors)
    scheduler.start()
    log.info("Scheduler started")


def stop_scheduler():
    """Stop the scheduler"""
    scheduler.shutdown()
    log.info("Scheduler stopped")


def get_scheduled_jobs(target: Optional[AsyncIOScheduler] = None) -> list:
    """
    Get list of all scheduled jobs

    Returns:
        List of job info dicts
    """
    jobs = []

    for job in (target or scheduler).get_jobs():
        next_run = getattr(job, "next_run_time", None)

        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': next_run.isoformat() if next_run else None,
            'trigger': str(job.trigger)
        })

    return jobs
