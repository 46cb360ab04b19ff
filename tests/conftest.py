"""
Shared fixtures: in-memory database, fake connectors, recorded sleeps.
"""
import asyncio
import os
from datetime import datetime, timezone

os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from agency_reports.config import Settings
from agency_reports.connectors.base import AdPlatformConnector
from agency_reports.models.base import Base
from agency_reports.models.campaign_row import CampaignRow
from agency_reports.models.client import Client
import agency_reports.models  # noqa: F401

# Wednesday 2025-01-15, 13:00 in Warsaw: month 2025-01, week 2025-W03
NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


def _run(coro):
    """Run an async coroutine in a sync test."""
    return asyncio.run(coro)


class FakeConnector(AdPlatformConnector):
    """
    Scripted connector. Each call consumes the next response: a list of
    rows is returned, an exception instance is raised. When the script
    runs out the default rows are returned.
    """

    def __init__(self, platform="meta", rows=None, responses=None, pause=False):
        self.platform = platform
        self.rows = rows if rows is not None else []
        self.responses = list(responses or [])
        self.pause = pause
        self.calls = []

    async def fetch_campaign_insights(self, account_ref, start_date, end_date):
        self.calls.append((account_ref, start_date, end_date))
        if self.pause:
            # Yield so concurrent callers can pile up
            await asyncio.sleep(0)
        response = self.responses.pop(0) if self.responses else self.rows
        if isinstance(response, Exception):
            raise response
        return list(response)


class SleepRecorder:
    """Drop-in for asyncio.sleep that records delays without waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def row(campaign_id="c-1", spend=100.0, impressions=1000, clicks=50, status="ACTIVE", **extra):
    return CampaignRow(
        campaign_id=campaign_id,
        campaign_name=f"Campaign {campaign_id}",
        status=status,
        spend=spend,
        impressions=impressions,
        clicks=clicks,
        **extra
    )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    return Settings(
        log_to_file=False,
        reporting_timezone="Europe/Warsaw",
        cache_stale_threshold_hours=3.0,
        retry_max_retries=3,
        retry_base_delay_seconds=1.0,
        retry_max_delay_seconds=60.0,
        retry_jitter=False,
        gap_fill_inter_call_delay_seconds=1.0,
        client_batch_size=2,
        inter_batch_delay_seconds=2.0,
    )


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def add_client(db):
    def _add(client_id="c1", meta="act_111", google="123-456-7890", is_active=True):
        client = Client(
            id=client_id,
            name=f"Client {client_id}",
            meta_ad_account_id=meta,
            google_ads_customer_id=google,
            is_active=is_active
        )
        db.add(client)
        db.commit()
        return client
    return _add
