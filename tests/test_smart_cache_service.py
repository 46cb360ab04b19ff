"""
Smart cache coordinator tests.

Guards against:
1. Serving data older than the staleness threshold
2. Upstream calls on a fresh cache hit
3. Losing the cached copy when a refresh fails
"""
import asyncio
from datetime import date, timedelta

from agency_reports.exceptions import TerminalUpstreamError, TransientUpstreamError
from agency_reports.models.campaign_cache import CampaignCache
from agency_reports.services.smart_cache_service import SmartCacheService
from agency_reports.utils.helpers import to_utc_naive

from conftest import NOW, FakeConnector, _run, row


def _service(db, settings, sleep, connector):
    return SmartCacheService(db, {connector.platform: connector}, settings=settings, sleep=sleep)


# ---------------------------------------------------------------------------
# Freshness
# ---------------------------------------------------------------------------

def test_force_refresh_stores_exact_ratios(db, settings, sleep, add_client):
    add_client("c1")
    connector = FakeConnector(rows=[row(spend=100.0, impressions=1000, clicks=50)])
    service = _service(db, settings, sleep, connector)

    result = _run(service.get_or_refresh("c1", "meta", "month", force_refresh=True, now=NOW))

    assert result.success
    assert result.source == "refreshed"
    assert result.period_id == "2025-01"
    assert result.data["aggregated_metrics"]["ctr"] == 5.0
    assert result.data["aggregated_metrics"]["cpc"] == 2.0

    cached = db.query(CampaignCache).one()
    assert cached.last_refreshed_at == to_utc_naive(NOW)
    assert cached.raw_campaign_rows[0]["campaign_id"] == "c-1"


def test_refresh_requests_period_to_date(db, settings, sleep, add_client):
    add_client("c1")
    connector = FakeConnector(rows=[row()])
    _run(_service(db, settings, sleep, connector).get_or_refresh("c1", "meta", "month", now=NOW))

    assert connector.calls == [("111", date(2025, 1, 1), date(2025, 1, 15))]


def test_fresh_entry_served_without_upstream_call(db, settings, sleep, add_client):
    add_client("c1")
    connector = FakeConnector(rows=[row()])
    service = _service(db, settings, sleep, connector)

    _run(service.get_or_refresh("c1", "meta", "month", now=NOW))
    later = NOW + timedelta(hours=2, minutes=59)
    result = _run(service.get_or_refresh("c1", "meta", "month", now=later))

    assert result.source == "cache"
    assert result.cache_age == (2 * 60 + 59) * 60
    assert len(connector.calls) == 1


def test_stale_entry_refreshed(db, settings, sleep, add_client):
    add_client("c1")
    connector = FakeConnector(responses=[[row(spend=100.0)], [row(spend=175.0)]])
    service = _service(db, settings, sleep, connector)

    _run(service.get_or_refresh("c1", "meta", "month", now=NOW))
    later = NOW + timedelta(hours=3)
    result = _run(service.get_or_refresh("c1", "meta", "month", now=later))

    assert result.source == "refreshed"
    assert result.data["aggregated_metrics"]["spend"] == 175.0
    assert db.query(CampaignCache).one().last_refreshed_at == to_utc_naive(later)


def test_force_refresh_bypasses_fresh_entry(db, settings, sleep, add_client):
    add_client("c1")
    connector = FakeConnector(rows=[row()])
    service = _service(db, settings, sleep, connector)

    _run(service.get_or_refresh("c1", "meta", "month", now=NOW))
    result = _run(service.get_or_refresh("c1", "meta", "month", force_refresh=True, now=NOW + timedelta(minutes=5)))

    assert result.source == "refreshed"
    assert len(connector.calls) == 2


# ---------------------------------------------------------------------------
# Degraded fallback
# ---------------------------------------------------------------------------

def test_failed_refresh_serves_stale_entry(db, settings, sleep, add_client):
    add_client("c1")
    connector = FakeConnector(responses=[[row(spend=100.0)], TerminalUpstreamError("Invalid OAuth access token")])
    service = _service(db, settings, sleep, connector)

    _run(service.get_or_refresh("c1", "meta", "month", now=NOW))
    result = _run(service.get_or_refresh("c1", "meta", "month", now=NOW + timedelta(hours=5)))

    assert result.success
    assert result.source == "cache-stale"
    assert result.cache_age == 5 * 3600
    assert result.data["aggregated_metrics"]["spend"] == 100.0
    assert "OAuth" in result.error


def test_failed_force_refresh_never_serves_past_threshold(db, settings, sleep, add_client):
    add_client("c1")
    connector = FakeConnector(responses=[[row()], TerminalUpstreamError("Invalid credentials")])
    service = _service(db, settings, sleep, connector)

    _run(service.get_or_refresh("c1", "meta", "month", now=NOW))
    result = _run(service.get_or_refresh("c1", "meta", "month", force_refresh=True, now=NOW + timedelta(hours=5)))

    assert not result.success
    assert result.data is None


def test_failed_force_refresh_serves_entry_within_threshold(db, settings, sleep, add_client):
    add_client("c1")
    connector = FakeConnector(responses=[[row()], TerminalUpstreamError("Invalid credentials")])
    service = _service(db, settings, sleep, connector)

    _run(service.get_or_refresh("c1", "meta", "month", now=NOW))
    result = _run(service.get_or_refresh("c1", "meta", "month", force_refresh=True, now=NOW + timedelta(hours=1)))

    assert result.success
    assert result.source == "cache-stale"


def test_failure_without_entry(db, settings, sleep, add_client):
    add_client("c1")
    connector = FakeConnector(responses=[TransientUpstreamError("503", status_code=503)] * 4)
    result = _run(_service(db, settings, sleep, connector).get_or_refresh("c1", "meta", "month", now=NOW))

    assert not result.success
    assert result.error_class == "transient"
    assert len(connector.calls) == 4
    assert sleep.delays == [1.0, 2.0, 4.0]
    assert db.query(CampaignCache).count() == 0


def test_transient_failure_recovered(db, settings, sleep, add_client):
    add_client("c1")
    connector = FakeConnector(responses=[TransientUpstreamError("429", status_code=429), [row()]])
    result = _run(_service(db, settings, sleep, connector).get_or_refresh("c1", "meta", "month", now=NOW))

    assert result.success
    assert result.source == "refreshed"
    assert sleep.delays == [1.0]


def test_negative_spend_not_cached(db, settings, sleep, add_client):
    add_client("c1")
    connector = FakeConnector(rows=[row(spend=-20.0)])
    result = _run(_service(db, settings, sleep, connector).get_or_refresh("c1", "meta", "month", now=NOW))

    assert not result.success
    assert result.error_class == "validation"
    assert db.query(CampaignCache).count() == 0


# ---------------------------------------------------------------------------
# Account resolution
# ---------------------------------------------------------------------------

def test_unknown_client(db, settings, sleep):
    connector = FakeConnector(rows=[row()])
    result = _run(_service(db, settings, sleep, connector).get_or_refresh("nope", "meta", "month", now=NOW))

    assert not result.success
    assert "Unknown client" in result.error
    assert connector.calls == []


def test_inactive_client_and_missing_account(db, settings, sleep, add_client):
    add_client("c1", is_active=False)
    add_client("c2", meta=None)
    connector = FakeConnector(rows=[row()])
    service = _service(db, settings, sleep, connector)

    assert not _run(service.get_or_refresh("c1", "meta", "month", now=NOW)).success
    assert not _run(service.get_or_refresh("c2", "meta", "month", now=NOW)).success
    assert not _run(service.get_or_refresh("c2", "tiktok", "month", now=NOW)).success
    assert connector.calls == []


def test_week_scope_uses_week_period(db, settings, sleep, add_client):
    add_client("c1")
    connector = FakeConnector(platform="google", rows=[row()])
    result = _run(_service(db, settings, sleep, connector).get_or_refresh("c1", "google", "week", now=NOW))

    assert result.period_id == "2025-W03"
    assert connector.calls == [("1234567890", date(2025, 1, 13), date(2025, 1, 15))]


# ---------------------------------------------------------------------------
# Single-flight
# ---------------------------------------------------------------------------

def test_concurrent_refreshes_share_one_fetch(db, settings, sleep, add_client):
    add_client("c1")
    connector = FakeConnector(rows=[row()], pause=True)
    service = _service(db, settings, sleep, connector)

    async def both():
        return await asyncio.gather(
            service.get_or_refresh("c1", "meta", "month", now=NOW),
            service.get_or_refresh("c1", "meta", "month", now=NOW),
        )

    first, second = _run(both())

    assert first.success and second.success
    assert len(connector.calls) == 1
    assert db.query(CampaignCache).count() == 1


def test_concurrent_refreshes_without_single_flight(db, settings, sleep, add_client):
    add_client("c1")
    settings.single_flight_enabled = False
    connector = FakeConnector(rows=[row()], pause=True)
    service = _service(db, settings, sleep, connector)

    async def both():
        return await asyncio.gather(
            service.get_or_refresh("c1", "meta", "month", now=NOW),
            service.get_or_refresh("c1", "meta", "month", now=NOW),
        )

    results = _run(both())

    assert all(r.success for r in results)
    assert len(connector.calls) == 2
    assert db.query(CampaignCache).count() == 1


# ---------------------------------------------------------------------------
# Loosely typed payloads
# ---------------------------------------------------------------------------

def test_dict_rows_coerced_before_aggregation(db, settings, sleep, add_client):
    add_client("c1")
    connector = FakeConnector(rows=[
        {"campaign_id": "x", "spend": "10"},
        {"campaign_id": 42, "spend": "1,200.50", "impressions": "3000", "clicks": ""},
    ])

    result = _run(_service(db, settings, sleep, connector).get_or_refresh("c1", "meta", "month", now=NOW))

    assert result.success
    assert result.data["aggregated_metrics"]["spend"] == 1210.5
    assert result.data["aggregated_metrics"]["impressions"] == 3000
    assert [r["campaign_id"] for r in db.query(CampaignCache).one().raw_campaign_rows] == ["x", "42"]


def test_unusable_payload_is_terminal_failure(db, settings, sleep, add_client):
    add_client("c1")
    connector = FakeConnector(rows=[{"name": "no id"}, {"spend": "abc"}])

    result = _run(_service(db, settings, sleep, connector).get_or_refresh("c1", "meta", "month", now=NOW))

    assert not result.success
    assert result.error_class == "terminal"
    assert "malformed" in result.error
    assert db.query(CampaignCache).count() == 0
