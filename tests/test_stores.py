"""
Cache store and permanent summary store tests.

Guards against:
1. Duplicate rows per natural key
2. last_refreshed_at moving backwards on an out-of-order write
3. Complete summaries being overwritten
"""
from datetime import date, datetime

from agency_reports.models.campaign_cache import CampaignCache
from agency_reports.models.campaign_summary import CampaignSummary
from agency_reports.services.cache_store import CacheEntry, CacheStore
from agency_reports.services.summary_store import CREATED, SKIPPED, UPDATED, SummaryRecord, SummaryStore


def _entry(refreshed_at, spend=100.0, period_id="2025-01"):
    return CacheEntry(
        client_id="c1",
        platform="meta",
        scope="month",
        period_id=period_id,
        period_start=date(2025, 1, 1),
        period_end=date(2025, 1, 31),
        last_refreshed_at=refreshed_at,
        aggregated_metrics={"spend": spend},
        raw_campaign_rows=[{"campaign_id": "a", "spend": spend}],
    )


def _record(spend=100.0, rows=None):
    return SummaryRecord(
        client_id="c1",
        platform="meta",
        summary_type="weekly",
        summary_date=date(2025, 1, 6),
        aggregated_metrics={"spend": spend},
        raw_campaign_rows=rows if rows is not None else [{"campaign_id": "a", "spend": spend}],
        data_source="gap_fill_collector",
    )


# ---------------------------------------------------------------------------
# Cache store
# ---------------------------------------------------------------------------

class TestCacheStore:

    def test_upsert_replaces_wholesale(self, db):
        store = CacheStore(db)
        store.upsert(_entry(datetime(2025, 1, 15, 9, 0), spend=100.0))
        store.upsert(_entry(datetime(2025, 1, 15, 12, 0), spend=250.0))

        assert db.query(CampaignCache).count() == 1
        cached = store.get("c1", "meta", "2025-01")
        assert cached.aggregated_metrics == {"spend": 250.0}
        assert cached.last_refreshed_at == datetime(2025, 1, 15, 12, 0)

    def test_older_snapshot_dropped(self, db):
        store = CacheStore(db)
        store.upsert(_entry(datetime(2025, 1, 15, 12, 0), spend=250.0))
        store.upsert(_entry(datetime(2025, 1, 15, 9, 0), spend=100.0))

        cached = store.get("c1", "meta", "2025-01")
        assert cached.aggregated_metrics == {"spend": 250.0}
        assert cached.last_refreshed_at == datetime(2025, 1, 15, 12, 0)

    def test_delete_and_missing(self, db):
        store = CacheStore(db)
        store.upsert(_entry(datetime(2025, 1, 15, 12, 0)))
        assert store.delete("c1", "meta", "2025-01") is True
        assert store.delete("c1", "meta", "2025-01") is False
        assert store.get("c1", "meta", "2025-01") is None

    def test_list_and_count_by_scope(self, db):
        store = CacheStore(db)
        store.upsert(_entry(datetime(2025, 1, 15, 12, 0)))
        store.upsert(_entry(datetime(2025, 1, 15, 12, 0), period_id="2024-12"))
        assert [e.period_id for e in store.list_for_scope("month")] == ["2024-12", "2025-01"]
        assert store.list_for_scope("week") == []
        assert store.count_by_scope() == {"month": 2}


# ---------------------------------------------------------------------------
# Summary store
# ---------------------------------------------------------------------------

class TestSummaryStore:

    def test_insert_then_complete_row_is_immutable(self, db):
        store = SummaryStore(db)
        assert store.upsert(_record(spend=100.0)) == CREATED
        assert store.upsert(_record(spend=999.0), force=True) == SKIPPED

        stored = store.get("c1", "meta", "weekly", date(2025, 1, 6))
        assert stored.aggregated_metrics == {"spend": 100.0}
        assert db.query(CampaignSummary).count() == 1

    def test_incomplete_row_needs_force(self, db):
        store = SummaryStore(db)
        store.upsert(_record(spend=100.0, rows=[]))

        assert store.upsert(_record(spend=120.0)) == SKIPPED
        assert store.upsert(_record(spend=120.0), force=True) == UPDATED

        stored = store.get("c1", "meta", "weekly", date(2025, 1, 6))
        assert stored.is_complete
        assert stored.aggregated_metrics == {"spend": 120.0}

    def test_delete_older_than_keeps_cutoff(self, db):
        store = SummaryStore(db)
        for day in (date(2024, 10, 16), date(2024, 10, 17), date(2024, 10, 18)):
            store.upsert(SummaryRecord("c1", "meta", "daily", day, {"spend": 1}, [{"campaign_id": "a"}]))

        assert store.delete_older_than("daily", date(2024, 10, 17)) == 1
        assert store.delete_older_than("weekly", date(2030, 1, 1)) == 0
        assert store.count() == 2
        assert store.date_range() == (date(2024, 10, 17), date(2024, 10, 18))

    def test_empty_store_date_range(self, db):
        assert SummaryStore(db).date_range() == (None, None)
