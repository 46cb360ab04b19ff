"""
Cache Store

Keyed storage for the current period's aggregated metrics per
client/platform. The store enforces no TTL: the smart cache service
decides staleness. The period archiver evicts closed periods and the
retention enforcer drops rows left past their horizon.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from agency_reports.exceptions import PersistenceError
from agency_reports.models.campaign_cache import CampaignCache
from agency_reports.utils.helpers import to_utc_naive
from agency_reports.utils.logger import log


@dataclass
class CacheEntry:
    """A full period-to-date snapshot to write to the cache"""
    client_id: str
    platform: str
    scope: str
    period_id: str
    period_start: date
    period_end: date
    last_refreshed_at: datetime
    aggregated_metrics: Dict = field(default_factory=dict)
    raw_campaign_rows: List[Dict] = field(default_factory=list)


class CacheStore:
    """Cache rows keyed by (client_id, platform, period_id)"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, client_id: str, platform: str, period_id: str) -> Optional[CampaignCache]:
        try:
            return self.db.query(CampaignCache).filter(
                CampaignCache.client_id == client_id,
                CampaignCache.platform == platform,
                CampaignCache.period_id == period_id
            ).first()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Cache read failed for {client_id}/{platform}/{period_id}: {e}") from e

    def upsert(self, entry: CacheEntry) -> CampaignCache:
        """
        Replace the cache row for the entry's key

        Last write wins, ordered by refresh time: a snapshot older than
        the stored one is dropped so last_refreshed_at never moves back.
        """
        try:
            try:
                return self._write(entry)
            except IntegrityError:
                # A concurrent writer inserted the key first; update its row
                self.db.rollback()
                log.debug(f"Cache insert race on {entry.client_id}/{entry.platform}/{entry.period_id}, updating")
                return self._write(entry)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(
                f"Cache write failed for {entry.client_id}/{entry.platform}/{entry.period_id}: {e}"
            ) from e

    def _write(self, entry: CacheEntry) -> CampaignCache:
        refreshed_at = to_utc_naive(entry.last_refreshed_at)
        existing = self.get(entry.client_id, entry.platform, entry.period_id)

        if existing is not None and existing.last_refreshed_at and existing.last_refreshed_at > refreshed_at:
            log.info(
                f"Skipping older cache snapshot for {entry.client_id}/{entry.platform}/{entry.period_id} "
                f"({refreshed_at} < {existing.last_refreshed_at})"
            )
            return existing

        row = existing
        if row is None:
            row = CampaignCache(
                client_id=entry.client_id,
                platform=entry.platform,
                period_id=entry.period_id
            )
            self.db.add(row)

        # Wholesale replace, never merge
        row.scope = entry.scope
        row.period_start = entry.period_start
        row.period_end = entry.period_end
        row.aggregated_metrics = dict(entry.aggregated_metrics)
        row.raw_campaign_rows = list(entry.raw_campaign_rows)
        row.last_refreshed_at = refreshed_at
        row.updated_at = datetime.utcnow()

        self.db.commit()
        self.db.refresh(row)
        return row

    def delete(self, client_id: str, platform: str, period_id: str) -> bool:
        """Delete a cache row. Returns False if it was already gone."""
        try:
            deleted = self.db.query(CampaignCache).filter(
                CampaignCache.client_id == client_id,
                CampaignCache.platform == platform,
                CampaignCache.period_id == period_id
            ).delete(synchronize_session=False)
            self.db.commit()
            return deleted > 0
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Cache delete failed for {client_id}/{platform}/{period_id}: {e}") from e

    def list_for_scope(self, scope: str, platform: Optional[str] = None) -> List[CampaignCache]:
        try:
            query = self.db.query(CampaignCache).filter(CampaignCache.scope == scope)
            if platform:
                query = query.filter(CampaignCache.platform == platform)
            return query.order_by(CampaignCache.client_id, CampaignCache.period_id).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Cache listing failed for scope {scope}: {e}") from e

    def count_by_scope(self) -> Dict[str, int]:
        rows = self.db.query(CampaignCache.scope, func.count(CampaignCache.id)).group_by(CampaignCache.scope).all()
        return {scope: count for scope, count in rows}

    def delete_older_than(self, scope: str, cutoff: date) -> int:
        """Delete cache rows of a scope whose period ended before cutoff."""
        try:
            deleted = self.db.query(CampaignCache).filter(
                CampaignCache.scope == scope,
                CampaignCache.period_end < cutoff
            ).delete(synchronize_session=False)
            self.db.commit()
            return deleted
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Cache retention delete failed for scope {scope}: {e}") from e
