"""
Permanent Store

Upsert-by-natural-key storage for closed-period summaries, keyed by
(client_id, summary_type, summary_date, platform).
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from agency_reports.exceptions import PersistenceError
from agency_reports.models.campaign_summary import CampaignSummary
from agency_reports.utils.logger import log

CREATED = "created"
UPDATED = "updated"
SKIPPED = "skipped"


@dataclass
class SummaryRecord:
    """A closed-period summary to write"""
    client_id: str
    platform: str
    summary_type: str  # daily, weekly, monthly
    summary_date: date
    aggregated_metrics: Dict = field(default_factory=dict)
    raw_campaign_rows: List[Dict] = field(default_factory=list)
    data_source: Optional[str] = None


class SummaryStore:
    """Campaign summaries for closed periods"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, client_id: str, platform: str, summary_type: str, summary_date: date) -> Optional[CampaignSummary]:
        try:
            return self.db.query(CampaignSummary).filter(
                CampaignSummary.client_id == client_id,
                CampaignSummary.summary_type == summary_type,
                CampaignSummary.summary_date == summary_date,
                CampaignSummary.platform == platform
            ).first()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(
                f"Summary read failed for {client_id}/{platform}/{summary_type}/{summary_date}: {e}"
            ) from e

    def upsert(self, record: SummaryRecord, force: bool = False) -> str:
        """
        Insert or replace a summary by its natural key

        Args:
            record: Summary to write
            force: Allow replacing an existing row stored without detail rows

        Returns:
            CREATED, UPDATED or SKIPPED. Rows that already hold campaign
            detail are never overwritten.
        """
        try:
            try:
                return self._write(record, force)
            except IntegrityError:
                # A concurrent writer inserted the key first; re-evaluate against its row
                self.db.rollback()
                return self._write(record, force)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(
                f"Summary write failed for {record.client_id}/{record.platform}/"
                f"{record.summary_type}/{record.summary_date}: {e}"
            ) from e

    def _write(self, record: SummaryRecord, force: bool) -> str:
        existing = self.get(record.client_id, record.platform, record.summary_type, record.summary_date)

        if existing is not None:
            if existing.is_complete:
                log.debug(
                    f"Summary {record.client_id}/{record.platform}/{record.summary_type}/"
                    f"{record.summary_date} already complete, keeping stored row"
                )
                return SKIPPED
            if not force:
                return SKIPPED

            existing.aggregated_metrics = dict(record.aggregated_metrics)
            existing.raw_campaign_rows = list(record.raw_campaign_rows)
            existing.data_source = record.data_source
            existing.updated_at = datetime.utcnow()
            self.db.commit()
            return UPDATED

        self.db.add(CampaignSummary(
            client_id=record.client_id,
            platform=record.platform,
            summary_type=record.summary_type,
            summary_date=record.summary_date,
            aggregated_metrics=dict(record.aggregated_metrics),
            raw_campaign_rows=list(record.raw_campaign_rows),
            data_source=record.data_source
        ))
        self.db.commit()
        return CREATED

    def delete_older_than(self, summary_type: str, cutoff: date) -> int:
        """Delete rows of a type with summary_date strictly before cutoff."""
        try:
            deleted = self.db.query(CampaignSummary).filter(
                CampaignSummary.summary_type == summary_type,
                CampaignSummary.summary_date < cutoff
            ).delete(synchronize_session=False)
            self.db.commit()
            return deleted
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Retention delete failed for {summary_type} before {cutoff}: {e}") from e

    def count(self) -> int:
        return self.db.query(func.count(CampaignSummary.id)).scalar() or 0

    def date_range(self):
        """(oldest, newest) summary_date, or (None, None) when empty."""
        oldest, newest = self.db.query(
            func.min(CampaignSummary.summary_date),
            func.max(CampaignSummary.summary_date)
        ).one()
        return oldest, newest
