"""
Permanent period summaries

Historical daily, weekly and monthly campaign summaries per client and
platform. Written by the period archiver and the gap-fill collector,
removed by the retention enforcer.
"""
from sqlalchemy import Column, Integer, String, Date, DateTime, JSON, UniqueConstraint
from datetime import datetime

from agency_reports.models.base import Base


class CampaignSummary(Base):
    """
    Closed-period summary

    Immutable once raw_campaign_rows is non-empty. Rows stored with empty
    detail can be replaced by a forced write.
    """
    __tablename__ = "campaign_summaries"
    __table_args__ = (
        UniqueConstraint(
            "client_id", "summary_type", "summary_date", "platform",
            name="uq_campaign_summaries_key"
        ),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Natural key
    client_id = Column(String, nullable=False, index=True)
    summary_type = Column(String, nullable=False, index=True)  # daily, weekly, monthly
    summary_date = Column(Date, nullable=False, index=True)  # Period start date
    platform = Column(String, nullable=False, index=True)  # meta, google

    # Payload
    aggregated_metrics = Column(JSON, nullable=False, default=dict)
    raw_campaign_rows = Column(JSON, nullable=False, default=list)

    # Provenance
    data_source = Column(String, nullable=True)  # period_transition_archive, gap_fill_collector

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_complete(self) -> bool:
        """True once detail rows are stored."""
        return bool(self.raw_campaign_rows)
