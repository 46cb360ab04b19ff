"""
Current-period campaign cache

One row per (client, platform, period). Each refresh replaces the row
wholesale with a period-to-date snapshot from the upstream platform.
"""
from sqlalchemy import Column, Integer, String, Date, DateTime, JSON, UniqueConstraint
from datetime import datetime

from agency_reports.models.base import Base


class CampaignCache(Base):
    """
    Aggregated metrics and raw campaign rows for a still-open period

    Rows for closed periods are moved to campaign_summaries by the archiver.
    """
    __tablename__ = "campaign_cache"
    __table_args__ = (
        UniqueConstraint("client_id", "platform", "period_id", name="uq_campaign_cache_key"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Natural key
    client_id = Column(String, nullable=False, index=True)
    platform = Column(String, nullable=False, index=True)  # meta, google
    period_id = Column(String, nullable=False, index=True)  # 2025-01, 2025-W02, 2025-01-06

    # Period
    scope = Column(String, nullable=False, index=True)  # month, week, day
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)

    # Payload
    aggregated_metrics = Column(JSON, nullable=False, default=dict)
    raw_campaign_rows = Column(JSON, nullable=False, default=list)

    # Freshness
    last_refreshed_at = Column(DateTime, nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
