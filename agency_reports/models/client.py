"""
Client accounts

Client records are maintained by the admin layer. The lifecycle engine
only lists active clients and resolves their upstream account references.
"""
from sqlalchemy import Column, String, DateTime, Boolean
from datetime import datetime
from typing import Optional

from agency_reports.models.base import Base


class Client(Base):
    """An agency client with its ad platform account references"""
    __tablename__ = "clients"

    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)

    # Upstream account references
    meta_ad_account_id = Column(String, nullable=True)  # act_123... or 123...
    google_ads_customer_id = Column(String, nullable=True)  # 123-456-7890

    is_active = Column(Boolean, default=True, index=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def account_ref(self, platform: str) -> Optional[str]:
        """Account reference for a platform, or None if not configured."""
        if platform == "meta":
            ref = self.meta_ad_account_id
            if ref and ref.startswith("act_"):
                ref = ref[len("act_"):]
            return ref or None
        if platform == "google":
            ref = self.google_ads_customer_id
            return ref.replace("-", "") if ref else None
        return None
