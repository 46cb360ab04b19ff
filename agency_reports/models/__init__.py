"""Database models for the agency reports lifecycle engine"""

from agency_reports.models.client import Client
from agency_reports.models.campaign_cache import CampaignCache
from agency_reports.models.campaign_summary import CampaignSummary
from agency_reports.models.campaign_row import CampaignRow

__all__ = [
    "Client",
    "CampaignCache",
    "CampaignSummary",
    "CampaignRow",
]
