"""
Base Connector Class

Ad platform connectors implement this contract. The lifecycle engine
only ever calls fetch_campaign_insights(); authentication, pagination and
field mapping stay inside each connector.
"""
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from agency_reports.exceptions import TerminalUpstreamError, TransientUpstreamError
from agency_reports.models.campaign_row import CampaignRow
from agency_reports.utils.logger import log

TRANSIENT_STATUS_CODES = (408, 429, 500, 502, 503, 504)


class AdPlatformConnector(ABC):
    """
    Base class for upstream ad platform connectors

    Implementations must:
    - Return complete period-to-date rows for the requested range
    - Raise TransientUpstreamError for network faults, 5xx and rate limits
    - Raise TerminalUpstreamError for bad credentials or "no data" answers
    """

    #: Platform key used in cache and summary rows (e.g. 'meta', 'google')
    platform: str = ""

    @abstractmethod
    async def fetch_campaign_insights(
        self,
        account_ref: str,
        start_date: date,
        end_date: date
    ) -> List[CampaignRow]:
        """
        Fetch per-campaign metrics for an inclusive date range

        Args:
            account_ref: Upstream account identifier (ad account / customer id)
            start_date: First day of the range
            end_date: Last day of the range

        Returns:
            List of CampaignRow, one per campaign with delivery in the range
        """

    def raise_for_status(self, status_code: int, message: str = "") -> None:
        """Translate an HTTP status into the engine's upstream error classes."""
        raise_for_status(status_code, message, platform=self.platform)


def raise_for_status(status_code: int, message: str = "", platform: Optional[str] = None) -> None:
    """
    Raise the upstream error matching an HTTP status code

    2xx returns normally. 408/429/5xx are transient; every other
    4xx (401/403 credentials, 400/404 bad range) is terminal.
    """
    if 200 <= status_code < 300:
        return
    text = message or f"HTTP {status_code}"
    if status_code in TRANSIENT_STATUS_CODES or status_code >= 500:
        raise TransientUpstreamError(text, status_code=status_code, platform=platform)
    raise TerminalUpstreamError(text, status_code=status_code, platform=platform)


def coerce_rows(payload: Iterable[Dict[str, Any]], platform: Optional[str] = None) -> List[CampaignRow]:
    """
    Convert loosely typed upstream rows into CampaignRow records

    Rows that cannot be coerced are dropped and logged; a payload where
    every row is malformed is treated as a terminal upstream failure.
    """
    rows: List[CampaignRow] = []
    rejected = 0
    for raw in payload or []:
        try:
            rows.append(CampaignRow.model_validate(raw))
        except ValidationError as e:
            rejected += 1
            log.warning(f"Dropping malformed {platform or 'upstream'} campaign row: {e.errors()[:1]}")

    if rejected and not rows:
        raise TerminalUpstreamError(
            f"All {rejected} campaign rows were malformed", platform=platform
        )
    return rows


def ensure_campaign_rows(data: Optional[Iterable[Any]], platform: Optional[str] = None) -> List[CampaignRow]:
    """Pass CampaignRow lists through; coerce anything else with coerce_rows()."""
    items = list(data or [])
    if all(isinstance(item, CampaignRow) for item in items):
        return items
    return coerce_rows(items, platform=platform)
