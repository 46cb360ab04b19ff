"""Ad platform connector contract"""

from agency_reports.connectors.base import AdPlatformConnector, coerce_rows, raise_for_status
from agency_reports.connectors.registry import load_connectors

__all__ = [
    "AdPlatformConnector",
    "coerce_rows",
    "load_connectors",
    "raise_for_status",
]
