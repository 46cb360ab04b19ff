"""
Campaign metrics aggregation and validation

Sums real campaign rows into period totals. Funnel counters are only ever
summed from upstream rows, never estimated from conversion totals.
"""
import math
from typing import Dict, Iterable, List, Sequence

from agency_reports.exceptions import MetricsValidationError
from agency_reports.models.campaign_row import CampaignRow
from agency_reports.utils.helpers import safe_divide
from agency_reports.utils.logger import log

SUMMED_FIELDS = (
    "spend", "impressions", "clicks", "conversions",
    "click_to_call", "email_contacts",
    "booking_step_1", "booking_step_2", "booking_step_3",
    "reservations", "reservation_value",
)

# Must never be negative in a stored summary
NON_NEGATIVE_FIELDS = SUMMED_FIELDS


def aggregate_campaigns(rows: Sequence[CampaignRow]) -> Dict:
    """
    Aggregate campaign rows into period metrics

    Returns:
        Dict with summed totals plus ctr (%), cpc, roas and
        cost_per_reservation; ratios are 0 when the denominator is 0
    """
    totals = {name: 0 for name in SUMMED_FIELDS}
    for row in rows:
        for name in SUMMED_FIELDS:
            totals[name] += getattr(row, name)

    totals["spend"] = round(totals["spend"], 2)
    totals["reservation_value"] = round(totals["reservation_value"], 2)

    spend = totals["spend"]
    totals["ctr"] = safe_divide(totals["clicks"] * 100, totals["impressions"])
    totals["cpc"] = safe_divide(spend, totals["clicks"])
    totals["roas"] = safe_divide(totals["reservation_value"], spend)
    totals["cost_per_reservation"] = safe_divide(spend, totals["reservations"])

    totals["total_campaigns"] = len(rows)
    totals["active_campaigns"] = sum(1 for row in rows if row.is_active)
    return totals


def validate_metrics(metrics: Dict, source: str) -> List[str]:
    """
    Sanity-check aggregated metrics before they are stored

    Returns:
        List of warnings (unusual but storable data)

    Raises:
        MetricsValidationError: negative or non-finite values
    """
    errors = []
    warnings = []

    for name, value in metrics.items():
        if isinstance(value, (int, float)) and not math.isfinite(value):
            errors.append(f"{source}: {name} is not finite ({value})")

    for name in NON_NEGATIVE_FIELDS:
        value = metrics.get(name, 0) or 0
        if value < 0:
            errors.append(f"{source}: Negative {name} detected ({value})")

    clicks = metrics.get("clicks", 0) or 0
    impressions = metrics.get("impressions", 0) or 0
    if clicks > impressions:
        warnings.append(f"{source}: Clicks ({clicks}) > Impressions ({impressions}) - unusual ratio")

    # Funnel inversions can happen with attribution windows
    step_1 = metrics.get("booking_step_1", 0) or 0
    step_2 = metrics.get("booking_step_2", 0) or 0
    step_3 = metrics.get("booking_step_3", 0) or 0
    reservations = metrics.get("reservations", 0) or 0
    if step_1 > 0 and step_2 > step_1:
        warnings.append(f"{source}: Funnel inversion - Step 2 ({step_2}) > Step 1 ({step_1})")
    if step_2 > 0 and step_3 > step_2:
        warnings.append(f"{source}: Funnel inversion - Step 3 ({step_3}) > Step 2 ({step_2})")
    if step_3 > 0 and reservations > step_3:
        warnings.append(f"{source}: Funnel inversion - Reservations ({reservations}) > Step 3 ({step_3})")

    for warning in warnings:
        log.warning(warning)

    if errors:
        for error in errors:
            log.error(error)
        raise MetricsValidationError(errors[0], errors=errors)

    return warnings


def rows_to_json(rows: Iterable[CampaignRow]) -> List[Dict]:
    """Serialize rows for a JSON column."""
    return [row.model_dump() for row in rows]


def build_snapshot(rows: Sequence[CampaignRow], source: str):
    """
    Aggregate, validate and serialize rows in one step

    Returns:
        (aggregated_metrics, raw_campaign_rows)
    """
    metrics = aggregate_campaigns(rows)
    validate_metrics(metrics, source)
    return metrics, rows_to_json(rows)
