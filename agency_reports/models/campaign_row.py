"""
Campaign row record shape

Upstream payloads are loosely typed (Meta returns numbers as strings,
Google returns micros already converted by the connector). Every row is
coerced into a CampaignRow at the connector boundary, before aggregation.
"""
import math
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_INT_FIELDS = (
    "impressions", "clicks", "click_to_call", "email_contacts",
    "booking_step_1", "booking_step_2", "booking_step_3",
)
_FLOAT_FIELDS = ("spend", "conversions", "reservations", "reservation_value")


def _to_number(value: Any) -> float:
    """Coerce a loosely typed upstream value. Blank or missing is 0."""
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = value.strip().replace(",", "").replace(" ", "")
        if cleaned == "":
            return 0.0
        return float(cleaned)
    raise ValueError(f"not a number: {value!r}")


class CampaignRow(BaseModel):
    """One campaign's metrics for the requested date range"""
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    campaign_id: str = Field(..., min_length=1)
    campaign_name: str = ""
    status: Optional[str] = None  # ACTIVE, PAUSED, ...

    # Delivery
    spend: float = 0.0
    impressions: int = 0
    clicks: int = 0
    conversions: float = 0.0

    # Conversion funnel
    click_to_call: int = 0
    email_contacts: int = 0
    booking_step_1: int = 0
    booking_step_2: int = 0
    booking_step_3: int = 0
    reservations: float = 0.0
    reservation_value: float = 0.0

    @field_validator("campaign_id", mode="before")
    @classmethod
    def _stringify_id(cls, value):
        return str(value) if value is not None else value

    @field_validator(*_FLOAT_FIELDS, mode="before")
    @classmethod
    def _coerce_float(cls, value):
        number = _to_number(value)
        if not math.isfinite(number):
            raise ValueError(f"non-finite value: {value!r}")
        return number

    @field_validator(*_INT_FIELDS, mode="before")
    @classmethod
    def _coerce_int(cls, value):
        number = _to_number(value)
        if not math.isfinite(number):
            raise ValueError(f"non-finite value: {value!r}")
        return int(round(number))

    @property
    def is_active(self) -> bool:
        return (self.status or "").upper() == "ACTIVE"
