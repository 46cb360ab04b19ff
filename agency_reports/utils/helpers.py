"""
Helper utilities
"""
from datetime import datetime, timezone
from typing import Dict, List


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Safely divide two numbers"""
    try:
        return numerator / denominator if denominator != 0 else default
    except (TypeError, ZeroDivisionError):
        return default


def chunk_list(lst: List, chunk_size: int) -> List[List]:
    """Split list into chunks"""
    chunk_size = max(chunk_size, 1)
    return [lst[i:i + chunk_size] for i in range(0, len(lst), chunk_size)]


def to_utc_naive(value: datetime) -> datetime:
    """Normalize a datetime to naive UTC, the storage convention."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def metric(metrics: Dict, name: str) -> float:
    """Read a numeric metric from a stored JSON payload, 0 if missing."""
    try:
        return float((metrics or {}).get(name) or 0)
    except (TypeError, ValueError):
        return 0.0
