"""
Error taxonomy for the cache and lifecycle engine.

Upstream errors carry the classification the retry executor acts on:
transient failures are retried with backoff, terminal ones are surfaced
immediately. Persistence and validation errors mark a single unit
(one client/period) as failed without aborting the surrounding batch.
"""
from typing import List, Optional


class LifecycleError(Exception):
    """Base class for errors raised by this package."""


class UpstreamError(LifecycleError):
    """Failure reported by an upstream ad platform."""

    def __init__(self, message: str, status_code: Optional[int] = None, platform: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.platform = platform


class TransientUpstreamError(UpstreamError):
    """Network fault, 5xx or rate limit. Safe to retry."""


class TerminalUpstreamError(UpstreamError):
    """Invalid credentials or no data for the range. Never retried."""


class PersistenceError(LifecycleError):
    """Cache or permanent store read/write failure."""


class MetricsValidationError(LifecycleError):
    """Aggregated metrics failed sanity checks and must not be stored."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or []


class AccountResolutionError(LifecycleError):
    """Client unknown or inactive, or no account/connector for the platform."""
