"""
Retry utilities with exponential backoff for upstream ad platform calls.

The executor never raises: every call returns a RetryResult so batch
loops can move on to the next client or period after a failure.
"""
import asyncio
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Type

from agency_reports.config import get_settings
from agency_reports.exceptions import TerminalUpstreamError, TransientUpstreamError
from agency_reports.utils.logger import log

TRANSIENT = "transient"
TERMINAL = "terminal"

# Default retryable exceptions (network/API errors)
DEFAULT_RETRYABLE_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    TransientUpstreamError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)

RETRYABLE_STATUS_CODES: Tuple[int, ...] = (429, 500, 502, 503, 504)

# Messages that mean retrying cannot help
_TERMINAL_MARKERS = (
    "invalid credentials",
    "invalid oauth",
    "access token",
    "permission denied",
    "unauthorized",
    "no data",
)


@dataclass
class RetryPolicy:
    """Bounds for a single retried operation."""
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: bool = True

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    @classmethod
    def from_settings(cls, settings=None) -> "RetryPolicy":
        settings = settings or get_settings()
        return cls(
            max_retries=settings.retry_max_retries,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
            jitter=settings.retry_jitter,
        )


@dataclass
class RefreshAttempt:
    """One attempt at an upstream call. Never persisted."""
    attempt_number: int
    outcome: str  # success, retry, failed
    error_class: Optional[str] = None
    error: Optional[str] = None
    delay_seconds: float = 0.0


@dataclass
class RetryResult:
    """Outcome of an operation run through the executor."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    error_class: Optional[str] = None
    exception: Optional[BaseException] = None
    attempts: int = 0
    total_time: float = 0.0
    history: List[RefreshAttempt] = field(default_factory=list)

    @property
    def total_delay_seconds(self) -> float:
        return sum(a.delay_seconds for a in self.history)

    def to_dict(self) -> dict:
        """Convert to dictionary for logging/storage."""
        return {
            "success": self.success,
            "attempts": self.attempts,
            "total_time": round(self.total_time, 2),
            "total_delay_seconds": round(self.total_delay_seconds, 2),
            "error": self.error,
            "error_class": self.error_class,
            "errors": [a.error for a in self.history if a.error][:5]  # Cap at 5 errors
        }


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True
) -> float:
    """
    Calculate delay for exponential backoff.

    Args:
        attempt: Current attempt number (1-indexed)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap
        exponential_base: Base for exponential calculation
        jitter: Add randomness to prevent thundering herd

    Returns:
        Delay in seconds
    """
    # Exponential backoff: base_delay * (exponential_base ^ (attempt - 1))
    delay = base_delay * (exponential_base ** (attempt - 1))

    # Cap at max_delay
    delay = min(delay, max_delay)

    # Add jitter (0-25% of delay)
    if jitter:
        jitter_amount = delay * random.uniform(0, 0.25)
        delay += jitter_amount

    return delay


def classify_error(
    error: BaseException,
    retryable_exceptions: Tuple[Type[Exception], ...] = DEFAULT_RETRYABLE_EXCEPTIONS,
    retryable_status_codes: Tuple[int, ...] = RETRYABLE_STATUS_CODES
) -> str:
    """
    Classify an error as TRANSIENT (retry) or TERMINAL (fail now).

    Typed upstream errors win. Anything else is classified from its
    status code or message, and defaults to terminal.
    """
    if isinstance(error, TerminalUpstreamError):
        return TERMINAL

    if isinstance(error, retryable_exceptions):
        return TRANSIENT

    status_code = getattr(error, "status_code", None)
    if status_code:
        return TRANSIENT if status_code in retryable_status_codes else TERMINAL

    error_str = str(error).lower()

    if any(marker in error_str for marker in _TERMINAL_MARKERS):
        return TERMINAL

    # Check for rate limiting
    if "rate limit" in error_str or "too many requests" in error_str:
        return TRANSIENT

    # Check for common HTTP status codes in error messages
    for code in retryable_status_codes:
        if str(code) in error_str:
            return TRANSIENT

    # Check for timeout-related errors
    if "timeout" in error_str or "timed out" in error_str:
        return TRANSIENT

    # Check for connection-related errors
    if "connection" in error_str and ("refused" in error_str or "reset" in error_str or "failed" in error_str):
        return TRANSIENT

    return TERMINAL


def is_retryable_error(error: BaseException) -> bool:
    """Check if an error is retryable."""
    return classify_error(error) == TRANSIENT


class RetryExecutor:
    """
    Runs async upstream calls with classified, bounded retries.

    Usage:
        executor = RetryExecutor(RetryPolicy(max_retries=3))
        result = await executor.execute(connector.fetch_campaign_insights, ref, start, end)
        if result.success:
            rows = result.data
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.policy = policy or RetryPolicy.from_settings()
        self._sleep = sleep

    async def execute(self, operation: Callable, *args, **kwargs) -> RetryResult:
        """Execute an operation with retry logic."""
        name = getattr(operation, "__name__", "operation")
        result = RetryResult(success=False)
        started = time.monotonic()

        for attempt in range(1, self.policy.max_attempts + 1):
            result.attempts = attempt
            try:
                data = operation(*args, **kwargs)
                if asyncio.iscoroutine(data):
                    data = await data
            except Exception as e:
                error_class = classify_error(e)
                error_str = f"{type(e).__name__}: {e}"

                if error_class == TERMINAL or attempt >= self.policy.max_attempts:
                    result.history.append(RefreshAttempt(attempt, "failed", error_class, error_str))
                    result.error = str(e)
                    result.error_class = error_class
                    result.exception = e
                    log.error(f"{name} failed after {attempt} attempt(s) ({error_class}): {e}")
                    break

                delay = calculate_backoff(
                    attempt,
                    base_delay=self.policy.base_delay,
                    max_delay=self.policy.max_delay,
                    jitter=self.policy.jitter
                )
                result.history.append(RefreshAttempt(attempt, "retry", error_class, error_str, delay))

                log.warning(
                    f"{name} attempt {attempt} failed: {e}. "
                    f"Retrying in {delay:.1f}s..."
                )

                await self._sleep(delay)
                continue

            result.history.append(RefreshAttempt(attempt, "success"))
            result.success = True
            result.data = data

            # Log if we recovered from errors
            if attempt > 1:
                log.info(
                    f"{name} succeeded on attempt {attempt} "
                    f"after {result.total_delay_seconds:.1f}s total delay"
                )
            break

        result.total_time = time.monotonic() - started
        return result

