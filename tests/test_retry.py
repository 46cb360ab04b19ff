"""
Retry executor tests.

Guards against:
1. Retrying terminal failures (bad credentials, no data)
2. Unbounded retries or backoff past the cap
3. Exceptions escaping the executor
"""
import pytest

from agency_reports.exceptions import TerminalUpstreamError, TransientUpstreamError
from agency_reports.utils.retry import (
    TERMINAL,
    TRANSIENT,
    RetryExecutor,
    RetryPolicy,
    calculate_backoff,
    classify_error,
    is_retryable_error,
)

from conftest import SleepRecorder, _run


class Flaky:
    """Fails with the given errors, then returns value."""

    def __init__(self, errors, value="ok"):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


# ---------------------------------------------------------------------------
# Backoff
# ---------------------------------------------------------------------------

def test_backoff_doubles_without_jitter():
    delays = [calculate_backoff(n, base_delay=1.0, max_delay=60.0, jitter=False) for n in (1, 2, 3, 4)]
    assert delays == [1.0, 2.0, 4.0, 8.0]


def test_backoff_capped():
    assert calculate_backoff(10, base_delay=1.0, max_delay=60.0, jitter=False) == 60.0


def test_backoff_jitter_within_quarter():
    for _ in range(50):
        delay = calculate_backoff(3, base_delay=1.0, max_delay=60.0, jitter=True)
        assert 4.0 <= delay <= 5.0


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("error,expected", [
    (TransientUpstreamError("boom", status_code=503), TRANSIENT),
    (TerminalUpstreamError("Invalid OAuth access token"), TERMINAL),
    (ConnectionError("connection reset by peer"), TRANSIENT),
    (TimeoutError(), TRANSIENT),
    (Exception("Rate limit reached"), TRANSIENT),
    (Exception("HTTP 502 Bad Gateway"), TRANSIENT),
    (Exception("Request timed out"), TRANSIENT),
    (Exception("No data available for this range"), TERMINAL),
    (Exception("something odd"), TERMINAL),
    (ValueError("bad input"), TERMINAL),
])
def test_classify_error(error, expected):
    assert classify_error(error) == expected


def test_status_code_attribute_wins_over_message():
    error = TransientUpstreamError("quota", status_code=429)
    assert classify_error(error) == TRANSIENT
    error = Exception("forbidden")
    error.status_code = 403
    assert classify_error(error) == TERMINAL


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

def test_transient_then_success():
    sleep = SleepRecorder()
    op = Flaky([TransientUpstreamError("503"), TransientUpstreamError("503")])
    executor = RetryExecutor(RetryPolicy(max_retries=3, base_delay=1.0, jitter=False), sleep=sleep)

    result = _run(executor.execute(op))

    assert result.success
    assert result.data == "ok"
    assert result.attempts == 3
    assert sleep.delays == [1.0, 2.0]
    assert [a.outcome for a in result.history] == ["retry", "retry", "success"]


def test_terminal_error_not_retried():
    sleep = SleepRecorder()
    op = Flaky([TerminalUpstreamError("Invalid credentials", status_code=401)])
    executor = RetryExecutor(RetryPolicy(max_retries=3, jitter=False), sleep=sleep)

    result = _run(executor.execute(op))

    assert not result.success
    assert result.attempts == 1
    assert result.error_class == TERMINAL
    assert op.calls == 1
    assert sleep.delays == []


def test_retries_exhausted_returns_failure():
    sleep = SleepRecorder()
    op = Flaky([TransientUpstreamError("503")] * 10)
    executor = RetryExecutor(RetryPolicy(max_retries=2, base_delay=1.0, jitter=False), sleep=sleep)

    result = _run(executor.execute(op))

    assert not result.success
    assert op.calls == 3
    assert result.error_class == TRANSIENT
    assert isinstance(result.exception, TransientUpstreamError)
    assert len(sleep.delays) == 2


def test_sync_callables_supported():
    executor = RetryExecutor(RetryPolicy(max_retries=0), sleep=SleepRecorder())
    result = _run(executor.execute(lambda x: x * 2, 21))
    assert result.success and result.data == 42


def test_policy_from_settings(settings):
    policy = RetryPolicy.from_settings(settings)
    assert policy.max_retries == 3
    assert policy.max_attempts == 4
    assert policy.jitter is False


def test_is_retryable_error():
    assert is_retryable_error(TransientUpstreamError("503", status_code=503))
    assert not is_retryable_error(TerminalUpstreamError("Invalid credentials", status_code=401))
