"""Tests for the retry state machine."""

import pytest

from whoopterm.errors import ApiError, RateLimitedError, RequestTimeoutError
from whoopterm.services.retry import (
    RETRY_ATTEMPTING,
    RETRY_BACKOFF,
    RETRY_EXHAUSTED,
    RETRY_SUCCEEDED,
    RetryExhaustedError,
    RetryPolicy,
    RetryRun,
)


class Flaky:
    def __init__(self, failures, error=None):
        self.failures = failures
        self.error = error or RequestTimeoutError("timed out")
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


@pytest.fixture
def policy():
    return RetryPolicy(max_attempts=3, base_delay=1, max_delay=30, jitter=False)


def test_backoff_is_exponential_and_capped():
    policy = RetryPolicy(max_attempts=10, base_delay=1, max_delay=5, jitter=False)
    assert [policy.delay(n) for n in (1, 2, 3, 4)] == [1, 2, 4, 5]


def test_jitter_stays_in_range():
    policy = RetryPolicy(base_delay=2, max_delay=30, jitter=True)
    for _ in range(50):
        assert 1.0 <= policy.delay(1) <= 3.0


def test_retry_after_is_honoured(policy):
    error = RateLimitedError("slow down", retry_after=12)
    assert policy.delay(1, error) == 12


def test_state_transitions(policy):
    sleeps = []
    run = RetryRun(Flaky(1), policy, sleep=sleeps.append)

    assert run.state == RETRY_ATTEMPTING
    assert run.step() == RETRY_BACKOFF
    assert run.step() == RETRY_ATTEMPTING
    assert run.attempt == 2
    assert run.step() == RETRY_SUCCEEDED
    assert run.done
    assert sleeps == [1]


def test_succeeds_after_transient_failures(policy):
    sleeps = []
    operation = Flaky(2)

    assert RetryRun(operation, policy, sleep=sleeps.append).run() == "ok"
    assert operation.calls == 3
    assert sleeps == [1, 2]


def test_exhausted_after_max_attempts(policy):
    operation = Flaky(10)
    run = RetryRun(operation, policy, sleep=lambda s: None)

    with pytest.raises(RetryExhaustedError) as exc_info:
        run.run()

    assert str(exc_info.value) == "max retries exceeded"
    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value.last_error, RequestTimeoutError)
    assert operation.calls == 3
    assert run.state == RETRY_EXHAUSTED


def test_non_transient_error_is_not_retried(policy):
    operation = Flaky(1, error=ApiError("/v2/recovery", "bad request", status=400))

    with pytest.raises(ApiError):
        RetryRun(operation, policy, sleep=lambda s: None).run()
    assert operation.calls == 1


def test_abort_stops_before_next_attempt(policy):
    operation = Flaky(10)
    run = RetryRun(operation, policy, sleep=lambda s: None, should_abort=lambda: True)

    with pytest.raises(RetryExhaustedError):
        run.run()
    assert operation.calls == 1
