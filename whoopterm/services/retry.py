"""Retry with exponential backoff, modelled as a small state machine.

    attempting(n) -> succeeded
                  -> backoff(n) -> attempting(n + 1) -> ... -> exhausted

Only NetworkError is retried; any other exception propagates from the
attempt that raised it.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from whoopterm.config import Config
from whoopterm.errors import NetworkError, RateLimitedError

logger = logging.getLogger(__name__)

# Retry states
RETRY_ATTEMPTING = "attempting"
RETRY_BACKOFF = "backoff"
RETRY_SUCCEEDED = "succeeded"
RETRY_EXHAUSTED = "exhausted"

EXHAUSTED_REASON = "max retries exceeded"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = Config.MAX_RETRY_COUNT
    base_delay: float = Config.RETRY_DELAY_BASE
    max_delay: float = Config.RETRY_DELAY_MAX
    jitter: bool = True

    def delay(self, attempt: int, error: Optional[BaseException] = None) -> float:
        """Delay before attempt ``attempt + 1``."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay = delay * (0.5 + random.random())
        if isinstance(error, RateLimitedError) and error.retry_after is not None:
            delay = max(delay, min(error.retry_after, self.max_delay))
        return delay


class RetryExhaustedError(NetworkError):
    """Every attempt failed with a transient error."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(EXHAUSTED_REASON)
        self.attempts = attempts
        self.last_error = last_error


class RetryRun:
    """One execution of ``operation`` under ``policy``; advance with ``step()``."""

    def __init__(
        self,
        operation: Callable[[], Any],
        policy: RetryPolicy,
        sleep: Callable[[float], None] = time.sleep,
        label: str = "operation",
        should_abort: Optional[Callable[[], bool]] = None,
    ):
        self.operation = operation
        self.policy = policy
        self.sleep = sleep
        self.label = label
        self.should_abort = should_abort
        self.state = RETRY_ATTEMPTING
        self.attempt = 1
        self.result: Any = None
        self.last_error: Optional[BaseException] = None

    @property
    def done(self) -> bool:
        return self.state in (RETRY_SUCCEEDED, RETRY_EXHAUSTED)

    def step(self) -> str:
        if self.state == RETRY_ATTEMPTING:
            try:
                self.result = self.operation()
            except NetworkError as e:
                self.last_error = e
                if self.attempt >= self.policy.max_attempts:
                    logger.error(f"{self.label} failed after {self.attempt} attempts: {e}")
                    self.state = RETRY_EXHAUSTED
                else:
                    self.state = RETRY_BACKOFF
            else:
                self.state = RETRY_SUCCEEDED

        elif self.state == RETRY_BACKOFF:
            if self.should_abort and self.should_abort():
                self.state = RETRY_EXHAUSTED
                return self.state
            delay = self.policy.delay(self.attempt, self.last_error)
            logger.warning(
                f"{self.label} failed (attempt {self.attempt}/{self.policy.max_attempts}): "
                f"{self.last_error}. Retrying in {delay:.1f}s"
            )
            self.sleep(delay)
            self.attempt += 1
            self.state = RETRY_ATTEMPTING

        return self.state

    def run(self) -> Any:
        """Drive the machine to completion; raises RetryExhaustedError when out of attempts."""
        while not self.done:
            self.step()
        if self.state == RETRY_EXHAUSTED:
            raise RetryExhaustedError(self.attempt, self.last_error)
        return self.result
