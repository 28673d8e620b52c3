"""Retry with exponential backoff, plus a per-key circuit breaker.

with_retry:
    Runs an async operation under a RetryPolicy using tenacity. Failures the
    policy does not recognise as retryable propagate on the first attempt;
    retryable ones are retried until max_attempts, then the last one is
    re-raised.

CircuitBreaker:
    Counts consecutive failures for one key. At the threshold it opens and
    rejects calls with CircuitOpenError until the cool-down elapses, then
    lets a single trial call through to decide whether to close again.

Example:
    >>> policy = RetryPolicy(max_attempts=3, initial_delay=2, max_delay=15)
    >>> breaker = breakers.get("lemonde")
    >>> text = await breaker.call(lambda: with_retry(lambda: get(url), policy))
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from errors import CircuitOpenError, MalformedFeedError, TransientFetchError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_PATTERNS = (
    "timeout",
    "econnreset",
    "econnrefused",
    "etimedout",
    "socket hang up",
    "network",
    "rate_limit",
    "rate limit",
    "429",
    "502",
    "503",
    "overloaded",
    "temporarily unavailable",
)


@dataclass(frozen=True)
class RetryPolicy:
    """How many times and how fast to retry, and what is worth retrying.

    Attributes:
        max_attempts: Total calls including the first one
        initial_delay: Seconds before the first retry
        max_delay: Upper bound for any single delay
        multiplier: Growth factor between consecutive delays
        retry_on: Exception types that are always retryable
        never_retry: Exception types that are never retryable
        patterns: Case-insensitive substrings of "<ExcType> <message>" that
            mark other exceptions as retryable
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    retry_on: tuple[type[BaseException], ...] = (TransientFetchError,)
    never_retry: tuple[type[BaseException], ...] = (MalformedFeedError, CircuitOpenError)
    patterns: tuple[str, ...] = DEFAULT_RETRYABLE_PATTERNS

    def is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, self.never_retry):
            return False
        if isinstance(exc, self.retry_on):
            return True
        text = f"{type(exc).__name__} {exc}".lower()
        return any(p in text for p in self.patterns)

    def delay_for(self, attempt: int) -> float:
        """Backoff before retrying after the given (1-based) failed attempt."""
        return min(self.initial_delay * self.multiplier ** (attempt - 1), self.max_delay)


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        "Retrying operation | attempt=%d delay=%.1fs error=%s: %s",
        retry_state.attempt_number,
        delay,
        type(exc).__name__,
        exc,
    )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run operation, retrying retryable failures with exponential backoff.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        policy: Retry policy (defaults to RetryPolicy())
        sleep: Sleep function used between attempts

    Returns:
        The first successful result

    Raises:
        The first non-retryable exception, or the last retryable one once
        max_attempts calls have failed.
    """
    policy = policy or RetryPolicy()
    retrying = AsyncRetrying(
        sleep=sleep,
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.initial_delay,
            exp_base=policy.multiplier,
            max=policy.max_delay,
        ),
        retry=retry_if_exception(policy.is_retryable),
        before_sleep=_log_retry,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            result = await operation()
    return result


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass
class CircuitBreaker:
    """Consecutive-failure circuit breaker for one key.

    While half-open only one trial call is in flight; concurrent callers
    keep failing fast until it resolves.
    """

    key: str
    threshold: int = 5
    reset_timeout: float = 60.0
    clock: Callable[[], float] = time.monotonic
    failures: int = field(default=0, init=False)
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _opened_at: float = field(default=0.0, init=False)
    _trial_in_flight: bool = field(default=False, init=False)

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self.clock() - self._opened_at >= self.reset_timeout:
            return CircuitState.HALF_OPEN
        return self._state

    def before_call(self) -> None:
        """Reserve a call slot or raise CircuitOpenError."""
        if self._state == CircuitState.OPEN:
            remaining = self.reset_timeout - (self.clock() - self._opened_at)
            if remaining > 0:
                raise CircuitOpenError(self.key, remaining)
            self._state = CircuitState.HALF_OPEN
            self._trial_in_flight = False
            logger.info("Circuit half-open | key=%s", self.key)
        if self._state == CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                raise CircuitOpenError(self.key, 0)
            self._trial_in_flight = True

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info("Circuit closed | key=%s", self.key)
        self.failures = 0
        self._state = CircuitState.CLOSED
        self._trial_in_flight = False

    def record_failure(self) -> None:
        self.failures += 1
        self._trial_in_flight = False
        if self._state == CircuitState.HALF_OPEN or self.failures >= self.threshold:
            if self._state != CircuitState.OPEN:
                logger.warning(
                    "Circuit opened | key=%s failures=%d cooldown=%.0fs",
                    self.key, self.failures, self.reset_timeout,
                )
            self._state = CircuitState.OPEN
            self._opened_at = self.clock()

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run operation through the breaker."""
        self.before_call()
        try:
            result = await operation()
        except asyncio.CancelledError:
            self._trial_in_flight = False
            raise
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result


class CircuitBreakerRegistry:
    """Per-key circuit breakers sharing one configuration."""

    def __init__(
        self,
        threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.threshold = threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, key: str) -> CircuitBreaker:
        breaker = self._breakers.get(key)
        if breaker is None:
            breaker = CircuitBreaker(key, self.threshold, self.reset_timeout, self._clock)
            self._breakers[key] = breaker
        return breaker

    def open_circuits(self) -> dict[str, str]:
        """Keys whose circuit is not closed, mapped to their state."""
        return {
            key: breaker.state.value
            for key, breaker in self._breakers.items()
            if breaker.state != CircuitState.CLOSED
        }
