"""Retry and circuit breaking for ClickUp calls."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import ParamSpec, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

# Failures that never reached ClickUp's application layer
TRANSIENT_ERRORS = (
    asyncio.TimeoutError,
    ConnectionError,
    httpx.TransportError,
)


def is_retryable(error: BaseException) -> bool:
    """Transport failures, plus API errors that flag themselves retryable (429, 5xx)."""
    if isinstance(error, TRANSIENT_ERRORS):
        return True
    return bool(getattr(error, "retryable", False))


class RateLimitAwareWait:
    """Exponential backoff that defers to the server when it says how long to wait.

    ClickUp answers 429 with a reset time; errors carrying ``retry_after``
    sleep that long (capped at ``max_wait``) instead of the backoff.
    """

    def __init__(self, min_wait: float, max_wait: float):
        self.max_wait = max_wait
        self._backoff = wait_exponential(multiplier=1, min=min_wait, max=max_wait)

    def __call__(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        retry_after = getattr(error, "retry_after", None)
        if retry_after is not None:
            return min(max(retry_after, 0.0), self.max_wait)
        return self._backoff(retry_state)


async def with_retry(
    func: Callable[P, Awaitable[T]],
    *args: P.args,
    max_attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 10.0,
    **kwargs: P.kwargs,
) -> T:  # type: ignore[return-value]
    """Call ``func`` until it succeeds, a non-retryable error is raised, or attempts run out.

    Args:
        func: Async function to execute
        max_attempts: Maximum attempts, including the first
        min_wait: Shortest backoff between attempts (seconds)
        max_wait: Longest backoff, and cap for server-requested waits

    Raises:
        The last exception once attempts are exhausted
    """
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=RateLimitAwareWait(min_wait, max_wait),
        retry=retry_if_exception(is_retryable),
        before_sleep=_log_retry,
        reraise=True,
    ):
        with attempt:
            return await func(*args, **kwargs)


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(f"Attempt {retry_state.attempt_number} failed ({error}), retrying in {wait:.1f}s")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """ClickUp has been failing; calls are refused until the recovery window passes."""

    pass


class CircuitBreaker:
    """Stops hammering ClickUp while it is down.

    Opens after ``failure_threshold`` consecutive retryable failures and
    refuses calls for ``recovery_timeout`` seconds. After that it lets
    calls through half-open; ``half_open_max_calls`` successes close it,
    any retryable failure reopens it. Client errors such as 404 are the
    caller's problem and leave the breaker alone.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        half_open_max_calls: int = 3,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls
        self.reset()

    def reset(self) -> None:
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.half_open_calls = 0
        self.opened_at = 0.0

    def _admit(self) -> None:
        if self.state is not CircuitState.OPEN:
            return
        if time.monotonic() - self.opened_at < self.recovery_timeout:
            raise CircuitOpenError(f"Circuit '{self.name}' is open")
        logger.info(f"Circuit '{self.name}' half-open, probing")
        self.state = CircuitState.HALF_OPEN
        self.half_open_calls = 0

    def _record_success(self) -> None:
        if self.state is CircuitState.HALF_OPEN:
            self.half_open_calls += 1
            if self.half_open_calls < self.half_open_max_calls:
                return
            logger.info(f"Circuit '{self.name}' closed again")
            self.state = CircuitState.CLOSED
        self.failure_count = 0

    def _record_failure(self, error: BaseException) -> None:
        self.failure_count += 1
        if self.state is CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            logger.warning(f"Circuit '{self.name}' opened after {self.failure_count} failures: {error}")
            self.state = CircuitState.OPEN
            self.opened_at = time.monotonic()

    async def call(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        self._admit()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            if is_retryable(e):
                self._record_failure(e)
            raise
        self._record_success()
        return result


_circuit_breakers: dict[str, CircuitBreaker] = {}


def get_circuit_breaker(name: str) -> CircuitBreaker:
    """Process-wide breaker shared by every client for ``name``."""
    if name not in _circuit_breakers:
        _circuit_breakers[name] = CircuitBreaker(name)
    return _circuit_breakers[name]


clickup_circuit = get_circuit_breaker("clickup")
