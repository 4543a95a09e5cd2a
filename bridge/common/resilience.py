"""
Resilience Primitives

Timeout race, retry with capped exponential backoff and a circuit breaker,
combined by ResilientExecutor around every embedding backend call.

Breaker states:
- closed: calls pass through, consecutive failures are counted
- open: calls fail fast with CircuitOpenError, the backend is not touched
- half_open: the reset window elapsed; exactly one probe call is admitted
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from .errors import (
    BridgeError,
    CircuitOpenError,
    EmbeddingTimeoutError,
    ProviderError,
    ValidationError,
)

logger = logging.getLogger("bridge.common.resilience")

# Per-operation-class deadlines in seconds
TIMEOUTS: Dict[str, float] = {
    "embedding_generation": 45.0,
    "provider_check": 10.0,
    "provider_init": 60.0,
}

DEFAULT_TIMEOUT = 30.0


async def with_timeout(
    awaitable: Awaitable[Any],
    timeout: Optional[float] = None,
    operation: str = "operation",
) -> Any:
    """
    Race an awaitable against a deadline.

    Args:
        awaitable: Coroutine to run
        timeout: Seconds to wait (default: TIMEOUTS[operation] or 30s)
        operation: Operation name for error messages

    Returns:
        The awaitable's result

    Raises:
        EmbeddingTimeoutError: if the deadline passes first (the call is cancelled)
    """
    if timeout is None:
        timeout = TIMEOUTS.get(operation, DEFAULT_TIMEOUT)
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise EmbeddingTimeoutError(operation, timeout) from e


class CircuitState(str, Enum):
    """Circuit breaker states"""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    After ``failure_threshold`` consecutive failures the circuit opens. While
    open, calls raise CircuitOpenError without invoking the wrapped function.
    Once ``reset_timeout`` seconds have passed a single probe is let through:
    success closes the circuit and zeroes the failure count, failure reopens
    it and restarts the window.
    """

    def __init__(
        self,
        name: str = "embedding",
        failure_threshold: int = 5,
        reset_timeout: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    def _acquire(self) -> None:
        """Admit or reject a call according to the current state"""
        if self._state == CircuitState.CLOSED:
            return

        if self._state == CircuitState.OPEN:
            elapsed = self._clock() - self._opened_at
            if elapsed < self.reset_timeout:
                raise CircuitOpenError(self.name, self.reset_timeout - elapsed)
            self._state = CircuitState.HALF_OPEN
            logger.info("Circuit '%s' half-open, admitting probe", self.name)

        # half-open: one probe at a time
        if self._probe_in_flight:
            raise CircuitOpenError(self.name, 0.0)
        self._probe_in_flight = True

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info("Circuit '%s' closed", self.name)
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._probe_in_flight = False

    def record_failure(self) -> None:
        self._failures += 1
        self._probe_in_flight = False
        if self._state == CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
            if self._state != CircuitState.OPEN:
                logger.warning(
                    "Circuit '%s' opened after %d consecutive failures",
                    self.name, self._failures,
                )
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()

    async def call(self, func: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run ``func`` through the breaker.

        ValidationError is neither a success nor a failure: bad input says
        nothing about backend health.
        """
        self._acquire()
        try:
            result = await func()
        except ValidationError:
            self._probe_in_flight = False
            raise
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        """Force the breaker closed"""
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._probe_in_flight = False

    def status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self._state.value,
            "failures": self._failures,
            "failure_threshold": self.failure_threshold,
            "reset_timeout": self.reset_timeout,
        }


@dataclass
class RetryPolicy:
    """Exponential backoff settings"""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt"""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


def is_retryable(error: BaseException) -> bool:
    """Validation problems and an open circuit are never retried"""
    return not isinstance(error, (ValidationError, CircuitOpenError))


class ResilientExecutor:
    """
    Applies timeout, circuit breaker and retry to backend calls.

    Each attempt is raced against the operation deadline and passes through
    the breaker, so timeouts count as breaker failures. Exceptions that are
    not bridge errors are wrapped as ProviderError.
    """

    def __init__(
        self,
        breaker: Optional[CircuitBreaker] = None,
        retry: Optional[RetryPolicy] = None,
        timeouts: Optional[Dict[str, float]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        provider_name: str = "unknown",
    ):
        self.breaker = breaker or CircuitBreaker()
        self.retry = retry or RetryPolicy()
        self.timeouts = dict(TIMEOUTS)
        if timeouts:
            self.timeouts.update(timeouts)
        self._sleep = sleep
        self._provider_name = provider_name

    async def _attempt(self, operation: str, func: Callable[[], Awaitable[Any]]) -> Any:
        timeout = self.timeouts.get(operation, DEFAULT_TIMEOUT)
        try:
            return await with_timeout(func(), timeout, operation)
        except BridgeError:
            raise
        except Exception as e:
            raise ProviderError(f"{operation} failed: {e}", self._provider_name) from e

    async def run(self, operation: str, func: Callable[[], Awaitable[Any]]) -> Any:
        """
        Execute ``func`` with the full resilience stack.

        Args:
            operation: Operation class, selects the deadline
            func: Zero-argument factory returning a fresh coroutine per attempt

        Returns:
            The function result

        Raises:
            ValidationError, CircuitOpenError: immediately, without retry
            ProviderError, EmbeddingTimeoutError: after the last attempt fails,
                or as soon as a failed attempt opens the breaker
        """
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.retry.max_attempts + 1):
            try:
                return await self.breaker.call(lambda: self._attempt(operation, func))
            except CircuitOpenError as e:
                if last_error is not None:
                    raise e from last_error
                raise
            except Exception as e:
                last_error = e
                if not is_retryable(e) or attempt >= self.retry.max_attempts:
                    raise
                if self.breaker.state == CircuitState.OPEN:
                    # retrying would only fail fast; surface the real failure
                    raise
                delay = self.retry.delay_for(attempt)
                logger.warning(
                    "%s attempt %d/%d failed: %s (retrying in %.1fs)",
                    operation, attempt, self.retry.max_attempts, e, delay,
                )
                await self._sleep(delay)

        # max_attempts < 1
        raise ProviderError(f"{operation} was not attempted: {last_error}", self._provider_name)
