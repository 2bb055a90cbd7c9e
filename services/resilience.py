"""Resilience and pacing primitives for outbound generation and visibility calls."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TypeVar

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

T = TypeVar("T")

# Only network-shaped failures are worth another attempt.  Programming errors
# such as ValueError / KeyError fail on the first attempt.
_RETRYABLE_EXCEPTIONS = (
    OSError,
    ConnectionError,
    TimeoutError,
)


class ExternalServiceError(RuntimeError):
    """Raised when an outbound call fails, times out, or is refused."""


class CircuitBreakerOpenError(ExternalServiceError):
    """Raised when a circuit breaker rejects a call while open."""


class CircuitBreakerState(StrEnum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CallPacer:
    """Enforce a minimum gap between consecutive outbound calls.

    One pacer instance is shared by every outbound client in the process, so
    the delay applies across the whole sweep rather than per tenant.
    """

    min_interval_seconds: float
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], None] = time.sleep
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _last_call_at: float | None = field(default=None, init=False, repr=False)

    def wait(self) -> float:
        """Block until the next call is allowed; return seconds slept."""
        with self._lock:
            slept = 0.0
            if self._last_call_at is not None and self.min_interval_seconds > 0:
                elapsed = self.clock() - self._last_call_at
                remaining = self.min_interval_seconds - elapsed
                if remaining > 0:
                    self.sleep(remaining)
                    slept = remaining
            self._last_call_at = self.clock()
            return slept


@dataclass
class CircuitBreaker:
    """Thread-safe breaker that stops hammering a failing provider."""

    name: str
    failure_threshold: int = 5
    recovery_timeout_seconds: float = 60.0

    def __post_init__(self) -> None:
        self._lock = threading.Lock()
        self._state: CircuitBreakerState = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0

    def before_call(self) -> None:
        """Reject the call while open; allow one probe after the recovery timeout."""
        now = time.monotonic()
        with self._lock:
            if self._state != CircuitBreakerState.OPEN:
                return
            if now - self._opened_at < self.recovery_timeout_seconds:
                raise CircuitBreakerOpenError(f"Circuit breaker {self.name} is open; retry later")
            self._state = CircuitBreakerState.HALF_OPEN

    def record_success(self) -> None:
        with self._lock:
            self._failure_count = 0
            self._state = CircuitBreakerState.CLOSED
            self._opened_at = 0.0

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            if (
                self._state == CircuitBreakerState.HALF_OPEN
                or self._failure_count >= self.failure_threshold
            ):
                self._state = CircuitBreakerState.OPEN
                self._opened_at = time.monotonic()

    @property
    def state(self) -> CircuitBreakerState:
        with self._lock:
            return self._state


class ResiliencePolicy:
    """Pacing, bounded attempts, and circuit breaking for one outbound call site."""

    def __init__(
        self,
        *,
        name: str,
        max_attempts: int = 1,
        pacer: CallPacer | None = None,
        failure_threshold: int = 5,
        recovery_timeout_seconds: float = 60.0,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        self.name = name
        self.max_attempts = max_attempts
        self.pacer = pacer
        self.breaker = CircuitBreaker(
            name=name,
            failure_threshold=failure_threshold,
            recovery_timeout_seconds=recovery_timeout_seconds,
        )

    def execute(self, operation: Callable[[], T]) -> T:
        """Run operation under the policy; every failure surfaces as ExternalServiceError."""
        self.breaker.before_call()

        def _paced() -> T:
            if self.pacer is not None:
                self.pacer.wait()
            return operation()

        retryer = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential_jitter(initial=0.25, max=8.0),
            retry=retry_if_exception_type(_RETRYABLE_EXCEPTIONS),
            reraise=True,
        )

        try:
            result = retryer(_paced)
        except Exception as exc:
            self.breaker.record_failure()
            raise ExternalServiceError(
                f"{self.name} failed after {self.max_attempts} attempt(s): {_root_cause(exc)}"
            ) from exc

        self.breaker.record_success()
        return result


def _root_cause(exc: BaseException) -> str:
    """Walk the exception chain to the innermost non-empty message."""
    current: BaseException | None = exc
    last_msg = str(exc)
    seen: set[int] = set()
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        msg = str(current).strip()
        if msg:
            last_msg = msg
        current = current.__cause__ or current.__context__
    return last_msg
