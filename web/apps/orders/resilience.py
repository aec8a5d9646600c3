"""Retries with exponential backoff, wrapped by per-dependency circuit breakers.

Two building blocks compose here:

- ``call_with_retry`` retries an operation on transient failures
  (transport errors, timeouts, HTTP 5xx and 429) with exponential
  backoff and up to 30% jitter, capped at ``max_delay``.
- ``CircuitBreaker`` stops calling a dependency after repeated failures
  and admits a single HALF_OPEN trial call once the cooldown has elapsed.

``ResilientInvoker.execute`` runs the retry loop inside one
breaker-guarded call, so a retried sequence that finally fails counts as
a single circuit failure.

Backoff sleeps use ``time.sleep``. Views are served by gunicorn
``gthread`` workers (see ``gunicorn.conf.py``), one thread per request,
so a sleeping retry holds only the request that issued it.
"""

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, TypeVar

import httpx
from django.conf import settings

from .errors import CircuitOpenError, NetworkError, RateLimitedError, ServerError

logger = logging.getLogger("orders.resilience")

T = TypeVar("T")


def default_should_retry(exc: BaseException) -> bool:
    """Retry on connection refused/timeouts, any 5xx and HTTP 429."""
    if isinstance(exc, (NetworkError, ServerError, RateLimitedError)):
        return True
    if isinstance(exc, (ConnectionRefusedError, TimeoutError, httpx.TransportError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code >= 500 or code == 429
    return False


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration.

    Attributes:
        max_retries: Retries after the first attempt (total attempts is
            ``max_retries + 1``).
        base_delay: Seconds to wait before the first retry.
        max_delay: Upper bound for any single wait, in seconds.
        should_retry: Predicate deciding whether an error is transient.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    should_retry: Callable[[BaseException], bool] = default_should_retry

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt + 1`` (``attempt`` is 0-based)."""
        exponential = self.base_delay * (2 ** attempt)
        jitter = random.uniform(0, 0.3 * exponential)
        return min(exponential + jitter, self.max_delay)


def gateway_retry_policy() -> RetryPolicy:
    """Retry policy for payment gateway calls, read from settings."""
    return RetryPolicy(
        max_retries=getattr(settings, "GATEWAY_RETRY_MAX", 3),
        base_delay=getattr(settings, "GATEWAY_RETRY_BASE_DELAY", 1.0),
        max_delay=getattr(settings, "GATEWAY_RETRY_MAX_DELAY", 5.0),
    )


def call_with_retry(operation: Callable[[], T], policy: RetryPolicy, name: str = "-") -> T:
    """Invoke ``operation`` until it succeeds or retrying stops making sense.

    Args:
        operation: Zero-argument callable performing one attempt.
        policy: Retry limits, backoff and retry predicate.
        name: Label used in log records (usually the circuit key).

    Returns:
        The operation's return value.

    Raises:
        Exception: The last error, unchanged, once retries are exhausted
            or the predicate refuses to retry.
    """
    attempt = 0
    while True:
        try:
            return operation()
        except Exception as exc:
            if attempt >= policy.max_retries or not policy.should_retry(exc):
                raise
            delay = policy.delay_for(attempt)
            attempt += 1
            logger.warning(
                "retrying upstream call",
                extra={"dependency": name, "attempt": attempt, "max_retries": policy.max_retries,
                       "delay_s": round(delay, 3), "error": type(exc).__name__},
            )
            time.sleep(delay)


# ---------------- Circuit Breaker ---------------- #

class CircuitBreaker:
    """Circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED → OPEN when consecutive failures reach ``fail_threshold``.
    - OPEN → HALF_OPEN once ``reset_timeout`` seconds have passed since
      the last failure.
    - HALF_OPEN admits exactly one trial call; other callers are refused
      while it is in flight. Success closes the circuit, failure opens
      it again with a fresh timestamp.

    All state is guarded by an internal lock.
    """

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"

    def __init__(self, key: str, fail_threshold: int = 5, reset_timeout: float = 30.0,
                 clock: Callable[[], float] = time.monotonic):
        self.key = key
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._lock = threading.RLock()
        self._failures = 0
        self._state = self.CLOSED
        self._last_failure_at: Optional[float] = None
        self._trial_in_flight = False

    @property
    def state(self) -> str:
        """Current state, applying the time-based OPEN → HALF_OPEN move."""
        with self._lock:
            if self._state == self.OPEN and (self._clock() - (self._last_failure_at or 0.0)) >= self.reset_timeout:
                self._state = self.HALF_OPEN
                self._trial_in_flight = False
            return self._state

    @property
    def failures(self) -> int:
        with self._lock:
            return self._failures

    def before_call(self) -> str:
        """Admit or refuse a call.

        Returns:
            str: The state the call was admitted in.

        Raises:
            CircuitOpenError: When OPEN, or when a HALF_OPEN trial call is
                already in flight.
        """
        with self._lock:
            st = self.state
            if st == self.OPEN:
                raise CircuitOpenError(self.key)
            if st == self.HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitOpenError(self.key, f"circuit half-open for {self.key}, trial call in flight")
                self._trial_in_flight = True
            return st

    def on_success(self) -> None:
        with self._lock:
            if self._state != self.CLOSED:
                logger.info("circuit closed", extra={"circuit": self.key})
            self._failures = 0
            self._state = self.CLOSED
            self._trial_in_flight = False

    def on_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._last_failure_at = self._clock()
            self._trial_in_flight = False
            if self._failures >= self.fail_threshold:
                if self._state != self.OPEN:
                    logger.warning("circuit opened", extra={"circuit": self.key, "failures": self._failures})
                self._state = self.OPEN

    def on_finish(self) -> None:
        """Release a HALF_OPEN trial call that ended without an outcome."""
        with self._lock:
            if self._state == self.HALF_OPEN:
                self._trial_in_flight = False

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "state": self.state,
                "failures": self._failures,
                "last_failure_at": self._last_failure_at,
            }


class CircuitRegistry:
    """Process-wide breakers keyed by dependency, created on first use."""

    def __init__(self, fail_threshold: int = 5, reset_timeout: float = 30.0,
                 clock: Callable[[], float] = time.monotonic):
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(self, key: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                breaker = CircuitBreaker(key, self.fail_threshold, self.reset_timeout, self._clock)
                self._breakers[key] = breaker
            return breaker

    def snapshot(self) -> Dict[str, dict]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {b.key: b.snapshot() for b in breakers}

    def reset(self) -> None:
        with self._lock:
            self._breakers.clear()


_registry: Optional[CircuitRegistry] = None
_registry_lock = threading.Lock()


def get_registry() -> CircuitRegistry:
    """Return the process-wide registry, configured from settings."""
    global _registry
    with _registry_lock:
        if _registry is None:
            _registry = CircuitRegistry(
                getattr(settings, "CIRCUIT_FAIL_THRESHOLD", 5),
                getattr(settings, "CIRCUIT_RESET_TIMEOUT", 30.0),
            )
        return _registry


class ResilientInvoker:
    """Runs operations with retries inside a per-dependency circuit breaker."""

    def __init__(self, registry: Optional[CircuitRegistry] = None, policy: Optional[RetryPolicy] = None):
        self._registry = registry
        self.policy = policy or RetryPolicy()

    @property
    def registry(self) -> CircuitRegistry:
        return self._registry or get_registry()

    def execute(self, operation: Callable[[], T], policy: Optional[RetryPolicy] = None,
                circuit_key: Optional[str] = None) -> T:
        """Execute ``operation`` under retry and, when keyed, circuit protection.

        Args:
            operation: Zero-argument callable performing one attempt.
            policy: Retry policy; defaults to the invoker's policy.
            circuit_key: Dependency identifier (e.g. ``"gateway-card"``).
                Without a key only the retry loop applies.

        Returns:
            The operation's return value.

        Raises:
            CircuitOpenError: If the dependency's circuit refuses the call;
                the operation is not invoked.
            Exception: The operation's last error after retries.
        """
        policy = policy or self.policy
        if circuit_key is None:
            return call_with_retry(operation, policy)

        breaker = self.registry.get(circuit_key)
        breaker.before_call()
        try:
            result = call_with_retry(operation, policy, name=circuit_key)
        except Exception:
            breaker.on_failure()
            raise
        else:
            breaker.on_success()
            return result
        finally:
            breaker.on_finish()
