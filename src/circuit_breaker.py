"""
Circuit Breaker - Fail fast when the language model is down.

Every reply and every message analysis calls the LLM. When the provider is
degraded, waiting for a timeout on each webhook only delays the deterministic
fallback. The breaker counts consecutive failures and, past a threshold,
rejects calls immediately until a cool-down has elapsed.

States:
    ┌─────────────────────────────────────────────────────────────┐
    │  CLOSED    → (failures >= threshold)  → OPEN                │
    │  OPEN      → (cool-down elapsed)      → HALF_OPEN           │
    │  HALF_OPEN → (probe succeeds)         → CLOSED              │
    │  HALF_OPEN → (probe fails)            → OPEN                │
    └─────────────────────────────────────────────────────────────┘

Also provides `with_backoff`, a small retry decorator used around store
reconnects.

Usage:
    breaker = CircuitBreaker("llm", failure_threshold=5, recovery_timeout=60)
    text = await breaker.call(ai_client.complete, messages)
"""

import asyncio
import logging
import time
from enum import Enum
from functools import wraps
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """Raised instead of calling through while the circuit is open."""


class CircuitBreaker:
    """Consecutive-failure breaker for one external dependency."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        half_open_max_calls: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            name: Label used in logs and status output.
            failure_threshold: Consecutive failures before opening.
            recovery_timeout: Seconds to stay open before probing.
            half_open_max_calls: Probe calls allowed while half-open.
            clock: Monotonic time source, injectable for tests.
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls
        self._clock = clock

        self.state = CircuitState.CLOSED
        self.failures = 0
        self.opened_at: float | None = None
        self._probes = 0

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Await `func(*args, **kwargs)` under breaker protection.

        Raises:
            CircuitOpenError: If the circuit is open.
            Exception: Whatever `func` raised (also counted as a failure).
        """
        if not self.allow_request():
            raise CircuitOpenError(
                f"Circuit '{self.name}' is open, retry in {self.remaining_cooldown():.0f}s"
            )

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            self.record_failure()
            logger.warning(
                f"Circuit '{self.name}': call failed ({self.failures}/{self.failure_threshold}): {e}"
            )
            raise

        self.record_success()
        return result

    def allow_request(self) -> bool:
        if self.state == CircuitState.CLOSED:
            return True

        if self.state == CircuitState.OPEN:
            if self.remaining_cooldown() > 0:
                return False
            self.state = CircuitState.HALF_OPEN
            self._probes = 0
            logger.info(f"Circuit '{self.name}' half-open, probing")

        if self._probes < self.half_open_max_calls:
            self._probes += 1
            return True
        return False

    def remaining_cooldown(self) -> float:
        if self.opened_at is None:
            return 0.0
        return max(0.0, self.recovery_timeout - (self._clock() - self.opened_at))

    def record_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit '{self.name}' recovered, closing")
        self.state = CircuitState.CLOSED
        self.failures = 0
        self.opened_at = None
        self._probes = 0

    def record_failure(self) -> None:
        self.failures += 1
        if self.state == CircuitState.HALF_OPEN or self.failures >= self.failure_threshold:
            if self.state != CircuitState.OPEN:
                logger.error(
                    f"Circuit '{self.name}' open after {self.failures} failures "
                    f"(cool-down {self.recovery_timeout:.0f}s)"
                )
            self.state = CircuitState.OPEN
            self.opened_at = self._clock()

    def reset(self) -> None:
        self.record_success()

    def get_status(self) -> dict:
        return {
            "name": self.name,
            "state": self.state.value,
            "failures": self.failures,
            "failure_threshold": self.failure_threshold,
            "cooldown_seconds": round(self.remaining_cooldown(), 1),
        }


def with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exceptions: tuple = (Exception,),
):
    """
    Retry an async function with exponential backoff.

    Delay before retry n (0-based): min(base_delay * 2**n, max_delay).

    Usage:
        @with_backoff(max_retries=3, base_delay=1, max_delay=10)
        async def reconnect():
            ...
    """
    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_retries:
                        logger.error(f"'{func.__name__}' failed after {max_retries} retries: {e}")
                        raise
                    delay = min(base_delay * (2 ** attempt), max_delay)
                    logger.warning(
                        f"'{func.__name__}' failed (attempt {attempt + 1}/{max_retries + 1}), "
                        f"retrying in {delay:.1f}s: {e}"
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
