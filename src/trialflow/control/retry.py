"""Bounded exponential backoff for experiment server calls.

Delays start at ``initial_delay`` and are multiplied by ``exponential_base``
after every failed attempt, never exceeding ``max_delay``. Errors listed in
``fail_fast_errors`` are raised immediately without further attempts.
"""

import asyncio
import logging
import random
import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Type

from ..exceptions import NonRetryableRequestError, RetryExhaustedError

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    initial_delay: float = 1.0  # seconds
    max_delay: float = 10.0  # seconds
    exponential_base: float = 2.0
    jitter: bool = False

    # Errors that are never retried
    fail_fast_errors: list[Type[Exception]] = field(
        default_factory=lambda: [NonRetryableRequestError]
    )

    # When non-empty, only these errors are retried
    retryable_errors: list[Type[Exception]] = field(default_factory=list)

    def with_attempts(self, max_attempts: int) -> "RetryConfig":
        """Copy of this config with a different attempt budget."""
        return RetryConfig(
            max_attempts=max_attempts,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            exponential_base=self.exponential_base,
            jitter=self.jitter,
            fail_fast_errors=list(self.fail_fast_errors),
            retryable_errors=list(self.retryable_errors),
        )


# Attempt budgets for checkpoint saves and loads
SAVE_RETRY = RetryConfig(max_attempts=3)
LOAD_RETRY = RetryConfig(max_attempts=2)


class RetryStrategy:
    """Runs an async operation with retries.

    Example:
        strategy = RetryStrategy(config=RetryConfig(max_attempts=3))
        document = await strategy.execute(client.fetch_trial_document, "exp-1")
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        on_retry: Callable[[int, Exception, float], None] | None = None,
        sleep_fn: SleepFn | None = None,
    ):
        """Initialize retry strategy.

        Args:
            config: Retry configuration.
            on_retry: Callback before each retry (attempt, error, delay).
            sleep_fn: Awaitable sleep, replaceable in tests.
        """
        self._config = config or RetryConfig()
        self._on_retry = on_retry
        self._sleep = sleep_fn or asyncio.sleep
        self._lock = threading.RLock()
        self._stats = {
            "total_attempts": 0,
            "successful_retries": 0,
            "failed_retries": 0,
        }

    @property
    def config(self) -> RetryConfig:
        return self._config

    def _should_retry(self, error: Exception) -> bool:
        for error_type in self._config.fail_fast_errors:
            if isinstance(error, error_type):
                return False
        if self._config.retryable_errors:
            return any(isinstance(error, e) for e in self._config.retryable_errors)
        return True

    def calculate_delay(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        delay = self._config.initial_delay * (self._config.exponential_base ** (attempt - 1))
        delay = min(delay, self._config.max_delay)
        if self._config.jitter:
            delay = delay * (0.5 + random.random())
        return delay

    async def execute(
        self,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Execute an async function with retry logic.

        Returns:
            Function result.

        Raises:
            RetryExhaustedError: If all attempts fail.
            Exception: A fail-fast error, re-raised unchanged.
        """
        last_error: Exception | None = None

        for attempt in range(1, self._config.max_attempts + 1):
            with self._lock:
                self._stats["total_attempts"] += 1

            try:
                result = await func(*args, **kwargs)
                if attempt > 1:
                    with self._lock:
                        self._stats["successful_retries"] += 1
                return result

            except Exception as e:
                last_error = e
                logger.warning(f"Attempt {attempt}/{self._config.max_attempts} failed: {e}")

                if not self._should_retry(e):
                    logger.debug(f"Not retrying {type(e).__name__}")
                    with self._lock:
                        self._stats["failed_retries"] += 1
                    raise

                if attempt >= self._config.max_attempts:
                    with self._lock:
                        self._stats["failed_retries"] += 1
                    raise RetryExhaustedError(attempt, e) from e

                delay = self.calculate_delay(attempt)
                logger.info(f"Retrying in {delay:.2f}s (attempt {attempt + 1}/{self._config.max_attempts})")
                if self._on_retry:
                    self._on_retry(attempt, e, delay)
                await self._sleep(delay)

        raise RetryExhaustedError(self._config.max_attempts, last_error or RuntimeError("no attempts"))

    def get_stats(self) -> dict[str, int]:
        with self._lock:
            return dict(self._stats)
