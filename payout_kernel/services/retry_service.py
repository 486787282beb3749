"""
RetryService -- bounded exponential-backoff retry for fallible calls.

Responsibility:
    Wraps a call to an external collaborator (bank API, notification
    gateway) with a retry strategy parameterized by a ``RetryPolicy``.
    Errors are classified as retryable (connection reset, timeout,
    refused) or fatal.  Fatal errors propagate unchanged on their first
    occurrence; retryable errors are retried with exponential backoff
    until the attempts are used up, then escalate as
    ``RetryExhaustedError``.

Observability:
    ``run_with_stats()`` returns a ``RetryResult`` carrying the attempt
    count and the last error seen before success.  Every retry logs
    ``retry_attempt``; exhaustion logs ``retry_exhausted``.

Non-goals:
    - Does NOT retry database transactions.  A transaction is retried as a
      whole by the queue, never partially by this helper.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Generic, TypeVar

from payout_kernel.exceptions import RetryExhaustedError
from payout_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")

DEFAULT_RETRYABLE_SIGNATURES: tuple[str, ...] = ("ECONNRESET", "ETIMEDOUT", "ECONNREFUSED")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry parameters.

    ``retryable_errors`` are message/code signatures; ``retryable_types`` are
    exception classes.  An error matching either is retryable.
    """

    max_attempts: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 30000
    backoff_multiplier: float = 2.0
    retryable_errors: tuple[str, ...] = DEFAULT_RETRYABLE_SIGNATURES
    retryable_types: tuple[type[BaseException], ...] = field(
        default=(ConnectionError, TimeoutError),
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.initial_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("Retry delays must be non-negative")
        if self.backoff_multiplier < 1:
            raise ValueError(
                f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}"
            )

    def delay_ms(self, attempt: int) -> int:
        """Delay before the retry that follows failed ``attempt`` (1-based)."""
        raw = self.initial_delay_ms * (self.backoff_multiplier ** (attempt - 1))
        return int(min(raw, self.max_delay_ms))

    def is_retryable(self, error: BaseException) -> bool:
        if isinstance(error, self.retryable_types):
            return True
        code = getattr(error, "code", None)
        message = str(error)
        return any(
            signature == code or signature in message
            for signature in self.retryable_errors
        )


@dataclass(frozen=True)
class RetryResult(Generic[T]):
    """Outcome of a successful retried call."""

    value: T
    attempts: int
    last_error: BaseException | None = None


class RetryService:
    """Retry strategy object.

    Contract:
        - ``run()`` returns the operation's value.
        - ``run_with_stats()`` returns a ``RetryResult``.
        - Non-retryable errors are re-raised as-is on first occurrence.
        - After ``max_attempts`` retryable failures raises
          ``RetryExhaustedError`` chained from the last error.

    The sleep function is injectable so tests do not wait.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._policy = policy or RetryPolicy()
        self._sleep = sleep

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def run(self, operation: Callable[[], T], operation_name: str = "operation") -> T:
        return self.run_with_stats(operation, operation_name).value

    def run_with_stats(
        self,
        operation: Callable[[], T],
        operation_name: str = "operation",
    ) -> RetryResult[T]:
        policy = self._policy
        last_error: BaseException | None = None

        for attempt in range(1, policy.max_attempts + 1):
            try:
                value = operation()
            except Exception as exc:
                if not policy.is_retryable(exc):
                    raise

                last_error = exc
                if attempt == policy.max_attempts:
                    logger.error(
                        "retry_exhausted",
                        extra={
                            "operation": operation_name,
                            "attempts": attempt,
                            "error": str(exc),
                        },
                    )
                    raise RetryExhaustedError(operation_name, attempt, exc) from exc

                delay = policy.delay_ms(attempt)
                logger.warning(
                    "retry_attempt",
                    extra={
                        "operation": operation_name,
                        "attempt": attempt,
                        "max_attempts": policy.max_attempts,
                        "delay_ms": delay,
                        "error": str(exc),
                    },
                )
                self._sleep(delay / 1000)
            else:
                return RetryResult(value=value, attempts=attempt, last_error=last_error)

        # max_attempts >= 1 guarantees the loop returns or raises
        raise AssertionError("unreachable")
