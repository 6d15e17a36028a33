"""Retry and timeout helpers for external calls.

Every collaborator call goes through call_with_retry with an explicit
RetryPolicy value; deadlines are enforced by call_with_timeout.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
)

from curio.core.errors import CollaboratorError, CollaboratorTimeout

if TYPE_CHECKING:
    from curio.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Infrastructure failures worth another attempt
RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (CollaboratorError, TimeoutError, OSError)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff.

    Attributes:
        max_attempts: Total attempts including the first one.
        base_delay: Delay in seconds after the first failure.
        multiplier: Growth factor between consecutive delays.
        max_delay: Upper bound for any single delay.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0

    def delay_for(self, attempt: int) -> float:
        """Delay slept after the given (1-based) failed attempt."""
        return min(self.max_delay, self.base_delay * self.multiplier ** (attempt - 1))

    @classmethod
    def from_settings(cls, settings: Settings, max_attempts: int) -> RetryPolicy:
        return cls(
            max_attempts=max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            multiplier=settings.retry_multiplier,
            max_delay=settings.retry_max_delay_seconds,
        )


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    *,
    retry_on: tuple[type[BaseException], ...] = RETRYABLE_ERRORS,
    retry_if: Callable[[BaseException], bool] | None = None,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "call",
) -> T:
    """Call fn, retrying retryable failures according to policy.

    Non-retryable exceptions propagate immediately. After the last attempt
    the final exception is re-raised unchanged.

    Args:
        fn: Zero-argument callable to invoke.
        policy: Attempt count and backoff shape.
        retry_on: Exception types that warrant another attempt.
        retry_if: Predicate deciding retries instead of retry_on.
        sleep: Sleep function (injected in tests).
        label: Name used in retry log lines.

    Returns:
        Whatever fn returns on its first successful attempt.
    """

    def _log_retry(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            f"{label} failed (attempt {state.attempt_number}/{policy.max_attempts}): "
            f"{type(exc).__name__}: {exc}"
        )

    retrying = Retrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=lambda state: policy.delay_for(state.attempt_number),
        retry=retry_if_exception(retry_if) if retry_if else retry_if_exception_type(retry_on),
        before_sleep=_log_retry,
        sleep=sleep,
        reraise=True,
    )
    return retrying(fn)


def call_with_timeout(
    fn: Callable[[], T],
    timeout: float,
    *,
    label: str = "call",
    grace: float = 0.0,
) -> T:
    """Run fn on a worker thread and wait at most timeout seconds.

    The worker thread cannot be interrupted. After the deadline the call
    gets up to grace more seconds to settle, so a retry never overlaps it;
    a result arriving in that window is returned. A call still running
    after the grace period is abandoned and its result discarded.

    Raises:
        CollaboratorTimeout: If fn does not finish within timeout + grace.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="curio-call")
    future = executor.submit(fn)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout as e:
        if future.cancel() or grace <= 0:
            raise CollaboratorTimeout(f"{label} exceeded {timeout:.1f}s") from e
        try:
            result = future.result(timeout=grace)
        except FutureTimeout:
            if future.done():
                raise
            logger.error(f"{label} still running {grace:.1f}s past its deadline, abandoned")
            raise CollaboratorTimeout(f"{label} exceeded {timeout:.1f}s") from e
        logger.warning(f"{label} finished after its {timeout:.1f}s deadline, result kept")
        return result
    finally:
        executor.shutdown(wait=False)

