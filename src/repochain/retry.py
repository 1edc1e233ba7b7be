"""Async retry with exponential backoff and explicit stop predicates.

Design goals:
- Explicit state (policy + attempt counter)
- Failures resolve to ``Failure`` values instead of raising
- Pure exponential backoff, no jitter, so delays are predictable
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
import logging
from typing import TYPE_CHECKING, Any, TypeVar

from repochain._http import RETRYABLE_STATUS_CODES
from repochain.errors import (
    APIError,
    ConfigurationError,
    NotFoundError,
    RetriesExhaustedError,
    status_code_of,
)
from repochain.result import Success, capture_failure, describe_failure

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from repochain.result import Result

    StopPredicate = Callable[[BaseException], tuple[bool, BaseException]]

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_INTERVAL_MS = 2000
# Backoff doubles per attempt; past this the delays stop being meaningful.
MAX_RETRIES_LIMIT = 30


def stop_on_not_found(error: BaseException) -> tuple[bool, BaseException]:
    """Default stop predicate: a missing resource will not appear on retry."""
    if isinstance(error, NotFoundError):
        return True, error
    return status_code_of(error) == 404, error


def stop_unless_retryable(error: BaseException) -> tuple[bool, BaseException]:
    """Stricter predicate: keep retrying only errors marked transient.

    Errors without retry metadata (plain exceptions, projection failures)
    stop immediately.
    """
    if isinstance(error, APIError):
        if error.retryable is not None:
            return not error.retryable, error
        status = error.status_code
        return not (isinstance(status, int) and status in RETRYABLE_STATUS_CODES), error
    return True, error


def validate_max_retries(value: Any, *, name: str = "max_retries") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(
            f"{name} must be a number, got {type(value).__name__}",
            hint="Pass an integer attempt count.",
        )
    if value < 1:
        raise ConfigurationError(f"{name} must be at least 1, got {value}")
    if value > MAX_RETRIES_LIMIT:
        raise ConfigurationError(
            f"{name} must be at most {MAX_RETRIES_LIMIT}, got {value}",
            hint="Backoff doubles on every attempt; use fewer retries.",
        )
    return value


def validate_interval(value: Any, *, name: str = "interval_ms", minimum: float = 0) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(
            f"{name} must be a number, got {type(value).__name__}",
            hint="Pass the base interval in milliseconds.",
        )
    if value < minimum:
        raise ConfigurationError(f"{name} must be at least {minimum}(ms), got {value}")
    return value


def validate_stop_predicate(value: Any, *, name: str = "stop_predicate") -> None:
    if not callable(value):
        raise ConfigurationError(f"{name} must be callable")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with pure exponential backoff."""

    max_retries: int = DEFAULT_MAX_RETRIES
    interval_ms: float = DEFAULT_INTERVAL_MS
    stop_predicate: StopPredicate = stop_on_not_found

    def __post_init__(self) -> None:
        """Reject settings that cannot drive a retry loop."""
        validate_max_retries(self.max_retries)
        validate_interval(self.interval_ms)
        validate_stop_predicate(self.stop_predicate)

    def with_retries(self, max_retries: int) -> RetryPolicy:
        return replace(self, max_retries=max_retries)

    def with_interval(self, interval_ms: float) -> RetryPolicy:
        return replace(self, interval_ms=interval_ms)

    def with_stop_predicate(self, stop_predicate: StopPredicate) -> RetryPolicy:
        return replace(self, stop_predicate=stop_predicate)


def backoff_delay_ms(policy: RetryPolicy, attempt: int) -> float:
    """Delay before the attempt after *attempt* (1-based)."""
    return policy.interval_ms * 2 ** (attempt - 1)


def _evaluate_stop(
    policy: RetryPolicy, error: BaseException
) -> tuple[bool, BaseException]:
    try:
        should_stop, result_error = policy.stop_predicate(error)
    except Exception as exc:
        logger.error("Stop predicate raised; ending retries: %s", exc, exc_info=exc)
        return True, exc
    return bool(should_stop), result_error


async def run_with_retries(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], Awaitable[Any]] | None = None,
    label: str | None = None,
) -> Result[T, BaseException]:
    """Run an async operation under *policy*.

    Returns ``Success`` as soon as an attempt succeeds. A failure either ends
    the loop through the stop predicate, exhausts the budget
    (``RetriesExhaustedError``), or waits ``interval_ms * 2**(attempt-1)``
    before the next attempt. Cancellation is never retried.
    """
    attempt = 1
    name = label or "request"

    while True:
        try:
            return Success(await operation())
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(
                "Attempt %d of %s failed: %s",
                attempt,
                name,
                describe_failure(exc),
                exc_info=exc,
            )

            should_stop, error = _evaluate_stop(policy, exc)
            if should_stop:
                return capture_failure(
                    error, message=f"Not retrying {name}:", level=logging.WARNING
                )

            if attempt >= policy.max_retries:
                return capture_failure(
                    RetriesExhaustedError(attempt, last_error=exc, label=label),
                    message="Giving up:",
                    level=logging.WARNING,
                )

            delay_ms = backoff_delay_ms(policy, attempt)
            logger.info("Retrying in %s seconds...", delay_ms / 1000)
            await (sleep or asyncio.sleep)(delay_ms / 1000)
            attempt += 1
