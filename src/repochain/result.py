"""Result type for explicit error handling.

Every fallible core operation resolves to ``Success`` or ``Failure`` instead
of raising, so callers handle failure as ordinary data flow.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import typing

from repochain.errors import APIError

if typing.TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

TSuccess = typing.TypeVar("TSuccess")
TFailure = typing.TypeVar("TFailure", bound=BaseException)


@dataclasses.dataclass(frozen=True, slots=True)
class Success[TSuccess]:
    """A successful outcome."""

    value: TSuccess


@dataclasses.dataclass(frozen=True, slots=True)
class Failure[TFailure]:
    """A failed outcome, containing the error."""

    error: TFailure


Result = Success[TSuccess] | Failure[TFailure]


def is_success(result: object) -> bool:
    """Return True for ``Success`` values."""
    return isinstance(result, Success)


def describe_failure(exc: BaseException) -> dict[str, typing.Any]:
    """Collect the diagnostic fields logged for a captured failure."""
    detail: dict[str, typing.Any] = {"message": str(exc), "type": type(exc).__name__}
    if isinstance(exc, APIError):
        detail["status"] = exc.status_code
        detail["response"] = exc.response_data
    return detail


def capture_failure[E: BaseException](
    exc: E, *, message: str, level: int = logging.ERROR
) -> Failure[E]:
    """Log *exc* once and wrap it in a ``Failure``."""
    logger.log(level, "%s %s", message, describe_failure(exc), exc_info=exc)
    return Failure(exc)


async def execute_safely[T](
    callback: Callable[..., Awaitable[T]], *args: typing.Any, **kwargs: typing.Any
) -> Result[T, Exception]:
    """Await ``callback(*args, **kwargs)`` and capture any failure as a Result."""
    try:
        return Success(await callback(*args, **kwargs))
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        return capture_failure(exc, message="Failed to execute function!")
