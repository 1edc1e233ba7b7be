"""Exception hierarchy for repochain."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator

    from repochain.chain.context import ExecutionContext


class RepochainError(Exception):
    """Base exception for all repochain errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(RepochainError):
    """Builder, task, or settings validation failed."""


class ChainError(RepochainError):
    """A task chain was asked to do something structurally invalid.

    Duplicate or missing labels, malformed labels, and tasks attached to a
    different chain all raise this before any state changes.
    """


class APIError(RepochainError):
    """Remote call failed.

    Carries the upstream status and payload for diagnosis. Only stop
    predicates look at these fields for control flow.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        status_code: int | None = None,
        response_data: Any = None,
        retryable: bool | None = None,
        route: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.status_code = status_code
        self.response_data = response_data
        self.retryable = retryable
        self.route = route


class NotFoundError(APIError):
    """Remote resource does not exist (HTTP 404)."""


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 403 with exhausted quota, or 429)."""


class MissingFieldError(RepochainError):
    """A successful response lacked the field the request projects."""

    def __init__(self, field: str, *, hint: str | None = None) -> None:
        super().__init__(f'Property "{field}" not found in response.', hint=hint)
        self.field = field


class RetriesExhaustedError(RepochainError):
    """Every attempt failed without the stop predicate ending the loop."""

    def __init__(
        self,
        attempts: int,
        *,
        last_error: BaseException | None = None,
        label: str | None = None,
    ) -> None:
        prefix = f"{label}: " if label else ""
        super().__init__(f"{prefix}Request failed after {attempts} attempts")
        self.attempts = attempts
        self.last_error = last_error
        self.label = label


class CredentialError(RepochainError):
    """Token exchange or client construction failed."""


class EncryptionError(RepochainError):
    """Sealing a secret for remote storage failed."""


class ChainAbortedError(RepochainError):
    """A chain run stopped before its last task.

    ``context`` holds every step recorded up to and including the task whose
    signal aborted the run.
    """

    def __init__(self, label: str, context: ExecutionContext) -> None:
        super().__init__(f"Chain aborted after task '{label}'")
        self.label = label
        self.context = context


def walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)


def status_code_of(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in walk_exception_chain(exc):
        for attr in ("status_code", "status"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None
