"""Immutable request builder composed with the retry engine.

Example:
    base = create_request("GET /repos/{owner}/{repo}", {"owner": "o", "repo": "r"})
    repo_id = await base.with_field("id").with_retries(5).run_with(client)
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from repochain.errors import ConfigurationError, MissingFieldError
from repochain.github.client import expand_route, parse_route
from repochain.retry import (
    RetryPolicy,
    run_with_retries,
    validate_interval,
    validate_max_retries,
    validate_stop_predicate,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from repochain.github.client import GitHubClient, Response
    from repochain.result import Result
    from repochain.retry import StopPredicate

    Operation = str | Callable[..., Awaitable[Response]]


def _freeze(parameters: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(parameters or {}))


@dataclass(frozen=True)
class RequestDescriptor:
    """What to call: an operation, its parameters, and an optional projection."""

    operation: Operation
    parameters: Mapping[str, Any] = field(default_factory=lambda: _freeze(None))
    result_field: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.operation, str):
            parse_route(self.operation)
        elif not callable(self.operation):
            raise ConfigurationError(
                "operation must be a route string or a callable",
                hint='Use a route such as "GET /repos/{owner}/{repo}" or a bound client method.',
            )
        if self.parameters is None or not isinstance(self.parameters, Mapping):
            raise ConfigurationError("parameters must be a mapping")
        if not isinstance(self.parameters, MappingProxyType):
            object.__setattr__(self, "parameters", _freeze(self.parameters))

    @property
    def name(self) -> str:
        if isinstance(self.operation, str):
            return self.operation
        return getattr(self.operation, "__qualname__", repr(self.operation))


@dataclass(frozen=True)
class Request:
    """A request description plus its retry policy.

    Every ``with_*`` call returns a new ``Request``; the receiver is never
    modified, so one value can serve as a template for several derived calls.
    """

    descriptor: RequestDescriptor
    policy: RetryPolicy = field(default_factory=RetryPolicy)

    def with_retries(self, max_retries: int) -> Request:
        validate_max_retries(max_retries)
        return replace(self, policy=self.policy.with_retries(max_retries))

    def with_interval(self, interval_ms: float) -> Request:
        validate_interval(interval_ms)
        return replace(self, policy=self.policy.with_interval(interval_ms))

    def with_stop_predicate(self, stop_predicate: StopPredicate) -> Request:
        validate_stop_predicate(stop_predicate)
        return replace(self, policy=self.policy.with_stop_predicate(stop_predicate))

    def with_field(self, result_field: str) -> Request:
        if not isinstance(result_field, str) or not result_field:
            raise ConfigurationError("result_field must be a non-empty string")
        return replace(self, descriptor=replace(self.descriptor, result_field=result_field))

    def with_parameters(self, **parameters: Any) -> Request:
        merged = {**self.descriptor.parameters, **parameters}
        return replace(self, descriptor=replace(self.descriptor, parameters=_freeze(merged)))

    async def run_with(
        self,
        client: GitHubClient,
        *,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> Result[Any, BaseException]:
        """Execute against *client* under this request's retry policy.

        Route placeholders are resolved before the first attempt, so a missing
        parameter raises ``ConfigurationError`` instead of being retried.
        """
        if isinstance(self.descriptor.operation, str):
            _, template = parse_route(self.descriptor.operation)
            expand_route(template, self.descriptor.parameters)

        async def _attempt() -> Any:
            return await _issue(client, self.descriptor)

        return await run_with_retries(
            _attempt, self.policy, sleep=sleep, label=self.descriptor.name
        )


async def _issue(client: GitHubClient, descriptor: RequestDescriptor) -> Any:
    params = dict(descriptor.parameters)
    if isinstance(descriptor.operation, str):
        response = await client.request(descriptor.operation, params)
    else:
        response = await descriptor.operation(**params)

    data = getattr(response, "data", response)
    if descriptor.result_field is None:
        return data
    if not isinstance(data, dict) or descriptor.result_field not in data:
        raise MissingFieldError(descriptor.result_field)
    return data[descriptor.result_field]


def create_request(
    operation: Operation,
    parameters: Mapping[str, Any] | None = None,
    *,
    policy: RetryPolicy | None = None,
) -> Request:
    """Start a request with default retry settings (3 attempts, 2000ms base)."""
    descriptor = RequestDescriptor(operation, _freeze(parameters))
    return Request(descriptor, policy if policy is not None else RetryPolicy())
