"""repochain: resilient GitHub automation with retrying requests and task chains.

Public API:
    - create_request(): Immutable request builder with exponential backoff
    - run_with_retries(): Retry engine over any async operation
    - Task / TaskChain: Sequential orchestration over a shared context
    - Success / Failure: Result values returned instead of raising
    - resolve_settings(): Validated configuration from env and overrides
"""

from __future__ import annotations

import logging

from repochain.chain import (
    ChainState,
    ExecutionContext,
    Task,
    TaskChain,
    TaskEvent,
    TaskInput,
    TaskSignal,
)
from repochain.config import Settings, resolve_settings
from repochain.errors import (
    APIError,
    ChainAbortedError,
    ChainError,
    ConfigurationError,
    CredentialError,
    EncryptionError,
    MissingFieldError,
    NotFoundError,
    RateLimitError,
    RepochainError,
    RetriesExhaustedError,
)
from repochain.github.client import GitHubClient, Response
from repochain.request import Request, RequestDescriptor, create_request
from repochain.result import Failure, Result, Success, execute_safely
from repochain.retry import (
    RetryPolicy,
    run_with_retries,
    stop_on_not_found,
    stop_unless_retryable,
)

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("repochain")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("repochain").addHandler(logging.NullHandler())

__all__ = [
    "APIError",
    "ChainAbortedError",
    "ChainError",
    "ChainState",
    "ConfigurationError",
    "CredentialError",
    "EncryptionError",
    "ExecutionContext",
    "Failure",
    "GitHubClient",
    "MissingFieldError",
    "NotFoundError",
    "RateLimitError",
    "RepochainError",
    "Request",
    "RequestDescriptor",
    "Response",
    "Result",
    "RetriesExhaustedError",
    "RetryPolicy",
    "Settings",
    "Success",
    "Task",
    "TaskChain",
    "TaskEvent",
    "TaskInput",
    "TaskSignal",
    "create_request",
    "execute_safely",
    "resolve_settings",
    "run_with_retries",
    "stop_on_not_found",
    "stop_unless_retryable",
]
