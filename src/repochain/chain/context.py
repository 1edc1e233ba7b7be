"""Execution context shared by the tasks of one chain run."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

from repochain.result import Failure, Result, Success


def clone_structure(value: Any) -> Any:
    """Return a structural clone of a mapping-of-mappings context shape.

    Containers and ``Success``/``Failure`` wrappers are rebuilt recursively.
    Exceptions are shared, since they are treated as immutable records.
    Anything else is deep-copied, or shared when it cannot be copied
    (locks, clients holding sockets).
    """
    if isinstance(value, dict):
        return {k: clone_structure(v) for k, v in value.items()}
    if isinstance(value, list):
        return [clone_structure(v) for v in value]
    if isinstance(value, tuple):
        return tuple(clone_structure(v) for v in value)
    if isinstance(value, set):
        return {clone_structure(v) for v in value}
    if isinstance(value, Success):
        return Success(clone_structure(value.value))
    if isinstance(value, Failure):
        return Failure(value.error)
    if isinstance(value, BaseException):
        return value
    try:
        return copy.deepcopy(value)
    except (TypeError, copy.Error):
        return value


@dataclass
class ExecutionContext:
    """Inputs and per-task results of a single chain run.

    ``steps`` maps each executed task's label to its ``Result`` in execution
    order. Owned by one ``TaskChain.run`` call.
    """

    inputs: dict[str, Any] = field(default_factory=dict)
    steps: dict[str, Result[Any, BaseException]] = field(default_factory=dict)

    def step_value(self, label: str) -> Any:
        """Return the value recorded for a successful step.

        Raises ``KeyError`` when the step has not run, and re-raises the
        recorded error when it failed.
        """
        result = self.steps[label]
        if isinstance(result, Failure):
            raise result.error
        return result.value

    def snapshot(self) -> dict[str, Any]:
        """Return a detached copy shaped as ``{"inputs": ..., "steps": ...}``."""
        return {
            "inputs": clone_structure(self.inputs),
            "steps": clone_structure(self.steps),
        }
