"""Task: a named, independently retryable unit of work.

A task is a retry-engine invocation with lifecycle signaling layered on top.
When its action finally succeeds the task emits ``TaskSignal.SUCCESS``;
when the stop predicate fires or retries run out it emits
``TaskSignal.ERROR``. By default an error aborts the owning chain and a
success does not. Observers may override that decision per event.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import copy
from dataclasses import dataclass, field
from enum import Enum
import inspect
import logging
import re
from typing import TYPE_CHECKING, Any

from repochain.chain.context import ExecutionContext, clone_structure
from repochain.errors import ConfigurationError
from repochain.result import Success
from repochain.retry import (
    DEFAULT_INTERVAL_MS,
    DEFAULT_MAX_RETRIES,
    RetryPolicy,
    run_with_retries,
    stop_on_not_found,
    validate_interval,
    validate_max_retries,
    validate_stop_predicate,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from repochain.chain.chain import TaskChain
    from repochain.result import Result
    from repochain.retry import StopPredicate

    Action = Callable[[ExecutionContext], Awaitable[Any] | Any]
    Observer = Callable[["TaskEvent"], None]

logger = logging.getLogger(__name__)

MIN_TASK_INTERVAL_MS = 500

_WHITESPACE = re.compile(r"\s")


def label_problem(label: Any) -> str | None:
    """Describe why *label* is unusable, or return None when it is valid."""
    if not isinstance(label, str) or not label:
        return "label cannot be empty!"
    if _WHITESPACE.search(label):
        return "label must not contain any whitespaces!"
    return None


class TaskSignal(Enum):
    """Lifecycle notifications emitted by a task."""

    SUCCESS = "taskSuccess"
    ERROR = "taskError"


@dataclass
class TaskEvent:
    """One signal instance as seen by observers.

    ``context`` is a detached copy of the execution context at signal time,
    with ``result`` (success) or ``error`` (failure) added.
    """

    task: Task
    signal: TaskSignal
    context: dict[str, Any]
    stop_chain: bool
    propagation_stopped: bool = field(default=False, init=False)

    def break_chain(self, value: bool = True) -> None:
        """Override the abort decision for this event.

        Passing the current decision is a no-op. A different value takes
        effect immediately and stops notification of later observers.
        """
        if value == self.stop_chain:
            return
        self.stop_chain = value
        self.propagation_stopped = True


@dataclass(frozen=True)
class TaskInput:
    """A declared input with its default.

    Template defaults are deep-copied every time inputs are materialized so
    separate runs never share mutable state.
    """

    name: str
    default_value: Any = None
    is_template: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise ConfigurationError("inputs must have a name!")
        if not isinstance(self.is_template, bool):
            raise ConfigurationError("is_template must be a boolean!")

    @classmethod
    def coerce(cls, value: TaskInput | Mapping[str, Any]) -> TaskInput:
        if isinstance(value, TaskInput):
            return value
        if isinstance(value, Mapping):
            return cls(
                name=value.get("name"),  # type: ignore[arg-type]
                default_value=value.get("default_value"),
                is_template=value.get("is_template", True),
            )
        raise ConfigurationError(
            f"inputs entries must be TaskInput or mappings, got {type(value).__name__}"
        )


class Task:
    """A labeled action run under its own retry policy.

    Example:
        async def fetch_repo(context):
            return await client.get_repo(**context.inputs)

        task = Task("repo", fetch_repo, inputs=[TaskInput("owner"), TaskInput("repo")])
    """

    def __init__(
        self,
        label: str,
        action: Action,
        *,
        inputs: Sequence[TaskInput | Mapping[str, Any]] = (),
        retries: int = DEFAULT_MAX_RETRIES,
        interval: float = DEFAULT_INTERVAL_MS,
        stop_retries: StopPredicate = stop_on_not_found,
        on_success: Iterable[Observer] = (),
        on_error: Iterable[Observer] = (),
    ) -> None:
        problem = label_problem(label)
        if problem is not None:
            raise ConfigurationError(f"Task {problem}")
        if not callable(action):
            raise ConfigurationError("Task action must be callable!")
        if isinstance(inputs, (str, bytes)) or not isinstance(inputs, Sequence):
            raise ConfigurationError("inputs must be a sequence!")
        validate_max_retries(retries, name="retries")
        validate_interval(interval, name="interval", minimum=MIN_TASK_INTERVAL_MS)
        validate_stop_predicate(stop_retries, name="stop_retries")

        self._label = label
        self._action = action
        self._inputs = tuple(TaskInput.coerce(i) for i in inputs)
        self._policy = RetryPolicy(retries, interval, stop_retries)
        self._observers: dict[TaskSignal, list[Observer]] = {
            TaskSignal.SUCCESS: [],
            TaskSignal.ERROR: [],
        }
        for observer in on_success:
            self.subscribe(TaskSignal.SUCCESS, observer)
        for observer in on_error:
            self.subscribe(TaskSignal.ERROR, observer)
        self._chain: TaskChain | None = None

    def __repr__(self) -> str:
        return f"Task(label={self._label!r}, inputs={[i.name for i in self._inputs]!r})"

    @property
    def label(self) -> str:
        return self._label

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def inputs(self) -> tuple[TaskInput, ...]:
        return self._inputs

    @property
    def chain(self) -> TaskChain | None:
        """The chain this task is attached to, if any."""
        return self._chain

    def _set_chain(self, chain: TaskChain | None) -> None:
        self._chain = chain

    def subscribe(self, signal: TaskSignal, observer: Observer) -> None:
        """Register *observer* for *signal*; observers run in registration order."""
        if not isinstance(signal, TaskSignal):
            raise ConfigurationError(f"Unknown task signal: {signal!r}")
        if not callable(observer):
            raise ConfigurationError("observer must be callable")
        self._observers[signal].append(observer)

    def get_inputs(self) -> dict[str, Any]:
        """Materialize declared inputs into a fresh mapping of defaults."""
        return {
            i.name: copy.deepcopy(i.default_value) if i.is_template else i.default_value
            for i in self._inputs
        }

    async def run(self, context: ExecutionContext) -> Result[Any, BaseException]:
        """Run the action under this task's retry policy and emit its signal.

        When the resulting decision is to abort, the owning chain's abort flag
        is set before this returns.
        """

        async def _attempt() -> Any:
            outcome = self._action(context)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            return outcome

        result = await run_with_retries(_attempt, self._policy, label=self._label)

        if isinstance(result, Success):
            self._dispatch(TaskSignal.SUCCESS, context, {"result": result.value}, stop_chain=False)
        else:
            self._dispatch(TaskSignal.ERROR, context, {"error": result.error}, stop_chain=True)
        return result

    def _dispatch(
        self,
        signal: TaskSignal,
        context: ExecutionContext,
        detail: dict[str, Any],
        *,
        stop_chain: bool,
    ) -> bool:
        observers = list(self._observers[signal])
        if self._chain is not None:
            observers.extend(self._chain.observers(signal))

        if observers:
            if isinstance(context, ExecutionContext):
                snapshot = context.snapshot()
            else:
                snapshot = {"inputs": clone_structure(context)}
            snapshot.update(clone_structure(detail))

            event = TaskEvent(task=self, signal=signal, context=snapshot, stop_chain=stop_chain)
            for observer in observers:
                observer(event)
                if event.propagation_stopped:
                    break
            stop_chain = event.stop_chain

        if stop_chain:
            if self._chain is not None:
                self._chain.break_chain()
            else:
                logger.debug("Task %s requested a chain break but is not attached", self._label)
        return stop_chain
