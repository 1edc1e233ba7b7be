"""TaskChain: ordered, label-addressed tasks sharing one execution context.

Runs are sequential. Callers must not start a second ``run`` on the same
chain instance while one is in flight: the abort flag and ``last_context``
are per-instance state and are not locked.
"""

from __future__ import annotations

from enum import Enum
import logging
from typing import TYPE_CHECKING, Any

from repochain.chain.context import ExecutionContext
from repochain.chain.task import Task, TaskSignal, label_problem
from repochain.errors import ChainAbortedError, ChainError, ConfigurationError
from repochain.result import Success, capture_failure

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping

    from repochain.chain.task import Observer
    from repochain.result import Result

logger = logging.getLogger(__name__)


class ChainState(Enum):
    """Per-run state: ``IDLE -> RUNNING -> COMPLETED | ABORTED``."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class TaskChain:
    """An ordered sequence of uniquely labeled tasks.

    Structural operations validate everything before mutating, so a failed
    call leaves membership and order untouched.
    """

    def __init__(
        self,
        tasks: Iterable[Task] = (),
        *,
        on_success: Iterable[Observer] = (),
        on_error: Iterable[Observer] = (),
    ) -> None:
        self._chain: list[Task] = []
        self._stop_chain = False
        self._state = ChainState.IDLE
        self._last_context: ExecutionContext | None = None
        self._observers: dict[TaskSignal, list[Observer]] = {
            TaskSignal.SUCCESS: [],
            TaskSignal.ERROR: [],
        }
        for observer in on_success:
            self.subscribe(TaskSignal.SUCCESS, observer)
        for observer in on_error:
            self.subscribe(TaskSignal.ERROR, observer)
        for task in tasks:
            self.add_task(task)

    # --- Introspection ---

    def __len__(self) -> int:
        return len(self._chain)

    def __iter__(self) -> Iterator[Task]:
        return iter(tuple(self._chain))

    def __contains__(self, item: object) -> bool:
        if isinstance(item, str):
            return any(t.label == item for t in self._chain)
        return any(t is item for t in self._chain)

    def __repr__(self) -> str:
        return f"TaskChain(labels={list(self.labels)!r}, state={self._state.value!r})"

    @property
    def labels(self) -> tuple[str, ...]:
        return tuple(t.label for t in self._chain)

    @property
    def state(self) -> ChainState:
        return self._state

    @property
    def stopped(self) -> bool:
        """Current value of the abort flag."""
        return self._stop_chain

    @property
    def last_context(self) -> ExecutionContext | None:
        """Context of the most recent run, if any."""
        return self._last_context

    # --- Observers ---

    def subscribe(self, signal: TaskSignal, observer: Observer) -> None:
        """Observe *signal* from every task in this chain.

        Chain observers run after the emitting task's own observers.
        """
        if not isinstance(signal, TaskSignal):
            raise ConfigurationError(f"Unknown task signal: {signal!r}")
        if not callable(observer):
            raise ConfigurationError("observer must be callable")
        self._observers[signal].append(observer)

    def observers(self, signal: TaskSignal) -> list[Observer]:
        return list(self._observers[signal])

    # --- Validation helpers ---

    def _validate_task(self, task: Any) -> Task:
        if not isinstance(task, Task):
            raise ChainError("task is not an instance of Task!")
        return task

    def _validate_attachable(self, task: Task) -> None:
        owner = task.chain
        if owner is self or any(t is task for t in self._chain):
            raise ChainError(f"{task.label} is already part of this chain!")
        if owner is not None:
            raise ChainError(
                f"{task.label} already belongs to another chain!",
                hint="Remove it from its current chain before adding it here.",
            )
        if task.label in self:
            raise ChainError(f"A task labeled {task.label} already exists in this chain!")

    def _validate_label(self, label: Any) -> str:
        problem = label_problem(label)
        if problem is not None:
            raise ChainError(problem)
        return label

    def _find_by_label(self, label: str) -> int:
        for idx, task in enumerate(self._chain):
            if task.label == label:
                return idx
        raise ChainError(f"{label} cannot be found!")

    # --- Structure ---

    def get_task(self, label: str) -> Task:
        """Exact-match lookup by label."""
        self._validate_label(label)
        return self._chain[self._find_by_label(label)]

    def add_task(self, task: Task) -> None:
        self._validate_task(task)
        self._validate_attachable(task)

        self._chain.append(task)
        task._set_chain(self)

    def remove_task(self, task: Task | str) -> Task:
        """Detach *task* (or the task with that label) and return it."""
        if isinstance(task, str):
            task = self.get_task(task)
        self._validate_task(task)

        for idx, member in enumerate(self._chain):
            if member is task:
                break
        else:
            raise ChainError(f"{task.label} cannot be found!")

        del self._chain[idx]
        task._set_chain(None)
        return task

    def insert_before_task(self, task: Task, label: str) -> None:
        self._validate_task(task)
        self._validate_label(label)
        self._validate_attachable(task)

        self._chain.insert(self._find_by_label(label), task)
        task._set_chain(self)

    def insert_after_task(self, task: Task, label: str) -> None:
        self._validate_task(task)
        self._validate_label(label)
        self._validate_attachable(task)

        self._chain.insert(self._find_by_label(label) + 1, task)
        task._set_chain(self)

    def get_input_template(self) -> dict[str, Any]:
        """Merge every task's declared inputs; later tasks win on name collisions."""
        template: dict[str, Any] = {}
        for task in self._chain:
            template.update(task.get_inputs())
        return template

    # --- Execution ---

    def break_chain(self, value: bool = True) -> None:
        """Set the abort flag checked after each task of the current run."""
        self._stop_chain = value

    async def run(
        self, inputs: Mapping[str, Any] | None = None
    ) -> Result[ExecutionContext, ChainAbortedError]:
        """Run every task in order against a fresh context.

        Caller-supplied *inputs* are merged over the chain's input template.
        Each task's result is recorded under its label before the abort flag
        is checked; tasks after an abort never run and are absent from
        ``steps``.

        Returns:
            ``Success(context)`` when every task ran, otherwise
            ``Failure(ChainAbortedError)`` carrying the partial context.
        """
        self._stop_chain = False
        self._state = ChainState.RUNNING
        context = ExecutionContext(
            inputs={**self.get_input_template(), **dict(inputs or {})},
            steps={},
        )
        self._last_context = context
        logger.debug("Running chain %s", self.labels)

        try:
            for task in tuple(self._chain):
                result = await task.run(context)
                context.steps[task.label] = result

                if self._stop_chain:
                    self._state = ChainState.ABORTED
                    return capture_failure(
                        ChainAbortedError(task.label, context),
                        message="Chain aborted:",
                        level=logging.WARNING,
                    )
        except BaseException:
            self._state = ChainState.IDLE
            raise

        self._state = ChainState.COMPLETED
        return Success(context)
