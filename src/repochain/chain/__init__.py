"""Task orchestration: tasks, chains, and their shared execution context."""

from repochain.chain.chain import ChainState, TaskChain
from repochain.chain.context import ExecutionContext, clone_structure
from repochain.chain.task import Task, TaskEvent, TaskInput, TaskSignal

__all__ = [
    "ChainState",
    "ExecutionContext",
    "Task",
    "TaskChain",
    "TaskEvent",
    "TaskInput",
    "TaskSignal",
    "clone_structure",
]
