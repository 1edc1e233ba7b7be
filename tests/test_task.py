"""Task construction, input materialization, and signal dispatch."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from repochain.chain import (
    ExecutionContext,
    Task,
    TaskChain,
    TaskEvent,
    TaskInput,
    TaskSignal,
)
from repochain.chain.task import MIN_TASK_INTERVAL_MS
from repochain.errors import ConfigurationError, NotFoundError, RetriesExhaustedError
from repochain.result import Failure, Success

pytestmark = pytest.mark.unit


async def _noop(context: ExecutionContext) -> None:
    return None


# =============================================================================
# Construction
# =============================================================================


@pytest.mark.parametrize(
    ("label", "message"),
    [
        ("", "label cannot be empty!"),
        (None, "label cannot be empty!"),
        ("has space", "label must not contain any whitespaces!"),
        ("tab\there", "label must not contain any whitespaces!"),
    ],
)
def test_invalid_labels_are_rejected(label: Any, message: str) -> None:
    with pytest.raises(ConfigurationError, match=message):
        Task(label, _noop)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"retries": 0},
        {"retries": 31},
        {"retries": "3"},
        {"interval": MIN_TASK_INTERVAL_MS - 1},
        {"interval": "2000"},
        {"stop_retries": 123},
        {"inputs": "owner"},
        {"inputs": [{"default_value": 1}]},
        {"inputs": [{"name": "x", "is_template": "yes"}]},
        {"inputs": [42]},
    ],
)
def test_invalid_options_are_rejected(kwargs: dict[str, Any]) -> None:
    with pytest.raises(ConfigurationError):
        Task("ok", _noop, **kwargs)


def test_action_must_be_callable() -> None:
    with pytest.raises(ConfigurationError):
        Task("ok", "not callable")  # type: ignore[arg-type]


def test_defaults() -> None:
    task = Task("fetch", _noop)

    assert task.label == "fetch"
    assert task.policy.max_retries == 3
    assert task.policy.interval_ms == 2000
    assert task.inputs == ()
    assert task.chain is None


def test_interval_at_minimum_is_accepted() -> None:
    task = Task("fast", _noop, interval=MIN_TASK_INTERVAL_MS)
    assert task.policy.interval_ms == MIN_TASK_INTERVAL_MS


# =============================================================================
# Inputs
# =============================================================================


def test_get_inputs_copies_template_defaults() -> None:
    shared = {"labels": ["a"]}
    task = Task(
        "inputs",
        _noop,
        inputs=[
            TaskInput("config", shared),
            {"name": "handle", "default_value": shared, "is_template": False},
        ],
    )

    first = task.get_inputs()
    first["config"]["labels"].append("b")
    second = task.get_inputs()

    assert second["config"] == {"labels": ["a"]}
    assert first["config"] is not shared
    # Non-template defaults are passed through as-is.
    assert second["handle"] is shared


def test_task_input_coerce_accepts_mappings() -> None:
    coerced = TaskInput.coerce({"name": "owner", "default_value": "octo"})
    assert coerced == TaskInput("owner", "octo", True)


# =============================================================================
# Execution and signals
# =============================================================================


@pytest.mark.asyncio
async def test_success_emits_success_with_detached_context() -> None:
    events: list[TaskEvent] = []

    async def action(context: ExecutionContext) -> dict[str, Any]:
        return {"id": context.inputs["n"]}

    task = Task("fetch", action, on_success=[events.append])
    context = ExecutionContext(inputs={"n": 5, "nested": {"k": [1]}})

    result = await task.run(context)

    assert result == Success({"id": 5})
    assert len(events) == 1
    event = events[0]
    assert event.signal is TaskSignal.SUCCESS
    assert event.task is task
    assert event.stop_chain is False
    assert event.context["result"] == {"id": 5}
    assert event.context["inputs"] == {"n": 5, "nested": {"k": [1]}}

    # Mutating the observed copy must not reach the live context.
    event.context["inputs"]["nested"]["k"].append(2)
    assert context.inputs["nested"]["k"] == [1]


@pytest.mark.asyncio
async def test_sync_actions_are_supported() -> None:
    task = Task("sync", lambda context: 3)
    assert await task.run(ExecutionContext()) == Success(3)


@pytest.mark.asyncio
async def test_error_emits_error_with_final_error() -> None:
    events: list[TaskEvent] = []
    err = NotFoundError("missing", status_code=404)

    async def action(context: ExecutionContext) -> None:
        raise err

    task = Task("lookup", action, on_error=[events.append])
    result = await task.run(ExecutionContext())

    assert result == Failure(err)
    assert [e.signal for e in events] == [TaskSignal.ERROR]
    assert events[0].stop_chain is True
    assert events[0].context["error"] is err


@pytest.mark.asyncio
async def test_retries_use_the_task_interval() -> None:
    calls = 0

    async def flaky(context: ExecutionContext) -> str:
        nonlocal calls
        calls += 1
        if calls < 3:
            raise RuntimeError("transient")
        return "done"

    task = Task("flaky", flaky, retries=3, interval=500)
    with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        result = await task.run(ExecutionContext())

    assert result == Success("done")
    assert [c.args[0] for c in mock_sleep.await_args_list] == [0.5, 1.0]


@pytest.mark.asyncio
async def test_exhaustion_is_labeled_with_the_task() -> None:
    async def always_fails(context: ExecutionContext) -> None:
        raise RuntimeError("nope")

    task = Task("doomed", always_fails, retries=2, interval=500)
    with patch("asyncio.sleep", new_callable=AsyncMock):
        result = await task.run(ExecutionContext())

    assert isinstance(result, Failure)
    assert isinstance(result.error, RetriesExhaustedError)
    assert str(result.error) == "doomed: Request failed after 2 attempts"


@pytest.mark.asyncio
async def test_break_chain_overrides_and_stops_propagation() -> None:
    calls: list[str] = []

    def first(event: TaskEvent) -> None:
        calls.append("first")
        event.break_chain(False)

    def second(event: TaskEvent) -> None:
        calls.append("second")

    async def fails(context: ExecutionContext) -> None:
        raise NotFoundError("missing", status_code=404)

    task = Task("tolerant", fails, on_error=[first, second])
    chain = TaskChain([task])

    await task.run(ExecutionContext())

    assert calls == ["first"]
    assert chain.stopped is False


@pytest.mark.asyncio
async def test_break_chain_with_current_decision_is_a_no_op() -> None:
    calls: list[str] = []

    def agree(event: TaskEvent) -> None:
        calls.append("agree")
        event.break_chain(True)

    async def fails(context: ExecutionContext) -> None:
        raise NotFoundError("missing", status_code=404)

    task = Task("t", fails, on_error=[agree, lambda e: calls.append("later")])
    chain = TaskChain([task])

    await task.run(ExecutionContext())

    assert calls == ["agree", "later"]
    assert chain.stopped is True


@pytest.mark.asyncio
async def test_detached_task_runs_without_a_chain() -> None:
    events: list[TaskEvent] = []

    async def fails(context: ExecutionContext) -> None:
        raise NotFoundError("missing", status_code=404)

    task = Task("alone", fails, on_error=[events.append])
    result = await task.run(ExecutionContext())

    assert isinstance(result, Failure)
    assert events[0].stop_chain is True


def test_subscribe_validates_arguments() -> None:
    task = Task("t", _noop)
    with pytest.raises(ConfigurationError):
        task.subscribe("taskSuccess", lambda e: None)  # type: ignore[arg-type]
    with pytest.raises(ConfigurationError):
        task.subscribe(TaskSignal.SUCCESS, "nope")  # type: ignore[arg-type]
