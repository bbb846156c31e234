"""Tests for resuming executions from checkpoints."""

import pytest

from graph_rollback import (
    END,
    ConfigurationError,
    EventType,
    ExecutionEngine,
    ExecutionNotFoundError,
    ExecutionRecord,
    NodeExecutionState,
    NodeStatus,
    ResumptionError,
    ResumptionManager,
    WorkflowConfig,
    WorkflowStatus,
    agent_node,
    eval_node,
)

from conftest import FakeAgent


def counting_config(calls, workflow_id="wf"):
    """Three eval nodes a -> b -> c that record each execution."""

    def step(name):
        def update(state):
            calls.append(name)
            return {name: True}

        return update

    return WorkflowConfig(
        id=workflow_id,
        nodes=[
            eval_node("a", step("a"), then="b"),
            eval_node("b", step("b"), then="c"),
            eval_node("c", step("c"), then=END),
        ],
    )


@pytest.fixture
def resumption(storage, engine):
    return ResumptionManager(storage, engine)


async def save_checkpoint(storage, **fields):
    record = ExecutionRecord(workflow_id="wf", **fields)
    return (await storage.create_execution(record)).execution_id


@pytest.mark.asyncio
async def test_resume_after_pause_skips_finished_nodes(storage, engine, resumption, start):
    calls = []
    holder = {}
    config = counting_config(calls)

    async def pause_after(state):
        calls.append("a")
        await storage.update_execution(holder["id"], {"status": WorkflowStatus.PAUSED})
        return {"a": True}

    paused_config = WorkflowConfig(
        id="wf",
        nodes=[eval_node("a", pause_after, then="b"), *config.nodes[1:]],
    )
    execution_id, graph, state = await start(paused_config)
    holder["id"] = execution_id

    paused = await engine.run(execution_id, graph, state)
    assert paused.status == WorkflowStatus.PAUSED

    resumption.register_workflow(config)
    final = await resumption.resume_execution(execution_id)

    assert final.status == WorkflowStatus.COMPLETED
    assert calls == ["a", "b", "c"]
    assert {"a", "b", "c"} <= set(final.context)

    record = await storage.get_execution(execution_id)
    assert record.status == WorkflowStatus.COMPLETED
    assert record.retry_count == 1


@pytest.mark.asyncio
async def test_interrupted_node_runs_exactly_once(storage, resumption):
    calls = []
    resumption.register_workflow(counting_config(calls))
    execution_id = await save_checkpoint(
        storage,
        status=WorkflowStatus.RUNNING,
        current_node="b",
        context={"a": True},
        node_states={
            "a": NodeExecutionState(node_id="a", status=NodeStatus.COMPLETED),
            "b": NodeExecutionState(node_id="b", status=NodeStatus.RUNNING),
        },
    )

    final = await resumption.resume_execution(execution_id)

    assert final.status == WorkflowStatus.COMPLETED
    assert calls == ["b", "c"]
    record = await storage.get_execution(execution_id)
    assert all(state.status == NodeStatus.COMPLETED for state in record.node_states.values())


@pytest.mark.asyncio
async def test_stale_current_node_is_skipped(storage, resumption):
    calls = []
    resumption.register_workflow(counting_config(calls))
    execution_id = await save_checkpoint(
        storage,
        status=WorkflowStatus.FAILED,
        current_node="a",
        context={"a": True},
        node_states={"a": NodeExecutionState(node_id="a", status=NodeStatus.COMPLETED)},
    )

    final = await resumption.resume_execution(execution_id)

    assert final.status == WorkflowStatus.COMPLETED
    assert calls == ["b", "c"]


@pytest.mark.asyncio
async def test_failed_node_is_retried(storage, broadcaster, start):
    config = WorkflowConfig(id="wf", nodes=[agent_node("a", "try", then=END)])
    execution_id, graph, state = await start(config)

    failing = ExecutionEngine(storage, broadcaster, FakeAgent(error=RuntimeError("boom")))
    assert (await failing.run(execution_id, graph, state)).status == WorkflowStatus.FAILED

    working = ExecutionEngine(storage, broadcaster, FakeAgent(responses=["ok"]))
    resumption = ResumptionManager(storage, working)
    resumption.register_workflow(config)
    final = await resumption.resume_execution(execution_id)

    assert final.status == WorkflowStatus.COMPLETED
    record = await storage.get_execution(execution_id)
    assert record.last_error is None
    assert record.node_states["a"].status == NodeStatus.COMPLETED
    assert record.node_states["a"].error is None


@pytest.mark.asyncio
async def test_removed_node_rejects_resume(storage, broadcaster, resumption):
    resumption.register_workflow(
        WorkflowConfig(id="wf", nodes=[eval_node("a", lambda s: {}, then=END)])
    )
    execution_id = await save_checkpoint(
        storage, status=WorkflowStatus.PAUSED, current_node="b"
    )
    subscription = broadcaster.subscribe(execution_id)

    with pytest.raises(ConfigurationError, match="node 'b' no longer exists"):
        await resumption.resume_execution(execution_id)

    record = await storage.get_execution(execution_id)
    assert record.status == WorkflowStatus.FAILED
    assert record.last_error.startswith("Cannot resume: node 'b' no longer exists")

    events = [event async for event in subscription]
    assert [e.type for e in events] == [EventType.WORKFLOW_RESUMED, EventType.WORKFLOW_FAILED]


@pytest.mark.asyncio
async def test_invalid_graph_rejects_resume(storage, resumption):
    resumption.register_workflow(
        WorkflowConfig(id="wf", nodes=[eval_node("a", lambda s: {}, then="gone")])
    )
    execution_id = await save_checkpoint(
        storage, status=WorkflowStatus.PAUSED, current_node="a"
    )

    with pytest.raises(ConfigurationError):
        await resumption.resume_execution(execution_id)

    record = await storage.get_execution(execution_id)
    assert record.status == WorkflowStatus.FAILED
    assert record.last_error.startswith("Cannot resume: Workflow 'wf' has invalid transitions")


@pytest.mark.asyncio
async def test_completed_execution_cannot_resume(storage, resumption):
    resumption.register_workflow(counting_config([]))
    execution_id = await save_checkpoint(
        storage, status=WorkflowStatus.COMPLETED, current_node=END
    )

    with pytest.raises(ResumptionError, match="already completed"):
        await resumption.resume_execution(execution_id)


@pytest.mark.asyncio
async def test_unregistered_workflow_cannot_resume(storage, resumption):
    execution_id = await save_checkpoint(storage, status=WorkflowStatus.PAUSED, current_node="a")

    with pytest.raises(ResumptionError, match="not registered"):
        await resumption.resume_execution(execution_id)


@pytest.mark.asyncio
async def test_unknown_execution(resumption):
    from uuid import uuid4

    with pytest.raises(ExecutionNotFoundError):
        await resumption.resume_execution(uuid4())


@pytest.mark.asyncio
async def test_resumption_details(storage, resumption):
    resumption.register_workflow(counting_config([]))
    execution_id = await save_checkpoint(
        storage,
        status=WorkflowStatus.FAILED,
        current_node="b",
        last_error="Command timed out after 5s: make",
        node_states={
            "a": NodeExecutionState(node_id="a", status=NodeStatus.COMPLETED),
            "b": NodeExecutionState(node_id="b", status=NodeStatus.RUNNING),
        },
    )

    details = await resumption.get_resumption_details(execution_id)

    analysis = details["resumption_analysis"]
    assert analysis["resumable"] is True
    assert analysis["next_node"] == "b"
    assert analysis["completed_nodes"] == ["a"]
    assert analysis["interrupted_nodes"] == ["b"]
    assert analysis["remaining_nodes"] == ["b", "c"]
    messages = [r["message"] for r in details["recommendations"]]
    assert any("timeout" in message for message in messages)

    summary = await resumption.list_resumable_executions("wf")
    assert summary["total_resumable_executions"] == 1
    assert summary["by_status"]["failed"] == 1
