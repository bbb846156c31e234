"""Tests for the execution loop."""

import asyncio

import pytest

from graph_rollback import (
    END,
    ERROR,
    EventType,
    ExecutionEngine,
    NodeStatus,
    WorkflowConfig,
    WorkflowState,
    Settings,
    WorkflowStatus,
    agent_node,
    command_node,
    eval_node,
)

from conftest import FakeAgent


async def drain(subscription):
    """Collect queued non-log events."""
    subscription.cancel()
    return [event async for event in subscription if event.type != EventType.LOG]


@pytest.mark.asyncio
async def test_two_node_workflow_completes(storage, broadcaster, engine, start):
    config = WorkflowConfig(
        id="wf",
        nodes=[
            eval_node("a", lambda s: {"a": 1}, then="b"),
            eval_node("b", lambda s: {"b": s.context["a"] + 1}, then=END),
        ],
    )
    execution_id, graph, state = await start(config, {"seed": True})
    subscription = broadcaster.subscribe(execution_id)

    final = await engine.run(execution_id, graph, state)

    assert final.status == WorkflowStatus.COMPLETED
    assert final.current_node == END
    assert final.context["a"] == 1
    assert final.context["b"] == 2
    assert final.context["seed"] is True

    record = await storage.get_execution(execution_id)
    assert record.status == WorkflowStatus.COMPLETED
    assert record.current_node == END
    assert record.context["b"] == 2
    assert record.completed_at is not None
    assert record.node_states["a"].status == NodeStatus.COMPLETED
    assert record.node_states["b"].status == NodeStatus.COMPLETED
    assert record.node_states["b"].result["b"] == 2

    events = await drain(subscription)
    assert [(e.type, e.node_id) for e in events] == [
        (EventType.NODE_STARTED, "a"),
        (EventType.NODE_COMPLETED, "a"),
        (EventType.NODE_STARTED, "b"),
        (EventType.NODE_COMPLETED, "b"),
        (EventType.WORKFLOW_COMPLETED, None),
    ]
    assert events[1].current_node_id == "b"
    assert events[-1].context["b"] == 2


@pytest.mark.asyncio
async def test_node_failure_fails_workflow(storage, broadcaster, start):
    engine = ExecutionEngine(storage, broadcaster, FakeAgent(error=RuntimeError("boom")))
    calls = []
    config = WorkflowConfig(
        id="wf",
        nodes=[
            agent_node("a", "do it", then="b"),
            eval_node("b", lambda s: calls.append("b") or {}),
        ],
    )
    execution_id, graph, state = await start(config)
    subscription = broadcaster.subscribe(execution_id)

    final = await engine.run(execution_id, graph, state)

    assert final.status == WorkflowStatus.FAILED
    assert calls == []

    record = await storage.get_execution(execution_id)
    assert record.status == WorkflowStatus.FAILED
    assert record.last_error == "boom"
    assert record.current_node == "a"
    assert record.node_states["a"].status == NodeStatus.FAILED
    assert record.node_states["a"].error == "boom"
    assert "b" not in record.node_states

    events = await drain(subscription)
    assert [e.type for e in events] == [
        EventType.NODE_STARTED,
        EventType.NODE_FAILED,
        EventType.WORKFLOW_FAILED,
    ]
    assert events[1].node_state == {"status": "failed", "error": "boom"}
    assert events[2].error == "boom"


@pytest.mark.asyncio
async def test_error_sentinel_fails_workflow(storage, engine, start):
    config = WorkflowConfig(
        id="wf",
        nodes=[eval_node("check", lambda s: {"ok": False}, then=lambda s: END if s.context["ok"] else ERROR)],
    )
    execution_id, graph, state = await start(config)

    final = await engine.run(execution_id, graph, state)

    assert final.status == WorkflowStatus.FAILED
    record = await storage.get_execution(execution_id)
    assert record.status == WorkflowStatus.FAILED
    assert record.current_node == ERROR
    assert record.last_error == "Workflow reached the ERROR node"
    assert record.node_states["check"].status == NodeStatus.COMPLETED


@pytest.mark.asyncio
async def test_invalid_dynamic_target_fails_workflow(storage, engine, start):
    config = WorkflowConfig(id="wf", nodes=[eval_node("a", lambda s: {}, then=lambda s: "nowhere")])
    execution_id, graph, state = await start(config)

    final = await engine.run(execution_id, graph, state)

    assert final.status == WorkflowStatus.FAILED
    record = await storage.get_execution(execution_id)
    assert record.last_error.startswith('Node "a" next() returned invalid target "nowhere"')
    assert record.node_states["a"].status == NodeStatus.FAILED


@pytest.mark.asyncio
async def test_missing_node_fails_workflow(storage, engine, start):
    config = WorkflowConfig(id="wf", nodes=[eval_node("a", lambda s: {})])
    execution_id, graph, _ = await start(config)

    final = await engine.run(execution_id, graph, WorkflowState(current_node="ghost"))

    assert final.status == WorkflowStatus.FAILED
    record = await storage.get_execution(execution_id)
    assert record.last_error == "Node 'ghost' does not exist in workflow wf"


@pytest.mark.asyncio
async def test_pause_between_nodes(storage, broadcaster, engine, start):
    holder = {}
    calls = []

    async def request_pause(s):
        calls.append("a")
        await storage.update_execution(holder["id"], {"status": WorkflowStatus.PAUSED})
        return {"a": True}

    config = WorkflowConfig(
        id="wf",
        nodes=[
            eval_node("a", request_pause, then="b"),
            eval_node("b", lambda s: calls.append("b") or {}),
        ],
    )
    execution_id, graph, state = await start(config)
    holder["id"] = execution_id
    subscription = broadcaster.subscribe(execution_id)

    final = await engine.run(execution_id, graph, state)

    assert final.status == WorkflowStatus.PAUSED
    assert final.current_node == "b"
    assert calls == ["a"]

    record = await storage.get_execution(execution_id)
    assert record.status == WorkflowStatus.PAUSED
    assert record.current_node == "b"
    assert record.context["a"] is True

    events = await drain(subscription)
    assert events[-1].type == EventType.WORKFLOW_PAUSED
    assert events[-1].current_node_id == "b"


@pytest.mark.asyncio
async def test_loop_reruns_node(storage, engine, start):
    config = WorkflowConfig(
        id="wf",
        nodes=[
            eval_node(
                "inc",
                lambda s: {"count": s.context.get("count", 0) + 1},
                then=lambda s: "inc" if s.context["count"] < 3 else END,
            )
        ],
    )
    execution_id, graph, state = await start(config)

    final = await engine.run(execution_id, graph, state)

    assert final.status == WorkflowStatus.COMPLETED
    assert final.context["count"] == 3
    record = await storage.get_execution(execution_id)
    assert record.node_states["inc"].status == NodeStatus.COMPLETED


@pytest.mark.asyncio
async def test_conversation_history_accumulates(storage, engine, fake_agent, start):
    fake_agent.responses = ["first", "second"]
    config = WorkflowConfig(
        id="wf",
        nodes=[agent_node("a", "step one", then="b"), agent_node("b", "step two")],
    )
    execution_id, graph, state = await start(config)

    final = await engine.run(execution_id, graph, state)

    assert [m.content for m in final.conversation_history] == ["first", "second"]
    record = await storage.get_execution(execution_id)
    assert [m.content for m in record.conversation_history] == ["first", "second"]


@pytest.mark.asyncio
async def test_execution_logs_are_persisted(storage, engine, start):
    config = WorkflowConfig(id="wf", nodes=[eval_node("a", lambda s: {})])
    execution_id, graph, state = await start(config)

    await engine.run(execution_id, graph, state)

    messages = [entry.message for entry in await storage.get_logs(execution_id)]
    assert "Workflow completed" in messages


@pytest.mark.asyncio
async def test_store_failures_do_not_stop_the_run(storage, engine, start):
    config = WorkflowConfig(id="wf", nodes=[eval_node("a", lambda s: {"x": 1})])
    execution_id, graph, state = await start(config)

    async def broken_update(*args, **kwargs):
        raise RuntimeError("disk full")

    storage.update_execution = broken_update

    final = await engine.run(execution_id, graph, state)

    assert final.status == WorkflowStatus.COMPLETED
    assert final.context["x"] == 1


def label(event):
    if event.type == EventType.LOG:
        return ("log", event.log["message"])
    return (event.type.value, event.node_id)


@pytest.mark.asyncio
async def test_events_follow_step_order(broadcaster, engine, start):
    config = WorkflowConfig(id="wf", nodes=[eval_node("a", lambda s: {"x": 1})])
    execution_id, graph, state = await start(config)
    subscription = broadcaster.subscribe(execution_id)

    await engine.run(execution_id, graph, state)

    events = [event async for event in subscription]
    assert [label(e) for e in events] == [
        ("log", "Running workflow wf from node a"),
        ("node_started", "a"),
        ("log", "Updated keys: x"),
        ("node_completed", "a"),
        ("log", "Workflow completed"),
        ("workflow_completed", None),
    ]


class StuckSink:
    async def write(self, data: bytes) -> None:
        await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_stuck_stream_consumer_does_not_block_run(broadcaster, engine, start):
    config = WorkflowConfig(
        id="wf",
        nodes=[eval_node("a", lambda s: {"a": 1}, then="b"), eval_node("b", lambda s: {})],
    )
    execution_id, graph, state = await start(config)
    sink = StuckSink()
    broadcaster.streams.subscribe(execution_id, sink)

    final = await asyncio.wait_for(engine.run(execution_id, graph, state), timeout=5)

    assert final.status == WorkflowStatus.COMPLETED
    broadcaster.streams.unsubscribe(execution_id, sink)


@pytest.mark.asyncio
async def test_pause_before_first_node_is_honored(storage, broadcaster, engine, start):
    calls = []
    config = WorkflowConfig(
        id="wf",
        nodes=[eval_node("a", lambda s: calls.append("a") or {})],
    )
    execution_id, graph, state = await start(config)
    await storage.update_execution(execution_id, {"status": WorkflowStatus.PAUSED})
    subscription = broadcaster.subscribe(execution_id, close_on_terminal=False)

    final = await engine.run(execution_id, graph, state)

    assert final.status == WorkflowStatus.PAUSED
    assert final.current_node == "a"
    assert calls == []
    record = await storage.get_execution(execution_id)
    assert record.status == WorkflowStatus.PAUSED

    events = await drain(subscription)
    assert [(e.type, e.current_node_id) for e in events] == [(EventType.WORKFLOW_PAUSED, "a")]


@pytest.mark.asyncio
async def test_default_command_timeout_comes_from_settings(storage, broadcaster, start):
    engine = ExecutionEngine(storage, broadcaster, settings=Settings(command_timeout=0.2))
    config = WorkflowConfig(id="wf", nodes=[command_node("slow", "sleep 5")])
    execution_id, graph, state = await start(config)

    final = await engine.run(execution_id, graph, state)

    assert final.status == WorkflowStatus.FAILED
    record = await storage.get_execution(execution_id)
    assert "timed out after 0.2s" in record.last_error
