"""Basic tests for the Graph Rollback system."""

import asyncio

import pytest

from graph_rollback import (
    END,
    ConfigurationError,
    EventType,
    ExecutionNotFoundError,
    Settings,
    SQLiteStorage,
    WorkflowManager,
    WorkflowStatus,
    agent_node,
    command_node,
    eval_node,
)

from conftest import FakeAgent

WORKFLOW = {
    "id": "build_and_review",
    "name": "Build and review",
    "initial_context": {"target": "all"},
    "nodes": [
        {"type": "command", "name": "build", "command": "echo built", "then": "review"},
        {"type": "agent", "name": "review", "prompt": "Review the build output", "then": "count"},
        {
            "type": "eval",
            "name": "count",
            "update": lambda s: {"reviews": len(s.conversation_history)},
        },
    ],
}


@pytest.fixture
async def manager():
    """Create a workflow manager for testing."""
    storage = SQLiteStorage(":memory:")  # In-memory database for tests
    manager = WorkflowManager(storage=storage, agent=FakeAgent(responses=["lgtm"]))
    await manager.initialize()
    yield manager
    await manager.close()


@pytest.mark.asyncio
async def test_run_workflow(manager):
    """Run a registered workflow to completion."""
    manager.register_workflow(WORKFLOW)

    final = await manager.run_workflow("build_and_review")

    assert final.status == WorkflowStatus.COMPLETED
    assert final.current_node == END
    assert final.context["target"] == "all"
    assert final.context["lastCommandResult"]["stdout"] == "built\n"
    assert final.context["reviews"] == 1
    assert final.conversation_history[0].content == "lgtm"


@pytest.mark.asyncio
async def test_start_workflow_in_background(manager):
    """Start a workflow and follow it through a subscription."""
    manager.register_workflow(WORKFLOW)

    execution_id = await manager.start_workflow("build_and_review", {"target": "lib"})
    subscription = manager.subscribe(execution_id)

    assert isinstance(execution_id, str)
    events = [event async for event in subscription]
    assert events[-1].type == EventType.WORKFLOW_COMPLETED

    record = await manager.get_execution(execution_id)
    assert record.status == WorkflowStatus.COMPLETED
    assert record.context["target"] == "lib"
    assert manager.get_active_executions() == []


@pytest.mark.asyncio
async def test_unknown_workflow(manager):
    with pytest.raises(ConfigurationError, match="Unknown workflow"):
        await manager.start_workflow("missing")


@pytest.mark.asyncio
async def test_invalid_workflow_rejected_at_registration(manager):
    with pytest.raises(ConfigurationError):
        manager.register_workflow(
            {"id": "broken", "nodes": [{"type": "command", "name": "a", "command": "true", "then": "b"}]}
        )


@pytest.mark.asyncio
async def test_pause_and_resume(manager):
    """Pause a running workflow between nodes and resume it."""
    release = asyncio.Event()
    runs = []

    async def wait_for_release(state):
        runs.append("gate")
        await release.wait()
        return {}

    manager.register_workflow(
        {
            "id": "gated",
            "nodes": [
                eval_node("gate", wait_for_release, then="after"),
                eval_node("after", lambda s: runs.append("after") or {"done": True}, then=END),
            ],
        }
    )

    execution_id = await manager.start_workflow("gated")
    subscription = manager.subscribe(execution_id, close_on_terminal=False)
    while "gate" not in runs:
        await asyncio.sleep(0.01)

    assert await manager.pause_workflow(execution_id) is True
    release.set()

    while True:
        event = await subscription.get(timeout=5)
        if event.type == EventType.WORKFLOW_PAUSED:
            break
    subscription.cancel()

    record = await manager.get_execution(execution_id)
    assert record.status == WorkflowStatus.PAUSED
    assert record.current_node == "after"
    assert runs == ["gate"]

    analysis = await manager.analyze_execution(execution_id)
    assert analysis["resumption_analysis"]["resumable"] is True
    assert analysis["resumption_analysis"]["next_node"] == "after"

    resumable = await manager.list_resumable_executions("gated")
    assert resumable["total_resumable_executions"] == 1

    final = await manager.resume_and_wait(execution_id)

    assert final.status == WorkflowStatus.COMPLETED
    assert runs == ["gate", "after"]
    assert await manager.pause_workflow(execution_id) is False


@pytest.mark.asyncio
async def test_resume_in_background_failed_command(manager, tmp_path):
    """A failed command node can be fixed outside the engine and resumed."""
    marker = tmp_path / "ready"
    manager.register_workflow(
        {
            "id": "flaky",
            "nodes": [command_node("check", f"test -f {marker}", then=END)],
        }
    )

    final = await manager.run_workflow("flaky")
    assert final.status == WorkflowStatus.FAILED

    execution_id = (await manager.storage.list_executions(workflow_id="flaky"))[0].execution_id
    marker.write_text("ok")

    subscription = manager.subscribe(execution_id)
    await manager.resume_workflow(execution_id)
    events = [event async for event in subscription]

    assert events[0].type == EventType.WORKFLOW_RESUMED
    assert events[-1].type == EventType.WORKFLOW_COMPLETED
    record = await manager.get_execution(execution_id)
    assert record.status == WorkflowStatus.COMPLETED
    assert record.retry_count == 1


@pytest.mark.asyncio
async def test_logs_and_streams(manager):
    manager.register_workflow(
        {"id": "single", "nodes": [agent_node("ask", "hello", then=END)]}
    )

    final = await manager.run_workflow("single")
    records = await manager.storage.list_executions(workflow_id="single")
    logs = await manager.get_logs(records[0].execution_id)

    assert final.status == WorkflowStatus.COMPLETED
    assert any(entry.node_id == "ask" for entry in logs)

    sink = manager.open_stream(records[0].execution_id)
    manager.close_stream(records[0].execution_id, sink)
    assert [frame async for frame in sink] == []


@pytest.mark.asyncio
async def test_pause_unknown_execution(manager):
    from uuid import uuid4

    with pytest.raises(ExecutionNotFoundError):
        await manager.pause_workflow(str(uuid4()))


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("STORAGE_BACKEND", "SQLITE")
    monkeypatch.setenv("SUBSCRIBER_QUEUE_SIZE", "5")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.delenv("POSTGRES_DSN", raising=False)

    settings = Settings.from_environment()

    assert settings.storage_backend == "sqlite"
    assert settings.subscriber_queue_size == 5
    assert settings.log_level == "DEBUG"


def test_manager_uses_given_settings(tmp_path):
    settings = Settings(sqlite_db_path=str(tmp_path / "mine.db"), command_timeout=12)

    manager = WorkflowManager(agent=FakeAgent(), settings=settings)

    assert isinstance(manager.storage, SQLiteStorage)
    assert manager.storage.db_path == str(tmp_path / "mine.db")
    assert manager.engine.settings.command_timeout == 12
