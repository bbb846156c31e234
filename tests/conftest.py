"""Shared fixtures for the test suite."""

from typing import Any, Dict, List, Optional

import pytest

from graph_rollback import (
    AgentResponse,
    EventBroadcaster,
    ExecutionEngine,
    ExecutionRecord,
    SQLiteStorage,
    WorkflowConfig,
    WorkflowState,
    build_graph,
    create_initial_state,
)


class FakeAgent:
    """Agent capability returning canned responses and recording calls."""

    def __init__(
        self,
        responses: Optional[List[str]] = None,
        error: Optional[Exception] = None,
        model: Optional[str] = "fake-model",
    ):
        self.responses = list(responses or [])
        self.error = error
        self.model = model
        self.calls: List[Dict[str, Any]] = []

    async def run_step(
        self,
        state: WorkflowState,
        instruction: str,
        *,
        system: Optional[str] = None,
        tools: Optional[List[Any]] = None,
        model: Optional[str] = None,
        max_turns: Optional[int] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AgentResponse:
        self.calls.append(
            {
                "instruction": instruction,
                "system": system,
                "tools": tools,
                "model": model,
                "max_turns": max_turns,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "context": dict(state.context),
            }
        )
        if self.error is not None:
            raise self.error
        text = self.responses.pop(0) if self.responses else f"response {len(self.calls)}"
        return AgentResponse(response=text, model=model or self.model)


@pytest.fixture
def fake_agent():
    return FakeAgent()


@pytest.fixture
async def storage():
    """In-memory checkpoint store."""
    store = SQLiteStorage(":memory:")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def broadcaster():
    return EventBroadcaster()


@pytest.fixture
def engine(storage, broadcaster, fake_agent):
    return ExecutionEngine(storage, broadcaster, fake_agent)


async def start_execution(storage, config: WorkflowConfig, context=None):
    """Create a checkpoint and return its id with the graph and initial state."""
    graph = build_graph(config)
    state = create_initial_state(config, context)
    record = await storage.create_execution(
        ExecutionRecord(
            workflow_id=config.id,
            current_node=state.current_node,
            context=state.context,
        )
    )
    return record.execution_id, graph, state


@pytest.fixture
def start(storage):
    async def _start(config: WorkflowConfig, context=None):
        return await start_execution(storage, config, context)

    return _start
