"""Core data models for the graph execution engine.

These models define the engine-owned envelope around the open ``context``
map that workflow nodes read and write. Using Pydantic keeps the checkpoint
format validated on the way in and out of storage.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class WorkflowStatus(str, Enum):
    """Workflow execution status."""

    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class NodeStatus(str, Enum):
    """Per-node execution status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SpecialNode(str, Enum):
    """Reserved node names that are not backed by a runtime."""

    END = "END"
    ERROR = "ERROR"


END = SpecialNode.END.value
ERROR = SpecialNode.ERROR.value
TERMINAL_NODES = frozenset({END, ERROR})

RESUMABLE_STATUSES = (
    WorkflowStatus.PENDING,
    WorkflowStatus.RUNNING,
    WorkflowStatus.PAUSED,
    WorkflowStatus.FAILED,
)


def is_terminal_node(node_name: str) -> bool:
    return node_name in TERMINAL_NODES


class StoredMessage(BaseModel):
    """A single turn of agent conversation history."""

    type: Literal["user", "assistant", "result", "system"]
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: Optional[Dict[str, Any]] = None


class StateUpdate(BaseModel):
    """Partial state returned by a node runtime.

    ``context`` is merged shallowly into the workflow context and
    ``conversation_history`` is appended. Nothing else in the workflow
    state is reachable from a node.
    """

    context: Optional[Dict[str, Any]] = None
    conversation_history: List[StoredMessage] = Field(default_factory=list)


class WorkflowState(BaseModel):
    """Live state of one workflow run, owned by the execution loop."""

    current_node: str
    status: WorkflowStatus = WorkflowStatus.PENDING
    context: Dict[str, Any] = Field(default_factory=dict)
    conversation_history: List[StoredMessage] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=utcnow)

    def apply_update(self, update: StateUpdate) -> "WorkflowState":
        """Return a new state with ``update`` merged in."""
        return self.model_copy(
            update={
                "context": {**self.context, **(update.context or {})},
                "conversation_history": [
                    *self.conversation_history,
                    *update.conversation_history,
                ],
                "updated_at": utcnow(),
            }
        )

    def advance(self, next_node: str) -> "WorkflowState":
        return self.model_copy(update={"current_node": next_node, "updated_at": utcnow()})

    def with_status(self, status: WorkflowStatus) -> "WorkflowState":
        return self.model_copy(update={"status": status, "updated_at": utcnow()})

    def snapshot(self) -> "WorkflowState":
        """Deep copy handed to node runtimes so they cannot mutate engine state."""
        return self.model_copy(deep=True)


class NodeExecutionState(BaseModel):
    """Execution bookkeeping for one node, keyed by node name."""

    node_id: str
    status: NodeStatus = NodeStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[Any] = None
    error: Optional[str] = None


class ExecutionRecord(BaseModel):
    """Durable checkpoint of a workflow execution."""

    execution_id: UUID = Field(default_factory=uuid4)
    workflow_id: str
    status: WorkflowStatus = WorkflowStatus.PENDING
    current_node: str
    context: Dict[str, Any] = Field(default_factory=dict)
    node_states: Dict[str, NodeExecutionState] = Field(default_factory=dict)
    conversation_history: List[StoredMessage] = Field(default_factory=list)
    last_error: Optional[str] = None
    retry_count: int = Field(default=0, ge=0)
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_finished(self) -> bool:
        return self.status in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED)

    def to_state(self) -> WorkflowState:
        """Rebuild the live workflow state from this checkpoint."""
        return WorkflowState(
            current_node=self.current_node,
            status=self.status,
            context=dict(self.context),
            conversation_history=list(self.conversation_history),
            updated_at=self.updated_at,
        )

    def completed_nodes(self) -> List[str]:
        return [
            name
            for name, node_state in self.node_states.items()
            if node_state.status == NodeStatus.COMPLETED
        ]

    def running_node(self) -> Optional[str]:
        for name, node_state in self.node_states.items():
            if node_state.status == NodeStatus.RUNNING:
                return name
        return None


class LogEntry(BaseModel):
    """A persisted execution log line."""

    model_config = ConfigDict(use_enum_values=True)

    execution_id: UUID
    level: Literal["debug", "info", "warning", "error"] = "info"
    message: str
    node_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=utcnow)

    @field_validator("level", mode="before")
    def normalize_level(cls, v: Any) -> Any:
        """Accept ``warn`` and upper-case level names."""
        if isinstance(v, str):
            v = v.lower()
            if v == "warn":
                return "warning"
        return v
