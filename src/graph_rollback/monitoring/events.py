"""Event definitions for execution streaming.

Every event carries the execution id and a timestamp. The remaining fields
depend on the event type and are omitted from the serialized payload when
unset.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID

from ..core.models import LogEntry, NodeExecutionState, utcnow


class EventType(str, Enum):
    """Types of events that can occur during an execution."""

    # Node events
    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"
    NODE_FAILED = "node_failed"

    # Workflow lifecycle events
    WORKFLOW_PAUSED = "workflow_paused"
    WORKFLOW_RESUMED = "workflow_resumed"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_FAILED = "workflow_failed"

    LOG = "log"


TERMINAL_EVENTS = frozenset({EventType.WORKFLOW_COMPLETED, EventType.WORKFLOW_FAILED})


@dataclass
class ExecutionEvent:
    """An execution event delivered to every subscriber."""

    type: EventType
    execution_id: UUID
    timestamp: datetime = field(default_factory=utcnow)
    node_id: Optional[str] = None
    status: Optional[str] = None
    current_node_id: Optional[str] = None
    context: Optional[Dict[str, Any]] = None
    node_state: Optional[Dict[str, Any]] = None
    log: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary."""
        payload = {
            "type": self.type.value,
            "execution_id": str(self.execution_id),
            "timestamp": self.timestamp.isoformat(),
            "node_id": self.node_id,
            "status": self.status,
            "current_node_id": self.current_node_id,
            "context": self.context,
            "node_state": self.node_state,
            "log": self.log,
            "error": self.error,
        }
        return {key: value for key, value in payload.items() if value is not None}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def to_sse(self) -> bytes:
        """Encode as a server-sent events frame."""
        return f"data: {self.to_json()}\n\n".encode("utf-8")


def _node_state_payload(node_state: NodeExecutionState) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"status": node_state.status.value}
    if node_state.result is not None:
        payload["output"] = node_state.result
    if node_state.error is not None:
        payload["error"] = node_state.error
    return payload


class EventFactory:
    """Factory for creating execution events."""

    @staticmethod
    def node_started(execution_id: UUID, node_id: str) -> ExecutionEvent:
        return ExecutionEvent(
            type=EventType.NODE_STARTED,
            execution_id=execution_id,
            node_id=node_id,
            status="running",
        )

    @staticmethod
    def node_completed(
        execution_id: UUID,
        node_state: NodeExecutionState,
        current_node_id: str,
        context: Dict[str, Any],
    ) -> ExecutionEvent:
        return ExecutionEvent(
            type=EventType.NODE_COMPLETED,
            execution_id=execution_id,
            node_id=node_state.node_id,
            status=node_state.status.value,
            current_node_id=current_node_id,
            context=context,
            node_state=_node_state_payload(node_state),
        )

    @staticmethod
    def node_failed(execution_id: UUID, node_state: NodeExecutionState) -> ExecutionEvent:
        return ExecutionEvent(
            type=EventType.NODE_FAILED,
            execution_id=execution_id,
            node_id=node_state.node_id,
            status=node_state.status.value,
            node_state=_node_state_payload(node_state),
            error=node_state.error,
        )

    @staticmethod
    def workflow_paused(
        execution_id: UUID, current_node_id: str, context: Dict[str, Any]
    ) -> ExecutionEvent:
        return ExecutionEvent(
            type=EventType.WORKFLOW_PAUSED,
            execution_id=execution_id,
            status="paused",
            current_node_id=current_node_id,
            context=context,
        )

    @staticmethod
    def workflow_resumed(execution_id: UUID, current_node_id: str) -> ExecutionEvent:
        return ExecutionEvent(
            type=EventType.WORKFLOW_RESUMED,
            execution_id=execution_id,
            status="running",
            current_node_id=current_node_id,
        )

    @staticmethod
    def workflow_completed(
        execution_id: UUID, current_node_id: str, context: Dict[str, Any]
    ) -> ExecutionEvent:
        return ExecutionEvent(
            type=EventType.WORKFLOW_COMPLETED,
            execution_id=execution_id,
            status="completed",
            current_node_id=current_node_id,
            context=context,
        )

    @staticmethod
    def workflow_failed(
        execution_id: UUID,
        error: str,
        current_node_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> ExecutionEvent:
        return ExecutionEvent(
            type=EventType.WORKFLOW_FAILED,
            execution_id=execution_id,
            status="failed",
            current_node_id=current_node_id,
            context=context,
            error=error,
        )

    @staticmethod
    def log(entry: LogEntry) -> ExecutionEvent:
        return ExecutionEvent(
            type=EventType.LOG,
            execution_id=entry.execution_id,
            node_id=entry.node_id,
            log=entry.model_dump(mode="json", exclude={"execution_id"}, exclude_none=True),
        )
