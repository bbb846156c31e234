"""Base storage interface for execution checkpoints.

This abstract base class defines the contract that all checkpoint stores
must follow, so that the engine can run against any backend without change.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic_core import to_jsonable_python

from ..core.models import (
    ExecutionRecord,
    LogEntry,
    NodeExecutionState,
    StoredMessage,
    WorkflowStatus,
    utcnow,
)

# Columns holding JSON documents
JSON_FIELDS = frozenset({"context", "node_states", "conversation_history"})

# Fields that may be changed after an execution is created
UPDATABLE_FIELDS = frozenset(
    {
        "status",
        "current_node",
        "context",
        "node_states",
        "conversation_history",
        "last_error",
        "retry_count",
        "completed_at",
    }
)

FINISHED_STATUSES = (WorkflowStatus.COMPLETED.value, WorkflowStatus.FAILED.value)


def _jsonable(name: str, value: Any) -> Any:
    if name == "node_states":
        value = {
            node_name: NodeExecutionState.model_validate(node_state)
            for node_name, node_state in (value or {}).items()
        }
    elif name == "conversation_history":
        value = [StoredMessage.model_validate(message) for message in (value or [])]
    return to_jsonable_python(value if value is not None else {}, fallback=str)


def normalize_update(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a partial update and convert it to storable values.

    JSON fields become plain JSON-compatible structures, ``status`` becomes its
    string value and ``updated_at`` is stamped.

    Raises:
        ValueError: If a field cannot be updated
    """
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update execution fields: {', '.join(sorted(unknown))}")

    normalized: Dict[str, Any] = {}
    for name, value in fields.items():
        if name in JSON_FIELDS:
            value = _jsonable(name, value)
        elif name == "status":
            value = WorkflowStatus(value).value
        normalized[name] = value
    normalized["updated_at"] = utcnow()
    return normalized


def serialize_documents(record: ExecutionRecord) -> Dict[str, Any]:
    """JSON columns of a new checkpoint, converted the same way as updates."""
    return {name: _jsonable(name, getattr(record, name)) for name in JSON_FIELDS}


class StorageBackend(ABC):
    """Abstract base class for checkpoint stores."""

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the storage backend (create tables, connections, etc.)."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close storage connections and cleanup resources."""
        pass

    # Execution Methods

    @abstractmethod
    async def create_execution(self, record: ExecutionRecord) -> ExecutionRecord:
        """Create a new execution checkpoint."""
        pass

    @abstractmethod
    async def get_execution(self, execution_id: UUID) -> Optional[ExecutionRecord]:
        """Get an execution checkpoint by ID."""
        pass

    @abstractmethod
    async def update_execution(self, execution_id: UUID, fields: Dict[str, Any]) -> bool:
        """Apply a partial update. Returns False if the execution does not exist."""
        pass

    @abstractmethod
    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ExecutionRecord]:
        """List executions with optional filters, newest first."""
        pass

    @abstractmethod
    async def delete_execution(self, execution_id: UUID) -> bool:
        """Delete an execution and its logs."""
        pass

    # Log Methods

    @abstractmethod
    async def add_log(self, entry: LogEntry) -> None:
        """Append an execution log entry."""
        pass

    @abstractmethod
    async def get_logs(
        self,
        execution_id: UUID,
        node_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[LogEntry]:
        """Get log entries for an execution in insertion order."""
        pass

    # Utility Methods

    @abstractmethod
    async def get_resumable_executions(
        self,
        workflow_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[ExecutionRecord]:
        """Get executions that have not completed."""
        pass

    @abstractmethod
    async def cleanup_old_executions(self, days: int = 30) -> int:
        """Delete finished executions older than ``days``. Returns the count."""
        pass
