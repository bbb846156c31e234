"""Execution monitoring and per-execution logging.

This module provides:
- ``ExecutionMonitor``: a broadcaster listener keeping live metrics
- ``ExecutionLogger``: logs to stdlib logging, the store and the event stream
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set
from uuid import UUID

from ..core.models import LogEntry, utcnow
from ..storage.base import StorageBackend
from .broadcaster import EventBroadcaster
from .events import EventFactory, EventType, ExecutionEvent

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class ExecutionMonitor:
    """Collects metrics for executions as their events stream past."""

    def __init__(self, broadcaster: Optional[EventBroadcaster] = None):
        self._active_executions: Dict[str, Dict[str, Any]] = {}
        self._finished: Dict[str, Dict[str, Any]] = {}
        if broadcaster is not None:
            self.attach(broadcaster)

    def attach(self, broadcaster: EventBroadcaster) -> None:
        broadcaster.add_listener(self.handle_event)

    def detach(self, broadcaster: EventBroadcaster) -> None:
        broadcaster.remove_listener(self.handle_event)

    def _info(self, execution_id: str) -> Dict[str, Any]:
        info = self._active_executions.get(execution_id)
        if info is None:
            info = {
                "start_time": utcnow(),
                "current_node": None,
                "status": "running",
                "metrics": {
                    "nodes_started": 0,
                    "nodes_completed": 0,
                    "nodes_failed": 0,
                    "logs": 0,
                    "resumes": 0,
                },
            }
            self._active_executions[execution_id] = info
        return info

    def handle_event(self, event: ExecutionEvent) -> None:
        """Update metrics for one event."""
        execution_id = str(event.execution_id)
        finished = self._finished.get(execution_id)
        if finished is not None and event.type == EventType.LOG:
            # Logged after the terminal event
            finished["metrics"]["logs"] += 1
            return
        if finished is not None and event.type == EventType.WORKFLOW_RESUMED:
            self._active_executions[execution_id] = self._finished.pop(execution_id)
        info = self._info(execution_id)
        metrics = info["metrics"]

        if event.type == EventType.NODE_STARTED:
            metrics["nodes_started"] += 1
            info["current_node"] = event.node_id
        elif event.type == EventType.NODE_COMPLETED:
            metrics["nodes_completed"] += 1
            info["current_node"] = event.current_node_id
        elif event.type == EventType.NODE_FAILED:
            metrics["nodes_failed"] += 1
        elif event.type == EventType.LOG:
            metrics["logs"] += 1
        elif event.type == EventType.WORKFLOW_RESUMED:
            metrics["resumes"] += 1
            info["status"] = "running"
        elif event.type == EventType.WORKFLOW_PAUSED:
            info["status"] = "paused"

        if event.is_terminal:
            info["status"] = event.status
            info["end_time"] = event.timestamp
            info["duration_seconds"] = (event.timestamp - info["start_time"]).total_seconds()

            # Log summary
            logger.info(
                f"Execution {execution_id} {event.status} "
                f"in {info['duration_seconds']:.2f}s - Metrics: {metrics}"
            )
            self._finished[execution_id] = self._active_executions.pop(execution_id)

    def get_active_executions(self) -> List[Dict[str, Any]]:
        """Get information about executions that have not finished.

        Returns:
            List of active execution information
        """
        now = utcnow()
        return [
            {
                "execution_id": execution_id,
                "current_node": info["current_node"],
                "status": info["status"],
                "duration_seconds": (now - info["start_time"]).total_seconds(),
                "metrics": dict(info["metrics"]),
            }
            for execution_id, info in self._active_executions.items()
        ]

    def get_execution_metrics(self, execution_id: Any) -> Optional[Dict[str, Any]]:
        """Get metrics for an execution, active or finished."""
        key = str(execution_id)
        info = self._active_executions.get(key) or self._finished.get(key)
        if info is None:
            return None
        return dict(info["metrics"])


class ExecutionLogger:
    """Logger bound to one execution and optionally one node.

    Each call logs through the module logger and publishes a ``log`` event
    immediately, so log events keep their order relative to the engine's
    events. The ``store.add_log`` write runs in the background; its failures
    are logged and never raised.
    """

    def __init__(
        self,
        execution_id: UUID,
        store: Optional[StorageBackend] = None,
        broadcaster: Optional[EventBroadcaster] = None,
        node_id: Optional[str] = None,
        _pending: Optional[Set[asyncio.Task]] = None,
    ):
        self.execution_id = execution_id
        self.store = store
        self.broadcaster = broadcaster
        self.node_id = node_id
        self._pending: Set[asyncio.Task] = _pending if _pending is not None else set()

    def for_node(self, node_id: str) -> "ExecutionLogger":
        return ExecutionLogger(
            self.execution_id, self.store, self.broadcaster, node_id, self._pending
        )

    def debug(self, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.log("debug", message, metadata)

    def info(self, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.log("info", message, metadata)

    def warning(self, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.log("warning", message, metadata)

    def error(self, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.log("error", message, metadata)

    def log(self, level: str, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        prefix = f"[{self.execution_id}]"
        if self.node_id:
            prefix = f"{prefix}[{self.node_id}]"
        logger.log(_LOG_LEVELS.get(level, logging.INFO), f"{prefix} {message}")

        if self.store is None and self.broadcaster is None:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, log entry not persisted")
            return

        entry = LogEntry(
            execution_id=self.execution_id,
            level=level,
            message=message,
            node_id=self.node_id,
            metadata=metadata,
        )
        if self.broadcaster is not None:
            try:
                self.broadcaster.publish(entry.execution_id, EventFactory.log(entry))
            except Exception as e:
                logger.error(f"Failed to broadcast log entry: {e}", exc_info=True)

        if self.store is not None:
            task = loop.create_task(self._persist(entry))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _persist(self, entry: LogEntry) -> None:
        try:
            await self.store.add_log(entry)
        except Exception as e:
            logger.error(f"Failed to persist log entry: {e}", exc_info=True)

    async def flush(self) -> None:
        """Wait for background log writes to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
