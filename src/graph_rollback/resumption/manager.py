"""Execution resumption manager.

This module handles resuming executions from their last checkpoint:
- Rebuilding and re-validating the workflow graph
- Reconciling a node interrupted mid-execution
- Re-entering the execution loop past completed nodes
"""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from ..core.engine import ExecutionEngine
from ..core.errors import ConfigurationError, ExecutionNotFoundError, ResumptionError
from ..core.models import (
    ExecutionRecord,
    NodeExecutionState,
    WorkflowState,
    WorkflowStatus,
    is_terminal_node,
    utcnow,
)
from ..core.schema import WorkflowConfig
from ..monitoring.broadcaster import EventBroadcaster
from ..monitoring.events import EventFactory
from ..nodes.registry import Graph, build_graph
from ..storage.base import StorageBackend
from .analyzer import ExecutionAnalyzer

logger = logging.getLogger(__name__)


class ResumptionManager:
    """Manages execution resumption operations."""

    def __init__(
        self,
        storage: StorageBackend,
        engine: ExecutionEngine,
        broadcaster: Optional[EventBroadcaster] = None,
    ):
        """Initialize the resumption manager.

        Args:
            storage: Storage backend
            engine: Execution loop to re-enter
            broadcaster: Event fan-out, defaults to the engine's
        """
        self.storage = storage
        self.engine = engine
        self.broadcaster = broadcaster or engine.broadcaster
        self.analyzer = ExecutionAnalyzer(storage)
        self._workflow_registry: Dict[str, WorkflowConfig] = {}

    def register_workflow(self, config: WorkflowConfig) -> None:
        """Register a workflow definition for resumption.

        Registering an id again replaces the definition; executions resumed
        afterwards run against the new graph.
        """
        self._workflow_registry[config.id] = config
        logger.info(f"Registered workflow: {config.id}")

    def get_workflow(self, workflow_id: str) -> Optional[WorkflowConfig]:
        return self._workflow_registry.get(workflow_id)

    def list_workflows(self) -> List[str]:
        return list(self._workflow_registry)

    async def prepare_resume(self, execution_id: UUID) -> "PreparedResume":
        """Validate a checkpoint and reconcile it for a new run.

        Raises:
            ExecutionNotFoundError: If there is no checkpoint
            ResumptionError: If the execution completed or its workflow is unknown
            ConfigurationError: If the graph no longer fits the checkpoint
        """
        record = await self.storage.get_execution(execution_id)
        if record is None:
            raise ExecutionNotFoundError(f"Execution {execution_id} not found")

        if record.status == WorkflowStatus.COMPLETED:
            raise ResumptionError(f"Execution {execution_id} already completed")

        config = self.get_workflow(record.workflow_id)
        if config is None:
            raise ResumptionError(
                f"Cannot resume: workflow '{record.workflow_id}' is not registered"
            )

        await self._broadcast(
            execution_id, EventFactory.workflow_resumed(execution_id, record.current_node)
        )

        try:
            graph = build_graph(config)
        except ConfigurationError as e:
            await self._fail(record, f"Cannot resume: {e}")
            raise

        if not is_terminal_node(record.current_node) and record.current_node not in graph:
            message = (
                f"Cannot resume: node '{record.current_node}' no longer exists. "
                "Workflow may have been modified."
            )
            await self._fail(record, message)
            raise ConfigurationError(message)

        node_states = dict(record.node_states)
        interrupted = record.running_node()
        if interrupted is not None:
            logger.warning(
                f"Node {interrupted} was interrupted in execution {execution_id}, "
                "resetting to pending"
            )
            node_states[interrupted] = NodeExecutionState(node_id=interrupted)

        try:
            await self.storage.update_execution(
                execution_id,
                {
                    "status": WorkflowStatus.RUNNING,
                    "node_states": node_states,
                    "last_error": None,
                    "completed_at": None,
                    "retry_count": record.retry_count + 1,
                },
            )
        except Exception as e:
            logger.error(f"Failed to persist resume of {execution_id}: {e}", exc_info=True)

        logger.info(
            f"Resuming execution {execution_id} of {record.workflow_id} "
            f"at node {record.current_node}"
        )
        return PreparedResume(
            execution_id=execution_id,
            graph=graph,
            state=record.to_state().with_status(WorkflowStatus.RUNNING),
            node_states=node_states,
        )

    async def resume_execution(self, execution_id: UUID) -> WorkflowState:
        """Resume an execution and run it to a terminal node or a pause.

        Args:
            execution_id: Execution to resume

        Returns:
            Final workflow state
        """
        prepared = await self.prepare_resume(execution_id)
        return await self.run_prepared(prepared)

    async def run_prepared(self, prepared: "PreparedResume") -> WorkflowState:
        return await self.engine.run(
            prepared.execution_id,
            prepared.graph,
            prepared.state,
            prepared.node_states,
            skip_completed=True,
        )

    async def list_resumable_executions(self, workflow_id: Optional[str] = None) -> Dict[str, Any]:
        """List all executions that can be resumed.

        Args:
            workflow_id: Optional workflow filter

        Returns:
            Summary of resumable executions
        """
        return await self.analyzer.get_resumable_summary(workflow_id)

    async def get_resumption_details(self, execution_id: UUID) -> Dict[str, Any]:
        """Get detailed resumption information for an execution.

        Args:
            execution_id: Execution ID

        Returns:
            Detailed resumption analysis
        """
        record = await self.storage.get_execution(execution_id)
        if record is None:
            return {
                "error": f"Execution {execution_id} not found",
                "resumable": False,
            }

        analysis = self.analyzer.analyze_record(record, self.get_workflow(record.workflow_id))
        if analysis["resumption_analysis"]["resumable"]:
            analysis["recommendations"] = self.analyzer.generate_recommendations(analysis)
        return analysis

    async def _fail(self, record: ExecutionRecord, message: str) -> None:
        logger.error(f"Execution {record.execution_id}: {message}")
        try:
            await self.storage.update_execution(
                record.execution_id,
                {
                    "status": WorkflowStatus.FAILED,
                    "last_error": message,
                    "completed_at": utcnow(),
                },
            )
        except Exception as e:
            logger.error(f"Failed to persist resume failure: {e}", exc_info=True)
        await self._broadcast(
            record.execution_id,
            EventFactory.workflow_failed(
                record.execution_id, message, record.current_node, record.context
            ),
        )

    async def _broadcast(self, execution_id: UUID, event) -> None:
        try:
            await self.broadcaster.broadcast(execution_id, event)
        except Exception as e:
            logger.error(f"Failed to broadcast {event.type.value}: {e}", exc_info=True)


class PreparedResume:
    """A validated checkpoint ready to re-enter the execution loop."""

    def __init__(
        self,
        execution_id: UUID,
        graph: Graph,
        state: WorkflowState,
        node_states: Dict[str, NodeExecutionState],
    ):
        self.execution_id = execution_id
        self.graph = graph
        self.state = state
        self.node_states = node_states
