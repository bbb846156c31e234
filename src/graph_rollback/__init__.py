"""Graph Rollback - Resumable Workflow Graph Engine.

A workflow engine that runs graphs of heterogeneous nodes and enables:
- Agent, shell command, slash command and eval nodes
- Checkpointing after every node
- Pause and resume from the last checkpoint
- Live execution events over subscriptions and SSE streams
"""

# Load environment variables from .env file if it exists
from dotenv import load_dotenv
load_dotenv()

import asyncio
import logging
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

logger = logging.getLogger(__name__)

from .core import (
    END,
    ERROR,
    AgentCapability,
    AgentConfig,
    AgentFactory,
    AgentResponse,
    AgnoAgentRunner,
    CommandTimeoutError,
    ConfigurationError,
    ExecutionEngine,
    ExecutionNotFoundError,
    ExecutionRecord,
    GraphRollbackError,
    LogEntry,
    NodeExecutionError,
    NodeExecutionState,
    NodeStatus,
    NodeType,
    ResumptionError,
    StateUpdate,
    StoredMessage,
    WorkflowConfig,
    WorkflowState,
    WorkflowStatus,
    agent_node,
    command_node,
    create_initial_state,
    dynamic_agent_node,
    dynamic_command_node,
    eval_node,
    slash_command_node,
)
from .config import Settings, configure_logging
from .monitoring import (
    EventBroadcaster,
    EventType,
    ExecutionEvent,
    ExecutionMonitor,
    QueueSink,
    Subscription,
)
from .nodes import Graph, build_graph
from .resumption import ExecutionAnalyzer, ResumptionManager
from .storage import (
    PostgresStorage,
    SQLiteStorage,
    StorageBackend,
    create_storage_backend,
)

__version__ = "1.0.0"

__all__ = [
    # Core
    "END",
    "ERROR",
    "WorkflowConfig",
    "WorkflowState",
    "WorkflowStatus",
    "NodeStatus",
    "NodeType",
    "NodeExecutionState",
    "ExecutionRecord",
    "StateUpdate",
    "StoredMessage",
    "LogEntry",
    "ExecutionEngine",
    "create_initial_state",
    "agent_node",
    "command_node",
    "slash_command_node",
    "eval_node",
    "dynamic_agent_node",
    "dynamic_command_node",
    # Agents
    "AgentCapability",
    "AgentResponse",
    "AgentConfig",
    "AgentFactory",
    "AgnoAgentRunner",
    # Errors
    "GraphRollbackError",
    "ConfigurationError",
    "NodeExecutionError",
    "CommandTimeoutError",
    "ExecutionNotFoundError",
    "ResumptionError",
    # Nodes
    "Graph",
    "build_graph",
    # Storage
    "StorageBackend",
    "SQLiteStorage",
    "PostgresStorage",
    "create_storage_backend",
    # Resumption
    "ResumptionManager",
    "ExecutionAnalyzer",
    # Monitoring
    "EventBroadcaster",
    "EventType",
    "ExecutionEvent",
    "ExecutionMonitor",
    "QueueSink",
    "Subscription",
    # Configuration
    "Settings",
    "configure_logging",
    # High-level interface
    "WorkflowManager",
]

ExecutionId = Union[str, UUID]


def _as_uuid(execution_id: ExecutionId) -> UUID:
    return execution_id if isinstance(execution_id, UUID) else UUID(str(execution_id))


# Convenience class for easy usage
class WorkflowManager:
    """High-level interface for running and resuming workflow graphs."""

    def __init__(
        self,
        storage: Optional[StorageBackend] = None,
        agent: Optional[AgentCapability] = None,
        settings: Optional[Settings] = None,
        storage_backend_type: Optional[str] = None,
    ):
        """Initialize workflow manager.

        Args:
            storage: Storage backend (if not provided, creates one based on configuration)
            agent: Agent capability for agent-backed nodes (defaults to Agno)
            settings: Settings (read from the environment if not provided)
            storage_backend_type: Type of storage backend ("sqlite", "postgres")
        """
        self.settings = settings or Settings.from_environment()

        # Create storage backend using factory if not provided
        if storage is None:
            try:
                self.storage = create_storage_backend(
                    storage_backend_type or self.settings.storage_backend, self.settings
                )
            except Exception as e:
                logger.warning(f"Failed to create configured storage backend: {e}")
                logger.warning("Falling back to SQLite storage")
                self.storage = SQLiteStorage(self.settings.sqlite_db_path)
        else:
            self.storage = storage

        self.broadcaster = EventBroadcaster(
            subscriber_queue_size=self.settings.subscriber_queue_size
        )
        self.monitor = ExecutionMonitor(self.broadcaster)
        self.agent = agent or AgnoAgentRunner(
            self.settings.agent_model,
            api_key=self.settings.openai_api_key,
            base_url=self.settings.base_url,
        )
        self.engine = ExecutionEngine(
            self.storage, self.broadcaster, self.agent, self.settings
        )
        self.resumption_manager = ResumptionManager(self.storage, self.engine, self.broadcaster)

        self._initialized = False
        self._running_executions = set()  # Track running execution tasks

    async def initialize(self) -> None:
        """Initialize the workflow manager."""
        if self._initialized:
            return

        await self.storage.initialize()
        self._initialized = True

    async def close(self) -> None:
        """Close the workflow manager."""
        # Wait for all running executions to reach a terminal node or a pause
        if self._running_executions:
            await asyncio.gather(*self._running_executions, return_exceptions=True)
        await self.broadcaster.flush()

        self.monitor.detach(self.broadcaster)
        await self.storage.close()
        self._initialized = False

    def register_workflow(self, config: Union[WorkflowConfig, Dict[str, Any]]) -> WorkflowConfig:
        """Register a workflow definition.

        Args:
            config: Workflow definition or its plain dictionary form

        Returns:
            The validated workflow definition
        """
        if not isinstance(config, WorkflowConfig):
            config = WorkflowConfig.model_validate(config)
        build_graph(config)
        self.resumption_manager.register_workflow(config)
        return config

    def _get_config(self, workflow_id: str) -> WorkflowConfig:
        config = self.resumption_manager.get_workflow(workflow_id)
        if config is None:
            raise ConfigurationError(f"Unknown workflow: {workflow_id}")
        return config

    async def _create_execution(
        self,
        workflow_id: str,
        context: Optional[Dict[str, Any]],
    ):
        if not self._initialized:
            await self.initialize()

        config = self._get_config(workflow_id)
        graph = build_graph(config)
        state = create_initial_state(config, context)
        record = await self.storage.create_execution(
            ExecutionRecord(
                workflow_id=workflow_id,
                current_node=state.current_node,
                context=state.context,
            )
        )
        logger.info(f"Created execution {record.execution_id} of workflow {workflow_id}")
        return record.execution_id, graph, state

    async def _run_in_background(self, coro) -> None:
        """Run an execution and handle errors."""
        try:
            await coro
        except Exception as e:
            logger.error(f"Execution error: {e}", exc_info=True)

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.create_task(self._run_in_background(coro))
        self._running_executions.add(task)
        task.add_done_callback(self._running_executions.discard)
        return task

    async def start_workflow(
        self,
        workflow_id: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Start a new execution in the background.

        The graph is validated before this returns, so configuration errors
        reach the caller instead of the background task.

        Args:
            workflow_id: Registered workflow id
            context: Initial context, merged over the workflow's initial context

        Returns:
            Execution ID
        """
        execution_id, graph, state = await self._create_execution(workflow_id, context)
        self._track(self.engine.run(execution_id, graph, state))
        return str(execution_id)

    async def run_workflow(
        self,
        workflow_id: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> WorkflowState:
        """Run a new execution and wait for it to finish or pause.

        Returns:
            Final workflow state
        """
        execution_id, graph, state = await self._create_execution(workflow_id, context)
        return await self.engine.run(execution_id, graph, state)

    async def pause_workflow(self, execution_id: ExecutionId) -> bool:
        """Request a pause.

        A running execution stops after its current node; one that has not
        started yet stops before its first node.

        Returns:
            False if the execution is not running
        """
        if not self._initialized:
            await self.initialize()

        record = await self.storage.get_execution(_as_uuid(execution_id))
        if record is None:
            raise ExecutionNotFoundError(f"Execution {execution_id} not found")
        if record.status not in (WorkflowStatus.PENDING, WorkflowStatus.RUNNING):
            logger.warning(f"Cannot pause execution {execution_id} in status {record.status.value}")
            return False

        await self.storage.update_execution(record.execution_id, {"status": WorkflowStatus.PAUSED})
        logger.info(f"Pause requested for execution {execution_id}")
        return True

    async def resume_workflow(self, execution_id: ExecutionId) -> str:
        """Resume an execution in the background.

        The checkpoint is validated before this returns.

        Returns:
            Execution ID
        """
        if not self._initialized:
            await self.initialize()

        prepared = await self.resumption_manager.prepare_resume(_as_uuid(execution_id))
        self._track(self.resumption_manager.run_prepared(prepared))
        return str(prepared.execution_id)

    async def resume_and_wait(self, execution_id: ExecutionId) -> WorkflowState:
        """Resume an execution and wait for it to finish or pause."""
        if not self._initialized:
            await self.initialize()

        return await self.resumption_manager.resume_execution(_as_uuid(execution_id))

    async def get_execution(self, execution_id: ExecutionId) -> Optional[ExecutionRecord]:
        """Get an execution checkpoint.

        Args:
            execution_id: Execution ID

        Returns:
            Checkpoint or None
        """
        if not self._initialized:
            await self.initialize()

        return await self.storage.get_execution(_as_uuid(execution_id))

    async def get_logs(
        self,
        execution_id: ExecutionId,
        node_id: Optional[str] = None,
    ) -> List[LogEntry]:
        if not self._initialized:
            await self.initialize()

        return await self.storage.get_logs(_as_uuid(execution_id), node_id=node_id)

    def subscribe(self, execution_id: ExecutionId, **kwargs) -> Subscription:
        """Subscribe to typed events for an execution."""
        return self.broadcaster.subscribe(execution_id, **kwargs)

    def open_stream(self, execution_id: ExecutionId, max_size: int = 0) -> QueueSink:
        """Open an SSE byte stream for an execution."""
        return self.broadcaster.open_stream(execution_id, max_size)

    def close_stream(self, execution_id: ExecutionId, sink: QueueSink) -> None:
        self.broadcaster.close_stream(execution_id, sink)

    async def list_resumable_executions(
        self,
        workflow_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """List resumable executions.

        Args:
            workflow_id: Optional workflow filter

        Returns:
            Summary of resumable executions
        """
        if not self._initialized:
            await self.initialize()

        return await self.resumption_manager.list_resumable_executions(workflow_id)

    async def analyze_execution(self, execution_id: ExecutionId) -> Dict[str, Any]:
        """Analyze an execution for resumption.

        Args:
            execution_id: Execution ID

        Returns:
            Detailed analysis
        """
        if not self._initialized:
            await self.initialize()

        return await self.resumption_manager.get_resumption_details(_as_uuid(execution_id))

    def get_active_executions(self) -> List[Dict[str, Any]]:
        return self.monitor.get_active_executions()

    def get_storage_info(self) -> Dict[str, Any]:
        """Get information about the configured storage backend."""
        return {
            "storage_type": type(self.storage).__name__,
            "registered_workflows": self.resumption_manager.list_workflows(),
        }

    @classmethod
    def create_development(cls, **kwargs) -> "WorkflowManager":
        """Create a WorkflowManager with SQLite storage."""
        return cls(storage_backend_type="sqlite", **kwargs)

    @classmethod
    def create_production(cls, **kwargs) -> "WorkflowManager":
        """Create a WorkflowManager with PostgreSQL storage."""
        return cls(storage_backend_type="postgres", **kwargs)
