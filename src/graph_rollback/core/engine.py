"""Execution loop driving a workflow graph to a terminal node.

The engine runs one node at a time. After every node it writes a checkpoint
and broadcasts an event, so a crash between two nodes loses at most the node
that was in flight. Pausing is cooperative: the stored status is read before
the first node and after each node, and the loop returns if it has been set
to paused.
"""

import logging
from typing import Any, Dict, Optional, Set
from uuid import UUID

from ..config import Settings
from ..monitoring.broadcaster import EventBroadcaster
from ..monitoring.events import EventFactory, ExecutionEvent
from ..monitoring.monitor import ExecutionLogger
from ..nodes.base import NodeContext
from ..nodes.registry import Graph
from ..storage.base import StorageBackend
from .agents import AgentCapability
from .models import (
    ERROR,
    NodeExecutionState,
    NodeStatus,
    WorkflowState,
    WorkflowStatus,
    is_terminal_node,
    utcnow,
)

logger = logging.getLogger(__name__)

ERROR_NODE_MESSAGE = "Workflow reached the ERROR node"


class ExecutionEngine:
    """Runs workflow graphs against a checkpoint store."""

    def __init__(
        self,
        store: StorageBackend,
        broadcaster: Optional[EventBroadcaster] = None,
        agent: Optional[AgentCapability] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize the engine.

        Args:
            store: Checkpoint store
            broadcaster: Event fan-out (a private one is created if omitted)
            agent: Agent capability handed to agent-backed nodes
            settings: Source of default node timeouts
        """
        self.store = store
        self.broadcaster = broadcaster or EventBroadcaster()
        self.agent = agent
        self.settings = settings or Settings.from_environment()

    async def run(
        self,
        execution_id: UUID,
        graph: Graph,
        state: WorkflowState,
        node_states: Optional[Dict[str, NodeExecutionState]] = None,
        skip_completed: bool = False,
    ) -> WorkflowState:
        """Drive ``state`` through ``graph`` until a terminal node or a pause.

        Args:
            execution_id: Checkpoint to write to
            graph: Graph built for this run
            state: Starting state
            node_states: Per-node bookkeeping carried over from a checkpoint
            skip_completed: Skip nodes already marked completed while walking
                the finished prefix of a resumed run

        Returns:
            Final state; its status is completed, failed or paused
        """
        node_states = {
            name: node_state.model_copy() for name, node_state in (node_states or {}).items()
        }
        exec_logger = ExecutionLogger(execution_id, self.store, self.broadcaster)

        skipping = skip_completed
        skipped: Set[str] = set()

        try:
            # A pause accepted before the loop started
            if await self._pause_requested(execution_id):
                return await self._pause_workflow(execution_id, state, exec_logger)

            state = state.with_status(WorkflowStatus.RUNNING)
            await self._persist(execution_id, {"status": WorkflowStatus.RUNNING})
            exec_logger.info(
                f"Running workflow {graph.workflow_id} from node {state.current_node}"
            )

            while not is_terminal_node(state.current_node):
                node_name = state.current_node
                runtime = graph.get(node_name)
                if runtime is None:
                    return await self._fail_workflow(
                        execution_id,
                        state,
                        node_states,
                        f"Node '{node_name}' does not exist in workflow {graph.workflow_id}",
                    )

                if skipping:
                    previous = node_states.get(node_name)
                    if (
                        previous is not None
                        and previous.status == NodeStatus.COMPLETED
                        and node_name not in skipped
                    ):
                        skipped.add(node_name)
                        try:
                            next_node = runtime.next(state)
                        except Exception as e:
                            return await self._fail_workflow(
                                execution_id, state, node_states, str(e)
                            )
                        exec_logger.for_node(node_name).warning(
                            f"Skipping completed node, continuing at {next_node}"
                        )
                        state = state.advance(next_node)
                        await self._persist(execution_id, {"current_node": next_node})
                        continue
                    skipping = False

                node_state = NodeExecutionState(
                    node_id=node_name, status=NodeStatus.RUNNING, started_at=utcnow()
                )
                node_states[node_name] = node_state
                await self._persist(
                    execution_id,
                    {"current_node": node_name, "node_states": node_states},
                )
                await self._broadcast(execution_id, EventFactory.node_started(execution_id, node_name))

                node_logger = exec_logger.for_node(node_name)
                node_context = NodeContext(
                    execution_id=execution_id,
                    agent=self.agent,
                    logger=node_logger,
                    command_timeout=self.settings.command_timeout,
                    slash_command_timeout=self.settings.slash_command_timeout,
                )
                try:
                    update = await runtime.run(state.snapshot(), node_context)
                    state = state.apply_update(update)
                    next_node = runtime.next(state)
                except Exception as e:
                    error = str(e)
                    node_logger.error(f"Node failed: {error}")
                    failed = node_state.model_copy(
                        update={
                            "status": NodeStatus.FAILED,
                            "completed_at": utcnow(),
                            "error": error,
                        }
                    )
                    node_states[node_name] = failed
                    await self._broadcast(
                        execution_id, EventFactory.node_failed(execution_id, failed)
                    )
                    return await self._fail_workflow(execution_id, state, node_states, error)

                completed = node_state.model_copy(
                    update={
                        "status": NodeStatus.COMPLETED,
                        "completed_at": utcnow(),
                        "result": update.context,
                    }
                )
                node_states[node_name] = completed
                # A node re-entered by a loop is pending again until it reruns
                reentered = node_states.get(next_node)
                if reentered is not None and reentered.status == NodeStatus.COMPLETED:
                    node_states[next_node] = NodeExecutionState(node_id=next_node)
                state = state.advance(next_node)
                await self._persist(
                    execution_id,
                    {
                        "current_node": next_node,
                        "context": state.context,
                        "conversation_history": state.conversation_history,
                        "node_states": node_states,
                    },
                )
                await self._broadcast(
                    execution_id,
                    EventFactory.node_completed(
                        execution_id, completed, next_node, state.context
                    ),
                )

                if await self._pause_requested(execution_id):
                    return await self._pause_workflow(execution_id, state, exec_logger)

            if state.current_node == ERROR:
                return await self._fail_workflow(
                    execution_id, state, node_states, ERROR_NODE_MESSAGE
                )

            return await self._complete_workflow(execution_id, state, exec_logger)
        finally:
            await exec_logger.flush()

    async def _complete_workflow(
        self,
        execution_id: UUID,
        state: WorkflowState,
        exec_logger: ExecutionLogger,
    ) -> WorkflowState:
        state = state.with_status(WorkflowStatus.COMPLETED)
        await self._persist(
            execution_id,
            {
                "status": WorkflowStatus.COMPLETED,
                "current_node": state.current_node,
                "context": state.context,
                "conversation_history": state.conversation_history,
                "completed_at": utcnow(),
            },
        )
        exec_logger.info("Workflow completed")
        await self._broadcast(
            execution_id,
            EventFactory.workflow_completed(execution_id, state.current_node, state.context),
        )
        return state

    async def _pause_workflow(
        self,
        execution_id: UUID,
        state: WorkflowState,
        exec_logger: ExecutionLogger,
    ) -> WorkflowState:
        exec_logger.info(f"Workflow paused before node {state.current_node}")
        state = state.with_status(WorkflowStatus.PAUSED)
        await self._broadcast(
            execution_id,
            EventFactory.workflow_paused(execution_id, state.current_node, state.context),
        )
        return state

    async def _fail_workflow(
        self,
        execution_id: UUID,
        state: WorkflowState,
        node_states: Dict[str, NodeExecutionState],
        error: str,
    ) -> WorkflowState:
        logger.error(f"Execution {execution_id} failed at {state.current_node}: {error}")
        state = state.with_status(WorkflowStatus.FAILED)
        await self._persist(
            execution_id,
            {
                "status": WorkflowStatus.FAILED,
                "last_error": error,
                "node_states": node_states,
                "completed_at": utcnow(),
            },
        )
        await self._broadcast(
            execution_id,
            EventFactory.workflow_failed(
                execution_id, error, state.current_node, state.context
            ),
        )
        return state

    async def _persist(self, execution_id: UUID, fields: Dict[str, Any]) -> None:
        """Write a checkpoint update. Store failures are logged, never raised."""
        try:
            updated = await self.store.update_execution(execution_id, fields)
            if not updated:
                logger.warning(f"Checkpoint for execution {execution_id} not found")
        except Exception as e:
            logger.error(
                f"Failed to persist checkpoint for execution {execution_id}: {e}",
                exc_info=True,
            )

    async def _pause_requested(self, execution_id: UUID) -> bool:
        try:
            record = await self.store.get_execution(execution_id)
        except Exception as e:
            logger.error(f"Failed to read status for execution {execution_id}: {e}", exc_info=True)
            return False
        return record is not None and record.status == WorkflowStatus.PAUSED

    async def _broadcast(self, execution_id: UUID, event: ExecutionEvent) -> None:
        try:
            await self.broadcaster.broadcast(execution_id, event)
        except Exception as e:
            logger.error(f"Failed to broadcast {event.type.value}: {e}", exc_info=True)
