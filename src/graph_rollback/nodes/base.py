"""Base class for node runtimes.

Every node variant is wrapped in a runtime exposing the same two calls:
``execute`` performs the side effect and returns a ``StateUpdate``, and
``next`` resolves the transition against the graph's valid node names.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AbstractSet, Any, Optional
from uuid import UUID

from ..core.agents import AgentCapability
from ..core.errors import NodeExecutionError
from ..core.models import StateUpdate, WorkflowState
from ..core.schema import (
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_SLASH_COMMAND_TIMEOUT,
    BaseNodeDef,
)
from ..core.transitions import resolve_transition

logger = logging.getLogger(__name__)


@dataclass
class NodeContext:
    """Collaborators injected into a node runtime.

    ``logger`` only needs ``debug``/``info``/``warning``/``error`` taking a
    message, so both a stdlib logger and an ``ExecutionLogger`` fit. The
    timeouts apply to nodes that do not set their own.
    """

    execution_id: Optional[UUID] = None
    agent: Optional[AgentCapability] = None
    logger: Any = field(default_factory=lambda: logging.getLogger("graph_rollback.nodes"))
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    slash_command_timeout: float = DEFAULT_SLASH_COMMAND_TIMEOUT


class NodeRuntime(ABC):
    """Runnable form of a node definition."""

    node_type: str = ""

    def __init__(self, definition: BaseNodeDef, valid_node_names: AbstractSet[str]):
        self.definition = definition
        self.valid_node_names = valid_node_names

    @classmethod
    def from_definition(
        cls, definition: BaseNodeDef, valid_node_names: AbstractSet[str]
    ) -> "NodeRuntime":
        return cls(definition, valid_node_names)

    @property
    def name(self) -> str:
        return self.definition.name

    @abstractmethod
    async def execute(self, state: WorkflowState, context: NodeContext) -> StateUpdate:
        """Perform the node's side effect.

        Args:
            state: Read-only snapshot of the workflow state
            context: Injected collaborators

        Returns:
            Partial update merged into the workflow state
        """

    def next(self, state: WorkflowState) -> str:
        return resolve_transition(
            self.definition.then, state, self.valid_node_names, self.name
        )

    async def run(self, state: WorkflowState, context: NodeContext) -> StateUpdate:
        """Execute with timing and logging."""
        start = time.monotonic()
        logger.debug(f"Executing {self.node_type} node {self.name}")
        try:
            update = await self.execute(state, context)
        except Exception as e:
            logger.warning(
                f"Node {self.name} failed after {time.monotonic() - start:.2f}s: {e}"
            )
            raise
        logger.debug(f"Node {self.name} finished in {time.monotonic() - start:.2f}s")
        return update

    def require_agent(self, context: NodeContext) -> AgentCapability:
        if context.agent is None:
            raise NodeExecutionError(
                f"Node {self.name} requires an agent capability but none is configured",
                self.name,
                self.node_type,
            )
        return context.agent

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
