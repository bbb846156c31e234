"""Compile a workflow configuration into a runnable graph."""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Optional

from ..core.errors import ConfigurationError
from ..core.models import TERMINAL_NODES
from ..core.schema import NodeType, WorkflowConfig
from ..core.transitions import validate_static_transitions
from .agent import AgentNodeRuntime, DynamicAgentNodeRuntime
from .base import NodeRuntime
from .command import CommandNodeRuntime, DynamicCommandNodeRuntime
from .eval import EvalNodeRuntime
from .slash_command import SlashCommandNodeRuntime

logger = logging.getLogger(__name__)

NODE_BUILDERS: Dict[str, Callable[..., NodeRuntime]] = {
    NodeType.AGENT: AgentNodeRuntime.from_definition,
    NodeType.COMMAND: CommandNodeRuntime.from_definition,
    NodeType.SLASH_COMMAND: SlashCommandNodeRuntime.from_definition,
    NodeType.EVAL: EvalNodeRuntime.from_definition,
    NodeType.DYNAMIC_AGENT: DynamicAgentNodeRuntime.from_definition,
    NodeType.DYNAMIC_COMMAND: DynamicCommandNodeRuntime.from_definition,
}


@dataclass(frozen=True)
class Graph:
    """Name-keyed node runtimes plus the set of valid transition targets."""

    workflow_id: str
    nodes: Dict[str, NodeRuntime]
    valid_node_names: FrozenSet[str]
    entry_node: str

    def get(self, name: str) -> Optional[NodeRuntime]:
        return self.nodes.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self.nodes


def build_graph(config: WorkflowConfig) -> Graph:
    """Build the runtime graph for one run.

    Every literal transition must target a node of the workflow or a terminal
    sentinel. All violations are collected and reported together before any
    node can execute.

    Raises:
        ConfigurationError: If the graph references unknown nodes
    """
    valid_node_names = frozenset(config.node_names) | TERMINAL_NODES

    errors = validate_static_transitions(config.nodes, valid_node_names)
    if errors:
        raise ConfigurationError(
            f"Workflow '{config.id}' has invalid transitions: " + "; ".join(errors),
            errors,
        )

    nodes: Dict[str, NodeRuntime] = {}
    for definition in config.nodes:
        builder = NODE_BUILDERS.get(definition.type)
        if builder is None:
            raise ConfigurationError(f"Unknown node type: {definition.type}")
        nodes[definition.name] = builder(definition, valid_node_names)

    logger.debug(f"Built graph for workflow {config.id} with {len(nodes)} nodes")
    return Graph(
        workflow_id=config.id,
        nodes=nodes,
        valid_node_names=valid_node_names,
        entry_node=config.entry_node,
    )
