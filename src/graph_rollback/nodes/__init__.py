"""Node runtimes and the graph builder."""

from .agent import AgentNodeRuntime, DynamicAgentNodeRuntime
from .base import NodeContext, NodeRuntime
from .command import CommandNodeRuntime, CommandResult, DynamicCommandNodeRuntime, run_command
from .eval import EvalNodeRuntime
from .registry import NODE_BUILDERS, Graph, build_graph
from .slash_command import SlashCommandNodeRuntime

__all__ = [
    "NodeContext",
    "NodeRuntime",
    "AgentNodeRuntime",
    "DynamicAgentNodeRuntime",
    "CommandNodeRuntime",
    "DynamicCommandNodeRuntime",
    "CommandResult",
    "run_command",
    "SlashCommandNodeRuntime",
    "EvalNodeRuntime",
    "NODE_BUILDERS",
    "Graph",
    "build_graph",
]
