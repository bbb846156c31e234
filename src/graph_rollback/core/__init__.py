"""Core module for the graph execution engine.

This module contains the fundamental building blocks:
- Data models and the workflow configuration schema
- Transition resolution
- The execution loop
- The agent capability
"""

from .agents import AgentCapability, AgentConfig, AgentFactory, AgentResponse, AgnoAgentRunner
from .engine import ExecutionEngine
from .errors import (
    CommandTimeoutError,
    ConfigurationError,
    ExecutionNotFoundError,
    GraphRollbackError,
    NodeExecutionError,
    ResumptionError,
)
from .models import (
    END,
    ERROR,
    ExecutionRecord,
    LogEntry,
    NodeExecutionState,
    NodeStatus,
    StateUpdate,
    StoredMessage,
    WorkflowState,
    WorkflowStatus,
)
from .schema import (
    AgentNodeDef,
    CommandNodeDef,
    DynamicAgentNodeDef,
    DynamicCommandNodeDef,
    EvalNodeDef,
    NodeDef,
    NodeType,
    SlashCommandNodeDef,
    WorkflowConfig,
    agent_node,
    command_node,
    create_initial_state,
    dynamic_agent_node,
    dynamic_command_node,
    eval_node,
    resolve_dynamic,
    slash_command_node,
)
from .transitions import resolve_transition, validate_static_transitions

__all__ = [
    # Models
    "END",
    "ERROR",
    "WorkflowStatus",
    "NodeStatus",
    "StoredMessage",
    "StateUpdate",
    "WorkflowState",
    "NodeExecutionState",
    "ExecutionRecord",
    "LogEntry",
    # Schema
    "NodeType",
    "NodeDef",
    "AgentNodeDef",
    "CommandNodeDef",
    "SlashCommandNodeDef",
    "EvalNodeDef",
    "DynamicAgentNodeDef",
    "DynamicCommandNodeDef",
    "WorkflowConfig",
    "create_initial_state",
    "resolve_dynamic",
    "agent_node",
    "command_node",
    "slash_command_node",
    "eval_node",
    "dynamic_agent_node",
    "dynamic_command_node",
    # Transitions
    "resolve_transition",
    "validate_static_transitions",
    # Engine
    "ExecutionEngine",
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
]
