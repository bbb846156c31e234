"""Workflow configuration schema.

A workflow is an ordered list of node definitions. Each definition is a
frozen Pydantic model tagged by ``type`` so that a plain dictionary
configuration can be validated straight into the right variant.
"""

from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .models import END, TERMINAL_NODES, WorkflowState, WorkflowStatus

Transition = Union[str, Callable[[WorkflowState], str]]

# Static value or a function of the workflow state.
Dynamic = Any

# Used when a node sets no timeout and the engine has no settings
DEFAULT_COMMAND_TIMEOUT = 300.0
DEFAULT_SLASH_COMMAND_TIMEOUT = 600.0


class NodeType:
    """Discriminator values for node definitions."""

    AGENT = "agent"
    COMMAND = "command"
    SLASH_COMMAND = "slash-command"
    EVAL = "eval"
    DYNAMIC_AGENT = "dynamic-agent"
    DYNAMIC_COMMAND = "dynamic-command"

    ALL = (AGENT, COMMAND, SLASH_COMMAND, EVAL, DYNAMIC_AGENT, DYNAMIC_COMMAND)


class BaseNodeDef(BaseModel):
    """Fields shared by every node variant."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = Field(..., min_length=1)
    then: Transition = END

    @field_validator("name")
    def name_not_reserved(cls, v: str) -> str:
        if v in TERMINAL_NODES:
            raise ValueError(f"Node name '{v}' is reserved")
        return v


class AgentNodeDef(BaseNodeDef):
    """Runs an agent with a fixed role and prompt."""

    type: Literal["agent"] = NodeType.AGENT
    role: str = "assistant"
    prompt: str
    capabilities: List[Any] = Field(default_factory=list)
    max_turns: Optional[int] = None
    model: Optional[str] = None


class CommandNodeDef(BaseNodeDef):
    """Runs a shell command."""

    type: Literal["command"] = NodeType.COMMAND
    command: str
    cwd: Optional[str] = None
    env: Optional[Dict[str, str]] = None
    timeout: Optional[float] = Field(default=None, gt=0)
    throw_on_error: bool = True
    result_key: str = "lastCommandResult"


class SlashCommandNodeDef(BaseNodeDef):
    """Sends a slash command to the agent capability."""

    type: Literal["slash-command"] = NodeType.SLASH_COMMAND
    command: str
    args: str = ""
    cwd: Optional[str] = None
    timeout: Optional[float] = Field(default=None, gt=0)
    throw_on_error: bool = True
    model: Optional[str] = None
    additional_context: Optional[str] = None
    result_key: str = "lastSlashCommandResult"

    @field_validator("command")
    def strip_leading_slash(cls, v: str) -> str:
        return v.lstrip("/")


class EvalNodeDef(BaseNodeDef):
    """Runs an inline transform over the workflow context."""

    type: Literal["eval"] = NodeType.EVAL
    update: Callable[..., Any]
    result_key: str = "lastEvalResult"


class DynamicAgentNodeDef(BaseNodeDef):
    """Agent node whose configuration is computed from state at run time."""

    type: Literal["dynamic-agent"] = NodeType.DYNAMIC_AGENT
    prompt: Dynamic
    model: Dynamic = None
    system: Dynamic = None
    capabilities: Dynamic = None
    max_turns: Dynamic = None
    temperature: Dynamic = None
    max_tokens: Dynamic = None
    throw_on_error: bool = True
    result_key: str = "lastDynamicAgentResult"


class DynamicCommandNodeDef(BaseNodeDef):
    """Command node whose configuration is computed from state at run time."""

    type: Literal["dynamic-command"] = NodeType.DYNAMIC_COMMAND
    command: Dynamic
    cwd: Dynamic = None
    env: Dynamic = None
    timeout: Dynamic = None
    throw_on_error: bool = True
    result_key: str = "lastDynamicCommandResult"


NodeDef = Annotated[
    Union[
        AgentNodeDef,
        CommandNodeDef,
        SlashCommandNodeDef,
        EvalNodeDef,
        DynamicAgentNodeDef,
        DynamicCommandNodeDef,
    ],
    Field(discriminator="type"),
]


class WorkflowConfig(BaseModel):
    """An immutable workflow graph definition."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    description: Optional[str] = None
    nodes: List[NodeDef]
    initial_context: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("nodes")
    def at_least_one_node(cls, v: List[Any]) -> List[Any]:
        if not v:
            raise ValueError("Workflow must define at least one node")
        return v

    @model_validator(mode="after")
    def unique_node_names(self) -> "WorkflowConfig":
        seen = set()
        duplicates = []
        for node in self.nodes:
            if node.name in seen and node.name not in duplicates:
                duplicates.append(node.name)
            seen.add(node.name)
        if duplicates:
            raise ValueError(f"Duplicate node names: {', '.join(duplicates)}")
        return self

    @property
    def entry_node(self) -> str:
        return self.nodes[0].name

    @property
    def node_names(self) -> List[str]:
        return [node.name for node in self.nodes]


def create_initial_state(
    config: WorkflowConfig,
    context: Optional[Dict[str, Any]] = None,
) -> WorkflowState:
    """Create a fresh workflow state positioned at the first node.

    Args:
        config: Workflow definition
        context: Caller supplied context, merged over ``initial_context``

    Returns:
        Pending workflow state
    """
    return WorkflowState(
        current_node=config.entry_node,
        status=WorkflowStatus.PENDING,
        context={**config.initial_context, **(context or {})},
        conversation_history=[],
    )


def resolve_dynamic(value: Dynamic, state: WorkflowState) -> Any:
    """Evaluate a dynamic field against the current state."""
    if callable(value):
        return value(state)
    return value


# Builder helpers


def agent_node(name: str, prompt: str, then: Transition = END, **kwargs: Any) -> AgentNodeDef:
    return AgentNodeDef(name=name, prompt=prompt, then=then, **kwargs)


def command_node(name: str, command: str, then: Transition = END, **kwargs: Any) -> CommandNodeDef:
    return CommandNodeDef(name=name, command=command, then=then, **kwargs)


def slash_command_node(
    name: str, command: str, then: Transition = END, **kwargs: Any
) -> SlashCommandNodeDef:
    return SlashCommandNodeDef(name=name, command=command, then=then, **kwargs)


def eval_node(
    name: str, update: Callable[..., Any], then: Transition = END, **kwargs: Any
) -> EvalNodeDef:
    return EvalNodeDef(name=name, update=update, then=then, **kwargs)


def dynamic_agent_node(
    name: str, prompt: Dynamic, then: Transition = END, **kwargs: Any
) -> DynamicAgentNodeDef:
    return DynamicAgentNodeDef(name=name, prompt=prompt, then=then, **kwargs)


def dynamic_command_node(
    name: str, command: Dynamic, then: Transition = END, **kwargs: Any
) -> DynamicCommandNodeDef:
    return DynamicCommandNodeDef(name=name, command=command, then=then, **kwargs)
