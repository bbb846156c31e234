"""Agent capability used by agent-backed workflow nodes.

The engine only depends on the ``AgentCapability`` protocol. The default
implementation builds an Agno agent per step, backed by an OpenAI-compatible
chat model configured through environment variables.
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from agno.agent import Agent
from agno.tools import Toolkit
from pydantic import BaseModel, Field

from .models import StoredMessage, WorkflowState

logger = logging.getLogger(__name__)


class AgentResponse(BaseModel):
    """Outcome of one agent step."""

    response: str
    messages: List[StoredMessage] = Field(default_factory=list)
    tools_used: List[str] = Field(default_factory=list)
    model: Optional[str] = None


@runtime_checkable
class AgentCapability(Protocol):
    """Anything that can run a single agent step against workflow state."""

    async def run_step(
        self,
        state: WorkflowState,
        instruction: str,
        *,
        system: Optional[str] = None,
        tools: Optional[List[Any]] = None,
        model: Optional[str] = None,
        max_turns: Optional[int] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AgentResponse:
        ...


class AgentConfig:
    """Configuration class for agent settings."""

    DEFAULT_MODEL = "gpt-4o-mini"

    # Short names accepted in node definitions
    MODEL_ALIASES = {
        "haiku": "gpt-4o-mini",
        "sonnet": "gpt-4o",
        "opus": "gpt-4o",
        "fast": "gpt-4o-mini",
        "smart": "gpt-4o",
    }

    # Conversation turns rendered into each prompt
    MAX_HISTORY_MESSAGES = 20

    @classmethod
    def resolve_model_id(cls, model: Optional[str], default: Optional[str] = None) -> str:
        if not model:
            return default or cls.DEFAULT_MODEL
        return cls.MODEL_ALIASES.get(model, model)


class AgentFactory:
    """Factory for creating configured agents."""

    @staticmethod
    def _default_openai_chat(
        model_id: str = AgentConfig.DEFAULT_MODEL,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        """Return a standard OpenAIChat model.

        Args:
            model_id: The model identifier (e.g., "gpt-4o-mini", "gpt-4o")
            temperature: Sampling temperature
            max_tokens: Completion token limit
            api_key: API key, defaults to OPENAI_API_KEY
            base_url: Endpoint URL, defaults to BASE_URL
        """
        from agno.models.openai import OpenAIChat  # Local import to avoid heavy import cost when not needed

        return OpenAIChat(
            id=model_id,
            base_url=base_url or os.getenv("BASE_URL"),
            api_key=api_key or os.getenv("OPENAI_API_KEY"),
            temperature=temperature,
            max_tokens=max_tokens,
        )

    @staticmethod
    def resolve_tools(capabilities: Optional[List[Any]]) -> List[Any]:
        """Turn capability references into Agno tools.

        Strings name a built-in toolkit. Toolkit instances and plain callables
        are passed through unchanged.
        """
        tools: List[Any] = []
        for capability in capabilities or []:
            if isinstance(capability, Toolkit) or callable(capability):
                tools.append(capability)
            elif capability in ("web_search", "duckduckgo"):
                from agno.tools.duckduckgo import DuckDuckGoTools
                tools.append(DuckDuckGoTools())
            elif capability == "hackernews":
                from agno.tools.hackernews import HackerNewsTools
                tools.append(HackerNewsTools())
            elif capability == "shell":
                from agno.tools.shell import ShellTools
                tools.append(ShellTools())
            elif capability == "file":
                from agno.tools.file import FileTools
                tools.append(FileTools())
            elif capability == "python":
                from agno.tools.python import PythonTools
                tools.append(PythonTools())
            else:
                logger.warning(f"Ignoring unknown agent capability: {capability}")
        return tools

    @staticmethod
    def create_step_agent(
        model_id: str,
        system: Optional[str] = None,
        tools: Optional[List[Any]] = None,
        max_turns: Optional[int] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        name: str = "WorkflowStepAgent",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> Agent:
        """Create an agent for a single workflow step.

        Args:
            model_id: Model identifier
            system: System instructions
            tools: Capability references, see ``resolve_tools``
            max_turns: Upper bound on tool calls in the step
            temperature: Sampling temperature
            max_tokens: Completion token limit
            name: Agent name
            api_key: API key for the model client
            base_url: Endpoint of an OpenAI-compatible API

        Returns:
            Configured agent
        """
        return Agent(
            name=name,
            model=AgentFactory._default_openai_chat(
                model_id, temperature, max_tokens, api_key, base_url
            ),
            tools=AgentFactory.resolve_tools(tools),
            instructions=system,
            tool_call_limit=max_turns,
            markdown=False,
        )


class AgnoAgentRunner:
    """``AgentCapability`` backed by Agno agents."""

    def __init__(
        self,
        default_model: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        self.default_model = AgentConfig.resolve_model_id(
            default_model or os.getenv("AGENT_MODEL")
        )
        self.api_key = api_key
        self.base_url = base_url

    @staticmethod
    def render_prompt(state: WorkflowState, instruction: str) -> str:
        """Prefix the instruction with recent conversation history."""
        history = state.conversation_history[-AgentConfig.MAX_HISTORY_MESSAGES:]
        if not history:
            return instruction

        lines = ["Conversation so far:"]
        for message in history:
            lines.append(f"[{message.type}] {message.content}")
        lines.append("")
        lines.append(instruction)
        return "\n".join(lines)

    async def run_step(
        self,
        state: WorkflowState,
        instruction: str,
        *,
        system: Optional[str] = None,
        tools: Optional[List[Any]] = None,
        model: Optional[str] = None,
        max_turns: Optional[int] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AgentResponse:
        model_id = AgentConfig.resolve_model_id(model, self.default_model)
        agent = AgentFactory.create_step_agent(
            model_id,
            system=system,
            tools=tools,
            max_turns=max_turns,
            temperature=temperature,
            max_tokens=max_tokens,
            api_key=self.api_key,
            base_url=self.base_url,
        )

        logger.debug(f"Running agent step with model {model_id}")
        result = await agent.arun(self.render_prompt(state, instruction))

        content = result.content if result is not None else None
        if content is None:
            content = ""
        elif not isinstance(content, str):
            content = json.dumps(content, default=str)

        tools_used = []
        for tool in getattr(result, "tools", None) or []:
            tool_name = getattr(tool, "tool_name", None)
            if tool_name:
                tools_used.append(tool_name)

        return AgentResponse(response=content, tools_used=tools_used, model=model_id)


def format_context(context: Dict[str, Any]) -> str:
    """Render a workflow context for inclusion in a prompt."""
    return json.dumps(context, indent=2, default=str)
