"""Agent-backed node runtimes."""

import time
from typing import Any, Dict, List, Optional

from ..core.agents import AgentResponse, format_context
from ..core.models import StateUpdate, StoredMessage, WorkflowState
from ..core.schema import AgentNodeDef, DynamicAgentNodeDef, NodeType, resolve_dynamic
from .base import NodeContext, NodeRuntime

DEFAULT_MAX_TURNS = 10


def build_agent_prompt(instructions: str, state: WorkflowState) -> str:
    """Append the workflow context to an agent's instructions."""
    return f"{instructions}\n\nCurrent context:\n{format_context(state.context)}"


def _response_history(response: AgentResponse, metadata: Dict[str, Any]) -> List[StoredMessage]:
    messages = list(response.messages)
    messages.append(
        StoredMessage(type="assistant", content=response.response, metadata=metadata)
    )
    return messages


class AgentNodeRuntime(NodeRuntime):
    """Runs the agent capability with a fixed role and prompt.

    Agent errors (authentication, rate limits, timeouts) propagate unchanged
    so the engine records them against this node.
    """

    node_type = NodeType.AGENT
    definition: AgentNodeDef

    async def execute(self, state: WorkflowState, context: NodeContext) -> StateUpdate:
        agent = self.require_agent(context)
        definition = self.definition

        context.logger.info(f"Running agent with role: {definition.role}")
        response = await agent.run_step(
            state,
            build_agent_prompt(definition.prompt, state),
            tools=list(definition.capabilities),
            model=definition.model,
            max_turns=definition.max_turns or DEFAULT_MAX_TURNS,
        )

        return StateUpdate(
            conversation_history=_response_history(
                response,
                {"role": definition.role, "tools_used": response.tools_used},
            )
        )


class DynamicAgentNodeRuntime(NodeRuntime):
    """Agent node whose model, prompt and tools are computed from state."""

    node_type = NodeType.DYNAMIC_AGENT
    definition: DynamicAgentNodeDef

    async def execute(self, state: WorkflowState, context: NodeContext) -> StateUpdate:
        agent = self.require_agent(context)
        definition = self.definition

        prompt = resolve_dynamic(definition.prompt, state)
        model: Optional[str] = resolve_dynamic(definition.model, state)
        system = resolve_dynamic(definition.system, state)
        tools = resolve_dynamic(definition.capabilities, state)
        max_turns = resolve_dynamic(definition.max_turns, state)

        context.logger.info(f"Running dynamic agent with model: {model or 'default'}")
        start = time.monotonic()
        try:
            response = await agent.run_step(
                state,
                build_agent_prompt(str(prompt), state),
                system=system,
                tools=list(tools or []),
                model=model,
                max_turns=max_turns or DEFAULT_MAX_TURNS,
                temperature=resolve_dynamic(definition.temperature, state),
                max_tokens=resolve_dynamic(definition.max_tokens, state),
            )
        except Exception as e:
            if definition.throw_on_error:
                raise
            context.logger.warning(f"Dynamic agent failed: {e}")
            return StateUpdate(
                context={
                    definition.result_key: {
                        "success": False,
                        "response": None,
                        "error": str(e),
                        "model": model,
                        "duration": time.monotonic() - start,
                    }
                }
            )

        return StateUpdate(
            context={
                definition.result_key: {
                    "success": True,
                    "response": response.response,
                    "model": response.model or model,
                    "duration": time.monotonic() - start,
                }
            },
            conversation_history=_response_history(
                response,
                {"model": response.model or model, "tools_used": response.tools_used},
            ),
        )
