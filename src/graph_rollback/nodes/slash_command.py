"""Slash command node runtime."""

import asyncio
import time
from typing import Optional

from ..core.errors import NodeExecutionError
from ..core.models import StateUpdate, WorkflowState
from ..core.schema import NodeType, SlashCommandNodeDef
from .base import NodeContext, NodeRuntime


def build_command_prompt(
    command: str,
    args: str,
    additional_context: Optional[str] = None,
    cwd: Optional[str] = None,
) -> str:
    prompt = f"/{command} {args}".rstrip()
    preamble = []
    if cwd:
        preamble.append(f"Working directory: {cwd}")
    if additional_context:
        preamble.append(additional_context)
    if preamble:
        return "\n\n".join(preamble + [prompt])
    return prompt


class SlashCommandNodeRuntime(NodeRuntime):
    """Sends ``/<command> <args>`` to the agent capability."""

    node_type = NodeType.SLASH_COMMAND
    definition: SlashCommandNodeDef

    async def execute(self, state: WorkflowState, context: NodeContext) -> StateUpdate:
        agent = self.require_agent(context)
        definition = self.definition
        prompt = build_command_prompt(
            definition.command, definition.args, definition.additional_context, definition.cwd
        )
        timeout = definition.timeout or context.slash_command_timeout
        context.logger.info(f"Executing slash command: /{definition.command} {definition.args}")

        start = time.monotonic()
        error = None
        output = ""
        try:
            response = await asyncio.wait_for(
                agent.run_step(state, prompt, model=definition.model),
                timeout=timeout,
            )
            output = response.response
        except asyncio.TimeoutError:
            error = f"Slash command timed out after {timeout}s"
        except Exception as e:
            error = str(e)
            if definition.throw_on_error:
                raise NodeExecutionError(
                    f"Slash command execution failed: {e}",
                    self.name,
                    self.node_type,
                    {"command": definition.command, "args": definition.args},
                ) from e

        duration = time.monotonic() - start
        result = {
            "command": definition.command,
            "args": definition.args,
            "success": error is None,
            "output": output,
            "error": error,
            "duration": duration,
        }
        context.logger.info(
            f"Slash command {'succeeded' if error is None else 'failed'} in {duration:.2f}s"
        )

        if error is not None and definition.throw_on_error:
            raise NodeExecutionError(
                f"Slash command failed: {error}", self.name, self.node_type, result
            )

        return StateUpdate(context={definition.result_key: result})
