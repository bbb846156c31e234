"""Subprocess-backed node runtimes."""

import asyncio
import logging
import os
import re
import shlex
import time
from typing import Dict, Optional

from pydantic import BaseModel

from ..core.errors import CommandTimeoutError, NodeExecutionError
from ..core.models import StateUpdate, WorkflowState
from ..core.schema import (
    DEFAULT_COMMAND_TIMEOUT,
    CommandNodeDef,
    DynamicCommandNodeDef,
    NodeType,
    resolve_dynamic,
)
from .base import NodeContext, NodeRuntime

logger = logging.getLogger(__name__)

# Characters that need a shell to interpret
_SHELL_SYNTAX = re.compile(r"[|&;<>()$`*?~{}\n]")


class CommandResult(BaseModel):
    """Captured outcome of a subprocess."""

    command: str
    exit_code: Optional[int]
    stdout: str = ""
    stderr: str = ""
    success: bool
    duration: float = 0.0


def needs_shell(command: str) -> bool:
    return bool(_SHELL_SYNTAX.search(command))


async def run_command(
    command: str,
    node_name: str,
    node_type: str,
    cwd: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    timeout: float = DEFAULT_COMMAND_TIMEOUT,
) -> CommandResult:
    """Run a command and capture its output.

    Commands using shell syntax go through the shell. Others are split with
    ``shlex`` and executed directly.

    Args:
        command: Command line
        node_name: Owning node, used in errors
        node_type: Owning node type, used in errors
        cwd: Working directory
        env: Extra environment variables layered over the current environment
        timeout: Seconds before the process is killed

    Returns:
        Captured result; a non-zero exit code is not an error here

    Raises:
        CommandTimeoutError: If the process outlives ``timeout``
        NodeExecutionError: If the process cannot be started
    """
    process_env = {**os.environ, **env} if env else None
    start = time.monotonic()

    try:
        if needs_shell(command):
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=process_env,
            )
        else:
            argv = shlex.split(command)
            if not argv:
                raise NodeExecutionError("Empty command", node_name, node_type)
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=process_env,
            )
    except (OSError, ValueError) as e:
        raise NodeExecutionError(
            f"Failed to start command '{command}': {e}",
            node_name,
            node_type,
            {"command": command},
        ) from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Command timed out after {timeout}s, killing: {command}")
        process.kill()
        await process.wait()
        raise CommandTimeoutError(
            f"Command timed out after {timeout}s: {command}",
            node_name,
            node_type,
            {"command": command, "timeout": timeout},
        )

    return CommandResult(
        command=command,
        exit_code=process.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
        success=process.returncode == 0,
        duration=time.monotonic() - start,
    )


class CommandNodeRuntime(NodeRuntime):
    """Runs a shell command and stores the result in the context."""

    node_type = NodeType.COMMAND
    definition: CommandNodeDef

    async def _run(
        self,
        context: NodeContext,
        command: str,
        cwd: Optional[str],
        env: Optional[Dict[str, str]],
        timeout: float,
        throw_on_error: bool,
        result_key: str,
    ) -> StateUpdate:
        context.logger.info(f"Executing: {command}")
        result = await run_command(command, self.name, self.node_type, cwd, env, timeout)

        if not result.success:
            message = f"Command failed with exit code {result.exit_code}"
            detail = result.stderr.strip() or result.stdout.strip()
            if detail:
                message = f"{message}: {detail}"
            if throw_on_error:
                raise NodeExecutionError(
                    message, self.name, self.node_type, result.model_dump()
                )
            context.logger.warning(message)

        return StateUpdate(context={result_key: result.model_dump()})

    async def execute(self, state: WorkflowState, context: NodeContext) -> StateUpdate:
        definition = self.definition
        return await self._run(
            context,
            definition.command,
            definition.cwd,
            definition.env,
            definition.timeout or context.command_timeout,
            definition.throw_on_error,
            definition.result_key,
        )


class DynamicCommandNodeRuntime(CommandNodeRuntime):
    """Command node whose command line and options are computed from state."""

    node_type = NodeType.DYNAMIC_COMMAND
    definition: DynamicCommandNodeDef

    async def execute(self, state: WorkflowState, context: NodeContext) -> StateUpdate:
        definition = self.definition
        command = resolve_dynamic(definition.command, state)
        if not isinstance(command, str) or not command.strip():
            raise NodeExecutionError(
                f"Dynamic command resolved to an empty or non-string value: {command!r}",
                self.name,
                self.node_type,
            )

        return await self._run(
            context,
            command,
            resolve_dynamic(definition.cwd, state),
            resolve_dynamic(definition.env, state),
            resolve_dynamic(definition.timeout, state) or context.command_timeout,
            definition.throw_on_error,
            definition.result_key,
        )
