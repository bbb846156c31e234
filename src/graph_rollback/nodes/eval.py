"""Eval node runtime: an inline transform over the context."""

import inspect
import time

from ..core.errors import NodeExecutionError
from ..core.models import StateUpdate, WorkflowState
from ..core.schema import EvalNodeDef, NodeType
from .base import NodeContext, NodeRuntime


class EvalNodeRuntime(NodeRuntime):
    """Calls ``update(state)`` and merges the returned mapping into the context.

    The function may be sync or async. Anything it raises is reported as a
    ``NodeExecutionError`` chained to the original exception.
    """

    node_type = NodeType.EVAL
    definition: EvalNodeDef

    async def execute(self, state: WorkflowState, context: NodeContext) -> StateUpdate:
        definition = self.definition
        start = time.monotonic()

        try:
            partial = definition.update(state)
            if inspect.isawaitable(partial):
                partial = await partial
        except Exception as e:
            raise NodeExecutionError(
                f"Eval function failed: {e}",
                self.name,
                self.node_type,
                {"duration": time.monotonic() - start},
            ) from e

        if partial is None:
            partial = {}
        if not isinstance(partial, dict):
            raise NodeExecutionError(
                f"Eval function must return a mapping, got {type(partial).__name__}",
                self.name,
                self.node_type,
            )

        updated_keys = list(partial.keys())
        context.logger.debug(f"Updated keys: {', '.join(updated_keys) or '(none)'}")

        return StateUpdate(
            context={
                **partial,
                definition.result_key: {
                    "success": True,
                    "updated_keys": updated_keys,
                    "duration": time.monotonic() - start,
                },
            }
        )
