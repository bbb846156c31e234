"""Transition resolution between workflow nodes."""

import logging
from typing import AbstractSet, Iterable, List

from .errors import ConfigurationError
from .models import TERMINAL_NODES, WorkflowState
from .schema import Transition

logger = logging.getLogger(__name__)


def _format_targets(valid_node_names: AbstractSet[str]) -> str:
    return ", ".join(sorted(valid_node_names))


def validate_transition_target(
    target: str,
    valid_node_names: AbstractSet[str],
    current_node: str,
) -> str:
    """Check that ``target`` names a node in the graph or a terminal sentinel.

    Raises:
        ConfigurationError: If the target is unknown
    """
    if target in TERMINAL_NODES or target in valid_node_names:
        return target
    raise ConfigurationError(
        f'Node "{current_node}" next() returned invalid target "{target}". '
        f"Valid targets are: {_format_targets(valid_node_names)}"
    )


def resolve_transition(
    transition: Transition,
    state: WorkflowState,
    valid_node_names: AbstractSet[str],
    current_node: str,
) -> str:
    """Compute the node to run after ``current_node``.

    Literal targets are membership checked. Function targets are called with
    the current state and their result is checked the same way.

    Args:
        transition: Literal target, terminal sentinel or function of state
        state: State after the current node's update was merged
        valid_node_names: Node names of the graph plus the terminal sentinels
        current_node: Name of the node whose transition is resolved

    Returns:
        Name of the next node

    Raises:
        ConfigurationError: If the function raises or the target is unknown
    """
    if isinstance(transition, str):
        if transition in TERMINAL_NODES:
            return transition
        return validate_transition_target(transition, valid_node_names, current_node)

    if not callable(transition):
        raise ConfigurationError(
            f'Node "{current_node}" has a transition of unsupported type '
            f"{type(transition).__name__}"
        )

    try:
        target = transition(state)
    except Exception as e:
        raise ConfigurationError(
            f'Node "{current_node}" next() function threw an error: {e}'
        ) from e

    if not isinstance(target, str):
        raise ConfigurationError(
            f'Node "{current_node}" next() returned non-string target {target!r}'
        )

    logger.debug(f"Dynamic transition from {current_node} resolved to {target}")
    return validate_transition_target(target, valid_node_names, current_node)


def validate_static_transitions(
    nodes: Iterable,
    valid_node_names: AbstractSet[str],
) -> List[str]:
    """Collect errors for every literal transition outside the graph.

    Function transitions are skipped; they are checked when called.
    """
    errors = []
    for node in nodes:
        then = node.then
        if isinstance(then, str) and then not in valid_node_names:
            errors.append(
                f'Node "{node.name}" has invalid transition target "{then}". '
                f"Valid targets are: {_format_targets(valid_node_names)}"
            )
    return errors
