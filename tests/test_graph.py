"""Tests for workflow configuration and graph building."""

import pytest
from pydantic import ValidationError

from graph_rollback import (
    END,
    ERROR,
    ConfigurationError,
    WorkflowConfig,
    build_graph,
    command_node,
    create_initial_state,
    eval_node,
)
from graph_rollback.core.schema import CommandNodeDef, EvalNodeDef, SlashCommandNodeDef
from graph_rollback.nodes import CommandNodeRuntime, EvalNodeRuntime


def test_build_graph_keys_nodes_by_name():
    config = WorkflowConfig(
        id="wf",
        nodes=[
            eval_node("a", lambda s: {"x": 1}, then="b"),
            command_node("b", "echo hi", then=END),
        ],
    )

    graph = build_graph(config)

    assert graph.entry_node == "a"
    assert isinstance(graph.get("a"), EvalNodeRuntime)
    assert isinstance(graph.get("b"), CommandNodeRuntime)
    assert "b" in graph
    assert "missing" not in graph
    assert graph.valid_node_names == {"a", "b", END, ERROR}


def test_unknown_target_is_rejected_before_execution():
    config = WorkflowConfig(
        id="wf",
        nodes=[
            eval_node("a", lambda s: {}, then="nowhere"),
            eval_node("b", lambda s: {}, then="also-nowhere"),
        ],
    )

    with pytest.raises(ConfigurationError) as exc_info:
        build_graph(config)

    assert len(exc_info.value.errors) == 2
    assert exc_info.value.errors[0] == (
        'Node "a" has invalid transition target "nowhere". '
        "Valid targets are: END, ERROR, a, b"
    )


def test_error_sentinel_is_a_valid_target():
    config = WorkflowConfig(id="wf", nodes=[eval_node("a", lambda s: {}, then=ERROR)])

    assert build_graph(config).get("a") is not None


def test_function_transitions_are_not_checked_statically():
    config = WorkflowConfig(
        id="wf", nodes=[eval_node("a", lambda s: {}, then=lambda s: "anything")]
    )

    build_graph(config)


def test_duplicate_node_names_rejected():
    with pytest.raises(ValidationError, match="Duplicate node names: a"):
        WorkflowConfig(
            id="wf",
            nodes=[eval_node("a", lambda s: {}), eval_node("a", lambda s: {})],
        )


def test_reserved_node_names_rejected():
    with pytest.raises(ValidationError, match="reserved"):
        eval_node(END, lambda s: {})


def test_empty_workflow_rejected():
    with pytest.raises(ValidationError, match="at least one node"):
        WorkflowConfig(id="wf", nodes=[])


def test_plain_dict_config_selects_variant_by_type():
    config = WorkflowConfig.model_validate(
        {
            "id": "wf",
            "nodes": [
                {"type": "command", "name": "build", "command": "make", "then": "review"},
                {"type": "slash-command", "name": "review", "command": "/review", "args": "src"},
                {"type": "eval", "name": "count", "update": lambda s: {}},
            ],
        }
    )

    build, review, count = config.nodes
    assert isinstance(build, CommandNodeDef)
    assert build.result_key == "lastCommandResult"
    assert isinstance(review, SlashCommandNodeDef)
    assert review.command == "review"
    assert review.then == END
    assert isinstance(count, EvalNodeDef)


def test_initial_state_starts_at_first_node():
    config = WorkflowConfig(
        id="wf",
        nodes=[eval_node("first", lambda s: {}), eval_node("second", lambda s: {})],
        initial_context={"a": 1, "b": 2},
    )

    state = create_initial_state(config, {"b": 3})

    assert state.current_node == "first"
    assert state.context == {"a": 1, "b": 3}
    assert state.conversation_history == []
