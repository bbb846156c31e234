"""Tests for transition resolution."""

import pytest

from graph_rollback import END, ERROR, ConfigurationError, WorkflowState
from graph_rollback.core.transitions import resolve_transition

VALID = frozenset({"a", "b", END, ERROR})


@pytest.fixture
def state():
    return WorkflowState(current_node="a", context={"count": 2})


def test_literal_target(state):
    assert resolve_transition("b", state, VALID, "a") == "b"


def test_terminal_sentinels(state):
    assert resolve_transition(END, state, VALID, "a") == END
    assert resolve_transition(ERROR, state, VALID, "a") == ERROR


def test_function_reads_state(state):
    def route(s):
        return "b" if s.context["count"] > 1 else END

    assert resolve_transition(route, state, VALID, "a") == "b"


def test_function_returning_unknown_target(state):
    with pytest.raises(ConfigurationError) as exc_info:
        resolve_transition(lambda s: "zzz", state, VALID, "a")

    assert str(exc_info.value) == (
        'Node "a" next() returned invalid target "zzz". '
        "Valid targets are: END, ERROR, a, b"
    )


def test_function_that_raises(state):
    def route(s):
        raise KeyError("missing")

    with pytest.raises(ConfigurationError, match=r"next\(\) function threw an error") as exc_info:
        resolve_transition(route, state, VALID, "a")

    assert isinstance(exc_info.value.__cause__, KeyError)


def test_function_returning_non_string(state):
    with pytest.raises(ConfigurationError, match="non-string"):
        resolve_transition(lambda s: 42, state, VALID, "a")
