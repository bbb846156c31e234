"""Exception hierarchy for the graph execution engine.

Configuration errors are fatal and never retried. Node execution errors are
caught by the execution loop and recorded against the failing node.
"""

from typing import Any, Dict, List, Optional


class GraphRollbackError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(GraphRollbackError, ValueError):
    """Raised when a workflow graph is malformed.

    Covers unknown transition targets, duplicate or reserved node names and
    checkpoints that reference nodes the graph no longer defines.
    """

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


class NodeExecutionError(GraphRollbackError):
    """Raised by a node runtime when its side effect fails."""

    def __init__(
        self,
        message: str,
        node_name: str,
        node_type: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.node_name = node_name
        self.node_type = node_type
        self.details = details or {}


class CommandTimeoutError(NodeExecutionError):
    """Raised when a subprocess exceeds its timeout."""


class ExecutionNotFoundError(GraphRollbackError, LookupError):
    """Raised when an execution id has no checkpoint."""


class ResumptionError(GraphRollbackError):
    """Raised when an execution cannot be resumed."""
