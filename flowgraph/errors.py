"""
Errors

Error taxonomy shared by the graph model, the validator and the run coordinator.

- StructuralError: graph is malformed, raised before anything runs
- NodeExecutionError: a node behaviour failed (retryable)
- RunCancelledError / RunTimeoutError / IncompleteRunError: run-level aborts
- RunError: the single failure surfaced to the caller of a run
"""

from typing import Any, Dict, List, Optional


class FlowGraphError(Exception):
    """Base class for all engine errors"""


class StructuralError(FlowGraphError):
    """
    Raised when a DAG fails structural validation.

    Attributes:
        errors: Validator messages, in the order they were detected
    """

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        summary = "; ".join(self.errors) if self.errors else "unknown structural error"
        super().__init__(f"DAG validation failed: {summary}")


class NodeExecutionError(FlowGraphError):
    """
    Raised when a node's behaviour raised, timed out, or its nested run failed.

    Attributes:
        node_id: Node whose execution failed
        cause: Underlying exception
        attempts: Number of attempts made when the failure became terminal
    """

    def __init__(self, node_id: str, cause: BaseException, attempts: int = 1):
        self.node_id = node_id
        self.cause = cause
        self.attempts = attempts
        super().__init__(
            f"Node '{node_id}' failed after {attempts} attempt(s): "
            f"{type(cause).__name__}: {cause}"
        )


class RunCancelledError(FlowGraphError):
    """Raised for work aborted by a sibling failure or an external cancel request"""


class RunTimeoutError(FlowGraphError):
    """Raised when the run-level deadline expires"""


class IncompleteRunError(FlowGraphError):
    """
    Raised when a declared exit node never completed, or when a nested run
    without declared exits completed none of its sink nodes (node_id None).
    """

    def __init__(self, node_id: Optional[str] = None):
        self.node_id = node_id
        if node_id is None:
            super().__init__("No exit or sink node completed")
        else:
            super().__init__(f"Exit node '{node_id}' never completed")


class RunError(FlowGraphError):
    """
    Terminal failure of a run.

    Attributes:
        node_id: First node that failed terminally, or None for run-level
                 aborts (timeout, external cancellation)
        cause: Underlying exception
        node_results: Per-node results gathered before the run stopped.
                      Completed entries are kept but are not authoritative.
    """

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
        node_results: Optional[Dict[str, Any]] = None,
    ):
        self.node_id = node_id
        self.cause = cause
        self.node_results = node_results or {}
        super().__init__(message)
