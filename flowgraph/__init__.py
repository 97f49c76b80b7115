"""
flowgraph

Build computation graphs from typed nodes and port-to-port connections and
run them with asyncio.
"""

from .config import DAGLoader, RunConfig, merge_configs
from .dag import (
    DAG,
    AggregatorNode,
    ConditionalNode,
    Connection,
    DAGBuilder,
    DAGValidator,
    ExecutionNode,
    FanOutBranch,
    FanOutNode,
    LoopNode,
    NodeDef,
    NodeKind,
    NodeRegistry,
    Port,
    create_aggregator_node,
    create_conditional_node,
    create_execution_node,
    create_fan_out_node,
    create_loop_node,
)
from .errors import (
    FlowGraphError,
    IncompleteRunError,
    NodeExecutionError,
    RunCancelledError,
    RunError,
    RunTimeoutError,
    StructuralError,
)
from .events import (
    CallbackSink,
    CompositeSink,
    EventKind,
    LoggingSink,
    NullSink,
    ProgressEvent,
    QueueSink,
)
from .nodes import register_builtin_nodes
from .runtime import NodeResult, RunCoordinator, RunResult
from .scheduler import NodeStatus

__version__ = "0.1.0"

__all__ = [
    "AggregatorNode",
    "CallbackSink",
    "CompositeSink",
    "ConditionalNode",
    "Connection",
    "DAG",
    "DAGBuilder",
    "DAGLoader",
    "DAGValidator",
    "EventKind",
    "ExecutionNode",
    "FanOutBranch",
    "FanOutNode",
    "FlowGraphError",
    "IncompleteRunError",
    "LoggingSink",
    "LoopNode",
    "NodeDef",
    "NodeExecutionError",
    "NodeKind",
    "NodeRegistry",
    "NodeResult",
    "NodeStatus",
    "NullSink",
    "Port",
    "ProgressEvent",
    "QueueSink",
    "RunCancelledError",
    "RunConfig",
    "RunCoordinator",
    "RunError",
    "RunResult",
    "RunTimeoutError",
    "StructuralError",
    "create_aggregator_node",
    "create_conditional_node",
    "create_execution_node",
    "create_fan_out_node",
    "create_loop_node",
    "merge_configs",
    "register_builtin_nodes",
]
