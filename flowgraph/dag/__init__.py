"""
DAG Module

Graph model, construction, validation and node type registry.
"""

from .node import (
    AggregatorNode,
    ConditionalNode,
    Connection,
    ExecutionNode,
    FanOutBranch,
    FanOutNode,
    LoopNode,
    Node,
    NodeKind,
    Port,
    create_aggregator_node,
    create_conditional_node,
    create_execution_node,
    create_fan_out_node,
    create_loop_node,
)
from .graph import DAG
from .validator import DAGValidator
from .builder import DAGBuilder, IdGenerator
from .registry import NodeDef, NodeRegistry

__all__ = [
    "AggregatorNode",
    "ConditionalNode",
    "Connection",
    "DAG",
    "DAGBuilder",
    "DAGValidator",
    "ExecutionNode",
    "FanOutBranch",
    "FanOutNode",
    "IdGenerator",
    "LoopNode",
    "Node",
    "NodeDef",
    "NodeKind",
    "NodeRegistry",
    "Port",
    "create_aggregator_node",
    "create_conditional_node",
    "create_execution_node",
    "create_fan_out_node",
    "create_loop_node",
]
