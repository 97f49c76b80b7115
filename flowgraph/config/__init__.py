"""
Config Module

Run settings and serialized DAG loading.
"""

from .settings import RunConfig, merge_configs
from .loader import DAGLoader, SerializedDAG, SerializedEdge, SerializedNode

__all__ = [
    "DAGLoader",
    "RunConfig",
    "SerializedDAG",
    "SerializedEdge",
    "SerializedNode",
    "merge_configs",
]
