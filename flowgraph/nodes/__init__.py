"""
Built-in Nodes

Generic node types usable from serialized DAG files.
"""

from .builtin import BUILTIN_NODE_TYPES, register_builtin_nodes

__all__ = [
    "BUILTIN_NODE_TYPES",
    "register_builtin_nodes",
]
