"""
Node Registry

Factory registry for creating node instances from NodeDef descriptions.
Used by the DAG loader to turn persisted node descriptions into nodes with
live behaviours.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
import logging

from .node import Node

logger = logging.getLogger(__name__)


@dataclass
class NodeDef:
    """
    Declarative description of a node, as read from a serialized DAG.

    Attributes:
        id: Unique identifier within its DAG (e.g., "fetch", "summarize")
        type: Registered node type name (e.g., "literal", "branch", "repeat")
        label: Optional display label
        config: Type-specific settings; nested sub-DAG descriptions have
                already been replaced by built DAG objects
    """
    id: str
    type: str
    label: Optional[str] = None
    config: Dict[str, Any] = field(default_factory=dict)


NodeFactory = Callable[[NodeDef], Node]


class NodeRegistry:
    """
    Maps node type names to the factories that build them.

    Example usage:
        registry = NodeRegistry()

        def create_upper_node(node_def: NodeDef) -> Node:
            return create_execution_node(node_def.id, str.upper, label=node_def.label)

        registry.register("upper", create_upper_node)

        node = registry.create(NodeDef(id="shout", type="upper"))
    """

    def __init__(self):
        """Start with no node types registered"""
        self._factories: Dict[str, NodeFactory] = {}
        logger.debug("Created empty node registry")

    def register(self, node_type: str, factory: NodeFactory) -> None:
        """
        Bind a type name to the factory that builds its nodes.

        Args:
            node_type: Type identifier (e.g., "literal", "collect")
            factory: Callable that takes a NodeDef and returns a Node
        """
        if node_type in self._factories:
            logger.warning(f"Node type '{node_type}' re-registered; previous factory replaced")

        self._factories[node_type] = factory
        logger.debug(f"Registered node type: {node_type}")

    def create(self, node_def: NodeDef) -> Node:
        """
        Build the node described by a NodeDef.

        Args:
            node_def: Node definition containing id, type and config

        Returns:
            Node built by the registered factory

        Raises:
            ValueError: If node_def.type is not registered or the factory
                        rejects the configuration
        """
        if node_def.type not in self._factories:
            available = ", ".join(sorted(self._factories))
            raise ValueError(
                f"Unknown node type: {node_def.type}. "
                f"Available types: {available if available else 'none'}"
            )

        factory = self._factories[node_def.type]
        try:
            node = factory(node_def)
        except (KeyError, TypeError) as e:
            raise ValueError(
                f"Invalid config for node '{node_def.id}' (type={node_def.type}): {e}"
            ) from e

        logger.debug(
            f"Created node: id={node_def.id}, type={node_def.type}, "
            f"kind={node.kind.value}"
        )

        return node

    def list_types(self) -> List[str]:
        """List all registered node types"""
        return list(self._factories.keys())

    def is_registered(self, node_type: str) -> bool:
        return node_type in self._factories
