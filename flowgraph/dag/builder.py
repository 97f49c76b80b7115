"""
DAG Builder

Incremental construction of a DAG: add/remove nodes, connect/disconnect
ports, declare entry and exit nodes, then freeze the result with build().
"""

from typing import Dict, List, Optional
import logging

from .graph import DAG
from .node import Connection, Node
from .validator import DAGValidator

logger = logging.getLogger(__name__)


class IdGenerator:
    """
    Counter-based id source scoped to its owner (a builder or a run).

    Example usage:
        ids = IdGenerator()
        ids.next("conn")   # "conn_1"
        ids.next("conn")   # "conn_2"
        ids.next("node")   # "node_1"
    """

    def __init__(self):
        self._counters: Dict[str, int] = {}

    def next(self, prefix: str) -> str:
        count = self._counters.get(prefix, 0) + 1
        self._counters[prefix] = count
        return f"{prefix}_{count}"


class DAGBuilder:
    """
    Builds a DAG incrementally.

    The builder:
    1. Collects nodes (ids must be unique)
    2. Collects connections between node ports
    3. Records the optional entry node and exit nodes
    4. Produces a frozen DAG snapshot on build()

    Removing a node cascades to every connection touching it, so a builder
    never holds dangling connections created through its own API.

    Example usage:
        builder = DAGBuilder("greeting")
        builder.add_node(create_execution_node("upper", str.upper))
        builder.add_node(create_execution_node("exclaim", lambda s: s + "!"))
        builder.connect("upper", "output", "exclaim", "input")
        builder.set_entry_node("upper").add_exit_node("exclaim")

        dag = builder.build()
    """

    def __init__(self, dag_id: str, id_generator: Optional[IdGenerator] = None):
        """
        Initialize an empty builder.

        Args:
            dag_id: Identifier of the DAG being built
            id_generator: Source of fresh connection ids on collisions
                          (default: a generator private to this builder)
        """
        self.dag_id = dag_id
        self.ids = id_generator or IdGenerator()
        self._nodes: Dict[str, Node] = {}
        self._connections: List[Connection] = []
        self._entry_node_id: Optional[str] = None
        self._exit_node_ids: List[str] = []

        logger.debug(f"Initialized DAGBuilder for '{dag_id}'")

    def add_node(self, node: Node) -> "DAGBuilder":
        """
        Add a node.

        Raises:
            ValueError: If a node with the same id already exists
        """
        if node.id in self._nodes:
            raise ValueError(f"DAG '{self.dag_id}' already contains a node with id '{node.id}'")
        self._nodes[node.id] = node
        logger.debug(f"Added {node.kind.value} node '{node.id}' to '{self.dag_id}'")
        return self

    def remove_node(self, node_id: str) -> "DAGBuilder":
        """
        Remove a node and every connection that references it.

        Entry and exit declarations pointing at the node are cleared as well.
        """
        if node_id not in self._nodes:
            logger.warning(f"Cannot remove unknown node '{node_id}' from '{self.dag_id}'")
            return self

        del self._nodes[node_id]
        before = len(self._connections)
        self._connections = [
            c for c in self._connections
            if c.from_node_id != node_id and c.to_node_id != node_id
        ]
        if self._entry_node_id == node_id:
            self._entry_node_id = None
        self._exit_node_ids = [nid for nid in self._exit_node_ids if nid != node_id]

        logger.debug(
            f"Removed node '{node_id}' and {before - len(self._connections)} connection(s)"
        )
        return self

    def connect(
        self,
        from_node_id: str,
        from_port_id: str,
        to_node_id: str,
        to_port_id: str,
        connection_id: Optional[str] = None,
    ) -> "DAGBuilder":
        """
        Connect an output port to an input port.

        Endpoints are not checked here; the validator reports dangling
        references so that a graph can be assembled in any order.

        Args:
            from_node_id: Source node
            from_port_id: Output port on the source node
            to_node_id: Destination node
            to_port_id: Input port on the destination node
            connection_id: Explicit id (default "{from}:{port}->{to}:{port}")

        Raises:
            ValueError: If an explicit connection_id is already in use
        """
        existing = {c.id for c in self._connections}
        if connection_id is not None:
            if connection_id in existing:
                raise ValueError(f"Connection id '{connection_id}' already exists")
        else:
            connection_id = f"{from_node_id}:{from_port_id}->{to_node_id}:{to_port_id}"
            while connection_id in existing:
                connection_id = f"{from_node_id}:{from_port_id}->{to_node_id}:{to_port_id}#{self.ids.next('dup')}"

        self._connections.append(Connection(
            id=connection_id,
            from_node_id=from_node_id,
            from_port_id=from_port_id,
            to_node_id=to_node_id,
            to_port_id=to_port_id,
        ))
        return self

    def disconnect(self, connection_id: str) -> "DAGBuilder":
        """Remove a connection by id"""
        remaining = [c for c in self._connections if c.id != connection_id]
        if len(remaining) == len(self._connections):
            logger.warning(f"Cannot disconnect unknown connection '{connection_id}'")
        self._connections = remaining
        return self

    def set_entry_node(self, node_id: str) -> "DAGBuilder":
        self._entry_node_id = node_id
        return self

    def add_exit_node(self, node_id: str) -> "DAGBuilder":
        if node_id not in self._exit_node_ids:
            self._exit_node_ids.append(node_id)
        return self

    def get_node(self, node_id: str) -> Optional[Node]:
        return self._nodes.get(node_id)

    def get_node_connections(self, node_id: str) -> List[Connection]:
        """All connections touching a node"""
        return [
            c for c in self._connections
            if c.from_node_id == node_id or c.to_node_id == node_id
        ]

    def get_incoming_connections(self, node_id: str) -> List[Connection]:
        return [c for c in self._connections if c.to_node_id == node_id]

    def get_outgoing_connections(self, node_id: str) -> List[Connection]:
        return [c for c in self._connections if c.from_node_id == node_id]

    def validate(self) -> List[str]:
        """
        Validate the current state of the builder.

        Returns:
            Structural error messages (empty list if valid)
        """
        return DAGValidator().validate(self.build())

    def build(self) -> DAG:
        """
        Freeze the current state into a DAG.

        The builder keeps working after build(); later edits do not affect
        previously built DAGs.

        Returns:
            Immutable DAG snapshot
        """
        dag = DAG(
            id=self.dag_id,
            nodes=dict(self._nodes),
            connections=tuple(self._connections),
            entry_node_id=self._entry_node_id,
            exit_node_ids=tuple(self._exit_node_ids),
        )
        logger.debug(
            f"Built DAG '{self.dag_id}': {len(dag.nodes)} nodes, "
            f"{len(dag.connections)} connections"
        )
        return dag
