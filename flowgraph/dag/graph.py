"""
DAG Graph Model

Immutable graph of nodes and connections handed to the engine for a run.
Instances are produced by DAGBuilder.build() and never change afterwards,
so one DAG can back any number of concurrent runs.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from .node import Connection, ExecutionNode, FanOutNode, LoopNode, Node


@dataclass(frozen=True)
class DAG:
    """
    Frozen directed graph.

    Attributes:
        id: Graph identifier
        nodes: Read-only mapping node_id -> Node
        connections: All connections, in creation order
        entry_node_id: Optional node receiving the run's initial input
        exit_node_ids: Optional nodes whose values form the run result

    Example usage:
        dag = (
            DAGBuilder("pipeline")
            .add_node(create_execution_node("double", lambda x: x * 2))
            .add_node(create_execution_node("inc", lambda x: x + 1))
            .connect("double", "output", "inc", "input")
            .set_entry_node("double")
            .add_exit_node("inc")
            .build()
        )

        dag.incoming("inc")         # [Connection(... from_node_id="double" ...)]
        dag.sink_nodes()            # ["inc"]
    """
    id: str
    nodes: Mapping[str, Node]
    connections: Tuple[Connection, ...] = ()
    entry_node_id: Optional[str] = None
    exit_node_ids: Tuple[str, ...] = ()

    _incoming: Dict[str, List[Connection]] = field(init=False, repr=False, compare=False)
    _outgoing: Dict[str, List[Connection]] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if not isinstance(self.nodes, MappingProxyType):
            object.__setattr__(self, "nodes", MappingProxyType(dict(self.nodes)))
        object.__setattr__(self, "connections", tuple(self.connections))
        object.__setattr__(self, "exit_node_ids", tuple(self.exit_node_ids))

        incoming: Dict[str, List[Connection]] = {}
        outgoing: Dict[str, List[Connection]] = {}
        for conn in self.connections:
            incoming.setdefault(conn.to_node_id, []).append(conn)
            outgoing.setdefault(conn.from_node_id, []).append(conn)
        object.__setattr__(self, "_incoming", incoming)
        object.__setattr__(self, "_outgoing", outgoing)

    def get_node(self, node_id: str) -> Optional[Node]:
        """Return the node with this id, or None"""
        return self.nodes.get(node_id)

    def has_node(self, node_id: str) -> bool:
        return node_id in self.nodes

    def incoming(self, node_id: str, port_id: Optional[str] = None) -> List[Connection]:
        """
        Connections ending at a node.

        Args:
            node_id: Destination node
            port_id: Restrict to one input port

        Returns:
            Connections in creation order
        """
        conns = self._incoming.get(node_id, [])
        if port_id is None:
            return list(conns)
        return [c for c in conns if c.to_port_id == port_id]

    def outgoing(self, node_id: str, port_id: Optional[str] = None) -> List[Connection]:
        """
        Connections leaving a node.

        Args:
            node_id: Source node
            port_id: Restrict to one output port

        Returns:
            Connections in creation order
        """
        conns = self._outgoing.get(node_id, [])
        if port_id is None:
            return list(conns)
        return [c for c in conns if c.from_port_id == port_id]

    def node_connections(self, node_id: str) -> List[Connection]:
        """All connections touching a node, in creation order"""
        return [
            c for c in self.connections
            if c.from_node_id == node_id or c.to_node_id == node_id
        ]

    def source_nodes(self) -> List[str]:
        """Nodes with no incoming connections"""
        return [nid for nid in self.nodes if not self._incoming.get(nid)]

    def sink_nodes(self) -> List[str]:
        """Nodes with no outgoing connections"""
        return [nid for nid in self.nodes if not self._outgoing.get(nid)]

    @staticmethod
    def sub_dags(node: Node) -> List[Tuple[str, "DAG"]]:
        """
        Embedded sub-DAGs owned by a node.

        Returns:
            (label, sub_dag) pairs; label is "sub_dag" for loops and
            map-style execution nodes, "branch:<port>" for fan-out branches
        """
        if isinstance(node, LoopNode):
            return [("sub_dag", node.sub_dag)]
        if isinstance(node, ExecutionNode) and node.sub_dag is not None:
            return [("sub_dag", node.sub_dag)]
        if isinstance(node, FanOutNode):
            return [
                (f"branch:{b.port.id}", b.sub_dag)
                for b in node.branches
                if b.sub_dag is not None
            ]
        return []

    def __len__(self) -> int:
        return len(self.nodes)
