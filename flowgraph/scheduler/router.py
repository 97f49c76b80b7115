"""
Port Router

Per-run buffers for values travelling along connections. Decides when a
node's connected input ports are satisfied and hands each node its inputs.
A router belongs to exactly one run; concurrent runs of the same DAG each
get their own instance.
"""

from typing import Any, Dict, List, Tuple
import logging

from ..dag.graph import DAG
from ..dag.node import Node, Port

logger = logging.getLogger(__name__)


class _Unavailable:
    """Marker for an input port with no value"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNAVAILABLE"

    def __bool__(self) -> bool:
        return False


UNAVAILABLE = _Unavailable()


class PortRouter:
    """
    Routes published output values to downstream input ports.

    Readiness rule: a node is ready when every input port that has at least
    one incoming connection has received a value from each of those
    connections. Ports with no incoming connection are satisfied with no
    value, or with the run's seed value if the node was seeded.

    Example usage:
        router = PortRouter(dag)
        router.seed("start", 5)

        inputs = router.resolve_inputs(dag.get_node("start"))   # {"input": 5}
        touched = router.publish_output("start", "output", 10)  # ["next"]
        router.is_ready(dag.get_node("next"))                    # True
    """

    def __init__(self, dag: DAG):
        """
        Initialize empty buffers for a DAG.

        Args:
            dag: Frozen graph whose connections define the routes
        """
        self.dag = dag
        # (node_id, port_id) -> {connection_id: value}
        self._buffers: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._seeds: Dict[str, Any] = {}

    def seed(self, node_id: str, value: Any) -> None:
        """
        Deliver the run's seed value to a node's unconnected input ports.

        Args:
            node_id: Entry node (or source node when no entry is declared)
            value: Initial input of the run
        """
        self._seeds[node_id] = value
        logger.debug(f"Seeded node '{node_id}' in DAG '{self.dag.id}'")

    def is_seeded(self, node_id: str) -> bool:
        return node_id in self._seeds

    def seed_value(self, node_id: str) -> Any:
        """The seed delivered to a node, or UNAVAILABLE"""
        return self._seeds.get(node_id, UNAVAILABLE)

    def publish_output(self, node_id: str, port_id: str, value: Any) -> List[str]:
        """
        Buffer a value on every connection leaving an output port.

        Args:
            node_id: Publishing node
            port_id: Output port the value was produced on
            value: Value to deliver

        Returns:
            Ids of downstream nodes that received the value (no duplicates)
        """
        touched: List[str] = []
        for conn in self.dag.outgoing(node_id, port_id):
            key = (conn.to_node_id, conn.to_port_id)
            self._buffers.setdefault(key, {})[conn.id] = value
            if conn.to_node_id not in touched:
                touched.append(conn.to_node_id)

        logger.debug(
            f"Published '{node_id}.{port_id}' to {len(touched)} downstream node(s)"
        )
        return touched

    def has_received(self, node_id: str, port_id: str) -> bool:
        """True when every connection into this port has delivered a value"""
        conns = self.dag.incoming(node_id, port_id)
        received = self._buffers.get((node_id, port_id), {})
        return all(c.id in received for c in conns)

    def pending_ports(self, node: Node) -> List[Port]:
        """Connected input ports still waiting for at least one value"""
        return [p for p in node.input_ports if not self.has_received(node.id, p.id)]

    def is_ready(self, node: Node) -> bool:
        return not self.pending_ports(node)

    def resolve_inputs(self, node: Node) -> Dict[str, Any]:
        """
        Resolve the value of every declared input port.

        Args:
            node: Node about to run

        Returns:
            Mapping port_id -> value, in port declaration order. A port fed by
            several connections (aggregators only) resolves to a list ordered
            by connection creation order. Ports without a value resolve to
            UNAVAILABLE.
        """
        resolved: Dict[str, Any] = {}
        for port in node.input_ports:
            conns = self.dag.incoming(node.id, port.id)
            if not conns:
                resolved[port.id] = self._seeds.get(node.id, UNAVAILABLE)
                continue

            received = self._buffers.get((node.id, port.id), {})
            if not all(c.id in received for c in conns):
                resolved[port.id] = UNAVAILABLE
            elif len(conns) == 1:
                resolved[port.id] = received[conns[0].id]
            else:
                resolved[port.id] = [received[c.id] for c in conns]

        return resolved
