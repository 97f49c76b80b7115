"""
DAG Validator

Structural checks run before a DAG is executed: dangling references,
unknown ports, fan-in into single-value ports and cycles. Embedded sub-DAGs
of loop and fan-out nodes are validated recursively with the same rules.
"""

from typing import TYPE_CHECKING, Dict, List, Set
import logging

from ..errors import StructuralError
from .node import NodeKind

if TYPE_CHECKING:
    from .graph import DAG

logger = logging.getLogger(__name__)


class DAGValidator:
    """
    Validates DAG structure without mutating it.

    Checks, in order:
    1. Declared entry node exists
    2. Declared exit nodes exist
    3. Connection endpoints reference existing nodes
    4. Connection ports exist on their nodes
    5. Connection ids are unique
    6. No input port of a non-aggregator node is fed by several connections
    7. The connection graph has no cycle (DFS with recursion stack)
    8. Every embedded sub-DAG passes the same checks

    Example usage:
        errors = DAGValidator().validate(dag)
        if errors:
            print("\\n".join(errors))

        DAGValidator().validate_or_raise(dag)   # raises StructuralError
    """

    def validate(self, dag: "DAG") -> List[str]:
        """
        Validate a DAG.

        Args:
            dag: Graph to check

        Returns:
            Error messages; an empty list means the DAG is valid
        """
        errors = self._validate(dag, prefix="")
        if errors:
            logger.debug(f"DAG '{dag.id}' has {len(errors)} structural error(s)")
        return errors

    def validate_or_raise(self, dag: "DAG") -> None:
        """
        Raises:
            StructuralError: If validation reports any error
        """
        errors = self.validate(dag)
        if errors:
            raise StructuralError(errors)

    def _validate(self, dag: "DAG", prefix: str) -> List[str]:
        errors: List[str] = []

        if dag.entry_node_id is not None and dag.entry_node_id not in dag.nodes:
            errors.append(f"{prefix}Entry node '{dag.entry_node_id}' does not exist")

        for exit_id in dag.exit_node_ids:
            if exit_id not in dag.nodes:
                errors.append(f"{prefix}Exit node '{exit_id}' does not exist")

        errors.extend(self._check_connections(dag, prefix))
        errors.extend(self._check_cycles(dag, prefix))

        for node_id, node in dag.nodes.items():
            for label, sub_dag in dag.sub_dags(node):
                errors.extend(self._validate(sub_dag, prefix=f"{prefix}{node_id}/{label}: "))

        return errors

    def _check_connections(self, dag: "DAG", prefix: str) -> List[str]:
        errors: List[str] = []
        seen_ids: Set[str] = set()
        feeds: Dict[tuple, List[str]] = {}

        for conn in dag.connections:
            if conn.id in seen_ids:
                errors.append(f"{prefix}Duplicate connection id '{conn.id}'")
            seen_ids.add(conn.id)

            source = dag.nodes.get(conn.from_node_id)
            target = dag.nodes.get(conn.to_node_id)

            if source is None:
                errors.append(
                    f"{prefix}Connection '{conn.id}' references non-existent from node "
                    f"'{conn.from_node_id}'"
                )
            elif conn.from_port_id not in {p.id for p in source.output_ports}:
                errors.append(
                    f"{prefix}Connection '{conn.id}' references unknown output port "
                    f"'{conn.from_port_id}' on node '{conn.from_node_id}'"
                )

            if target is None:
                errors.append(
                    f"{prefix}Connection '{conn.id}' references non-existent to node "
                    f"'{conn.to_node_id}'"
                )
            elif conn.to_port_id not in {p.id for p in target.input_ports}:
                errors.append(
                    f"{prefix}Connection '{conn.id}' references unknown input port "
                    f"'{conn.to_port_id}' on node '{conn.to_node_id}'"
                )
            elif target.kind != NodeKind.AGGREGATOR:
                feeds.setdefault((conn.to_node_id, conn.to_port_id), []).append(conn.id)

        for (node_id, port_id), conn_ids in feeds.items():
            if len(conn_ids) > 1:
                errors.append(
                    f"{prefix}Input port '{port_id}' of node '{node_id}' has multiple "
                    f"incoming connections: {', '.join(conn_ids)}"
                )

        return errors

    def _check_cycles(self, dag: "DAG", prefix: str) -> List[str]:
        """
        Detect cycles using depth-first search.

        Uses DFS with a recursion stack to detect back edges. Connections to
        or from missing nodes are ignored here; they are reported above.
        """
        adjacency: Dict[str, List[str]] = {nid: [] for nid in dag.nodes}
        for conn in dag.connections:
            if conn.from_node_id in adjacency and conn.to_node_id in dag.nodes:
                if conn.to_node_id not in adjacency[conn.from_node_id]:
                    adjacency[conn.from_node_id].append(conn.to_node_id)

        visited: Set[str] = set()
        rec_stack: Set[str] = set()
        errors: List[str] = []

        def dfs(node_id: str, path: List[str]) -> bool:
            visited.add(node_id)
            rec_stack.add(node_id)
            path.append(node_id)

            for nxt in adjacency[node_id]:
                if nxt not in visited:
                    if dfs(nxt, path):
                        return True
                elif nxt in rec_stack:
                    cycle = path[path.index(nxt):] + [nxt]
                    errors.append(f"{prefix}Cycle detected: {' -> '.join(cycle)}")
                    return True

            rec_stack.discard(node_id)
            path.pop()
            return False

        for node_id in dag.nodes:
            if node_id not in visited:
                if dfs(node_id, []):
                    # One cycle report per graph is enough to reject it
                    break

        return errors
