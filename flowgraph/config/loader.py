"""
DAG Loader

Loads serialized DAG descriptions (YAML or JSON) and builds DAG objects.
Node types are resolved through a NodeRegistry; nested sub-DAG
descriptions found in a node's config are built first, so factories
receive ready DAG objects.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field

from ..dag.builder import DAGBuilder
from ..dag.graph import DAG
from ..dag.registry import NodeDef, NodeRegistry

logger = logging.getLogger(__name__)


class SerializedNode(BaseModel):
    """A node entry: registered type name plus type-specific config"""
    id: str
    type: str
    label: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)


class SerializedEdge(BaseModel):
    """A connection entry; ports default to "output" -> "input" """
    model_config = ConfigDict(populate_by_name=True)

    from_node: str = Field(alias="from")
    to_node: str = Field(alias="to")
    from_port: str = "output"
    to_port: str = "input"
    id: Optional[str] = None


class SerializedDAG(BaseModel):
    """Complete serialized DAG"""
    id: str = "dag"
    entry: Optional[str] = None
    exits: List[str] = Field(default_factory=list)
    nodes: List[SerializedNode] = Field(default_factory=list)
    edges: List[SerializedEdge] = Field(default_factory=list)


class DAGLoader:
    """
    Builds DAGs from serialized descriptions.

    The loader:
    1. Validates the description against the Serialized* models
    2. Builds nested sub-DAGs found in node configs (any mapping with a
       "nodes" key), depth first
    3. Creates nodes through the registry
    4. Adds the edges, entry and exits through a DAGBuilder

    Structural validation is left to the run coordinator (or an explicit
    DAGValidator call), so a loaded DAG can still be inspected when it is
    malformed.

    Example usage:
        registry = NodeRegistry()
        register_builtin_nodes(registry)

        loader = DAGLoader(registry)
        dag = loader.load_file(Path("pipelines/report.yaml"))
    """

    def __init__(self, registry: NodeRegistry):
        """
        Initialize loader.

        Args:
            registry: Registry used to turn node types into nodes
        """
        self.registry = registry

    def load_file(self, path: Union[str, Path]) -> DAG:
        """
        Load a DAG from a YAML or JSON file.

        Raises:
            ValueError: If the file cannot be parsed or describes an invalid DAG
            OSError: If the file cannot be read
        """
        path = Path(path)
        logger.info(f"Loading DAG from {path}")
        try:
            with open(path) as f:
                raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Failed to parse {path}: {e}") from e

        if not isinstance(raw, dict):
            raise ValueError(f"DAG file {path} must contain a mapping")
        raw.setdefault("id", path.stem)
        return self.load_dict(raw)

    def load_string(self, text: str) -> DAG:
        """Load a DAG from YAML or JSON text"""
        try:
            raw = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ValueError(f"Failed to parse DAG description: {e}") from e

        if not isinstance(raw, dict):
            raise ValueError("DAG description must be a mapping")
        return self.load_dict(raw)

    def load_dict(self, data: Dict[str, Any]) -> DAG:
        """
        Build a DAG from an already parsed description.

        Args:
            data: Mapping following the SerializedDAG layout

        Returns:
            Built (not yet validated) DAG

        Raises:
            ValueError: On schema violations, duplicate node ids or unknown types
        """
        description = SerializedDAG.model_validate(data)
        builder = DAGBuilder(description.id)

        for entry in description.nodes:
            config = self._resolve_sub_dags(entry.config, f"{description.id}.{entry.id}")
            node = self.registry.create(NodeDef(
                id=entry.id,
                type=entry.type,
                label=entry.label,
                config=config,
            ))
            builder.add_node(node)

        for edge in description.edges:
            builder.connect(edge.from_node, edge.from_port, edge.to_node, edge.to_port, edge.id)

        if description.entry is not None:
            builder.set_entry_node(description.entry)
        for exit_id in description.exits:
            builder.add_exit_node(exit_id)

        dag = builder.build()
        logger.info(
            f"Loaded DAG '{dag.id}': {len(dag.nodes)} nodes, {len(dag.connections)} connections"
        )
        return dag

    def _resolve_sub_dags(self, value: Any, path: str) -> Any:
        """Replace every nested DAG description with a built DAG"""
        if isinstance(value, dict):
            if "nodes" in value:
                nested = dict(value)
                nested.setdefault("id", path)
                logger.debug(f"Loading nested DAG '{nested['id']}'")
                return self.load_dict(nested)
            return {k: self._resolve_sub_dags(v, f"{path}.{k}") for k, v in value.items()}
        if isinstance(value, list):
            return [self._resolve_sub_dags(v, f"{path}.{i}") for i, v in enumerate(value)]
        return value
