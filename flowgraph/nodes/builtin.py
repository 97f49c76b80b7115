"""
Built-in Node Types

Generic node types available to serialized DAGs. Each factory is
registered with the NodeRegistry under its type name and is called with
the NodeDef read from the DAG file.

Config keys shared by several types:
    inputs:  list of input port ids (overrides the default ["input"])
    outputs: list of output port ids (overrides the default ["output"])
"""

from typing import Any, Awaitable, List, Optional
import asyncio
import json
import logging

from ..dag.node import (
    AggregatorNode,
    ConditionalNode,
    ExecutionNode,
    FanOutBranch,
    FanOutNode,
    ItemRunner,
    LoopNode,
    Port,
    create_aggregator_node,
    create_conditional_node,
    create_execution_node,
    create_fan_out_node,
    create_loop_node,
)
from ..dag.registry import NodeDef, NodeRegistry

logger = logging.getLogger(__name__)

DEDUPE_METHODS = ("first", "last")


class LiteralTransform:
    """Ignores its input and emits a fixed value"""

    def __init__(self, value: Any):
        self.value = value

    def execute(self, value: Any) -> Any:
        return self.value


class IdentityTransform:
    def execute(self, value: Any) -> Any:
        return value


class ConsoleTransform:
    """Logs the value it receives and passes it through"""

    def __init__(self, node_id: str, prefix: str = ""):
        self.node_id = node_id
        self.prefix = prefix

    def execute(self, value: Any) -> Any:
        logger.info(f"[{self.node_id}] {self.prefix}{value!r}")
        return value


class CollectReducer:
    """
    Collects inputs into a list.

    With several input ports the list follows port declaration order. With
    a single port the port's own value is used, so a port fed by several
    connections yields the list of their values.
    """

    def __init__(self, port_count: int):
        self.port_count = port_count

    def aggregate(self, inputs: List[Any]) -> List[Any]:
        if self.port_count == 1:
            value = inputs[0]
            return list(value) if isinstance(value, list) else [value]
        return list(inputs)


class MergeReducer:
    """Merges mapping inputs; later ports override earlier keys"""

    def aggregate(self, inputs: List[Any]) -> dict:
        merged: dict = {}
        for value in _flatten(inputs):
            if value is None:
                continue
            if not isinstance(value, dict):
                raise TypeError(f"merge expects mappings, got {type(value).__name__}")
            merged.update(value)
        return merged


class EqualsCondition:
    """True when the input (or one of its fields) equals a fixed value"""

    def __init__(self, expected: Any, field: Optional[str] = None):
        self.expected = expected
        self.field = field

    def evaluate(self, value: Any) -> bool:
        if self.field is not None:
            value = value.get(self.field) if isinstance(value, dict) else None
        return value == self.expected


class TruthyCondition:
    def __init__(self, field: Optional[str] = None):
        self.field = field

    def evaluate(self, value: Any) -> bool:
        if self.field is not None:
            value = value.get(self.field) if isinstance(value, dict) else None
        return bool(value)


class TimesCondition:
    """Continue while fewer than `times` iterations have run (None = always)"""

    def __init__(self, times: Optional[int] = None):
        self.times = times

    def should_continue(self, value: Any, iteration: int) -> bool:
        return self.times is None or iteration < self.times


class ExtractTransform:
    """Reads a dotted property path ("user.id", "items.0.name") from the input"""

    def __init__(self, path: str):
        self.path = path

    def execute(self, value: Any) -> Any:
        return get_path(value, self.path)


class DedupeTransform:
    """
    Removes duplicate list items.

    Items compare by their JSON form, or by the value at `by` when set.
    method "first" keeps the first occurrence of each key, "last" keeps the
    last one; survivors stay in input order.
    """

    def __init__(self, method: str = "first", by: Optional[str] = None):
        if method not in DEDUPE_METHODS:
            raise ValueError(f"dedupe method must be one of {DEDUPE_METHODS}, got '{method}'")
        self.method = method
        self.by = by

    def _key(self, item: Any) -> str:
        if self.by is not None:
            item = get_path(item, self.by)
        return json.dumps(item, sort_keys=True, default=str)

    def execute(self, value: Any) -> List[Any]:
        if not isinstance(value, list):
            raise TypeError(f"dedupe expects a list, got {type(value).__name__}")

        items = value if self.method == "first" else list(reversed(value))
        seen = set()
        kept: List[Any] = []
        for item in items:
            key = self._key(item)
            if key not in seen:
                seen.add(key)
                kept.append(item)

        return kept if self.method == "first" else list(reversed(kept))


class MapTransform:
    """
    Runs the node's sub-DAG once per list item.

    Results keep input order. With parallel set, items run concurrently and
    the first failure cancels the rest; otherwise they run one at a time.
    With flatten set every result must be a list, and the lists are
    concatenated (flatmap).
    """

    def __init__(self, node_id: str, parallel: bool = True, flatten: bool = False):
        self.node_id = node_id
        self.parallel = parallel
        self.flatten = flatten

    async def execute(self, value: Any, run_item: ItemRunner) -> List[Any]:
        if not isinstance(value, list):
            raise TypeError(f"map node '{self.node_id}' expects a list, got {type(value).__name__}")

        if self.parallel:
            results = await _run_concurrently(
                [run_item(item, f"item:{i}") for i, item in enumerate(value)]
            )
        else:
            results = [await run_item(item, f"item:{i}") for i, item in enumerate(value)]

        if not self.flatten:
            return results

        flat: List[Any] = []
        for result in results:
            if not isinstance(result, list):
                raise TypeError(
                    f"flatmap node '{self.node_id}' needs list results, got {type(result).__name__}"
                )
            flat.extend(result)
        return flat


async def _run_concurrently(coros: List[Awaitable[Any]]) -> List[Any]:
    """Await coroutines as tasks; the first failure cancels the others"""
    if not coros:
        return []

    tasks = [asyncio.ensure_future(c) for c in coros]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        for task in done:
            error = task.exception()
            if error is not None:
                raise error
        return [task.result() for task in tasks]
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def get_path(value: Any, path: str) -> Any:
    """Follow a dotted path through mappings and lists; None when missing"""
    current = value
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.lstrip("-").isdigit():
            index = int(part)
            current = current[index] if -len(current) <= index < len(current) else None
        else:
            return None
    return current


def _flatten(inputs: List[Any]) -> List[Any]:
    flat: List[Any] = []
    for value in inputs:
        if isinstance(value, list):
            flat.extend(value)
        else:
            flat.append(value)
    return flat


# ================================
# Factories
# ================================
def create_literal_node(node_def: NodeDef) -> ExecutionNode:
    """Execution node emitting config["value"]"""
    return create_execution_node(
        node_def.id,
        LiteralTransform(node_def.config["value"]),
        label=node_def.label,
        input_ports=node_def.config.get("inputs"),
        output_ports=node_def.config.get("outputs"),
    )


def create_identity_node(node_def: NodeDef) -> ExecutionNode:
    return create_execution_node(
        node_def.id,
        IdentityTransform(),
        label=node_def.label,
        input_ports=node_def.config.get("inputs"),
        output_ports=node_def.config.get("outputs"),
    )


def create_console_node(node_def: NodeDef) -> ExecutionNode:
    return create_execution_node(
        node_def.id,
        ConsoleTransform(node_def.id, node_def.config.get("prefix", "")),
        label=node_def.label,
        input_ports=node_def.config.get("inputs"),
        output_ports=node_def.config.get("outputs"),
    )


def create_collect_node(node_def: NodeDef) -> AggregatorNode:
    inputs = node_def.config.get("inputs") or ["input"]
    return create_aggregator_node(
        node_def.id,
        CollectReducer(len(inputs)),
        input_ports=inputs,
        label=node_def.label,
        output_ports=node_def.config.get("outputs"),
    )


def create_merge_node(node_def: NodeDef) -> AggregatorNode:
    return create_aggregator_node(
        node_def.id,
        MergeReducer(),
        input_ports=node_def.config.get("inputs"),
        label=node_def.label,
        output_ports=node_def.config.get("outputs"),
    )


def create_branch_node(node_def: NodeDef) -> ConditionalNode:
    """
    Conditional node.

    Config:
        equals: route to "true" when the input equals this value
                (truthiness of the input when absent)
        field: compare this key of a mapping input instead of the input
        true_port / false_port: port id overrides
    """
    config = node_def.config
    field = config.get("field")
    if "equals" in config:
        condition = EqualsCondition(config["equals"], field)
    else:
        condition = TruthyCondition(field)

    return create_conditional_node(
        node_def.id,
        condition,
        label=node_def.label,
        input_ports=config.get("inputs"),
        true_port=config.get("true_port", "true"),
        false_port=config.get("false_port", "false"),
    )


def create_repeat_node(node_def: NodeDef) -> LoopNode:
    """
    Loop node running config["sub_dag"].

    Config:
        sub_dag: nested DAG description (built by the loader)
        times: number of iterations (optional)
        max_iterations: safety cap (optional)

    Raises:
        ValueError: If neither times nor max_iterations bounds the loop
    """
    config = node_def.config
    times = config.get("times")
    max_iterations = config.get("max_iterations")
    if times is None and max_iterations is None:
        raise ValueError(
            f"repeat node '{node_def.id}' needs 'times' or 'max_iterations'"
        )

    return create_loop_node(
        node_def.id,
        config["sub_dag"],
        TimesCondition(times),
        max_iterations=max_iterations,
        label=node_def.label,
        input_ports=config.get("inputs"),
        output_ports=config.get("outputs"),
    )


def create_fan_out_branches_node(node_def: NodeDef) -> FanOutNode:
    """Fan-out node; config["branches"] is a list of {port, sub_dag?}"""
    branches = [
        FanOutBranch(Port(entry["port"]), entry.get("sub_dag"))
        for entry in node_def.config["branches"]
    ]
    return create_fan_out_node(
        node_def.id,
        branches,
        label=node_def.label,
        input_ports=node_def.config.get("inputs"),
    )


def create_extract_node(node_def: NodeDef) -> ExecutionNode:
    """Execution node reading config["property"], a dotted path, from its input"""
    return create_execution_node(
        node_def.id,
        ExtractTransform(node_def.config["property"]),
        label=node_def.label,
        input_ports=node_def.config.get("inputs"),
        output_ports=node_def.config.get("outputs"),
    )


def create_dedupe_node(node_def: NodeDef) -> ExecutionNode:
    """
    Execution node removing duplicates from a list.

    Config:
        method: "first" (default) or "last"
        by: dotted path of the property to compare (optional)
    """
    config = node_def.config
    return create_execution_node(
        node_def.id,
        DedupeTransform(config.get("method", "first"), config.get("by")),
        label=node_def.label,
        input_ports=config.get("inputs"),
        output_ports=config.get("outputs"),
    )


def _create_mapping_node(node_def: NodeDef, flatten: bool) -> ExecutionNode:
    config = node_def.config
    return create_execution_node(
        node_def.id,
        MapTransform(node_def.id, parallel=bool(config.get("parallel", True)), flatten=flatten),
        label=node_def.label,
        input_ports=config.get("inputs"),
        output_ports=config.get("outputs"),
        sub_dag=config["sub_dag"],
    )


def create_map_node(node_def: NodeDef) -> ExecutionNode:
    """
    Execution node running config["sub_dag"] once per item of its list input.

    Config:
        sub_dag: nested DAG description (built by the loader)
        parallel: run items concurrently (default true)
    """
    return _create_mapping_node(node_def, flatten=False)


def create_flatmap_node(node_def: NodeDef) -> ExecutionNode:
    """Like map, but each sub-DAG run yields a list and the lists are concatenated"""
    return _create_mapping_node(node_def, flatten=True)


BUILTIN_NODE_TYPES = {
    "literal": create_literal_node,
    "identity": create_identity_node,
    "console": create_console_node,
    "collect": create_collect_node,
    "merge": create_merge_node,
    "branch": create_branch_node,
    "repeat": create_repeat_node,
    "fan_out": create_fan_out_branches_node,
    "extract": create_extract_node,
    "dedupe": create_dedupe_node,
    "map": create_map_node,
    "flatmap": create_flatmap_node,
}


def register_builtin_nodes(registry: NodeRegistry) -> NodeRegistry:
    """
    Register every built-in node type.

    Args:
        registry: Registry to populate

    Returns:
        The same registry, for chaining
    """
    for node_type, factory in BUILTIN_NODE_TYPES.items():
        registry.register(node_type, factory)

    logger.debug(f"Registered {len(BUILTIN_NODE_TYPES)} built-in node types")
    return registry
