"""
DAG Node Model

Defines ports, connections and the five node variants that make up a graph.
Node variants form a closed union tagged by NodeKind; executors dispatch on
the tag rather than on a class hierarchy.

Each variant carries a behaviour object (transform, condition, loop
condition or reducer) supplied by the caller. Behaviours may be synchronous
or return an awaitable.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, ClassVar, Dict, List, Optional, Protocol, Tuple, Union

if TYPE_CHECKING:
    from .graph import DAG


class NodeKind(Enum):
    """Control-flow kind of a node"""
    EXECUTION = "execution"
    CONDITIONAL = "conditional"
    LOOP = "loop"
    FAN_OUT = "fan_out"
    AGGREGATOR = "aggregator"


@dataclass(frozen=True)
class Port:
    """
    Named attachment point on a node.

    Examples:
        - Default input: Port("input")
        - Typed output: Port("summary", label="Summary", data_type="text")
    """
    id: str
    label: Optional[str] = None
    data_type: Optional[str] = None  # Hint only, never enforced


@dataclass(frozen=True)
class Connection:
    """Directed edge from one node's output port to another node's input port"""
    id: str
    from_node_id: str
    from_port_id: str
    to_node_id: str
    to_port_id: str


DEFAULT_INPUT_PORTS: Tuple[Port, ...] = (Port("input", label="Input"),)
DEFAULT_OUTPUT_PORTS: Tuple[Port, ...] = (Port("output", label="Output"),)


# ================================
# Behaviour protocols
# ================================
class Transform(Protocol):
    """Behaviour of an execution node: input -> output"""

    def execute(self, value: Any) -> Union[Any, Awaitable[Any]]:
        ...


class Condition(Protocol):
    """Behaviour of a conditional node: input -> bool"""

    def evaluate(self, value: Any) -> Union[bool, Awaitable[bool]]:
        ...


class LoopCondition(Protocol):
    """Behaviour of a loop node: (carried value, iteration index) -> bool"""

    def should_continue(self, value: Any, iteration: int) -> Union[bool, Awaitable[bool]]:
        ...


class Reducer(Protocol):
    """Behaviour of an aggregator node: ordered inputs -> output"""

    def aggregate(self, inputs: List[Any]) -> Union[Any, Awaitable[Any]]:
        ...


ItemRunner = Callable[[Any, str], Awaitable[Any]]


class NestedTransform(Protocol):
    """
    Behaviour of an execution node that owns a sub-DAG.

    run_item(value, label) runs the sub-DAG seeded with value and returns
    its exit value.
    """

    def execute(self, value: Any, run_item: ItemRunner) -> Union[Any, Awaitable[Any]]:
        ...


class FunctionTransform:
    """Adapts a plain callable to the Transform protocol"""

    def __init__(self, fn: Callable[[Any], Any]):
        self.fn = fn

    def execute(self, value: Any) -> Any:
        return self.fn(value)


class FunctionNestedTransform:
    """Adapts a callable (value, run_item) -> output to the NestedTransform protocol"""

    def __init__(self, fn: Callable[[Any, ItemRunner], Any]):
        self.fn = fn

    def execute(self, value: Any, run_item: ItemRunner) -> Any:
        return self.fn(value, run_item)


class FunctionCondition:
    """Adapts a plain callable to the Condition protocol"""

    def __init__(self, fn: Callable[[Any], Any]):
        self.fn = fn

    def evaluate(self, value: Any) -> Any:
        return self.fn(value)


class FunctionLoopCondition:
    """Adapts a plain callable to the LoopCondition protocol"""

    def __init__(self, fn: Callable[[Any, int], Any]):
        self.fn = fn

    def should_continue(self, value: Any, iteration: int) -> Any:
        return self.fn(value, iteration)


class FunctionReducer:
    """Adapts a plain callable to the Reducer protocol"""

    def __init__(self, fn: Callable[[List[Any]], Any]):
        self.fn = fn

    def aggregate(self, inputs: List[Any]) -> Any:
        return self.fn(inputs)


# ================================
# Node variants
# ================================
@dataclass(frozen=True)
class ExecutionNode:
    """
    Runs an opaque transform on its input and publishes the result.

    When sub_dag is set the transform is a NestedTransform and may run the
    sub-DAG any number of times per execution (map-style nodes).
    """
    kind: ClassVar[NodeKind] = NodeKind.EXECUTION

    id: str
    transform: Union[Transform, NestedTransform]
    label: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    input_ports: Tuple[Port, ...] = DEFAULT_INPUT_PORTS
    output_ports: Tuple[Port, ...] = DEFAULT_OUTPUT_PORTS
    sub_dag: Optional["DAG"] = None

    @property
    def display_label(self) -> str:
        return self.label or self.id


@dataclass(frozen=True)
class ConditionalNode:
    """
    Routes its unchanged input to exactly one of two fixed output ports.

    The true port receives the input when the condition holds, the false port
    otherwise. Nodes fed only by the unchosen port never become ready.
    """
    kind: ClassVar[NodeKind] = NodeKind.CONDITIONAL

    id: str
    condition: Condition
    label: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    input_ports: Tuple[Port, ...] = DEFAULT_INPUT_PORTS
    true_port: Port = Port("true", label="True")
    false_port: Port = Port("false", label="False")

    @property
    def output_ports(self) -> Tuple[Port, ...]:
        return (self.true_port, self.false_port)

    @property
    def display_label(self) -> str:
        return self.label or self.id


@dataclass(frozen=True)
class LoopNode:
    """
    Re-runs an embedded sub-DAG while its condition holds.

    Attributes:
        sub_dag: Acyclic graph executed once per iteration, seeded with the
                 carried value; its exit value becomes the next carried value
        condition: Evaluated before every iteration with (value, iteration)
        max_iterations: Optional cap; None means the caller bounds the loop
    """
    kind: ClassVar[NodeKind] = NodeKind.LOOP

    id: str
    sub_dag: "DAG"
    condition: LoopCondition
    max_iterations: Optional[int] = None
    label: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    input_ports: Tuple[Port, ...] = DEFAULT_INPUT_PORTS
    output_ports: Tuple[Port, ...] = DEFAULT_OUTPUT_PORTS

    def __post_init__(self):
        if self.max_iterations is not None and self.max_iterations < 0:
            raise ValueError(
                f"Loop node '{self.id}': max_iterations must be >= 0, got {self.max_iterations}"
            )

    @property
    def display_label(self) -> str:
        return self.label or self.id


@dataclass(frozen=True)
class FanOutBranch:
    """One fan-out branch: an output port plus an optional sub-DAG"""
    port: Port
    sub_dag: Optional["DAG"] = None


@dataclass(frozen=True)
class FanOutNode:
    """Sends its input down every branch; branches may run concurrently"""
    kind: ClassVar[NodeKind] = NodeKind.FAN_OUT

    id: str
    branches: Tuple[FanOutBranch, ...]
    label: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    input_ports: Tuple[Port, ...] = DEFAULT_INPUT_PORTS

    def __post_init__(self):
        port_ids = [b.port.id for b in self.branches]
        if len(set(port_ids)) != len(port_ids):
            raise ValueError(f"Fan-out node '{self.id}' has duplicate branch ports: {port_ids}")

    @property
    def output_ports(self) -> Tuple[Port, ...]:
        return tuple(b.port for b in self.branches)

    @property
    def display_label(self) -> str:
        return self.label or self.id


@dataclass(frozen=True)
class AggregatorNode:
    """
    Waits for every connected input port, then reduces the values.

    The reducer receives inputs ordered by input-port declaration order,
    never by arrival order.
    """
    kind: ClassVar[NodeKind] = NodeKind.AGGREGATOR

    id: str
    reducer: Reducer
    label: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    input_ports: Tuple[Port, ...] = DEFAULT_INPUT_PORTS
    output_ports: Tuple[Port, ...] = DEFAULT_OUTPUT_PORTS

    @property
    def display_label(self) -> str:
        return self.label or self.id


Node = Union[ExecutionNode, ConditionalNode, LoopNode, FanOutNode, AggregatorNode]


# ================================
# Factory helpers
# ================================
def _ports(ports: Optional[List[Union[Port, str]]], default: Tuple[Port, ...]) -> Tuple[Port, ...]:
    if ports is None:
        return default
    return tuple(p if isinstance(p, Port) else Port(p) for p in ports)


def create_execution_node(
    node_id: str,
    transform: Union[Transform, Callable[[Any], Any]],
    label: Optional[str] = None,
    input_ports: Optional[List[Union[Port, str]]] = None,
    output_ports: Optional[List[Union[Port, str]]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    sub_dag: Optional["DAG"] = None,
) -> ExecutionNode:
    """
    Create an execution node from a Transform or a plain callable.

    Args:
        node_id: Unique node identifier within its DAG
        transform: Object with execute(value), or a callable value -> output.
                   With sub_dag, an object with execute(value, run_item).
        label: Display label (defaults to the id)
        input_ports: Ports or port ids (default: ["input"])
        output_ports: Ports or port ids (default: ["output"])
        metadata: Arbitrary metadata bag
        sub_dag: Nested DAG the transform runs through run_item

    Returns:
        ExecutionNode
    """
    if not hasattr(transform, "execute"):
        if sub_dag is not None:
            transform = FunctionNestedTransform(transform)
        else:
            transform = FunctionTransform(transform)
    return ExecutionNode(
        id=node_id,
        transform=transform,
        label=label,
        metadata=dict(metadata or {}),
        input_ports=_ports(input_ports, DEFAULT_INPUT_PORTS),
        output_ports=_ports(output_ports, DEFAULT_OUTPUT_PORTS),
        sub_dag=sub_dag,
    )


def create_conditional_node(
    node_id: str,
    condition: Union[Condition, Callable[[Any], Any]],
    label: Optional[str] = None,
    input_ports: Optional[List[Union[Port, str]]] = None,
    true_port: Union[Port, str] = "true",
    false_port: Union[Port, str] = "false",
    metadata: Optional[Dict[str, Any]] = None,
) -> ConditionalNode:
    """Create a conditional node from a Condition or a plain predicate"""
    if not hasattr(condition, "evaluate"):
        condition = FunctionCondition(condition)
    return ConditionalNode(
        id=node_id,
        condition=condition,
        label=label,
        metadata=dict(metadata or {}),
        input_ports=_ports(input_ports, DEFAULT_INPUT_PORTS),
        true_port=true_port if isinstance(true_port, Port) else Port(true_port),
        false_port=false_port if isinstance(false_port, Port) else Port(false_port),
    )


def create_loop_node(
    node_id: str,
    sub_dag: "DAG",
    condition: Union[LoopCondition, Callable[[Any, int], Any]],
    max_iterations: Optional[int] = None,
    label: Optional[str] = None,
    input_ports: Optional[List[Union[Port, str]]] = None,
    output_ports: Optional[List[Union[Port, str]]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> LoopNode:
    """Create a loop node around an already built sub-DAG"""
    if not hasattr(condition, "should_continue"):
        condition = FunctionLoopCondition(condition)
    return LoopNode(
        id=node_id,
        sub_dag=sub_dag,
        condition=condition,
        max_iterations=max_iterations,
        label=label,
        metadata=dict(metadata or {}),
        input_ports=_ports(input_ports, DEFAULT_INPUT_PORTS),
        output_ports=_ports(output_ports, DEFAULT_OUTPUT_PORTS),
    )


def create_fan_out_node(
    node_id: str,
    branches: List[Union[FanOutBranch, Tuple[Union[Port, str], Optional["DAG"]]]],
    label: Optional[str] = None,
    input_ports: Optional[List[Union[Port, str]]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> FanOutNode:
    """
    Create a fan-out node.

    Args:
        branches: FanOutBranch objects or (port, sub_dag) pairs; sub_dag may be None
    """
    normalized = []
    for branch in branches:
        if not isinstance(branch, FanOutBranch):
            port, sub_dag = branch
            branch = FanOutBranch(port if isinstance(port, Port) else Port(port), sub_dag)
        normalized.append(branch)
    return FanOutNode(
        id=node_id,
        branches=tuple(normalized),
        label=label,
        metadata=dict(metadata or {}),
        input_ports=_ports(input_ports, DEFAULT_INPUT_PORTS),
    )


def create_aggregator_node(
    node_id: str,
    reducer: Union[Reducer, Callable[[List[Any]], Any]],
    input_ports: Optional[List[Union[Port, str]]] = None,
    label: Optional[str] = None,
    output_ports: Optional[List[Union[Port, str]]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AggregatorNode:
    """Create an aggregator node; input port order defines reducer input order"""
    if not hasattr(reducer, "aggregate"):
        reducer = FunctionReducer(reducer)
    return AggregatorNode(
        id=node_id,
        reducer=reducer,
        label=label,
        metadata=dict(metadata or {}),
        input_ports=_ports(input_ports, DEFAULT_INPUT_PORTS),
        output_ports=_ports(output_ports, DEFAULT_OUTPUT_PORTS),
    )

