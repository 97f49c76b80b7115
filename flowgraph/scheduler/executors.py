"""
Node Executors

One execution strategy per node kind. The run coordinator looks the
strategy up by NodeKind, asks it whether a node is ready, and awaits
execute() to obtain the values to publish.

Executors never publish directly: they return a NodeOutcome and the
coordinator publishes it after the executor has fully completed.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

from ..dag.graph import DAG
from ..dag.node import (
    AggregatorNode,
    ConditionalNode,
    ExecutionNode,
    FanOutNode,
    LoopNode,
    Node,
    NodeKind,
)
from ..events import EventKind
from .router import UNAVAILABLE, PortRouter

if TYPE_CHECKING:
    from ..runtime.coordinator import RunResult

logger = logging.getLogger(__name__)


class NodeStatus(Enum):
    """Lifecycle state of a node within one run"""
    PENDING = "pending"
    RUNNING = "running"
    EVALUATING = "evaluating"
    ITERATING = "iterating"
    BRANCHES_RUNNING = "branches_running"
    COLLECTING = "collecting"
    COMPLETED = "completed"
    ITERATION_LIMIT_REACHED = "iteration_limit_reached"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"

    @property
    def is_success(self) -> bool:
        return self in (NodeStatus.COMPLETED, NodeStatus.ITERATION_LIMIT_REACHED)


@dataclass
class NodeOutcome:
    """
    Result of one successful node execution.

    Attributes:
        value: The node's own result (transform output, routed input,
               final carried value, branch mapping or reducer output)
        outputs: Values to publish, keyed by output port id
        status: COMPLETED or ITERATION_LIMIT_REACHED
        branch: "true"/"false" for conditional nodes
        iterations: Number of sub-DAG runs for loop nodes
    """
    value: Any
    outputs: Dict[str, Any] = field(default_factory=dict)
    status: NodeStatus = NodeStatus.COMPLETED
    branch: Optional[str] = None
    iterations: Optional[int] = None


SubDagRunner = Callable[[DAG, Any, str], Awaitable["RunResult"]]


@dataclass
class NodeContext:
    """
    Everything an executor needs for one attempt.

    Attributes:
        node: Node being executed
        inputs: Resolved input values keyed by port id (may hold UNAVAILABLE)
        seed: The run's seed value if this node was seeded, else UNAVAILABLE
        run_sub_dag: Runs a nested DAG seeded with a value; raises RunError on failure
        emit: Emits a progress event for this node
        set_status: Records an intermediate lifecycle state
    """
    node: Node
    inputs: Dict[str, Any]
    run_sub_dag: SubDagRunner
    emit: Callable[[EventKind, str], None]
    set_status: Callable[[NodeStatus], None]
    seed: Any = UNAVAILABLE


async def resolve_result(result: Any) -> Any:
    """Await the result of a behaviour call if it is awaitable"""
    if inspect.isawaitable(result):
        return await result
    return result


def shape_input(ctx: NodeContext) -> Any:
    """
    Collapse resolved inputs into the single value handed to a behaviour.

    One input port gives its value, several give a tuple in declaration
    order, none gives the seed value (or None). UNAVAILABLE becomes None.
    """
    values = [None if v is UNAVAILABLE else v for v in ctx.inputs.values()]
    if not values:
        return None if ctx.seed is UNAVAILABLE else ctx.seed
    if len(values) == 1:
        return values[0]
    return tuple(values)


class NodeExecutor:
    """Base strategy: ready through the generic router rule"""

    kind: NodeKind

    def is_ready(self, router: PortRouter, node: Node) -> bool:
        return router.is_ready(node)

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        raise NotImplementedError


class ExecutionExecutor(NodeExecutor):
    """
    Invoke the transform and publish its result on every output port.

    A node owning a sub-DAG also hands its transform a runner that executes
    the sub-DAG as a nested run and returns the exit value.
    """

    kind = NodeKind.EXECUTION

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        node: ExecutionNode = ctx.node
        ctx.set_status(NodeStatus.RUNNING)
        value = shape_input(ctx)
        if node.sub_dag is None:
            result = await resolve_result(node.transform.execute(value))
        else:
            async def run_item(item: Any, label: str) -> Any:
                nested = await ctx.run_sub_dag(node.sub_dag, item, label)
                return nested.exit_value

            result = await resolve_result(node.transform.execute(value, run_item))
        return NodeOutcome(
            value=result,
            outputs={p.id: result for p in node.output_ports},
        )


class ConditionalExecutor(NodeExecutor):
    """Evaluate the condition and forward the unchanged input to one port"""

    kind = NodeKind.CONDITIONAL

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        node: ConditionalNode = ctx.node
        ctx.set_status(NodeStatus.EVALUATING)
        value = shape_input(ctx)
        passed = bool(await resolve_result(node.condition.evaluate(value)))
        port = node.true_port if passed else node.false_port
        ctx.emit(EventKind.DEBUG, f"Condition evaluated to {passed}, routing to '{port.id}'")
        return NodeOutcome(
            value=value,
            outputs={port.id: value},
            branch="true" if passed else "false",
        )


class LoopExecutor(NodeExecutor):
    """
    Run the sub-DAG repeatedly while the loop condition holds.

    Each iteration n (from 0):
    1. Stop with ITERATION_LIMIT_REACHED if max_iterations is set and n >= max
    2. Stop with COMPLETED if should_continue(carried, n) is false
    3. Run the sub-DAG seeded with the carried value; its exit value becomes
       the new carried value

    Iterations are strictly sequential. A sub-DAG failure propagates and
    fails the loop node.
    """

    kind = NodeKind.LOOP

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        node: LoopNode = ctx.node
        carried = shape_input(ctx)
        iteration = 0
        status = NodeStatus.COMPLETED

        while True:
            if node.max_iterations is not None and iteration >= node.max_iterations:
                status = NodeStatus.ITERATION_LIMIT_REACHED
                ctx.emit(EventKind.INFO, f"Iteration limit {node.max_iterations} reached")
                break

            ctx.set_status(NodeStatus.EVALUATING)
            keep_going = await resolve_result(node.condition.should_continue(carried, iteration))
            if not keep_going:
                break

            ctx.set_status(NodeStatus.ITERATING)
            ctx.emit(EventKind.DEBUG, f"Iteration {iteration} started")
            result = await ctx.run_sub_dag(node.sub_dag, carried, f"iteration:{iteration}")
            carried = result.exit_value
            iteration += 1

        logger.debug(f"Loop node '{node.id}' finished after {iteration} iteration(s)")
        return NodeOutcome(
            value=carried,
            outputs={p.id: carried for p in node.output_ports},
            status=status,
            iterations=iteration,
        )


class FanOutExecutor(NodeExecutor):
    """
    Send the input down every branch.

    Branches without a sub-DAG forward the input unchanged; branches with a
    sub-DAG run concurrently as nested runs. The first failing branch
    cancels the others and fails the node.
    """

    kind = NodeKind.FAN_OUT

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        node: FanOutNode = ctx.node
        ctx.set_status(NodeStatus.BRANCHES_RUNNING)
        value = shape_input(ctx)

        results: Dict[str, Any] = {}
        tasks: Dict[asyncio.Task, str] = {}
        for branch in node.branches:
            if branch.sub_dag is None:
                results[branch.port.id] = value
            else:
                task = asyncio.create_task(
                    ctx.run_sub_dag(branch.sub_dag, value, f"branch:{branch.port.id}")
                )
                tasks[task] = branch.port.id

        pending = set(tasks)
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
                failure: Optional[BaseException] = None
                for task in done:
                    error = task.exception()
                    if error is not None:
                        failure = failure or error
                    else:
                        results[tasks[task]] = task.result().exit_value
                if failure is not None:
                    raise failure
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        outputs = {b.port.id: results[b.port.id] for b in node.branches}
        return NodeOutcome(value=dict(outputs), outputs=outputs)


class AggregatorExecutor(NodeExecutor):
    """
    Collect every connected input port, then reduce.

    The aggregator is its own readiness authority: it only fires once each
    declared input port with a connection has received all its values, so a
    partial set of inputs is never passed to the reducer.
    """

    kind = NodeKind.AGGREGATOR

    def is_ready(self, router: PortRouter, node: Node) -> bool:
        return all(router.has_received(node.id, p.id) for p in node.input_ports)

    async def execute(self, ctx: NodeContext) -> NodeOutcome:
        node: AggregatorNode = ctx.node
        ctx.set_status(NodeStatus.COLLECTING)
        ordered: List[Any] = [
            None if ctx.inputs.get(p.id, UNAVAILABLE) is UNAVAILABLE else ctx.inputs[p.id]
            for p in node.input_ports
        ]
        ctx.set_status(NodeStatus.RUNNING)
        result = await resolve_result(node.reducer.aggregate(ordered))
        return NodeOutcome(
            value=result,
            outputs={p.id: result for p in node.output_ports},
        )


DEFAULT_EXECUTORS: Dict[NodeKind, NodeExecutor] = {
    executor.kind: executor
    for executor in (
        ExecutionExecutor(),
        ConditionalExecutor(),
        LoopExecutor(),
        FanOutExecutor(),
        AggregatorExecutor(),
    )
}


def get_executor(kind: NodeKind, executors: Optional[Dict[NodeKind, NodeExecutor]] = None) -> NodeExecutor:
    """
    Look up the executor for a node kind.

    Raises:
        ValueError: If no executor handles this kind
    """
    table = executors if executors is not None else DEFAULT_EXECUTORS
    try:
        return table[kind]
    except KeyError:
        raise ValueError(f"No executor registered for node kind '{kind.value}'") from None
