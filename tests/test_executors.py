"""
Tests for the per-kind node executors, driven without a coordinator.
"""

import asyncio
from typing import Any, List

import pytest

from flowgraph.dag import (
    DAGBuilder,
    NodeKind,
    create_aggregator_node,
    create_conditional_node,
    create_execution_node,
    create_fan_out_node,
    create_loop_node,
)
from flowgraph.runtime.coordinator import RunResult
from flowgraph.scheduler import UNAVAILABLE, NodeContext, NodeStatus, get_executor


def placeholder_dag(dag_id: str = "body"):
    return DAGBuilder(dag_id).add_node(create_execution_node("step", lambda x: x)).build()


class FakeSubDagRunner:
    """Records nested runs and returns fn(seed) as the exit value"""

    def __init__(self, fn=lambda x: x):
        self.fn = fn
        self.calls: List[tuple] = []

    async def __call__(self, dag, seed: Any, label: str) -> RunResult:
        self.calls.append((dag.id, seed, label))
        await asyncio.sleep(0)
        value = self.fn(seed)
        return RunResult(run_id="nested", dag_id=dag.id, outputs={"step": value}, node_results={})


def make_context(node, inputs, runner=None):
    statuses: List[NodeStatus] = []
    ctx = NodeContext(
        node=node,
        inputs=inputs,
        run_sub_dag=runner or FakeSubDagRunner(),
        emit=lambda kind, message: None,
        set_status=statuses.append,
    )
    return ctx, statuses


async def execute(node, inputs, runner=None):
    ctx, statuses = make_context(node, inputs, runner)
    outcome = await get_executor(node.kind).execute(ctx)
    return outcome, statuses


class TestExecutionExecutor:
    @pytest.mark.asyncio
    async def test_result_published_on_every_output_port(self):
        node = create_execution_node("triple", lambda x: x * 3, output_ports=["a", "b", "c"])
        outcome, statuses = await execute(node, {"input": 4})

        assert outcome.value == 12
        assert outcome.outputs == {"a": 12, "b": 12, "c": 12}
        assert statuses == [NodeStatus.RUNNING]

    @pytest.mark.asyncio
    async def test_async_transform_is_awaited(self):
        async def slow_upper(value):
            await asyncio.sleep(0)
            return value.upper()

        node = create_execution_node("upper", slow_upper)
        outcome, _ = await execute(node, {"input": "hi"})
        assert outcome.value == "HI"

    @pytest.mark.asyncio
    async def test_multiple_input_ports_become_tuple(self):
        node = create_execution_node("add", lambda pair: pair[0] + pair[1], input_ports=["x", "y"])
        outcome, _ = await execute(node, {"x": 2, "y": 3})
        assert outcome.value == 5

    @pytest.mark.asyncio
    async def test_unavailable_input_becomes_none(self):
        node = create_execution_node("is_none", lambda x: x is None)
        outcome, _ = await execute(node, {"input": UNAVAILABLE})
        assert outcome.value is True


class TestConditionalExecutor:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("value,port", [(10, "true"), (1, "false")])
    async def test_publishes_to_exactly_one_port(self, value, port):
        node = create_conditional_node("big", lambda x: x > 5)
        outcome, statuses = await execute(node, {"input": value})

        assert outcome.outputs == {port: value}
        assert outcome.branch == port
        assert outcome.value == value
        assert statuses == [NodeStatus.EVALUATING]

    @pytest.mark.asyncio
    async def test_custom_port_ids(self):
        node = create_conditional_node("check", lambda x: True, true_port="yes", false_port="no")
        outcome, _ = await execute(node, {"input": "v"})
        assert outcome.outputs == {"yes": "v"}
        assert outcome.branch == "true"


class TestLoopExecutor:
    @pytest.mark.asyncio
    async def test_false_at_first_check_passes_input_through(self):
        runner = FakeSubDagRunner()
        node = create_loop_node("loop", placeholder_dag(), lambda v, i: False)
        outcome, _ = await execute(node, {"input": "unchanged"}, runner)

        assert outcome.value == "unchanged"
        assert outcome.outputs == {"output": "unchanged"}
        assert outcome.iterations == 0
        assert outcome.status == NodeStatus.COMPLETED
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_iteration_cap(self):
        runner = FakeSubDagRunner(lambda x: x + 1)
        node = create_loop_node("loop", placeholder_dag(), lambda v, i: True, max_iterations=3)
        outcome, statuses = await execute(node, {"input": 0}, runner)

        assert len(runner.calls) == 3
        assert outcome.value == 3
        assert outcome.iterations == 3
        assert outcome.status == NodeStatus.ITERATION_LIMIT_REACHED
        assert NodeStatus.ITERATING in statuses

    @pytest.mark.asyncio
    async def test_carried_value_and_iteration_index(self):
        seen = []

        def keep_going(value, iteration):
            seen.append((value, iteration))
            return value < 8

        runner = FakeSubDagRunner(lambda x: x * 2)
        node = create_loop_node("loop", placeholder_dag(), keep_going)
        outcome, _ = await execute(node, {"input": 1}, runner)

        assert outcome.value == 8
        assert seen == [(1, 0), (2, 1), (4, 2), (8, 3)]
        assert [c[2] for c in runner.calls] == ["iteration:0", "iteration:1", "iteration:2"]

    @pytest.mark.asyncio
    async def test_zero_cap_runs_nothing(self):
        runner = FakeSubDagRunner()
        node = create_loop_node("loop", placeholder_dag(), lambda v, i: True, max_iterations=0)
        outcome, _ = await execute(node, {"input": 7}, runner)
        assert outcome.status == NodeStatus.ITERATION_LIMIT_REACHED
        assert outcome.value == 7
        assert runner.calls == []

    def test_negative_cap_rejected(self):
        with pytest.raises(ValueError):
            create_loop_node("loop", placeholder_dag(), lambda v, i: True, max_iterations=-1)


class TestFanOutExecutor:
    @pytest.mark.asyncio
    async def test_forward_and_sub_dag_branches(self):
        runner = FakeSubDagRunner(lambda x: x * 2)
        node = create_fan_out_node("fan", [("b1", None), ("b2", placeholder_dag("double"))])
        outcome, statuses = await execute(node, {"input": 5}, runner)

        assert outcome.outputs == {"b1": 5, "b2": 10}
        assert outcome.value == {"b1": 5, "b2": 10}
        assert runner.calls == [("double", 5, "branch:b2")]
        assert statuses == [NodeStatus.BRANCHES_RUNNING]

    @pytest.mark.asyncio
    async def test_failing_branch_cancels_siblings(self):
        cancelled = asyncio.Event()

        async def runner(dag, seed, label):
            if dag.id == "bad":
                raise RuntimeError("branch exploded")
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        node = create_fan_out_node(
            "fan", [("slow", placeholder_dag("slow")), ("bad", placeholder_dag("bad"))]
        )
        with pytest.raises(RuntimeError, match="branch exploded"):
            await execute(node, {"input": 1}, runner)
        assert cancelled.is_set()

    def test_duplicate_branch_ports_rejected(self):
        with pytest.raises(ValueError):
            create_fan_out_node("fan", [("x", None), ("x", None)])


class TestAggregatorExecutor:
    @pytest.mark.asyncio
    async def test_reducer_sees_declaration_order(self):
        node = create_aggregator_node("join", lambda values: values, input_ports=["p1", "p2"])
        # Insertion order of the dict mimics arrival order (p2 first)
        outcome, statuses = await execute(node, {"p2": "a", "p1": "b"})

        assert outcome.value == ["b", "a"]
        assert statuses == [NodeStatus.COLLECTING, NodeStatus.RUNNING]

    @pytest.mark.asyncio
    async def test_unavailable_port_becomes_none(self):
        node = create_aggregator_node("join", lambda values: values, input_ports=["p1", "p2"])
        outcome, _ = await execute(node, {"p1": UNAVAILABLE, "p2": 1})
        assert outcome.value == [None, 1]


class TestExecutorTable:
    def test_every_kind_has_an_executor(self):
        for kind in NodeKind:
            assert get_executor(kind).kind == kind

    def test_missing_executor(self):
        with pytest.raises(ValueError, match="No executor"):
            get_executor(NodeKind.LOOP, executors={})
