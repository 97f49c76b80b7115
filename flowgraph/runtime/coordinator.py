"""
Run Coordinator

Drives one run of a DAG: seeds the ready queue, launches node executors as
concurrent tasks, publishes their outputs through the port router, retries
failed attempts, and stops everything on the first terminal failure.
"""

import asyncio
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Set

from ..config.settings import RunConfig
from ..dag.graph import DAG
from ..dag.node import NodeKind
from ..dag.validator import DAGValidator
from ..errors import (
    IncompleteRunError,
    NodeExecutionError,
    RunCancelledError,
    RunError,
    RunTimeoutError,
)
from ..events import EventKind, ProgressEvent, ProgressSink, deliver
from ..scheduler.executors import (
    NodeContext,
    NodeExecutor,
    NodeOutcome,
    NodeStatus,
    get_executor,
)
from ..scheduler.router import PortRouter

logger = logging.getLogger(__name__)


@dataclass
class NodeResult:
    """Per-node record of one run"""
    node_id: str
    kind: NodeKind
    status: NodeStatus = NodeStatus.PENDING
    value: Any = None
    outputs: Dict[str, Any] = field(default_factory=dict)
    error: Optional[BaseException] = None
    attempts: int = 0
    duration_ms: int = 0
    branch: Optional[str] = None
    iterations: Optional[int] = None


@dataclass
class RunResult:
    """
    Successful outcome of a run.

    Attributes:
        run_id: Identifier of this run (nested runs extend the parent's id)
        dag_id: Id of the DAG that ran
        outputs: Exit node id -> node value. Exit nodes are the declared exits,
                 or every completed sink node when none are declared.
        node_results: Every node's record, including skipped ones
        duration_ms: Wall-clock duration
    """
    run_id: str
    dag_id: str
    outputs: Dict[str, Any]
    node_results: Dict[str, NodeResult]
    duration_ms: int = 0

    @property
    def exit_value(self) -> Any:
        """The single exit value, or a node_id -> value mapping for several exits"""
        if len(self.outputs) == 1:
            return next(iter(self.outputs.values()))
        return dict(self.outputs)


class _RunState:
    """Mutable state private to one run invocation"""

    def __init__(self, dag: DAG, seed: Any, run_id: str, depth: int = 0):
        self.dag = dag
        self.seed = seed
        self.run_id = run_id
        self.depth = depth
        self.router = PortRouter(dag)
        self.results: Dict[str, NodeResult] = {
            nid: NodeResult(node_id=nid, kind=node.kind) for nid, node in dag.nodes.items()
        }
        self.scheduled: Set[str] = set()
        self.started_at = time.perf_counter()

    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started_at) * 1000)


class RunCoordinator:
    """
    Executes DAGs.

    The coordinator:
    1. Validates the DAG (including nested sub-DAGs)
    2. Seeds the entry node (or every source node) with the initial input
    3. Runs every ready node as its own task; independent nodes overlap
    4. Publishes each completed node's outputs and enqueues newly ready nodes
    5. Retries failed attempts up to config.max_retries
    6. On a terminal failure, cancels in-flight work and raises RunError

    A coordinator holds no per-run state, so one instance can serve many
    concurrent runs, including concurrent runs of the same DAG.

    Example usage:
        coordinator = RunCoordinator(RunConfig(max_retries=2), sink=LoggingSink())

        try:
            result = await coordinator.run(dag, initial_input=5)
            print(result.exit_value)
        except RunError as e:
            print(f"failed at {e.node_id}: {e.cause}")
    """

    def __init__(
        self,
        config: Optional[RunConfig] = None,
        sink: Optional[ProgressSink] = None,
        executors: Optional[Dict[NodeKind, NodeExecutor]] = None,
    ):
        """
        Initialize coordinator.

        Args:
            config: Deadlines and retry policy (default: RunConfig())
            sink: Receiver of progress events (default: none)
            executors: Override of the NodeKind -> executor table
        """
        self.config = config or RunConfig()
        self.sink = sink
        self.executors = executors
        self.validator = DAGValidator()

    async def run(
        self,
        dag: DAG,
        initial_input: Any = None,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RunResult:
        """
        Run a DAG to completion.

        Args:
            dag: Frozen graph to execute
            initial_input: Value delivered to the entry node (or source nodes)
            cancel_event: Setting this event aborts the run

        Returns:
            RunResult with the exit values

        Raises:
            StructuralError: If the DAG is malformed (nothing is run)
            RunError: On terminal node failure, timeout or cancellation
        """
        self.validator.validate_or_raise(dag)

        state = _RunState(dag, initial_input, run_id=uuid.uuid4().hex[:8])
        logger.info(
            f"Run {state.run_id} starting: DAG '{dag.id}' with {len(dag.nodes)} nodes, "
            f"{len(dag.connections)} connections"
        )
        self._emit(state, EventKind.INFO, f"Run started for DAG '{dag.id}'")

        timeout = self.config.timeout_seconds
        try:
            if timeout is None:
                result = await self._drive(state, cancel_event)
            else:
                result = await asyncio.wait_for(self._drive(state, cancel_event), timeout)
        except asyncio.TimeoutError:
            cause = RunTimeoutError(
                f"Run {state.run_id} exceeded its {self.config.timeout_ms} ms deadline"
            )
            logger.error(str(cause))
            self._emit(state, EventKind.ERROR, str(cause))
            raise RunError(str(cause), cause=cause, node_results=state.results) from cause
        except RunError as e:
            logger.error(f"Run {state.run_id} failed: {e}")
            self._emit(state, EventKind.ERROR, str(e), node_id=e.node_id)
            raise

        logger.info(f"Run {state.run_id} completed in {result.duration_ms}ms")
        self._emit(
            state, EventKind.SUCCESS,
            f"DAG execution completed successfully in {result.duration_ms}ms",
        )
        return result

    async def _run_nested(self, parent: _RunState, node_id: str, sub_dag: DAG, seed: Any, label: str) -> RunResult:
        """Run a loop iteration, fan-out branch or map item; raises RunError on failure"""
        state = _RunState(
            sub_dag, seed,
            run_id=f"{parent.run_id}/{node_id}:{label}",
            depth=parent.depth + 1,
        )
        logger.debug(f"Nested run {state.run_id} starting (DAG '{sub_dag.id}')")
        result = await self._drive(state, cancel_event=None)
        if not result.outputs:
            raise RunError(
                f"Nested run {state.run_id} completed no exit or sink node",
                cause=IncompleteRunError(),
                node_results=state.results,
            )
        return result

    async def _drive(self, state: _RunState, cancel_event: Optional[asyncio.Event]) -> RunResult:
        """
        Ready-queue loop shared by top-level and nested runs.

        Nodes are launched as soon as they are ready; the loop wakes on the
        first completion, publishes outputs, and launches whatever became
        ready. On failure or cancellation, in-flight tasks are cancelled and
        awaited before RunError is raised.
        """
        dag = state.dag
        ready: Deque[str] = deque()

        # A declared entry is the only starting point; nodes it never reaches stay SKIPPED
        if dag.entry_node_id is not None:
            seeds = [dag.entry_node_id]
            candidates = list(seeds)
        else:
            seeds = dag.source_nodes()
            candidates = seeds + [nid for nid in dag.nodes if nid not in seeds]

        for node_id in seeds:
            state.router.seed(node_id, state.seed)

        for node_id in candidates:
            if self._is_ready(state, node_id):
                state.scheduled.add(node_id)
                ready.append(node_id)

        pending: Dict[asyncio.Task, str] = {}
        cancel_waiter: Optional[asyncio.Task] = None
        if cancel_event is not None:
            cancel_waiter = asyncio.create_task(cancel_event.wait())
        failure: Optional[RunError] = None

        try:
            while True:
                while ready:
                    node_id = ready.popleft()
                    task = asyncio.create_task(self._dispatch(state, node_id))
                    pending[task] = node_id
                    logger.debug(f"Started execution of node {node_id} (run {state.run_id})")

                if not pending:
                    break

                waitables: Set[asyncio.Future] = set(pending)
                if cancel_waiter is not None:
                    waitables.add(cancel_waiter)
                done, _ = await asyncio.wait(waitables, return_when=asyncio.FIRST_COMPLETED)

                if cancel_waiter is not None and cancel_waiter in done:
                    cause = RunCancelledError(f"Run {state.run_id} cancelled by request")
                    failure = RunError(str(cause), cause=cause, node_results=state.results)
                    break

                for task in done:
                    node_id = pending.pop(task)
                    try:
                        outcome = task.result()
                    except NodeExecutionError as e:
                        if failure is None:
                            failure = RunError(
                                f"Run {state.run_id} failed at node '{node_id}': {e.cause}",
                                node_id=node_id,
                                cause=e,
                                node_results=state.results,
                            )
                        continue
                    if failure is None:
                        self._publish(state, node_id, outcome, ready)

                if failure is not None:
                    break
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()
            if pending:
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                for node_id in pending.values():
                    result = state.results[node_id]
                    if not result.status.is_success and result.status != NodeStatus.FAILED:
                        result.status = NodeStatus.CANCELLED
                        result.error = RunCancelledError(
                            f"Node '{node_id}' cancelled after sibling failure or cancel request"
                        )
                logger.info(f"Cancelled {len(pending)} in-flight node(s) in run {state.run_id}")

        if failure is not None:
            raise failure

        return self._finish(state)

    def _is_ready(self, state: _RunState, node_id: str) -> bool:
        node = state.dag.nodes[node_id]
        return get_executor(node.kind, self.executors).is_ready(state.router, node)

    def _publish(self, state: _RunState, node_id: str, outcome: NodeOutcome, ready: Deque[str]) -> None:
        """Route a completed node's outputs and enqueue nodes that became ready"""
        touched: List[str] = []
        for port_id, value in outcome.outputs.items():
            for downstream in state.router.publish_output(node_id, port_id, value):
                if downstream not in touched:
                    touched.append(downstream)

        for downstream in touched:
            if downstream in state.scheduled:
                continue
            if self._is_ready(state, downstream):
                state.scheduled.add(downstream)
                ready.append(downstream)
                logger.debug(f"Node {downstream} now ready (unblocked by {node_id})")

    def _finish(self, state: _RunState) -> RunResult:
        dag = state.dag
        for node_id, result in state.results.items():
            if node_id not in state.scheduled:
                result.status = NodeStatus.SKIPPED

        for exit_id in dag.exit_node_ids:
            if not state.results[exit_id].status.is_success:
                cause = IncompleteRunError(exit_id)
                raise RunError(
                    f"Run {state.run_id} ended without completing exit node '{exit_id}'",
                    node_id=exit_id,
                    cause=cause,
                    node_results=state.results,
                )

        if dag.exit_node_ids:
            exit_ids = list(dag.exit_node_ids)
        else:
            exit_ids = [nid for nid in dag.sink_nodes() if state.results[nid].status.is_success]

        skipped = sum(1 for r in state.results.values() if r.status == NodeStatus.SKIPPED)
        if skipped:
            logger.debug(f"Run {state.run_id}: {skipped} node(s) skipped by branch routing")

        return RunResult(
            run_id=state.run_id,
            dag_id=dag.id,
            outputs={nid: state.results[nid].value for nid in exit_ids},
            node_results=state.results,
            duration_ms=state.elapsed_ms(),
        )

    async def _dispatch(self, state: _RunState, node_id: str) -> NodeOutcome:
        """
        Execute one node, retrying failed attempts.

        Inputs are resolved once and reused by every attempt.

        Raises:
            NodeExecutionError: When the last allowed attempt fails
        """
        node = state.dag.nodes[node_id]
        result = state.results[node_id]
        executor = get_executor(node.kind, self.executors)
        inputs = state.router.resolve_inputs(node)
        seed = state.router.seed_value(node_id)
        max_attempts = self.config.max_retries + 1
        started = time.perf_counter()

        def emit(kind: EventKind, message: str) -> None:
            self._emit(state, kind, message, node_id=node_id)

        def set_status(status: NodeStatus) -> None:
            result.status = status

        async def run_sub_dag(sub_dag: DAG, seed: Any, label: str) -> RunResult:
            return await self._run_nested(state, node_id, sub_dag, seed, label)

        emit(EventKind.INFO, f"Starting: {node.display_label}")

        for attempt in range(1, max_attempts + 1):
            result.attempts = attempt
            ctx = NodeContext(
                node=node,
                inputs=dict(inputs),
                run_sub_dag=run_sub_dag,
                emit=emit,
                set_status=set_status,
                seed=seed,
            )
            try:
                outcome = await self._attempt(executor, ctx)
            except asyncio.CancelledError:
                result.status = NodeStatus.CANCELLED
                result.error = RunCancelledError(f"Node '{node_id}' cancelled")
                result.duration_ms = int((time.perf_counter() - started) * 1000)
                raise
            except Exception as e:
                if attempt < max_attempts and not _is_terminal(e):
                    delay = self.config.backoff_seconds(attempt)
                    logger.warning(
                        f"Node {node_id} attempt {attempt}/{max_attempts} failed: "
                        f"{type(e).__name__}: {e}; retrying in {delay:.3f}s"
                    )
                    emit(EventKind.WARNING, f"Attempt {attempt}/{max_attempts} failed: {e}; retrying")
                    if delay > 0:
                        await asyncio.sleep(delay)
                    continue

                error = NodeExecutionError(node_id, e, attempts=attempt)
                result.status = NodeStatus.FAILED
                result.error = error
                result.duration_ms = int((time.perf_counter() - started) * 1000)
                logger.error(f"Node {node_id} failed: {type(e).__name__}: {e}", exc_info=e)
                emit(EventKind.ERROR, f"Failed: {node.display_label}: {e}")
                raise error from e

            result.status = outcome.status
            result.value = outcome.value
            result.outputs = dict(outcome.outputs)
            result.branch = outcome.branch
            result.iterations = outcome.iterations
            result.duration_ms = int((time.perf_counter() - started) * 1000)
            emit(EventKind.SUCCESS, f"Completed: {node.display_label}")
            return outcome

        # Unreachable: the loop either returns or raises
        raise RuntimeError(f"Node {node_id} exhausted attempts without a result")

    async def _attempt(self, executor: NodeExecutor, ctx: NodeContext) -> NodeOutcome:
        """One attempt, bounded by the per-node deadline if configured"""
        timeout = self.config.node_timeout_seconds
        if timeout is None:
            return await executor.execute(ctx)
        try:
            return await asyncio.wait_for(executor.execute(ctx), timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(
                f"Node '{ctx.node.id}' exceeded its {self.config.node_timeout_ms} ms deadline"
            ) from None

    def _emit(self, state: _RunState, kind: EventKind, message: str, node_id: Optional[str] = None) -> None:
        deliver(self.sink, ProgressEvent(kind=kind, message=message, node_id=node_id, run_id=state.run_id))


def _is_terminal(error: BaseException) -> bool:
    """
    Failures that are never retried.

    A RunError here comes from a nested run whose own nodes have already
    used their retries, or that was cancelled.
    """
    return isinstance(error, (RunCancelledError, RunError))
