"""
Tests for per-run port routing and readiness.
"""

from flowgraph.dag import DAGBuilder, create_aggregator_node, create_execution_node
from flowgraph.scheduler import UNAVAILABLE, PortRouter


def make_node(node_id: str, **kwargs):
    return create_execution_node(node_id, lambda x: x, **kwargs)


def diamond_dag():
    """a feeds b and c; both feed the two-port aggregator d"""
    builder = DAGBuilder("diamond")
    builder.add_node(make_node("a"))
    builder.add_node(make_node("b"))
    builder.add_node(make_node("c"))
    builder.add_node(create_aggregator_node("d", list, input_ports=["left", "right"]))
    builder.connect("a", "output", "b", "input")
    builder.connect("a", "output", "c", "input")
    builder.connect("b", "output", "d", "left")
    builder.connect("c", "output", "d", "right")
    return builder.build()


class TestPortRouter:
    def test_unconnected_node_is_ready(self):
        dag = diamond_dag()
        router = PortRouter(dag)
        assert router.is_ready(dag.get_node("a"))
        assert not router.is_ready(dag.get_node("b"))

    def test_seed_fills_unconnected_ports(self):
        dag = diamond_dag()
        router = PortRouter(dag)
        router.seed("a", 5)

        assert router.is_seeded("a")
        assert router.seed_value("a") == 5
        assert router.seed_value("b") is UNAVAILABLE
        assert router.resolve_inputs(dag.get_node("a")) == {"input": 5}

    def test_unseeded_unconnected_port_is_unavailable(self):
        dag = diamond_dag()
        router = PortRouter(dag)
        assert router.resolve_inputs(dag.get_node("a")) == {"input": UNAVAILABLE}

    def test_publish_reports_touched_nodes(self):
        dag = diamond_dag()
        router = PortRouter(dag)
        touched = router.publish_output("a", "output", 1)

        assert touched == ["b", "c"]
        assert router.is_ready(dag.get_node("b"))
        assert router.resolve_inputs(dag.get_node("c")) == {"input": 1}

    def test_publish_to_unconnected_port(self):
        dag = diamond_dag()
        router = PortRouter(dag)
        assert router.publish_output("d", "output", [1, 2]) == []

    def test_partial_inputs_keep_node_waiting(self):
        dag = diamond_dag()
        router = PortRouter(dag)
        aggregator = dag.get_node("d")

        router.publish_output("c", "output", "from c")
        assert not router.is_ready(aggregator)
        assert [p.id for p in router.pending_ports(aggregator)] == ["left"]
        assert router.resolve_inputs(aggregator) == {"left": UNAVAILABLE, "right": "from c"}

        router.publish_output("b", "output", "from b")
        assert router.is_ready(aggregator)
        assert router.resolve_inputs(aggregator) == {"left": "from b", "right": "from c"}

    def test_multi_connection_port_resolves_in_connection_order(self):
        builder = DAGBuilder("fan_in")
        builder.add_node(make_node("x")).add_node(make_node("y"))
        builder.add_node(create_aggregator_node("all", list))
        builder.connect("x", "output", "all", "input")
        builder.connect("y", "output", "all", "input")
        dag = builder.build()
        router = PortRouter(dag)

        router.publish_output("y", "output", "second")
        assert not router.has_received("all", "input")
        router.publish_output("x", "output", "first")

        assert router.has_received("all", "input")
        assert router.resolve_inputs(dag.get_node("all")) == {"input": ["first", "second"]}

    def test_routers_do_not_share_buffers(self):
        dag = diamond_dag()
        first, second = PortRouter(dag), PortRouter(dag)
        first.publish_output("a", "output", 1)
        assert not second.is_ready(dag.get_node("b"))

    def test_unavailable_marker(self):
        assert not UNAVAILABLE
        assert repr(UNAVAILABLE) == "UNAVAILABLE"
