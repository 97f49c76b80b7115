"""
Tests for structural DAG validation.
"""

import pytest

from flowgraph.dag import (
    DAG,
    Connection,
    DAGBuilder,
    DAGValidator,
    create_aggregator_node,
    create_execution_node,
    create_fan_out_node,
    create_loop_node,
)
from flowgraph.errors import StructuralError


def make_node(node_id: str, **kwargs):
    return create_execution_node(node_id, lambda x: x, **kwargs)


def chain(dag_id: str = "chain", *node_ids: str) -> DAGBuilder:
    node_ids = node_ids or ("a", "b")
    builder = DAGBuilder(dag_id)
    for node_id in node_ids:
        builder.add_node(make_node(node_id))
    for src, dst in zip(node_ids, node_ids[1:]):
        builder.connect(src, "output", dst, "input")
    return builder


def cyclic_dag() -> DAG:
    builder = chain("cyclic", "a", "b", "c")
    builder.connect("c", "output", "a", "input")
    return builder.build()


class TestDAGValidator:
    def test_valid_dag_has_no_errors(self):
        dag = chain().set_entry_node("a").add_exit_node("b").build()
        assert DAGValidator().validate(dag) == []

    def test_validation_is_idempotent(self):
        dag = chain().set_entry_node("missing").build()
        validator = DAGValidator()
        first = validator.validate(dag)
        second = validator.validate(dag)
        assert first == second
        assert first

    def test_validation_does_not_mutate(self):
        dag = cyclic_dag()
        before = (dict(dag.nodes), dag.connections)
        DAGValidator().validate(dag)
        assert (dict(dag.nodes), dag.connections) == before

    def test_missing_entry_and_exit(self):
        dag = chain().set_entry_node("nope").add_exit_node("gone").build()
        errors = DAGValidator().validate(dag)
        assert errors[0] == "Entry node 'nope' does not exist"
        assert errors[1] == "Exit node 'gone' does not exist"

    def test_dangling_connection_endpoints(self):
        dag = DAG(
            id="dangling",
            nodes={"a": make_node("a")},
            connections=(
                Connection("c1", "a", "output", "ghost", "input"),
                Connection("c2", "phantom", "output", "a", "input"),
            ),
        )
        errors = DAGValidator().validate(dag)
        assert "Connection 'c1' references non-existent to node 'ghost'" in errors
        assert "Connection 'c2' references non-existent from node 'phantom'" in errors

    def test_unknown_ports(self):
        builder = chain()
        builder.connect("a", "bogus", "b", "input", connection_id="bad_out")
        builder.connect("a", "output", "b", "bogus", connection_id="bad_in")
        errors = DAGValidator().validate(builder.build())
        assert any("unknown output port 'bogus'" in e for e in errors)
        assert any("unknown input port 'bogus'" in e for e in errors)

    def test_duplicate_connection_id(self):
        dag = DAG(
            id="dup",
            nodes={"a": make_node("a"), "b": make_node("b", input_ports=["x", "y"])},
            connections=(
                Connection("same", "a", "output", "b", "x"),
                Connection("same", "a", "output", "b", "y"),
            ),
        )
        errors = DAGValidator().validate(dag)
        assert "Duplicate connection id 'same'" in errors

    def test_fan_in_to_execution_port_rejected(self):
        builder = chain("fan_in", "a", "b")
        builder.add_node(make_node("c"))
        builder.connect("c", "output", "b", "input")
        errors = DAGValidator().validate(builder.build())
        assert len(errors) == 1
        assert "multiple incoming connections" in errors[0]

    def test_fan_in_to_aggregator_port_allowed(self):
        builder = DAGBuilder("agg")
        builder.add_node(make_node("a")).add_node(make_node("b"))
        builder.add_node(create_aggregator_node("all", list))
        builder.connect("a", "output", "all", "input")
        builder.connect("b", "output", "all", "input")
        assert DAGValidator().validate(builder.build()) == []

    def test_cycle_detected(self):
        errors = DAGValidator().validate(cyclic_dag())
        assert len(errors) == 1
        assert errors[0].startswith("Cycle detected: ")
        cycle = errors[0][len("Cycle detected: "):].split(" -> ")
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"a", "b", "c"}

    def test_self_loop_detected(self):
        dag = DAG(
            id="self",
            nodes={"a": make_node("a", input_ports=["input", "again"])},
            connections=(Connection("c", "a", "output", "a", "again"),),
        )
        errors = DAGValidator().validate(dag)
        assert errors == ["Cycle detected: a -> a"]

    def test_loop_sub_dag_validated_recursively(self):
        body = chain("body").set_entry_node("missing").build()
        builder = DAGBuilder("outer")
        builder.add_node(create_loop_node("loop", body, lambda v, i: False))
        errors = DAGValidator().validate(builder.build())
        assert errors == ["loop/sub_dag: Entry node 'missing' does not exist"]

    def test_fan_out_branch_validated_recursively(self):
        builder = DAGBuilder("outer")
        builder.add_node(create_fan_out_node("fan", [("left", None), ("right", cyclic_dag())]))
        errors = DAGValidator().validate(builder.build())
        assert len(errors) == 1
        assert errors[0].startswith("fan/branch:right: Cycle detected")

    def test_validate_or_raise(self):
        with pytest.raises(StructuralError) as exc_info:
            DAGValidator().validate_or_raise(cyclic_dag())
        assert exc_info.value.errors
        assert "DAG validation failed" in str(exc_info.value)

        DAGValidator().validate_or_raise(chain().build())
