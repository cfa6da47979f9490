"""
Publish-time graph validation tests.
"""

import pytest

from engine.errors import FlowValidationError
from engine.types import Edge, Flow, FlowGraph, Node, TriggerDescriptor
from engine.validation import validate_graph


def _graph(nodes, edges):
    flow = Flow(id="f", channel_id="channel-1", trigger=TriggerDescriptor(type="keyword", value="go"))
    return FlowGraph(
        flow=flow,
        nodes=[Node(id=node_id, flow_id="f", type=node_type, config=config or {})
               for node_id, node_type, config in nodes],
        edges=[Edge(id=f"e{i}", flow_id="f", source_node_id=s, target_node_id=t,
                    source_handle=h[0] if h else None)
               for i, (s, t, *h) in enumerate(edges)],
    )


VALID_NODES = [
    ("t", "trigger", None),
    ("ask", "sendButtons", {"bodyText": "Sure?", "buttons": [{"id": "yes"}, {"id": "no"}]}),
    ("wait", "waitForReply", {"expectedType": "button"}),
    ("bye", "end", None),
]


class TestValidateGraph:
    """Structural checks run before a flow can be published."""

    def test_valid_graph(self):
        graph = _graph(VALID_NODES, [
            ("t", "ask"), ("ask", "wait"), ("wait", "bye", "yes"), ("wait", "bye", "no"),
        ])
        assert validate_graph(graph) == []

    def test_missing_trigger(self):
        graph = _graph([("a", "sendText", {"message": "x"})], [])
        problems = validate_graph(graph)
        assert any("exactly one trigger" in p for p in problems)

    def test_two_triggers(self):
        graph = _graph(
            [("t1", "trigger", None), ("t2", "trigger", None), ("a", "end", None)],
            [("t1", "a"), ("t2", "a")],
        )
        assert any("found 2" in p for p in validate_graph(graph))

    def test_trigger_without_successor(self):
        graph = _graph([("t", "trigger", None), ("a", "end", None)], [])
        assert any("outgoing edge" in p for p in validate_graph(graph))

    def test_dangling_edge(self):
        graph = _graph([("t", "trigger", None), ("a", "end", None)], [("t", "a"), ("a", "ghost")])
        assert any("unknown node 'ghost'" in p for p in validate_graph(graph))

    def test_edge_into_trigger(self):
        graph = _graph(
            [("t", "trigger", None), ("a", "sendText", {"message": "x"})],
            [("t", "a"), ("a", "t")],
        )
        assert any("targets the trigger" in p for p in validate_graph(graph))

    def test_fan_out_on_one_handle(self):
        graph = _graph(
            [("t", "trigger", None), ("a", "sendText", {"message": "x"}),
             ("b", "end", None), ("c", "end", None)],
            [("t", "a"), ("a", "b"), ("a", "c", "default")],
        )
        problems = validate_graph(graph)
        assert "Node 'a' has 2 edges on handle 'default'" in problems

    def test_unsupported_node_type(self):
        graph = _graph([("t", "trigger", None), ("x", "teleport", None)], [("t", "x")])
        assert "Node 'x' has unsupported type 'teleport'" in validate_graph(graph)

    def test_bad_node_config(self):
        graph = _graph(
            [("t", "trigger", None), ("w", "waitForReply", {"expectedType": "hologram"})],
            [("t", "w")],
        )
        assert any(p.startswith("Node 'w':") for p in validate_graph(graph))


class TestPublish:
    """FlowRepository.publish gates on validation."""

    def test_invalid_flow_is_not_published(self, store, build_flow):
        build_flow(
            [("a", "sendText", {"message": "x"}), ("b", "end", {}), ("c", "end", {})],
            edges=[("a", "b"), ("a", "c")],
            published=False,
        )
        with pytest.raises(FlowValidationError) as exc_info:
            store.publish("flow-1")

        assert exc_info.value.problems
        assert store.get_flow("flow-1").is_published is False

    def test_valid_flow_is_published(self, store, build_flow):
        build_flow([("a", "sendText", {"message": "x"})], published=False)
        store.publish("flow-1")
        assert store.get_flow("flow-1").is_published is True

    def test_unknown_flow(self, store):
        with pytest.raises(KeyError):
            store.publish("missing")
