"""
Engine store tests.

The same contract is exercised against the in-memory store and the SQLite
store (in-memory database), plus a few SQLite file-specific checks.
"""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from engine.errors import ExecutionConflict
from engine.store import InMemoryStore, SQLiteStore
from engine.types import (
    ChannelConfig,
    Edge,
    ExecutionLogEntry,
    Flow,
    InboundEvent,
    Node,
    TriggerDescriptor,
)

NOW = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


@pytest.fixture(params=["memory", "sqlite"])
def engine_store(request):
    if request.param == "memory":
        yield InMemoryStore()
    else:
        store = SQLiteStore(":memory:")
        yield store
        store.close()


def _sample_flow(flow_id="flow-1", channel_id="channel-1", published=True):
    flow = Flow(
        id=flow_id,
        channel_id=channel_id,
        trigger=TriggerDescriptor(type="keyword", value="help, info"),
        name="Help",
        priority=3,
        is_published=published,
    )
    nodes = [
        Node(id="trigger", flow_id=flow_id, type="trigger"),
        Node(id="ask", flow_id=flow_id, type="waitForReply",
             config={"variableName": "x", "expectedType": "button"}, position=(10.0, 20.0)),
        Node(id="yes", flow_id=flow_id, type="sendText", config={"message": "yes"}),
        Node(id="no", flow_id=flow_id, type="sendText", config={"message": "no"}),
    ]
    edges = [
        Edge(id=f"{flow_id}-e1", flow_id=flow_id, source_node_id="trigger", target_node_id="ask"),
        Edge(id=f"{flow_id}-e2", flow_id=flow_id, source_node_id="ask", target_node_id="yes", source_handle="y"),
        Edge(id=f"{flow_id}-e3", flow_id=flow_id, source_node_id="ask", target_node_id="no", source_handle="n"),
    ]
    return flow, nodes, edges


# ============================================================================
# EXECUTIONS
# ============================================================================

class TestExecutions:
    """Single-flight, versioning and queries."""

    def test_create_and_find(self, engine_store):
        execution = engine_store.create("flow-1", "cust", "channel-1", current_node_id="trigger",
                                        variables={"a": {"b": [1, 2]}})

        assert execution.status == "running"
        assert execution.version == 0
        assert engine_store.find_active("cust", "channel-1").id == execution.id
        assert engine_store.find_waiting("cust", "channel-1") is None
        assert engine_store.get(execution.id).variables == {"a": {"b": [1, 2]}}

    def test_one_active_execution_per_customer_and_channel(self, engine_store):
        engine_store.create("flow-1", "cust", "channel-1")

        with pytest.raises(ExecutionConflict):
            engine_store.create("flow-2", "cust", "channel-1")

        # other channel and other customer are independent
        engine_store.create("flow-1", "cust", "channel-2")
        engine_store.create("flow-1", "other", "channel-1")

    def test_terminal_execution_frees_the_slot(self, engine_store):
        execution = engine_store.create("flow-1", "cust", "channel-1")
        execution.status = "completed"
        engine_store.save(execution)

        assert engine_store.find_active("cust", "channel-1") is None
        engine_store.create("flow-1", "cust", "channel-1")

    def test_save_bumps_version_and_rejects_stale_writes(self, engine_store):
        execution = engine_store.create("flow-1", "cust", "channel-1")
        stale = engine_store.get(execution.id)

        execution.status = "waiting"
        execution.waiting_for = "text"
        saved = engine_store.save(execution)

        assert saved.version == 1
        assert engine_store.get(execution.id).waiting_for == "text"
        with pytest.raises(ExecutionConflict):
            engine_store.save(stale)

    def test_find_waiting(self, engine_store):
        execution = engine_store.create("flow-1", "cust", "channel-1")
        execution.status = "waiting"
        execution.current_node_id = "ask"
        engine_store.save(execution)

        waiting = engine_store.find_waiting("cust", "channel-1")
        assert waiting.current_node_id == "ask"
        assert waiting.version == 1

    def test_expired_waits_and_due_delays(self, engine_store):
        wait = engine_store.create("flow-1", "a", "channel-1")
        wait.status, wait.waiting_for = "waiting", "text"
        wait.expires_at = NOW - timedelta(seconds=1)
        engine_store.save(wait)

        fresh = engine_store.create("flow-1", "b", "channel-1")
        fresh.status, fresh.waiting_for = "waiting", "text"
        fresh.expires_at = NOW + timedelta(minutes=5)
        engine_store.save(fresh)

        delay = engine_store.create("flow-1", "c", "channel-1")
        delay.status, delay.waiting_for = "waiting", "delay"
        delay.resume_at = NOW
        engine_store.save(delay)

        assert [e.id for e in engine_store.find_expired_waits(NOW)] == [wait.id]
        assert [e.id for e in engine_store.find_due_delays(NOW)] == [delay.id]
        assert engine_store.find_due_delays(NOW - timedelta(seconds=1)) == []

    def test_stale_running_executions(self, engine_store):
        stuck = engine_store.create("flow-1", "a", "channel-1", now=NOW - timedelta(minutes=10))

        moving = engine_store.create("flow-1", "b", "channel-1", now=NOW - timedelta(minutes=10))
        moving.updated_at = NOW
        engine_store.save(moving)

        parked = engine_store.create("flow-1", "c", "channel-1", now=NOW - timedelta(minutes=10))
        parked.status, parked.waiting_for = "waiting", "text"
        engine_store.save(parked)

        cutoff = NOW - timedelta(minutes=5)
        assert [e.id for e in engine_store.find_stale_running(cutoff)] == [stuck.id]
        assert engine_store.get(moving.id).updated_at == NOW

    def test_wait_fields_round_trip(self, engine_store):
        execution = engine_store.create("flow-1", "cust", "channel-1")
        execution.status = "waiting"
        execution.expires_at = NOW
        engine_store.save(execution)

        assert engine_store.get(execution.id).expires_at == NOW


class TestMarkersAndLogs:
    """Processed-message markers and execution logs."""

    def test_mark_processed_is_once_only(self, engine_store):
        assert engine_store.mark_processed("wamid.1") is True
        assert engine_store.mark_processed("wamid.1") is False
        assert engine_store.mark_processed("wamid.2") is True

    def test_logs_keep_append_order(self, engine_store):
        for action in ("sendText", "condition", "end"):
            engine_store.append_log(ExecutionLogEntry(
                execution_id="exec-1", node_id=action, action=action, data={"k": action}, created_at=NOW,
            ))
        engine_store.append_log(ExecutionLogEntry(execution_id="exec-2", node_id=None, action="error"))

        logs = engine_store.list_logs("exec-1")
        assert [entry.action for entry in logs] == ["sendText", "condition", "end"]
        assert logs[0].data == {"k": "sendText"}


# ============================================================================
# FLOWS, CHANNELS, CONVERSATIONS
# ============================================================================

class TestFlowsAndChannels:
    """Flow graphs, candidates and channel configs."""

    def test_graph_round_trip(self, engine_store):
        engine_store.save_flow(*_sample_flow())

        graph = engine_store.load_graph("flow-1")

        assert graph.flow.trigger.keywords() == ["help", "info"]
        assert graph.flow.priority == 3
        assert [n.id for n in graph.nodes] == ["trigger", "ask", "yes", "no"]
        assert graph.node("ask").config == {"variableName": "x", "expectedType": "button"}
        assert graph.node("ask").position == (10.0, 20.0)
        assert [e.source_handle for e in graph.edges] == [None, "y", "n"]
        assert graph.next_edge("ask", "n").target_node_id == "no"

    def test_save_flow_replaces_graph(self, engine_store):
        flow, nodes, edges = _sample_flow()
        engine_store.save_flow(flow, nodes, edges)
        engine_store.save_flow(flow, nodes[:2], edges[:1])

        graph = engine_store.load_graph("flow-1")
        assert len(graph.nodes) == 2
        assert len(graph.edges) == 1

    def test_candidates_are_published_and_active(self, engine_store):
        engine_store.save_flow(*_sample_flow("live"))
        engine_store.save_flow(*_sample_flow("draft", published=False))
        engine_store.save_flow(*_sample_flow("elsewhere", channel_id="channel-2"))

        assert [f.id for f in engine_store.list_candidate_flows("channel-1")] == ["live"]

    def test_set_published(self, engine_store):
        engine_store.save_flow(*_sample_flow(published=False))
        engine_store.set_published("flow-1", True)

        assert engine_store.get_flow("flow-1").is_published is True
        with pytest.raises(KeyError):
            engine_store.set_published("missing", True)

    def test_channel_upsert(self, engine_store):
        channel = ChannelConfig(id="c", phone_number_id="pn", access_token="t1", verify_token="v")
        engine_store.save_config(channel)
        channel.access_token = "t2"
        channel.is_active = False
        engine_store.save_config(channel)

        loaded = engine_store.load_config("c")
        assert loaded.access_token == "t2"
        assert loaded.is_active is False
        assert engine_store.load_config("unknown") is None

    def test_conversation_log(self, engine_store):
        event = InboundEvent(message_id="wamid.1", sender_id="cust", type="text", text="hi", timestamp=NOW)
        engine_store.record_inbound("channel-1", event)

        messages = engine_store.list_messages("channel-1", "cust")
        assert len(messages) == 1
        assert messages[0]["content"] == "hi"
        assert messages[0]["direction"] == "inbound"
        assert engine_store.list_messages("channel-1", "someone-else") == []


class TestSQLiteFile:
    """File-backed database survives reopening."""

    def test_state_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "flows.db")
        first = SQLiteStore(path)
        first.save_flow(*_sample_flow())
        execution = first.create("flow-1", "cust", "channel-1")
        first.mark_processed("wamid.1")

        second = SQLiteStore(path)
        assert second.load_graph("flow-1") is not None
        assert second.find_active("cust", "channel-1").id == execution.id
        assert second.mark_processed("wamid.1") is False
        with pytest.raises(ExecutionConflict):
            second.create("flow-1", "cust", "channel-1")

    def test_ping(self, tmp_path, monkeypatch):
        store = SQLiteStore(str(tmp_path / "flows.db"))
        assert store.ping() is True

        def unreachable():
            raise sqlite3.OperationalError("unable to open database file")

        monkeypatch.setattr(store, "_open", unreachable)
        assert store.ping() is False
