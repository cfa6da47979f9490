"""
Sweeper tests: deferred delay resumption, wait expiry and abandoned walks.
"""

import pytest

from engine.scheduler import Sweeper, SweepReport
from engine.walker import ABANDONED_MESSAGE, WAIT_TIMEOUT_MESSAGE

CUSTOMER_ID = "15551234567"


@pytest.fixture
def sweeper(store, walker, clock):
    return Sweeper(executions=store, flows=store, channels=store, walker=walker, clock=clock)


async def _suspend(store, walker, channel, graph, customer=CUSTOMER_ID):
    execution = store.create(graph.flow.id, customer, graph.flow.channel_id, current_node_id="trigger")
    result = await walker.walk(graph, execution, channel)
    assert result.status == "waiting"
    return result.execution


class TestSweeper:
    """One sweep pass."""

    @pytest.mark.asyncio
    async def test_due_delay_is_resumed(self, store, gateway, walker, channel, build_flow, sweeper, clock):
        graph = build_flow([
            ("pause", "delay", {"delaySeconds": 60}),
            ("later", "sendText", {"message": "a minute later"}),
        ])
        execution = await _suspend(store, walker, channel, graph)

        early = await sweeper.run()
        assert early.to_dict() == {"resumed": 0, "expired": 0, "abandoned": 0, "skipped": 0}

        clock.advance(seconds=61)
        report = await sweeper.run()

        assert report.resumed == [execution.id]
        assert gateway.texts() == ["a minute later"]
        assert store.get(execution.id).status == "completed"

    @pytest.mark.asyncio
    async def test_expired_wait_is_failed(self, store, gateway, walker, channel, build_flow, sweeper, clock):
        graph = build_flow([
            ("wait", "waitForReply", {"variableName": "x", "timeoutSeconds": 30}),
            ("never", "sendText", {"message": "unreachable"}),
        ])
        execution = await _suspend(store, walker, channel, graph)

        clock.advance(seconds=31)
        report = await sweeper.run()

        assert report.expired == [execution.id]
        stored = store.get(execution.id)
        assert stored.status == "failed"
        assert stored.variables["error"] == WAIT_TIMEOUT_MESSAGE
        assert gateway.texts() == []

    @pytest.mark.asyncio
    async def test_wait_without_timeout_is_left_alone(self, store, walker, channel, build_flow, sweeper, clock):
        graph = build_flow([("wait", "waitForReply", {"variableName": "x"})])
        execution = await _suspend(store, walker, channel, graph)

        clock.advance(days=30)
        report = await sweeper.run()

        assert report.expired == []
        assert store.get(execution.id).status == "waiting"

    @pytest.mark.asyncio
    async def test_delay_on_deleted_channel_fails(self, store, walker, channel, build_flow, sweeper, clock):
        graph = build_flow([
            ("pause", "delay", {"delaySeconds": 5}),
            ("later", "sendText", {"message": "later"}),
        ])
        execution = await _suspend(store, walker, channel, graph)
        # a channel id nothing knows about
        stored = store.get(execution.id)
        stored.channel_id = "gone"
        store.save(stored)

        clock.advance(seconds=10)
        await sweeper.run()

        final = store.get(execution.id)
        assert final.status == "failed"
        assert "channel no longer exists" in final.variables["error"]

    @pytest.mark.asyncio
    async def test_abandoned_running_execution_is_failed(self, store, build_flow, sweeper, clock):
        graph = build_flow([("greet", "sendText", {"message": "hi"})])
        stuck = store.create(graph.flow.id, CUSTOMER_ID, graph.flow.channel_id,
                             current_node_id="greet", now=clock())

        clock.advance(seconds=60)
        early = await sweeper.run()
        assert early.abandoned == []
        assert store.get(stuck.id).status == "running"

        clock.advance(days=30)
        report = await sweeper.run()

        assert report.abandoned == [stuck.id]
        final = store.get(stuck.id)
        assert final.status == "failed"
        assert final.variables["error"] == ABANDONED_MESSAGE
        assert final.variables["error_node_id"] == "greet"
        assert store.find_active(CUSTOMER_ID, graph.flow.channel_id) is None

    def test_report_counts(self):
        report = SweepReport(resumed=["a", "b"], expired=["c"])
        assert report.to_dict() == {"resumed": 2, "expired": 1, "abandoned": 0, "skipped": 0}
