"""Pytest configuration and fixtures."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add project root to sys.path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from engine.settings import EngineSettings  # noqa: E402
from engine.store.memory import InMemoryStore  # noqa: E402
from engine.types import (  # noqa: E402
    ChannelConfig,
    Edge,
    Flow,
    InboundEvent,
    Node,
    TriggerDescriptor,
)
from engine.walker import GraphWalker  # noqa: E402
from transport.whatsapp.gateway import StubMessagingGateway  # noqa: E402

CHANNEL_ID = "channel-1"
CUSTOMER_ID = "15551234567"
VERIFY_TOKEN = "verify-me"


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ============================================================================
# CORE FIXTURES
# ============================================================================

@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc))


@pytest.fixture
def channel():
    return ChannelConfig(
        id=CHANNEL_ID,
        phone_number_id="pn-100",
        access_token="test-access-token",
        verify_token=VERIFY_TOKEN,
        phone_number="15550000000",
    )


@pytest.fixture
def store(channel):
    store = InMemoryStore()
    store.save_config(channel)
    return store


@pytest.fixture
def gateway():
    return StubMessagingGateway()


@pytest.fixture
def settings():
    return EngineSettings()


@pytest.fixture
def walker(store, gateway, settings, clock):
    return GraphWalker(store=store, gateway=gateway, settings=settings, clock=clock)


# ============================================================================
# BUILDERS
# ============================================================================

@pytest.fixture
def build_flow(store):
    """
    Save a flow and return its graph.

    steps: [(node_id, node_type, config), ...]
    edges: [(source, target) | (source, target, handle), ...]; when omitted
           the steps are chained in order. A "trigger" node is always added
           and wired to the first step.
    """

    def _build(
        steps,
        edges=None,
        flow_id="flow-1",
        trigger_type="keyword",
        trigger_value="HELP",
        priority=0,
        published=True,
        channel_id=CHANNEL_ID,
    ):
        nodes = [Node(id="trigger", flow_id=flow_id, type="trigger")]
        nodes += [
            Node(id=node_id, flow_id=flow_id, type=node_type, config=config)
            for node_id, node_type, config in steps
        ]

        if edges is None:
            ids = [node_id for node_id, _, _ in steps]
            edges = list(zip(ids, ids[1:]))
        wiring = [("trigger", steps[0][0])] + list(edges) if steps else list(edges)

        edge_objects = []
        for index, wire in enumerate(wiring):
            source, target = wire[0], wire[1]
            handle = wire[2] if len(wire) > 2 else None
            edge_objects.append(
                Edge(
                    id=f"{flow_id}-e{index}",
                    flow_id=flow_id,
                    source_node_id=source,
                    target_node_id=target,
                    source_handle=handle,
                )
            )

        flow = Flow(
            id=flow_id,
            channel_id=channel_id,
            trigger=TriggerDescriptor(type=trigger_type, value=trigger_value),
            name=flow_id,
            priority=priority,
            is_published=published,
        )
        store.save_flow(flow, nodes, edge_objects)
        return store.load_graph(flow_id)

    return _build


@pytest.fixture
def make_event():
    def _make(text="HELP", message_id="wamid.in_1", sender=CUSTOMER_ID, type="text", **kwargs):
        kwargs.setdefault("contact_name", "Ana")
        return InboundEvent(
            message_id=message_id,
            sender_id=sender,
            type=type,
            text=text,
            **kwargs,
        )

    return _make


@pytest.fixture
def webhook_payload():
    """Cloud API webhook body carrying one inbound message."""

    def _payload(text="HELP", message_id="wamid.in_1", sender=CUSTOMER_ID, name="Ana", message=None):
        if message is None:
            message = {"type": "text", "text": {"body": text}}
        return {
            "object": "whatsapp_business_account",
            "entry": [{
                "id": "waba-1",
                "changes": [{
                    "field": "messages",
                    "value": {
                        "messaging_product": "whatsapp",
                        "metadata": {"phone_number_id": "pn-100"},
                        "contacts": [{"wa_id": sender, "profile": {"name": name}}],
                        "messages": [{
                            "from": sender,
                            "id": message_id,
                            "timestamp": "1707500000",
                            **message,
                        }],
                    },
                }],
            }],
        }

    return _payload
