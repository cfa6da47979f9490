"""
Flow engine data model.

Flows, nodes and edges are authored elsewhere and read-only here.
Executions and their logs are the only state the engine writes.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Tuple

ExecutionStatus = Literal["running", "waiting", "completed", "failed"]
TriggerType = Literal["keyword", "any_message"]

NON_TERMINAL_STATUSES = ("running", "waiting")
TERMINAL_STATUSES = ("completed", "failed")

# Handles that mean "the node's plain output"
DEFAULT_HANDLES = (None, "", "default", "output")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TriggerDescriptor:
    """How a flow is started. `value` may list several comma-separated keywords."""

    type: TriggerType
    value: Optional[str] = None
    case_sensitive: bool = False

    def keywords(self) -> List[str]:
        if not self.value:
            return []
        return [kw.strip() for kw in self.value.split(",") if kw.strip()]


@dataclass
class Flow:
    id: str
    channel_id: str
    trigger: TriggerDescriptor
    organization_id: Optional[str] = None
    name: str = ""
    priority: int = 0
    is_active: bool = True
    is_published: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Node:
    id: str
    flow_id: str
    type: str
    config: Dict[str, Any] = field(default_factory=dict)
    label: str = ""
    position: Tuple[float, float] = (0.0, 0.0)  # editor layout only


@dataclass
class Edge:
    id: str
    flow_id: str
    source_node_id: str
    target_node_id: str
    source_handle: Optional[str] = None


@dataclass
class FlowGraph:
    """A flow together with its nodes and edges, as loaded for one walk."""

    flow: Flow
    nodes: List[Node]
    edges: List[Edge]

    def __post_init__(self):
        self._nodes_by_id = {node.id: node for node in self.nodes}

    def node(self, node_id: Optional[str]) -> Optional[Node]:
        if node_id is None:
            return None
        return self._nodes_by_id.get(node_id)

    def trigger_nodes(self) -> List[Node]:
        return [node for node in self.nodes if node.type == "trigger"]

    def trigger_node(self) -> Optional[Node]:
        triggers = self.trigger_nodes()
        return triggers[0] if triggers else None

    def outgoing(self, node_id: str) -> List[Edge]:
        return [edge for edge in self.edges if edge.source_node_id == node_id]

    def edges_for_handle(self, node_id: str, handle: Optional[str]) -> List[Edge]:
        return [
            edge for edge in self.outgoing(node_id)
            if edge.source_handle == handle
        ]

    def default_edges(self, node_id: str) -> List[Edge]:
        return [
            edge for edge in self.outgoing(node_id)
            if edge.source_handle in DEFAULT_HANDLES
        ]

    def next_edge(self, node_id: str, handle: Optional[str] = None) -> Optional[Edge]:
        """
        Resolve the edge to follow out of a node.

        A named handle selects its own edge, falling back to the node's
        default edge. With no handle, the default edge is preferred and a
        single-output node's only edge is accepted whatever its handle id.
        """
        if handle not in DEFAULT_HANDLES:
            named = self.edges_for_handle(node_id, handle)
            if named:
                return named[0]
            defaults = self.default_edges(node_id)
            return defaults[0] if defaults else None

        defaults = self.default_edges(node_id)
        if defaults:
            return defaults[0]
        outgoing = self.outgoing(node_id)
        return outgoing[0] if outgoing else None


@dataclass
class Execution:
    """One customer's run through one flow on one channel."""

    id: str
    flow_id: str
    customer_id: str
    channel_id: str
    status: ExecutionStatus = "running"
    current_node_id: Optional[str] = None
    variables: Dict[str, Any] = field(default_factory=dict)
    waiting_for: Optional[str] = None      # expected input type, or "delay"
    expires_at: Optional[datetime] = None  # waitForReply timeout instant
    resume_at: Optional[datetime] = None   # delay resumption instant
    started_at: datetime = field(default_factory=utcnow)
    updated_at: Optional[datetime] = None  # last persisted transition
    completed_at: Optional[datetime] = None
    version: int = 0                       # optimistic concurrency token

    def __post_init__(self):
        if self.updated_at is None:
            self.updated_at = self.started_at

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass
class ExecutionLogEntry:
    execution_id: str
    node_id: Optional[str]
    action: str
    data: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class ChannelConfig:
    """A WhatsApp sending identity and its credentials."""

    id: str
    phone_number_id: str
    access_token: str
    verify_token: str
    organization_id: Optional[str] = None
    phone_number: str = ""
    app_secret: Optional[str] = None
    is_active: bool = True


@dataclass(frozen=True)
class InboundEvent:
    """
    One inbound WhatsApp message, reduced to what the engine consumes.

    `text` is always populated with something readable: the body for text,
    the reply title for interactive replies, the caption or a bracketed
    placeholder for media.
    """

    message_id: str
    sender_id: str
    type: str
    text: Optional[str] = None
    contact_name: Optional[str] = None
    wa_id: Optional[str] = None
    button_id: Optional[str] = None
    list_row_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    media_id: Optional[str] = None
    media_url: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)
