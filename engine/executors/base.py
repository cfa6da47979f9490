"""
Node executor contract.

An executor receives the node, its parsed config and a NodeContext, and
returns a NodeOutcome. Executors never mutate the variable snapshot they
are given; they describe changes as deltas and the walker applies them.
"""

import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional

from engine.settings import EngineSettings
from engine.types import ChannelConfig, Execution, FlowGraph, InboundEvent, Node, utcnow

if TYPE_CHECKING:
    from transport.whatsapp.gateway import MessagingGateway

# Delta value that removes a variable
DELETE = object()


@dataclass
class NodeContext:
    """Everything a node may read while executing."""

    variables: Dict[str, Any]
    execution: Execution
    channel: ChannelConfig
    graph: FlowGraph
    gateway: "MessagingGateway"
    settings: EngineSettings
    event: Optional[InboundEvent] = None
    resuming: bool = False  # True only for the node that suspended the walk
    clock: Callable[[], datetime] = utcnow
    rng: random.Random = field(default_factory=random.Random)

    @property
    def recipient(self) -> str:
        return self.execution.customer_id

    def now(self) -> datetime:
        return self.clock()

    def has_handle(self, node_id: str, handle: str) -> bool:
        return bool(self.graph.edges_for_handle(node_id, handle))


@dataclass
class NodeOutcome:
    """What a node did and where the walk goes next."""

    handle: Optional[str] = None           # named output; None = default edge
    fallback_handle: Optional[str] = None  # tried when `handle` has no edge
    deltas: Dict[str, Any] = field(default_factory=dict)
    suspend: bool = False
    waiting_for: Optional[str] = None
    expires_at: Optional[datetime] = None
    resume_at: Optional[datetime] = None
    end_status: Optional[str] = None       # "completed" | "failed"
    log: Dict[str, Any] = field(default_factory=dict)


NodeHandler = Callable[[Node, Any, NodeContext], Awaitable[NodeOutcome]]

EXECUTORS: Dict[str, NodeHandler] = {}


def executor(*node_types: str):
    """Register a handler for one or more node types."""

    def register(handler: NodeHandler) -> NodeHandler:
        for node_type in node_types:
            if node_type in EXECUTORS:
                raise RuntimeError(f"Duplicate executor for node type {node_type}")
            EXECUTORS[node_type] = handler
        return handler

    return register
