"""
Abstract persistence boundaries.

The engine depends only on these interfaces. Invocations are independent
and short-lived, so every piece of cross-call state lives behind them:
executions, their logs, processed-message markers, flows and channels.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from engine.types import (
    ChannelConfig,
    Edge,
    Execution,
    ExecutionLogEntry,
    Flow,
    FlowGraph,
    InboundEvent,
    Node,
)
from engine.validation import ensure_valid


class ExecutionStore(ABC):
    """
    Executions, execution logs and idempotency markers.

    Invariant: at most one non-terminal (running/waiting) execution per
    (customer, channel). create() enforces it; save() refuses stale writes.
    """

    def ping(self) -> bool:
        """True when the backing storage answers."""
        return True

    @abstractmethod
    def find_waiting(self, customer_id: str, channel_id: str) -> Optional[Execution]:
        """The waiting execution for this customer on this channel, if any."""
        raise NotImplementedError

    @abstractmethod
    def find_active(self, customer_id: str, channel_id: str) -> Optional[Execution]:
        """The non-terminal (running or waiting) execution, if any."""
        raise NotImplementedError

    @abstractmethod
    def create(
        self,
        flow_id: str,
        customer_id: str,
        channel_id: str,
        current_node_id: Optional[str] = None,
        variables: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Execution:
        """
        Create a running execution, started at `now` (default: wall clock).

        Raises:
            ExecutionConflict: a non-terminal execution already exists for
                the (customer, channel) pair
        """
        raise NotImplementedError

    @abstractmethod
    def save(self, execution: Execution) -> Execution:
        """
        Replace status, current node, variables and wait fields.

        The write succeeds only if execution.version matches the stored
        version; the returned execution carries the bumped version.

        Raises:
            ExecutionConflict: stored version moved on (concurrent walk)
        """
        raise NotImplementedError

    @abstractmethod
    def get(self, execution_id: str) -> Optional[Execution]:
        raise NotImplementedError

    @abstractmethod
    def append_log(self, entry: ExecutionLogEntry) -> None:
        """Append-only; entries are never updated or deleted."""
        raise NotImplementedError

    @abstractmethod
    def list_logs(self, execution_id: str) -> List[ExecutionLogEntry]:
        raise NotImplementedError

    @abstractmethod
    def mark_processed(self, message_id: str) -> bool:
        """
        Atomically record an inbound message id.

        Returns True if this call recorded it, False if it was already there.
        """
        raise NotImplementedError

    @abstractmethod
    def find_expired_waits(self, now: datetime) -> List[Execution]:
        """Waiting executions whose reply deadline has passed."""
        raise NotImplementedError

    @abstractmethod
    def find_due_delays(self, now: datetime) -> List[Execution]:
        """Executions suspended on a delay whose resume instant has passed."""
        raise NotImplementedError

    @abstractmethod
    def find_stale_running(self, cutoff: datetime) -> List[Execution]:
        """
        Running executions not persisted since `cutoff`.

        A walk saves after every node, so a running row this old belongs to
        an invocation that died mid-walk.
        """
        raise NotImplementedError


class FlowRepository(ABC):
    """Read access to authored flows, plus the publish gate."""

    @abstractmethod
    def list_candidate_flows(self, channel_id: str) -> List[Flow]:
        """Active, published flows bound to the channel."""
        raise NotImplementedError

    @abstractmethod
    def get_flow(self, flow_id: str) -> Optional[Flow]:
        raise NotImplementedError

    @abstractmethod
    def load_graph(self, flow_id: str) -> Optional[FlowGraph]:
        raise NotImplementedError

    @abstractmethod
    def save_flow(self, flow: Flow, nodes: List[Node], edges: List[Edge]) -> None:
        """Replace a flow and its whole graph."""
        raise NotImplementedError

    @abstractmethod
    def set_published(self, flow_id: str, published: bool) -> None:
        raise NotImplementedError

    def publish(self, flow_id: str) -> FlowGraph:
        """
        Validate a flow's graph and mark it published.

        Raises:
            FlowValidationError: graph has structural problems
            KeyError: flow does not exist
        """
        graph = self.load_graph(flow_id)
        if graph is None:
            raise KeyError(flow_id)
        ensure_valid(graph)
        self.set_published(flow_id, True)
        return graph


class ChannelConfigStore(ABC):
    @abstractmethod
    def load_config(self, channel_id: str) -> Optional[ChannelConfig]:
        """Channel config whether active or not; None if unknown."""
        raise NotImplementedError

    @abstractmethod
    def save_config(self, config: ChannelConfig) -> None:
        raise NotImplementedError


class ConversationLog(ABC):
    """Inbound message history, kept regardless of flow matching."""

    @abstractmethod
    def record_inbound(self, channel_id: str, event: InboundEvent) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_messages(self, channel_id: str, customer_id: str) -> List[Dict[str, Any]]:
        raise NotImplementedError
