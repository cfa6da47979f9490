"""
In-memory store.

Implements every persistence interface in one process-local object.
Deterministic and dependency-free: used by tests and by STORE_BACKEND=memory.
Enforces the same single-flight and version rules as the SQLite store.
"""

import copy
import threading
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from engine.errors import ExecutionConflict
from engine.store.base import ChannelConfigStore, ConversationLog, ExecutionStore, FlowRepository
from engine.types import (
    NON_TERMINAL_STATUSES,
    ChannelConfig,
    Edge,
    Execution,
    ExecutionLogEntry,
    Flow,
    FlowGraph,
    InboundEvent,
    Node,
    utcnow,
)


class InMemoryStore(ExecutionStore, FlowRepository, ChannelConfigStore, ConversationLog):
    """All engine state in dictionaries guarded by one lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._executions: Dict[str, Execution] = {}
        self._logs: List[ExecutionLogEntry] = []
        self._processed: Set[str] = set()
        self._flows: Dict[str, Flow] = {}
        self._nodes: Dict[str, List[Node]] = {}
        self._edges: Dict[str, List[Edge]] = {}
        self._channels: Dict[str, ChannelConfig] = {}
        self._messages: List[Dict[str, Any]] = []

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    def _active_for(self, customer_id: str, channel_id: str) -> Optional[Execution]:
        for execution in self._executions.values():
            if (
                execution.customer_id == customer_id
                and execution.channel_id == channel_id
                and execution.status in NON_TERMINAL_STATUSES
            ):
                return execution
        return None

    def find_waiting(self, customer_id: str, channel_id: str) -> Optional[Execution]:
        with self._lock:
            execution = self._active_for(customer_id, channel_id)
            if execution is None or execution.status != "waiting":
                return None
            return copy.deepcopy(execution)

    def find_active(self, customer_id: str, channel_id: str) -> Optional[Execution]:
        with self._lock:
            execution = self._active_for(customer_id, channel_id)
            return copy.deepcopy(execution) if execution else None

    def create(
        self,
        flow_id: str,
        customer_id: str,
        channel_id: str,
        current_node_id: Optional[str] = None,
        variables: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Execution:
        with self._lock:
            if self._active_for(customer_id, channel_id) is not None:
                raise ExecutionConflict(
                    f"Active execution already exists for {customer_id} on {channel_id}"
                )
            execution = Execution(
                id=str(uuid.uuid4()),
                flow_id=flow_id,
                customer_id=customer_id,
                channel_id=channel_id,
                status="running",
                current_node_id=current_node_id,
                variables=copy.deepcopy(variables or {}),
                started_at=now or utcnow(),
            )
            self._executions[execution.id] = execution
            return copy.deepcopy(execution)

    def save(self, execution: Execution) -> Execution:
        with self._lock:
            stored = self._executions.get(execution.id)
            if stored is None or stored.version != execution.version:
                raise ExecutionConflict(f"Stale write for execution {execution.id}")
            saved = copy.deepcopy(execution)
            saved.version += 1
            self._executions[saved.id] = saved
            return copy.deepcopy(saved)

    def get(self, execution_id: str) -> Optional[Execution]:
        with self._lock:
            execution = self._executions.get(execution_id)
            return copy.deepcopy(execution) if execution else None

    def append_log(self, entry: ExecutionLogEntry) -> None:
        with self._lock:
            self._logs.append(copy.deepcopy(entry))

    def list_logs(self, execution_id: str) -> List[ExecutionLogEntry]:
        with self._lock:
            return [copy.deepcopy(e) for e in self._logs if e.execution_id == execution_id]

    def mark_processed(self, message_id: str) -> bool:
        with self._lock:
            if message_id in self._processed:
                return False
            self._processed.add(message_id)
            return True

    def find_expired_waits(self, now: datetime) -> List[Execution]:
        with self._lock:
            return [
                copy.deepcopy(e) for e in self._executions.values()
                if e.status == "waiting"
                and e.waiting_for != "delay"
                and e.expires_at is not None
                and e.expires_at <= now
            ]

    def find_due_delays(self, now: datetime) -> List[Execution]:
        with self._lock:
            return [
                copy.deepcopy(e) for e in self._executions.values()
                if e.status == "waiting"
                and e.waiting_for == "delay"
                and e.resume_at is not None
                and e.resume_at <= now
            ]

    def find_stale_running(self, cutoff: datetime) -> List[Execution]:
        with self._lock:
            return [
                copy.deepcopy(e) for e in self._executions.values()
                if e.status == "running" and e.updated_at <= cutoff
            ]

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    def list_candidate_flows(self, channel_id: str) -> List[Flow]:
        with self._lock:
            return [
                copy.deepcopy(f) for f in self._flows.values()
                if f.channel_id == channel_id and f.is_active and f.is_published
            ]

    def get_flow(self, flow_id: str) -> Optional[Flow]:
        with self._lock:
            flow = self._flows.get(flow_id)
            return copy.deepcopy(flow) if flow else None

    def load_graph(self, flow_id: str) -> Optional[FlowGraph]:
        with self._lock:
            flow = self._flows.get(flow_id)
            if flow is None:
                return None
            return FlowGraph(
                flow=copy.deepcopy(flow),
                nodes=copy.deepcopy(self._nodes.get(flow_id, [])),
                edges=copy.deepcopy(self._edges.get(flow_id, [])),
            )

    def save_flow(self, flow: Flow, nodes: List[Node], edges: List[Edge]) -> None:
        with self._lock:
            self._flows[flow.id] = copy.deepcopy(flow)
            self._nodes[flow.id] = copy.deepcopy(list(nodes))
            self._edges[flow.id] = copy.deepcopy(list(edges))

    def set_published(self, flow_id: str, published: bool) -> None:
        with self._lock:
            flow = self._flows.get(flow_id)
            if flow is None:
                raise KeyError(flow_id)
            flow.is_published = published

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def load_config(self, channel_id: str) -> Optional[ChannelConfig]:
        with self._lock:
            config = self._channels.get(channel_id)
            return copy.deepcopy(config) if config else None

    def save_config(self, config: ChannelConfig) -> None:
        with self._lock:
            self._channels[config.id] = copy.deepcopy(config)

    # ------------------------------------------------------------------
    # Conversation log
    # ------------------------------------------------------------------

    def record_inbound(self, channel_id: str, event: InboundEvent) -> None:
        with self._lock:
            self._messages.append({
                "channel_id": channel_id,
                "customer_id": event.sender_id,
                "message_id": event.message_id,
                "direction": "inbound",
                "type": event.type,
                "content": event.text,
                "media_url": event.media_url,
                "created_at": event.timestamp or utcnow(),
            })

    def list_messages(self, channel_id: str, customer_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                dict(m) for m in self._messages
                if m["channel_id"] == channel_id and m["customer_id"] == customer_id
            ]
