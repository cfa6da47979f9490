"""
Graph walker: the flow execution state machine.

One walk drives one execution from its entry node along outgoing edges
until a node suspends, an end node is reached, the graph runs out of edges
or a node fails. Every visited node gets one execution log entry and the
execution is saved after every step, so a crash mid-walk leaves the last
completed node and its variable deltas on record.

Step outcomes:
    continue  -> follow the edge for the returned handle (default edge fallback)
    suspend   -> status "waiting", current_node_id = the suspending node
    end       -> status "completed" or "failed"
    no edge   -> status "completed"
    error     -> status "failed", variables.error / variables.error_node_id
"""

import copy
import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from engine.errors import ExecutionConflict, FlowEngineError, WaitTimeoutExpired
from engine.executors import DELETE, EXECUTORS, NodeContext, NodeOutcome
from engine.node_config import parse_node_config
from engine.settings import EngineSettings
from engine.store.base import ExecutionStore
from engine.types import (
    DEFAULT_HANDLES,
    ChannelConfig,
    Edge,
    Execution,
    ExecutionLogEntry,
    FlowGraph,
    InboundEvent,
    Node,
    utcnow,
)
from engine.variables import set_value

logger = logging.getLogger(__name__)

WAIT_TIMEOUT_MESSAGE = "wait timeout expired"
ABANDONED_MESSAGE = "walk abandoned"


@dataclass
class WalkResult:
    execution: Execution
    steps: int
    status: str
    error: Optional[str] = None


def apply_deltas(variables: Dict[str, Any], deltas: Dict[str, Any]) -> None:
    """Apply executor deltas in order. DELETE removes a top-level variable."""
    for name, value in deltas.items():
        if value is DELETE:
            variables.pop(name, None)
        else:
            set_value(variables, name, value)


class GraphWalker:
    """
    Walks flow graphs on behalf of the orchestrator and the sweeper.

    The walker owns no state between calls; the execution passed in is the
    authority and every transition is persisted through the store with its
    version check, so a concurrent walk of the same execution loses with
    ExecutionConflict instead of forking the conversation.
    """

    def __init__(
        self,
        store: ExecutionStore,
        gateway,
        settings: Optional[EngineSettings] = None,
        scheduler=None,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.settings = settings or EngineSettings()
        self.scheduler = scheduler
        self.clock = clock
        self.rng = rng or random.Random()

    async def walk(
        self,
        graph: FlowGraph,
        execution: Execution,
        channel: ChannelConfig,
        event: Optional[InboundEvent] = None,
        resuming: bool = False,
    ) -> WalkResult:
        """
        Run an execution until it suspends, terminates or fails.

        Fresh executions start at the trigger's successor. Resumed ones
        re-enter current_node_id, and only that first node sees resuming=True.

        Raises:
            ExecutionConflict: another walk saved this execution first
        """
        if resuming:
            node_id = execution.current_node_id
            # Claim the execution before running anything. expires_at is kept
            # so a re-suspending wait keeps its original deadline.
            execution.status = "running"
            execution.waiting_for = None
            execution.resume_at = None
            execution = self._save(execution)
        else:
            trigger = graph.trigger_node()
            if trigger is None:
                return self.fail(execution, None, "Flow has no trigger node")
            edge = self._follow(graph, trigger, None)
            node_id = edge.target_node_id if edge else None

        steps = 0
        first = True

        while True:
            if node_id is None:
                return self._finish(execution, "completed", steps)

            if steps >= self.settings.max_steps:
                return self.fail(
                    execution,
                    node_id,
                    f"Step limit of {self.settings.max_steps} exceeded",
                    steps,
                )

            node = graph.node(node_id)
            if node is None:
                return self.fail(execution, node_id, f"Node {node_id} not found in flow", steps)
            if node.type == "trigger":
                return self.fail(execution, node_id, "Edge leads back into the trigger node", steps)

            steps += 1
            execution.current_node_id = node.id

            ctx = NodeContext(
                variables=copy.deepcopy(execution.variables),
                execution=execution,
                channel=channel,
                graph=graph,
                gateway=self.gateway,
                settings=self.settings,
                event=event,
                resuming=resuming and first,
                clock=self.clock,
                rng=self.rng,
            )
            first = False

            try:
                outcome = await self._run_node(node, ctx)
            except ExecutionConflict:
                raise
            except FlowEngineError as e:
                return self.fail(execution, node.id, str(e), steps, node_type=node.type)
            except Exception as e:
                logger.exception(
                    f"Unexpected error in node {node.id} ({node.type})",
                    extra={"execution_id": execution.id, "node_id": node.id},
                )
                return self.fail(execution, node.id, str(e) or type(e).__name__, steps, node_type=node.type)

            apply_deltas(execution.variables, outcome.deltas)
            self._log(execution, node.id, node.type, {**outcome.log, "handle": outcome.handle})

            if outcome.suspend:
                return self._suspend(execution, outcome, steps)

            if outcome.end_status:
                return self._finish(execution, outcome.end_status, steps)

            execution.expires_at = None
            handle = outcome.handle
            if (
                outcome.fallback_handle
                and handle not in DEFAULT_HANDLES
                and not graph.edges_for_handle(node.id, handle)
                and graph.edges_for_handle(node.id, outcome.fallback_handle)
            ):
                # Rule output with nothing wired: take the configured default branch
                handle = outcome.fallback_handle
            edge = self._follow(graph, node, handle)
            node_id = edge.target_node_id if edge else None
            execution = self._save(execution)

    async def _run_node(self, node: Node, ctx: NodeContext) -> NodeOutcome:
        config = parse_node_config(node.type, node.config)
        handler = EXECUTORS[node.type]
        logger.debug(
            f"Executing node {node.id} ({node.type})",
            extra={"execution_id": ctx.execution.id, "node_id": node.id},
        )
        return await handler(node, config, ctx)

    def _follow(self, graph: FlowGraph, node: Node, handle: Optional[str]) -> Optional[Edge]:
        if handle in DEFAULT_HANDLES:
            candidates = graph.default_edges(node.id) or graph.outgoing(node.id)
        else:
            candidates = graph.edges_for_handle(node.id, handle) or graph.default_edges(node.id)
        if len(candidates) > 1:
            logger.warning(
                f"Node {node.id} fans out to {len(candidates)} edges on handle "
                f"'{handle or 'default'}'; taking the first",
                extra={"flow_id": graph.flow.id, "node_id": node.id},
            )
        return graph.next_edge(node.id, handle)

    def _save(self, execution: Execution) -> Execution:
        execution.updated_at = self.clock()
        return self.store.save(execution)

    def _log(self, execution: Execution, node_id: Optional[str], action: str, data: Dict[str, Any]) -> None:
        self.store.append_log(
            ExecutionLogEntry(
                execution_id=execution.id,
                node_id=node_id,
                action=action,
                data=data,
                created_at=self.clock(),
            )
        )

    def _suspend(self, execution: Execution, outcome: NodeOutcome, steps: int) -> WalkResult:
        execution.status = "waiting"
        execution.waiting_for = outcome.waiting_for
        execution.expires_at = outcome.expires_at
        execution.resume_at = outcome.resume_at
        execution = self._save(execution)

        if outcome.resume_at is not None and self.scheduler is not None:
            self.scheduler.schedule(execution.id, outcome.resume_at)

        logger.info(
            f"Execution {execution.id} waiting for {execution.waiting_for} at {execution.current_node_id}",
            extra={"execution_id": execution.id, "node_id": execution.current_node_id},
        )
        return WalkResult(execution=execution, steps=steps, status="waiting")

    def _finish(self, execution: Execution, status: str, steps: int) -> WalkResult:
        execution.status = status
        execution.waiting_for = None
        execution.expires_at = None
        execution.resume_at = None
        execution.completed_at = self.clock()
        execution = self._save(execution)
        logger.info(
            f"Execution {execution.id} {status} after {steps} step(s)",
            extra={"execution_id": execution.id},
        )
        return WalkResult(execution=execution, steps=steps, status=status)

    def fail(
        self,
        execution: Execution,
        node_id: Optional[str],
        message: str,
        steps: int = 0,
        node_type: Optional[str] = None,
    ) -> WalkResult:
        """
        Move an execution to "failed", recording the error in its variables
        and in an "error" log entry against the failing node.
        """
        execution.variables["error"] = message
        execution.variables["error_node_id"] = node_id
        if node_id is not None:
            execution.current_node_id = node_id
        self._log(execution, node_id, "error", {"error": message, "node_type": node_type})
        logger.error(
            f"Execution {execution.id} failed at node {node_id}: {message}",
            extra={"execution_id": execution.id, "node_id": node_id},
        )
        result = self._finish(execution, "failed", steps)
        result.error = message
        return result

    def expire(self, execution: Execution) -> WalkResult:
        """
        Fail a waiting execution whose reply deadline has passed.

        Raises:
            ExecutionConflict: the execution moved on concurrently
        """
        reason = WaitTimeoutExpired(execution.id)
        execution.variables["error"] = WAIT_TIMEOUT_MESSAGE
        execution.variables["error_node_id"] = execution.current_node_id
        self._log(
            execution,
            execution.current_node_id,
            "timeout",
            {
                "reason": str(reason),
                "expires_at": execution.expires_at.isoformat() if execution.expires_at else None,
            },
        )
        logger.info(
            f"Execution {execution.id} expired waiting at {execution.current_node_id}",
            extra={"execution_id": execution.id, "node_id": execution.current_node_id},
        )
        result = self._finish(execution, "failed", 0)
        result.error = WAIT_TIMEOUT_MESSAGE
        return result
