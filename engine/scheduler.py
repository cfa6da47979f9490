"""
Deferred resumption: the scheduler collaborator and the sweeper.

There are no in-process timers. A delay node suspends its execution with a
durable resume_at instant and a waitForReply node with an expires_at
instant; the Sweeper, invoked periodically from outside (cron hitting
POST /internal/sweep), resumes due delays and fails expired waits. It also
fails running executions whose walk stopped saving (the invocation died).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from engine.errors import ExecutionConflict
from engine.store.base import ChannelConfigStore, ExecutionStore, FlowRepository
from engine.types import Execution, utcnow
from engine.walker import ABANDONED_MESSAGE, GraphWalker, WalkResult

logger = logging.getLogger(__name__)


class ResumptionScheduler(ABC):
    """Told about every delay suspension, with the instant it becomes due."""

    @abstractmethod
    def schedule(self, execution_id: str, run_at: datetime) -> None:
        raise NotImplementedError


class StoreBackedScheduler(ResumptionScheduler):
    """
    The execution row is the queue entry.

    resume_at is already persisted by the walker, so scheduling is a no-op
    beyond logging; the sweeper finds due rows with find_due_delays().
    """

    def schedule(self, execution_id: str, run_at: datetime) -> None:
        logger.debug(
            f"Resumption of {execution_id} queued for {run_at.isoformat()}",
            extra={"execution_id": execution_id},
        )


class RecordingScheduler(ResumptionScheduler):
    """Keeps every schedule() call, for tests."""

    def __init__(self):
        self.scheduled: List[Tuple[str, datetime]] = []

    def schedule(self, execution_id: str, run_at: datetime) -> None:
        self.scheduled.append((execution_id, run_at))


@dataclass
class SweepReport:
    resumed: List[str] = field(default_factory=list)
    expired: List[str] = field(default_factory=list)
    abandoned: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "resumed": len(self.resumed),
            "expired": len(self.expired),
            "abandoned": len(self.abandoned),
            "skipped": len(self.skipped),
        }


class Sweeper:
    """Resumes due delays, expires timed-out waits and fails abandoned walks."""

    def __init__(
        self,
        executions: ExecutionStore,
        flows: FlowRepository,
        channels: ChannelConfigStore,
        walker: GraphWalker,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.executions = executions
        self.flows = flows
        self.channels = channels
        self.walker = walker
        self.clock = clock

    async def resume_delay(self, execution: Execution) -> Optional[WalkResult]:
        """
        Continue a delay-suspended execution past its delay node.

        Returns None when the flow or channel has since disappeared; the
        execution is then failed so it no longer blocks its customer.
        """
        graph = self.flows.load_graph(execution.flow_id)
        channel = self.channels.load_config(execution.channel_id)
        if graph is None or channel is None:
            missing = "flow" if graph is None else "channel"
            self.walker.fail(
                execution,
                execution.current_node_id,
                f"Cannot resume: {missing} no longer exists",
            )
            return None
        return await self.walker.walk(graph, execution, channel, event=None, resuming=True)

    async def run(self, now: Optional[datetime] = None) -> SweepReport:
        now = now or self.clock()
        report = SweepReport()

        for execution in self.executions.find_expired_waits(now):
            try:
                self.walker.expire(execution)
                report.expired.append(execution.id)
            except ExecutionConflict:
                logger.info(
                    f"Skipped expiring {execution.id}: it moved on concurrently",
                    extra={"execution_id": execution.id},
                )
                report.skipped.append(execution.id)

        for execution in self.executions.find_due_delays(now):
            try:
                await self.resume_delay(execution)
                report.resumed.append(execution.id)
            except ExecutionConflict:
                logger.info(
                    f"Skipped resuming {execution.id}: it moved on concurrently",
                    extra={"execution_id": execution.id},
                )
                report.skipped.append(execution.id)

        cutoff = now - timedelta(seconds=self.walker.settings.running_lease_seconds)
        for execution in self.executions.find_stale_running(cutoff):
            try:
                self.walker.fail(execution, execution.current_node_id, ABANDONED_MESSAGE)
                report.abandoned.append(execution.id)
            except ExecutionConflict:
                logger.info(
                    f"Skipped abandoning {execution.id}: it moved on concurrently",
                    extra={"execution_id": execution.id},
                )
                report.skipped.append(execution.id)

        if report.resumed or report.expired or report.abandoned or report.skipped:
            logger.info(f"Sweep finished: {report.to_dict()}")
        return report
