"""
Webhook orchestrator: the entry point for one inbound webhook delivery.

Order of operations:
    1. channel config (missing/inactive -> ConfigNotFound)
    2. normalize payload (no message -> "ignored")
    3. processed-message marker (already present -> "duplicate")
    4. mark inbound read (best effort)
    5. relay inbound media to a durable URL (best effort)
    6. record the inbound in the conversation log
    7. loyalty pre-filter (handled -> "handled_by_prefilter")
    8. seed per-message variables
    9. active execution: resume it, expire it, or report "busy"
      (a running one past its lease is failed as abandoned)
   10. otherwise match a flow, create an execution and walk it

The marker is written before any side effect, so a redelivered message
never sends twice. A second concurrent delivery for the same customer that
cannot claim the execution ends as "conflict" and touches nothing.
"""

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from engine.errors import ConfigNotFound, ExecutionConflict
from engine.matcher import FlowMatcher
from engine.prefilter import LoyaltyPreFilter, NullPreFilter
from engine.store.base import ChannelConfigStore, ConversationLog, ExecutionStore, FlowRepository
from engine.types import ChannelConfig, Execution, InboundEvent, utcnow
from engine.walker import ABANDONED_MESSAGE, GraphWalker, WalkResult
from transport.whatsapp.normalize import extract_inbound

logger = logging.getLogger(__name__)


@dataclass
class OrchestratorResult:
    """
    status is one of: ignored, duplicate, handled_by_prefilter, no_match,
    busy, conflict, running, waiting, completed, failed.
    """
    status: str
    execution_id: Optional[str] = None
    flow_id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_walk(cls, result: WalkResult) -> "OrchestratorResult":
        return cls(
            status=result.status,
            execution_id=result.execution.id,
            flow_id=result.execution.flow_id,
            error=result.error,
        )


def seed_variables(event: InboundEvent) -> Dict[str, Any]:
    """Per-message variables visible to every node of the walk."""
    return {
        "customer_phone": event.sender_id,
        "customer_name": event.contact_name or event.sender_id,
        "customer_wa_id": event.wa_id or event.sender_id,
        "last_message": event.text,
        "last_message_type": event.type,
        "last_button_id": event.button_id,
        "last_list_row_id": event.list_row_id,
        "message_timestamp": event.timestamp.isoformat() if event.timestamp else None,
    }


class WebhookOrchestrator:
    def __init__(
        self,
        executions: ExecutionStore,
        flows: FlowRepository,
        channels: ChannelConfigStore,
        conversations: ConversationLog,
        gateway,
        walker: GraphWalker,
        matcher: FlowMatcher,
        media_relay=None,
        prefilter: Optional[LoyaltyPreFilter] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.executions = executions
        self.flows = flows
        self.channels = channels
        self.conversations = conversations
        self.gateway = gateway
        self.walker = walker
        self.matcher = matcher
        self.media_relay = media_relay
        self.prefilter = prefilter or NullPreFilter()
        self.clock = clock

    def load_channel(self, channel_id: str) -> ChannelConfig:
        """
        Raises:
            ConfigNotFound: channel unknown or inactive
        """
        channel = self.channels.load_config(channel_id)
        if channel is None or not channel.is_active:
            raise ConfigNotFound(channel_id)
        return channel

    async def handle(self, channel_id: str, payload: Dict[str, Any]) -> OrchestratorResult:
        """
        Process one webhook delivery.

        Raises:
            ConfigNotFound: channel unknown or inactive
            NormalizationError: payload is not a WhatsApp webhook
        """
        channel = self.load_channel(channel_id)

        event = extract_inbound(payload)
        if event is None:
            logger.debug(f"No message in webhook for channel {channel_id}", extra={"channel_id": channel_id})
            return OrchestratorResult(status="ignored")

        log_extra = {
            "channel_id": channel_id,
            "customer_id": event.sender_id,
            "message_id": event.message_id,
        }

        if not self.executions.mark_processed(event.message_id):
            logger.info(f"Duplicate message {event.message_id} ignored", extra=log_extra)
            return OrchestratorResult(status="duplicate")

        logger.info(f"Inbound {event.type} message from {event.sender_id}", extra=log_extra)

        await self._mark_read(channel, event)
        event = await self._relay_media(channel, event)
        self.conversations.record_inbound(channel_id, event)

        prefiltered = await self.prefilter.check(channel, event)
        if prefiltered.handled:
            logger.info(f"Message handled by loyalty pre-filter: {prefiltered.reason}", extra=log_extra)
            return OrchestratorResult(status="handled_by_prefilter")

        variables = seed_variables(event)

        try:
            active = self.executions.find_active(event.sender_id, channel_id)
            if active is not None:
                result = await self._continue(active, channel, event, variables)
                if result is not None:
                    return result
            return await self._start(channel, event, variables)
        except ExecutionConflict as e:
            logger.warning(f"Execution conflict, dropping message: {e}", extra=log_extra)
            return OrchestratorResult(status="conflict")

    async def _continue(
        self,
        execution: Execution,
        channel: ChannelConfig,
        event: InboundEvent,
        variables: Dict[str, Any],
    ) -> Optional[OrchestratorResult]:
        """
        Deal with an existing non-terminal execution.

        Returns None when the execution was expired, abandoned or orphaned
        and the message should be treated as a fresh one.
        """
        now = self.clock()

        if execution.status == "running":
            lease = timedelta(seconds=self.walker.settings.running_lease_seconds)
            if execution.updated_at <= now - lease:
                logger.warning(
                    f"Execution {execution.id} has not moved since {execution.updated_at.isoformat()}; "
                    f"failing it as abandoned",
                    extra={"execution_id": execution.id},
                )
                self.walker.fail(execution, execution.current_node_id, ABANDONED_MESSAGE)
                return None
            logger.warning(
                f"Execution {execution.id} is still running; message not processed",
                extra={"execution_id": execution.id},
            )
            return OrchestratorResult(status="busy", execution_id=execution.id, flow_id=execution.flow_id)

        graph = self.flows.load_graph(execution.flow_id)
        if graph is None:
            self.walker.fail(execution, execution.current_node_id, "Flow no longer exists")
            return None

        if execution.waiting_for == "delay":
            if execution.resume_at is not None and execution.resume_at <= now:
                # Lazy resumption of an overdue delay; the message itself is not a reply
                execution.variables.update(variables)
                result = await self.walker.walk(graph, execution, channel, event=None, resuming=True)
                return OrchestratorResult.from_walk(result)
            return OrchestratorResult(status="busy", execution_id=execution.id, flow_id=execution.flow_id)

        if execution.expires_at is not None and execution.expires_at <= now:
            self.walker.expire(execution)
            return None

        execution.variables.update(variables)
        result = await self.walker.walk(graph, execution, channel, event=event, resuming=True)
        return OrchestratorResult.from_walk(result)

    async def _start(
        self,
        channel: ChannelConfig,
        event: InboundEvent,
        variables: Dict[str, Any],
    ) -> OrchestratorResult:
        flow = self.matcher.match(event.text or "", channel.id)
        if flow is None:
            return OrchestratorResult(status="no_match")

        graph = self.flows.load_graph(flow.id)
        if graph is None:
            logger.error(f"Matched flow {flow.id} has no graph", extra={"flow_id": flow.id})
            return OrchestratorResult(status="no_match")

        trigger = graph.trigger_node()
        execution = self.executions.create(
            flow.id,
            event.sender_id,
            channel.id,
            current_node_id=trigger.id if trigger else None,
            variables=variables,
            now=self.clock(),
        )
        result = await self.walker.walk(graph, execution, channel, event=event)
        return OrchestratorResult.from_walk(result)

    async def _mark_read(self, channel: ChannelConfig, event: InboundEvent) -> None:
        try:
            result = await self.gateway.mark_as_read(channel, event.message_id)
        except Exception as e:
            logger.warning(f"mark_as_read raised: {e}", extra={"message_id": event.message_id})
            return
        if not result.ok:
            logger.warning(f"mark_as_read failed: {result.error}", extra={"message_id": event.message_id})

    async def _relay_media(self, channel: ChannelConfig, event: InboundEvent) -> InboundEvent:
        if self.media_relay is None or not event.media_id:
            return event
        url = await self.media_relay.relay(channel, event.media_id)
        if not url:
            return event
        return dataclasses.replace(event, media_url=url)
