"""
Control-flow executors: waitForReply, condition, loop, delay, end.
"""

import asyncio
import json
import logging
from datetime import timedelta
from typing import Any, List

from engine.conditions import evaluate_condition, select_handle
from engine.executors.base import DELETE, NodeContext, NodeOutcome, executor
from engine.node_config import (
    ConditionConfig,
    DelayConfig,
    EndConfig,
    LoopConfig,
    WaitForReplyConfig,
)
from engine.types import InboundEvent, Node
from engine.variables import get_value

logger = logging.getLogger(__name__)

LOOP_CONTINUE = "loop"
LOOP_DONE = "done"
LOOP_DONE_ALIAS = "complete"


# ============================================================================
# WAIT FOR REPLY
# ============================================================================

def reply_satisfies(expected_type: str, event: InboundEvent) -> bool:
    if expected_type == "any":
        return True
    if expected_type == "button":
        return event.button_id is not None
    if expected_type == "list":
        return event.list_row_id is not None
    if expected_type == "image":
        return event.type == "image"
    return event.type == "text"


def extract_reply(expected_type: str, event: InboundEvent) -> Any:
    """The value stored for a reply: ids for interactive replies, else text."""
    if expected_type == "button":
        return event.button_id
    if expected_type == "list":
        return event.list_row_id
    if expected_type == "image":
        return event.media_url or event.text
    return event.text


@executor("waitForReply")
async def wait_for_reply(node: Node, config: WaitForReplyConfig, ctx: NodeContext) -> NodeOutcome:
    expected = config.expected_type

    if not ctx.resuming:
        expires_at = None
        if config.timeout_seconds:
            expires_at = ctx.now() + timedelta(seconds=config.timeout_seconds)
        return NodeOutcome(
            suspend=True,
            waiting_for=expected,
            expires_at=expires_at,
            log={"expected_type": expected, "expires_at": expires_at.isoformat() if expires_at else None},
        )

    event = ctx.event
    if event is None or not reply_satisfies(expected, event):
        # Keep waiting with the original deadline
        return NodeOutcome(
            suspend=True,
            waiting_for=expected,
            expires_at=ctx.execution.expires_at,
            log={
                "expected_type": expected,
                "rejected_type": event.type if event else None,
            },
        )

    value = extract_reply(expected, event)
    deltas = {}
    if config.variable_name:
        deltas[config.variable_name] = value

    # Interactive replies select the edge named for the chosen id
    handle = event.button_id or event.list_row_id
    return NodeOutcome(
        handle=handle,
        deltas=deltas,
        log={"variable": config.variable_name, "value": value, "reply_type": event.type},
    )


# ============================================================================
# CONDITION
# ============================================================================

@executor("condition")
async def condition(node: Node, config: ConditionConfig, ctx: NodeContext) -> NodeOutcome:
    handle = select_handle(config.conditions, config.default_handle, ctx.variables)
    fallback = config.default_handle or "false"
    return NodeOutcome(
        handle=handle,
        fallback_handle=fallback if fallback != handle else None,
        log={"handle": handle},
    )


# ============================================================================
# LOOP
# ============================================================================

def _collection(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, str) and value.strip().startswith("["):
        try:
            parsed = json.loads(value)
        except ValueError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def _exit_handle(node: Node, ctx: NodeContext) -> str:
    if not ctx.has_handle(node.id, LOOP_DONE) and ctx.has_handle(node.id, LOOP_DONE_ALIAS):
        return LOOP_DONE_ALIAS
    return LOOP_DONE


@executor("loop")
async def loop(node: Node, config: LoopConfig, ctx: NodeContext) -> NodeOutcome:
    """
    Re-entrant loop head.

    The iteration counter lives in the variables under _loop_<node id> and is
    cleared on exit, so a later re-entry starts a fresh loop. max_iterations
    bounds every loop type.
    """
    counter_key = f"_loop_{node.id}"
    count = int(ctx.variables.get(counter_key) or 0)
    bound = max(0, config.max_iterations)

    def done(reason: str) -> NodeOutcome:
        return NodeOutcome(
            handle=_exit_handle(node, ctx),
            deltas={counter_key: DELETE},
            log={"iterations": count, "exit": reason},
        )

    if count >= bound:
        return done("max_iterations")

    deltas = {counter_key: count + 1, "loop_index": count + 1}

    if config.loop_type == "while":
        holds = any(
            evaluate_condition(rule.variable, rule.operator, rule.value, ctx.variables)
            for rule in config.conditions
        )
        if not holds:
            return done("condition")

    elif config.loop_type == "foreach":
        items = _collection(get_value(ctx.variables, config.collection or ""))
        if count >= len(items):
            return done("exhausted")
        deltas[config.item_variable] = items[count]

    return NodeOutcome(
        handle=LOOP_CONTINUE,
        deltas=deltas,
        log={"iteration": count + 1, "loop_type": config.loop_type},
    )


# ============================================================================
# DELAY
# ============================================================================

@executor("delay")
async def delay(node: Node, config: DelayConfig, ctx: NodeContext) -> NodeOutcome:
    seconds = max(0.0, float(config.delay_seconds or 0))

    if ctx.resuming:
        return NodeOutcome(log={"delay_seconds": seconds, "resumed": True})
    if seconds == 0:
        return NodeOutcome(log={"delay_seconds": 0})

    if ctx.settings.delay_mode == "inline":
        slept = min(seconds, ctx.settings.inline_delay_max_seconds)
        if slept < seconds:
            logger.warning(
                f"Delay of {seconds}s capped to {slept}s in inline mode",
                extra={"execution_id": ctx.execution.id, "node_id": node.id},
            )
        await asyncio.sleep(slept)
        return NodeOutcome(log={"delay_seconds": seconds, "slept": slept})

    resume_at = ctx.now() + timedelta(seconds=seconds)
    return NodeOutcome(
        suspend=True,
        waiting_for="delay",
        resume_at=resume_at,
        log={"delay_seconds": seconds, "resume_at": resume_at.isoformat()},
    )


# ============================================================================
# END
# ============================================================================

@executor("end")
async def end(node: Node, config: EndConfig, ctx: NodeContext) -> NodeOutcome:
    status = "failed" if config.end_type == "error" else "completed"
    return NodeOutcome(end_status=status, log={"end_type": config.end_type})


@executor("trigger")
async def trigger(node: Node, config: Any, ctx: NodeContext) -> NodeOutcome:
    # Triggers are matched, never walked into; the walker refuses to enter one.
    return NodeOutcome()
