"""
Flow matcher: picks the flow an inbound message starts.
"""

import logging
from typing import Optional

from engine.store.base import FlowRepository
from engine.types import Flow

logger = logging.getLogger(__name__)


def keyword_matches(text: str, keyword: str, case_sensitive: bool = False) -> bool:
    """
    True if the text is the keyword, or the keyword followed by a space and
    arguments ("HELP", "HELP me"). A keyword elsewhere in the text never
    matches.
    """
    text = (text or "").strip()
    keyword = keyword.strip()
    if not keyword:
        return False
    if not case_sensitive:
        text, keyword = text.lower(), keyword.lower()
    return text == keyword or text.startswith(keyword + " ")


def flow_matches(flow: Flow, text: str) -> bool:
    trigger = flow.trigger
    if trigger.type == "any_message":
        return True
    if trigger.type == "keyword":
        return any(
            keyword_matches(text, keyword, trigger.case_sensitive)
            for keyword in trigger.keywords()
        )
    return False


class FlowMatcher:
    """
    Chooses among the active, published flows bound to a channel.

    Highest priority wins. Equal priorities go to the most recently updated
    flow, or the most recently created one when tie_break="created_at".
    """

    def __init__(self, repository: FlowRepository, tie_break: str = "updated_at"):
        if tie_break not in ("updated_at", "created_at"):
            raise ValueError(f"Unknown tie-break: {tie_break}")
        self.repository = repository
        self.tie_break = tie_break

    def match(self, message_text: str, channel_id: str) -> Optional[Flow]:
        candidates = [
            flow for flow in self.repository.list_candidate_flows(channel_id)
            if flow.is_active and flow.is_published and flow.channel_id == channel_id
        ]
        matched = [flow for flow in candidates if flow_matches(flow, message_text)]
        if not matched:
            logger.debug(
                f"No flow matched on channel {channel_id} ({len(candidates)} candidates)",
                extra={"channel_id": channel_id},
            )
            return None

        matched.sort(
            key=lambda flow: (flow.priority, getattr(flow, self.tie_break)),
            reverse=True,
        )
        winner = matched[0]
        logger.info(
            f"Matched flow {winner.id} ({winner.name or 'unnamed'}) on channel {channel_id}",
            extra={"channel_id": channel_id, "flow_id": winner.id},
        )
        return winner
