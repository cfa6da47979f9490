"""
Pre-filter hook run before flow matching.

The loyalty-stamp subsystem lives outside this service; the engine only
asks it whether it has already dealt with an inbound message.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from engine.types import ChannelConfig, InboundEvent


@dataclass
class PreFilterResult:
    handled: bool = False
    reason: str = ""


class LoyaltyPreFilter(ABC):
    @abstractmethod
    async def check(self, channel: ChannelConfig, event: InboundEvent) -> PreFilterResult:
        """Return handled=True to stop the engine from processing the message."""
        raise NotImplementedError


class NullPreFilter(LoyaltyPreFilter):
    """No loyalty integration: every message goes on to the engine."""

    async def check(self, channel: ChannelConfig, event: InboundEvent) -> PreFilterResult:
        return PreFilterResult(handled=False)
