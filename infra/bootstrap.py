"""
Infrastructure initialization and bootstrap.

Singleton pattern for wiring the engine from configuration.
"""

from typing import Optional

from engine.matcher import FlowMatcher
from engine.orchestrator import WebhookOrchestrator
from engine.prefilter import LoyaltyPreFilter
from engine.scheduler import Sweeper
from engine.walker import GraphWalker

from .config import EngineConfig, get_config


class EngineBootstrap:
    """
    Bootstrap the engine based on configuration.

    Singleton pattern - single instance per process.
    """

    _instance: Optional["EngineBootstrap"] = None

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        store=None,
        gateway=None,
        media_relay=None,
        prefilter: Optional[LoyaltyPreFilter] = None,
    ):
        """
        Initialize bootstrap with configuration.

        store/gateway/media_relay override the configured backends (tests).
        """
        self.config = config or get_config()
        self.settings = self.config.create_settings()
        self.store = store if store is not None else self.config.create_store()
        self.gateway = gateway if gateway is not None else self.config.create_gateway()
        self.media_relay = media_relay if media_relay is not None else self.config.create_media_relay()
        self.scheduler = self.config.create_scheduler()

        self.walker = GraphWalker(
            store=self.store,
            gateway=self.gateway,
            settings=self.settings,
            scheduler=self.scheduler,
        )
        self.matcher = FlowMatcher(self.store, tie_break=self.settings.tie_break)
        self.orchestrator = WebhookOrchestrator(
            executions=self.store,
            flows=self.store,
            channels=self.store,
            conversations=self.store,
            gateway=self.gateway,
            walker=self.walker,
            matcher=self.matcher,
            media_relay=self.media_relay,
            prefilter=prefilter,
        )
        self.sweeper = Sweeper(
            executions=self.store,
            flows=self.store,
            channels=self.store,
            walker=self.walker,
        )

    @classmethod
    def get_instance(cls, config: Optional[EngineConfig] = None) -> "EngineBootstrap":
        """
        Get singleton instance.

        Args:
            config: Optional custom configuration (only used first time)

        Returns:
            Singleton EngineBootstrap instance
        """
        if cls._instance is None:
            cls._instance = cls(config)
        return cls._instance

    @classmethod
    def set_instance(cls, instance: "EngineBootstrap") -> None:
        """Install a pre-built instance (for testing)."""
        cls._instance = instance

    @classmethod
    def reset(cls):
        """Reset singleton (for testing)."""
        cls._instance = None

    def __repr__(self) -> str:
        """String representation showing configured backends."""
        return (
            f"EngineBootstrap(store={self.config.store_backend}, "
            f"gateway={self.config.gateway_backend}, "
            f"media_relay={'on' if self.media_relay else 'off'}, "
            f"delay={self.settings.delay_mode})"
        )


def bootstrap_engine(config: Optional[EngineConfig] = None) -> EngineBootstrap:
    """
    Bootstrap the engine.

    Args:
        config: Optional custom configuration

    Returns:
        EngineBootstrap instance with all components wired
    """
    return EngineBootstrap.get_instance(config)
