"""
Infrastructure configuration system.

Environment-based backend selection with sensible defaults.
Production defaults: SQLite store, WhatsApp Cloud API gateway.
Tests and local runs can switch to the in-memory store and stub gateway.
"""

import os
from typing import Optional, Literal
from dataclasses import dataclass

from engine.settings import DEFAULT_STAMP_SERVER_URL, EngineSettings
from engine.scheduler import ResumptionScheduler, StoreBackedScheduler
from engine.store import InMemoryStore, SQLiteStore
from transport.whatsapp.gateway import MessagingGateway, StubMessagingGateway, WhatsAppCloudGateway
from transport.whatsapp.media import MediaRelay, WhatsAppMediaRelay


StoreBackendType = Literal["sqlite", "memory"]
GatewayBackendType = Literal["whatsapp", "stub"]


@dataclass
class EngineConfig:
    """Engine infrastructure configuration from environment."""

    # Store
    store_backend: StoreBackendType
    database_path: str

    # Gateway
    gateway_backend: GatewayBackendType
    api_base: str
    api_version: str
    app_secret: Optional[str]
    gateway_timeout_s: float

    # Media relay
    cdn_url: Optional[str]
    cdn_api_key: Optional[str]

    # Engine behaviour
    stamp_server_url: str
    tie_break: str
    delay_mode: str
    inline_delay_max_seconds: float
    max_steps: int
    running_lease_seconds: float

    # Sweep endpoint
    sweep_token: Optional[str]

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """
        Load configuration from environment variables.

        Defaults:
        - Store: sqlite at ./flows.db
        - Gateway: WhatsApp Cloud API v23.0
        - Delay: scheduled (resumed by the sweep)
        """
        return cls(
            # Store Configuration
            store_backend=os.getenv("STORE_BACKEND", "sqlite"),  # type: ignore
            database_path=os.getenv("DATABASE_PATH", "./flows.db"),

            # Gateway Configuration
            gateway_backend=os.getenv("GATEWAY_BACKEND", "whatsapp"),  # type: ignore
            api_base=os.getenv("WHATSAPP_API_BASE", "https://graph.facebook.com"),
            api_version=os.getenv("WHATSAPP_API_VERSION", "v23.0"),
            app_secret=os.getenv("WHATSAPP_APP_SECRET") or None,
            gateway_timeout_s=float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "30")),

            # Media Relay Configuration
            cdn_url=os.getenv("CDN_URL") or None,
            cdn_api_key=os.getenv("CDN_API_KEY") or None,

            # Engine Configuration
            stamp_server_url=os.getenv("STAMP_SERVER_URL", DEFAULT_STAMP_SERVER_URL),
            tie_break=os.getenv("FLOW_TIE_BREAK", "updated_at"),
            delay_mode=os.getenv("DELAY_MODE", "scheduled"),
            inline_delay_max_seconds=float(os.getenv("INLINE_DELAY_MAX_SECONDS", "20")),
            max_steps=int(os.getenv("MAX_STEPS", "500")),
            running_lease_seconds=float(os.getenv("RUNNING_LEASE_SECONDS", "300")),

            sweep_token=os.getenv("SWEEP_TOKEN") or None,
        )

    def create_store(self):
        """Create the store; one object serves executions, flows, channels and the conversation log."""
        if self.store_backend == "memory":
            return InMemoryStore()
        return SQLiteStore(self.database_path)

    def create_gateway(self) -> MessagingGateway:
        """Create messaging gateway instance based on configuration."""
        if self.gateway_backend == "stub":
            return StubMessagingGateway()
        return WhatsAppCloudGateway(
            api_base=self.api_base,
            api_version=self.api_version,
            timeout_s=self.gateway_timeout_s,
        )

    def create_media_relay(self) -> Optional[MediaRelay]:
        """Create media relay, or None when no CDN is configured."""
        if not self.cdn_url or not self.cdn_api_key:
            return None
        return WhatsAppMediaRelay(
            cdn_url=self.cdn_url,
            cdn_api_key=self.cdn_api_key,
            api_base=self.api_base,
            api_version=self.api_version,
            timeout_s=self.gateway_timeout_s,
        )

    def create_scheduler(self) -> ResumptionScheduler:
        return StoreBackedScheduler()

    def create_settings(self) -> EngineSettings:
        return EngineSettings(
            delay_mode="inline" if self.delay_mode == "inline" else "scheduled",
            inline_delay_max_seconds=self.inline_delay_max_seconds,
            tie_break="created_at" if self.tie_break == "created_at" else "updated_at",
            max_steps=self.max_steps,
            running_lease_seconds=self.running_lease_seconds,
            stamp_server_url=self.stamp_server_url,
        )


def get_config() -> EngineConfig:
    """Get global engine configuration."""
    return EngineConfig.from_env()
