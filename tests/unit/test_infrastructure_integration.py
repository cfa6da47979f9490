"""
Test suite for infrastructure integration.

Verifies:
- Configuration system reads the environment
- Bootstrap wires every backend
- Overrides replace configured backends
- Singleton lifecycle
"""

import pytest

from config import Config

from engine.store import InMemoryStore, SQLiteStore
from infra import EngineBootstrap, EngineConfig
from transport.whatsapp.gateway import StubMessagingGateway, WhatsAppCloudGateway
from transport.whatsapp.media import WhatsAppMediaRelay

ENV_KEYS = [
    "STORE_BACKEND", "DATABASE_PATH", "GATEWAY_BACKEND", "WHATSAPP_APP_SECRET",
    "CDN_URL", "CDN_API_KEY", "FLOW_TIE_BREAK", "DELAY_MODE", "MAX_STEPS", "SWEEP_TOKEN",
    "RUNNING_LEASE_SECONDS",
]


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture(autouse=True)
def reset_singleton():
    EngineBootstrap.reset()
    yield
    EngineBootstrap.reset()


class TestEngineConfig:
    """Test infrastructure configuration."""

    def test_config_from_env_defaults(self, clean_env):
        """Production defaults: SQLite store, Cloud API gateway, scheduled delays."""
        config = EngineConfig.from_env()

        assert config.store_backend == "sqlite"
        assert config.database_path == "./flows.db"
        assert config.gateway_backend == "whatsapp"
        assert config.api_version == "v23.0"
        assert config.app_secret is None
        assert config.delay_mode == "scheduled"
        assert config.tie_break == "updated_at"
        assert config.max_steps == 500
        assert config.sweep_token is None
        assert config.running_lease_seconds == 300.0

    def test_config_from_env_overrides(self, clean_env):
        clean_env.setenv("STORE_BACKEND", "memory")
        clean_env.setenv("GATEWAY_BACKEND", "stub")
        clean_env.setenv("DELAY_MODE", "inline")
        clean_env.setenv("FLOW_TIE_BREAK", "created_at")
        clean_env.setenv("MAX_STEPS", "42")
        clean_env.setenv("SWEEP_TOKEN", "tok")
        clean_env.setenv("RUNNING_LEASE_SECONDS", "90")

        config = EngineConfig.from_env()
        settings = config.create_settings()

        assert isinstance(config.create_store(), InMemoryStore)
        assert isinstance(config.create_gateway(), StubMessagingGateway)
        assert settings.delay_mode == "inline"
        assert settings.tie_break == "created_at"
        assert settings.max_steps == 42
        assert settings.running_lease_seconds == 90.0
        assert config.sweep_token == "tok"

    def test_unknown_modes_fall_back(self, clean_env):
        clean_env.setenv("DELAY_MODE", "sometimes")
        clean_env.setenv("FLOW_TIE_BREAK", "random")

        settings = EngineConfig.from_env().create_settings()

        assert settings.delay_mode == "scheduled"
        assert settings.tie_break == "updated_at"

    def test_sqlite_store_at_configured_path(self, clean_env, tmp_path):
        clean_env.setenv("DATABASE_PATH", str(tmp_path / "flows.db"))

        store = EngineConfig.from_env().create_store()

        assert isinstance(store, SQLiteStore)
        assert (tmp_path / "flows.db").exists()

    def test_cloud_gateway_by_default(self, clean_env):
        assert isinstance(EngineConfig.from_env().create_gateway(), WhatsAppCloudGateway)

    def test_media_relay_needs_cdn(self, clean_env):
        assert EngineConfig.from_env().create_media_relay() is None

        clean_env.setenv("CDN_URL", "https://cdn.example")
        clean_env.setenv("CDN_API_KEY", "key")
        assert isinstance(EngineConfig.from_env().create_media_relay(), WhatsAppMediaRelay)


class TestEngineBootstrap:
    """Test bootstrap wiring."""

    @pytest.fixture
    def memory_env(self, clean_env):
        clean_env.setenv("STORE_BACKEND", "memory")
        clean_env.setenv("GATEWAY_BACKEND", "stub")
        return clean_env

    def test_bootstrap_wires_components(self, memory_env):
        engine = EngineBootstrap()

        assert isinstance(engine.store, InMemoryStore)
        assert isinstance(engine.gateway, StubMessagingGateway)
        assert engine.media_relay is None
        assert engine.orchestrator.walker is engine.walker
        assert engine.walker.store is engine.store

    def test_overrides_win(self, memory_env):
        store = InMemoryStore()
        gateway = StubMessagingGateway()

        engine = EngineBootstrap(store=store, gateway=gateway)

        assert engine.store is store
        assert engine.gateway is gateway

    def test_singleton(self, memory_env):
        first = EngineBootstrap.get_instance()

        assert EngineBootstrap.get_instance() is first

        EngineBootstrap.reset()
        assert EngineBootstrap.get_instance() is not first

    def test_repr_names_backends(self, memory_env):
        text = repr(EngineBootstrap())

        assert "store=memory" in text
        assert "gateway=stub" in text
        assert "delay=scheduled" in text


class TestServiceConfig:
    """Test the dotenv-backed Config.validate()."""

    def test_sweep_token_is_optional(self, monkeypatch):
        monkeypatch.setattr(Config, "SWEEP_TOKEN", "")
        monkeypatch.setattr(Config, "DELAY_MODE", "scheduled")
        monkeypatch.setattr(Config, "STORE_BACKEND", "sqlite")
        monkeypatch.setattr(Config, "DATABASE_PATH", "./flows.db")

        assert Config.validate() is True

    def test_sqlite_needs_database_path(self, monkeypatch):
        monkeypatch.setattr(Config, "STORE_BACKEND", "sqlite")
        monkeypatch.setattr(Config, "DATABASE_PATH", "")

        assert Config.validate() is False

    def test_memory_store_needs_no_path(self, monkeypatch):
        monkeypatch.setattr(Config, "STORE_BACKEND", "memory")
        monkeypatch.setattr(Config, "DATABASE_PATH", "")

        assert Config.validate() is True
