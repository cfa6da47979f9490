"""
Infrastructure module exports.

Configuration and bootstrap for the engine's backends.
"""

from .config import EngineConfig, get_config, StoreBackendType, GatewayBackendType
from .bootstrap import EngineBootstrap, bootstrap_engine

__all__ = [
    "EngineConfig",
    "get_config",
    "StoreBackendType",
    "GatewayBackendType",
    "EngineBootstrap",
    "bootstrap_engine",
]
