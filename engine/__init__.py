"""
Flow execution engine.

Interprets authored WhatsApp conversation flows one inbound message at a
time. Entry points: engine.orchestrator.WebhookOrchestrator for webhook
deliveries and engine.scheduler.Sweeper for deferred work.
"""

from .errors import (
    ConfigNotFound,
    DuplicateMessage,
    ExecutionConflict,
    FlowEngineError,
    FlowValidationError,
    NodeExecutionError,
    NoMatchingFlow,
    UnsupportedNodeType,
    WaitTimeoutExpired,
)

__all__ = [
    "ConfigNotFound",
    "DuplicateMessage",
    "ExecutionConflict",
    "FlowEngineError",
    "FlowValidationError",
    "NodeExecutionError",
    "NoMatchingFlow",
    "UnsupportedNodeType",
    "WaitTimeoutExpired",
]
