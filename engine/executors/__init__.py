"""
Node executors, one per node type.

Importing this package registers every executor. The registry must cover
the whole node tag set; a missing executor fails at import time rather
than in the middle of a customer conversation.
"""

from engine.executors.base import DELETE, EXECUTORS, NodeContext, NodeOutcome, executor
from engine.executors import api_call, control, data, messaging  # noqa: F401  (registration)
from engine.node_config import NODE_TYPES

_missing = NODE_TYPES - set(EXECUTORS)
if _missing:
    raise RuntimeError(f"No executor registered for node types: {sorted(_missing)}")

__all__ = [
    "DELETE",
    "EXECUTORS",
    "NodeContext",
    "NodeOutcome",
    "executor",
]
