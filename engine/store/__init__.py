from engine.store.base import ChannelConfigStore, ConversationLog, ExecutionStore, FlowRepository
from engine.store.memory import InMemoryStore
from engine.store.sqlite import SQLiteStore

__all__ = [
    "ChannelConfigStore",
    "ConversationLog",
    "ExecutionStore",
    "FlowRepository",
    "InMemoryStore",
    "SQLiteStore",
]
