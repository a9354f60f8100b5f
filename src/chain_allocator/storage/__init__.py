"""Local persistence."""

from chain_allocator.storage.history import (
    HistoryError,
    JsonFileStore,
    KeyValueStore,
    MemoryStore,
    PortfolioValueStore,
    TransactionHistory,
)

__all__ = [
    "HistoryError",
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "PortfolioValueStore",
    "TransactionHistory",
]
