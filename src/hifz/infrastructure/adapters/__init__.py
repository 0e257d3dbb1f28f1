# Infrastructure Store Adapters Package
from .memory_store import MemoryDatabase, MemoryItemStore, MemoryLearningStore, MemoryProgressStore
from .sqlite_store import SqliteDatabase, SqliteItemStore, SqliteLearningStore, SqliteProgressStore

__all__ = [
    "MemoryDatabase",
    "MemoryItemStore",
    "MemoryLearningStore",
    "MemoryProgressStore",
    "SqliteDatabase",
    "SqliteItemStore",
    "SqliteLearningStore",
    "SqliteProgressStore",
]
