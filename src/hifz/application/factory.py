"""
Store Factory
Centralizes the logic for selecting the storage adapters.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable

from hifz.application.config import AppConfig
from hifz.domain.models import Item
from hifz.domain.ports import ItemStore, LearningStore, ProgressStore
from hifz.infrastructure.adapters.memory_store import (
    MemoryDatabase,
    MemoryItemStore,
    MemoryLearningStore,
    MemoryProgressStore,
)
from hifz.infrastructure.adapters.sqlite_store import (
    SqliteDatabase,
    SqliteItemStore,
    SqliteLearningStore,
    SqliteProgressStore,
)

logger = logging.getLogger(__name__)


@dataclass
class Stores:
    """The three store ports backed by one database."""

    items: ItemStore
    progress: ProgressStore
    learnings: LearningStore
    import_items: Callable[[list[Item]], int]
    _close: Callable[[], None] = field(default=lambda: None, repr=False)

    def close(self) -> None:
        self._close()


def get_stores(config: AppConfig) -> Stores:
    """
    Returns the store implementations selected by config.
    """
    if config.backend == "memory":
        memory = MemoryDatabase()
        return Stores(
            items=MemoryItemStore(memory),
            progress=MemoryProgressStore(memory),
            learnings=MemoryLearningStore(memory),
            import_items=memory.import_items,
        )

    config.db_path.parent.mkdir(parents=True, exist_ok=True)
    db = SqliteDatabase(config.db_path)
    db.initialize()
    logger.debug(f"Using SQLite backend at {config.db_path}")
    return Stores(
        items=SqliteItemStore(db),
        progress=SqliteProgressStore(db),
        learnings=SqliteLearningStore(db),
        import_items=db.import_items,
        _close=db.close,
    )
