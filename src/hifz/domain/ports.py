"""
Ports (interfaces) for item content and scheduling storage.

These define the contract that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete implementations.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from .models import (
    DueReviewEntry,
    Direction,
    Item,
    ItemWithProgress,
    Learning,
    ProgressRecord,
    TierCounts,
)


class ItemStore(ABC):
    """
    Port for reading learning content.

    Implementations:
        - SqliteItemStore: Queries the on-device SQLite database.
        - MemoryItemStore: Keeps everything in process memory.
    """

    @abstractmethod
    async def fetch_range(self, start_id: int, end_id: int) -> list[Item]:
        """
        Fetch all items with ids in [start_id, end_id].

        Returns:
            Items ordered by id ascending.
        """
        pass

    @abstractmethod
    async def fetch_by_id(self, item_id: int) -> Item | None:
        pass

    @abstractmethod
    async def find_nearest_boundary(
        self,
        position: int,
        direction: Direction = Direction.BEFORE,
        range_start: int | None = None,
        range_end: int | None = None,
    ) -> int | None:
        """
        Locate the closest resumable-boundary item at or before/after a position.

        Args:
            position: Item id to search from (inclusive).
            direction: Search backwards (BEFORE) or forwards (AFTER).
            range_start: Lower bound applied when searching backwards.
            range_end: Upper bound applied when searching forwards.

        Returns:
            The boundary item id, or None if there is none.
        """
        pass

    @abstractmethod
    async def fetch_page(
        self, start_id: int, end_id: int, limit: int, offset: int
    ) -> list[Item]:
        """Fetch one page of the range, ordered by id ascending."""
        pass

    @abstractmethod
    async def fetch_with_progress(self, item_id: int) -> ItemWithProgress | None:
        pass

    @abstractmethod
    async def find_first_unlearned(
        self, start_id: int, end_id: int
    ) -> ItemWithProgress | None:
        """Return the lowest-id item in the range that has no progress record."""
        pass

    @abstractmethod
    async def count_in_range(self, start_id: int, end_id: int) -> int:
        pass


class ProgressStore(ABC):
    """Port for per-item scheduling state."""

    @abstractmethod
    async def fetch_by_id(self, item_id: int) -> ProgressRecord | None:
        pass

    @abstractmethod
    async def fetch_range(self, start_id: int, end_id: int) -> list[ProgressRecord]:
        pass

    @abstractmethod
    async def upsert(self, record: ProgressRecord) -> None:
        """
        Insert the record if absent (stamping `created_at`), else update every
        field except the item id and creation timestamp.
        """
        pass

    @abstractmethod
    async def fetch_due_in_range(
        self, start_id: int, end_id: int, now: datetime, limit: int
    ) -> list[DueReviewEntry]:
        """
        Fetch items in range whose next review is at or before `now`.

        Returns:
            At most `limit` entries, oldest-due first.
        """
        pass

    @abstractmethod
    async def count_due_after(self, position: int, end_id: int, now: datetime) -> int:
        """Count due items with id in (position, end_id]."""
        pass

    @abstractmethod
    async def aggregate_tier_counts(self, start_id: int, end_id: int) -> TierCounts:
        pass


class LearningStore(ABC):
    """Port for saved learning ranges."""

    @abstractmethod
    async def list_learnings(self) -> list[Learning]:
        """Return saved learnings, newest first."""
        pass

    @abstractmethod
    async def get_learning(self, learning_id: int) -> Learning | None:
        pass

    @abstractmethod
    async def add_learning(
        self, title: str, first_item_id: int, last_item_id: int
    ) -> Learning:
        pass

    @abstractmethod
    async def delete_learning(self, learning_id: int) -> bool:
        pass
