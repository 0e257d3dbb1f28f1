"""
Memory stores: infrastructure adapters keeping content and progress in process.

Used for tests, demos and the `memory` backend. All three adapters share one
MemoryDatabase so joins behave like the SQLite adapters.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime

from hifz.domain.mastery import bucket_tiers
from hifz.domain.models import (
    Direction,
    DueReviewEntry,
    Item,
    ItemWithProgress,
    Learning,
    ProgressRecord,
    TierCounts,
    utcnow,
)
from hifz.domain.ports import ItemStore, LearningStore, ProgressStore


@dataclass
class MemoryDatabase:
    items: dict[int, Item] = field(default_factory=dict)
    progress: dict[int, ProgressRecord] = field(default_factory=dict)
    learnings: dict[int, Learning] = field(default_factory=dict)
    next_learning_id: int = 1

    def import_items(self, items: list[Item]) -> int:
        for item in items:
            self.items[item.id] = item
        return len(items)

    def items_in_range(self, start_id: int, end_id: int) -> list[Item]:
        return sorted(
            (item for item in self.items.values() if start_id <= item.id <= end_id),
            key=lambda item: item.id,
        )

    def due_records(
        self, start_id: int, end_id: int, now: datetime
    ) -> list[ProgressRecord]:
        return [
            record
            for record in self.progress.values()
            if start_id <= record.item_id <= end_id
            and record.item_id in self.items
            and record.is_due(now)
        ]


class MemoryItemStore(ItemStore):
    def __init__(self, db: MemoryDatabase):
        self.db = db

    async def fetch_range(self, start_id: int, end_id: int) -> list[Item]:
        return self.db.items_in_range(start_id, end_id)

    async def fetch_by_id(self, item_id: int) -> Item | None:
        return self.db.items.get(item_id)

    async def find_nearest_boundary(
        self,
        position: int,
        direction: Direction = Direction.BEFORE,
        range_start: int | None = None,
        range_end: int | None = None,
    ) -> int | None:
        boundaries = [item.id for item in self.db.items.values() if item.is_boundary]
        if direction == Direction.BEFORE:
            return max(
                (
                    i
                    for i in boundaries
                    if i <= position and (range_start is None or i >= range_start)
                ),
                default=None,
            )
        return min(
            (i for i in boundaries if i >= position and (range_end is None or i <= range_end)),
            default=None,
        )

    async def fetch_page(
        self, start_id: int, end_id: int, limit: int, offset: int
    ) -> list[Item]:
        return self.db.items_in_range(start_id, end_id)[offset : offset + limit]

    async def fetch_with_progress(self, item_id: int) -> ItemWithProgress | None:
        item = self.db.items.get(item_id)
        if item is None:
            return None
        return ItemWithProgress(item=item, progress=self.db.progress.get(item_id))

    async def find_first_unlearned(
        self, start_id: int, end_id: int
    ) -> ItemWithProgress | None:
        for item in self.db.items_in_range(start_id, end_id):
            if item.id not in self.db.progress:
                return ItemWithProgress(item=item)
        return None

    async def count_in_range(self, start_id: int, end_id: int) -> int:
        return len(self.db.items_in_range(start_id, end_id))


class MemoryProgressStore(ProgressStore):
    def __init__(self, db: MemoryDatabase):
        self.db = db

    async def fetch_by_id(self, item_id: int) -> ProgressRecord | None:
        return self.db.progress.get(item_id)

    async def fetch_range(self, start_id: int, end_id: int) -> list[ProgressRecord]:
        return [
            self.db.progress[item_id]
            for item_id in sorted(self.db.progress)
            if start_id <= item_id <= end_id
        ]

    async def upsert(self, record: ProgressRecord) -> None:
        existing = self.db.progress.get(record.item_id)
        created_at = existing.created_at if existing else utcnow()
        self.db.progress[record.item_id] = replace(record, created_at=created_at)

    async def fetch_due_in_range(
        self, start_id: int, end_id: int, now: datetime, limit: int
    ) -> list[DueReviewEntry]:
        due = sorted(
            self.db.due_records(start_id, end_id, now),
            key=lambda record: record.next_review_at,
        )
        entries = []
        for record in due[:limit]:
            item = self.db.items[record.item_id]
            entries.append(
                DueReviewEntry(
                    item_id=item.id,
                    text=item.text,
                    group_id=item.group_id,
                    section_name=item.section_name,
                    next_review_at=record.next_review_at,
                )
            )
        return entries

    async def count_due_after(self, position: int, end_id: int, now: datetime) -> int:
        return len(self.db.due_records(position + 1, end_id, now))

    async def aggregate_tier_counts(self, start_id: int, end_id: int) -> TierCounts:
        in_range = [item.id for item in self.db.items_in_range(start_id, end_id)]
        return bucket_tiers(
            len(in_range),
            [
                self.db.progress[item_id].mastery_tier
                for item_id in in_range
                if item_id in self.db.progress
            ],
        )


class MemoryLearningStore(LearningStore):
    def __init__(self, db: MemoryDatabase):
        self.db = db

    async def list_learnings(self) -> list[Learning]:
        return sorted(
            self.db.learnings.values(),
            key=lambda learning: (learning.created_at, learning.id),
            reverse=True,
        )

    async def get_learning(self, learning_id: int) -> Learning | None:
        return self.db.learnings.get(learning_id)

    async def add_learning(
        self, title: str, first_item_id: int, last_item_id: int
    ) -> Learning:
        learning = Learning(
            id=self.db.next_learning_id,
            title=title,
            first_item_id=first_item_id,
            last_item_id=last_item_id,
            created_at=utcnow(),
        )
        self.db.learnings[learning.id] = learning
        self.db.next_learning_id += 1
        return learning

    async def delete_learning(self, learning_id: int) -> bool:
        return self.db.learnings.pop(learning_id, None) is not None
