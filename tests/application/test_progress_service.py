from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from conftest import NOW, due_record, make_items

from hifz.application.progress_service import ProgressService, summarize_window
from hifz.domain.exceptions import InvalidRangeError
from hifz.domain.models import ItemWithProgress, ProgressRecord


@pytest.mark.asyncio
async def test_tier_counts_from_store(progress_store, memory_db):
    memory_db.progress[1] = due_record(1, mastery_tier=0)
    memory_db.progress[2] = due_record(2, mastery_tier=3)
    memory_db.progress[3] = due_record(3, mastery_tier=4)
    memory_db.progress[44] = due_record(44, mastery_tier=2)  # outside the range

    counts = await ProgressService(progress_store).get_tier_counts(1, 10)

    assert counts.total == 10
    assert counts.per_tier == {0: 8, 1: 0, 2: 0, 3: 1, 4: 1}
    assert counts.learned == 2
    assert counts.percentages()[0] == 80.0


@pytest.mark.asyncio
async def test_window_and_store_agree(progress_store, item_store, memory_db):
    memory_db.progress[1] = due_record(1, mastery_tier=0)
    memory_db.progress[4] = due_record(4, mastery_tier=2)
    rows = [
        ItemWithProgress(item=item, progress=memory_db.progress.get(item.id))
        for item in await item_store.fetch_range(1, 5)
    ]

    from_store = await ProgressService(progress_store).get_tier_counts(1, 5)

    assert summarize_window(rows) == from_store


def test_summarize_window():
    items = make_items(3)
    rows = [
        ItemWithProgress(item=items[0]),
        ItemWithProgress(item=items[1], progress=ProgressRecord(item_id=2, mastery_tier=1)),
        ItemWithProgress(item=items[2], progress=ProgressRecord(item_id=3, mastery_tier=0)),
    ]

    counts = summarize_window(rows)

    assert counts.total == 3
    assert counts.per_tier[0] == 2
    assert counts.per_tier[1] == 1


@pytest.mark.asyncio
async def test_invalid_range_raises():
    service = ProgressService(AsyncMock())

    with pytest.raises(InvalidRangeError):
        await service.get_tier_counts(10, 1)
    with pytest.raises(InvalidRangeError):
        await service.get_due_reviews("x", 5)


@pytest.mark.asyncio
async def test_due_reviews_oldest_first(progress_store, memory_db):
    memory_db.progress[5] = due_record(5, overdue=timedelta(minutes=1))
    memory_db.progress[9] = due_record(9, overdue=timedelta(days=3))

    entries = await ProgressService(progress_store).get_due_reviews(1, 45)

    assert [entry.item_id for entry in entries] == [9, 5]
    assert entries[0].section_name == "Al-Baqarah"
    assert entries[0].next_review_at < NOW
