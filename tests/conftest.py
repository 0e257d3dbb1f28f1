from datetime import datetime, timedelta, timezone

import pytest

from hifz.domain.models import Item, ProgressRecord
from hifz.infrastructure.adapters.memory_store import (
    MemoryDatabase,
    MemoryItemStore,
    MemoryLearningStore,
    MemoryProgressStore,
)

NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_items(count, start=1, boundary_every=None, section_id=1, section_name="Al-Baqarah"):
    """Items numbered from `start`; every `boundary_every`-th item ends a verse."""
    items = []
    for item_id in range(start, start + count):
        position = item_id - start + 1
        boundary = bool(boundary_every) and position % boundary_every == 0
        items.append(
            Item(
                id=item_id,
                group_id=(position - 1) // (boundary_every or 1) + 1,
                text=f"word{item_id}",
                is_end_of_group=boundary,
                is_boundary=boundary,
                section_id=section_id,
                section_name=section_name,
                page_id=1,
            )
        )
    return items


def due_record(item_id, now=NOW, overdue=timedelta(minutes=5), **kwargs):
    """A learned record whose review time passed `overdue` ago."""
    defaults = dict(
        interval=60.0,
        review_count=2,
        ease_factor=2.5,
        mastery_tier=1,
        next_review_at=now - overdue,
        last_reviewed_at=now - overdue - timedelta(minutes=1),
        created_at=now - timedelta(days=1),
    )
    defaults.update(kwargs)
    return ProgressRecord(item_id=item_id, **defaults)


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def memory_db():
    db = MemoryDatabase()
    db.import_items(make_items(45, boundary_every=5))
    return db


@pytest.fixture
def item_store(memory_db):
    return MemoryItemStore(memory_db)


@pytest.fixture
def progress_store(memory_db):
    return MemoryProgressStore(memory_db)


@pytest.fixture
def learning_store(memory_db):
    return MemoryLearningStore(memory_db)


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()

    # Mocking HOME to a temp directory to isolate config
    monkeypatch.setenv("HOME", str(home))
    return home
