import asyncio
import logging
from unittest.mock import AsyncMock

import pytest
from conftest import NOW, due_record

from hifz.application.batch_loader import BatchLoader
from hifz.application.due_review_detector import DueReviewDetector
from hifz.application.session_engine import SessionEngine
from hifz.domain.exceptions import StoreError
from hifz.domain.models import DueReviewEntry, Mode


@pytest.fixture
def start_engine(item_store, progress_store, clock):
    async def _start(start_id=1, end_id=45, batch_size=20, read_ahead=5, detector=None):
        loader = BatchLoader(
            item_store, progress_store, start_id, end_id, batch_size=batch_size, clock=clock
        )
        await loader.load_initial_batch()
        engine = SessionEngine(
            start_id,
            end_id,
            item_store,
            progress_store,
            loader=loader,
            detector=detector,
            clock=clock,
            read_ahead=read_ahead,
        )
        engine.sync_items(loader.items)
        await engine.settle()
        return engine, loader

    return _start


def ids(rows):
    return [row.id for row in rows]


@pytest.mark.asyncio
async def test_answer_persists_and_advances(start_engine, progress_store):
    engine, _ = await start_engine()

    record = await engine.update_progress(5)

    assert record.item_id == 1
    assert record.next_review_at > NOW
    assert (await progress_store.fetch_by_id(1)).review_count == 1
    assert engine.current_index == 1
    assert ids(engine.revealed) == [1]
    assert engine.items[0].progress is record


@pytest.mark.asyncio
async def test_read_ahead_extends_window_without_moving_cursor(start_engine):
    engine, loader = await start_engine()

    for _ in range(14):
        await engine.update_progress(4)
    assert len(engine.items) == 20

    await engine.update_progress(4)

    assert len(engine.items) == 40
    assert engine.current_index == 15
    assert ids(engine.revealed) == list(range(1, 16))
    assert engine.mode == Mode.MEMORIZATION


@pytest.mark.asyncio
async def test_zero_read_ahead_keeps_progress_when_next_page_arrives(start_engine):
    engine, _ = await start_engine(read_ahead=0)

    for _ in range(20):
        await engine.update_progress(5)

    assert engine.current_index == 20
    assert ids(engine.revealed) == list(range(1, 21))
    assert len(engine.items) == 40
    assert engine.current_item.id == 21
    assert engine.restart_count == 0


@pytest.mark.asyncio
async def test_injected_review_item_leaves_rest_of_range_reachable(start_engine):
    engine, _ = await start_engine()

    assert await engine.jump_to_review_with_context(30) is True
    assert engine.current_item.id == 30
    for _ in range(100):
        if engine.is_finished:
            break
        await engine.update_progress(4)

    assert engine.is_finished
    assert len(engine.items) == 45
    assert sorted(ids(engine.items)) == list(range(1, 46))


@pytest.mark.asyncio
async def test_restart_reloads_window(start_engine):
    engine, _ = await start_engine()
    for _ in range(16):
        await engine.update_progress(5)
    assert len(engine.items) == 40

    await engine.restart()

    assert engine.current_index == 0
    assert engine.revealed == []
    assert len(engine.items) == 20
    assert engine.items[0].progress.review_count == 1
    assert engine.restart_count == 1


@pytest.mark.asyncio
async def test_sync_items_growth_keeps_cursor(start_engine):
    engine, loader = await start_engine()
    await engine.update_progress(5)
    await engine.update_progress(5)
    await loader.load_more()

    engine.sync_items(loader.items)

    assert engine.current_index == 2
    assert ids(engine.revealed) == [1, 2]
    assert len(engine.items) == 40
    assert engine.items[0].progress is not None


@pytest.mark.asyncio
async def test_sync_items_restart_signature_resets(start_engine):
    engine, loader = await start_engine(end_id=3)
    for _ in range(3):
        await engine.update_progress(5)
    assert engine.is_finished

    engine.sync_items(loader.items)

    assert engine.current_index == 0
    assert engine.revealed == []


@pytest.mark.asyncio
async def test_restart_session_resets_everything(start_engine):
    engine, _ = await start_engine()
    await engine.update_progress(5)
    await engine.update_progress(1)
    engine.switch_to_training_mode()

    engine.restart_session()

    assert engine.current_index == 0
    assert engine.revealed == []
    assert engine.mode == Mode.MEMORIZATION
    assert engine.stats.items_reviewed == 0
    assert engine.stats.items_memorized == 0
    assert engine.stats.current_streak == 0
    assert engine.stats.accuracy == 100
    assert engine.stats.total_items == len(engine.items)
    assert engine.restart_count == 1


@pytest.mark.asyncio
async def test_recorded_progress_survives_reload(start_engine):
    engine, loader = await start_engine()
    await engine.update_progress(5)
    engine.restart_session()

    engine.sync_items(loader.items)
    record = await engine.update_progress(5)

    assert record.review_count == 2


@pytest.mark.asyncio
async def test_session_stats(start_engine):
    engine, _ = await start_engine()

    await engine.update_progress(5)
    await engine.update_progress(1)
    await engine.update_progress(4)

    assert engine.stats.items_reviewed == 3
    assert engine.stats.items_memorized == 2
    assert engine.stats.current_streak == 1
    assert engine.stats.accuracy == 67


@pytest.mark.asyncio
async def test_answer_evicts_due_item(start_engine, memory_db, progress_store, clock):
    memory_db.progress[3] = due_record(3)
    detector = DueReviewDetector(progress_store, 1, 45, clock=clock)
    engine, _ = await start_engine(detector=detector)
    detector.on_change = engine.sync_due_reviews
    await detector.check_for_due_reviews(force=True)
    assert 3 in engine.due_reviews

    await engine.jump_to_review(3)
    await engine.update_progress(5)

    assert 3 not in engine.due_reviews
    assert detector.get_due_review(3) is None
    assert not engine.has_due_reviews


@pytest.mark.asyncio
async def test_persistence_failure_still_advances(start_engine, progress_store, caplog):
    engine, _ = await start_engine()
    progress_store.upsert = AsyncMock(side_effect=StoreError("disk full"))

    with caplog.at_level(logging.ERROR):
        record = await engine.update_progress(5)

    assert record.review_count == 1
    assert engine.current_index == 1
    assert engine.stats.items_reviewed == 1
    assert "Error saving progress for item 1" in caplog.text


@pytest.mark.asyncio
async def test_concurrent_answers_are_serialized(start_engine, progress_store):
    engine, _ = await start_engine()

    await asyncio.gather(engine.update_progress(5), engine.update_progress(5))

    assert engine.current_index == 2
    assert (await progress_store.fetch_by_id(1)).review_count == 1
    assert (await progress_store.fetch_by_id(2)).review_count == 1


@pytest.mark.asyncio
async def test_finishing_a_range(start_engine):
    engine, _ = await start_engine(end_id=3)
    assert engine.can_continue

    for _ in range(3):
        await engine.update_progress(5)

    assert engine.is_finished
    assert engine.current_item is None
    assert not engine.can_continue
    assert await engine.update_progress(5) is None


@pytest.mark.asyncio
async def test_jump_to_review_in_window(start_engine):
    engine, _ = await start_engine()

    assert await engine.jump_to_review(12) is True

    assert engine.current_item.id == 12
    assert engine.mode == Mode.REVIEW


@pytest.mark.asyncio
async def test_jump_to_review_outside_window_is_noop(start_engine, caplog):
    engine, _ = await start_engine()

    assert await engine.jump_to_review(44) is False

    assert engine.current_index == 0
    assert engine.mode == Mode.MEMORIZATION
    assert "not in the loaded window" in caplog.text


@pytest.mark.asyncio
async def test_jump_with_context_reveals_previous_items(start_engine):
    engine, _ = await start_engine()

    assert await engine.jump_to_review_with_context(10) is True

    assert engine.current_item.id == 10
    assert ids(engine.revealed) == [7, 8, 9]
    assert engine.mode == Mode.REVIEW


@pytest.mark.asyncio
async def test_jump_with_context_near_start(start_engine):
    engine, _ = await start_engine()

    await engine.jump_to_review_with_context(2, context_size=5)

    assert ids(engine.revealed) == [1]


@pytest.mark.asyncio
async def test_jump_with_context_fetches_missing_item(start_engine):
    engine, loader = await start_engine()
    await engine.update_progress(5)

    assert await engine.jump_to_review_with_context(44) is True

    assert engine.current_item.id == 44
    assert engine.revealed == []
    assert loader.contains(44)
    assert ids(engine.items).count(44) == 1


@pytest.mark.asyncio
async def test_jump_with_context_unknown_item(start_engine):
    engine, _ = await start_engine()

    assert await engine.jump_to_review_with_context(999) is False
    assert engine.current_index == 0


@pytest.mark.asyncio
async def test_jump_to_latest_saved_in_window(start_engine):
    engine, _ = await start_engine()
    await engine.update_progress(5)
    await engine.update_progress(5)
    await engine.jump_to_review(1)

    assert await engine.jump_to_latest_saved() is True

    assert engine.current_item.id == 3
    assert engine.mode == Mode.MEMORIZATION
    assert engine.revealed == []


@pytest.mark.asyncio
async def test_jump_to_latest_saved_searches_store(start_engine, memory_db):
    for item_id in range(1, 21):
        memory_db.progress[item_id] = due_record(item_id)
    engine, _ = await start_engine()

    assert await engine.jump_to_latest_saved() is True

    assert engine.current_item.id == 21


@pytest.mark.asyncio
async def test_jump_to_latest_saved_when_all_learned(start_engine, memory_db):
    for item_id in range(1, 46):
        memory_db.progress[item_id] = due_record(item_id)
    engine, _ = await start_engine()

    assert await engine.jump_to_latest_saved() is False
    assert engine.current_index == 0


@pytest.mark.asyncio
async def test_position_state(start_engine, memory_db):
    memory_db.progress[30] = due_record(30)
    engine, _ = await start_engine()
    assert engine.has_more_due_ahead
    assert not engine.is_at_resumable_boundary

    for _ in range(4):
        await engine.update_progress(5)

    assert engine.current_item.id == 5
    assert engine.is_at_resumable_boundary


@pytest.mark.asyncio
async def test_due_ahead_lookup_failure_is_tolerated(start_engine, progress_store):
    engine, _ = await start_engine()
    progress_store.count_due_after = AsyncMock(side_effect=StoreError("locked"))

    await engine.refresh_position_state()

    assert engine.has_more_due_ahead is False


@pytest.mark.asyncio
async def test_mode_switches(start_engine):
    engine, _ = await start_engine()
    await engine.update_progress(5)

    engine.switch_to_training_mode()
    assert engine.mode == Mode.TRAINING
    assert ids(engine.revealed) == [1]

    engine.switch_to_review_mode()
    assert engine.mode == Mode.REVIEW
    assert engine.revealed == []

    engine.continue_memorization()
    assert engine.mode == Mode.MEMORIZATION


@pytest.mark.asyncio
async def test_disposed_engine_ignores_answers(start_engine):
    engine, _ = await start_engine()
    engine.dispose()

    assert await engine.update_progress(5) is None
    assert engine.is_disposed


def test_sync_due_reviews_copies():
    engine = SessionEngine(1, 10, AsyncMock(), AsyncMock())
    source = {4: DueReviewEntry(item_id=4, text="w", group_id=1)}

    engine.sync_due_reviews(source)
    source.clear()

    assert engine.has_due_reviews
