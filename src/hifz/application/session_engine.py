"""
Training session state machine.

Holds the in-memory window of items, the cursor, the revealed history and the
active mode, and records answers through the progress algorithm.

Appending data to the window never resets progress; only a genuine restart
does.
"""

import asyncio
import logging
import math
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime

from hifz.application.batch_loader import BatchLoader
from hifz.application.due_review_detector import DueReviewDetector
from hifz.application.progress_algorithm import ProgressAlgorithm, normalize_quality
from hifz.domain.constants import DEFAULT_CONTEXT_SIZE, PASSING_QUALITY, READ_AHEAD
from hifz.domain.models import (
    DueReviewEntry,
    ItemWithProgress,
    Mode,
    ProgressRecord,
    SessionStats,
    utcnow,
)
from hifz.domain.ports import ItemStore, ProgressStore

logger = logging.getLogger(__name__)


class SessionEngine:
    """
    Drives one sequential pass over a window of items.

    Mutating operations are serialized with an asyncio lock so an answer is
    applied atomically from the caller's perspective.
    """

    def __init__(
        self,
        start_id: int,
        end_id: int,
        item_store: ItemStore,
        progress_store: ProgressStore,
        loader: BatchLoader | None = None,
        detector: DueReviewDetector | None = None,
        algorithm: ProgressAlgorithm | None = None,
        clock: Callable[[], datetime] | None = None,
        read_ahead: int = READ_AHEAD,
        context_size: int = DEFAULT_CONTEXT_SIZE,
    ):
        """
        Args:
            start_id: First item id of the session range.
            end_id: Last item id of the session range.
            item_store: Used to fetch items outside the loaded window.
            progress_store: Receives every recorded answer.
            loader: Source of further pages and sink for injected items.
            detector: Notified when a due item is answered.
            algorithm: Scheduling algorithm; shares `clock` by default.
            read_ahead: Load the next page once the cursor is this close to the end.
            context_size: Items revealed before a review target.
        """
        self.start_id = start_id
        self.end_id = end_id
        self._item_store = item_store
        self._progress_store = progress_store
        self._loader = loader
        self._detector = detector
        self._clock = clock or utcnow
        self._algorithm = algorithm or ProgressAlgorithm(clock=self._clock)
        self.read_ahead = read_ahead
        self.context_size = context_size

        self.mode = Mode.MEMORIZATION
        self.current_index = 0
        self.items: list[ItemWithProgress] = []
        self.revealed: list[ItemWithProgress] = []
        self.due_reviews: dict[int, DueReviewEntry] = {}
        self.is_at_resumable_boundary = False
        self.has_more_due_ahead = False

        self.stats = SessionStats()
        self.restart_count = 0
        self._attempts = 0
        self._successes = 0
        self._recorded: dict[int, ProgressRecord] = {}
        self._lock = asyncio.Lock()
        self._disposed = False

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def current_item(self) -> ItemWithProgress | None:
        if 0 <= self.current_index < len(self.items):
            return self.items[self.current_index]
        return None

    @property
    def can_continue(self) -> bool:
        return self.current_index < len(self.items) - 1

    @property
    def is_finished(self) -> bool:
        return self.current_index >= len(self.items) and len(self.items) > 0

    @property
    def has_due_reviews(self) -> bool:
        return bool(self.due_reviews)

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    # ------------------------------------------------------------------
    # Window synchronization
    # ------------------------------------------------------------------

    def sync_items(self, items: list[ItemWithProgress]) -> None:
        """
        Adopt the loader's current item list.

        Resets the pass only on first load (empty -> non-empty) or on the
        restart signature: the cursor ran past the end of the previous list
        while history was revealed. Plain growth is absorbed as-is.
        """
        if not items:
            return

        items = [self._with_recorded(row) for row in items]
        is_initial_load = not self.items
        is_restarting = self.current_index >= len(self.items) and len(self.revealed) > 0

        self.items = items
        self.stats.total_items = len(items)
        if is_initial_load or is_restarting:
            self.current_index = 0
            self.revealed = []
            self.mode = Mode.MEMORIZATION

    def _absorb(self, items: list[ItemWithProgress]) -> None:
        """Take on a grown window; cursor, history and mode are left alone."""
        self.items = [self._with_recorded(row) for row in items]
        self.stats.total_items = len(self.items)

    def sync_due_reviews(self, due_reviews: dict[int, DueReviewEntry]) -> None:
        self.due_reviews = dict(due_reviews)

    async def settle(self) -> None:
        """Load ahead if needed and refresh position-derived state after a cursor move."""
        await self.ensure_read_ahead()
        await self.refresh_position_state()

    async def ensure_read_ahead(self) -> None:
        if self._loader is None or self._disposed:
            return
        threshold = len(self.items) - max(self.read_ahead, 1)
        if self._loader.has_more and self.current_index >= threshold:
            added = await self._loader.load_more()
            if added and not self._disposed:
                self._absorb(self._loader.items)

    async def refresh_position_state(self) -> None:
        current = self.current_item
        if current is None:
            self.is_at_resumable_boundary = False
            self.has_more_due_ahead = False
            return

        self.is_at_resumable_boundary = current.is_boundary
        try:
            count = await self._progress_store.count_due_after(
                current.id, self.end_id, self._clock()
            )
        except Exception as e:
            logger.warning(f"Could not check for due reviews after {current.id}: {e}")
            count = 0

        if not self._disposed:
            self.has_more_due_ahead = count > 0

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    async def update_progress(self, quality: float) -> ProgressRecord | None:
        """
        Record an answer for the current item and advance the cursor.

        The write is awaited before the cursor moves. A failed write is logged
        and the session still advances.

        Returns:
            The new progress record, or None if there is no current item.
        """
        async with self._lock:
            current = self.current_item
            if current is None or self._disposed:
                return None

            previous = self._recorded.get(current.id, current.progress)
            updated = self._algorithm.update(previous, quality, item_id=current.id)

            try:
                await self._progress_store.upsert(updated)
            except Exception as e:
                logger.error(f"Error saving progress for item {current.id}: {e}", exc_info=True)

            if self._disposed:
                return updated

            self._recorded[current.id] = updated
            answered = replace(current, progress=updated)
            self.items[self.current_index] = answered
            self._record_stats(normalize_quality(quality) >= PASSING_QUALITY)

            if not any(row.id == answered.id for row in self.revealed):
                self.revealed.append(answered)
            self.current_index += 1

            if current.id in self.due_reviews:
                del self.due_reviews[current.id]
            if self._detector is not None:
                self._detector.remove_due_review(current.id)

            await self.settle()
            return updated

    def _record_stats(self, is_correct: bool) -> None:
        self._attempts += 1
        if is_correct:
            self._successes += 1
            self.stats.current_streak += 1
            self.stats.items_memorized += 1
        else:
            self.stats.current_streak = 0
        self.stats.items_reviewed += 1
        self.stats.accuracy = math.floor(100 * self._successes / self._attempts + 0.5)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    async def jump_to_review(self, item_id: int) -> bool:
        """
        Move the cursor to a loaded item and switch to review mode.

        Items outside the loaded window are not fetched; the call is a no-op.
        """
        async with self._lock:
            index = self._index_of(item_id)
            if index is None:
                logger.warning(f"Review item {item_id} is not in the loaded window")
                return False

            self.current_index = index
            self.mode = Mode.REVIEW
            await self.settle()
            return True

    async def jump_to_review_with_context(
        self, item_id: int, context_size: int | None = None
    ) -> bool:
        """
        Move to a review item, revealing the items just before it for orientation.

        Items outside the window are fetched and injected without context.
        Either way the previous revealed history is replaced.
        """
        if context_size is None:
            context_size = self.context_size

        async with self._lock:
            index = self._index_of(item_id)
            if index is None:
                index = await self._inject(item_id)
                if index is None:
                    logger.error(f"Could not fetch review item {item_id}")
                    return False
                self.revealed = []
            else:
                context_start = max(0, index - context_size)
                self.revealed = list(self.items[context_start:index])

            self.current_index = index
            self.mode = Mode.REVIEW
            await self.settle()
            return True

    async def jump_to_latest_saved(
        self, start_id: int | None = None, end_id: int | None = None
    ) -> bool:
        """
        Resume memorization at the first item without any progress.

        Searches the loaded window first, then the whole range in the store.
        """
        start_id = self.start_id if start_id is None else start_id
        end_id = self.end_id if end_id is None else end_id

        async with self._lock:
            index = next(
                (i for i, row in enumerate(self.items) if row.is_unlearned), None
            )

            if index is None:
                try:
                    unlearned = await self._item_store.find_first_unlearned(start_id, end_id)
                except Exception as e:
                    logger.error(f"Error while searching for an unlearned item: {e}")
                    return False
                if unlearned is None:
                    logger.info("All items in range have progress, not navigating")
                    return False
                index = self._adopt(unlearned)

            self.current_index = index
            self.mode = Mode.MEMORIZATION
            self.revealed = []
            await self.settle()
            return True

    def continue_memorization(self) -> None:
        self.mode = Mode.MEMORIZATION
        self.revealed = []

    def switch_to_review_mode(self) -> None:
        self.mode = Mode.REVIEW
        self.revealed = []

    def switch_to_training_mode(self) -> None:
        self.mode = Mode.TRAINING

    def restart_session(self) -> None:
        """Reset cursor, history, mode and stats for a fresh pass."""
        self.restart_count += 1
        self.current_index = 0
        self.revealed = []
        self.mode = Mode.MEMORIZATION
        self.stats = SessionStats(total_items=len(self.items))
        self._attempts = 0
        self._successes = 0

    async def restart(self) -> None:
        """Reload the window from the loader and begin a fresh pass."""
        async with self._lock:
            if self._loader is not None:
                await self._loader.reset()
            self.restart_session()
            if self._loader is not None and not self._disposed:
                self.sync_items(self._loader.items)

    def dispose(self) -> None:
        self._disposed = True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _index_of(self, item_id: int) -> int | None:
        return next((i for i, row in enumerate(self.items) if row.id == item_id), None)

    def _with_recorded(self, row: ItemWithProgress) -> ItemWithProgress:
        recorded = self._recorded.get(row.id)
        if recorded is None or row.progress is recorded:
            return row
        return replace(row, progress=recorded)

    async def _inject(self, item_id: int) -> int | None:
        try:
            row = await self._item_store.fetch_with_progress(item_id)
        except Exception as e:
            logger.error(f"Error fetching item {item_id}: {e}")
            return None
        if row is None or self._disposed:
            return None
        return self._adopt(row)

    def _adopt(self, row: ItemWithProgress) -> int:
        """Append an out-of-window item (through the loader when present) and return its index."""
        if self._loader is not None:
            self._loader.add_item(row)

        index = self._index_of(row.id)
        if index is not None:
            return index

        self.items.append(self._with_recorded(row))
        self.stats.total_items = len(self.items)
        return len(self.items) - 1
