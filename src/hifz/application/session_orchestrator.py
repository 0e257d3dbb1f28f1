"""
Training session lifecycle.

Composes BatchLoader, DueReviewDetector and SessionEngine into one session
and exposes a single handle to the presentation layer.
"""

import logging
import time
from collections.abc import Callable
from datetime import datetime

from hifz.application.batch_loader import BatchLoader
from hifz.application.config import AppConfig
from hifz.application.due_review_detector import DueReviewDetector
from hifz.application.progress_algorithm import ProgressAlgorithm
from hifz.application.session_engine import SessionEngine
from hifz.domain.constants import BOUNDARY_BACK_BUFFER, BOUNDARY_MAX_DISTANCE
from hifz.domain.models import (
    Direction,
    DueReviewEntry,
    ItemWithProgress,
    Mode,
    ProgressRecord,
    SessionStats,
    is_valid_range,
    utcnow,
)
from hifz.domain.ports import ItemStore, ProgressStore

logger = logging.getLogger(__name__)


class SessionHandle:
    """The session API seen by the presentation layer."""

    def __init__(
        self,
        actual_start_id: int,
        end_id: int,
        loader: BatchLoader,
        detector: DueReviewDetector,
        engine: SessionEngine,
    ):
        self.actual_start_id = actual_start_id
        self.end_id = end_id
        self.loader = loader
        self.detector = detector
        self.engine = engine

    # State

    @property
    def current_item(self) -> ItemWithProgress | None:
        return self.engine.current_item

    @property
    def revealed_history(self) -> list[ItemWithProgress]:
        return list(self.engine.revealed)

    @property
    def mode(self) -> Mode:
        return self.engine.mode

    @property
    def stats(self) -> SessionStats:
        return self.engine.stats

    @property
    def due_count(self) -> int:
        return self.detector.due_count

    @property
    def should_prompt_review(self) -> bool:
        """True when a due review is waiting and the user is not in free training."""
        return self.detector.has_due_reviews and self.engine.mode != Mode.TRAINING

    @property
    def next_due_review(self) -> DueReviewEntry | None:
        return self.detector.get_next_due_review()

    @property
    def can_continue(self) -> bool:
        return self.engine.can_continue

    @property
    def is_finished(self) -> bool:
        return self.engine.is_finished

    @property
    def is_at_resumable_boundary(self) -> bool:
        return self.engine.is_at_resumable_boundary

    @property
    def has_more_due_ahead(self) -> bool:
        return self.engine.has_more_due_ahead

    @property
    def is_loading(self) -> bool:
        return self.loader.loading or self.loader.loading_more

    # Operations

    async def answer(self, quality: float) -> ProgressRecord | None:
        return await self.engine.update_progress(quality)

    def switch_to_review(self) -> None:
        self.engine.switch_to_review_mode()

    def switch_to_training(self) -> None:
        self.engine.switch_to_training_mode()

    def return_to_memorization(self) -> None:
        self.engine.continue_memorization()

    async def jump_to_due_review(self) -> bool:
        """Jump to the oldest due review, fetching it if it is outside the window."""
        entry = self.detector.get_next_due_review()
        if entry is None:
            logger.info("No due reviews to jump to")
            return False
        return await self.engine.jump_to_review_with_context(entry.item_id)

    async def jump_to_latest_saved(self) -> bool:
        return await self.engine.jump_to_latest_saved(self.actual_start_id, self.end_id)

    async def restart(self) -> None:
        """Reload the window from the start and force a due review check."""
        await self.engine.restart()
        await self.detector.check_for_due_reviews(force=True)
        await self.engine.settle()
        if self.loader.items and not self.detector.is_running:
            self.detector.start_periodic_checking()

    def dispose(self) -> None:
        """Stop background checks; results of in-flight fetches are discarded."""
        self.detector.dispose()
        self.loader.dispose()
        self.engine.dispose()

    async def __aenter__(self) -> "SessionHandle":
        return self

    async def __aexit__(self, *exc) -> None:
        self.dispose()


class SessionOrchestrator:
    """
    Builds training sessions over a pair of stores.

    Follows Dependency Inversion: depends on the ItemStore and ProgressStore
    abstractions, not concrete adapters.
    """

    def __init__(
        self,
        item_store: ItemStore,
        progress_store: ProgressStore,
        config: AppConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] | None = None,
    ):
        self._items = item_store
        self._progress = progress_store
        self._config = config or AppConfig()
        self._clock = clock or utcnow
        self._monotonic = monotonic or time.monotonic

    async def resolve_start(self, start_id: int, end_id: int) -> int:
        """
        Move the start just past the nearest resumable boundary before it.

        Sessions then never resume in the middle of a group. Falls back to
        `start_id` when no plausible boundary is found.
        """
        buffer_start = max(1, start_id - BOUNDARY_BACK_BUFFER)
        try:
            boundary = await self._items.find_nearest_boundary(
                buffer_start, Direction.BEFORE, buffer_start, end_id
            )
        except Exception as e:
            logger.error(f"Error getting range starting point: {e}")
            return start_id

        if boundary is None or boundary < buffer_start - BOUNDARY_MAX_DISTANCE:
            return start_id
        return boundary + 1

    async def start_session(
        self, start_id: int, end_id: int, batch_size: int | None = None
    ) -> SessionHandle:
        """
        Resolve the start, load the first page and due reviews, and begin
        periodic due checking once the window is non-empty.

        An invalid range yields an empty session instead of raising.
        """
        cfg = self._config
        batch_size = batch_size or cfg.batch_size

        if is_valid_range(start_id, end_id):
            actual_start = await self.resolve_start(start_id, end_id)
        else:
            logger.warning(f"Invalid session range {start_id}..{end_id}")
            actual_start = start_id

        loader = BatchLoader(
            self._items,
            self._progress,
            actual_start,
            end_id,
            batch_size=batch_size,
            due_limit=cfg.due_limit,
            clock=self._clock,
            max_retries=cfg.max_retries,
            retry_backoff=cfg.retry_backoff,
        )
        detector = DueReviewDetector(
            self._progress,
            actual_start,
            end_id,
            check_interval=cfg.check_interval,
            limit=cfg.due_limit,
            clock=self._clock,
            monotonic=self._monotonic,
            max_retries=cfg.max_retries,
            retry_backoff=cfg.retry_backoff,
        )
        engine = SessionEngine(
            actual_start,
            end_id,
            self._items,
            self._progress,
            loader=loader,
            detector=detector,
            algorithm=ProgressAlgorithm(clock=self._clock),
            clock=self._clock,
            read_ahead=cfg.read_ahead,
            context_size=cfg.context_size,
        )
        detector.on_change = engine.sync_due_reviews

        await loader.load_initial_batch()
        detector.seed(list(loader.due_reviews.values()))
        engine.sync_items(loader.items)
        await engine.settle()

        handle = SessionHandle(actual_start, end_id, loader, detector, engine)
        if loader.items:
            detector.start_periodic_checking()
        logger.info(
            f"Started session {actual_start}..{end_id} with {len(loader.items)} items "
            f"and {detector.due_count} due reviews"
        )
        return handle
