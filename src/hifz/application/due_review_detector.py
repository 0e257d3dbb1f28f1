"""
Due review detection for a fixed item range.

Keeps an in-memory map of items whose next review time has passed, refreshed
on demand or by a periodic asyncio task.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime

from hifz.application.retry import with_retry
from hifz.domain.constants import (
    DUE_CHECK_INTERVAL,
    DUE_REVIEW_LIMIT,
    MAX_RETRIES,
    RETRY_BACKOFF,
)
from hifz.domain.models import DueReviewEntry, utcnow
from hifz.domain.ports import ProgressStore

logger = logging.getLogger(__name__)


class DueReviewDetector:
    """
    Tracks due reviews in [start_id, end_id].

    Non-forced checks are throttled to one per `check_interval` seconds, and
    only one scan runs at a time.
    """

    def __init__(
        self,
        progress_store: ProgressStore,
        start_id: int,
        end_id: int,
        check_interval: float = DUE_CHECK_INTERVAL,
        limit: int = DUE_REVIEW_LIMIT,
        clock: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] | None = None,
        max_retries: int = MAX_RETRIES,
        retry_backoff: float = RETRY_BACKOFF,
    ):
        """
        Args:
            progress_store: Source of due entries.
            start_id: First item id of the scanned range.
            end_id: Last item id of the scanned range.
            check_interval: Minimum seconds between non-forced scans.
            limit: Maximum number of entries kept per scan.
            clock: Wall-clock used to decide what is due.
            monotonic: Clock used for throttling.
        """
        self._store = progress_store
        self.start_id = start_id
        self.end_id = end_id
        self.check_interval = check_interval
        self.limit = limit
        self._clock = clock or utcnow
        self._monotonic = monotonic or time.monotonic
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff

        self._due: dict[int, DueReviewEntry] = {}
        self._last_checked_at: float | None = None
        self._task: asyncio.Task | None = None
        self._disposed = False
        self.is_checking = False
        self.on_change: Callable[[dict[int, DueReviewEntry]], None] | None = None

    @property
    def due_reviews(self) -> dict[int, DueReviewEntry]:
        return dict(self._due)

    @property
    def due_count(self) -> int:
        return len(self._due)

    @property
    def has_due_reviews(self) -> bool:
        return bool(self._due)

    @property
    def last_checked_at(self) -> float | None:
        return self._last_checked_at

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def seed(self, entries: list[DueReviewEntry]) -> None:
        """Replace the map with entries fetched elsewhere (e.g. by the batch loader)."""
        self._replace(entries)

    async def check_for_due_reviews(self, force: bool = False) -> bool:
        """
        Rescan the range for due items.

        Returns:
            True if a scan ran and replaced the map, False if it was skipped
            (throttled, already in flight, disposed) or the store failed.
        """
        if self._disposed:
            return False

        now = self._monotonic()
        if (
            not force
            and self._last_checked_at is not None
            and now - self._last_checked_at < self.check_interval
        ):
            return False

        if self.is_checking:
            logger.debug("Due review check already in flight, skipping")
            return False

        self.is_checking = True
        try:
            entries = await with_retry(
                lambda: self._store.fetch_due_in_range(
                    self.start_id, self.end_id, self._clock(), self.limit
                ),
                fallback=None,
                description="checking for due reviews",
                max_retries=self._max_retries,
                backoff=self._retry_backoff,
            )
            if entries is None or self._disposed:
                return False

            self._replace(entries)
            self._last_checked_at = now
            logger.debug(f"Found {len(entries)} due reviews in {self.start_id}..{self.end_id}")
            return True
        finally:
            self.is_checking = False

    def get_due_review(self, item_id: int) -> DueReviewEntry | None:
        return self._due.get(item_id)

    def get_next_due_review(self) -> DueReviewEntry | None:
        """Oldest due entry, or None."""
        return next(iter(self._due.values()), None)

    def remove_due_review(self, item_id: int) -> None:
        if self._due.pop(item_id, None) is not None:
            self._notify()

    def start_periodic_checking(self) -> None:
        """Run one forced check now, then re-check every `check_interval` seconds."""
        self.stop_periodic_checking()
        if self._disposed:
            return
        self._task = asyncio.create_task(self._run_periodic())

    def stop_periodic_checking(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def dispose(self) -> None:
        self._disposed = True
        self.stop_periodic_checking()

    async def _run_periodic(self) -> None:
        await self.check_for_due_reviews(force=True)
        while True:
            await asyncio.sleep(self.check_interval)
            await self.check_for_due_reviews()

    def _replace(self, entries: list[DueReviewEntry]) -> None:
        self._due = {entry.item_id: entry for entry in entries[: self.limit]}
        self._notify()

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self.due_reviews)
