"""
Incremental page loading of items joined with their progress.

The loader never raises to its caller: store failures are retried and then
degrade to "no data".
"""

import logging
from collections.abc import Callable
from datetime import datetime

from hifz.application.retry import with_retry
from hifz.domain.constants import (
    DEFAULT_BATCH_SIZE,
    DUE_REVIEW_LIMIT,
    MAX_RETRIES,
    RETRY_BACKOFF,
)
from hifz.domain.models import DueReviewEntry, ItemWithProgress, is_valid_range, utcnow
from hifz.domain.ports import ItemStore, ProgressStore

logger = logging.getLogger(__name__)


class BatchLoader:
    """
    Exposes the items of [start_id, end_id] page by page.

    Loaded items are de-duplicated by id. Items injected with `add_item` are
    appended at the end, outside of range order.
    """

    def __init__(
        self,
        item_store: ItemStore,
        progress_store: ProgressStore,
        start_id: int,
        end_id: int,
        batch_size: int = DEFAULT_BATCH_SIZE,
        due_limit: int = DUE_REVIEW_LIMIT,
        clock: Callable[[], datetime] | None = None,
        max_retries: int = MAX_RETRIES,
        retry_backoff: float = RETRY_BACKOFF,
    ):
        self._item_store = item_store
        self._progress_store = progress_store
        self.start_id = start_id
        self.end_id = end_id
        self.batch_size = batch_size
        self.due_limit = due_limit
        self._clock = clock or utcnow
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff

        self._items: list[ItemWithProgress] = []
        self._loaded_ids: set[int] = set()
        self._offset = 0
        self._disposed = False

        self.due_reviews: dict[int, DueReviewEntry] = {}
        self.has_more = True
        self.loading = False
        self.loading_more = False

    @property
    def items(self) -> list[ItemWithProgress]:
        return list(self._items)

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def range_is_valid(self) -> bool:
        return is_valid_range(self.start_id, self.end_id)

    async def load_initial_batch(self) -> None:
        """Reset state, load due reviews for the whole range and the first page."""
        if not self.range_is_valid:
            logger.warning(f"Not loading invalid range {self.start_id}..{self.end_id}")
            self.has_more = False
            self.loading = False
            return

        self.loading = True
        try:
            self._items = []
            self._loaded_ids.clear()
            self._offset = 0
            self.has_more = True

            due = await with_retry(
                lambda: self._progress_store.fetch_due_in_range(
                    self.start_id, self.end_id, self._clock(), self.due_limit
                ),
                fallback=[],
                description="loading due reviews",
                max_retries=self._max_retries,
                backoff=self._retry_backoff,
            )
            if self._disposed:
                return
            self.due_reviews = {entry.item_id: entry for entry in due}

            first_page = await self._fetch_page(0)
            if self._disposed:
                return

            self._track(first_page)
            self._items = list(first_page)
            self._offset = self.batch_size
            self.has_more = self._more_after(len(first_page))
            logger.debug(
                f"Loaded first page of {len(first_page)} items for "
                f"{self.start_id}..{self.end_id} (has_more={self.has_more})"
            )
        finally:
            self.loading = False

    async def load_more(self) -> int:
        """
        Load the next page.

        Returns:
            Number of new items appended (0 when skipped or exhausted).
        """
        if self.loading or self.loading_more or not self.has_more:
            return 0

        self.loading_more = True
        try:
            # Pages made up entirely of injected items are skipped.
            while True:
                page = await self._fetch_page(self._offset)
                if self._disposed:
                    return 0

                if not page:
                    self.has_more = False
                    return 0

                self._offset += self.batch_size
                self.has_more = self._more_after(len(page))
                new_items = [row for row in page if row.id not in self._loaded_ids]
                if new_items or not self.has_more:
                    break

            self._track(new_items)
            self._items.extend(new_items)
            return len(new_items)
        finally:
            self.loading_more = False

    def add_item(self, row: ItemWithProgress) -> bool:
        """
        Inject an item fetched outside the paging cursor.

        Returns:
            True if the item was appended, False if it was already loaded.
        """
        if row.id in self._loaded_ids:
            return False
        self._loaded_ids.add(row.id)
        self._items.append(row)
        return True

    def contains(self, item_id: int) -> bool:
        return item_id in self._loaded_ids

    async def reset(self) -> None:
        self._items = []
        self.due_reviews = {}
        self._loaded_ids.clear()
        self._offset = 0
        self.has_more = True
        await self.load_initial_batch()

    def dispose(self) -> None:
        self._disposed = True

    def _more_after(self, page_length: int) -> bool:
        return page_length == self.batch_size and self._offset + self.start_id <= self.end_id

    def _track(self, rows: list[ItemWithProgress]) -> None:
        for row in rows:
            self._loaded_ids.add(row.id)

    async def _fetch_page(self, offset: int) -> list[ItemWithProgress]:
        return await with_retry(
            lambda: self._fetch_joined_page(offset),
            fallback=[],
            description=f"fetching items at offset {offset}",
            max_retries=self._max_retries,
            backoff=self._retry_backoff,
        )

    async def _fetch_joined_page(self, offset: int) -> list[ItemWithProgress]:
        items = await self._item_store.fetch_page(
            self.start_id, self.end_id, self.batch_size, offset
        )
        if not items:
            return []

        records = await self._progress_store.fetch_range(items[0].id, items[-1].id)
        by_id = {record.item_id: record for record in records}
        return [ItemWithProgress(item=item, progress=by_id.get(item.id)) for item in items]
