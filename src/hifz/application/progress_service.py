"""
Range progress service.

Reports mastery-tier distributions for an item range, either from the store
or from an already-loaded window. Both paths bucket through
`hifz.domain.mastery.bucket_tiers`.
"""

import logging
from collections.abc import Iterable

from hifz.domain.constants import DUE_REVIEW_LIMIT
from hifz.domain.exceptions import InvalidRangeError
from hifz.domain.mastery import bucket_tiers
from hifz.domain.models import (
    DueReviewEntry,
    ItemWithProgress,
    TierCounts,
    is_valid_range,
    utcnow,
)
from hifz.domain.ports import ProgressStore

logger = logging.getLogger(__name__)


def summarize_window(rows: Iterable[ItemWithProgress]) -> TierCounts:
    """Tier buckets for items already in memory."""
    rows = list(rows)
    return bucket_tiers(
        len(rows), [row.progress.mastery_tier for row in rows if row.progress is not None]
    )


class ProgressService:
    """Application service for range-level progress reporting."""

    def __init__(self, progress_store: ProgressStore):
        self._repo = progress_store

    async def get_tier_counts(self, start_id: int, end_id: int) -> TierCounts:
        """
        Raises:
            InvalidRangeError: if the range is malformed.
        """
        if not is_valid_range(start_id, end_id):
            raise InvalidRangeError(start_id, end_id)
        return await self._repo.aggregate_tier_counts(start_id, end_id)

    async def get_due_reviews(
        self, start_id: int, end_id: int, limit: int = DUE_REVIEW_LIMIT
    ) -> list[DueReviewEntry]:
        if not is_valid_range(start_id, end_id):
            raise InvalidRangeError(start_id, end_id)
        return await self._repo.fetch_due_in_range(start_id, end_id, utcnow(), limit)
