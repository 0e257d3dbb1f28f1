"""
Canonical mastery-tier definition.

Both the scheduler (per-record tier) and the range aggregation (tier
buckets) derive from the functions in this module.
"""

from collections.abc import Iterable

from .constants import (
    LAPSE_CAP_THRESHOLD,
    TIER2_MIN_STREAK,
    TIER3_MIN_EASE,
    TIER3_MIN_INTERVAL,
    TIER3_MIN_STREAK,
    TIER4_MIN_EASE,
    TIER4_MIN_INTERVAL,
    TIER4_MIN_STREAK,
    TIER_COUNT,
)
from .models import ProgressRecord, TierCounts


def derive_mastery_tier(
    review_count: int, lapses: int, ease_factor: float, interval: float
) -> int:
    """
    Classify how well an item is learned, from 0 (not learned) to 4.

    Precedence matters: a zero streak always yields 0, then two or more
    lapses cap the tier at 1, then the strictest satisfied tier wins.
    """
    if review_count == 0:
        return 0
    if lapses >= LAPSE_CAP_THRESHOLD:
        return 1
    if (
        review_count >= TIER4_MIN_STREAK
        and ease_factor >= TIER4_MIN_EASE
        and interval >= TIER4_MIN_INTERVAL
    ):
        return 4
    if (
        review_count >= TIER3_MIN_STREAK
        and ease_factor >= TIER3_MIN_EASE
        and interval >= TIER3_MIN_INTERVAL
    ):
        return 3
    if review_count >= TIER2_MIN_STREAK:
        return 2
    return 1


def tier_of(record: ProgressRecord | None) -> int:
    if record is None:
        return 0
    return derive_mastery_tier(
        record.review_count, record.lapses, record.ease_factor, record.interval
    )


def bucket_tiers(total: int, recorded_tiers: Iterable[int]) -> TierCounts:
    """
    Build tier buckets for a range of `total` items.

    `recorded_tiers` holds one tier per existing progress record in the
    range. Items without a record land in bucket 0 alongside records whose
    tier is 0, so every item is counted exactly once.
    """
    per_tier = {tier: 0 for tier in range(TIER_COUNT)}
    recorded = 0
    for tier in recorded_tiers:
        recorded += 1
        per_tier[min(max(int(tier), 0), TIER_COUNT - 1)] += 1
    per_tier[0] += max(total - recorded, 0)
    return TierCounts(total=total, per_tier=per_tier)
