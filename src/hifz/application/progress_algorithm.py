"""
Spaced-repetition progress algorithm.

This is a pure computation module with no I/O. The only source of
non-determinism is the clock, which callers may inject.
"""

import math
from collections.abc import Callable
from datetime import datetime, timedelta

from hifz.domain.constants import (
    DEFAULT_EASE,
    FAILURE_INTERVAL,
    MAX_QUALITY,
    MIN_EASE,
    MIN_QUALITY,
    PASSING_QUALITY,
    STREAK_INTERVALS,
)
from hifz.domain.mastery import derive_mastery_tier
from hifz.domain.models import ProgressRecord, utcnow


def _round_half_up(value: float, digits: int = 0) -> float:
    scale = 10**digits
    return math.floor(value * scale + 0.5) / scale


def normalize_quality(quality: float) -> int:
    """Clamp to [1, 5] and round to the nearest integer."""
    clamped = min(max(float(quality), MIN_QUALITY), MAX_QUALITY)
    return int(_round_half_up(clamped))


def next_ease_factor(ease_factor: float, quality: int) -> float:
    """
    SM-2 ease update, rounded to two decimals and floored at MIN_EASE.

    ef' = ef + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02))
    """
    miss = MAX_QUALITY - quality
    updated = ease_factor + (0.1 - miss * (0.08 + miss * 0.02))
    return max(MIN_EASE, _round_half_up(updated, 2))


def next_interval(streak: int, previous_interval: float, ease_factor: float) -> float:
    """
    Interval in seconds for a success that brings the streak to `streak`.

    The first five steps are a fixed table; afterwards growth is multiplicative.
    """
    if streak in STREAK_INTERVALS:
        return float(STREAK_INTERVALS[streak])
    return float(math.ceil(previous_interval * ease_factor))


class ProgressAlgorithm:
    """
    Computes the next scheduling state for an item from an answer quality.

    Stateless and side-effect free.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None):
        """
        Args:
            clock: Returns the current time; defaults to timezone-aware UTC now.
        """
        self._clock = clock or utcnow

    def update(
        self,
        previous: ProgressRecord | None,
        quality: float,
        item_id: int | None = None,
    ) -> ProgressRecord:
        """
        Apply one answer to a progress record.

        Args:
            previous: Existing record, or None if the item was never answered.
            quality: 1 (failed) to 5 (perfect recall). Values outside are clamped.
            item_id: Item the record belongs to; defaults to previous.item_id.

        Returns:
            A new ProgressRecord; `previous` is not modified.
        """
        now = self._clock()
        q = normalize_quality(quality)

        if item_id is None:
            item_id = previous.item_id if previous else 0

        ease = previous.ease_factor if previous else DEFAULT_EASE
        streak = previous.review_count if previous else 0
        lapses = previous.lapses if previous else 0
        interval = previous.interval if previous else 0.0
        last_success_at = previous.last_success_at if previous else None

        ease = next_ease_factor(ease, q)

        if q >= PASSING_QUALITY:
            streak += 1
            interval = next_interval(streak, interval, ease)
            last_success_at = now
        else:
            lapses += 1
            streak = 0
            interval = float(FAILURE_INTERVAL)

        return ProgressRecord(
            item_id=item_id,
            interval=interval,
            review_count=streak,
            lapses=lapses,
            ease_factor=ease,
            next_review_at=now + timedelta(seconds=interval),
            last_reviewed_at=now,
            last_success_at=last_success_at,
            mastery_tier=derive_mastery_tier(streak, lapses, ease, interval),
            note=previous.note if previous else None,
            created_at=previous.created_at if previous else None,
        )
