"""
Domain models for scheduling and training sessions.

These are pure data structures with no I/O or external dependencies.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from .constants import DEFAULT_EASE, TIER_COUNT


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Mode(str, Enum):
    """Active pass of a training session."""

    MEMORIZATION = "memorization"
    REVIEW = "review"
    TRAINING = "training"


class Direction(str, Enum):
    BEFORE = "before"
    AFTER = "after"


@dataclass(frozen=True)
class Item:
    """
    An immutable unit of learning content (one word of the text).

    Attributes:
        id: Globally ordered identifier.
        group_id: Group the item belongs to (e.g. verse number).
        text: Display text.
        is_end_of_group: True for the last item of its group.
        is_boundary: True where a session can be safely paused and resumed.
        section_id: Enclosing section (e.g. surah), display only.
        section_name: Name of the enclosing section, display only.
        page_id: Page the item is printed on, display only.
    """

    id: int
    group_id: int
    text: str
    is_end_of_group: bool = False
    is_boundary: bool = False
    section_id: int | None = None
    section_name: str | None = None
    page_id: int | None = None


@dataclass
class ProgressRecord:
    """
    Scheduling state for a single item.

    A record does not exist until the first answer for its item is recorded.
    `interval` is in seconds so early steps can be shorter than a minute.
    """

    item_id: int
    interval: float = 0.0
    review_count: int = 0  # current consecutive-success streak
    lapses: int = 0
    ease_factor: float = DEFAULT_EASE
    next_review_at: datetime | None = None
    last_reviewed_at: datetime | None = None
    last_success_at: datetime | None = None
    mastery_tier: int = 0
    note: str | None = None
    created_at: datetime | None = None

    def is_due(self, now: datetime) -> bool:
        return self.next_review_at is not None and self.next_review_at <= now


@dataclass(frozen=True)
class ItemWithProgress:
    """An item left-joined with its optional progress record."""

    item: Item
    progress: ProgressRecord | None = None

    @property
    def id(self) -> int:
        return self.item.id

    @property
    def text(self) -> str:
        return self.item.text

    @property
    def is_boundary(self) -> bool:
        return self.item.is_boundary

    @property
    def is_unlearned(self) -> bool:
        """True when the item carries no progress at all."""
        if self.progress is None:
            return True
        return self.progress.mastery_tier == 0 and self.progress.last_reviewed_at is None


@dataclass(frozen=True)
class DueReviewEntry:
    """Lightweight projection of an item whose review time has passed."""

    item_id: int
    text: str
    group_id: int
    section_name: str | None = None
    next_review_at: datetime | None = None


@dataclass
class TierCounts:
    """Mastery-tier aggregation over an item range."""

    total: int
    per_tier: dict[int, int] = field(
        default_factory=lambda: {tier: 0 for tier in range(TIER_COUNT)}
    )

    @property
    def learned(self) -> int:
        return self.total - self.per_tier.get(0, 0)

    def percentages(self) -> dict[int, float]:
        """Share of each tier in percent, rounded to two decimals."""
        if self.total == 0:
            return {tier: 0.0 for tier in self.per_tier}
        return {
            tier: math.floor(count / self.total * 10000 + 0.5) / 100
            for tier, count in self.per_tier.items()
        }


@dataclass
class SessionStats:
    total_items: int = 0
    items_reviewed: int = 0
    items_memorized: int = 0
    current_streak: int = 0
    accuracy: int = 100
    started_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Learning:
    """A saved, named item range the user is memorizing."""

    id: int
    title: str
    first_item_id: int
    last_item_id: int
    created_at: datetime | None = None


def is_valid_range(start_id, end_id) -> bool:
    """False for non-numeric or NaN bounds, or when start > end."""
    try:
        start = float(start_id)
        end = float(end_id)
    except (TypeError, ValueError):
        return False
    if math.isnan(start) or math.isnan(end):
        return False
    return start <= end
