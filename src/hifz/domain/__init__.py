# Domain Package
from .exceptions import HifzError, ImportFormatError, InvalidRangeError, StoreError
from .models import (
    Direction,
    DueReviewEntry,
    Item,
    ItemWithProgress,
    Learning,
    Mode,
    ProgressRecord,
    SessionStats,
    TierCounts,
)
from .ports import ItemStore, LearningStore, ProgressStore

__all__ = [
    "Direction",
    "DueReviewEntry",
    "HifzError",
    "ImportFormatError",
    "InvalidRangeError",
    "Item",
    "ItemStore",
    "ItemWithProgress",
    "Learning",
    "LearningStore",
    "Mode",
    "ProgressRecord",
    "ProgressStore",
    "SessionStats",
    "StoreError",
    "TierCounts",
]
