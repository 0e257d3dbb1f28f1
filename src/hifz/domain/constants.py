"""Centralized constants for hifz.

All scheduling thresholds and session defaults live here so every layer
imports from a single source of truth.
"""

# ---------- Time ----------
MINUTE = 60
HOUR = 3600
DAY = 86400

# ---------- Ease factor ----------
DEFAULT_EASE = 2.5
MIN_EASE = 1.3

# ---------- Quality ----------
MIN_QUALITY = 1
MAX_QUALITY = 5
PASSING_QUALITY = 3

# ---------- Interval schedule (seconds, keyed on success streak) ----------
STREAK_INTERVALS = {
    1: 30,
    2: MINUTE,
    3: 5 * MINUTE,
    4: HOUR,
    5: DAY,
}
FAILURE_INTERVAL = 30

# ---------- Mastery tiers ----------
TIER_COUNT = 5
LAPSE_CAP_THRESHOLD = 2
TIER2_MIN_STREAK = 3
TIER3_MIN_STREAK = 5
TIER3_MIN_EASE = 2.2
TIER3_MIN_INTERVAL = DAY
TIER4_MIN_STREAK = 10
TIER4_MIN_EASE = 2.4
TIER4_MIN_INTERVAL = 6 * DAY

# ---------- Batch loading ----------
DEFAULT_BATCH_SIZE = 20
READ_AHEAD = 5

# ---------- Retries ----------
MAX_RETRIES = 2
RETRY_BACKOFF = 0.1  # seconds, multiplied by attempt number

# ---------- Due review detection ----------
DUE_CHECK_INTERVAL = 30.0  # seconds
DUE_REVIEW_LIMIT = 10

# ---------- Session ----------
DEFAULT_CONTEXT_SIZE = 3
BOUNDARY_BACK_BUFFER = 3
BOUNDARY_MAX_DISTANCE = 10
