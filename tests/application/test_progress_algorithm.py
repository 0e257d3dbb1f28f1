import math
from datetime import timedelta

import pytest
from conftest import NOW

from hifz.application.progress_algorithm import (
    ProgressAlgorithm,
    next_ease_factor,
    normalize_quality,
)
from hifz.domain.constants import DAY, MIN_EASE
from hifz.domain.models import ProgressRecord


@pytest.fixture
def algorithm(clock):
    return ProgressAlgorithm(clock=clock)


def test_first_perfect_answer(algorithm):
    result = algorithm.update(None, 5, item_id=7)

    assert result.item_id == 7
    assert result.review_count == 1
    assert result.interval == 30
    assert result.ease_factor == pytest.approx(2.6)
    assert result.lapses == 0
    assert result.next_review_at == NOW + timedelta(seconds=30)
    assert result.last_reviewed_at == NOW
    assert result.last_success_at == NOW
    assert result.mastery_tier == 1


def test_fifth_success_uses_fixed_day_step(algorithm):
    previous = ProgressRecord(item_id=1, review_count=4, ease_factor=2.5, interval=3600)

    result = algorithm.update(previous, 5)

    assert result.review_count == 5
    assert result.interval == 86400
    assert result.ease_factor == pytest.approx(2.6)


def test_long_streak_grows_multiplicatively(algorithm):
    previous = ProgressRecord(item_id=1, review_count=6, ease_factor=2.6, interval=86400)

    result = algorithm.update(previous, 5)

    assert result.review_count == 7
    assert result.ease_factor == pytest.approx(2.7)
    assert result.interval == math.ceil(86400 * result.ease_factor)


def test_failure_resets_streak(algorithm):
    previous = ProgressRecord(item_id=1, review_count=5, ease_factor=2.5, lapses=0, interval=DAY)

    result = algorithm.update(previous, 1)

    assert result.review_count == 0
    assert result.lapses == 1
    assert result.interval == 30
    assert result.ease_factor < 2.5
    assert result.ease_factor >= MIN_EASE
    assert result.mastery_tier == 0


def test_failure_keeps_last_success(algorithm):
    earlier = NOW - timedelta(days=2)
    previous = ProgressRecord(item_id=1, review_count=2, last_success_at=earlier)

    result = algorithm.update(previous, 2)

    assert result.last_success_at == earlier
    assert result.last_reviewed_at == NOW


@pytest.mark.parametrize("streak,expected", [(1, 30), (2, 60), (3, 300), (4, 3600), (5, 86400)])
@pytest.mark.parametrize("ease", [1.3, 2.5, 3.0])
def test_fixed_interval_table_ignores_ease(algorithm, streak, expected, ease):
    previous = (
        ProgressRecord(item_id=1, review_count=streak - 1, ease_factor=ease, interval=999)
        if streak > 1
        else None
    )

    result = algorithm.update(previous, 4, item_id=1)

    assert result.review_count == streak
    assert result.interval == expected


def test_ease_never_drops_below_minimum(algorithm):
    record = None
    for quality in [1, 1, 2, 1, 1, 1, 2, 1, 1, 1, 1, 1]:
        record = algorithm.update(record, quality, item_id=1)
        assert record.ease_factor >= MIN_EASE

    assert record.ease_factor == MIN_EASE
    assert record.lapses == 12


def test_success_increments_streak_from_any_record(algorithm):
    previous = ProgressRecord(item_id=1, review_count=9, lapses=3, ease_factor=2.0, interval=5000)

    result = algorithm.update(previous, 3)

    assert result.review_count == 10
    assert result.lapses == 3


def test_previous_record_is_not_mutated(algorithm):
    previous = ProgressRecord(item_id=1, review_count=2, interval=60, note="hard one")

    result = algorithm.update(previous, 5)

    assert previous.review_count == 2
    assert previous.interval == 60
    assert result.note == "hard one"
    assert result is not previous


def test_lapsed_item_is_capped_at_tier_one(algorithm):
    previous = ProgressRecord(
        item_id=1, review_count=9, lapses=2, ease_factor=2.6, interval=30 * DAY
    )

    result = algorithm.update(previous, 5)

    assert result.mastery_tier == 1


@pytest.mark.parametrize("raw,expected", [(0, 1), (-3, 1), (7, 5), (2.5, 3), (2.4, 2), (4, 4)])
def test_quality_is_clamped_and_rounded(raw, expected):
    assert normalize_quality(raw) == expected


def test_out_of_range_quality_is_treated_as_extreme(algorithm):
    assert algorithm.update(None, 0, item_id=1).lapses == 1
    assert algorithm.update(None, 9, item_id=1).ease_factor == pytest.approx(2.6)


@pytest.mark.parametrize(
    "quality,expected",
    [(5, 2.6), (4, 2.5), (3, 2.36), (2, 2.18), (1, 1.96)],
)
def test_ease_update_table(quality, expected):
    assert next_ease_factor(2.5, quality) == pytest.approx(expected)
