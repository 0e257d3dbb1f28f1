from datetime import timedelta

import pytest
from conftest import NOW, make_items

from hifz.domain.exceptions import InvalidRangeError
from hifz.domain.models import ItemWithProgress, ProgressRecord, is_valid_range


@pytest.mark.parametrize(
    "start,end,expected",
    [
        (1, 10, True),
        (5, 5, True),
        (10, 1, False),
        ("3", "7", True),
        ("abc", 7, False),
        (None, 7, False),
        (float("nan"), 7, False),
    ],
)
def test_is_valid_range(start, end, expected):
    assert is_valid_range(start, end) is expected


def test_record_is_due():
    record = ProgressRecord(item_id=1, next_review_at=NOW)

    assert record.is_due(NOW)
    assert not record.is_due(NOW - timedelta(seconds=1))
    assert not ProgressRecord(item_id=2).is_due(NOW)


def test_unlearned_rows():
    item = make_items(1)[0]

    assert ItemWithProgress(item=item).is_unlearned
    assert ItemWithProgress(item=item, progress=ProgressRecord(item_id=1)).is_unlearned
    assert not ItemWithProgress(
        item=item, progress=ProgressRecord(item_id=1, last_reviewed_at=NOW)
    ).is_unlearned


def test_invalid_range_error_message():
    err = InvalidRangeError(9, 2)

    assert str(err) == "Invalid item range: 9..2"
    assert isinstance(err, ValueError)
