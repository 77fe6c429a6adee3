from datetime import datetime, timedelta, timezone

import pytest

from nugget_timeline.time_utils import format_cursor, parse_timestamp


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2024-06-02T15:00:00Z", datetime(2024, 6, 2, 15, tzinfo=timezone.utc)),
        ("2024-06-02T15:00:00.5+00:00", datetime(2024, 6, 2, 15, 0, 0, 500000, tzinfo=timezone.utc)),
        ("2024-06-02 15:00:00.123456789+00", datetime(2024, 6, 2, 15, 0, 0, 123456, tzinfo=timezone.utc)),
        ("2024-06-02T08:00:00-07:00", datetime(2024, 6, 2, 15, tzinfo=timezone.utc)),
        ("2024-06-02T15:00:00", datetime(2024, 6, 2, 15, tzinfo=timezone.utc)),
        ("2024-06-02", datetime(2024, 6, 2, tzinfo=timezone.utc)),
    ],
)
def test_parse_timestamp_accepts_store_formats(raw, expected):
    assert parse_timestamp(raw) == expected


@pytest.mark.parametrize(
    "raw",
    [None, "", "soon", "2024-13-40T00:00:00Z", "0001-01-01T00:00:00+05:00", 1717340400, {"t": 1}],
)
def test_parse_timestamp_rejects_garbage(raw):
    assert parse_timestamp(raw) is None


def test_parse_timestamp_normalizes_datetimes_to_utc():
    local = datetime(2024, 6, 2, 17, 0, tzinfo=timezone(timedelta(hours=2)))
    parsed = parse_timestamp(local)
    assert parsed == local
    assert parsed.utcoffset() == timedelta(0)


def test_format_cursor_keeps_microseconds():
    value = datetime(2024, 6, 2, 15, 0, 0, 42, tzinfo=timezone.utc)
    cursor = format_cursor(value)
    assert cursor == "2024-06-02T15:00:00.000042Z"
    assert parse_timestamp(cursor) == value
