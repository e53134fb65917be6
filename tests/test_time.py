"""Tests for bucket time helpers."""

from datetime import datetime, timedelta, timezone

import pytest

from newstrend.core.time import calculate_bucket_time, normalize_timezone


class TestCalculateBucketTime:
    """Tests for N-minute bucket flooring."""

    def test_floors_to_five_minutes(self):
        dt = datetime(2026, 3, 1, 12, 7, 31, 250000, tzinfo=timezone.utc)

        assert calculate_bucket_time(dt, 5) == datetime(2026, 3, 1, 12, 5, tzinfo=timezone.utc)

    def test_boundary_is_its_own_bucket(self):
        dt = datetime(2026, 3, 1, 12, 10, tzinfo=timezone.utc)

        assert calculate_bucket_time(dt, 5) == dt

    def test_converts_to_utc(self):
        kst = timezone(timedelta(hours=9))
        dt = datetime(2026, 3, 1, 21, 14, tzinfo=kst)

        assert calculate_bucket_time(dt, 5) == datetime(2026, 3, 1, 12, 10, tzinfo=timezone.utc)

    def test_hour_buckets(self):
        dt = datetime(2026, 3, 1, 12, 59, 59, tzinfo=timezone.utc)

        assert calculate_bucket_time(dt, 60) == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def test_rejects_non_positive_width(self):
        with pytest.raises(ValueError):
            calculate_bucket_time(datetime(2026, 3, 1, tzinfo=timezone.utc), 0)


def test_naive_datetime_assumed_utc():
    dt = normalize_timezone(datetime(2026, 3, 1, 12, 0))

    assert dt.tzinfo == timezone.utc
    assert dt.hour == 12
