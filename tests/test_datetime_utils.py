"""
Tests for datetime_utils module.
"""
import pytest
from datetime import datetime, timezone, timedelta
from signflow.utils.datetime_utils import (
    utc_now,
    parse_db_timestamp,
    to_db_timestamp,
    expiry_from_now,
    is_past,
)


class TestUtcNow:
    """Test utc_now() function."""

    def test_returns_timezone_aware(self):
        """utc_now() returns timezone-aware datetime."""
        now = utc_now()
        assert now.tzinfo is not None
        assert now.tzinfo == timezone.utc

    def test_returns_utc(self):
        """utc_now() returns UTC time."""
        now = utc_now()
        # Should be close to datetime.now(timezone.utc)
        diff = abs((now - datetime.now(timezone.utc)).total_seconds())
        assert diff < 1  # Within 1 second


class TestParseDbTimestamp:
    """Test parse_db_timestamp() function."""

    def test_none_returns_none(self):
        """None input returns None."""
        assert parse_db_timestamp(None) is None

    def test_empty_string_returns_none(self):
        """Empty string returns None."""
        assert parse_db_timestamp("") is None

    def test_iso_with_z_suffix(self):
        """Parses ISO format with Z suffix."""
        result = parse_db_timestamp("2024-01-13T12:00:00Z")
        assert result is not None
        assert result.tzinfo is not None
        assert result.year == 2024
        assert result.month == 1
        assert result.day == 13
        assert result.hour == 12

    def test_iso_with_offset(self):
        """Parses ISO format with +00:00 offset."""
        result = parse_db_timestamp("2024-01-13T12:00:00+00:00")
        assert result is not None
        assert result.tzinfo is not None

    def test_naive_datetime_becomes_utc(self):
        """Naive datetime input is assumed UTC."""
        naive = datetime(2024, 1, 13, 12, 0, 0)
        result = parse_db_timestamp(naive)
        assert result is not None
        assert result.tzinfo == timezone.utc

    def test_invalid_string_returns_none(self):
        """Invalid date string returns None."""
        assert parse_db_timestamp("not-a-date") is None

    def test_non_string_non_datetime_returns_none(self):
        """Non-string, non-datetime returns None."""
        assert parse_db_timestamp(12345) is None
        assert parse_db_timestamp([]) is None


class TestToDbTimestamp:

    def test_none_stays_none(self):
        assert to_db_timestamp(None) is None

    def test_aware_datetime(self):
        value = datetime(2024, 1, 13, 12, 0, 0, tzinfo=timezone.utc)
        assert to_db_timestamp(value) == "2024-01-13T12:00:00+00:00"

    def test_naive_datetime_assumed_utc(self):
        assert to_db_timestamp(datetime(2024, 1, 13, 12, 0, 0)) == "2024-01-13T12:00:00+00:00"

    def test_parses_back(self):
        value = datetime(2024, 1, 13, 12, 30, 15, tzinfo=timezone.utc)
        assert parse_db_timestamp(to_db_timestamp(value)) == value


class TestExpiryFromNow:
    """Recipient links get a fixed window from issuance."""

    def test_thirty_days(self):
        expiry = expiry_from_now(30)
        remaining = expiry - utc_now()
        assert timedelta(days=29, hours=23, minutes=59) < remaining <= timedelta(days=30)

    def test_is_timezone_aware(self):
        assert expiry_from_now(1).tzinfo == timezone.utc


class TestIsPast:
    """Test is_past() function."""

    def test_past_timestamp(self):
        assert is_past(utc_now() - timedelta(seconds=1)) is True

    def test_future_timestamp(self):
        assert is_past(utc_now() + timedelta(days=30)) is False

    def test_string_timestamp(self):
        """Works with ISO string timestamps."""
        assert is_past((utc_now() - timedelta(minutes=5)).isoformat()) is True
        assert is_past("2999-01-01T00:00:00Z") is False

    @pytest.mark.parametrize("value", [None, "", "not-a-date"])
    def test_missing_or_invalid_is_not_past(self, value):
        """Missing expiry is never treated as expired."""
        assert is_past(value) is False
