"""Unit tests for utility functions."""

from datetime import datetime, timedelta, timezone

import pytest

from socialdb.utils import (
    as_utc,
    direct_key,
    escape_like,
    format_iso,
    new_id,
    normalize_timestamp,
    parse_datetime,
    split_ids,
    utc_now,
    utc_now_iso,
)


class TestDatetimeFunctions:
    """Tests for datetime utility functions."""

    def test_parse_datetime_valid_iso(self):
        """Test parsing valid ISO8601 timestamp."""
        result = parse_datetime("2024-01-15T10:30:00Z")
        assert result is not None
        assert (result.year, result.month, result.day) == (2024, 1, 15)
        assert (result.hour, result.minute) == (10, 30)
        assert result.tzinfo == timezone.utc

    def test_parse_datetime_with_offset(self):
        """Test offsets are converted to UTC."""
        result = parse_datetime("2024-01-15T10:30:00+05:00")
        assert result is not None
        assert result.tzinfo == timezone.utc
        assert result.hour == 5

    def test_parse_datetime_sqlite_default_format(self):
        """Test parsing SQLite CURRENT_TIMESTAMP output."""
        result = parse_datetime("2024-01-15 10:30:00")
        assert result == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)

    def test_parse_datetime_naive_datetime(self):
        """Test naive datetimes are treated as UTC."""
        result = parse_datetime(datetime(2024, 1, 15, 10, 30))
        assert result == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)

    def test_parse_datetime_none(self):
        """Test parsing None returns None."""
        assert parse_datetime(None) is None

    def test_parse_datetime_invalid(self):
        """Test parsing invalid timestamp raises error."""
        with pytest.raises(ValueError):
            parse_datetime("not-a-date")

    def test_as_utc(self):
        """Test naive values are tagged and aware values converted."""
        naive = datetime(2024, 1, 15, 10, 30)
        shifted = datetime(2024, 1, 15, 12, 30, tzinfo=timezone(timedelta(hours=2)))
        assert as_utc(naive) == as_utc(shifted) == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
        assert as_utc(shifted).tzinfo == timezone.utc

    def test_utc_now(self):
        """Test getting current UTC time."""
        now = utc_now()
        assert now.tzinfo == timezone.utc

    def test_utc_now_iso(self):
        """Test getting current UTC time as ISO string."""
        iso_str = utc_now_iso()
        assert iso_str.endswith("Z")
        assert "+00:00" not in iso_str

    def test_format_iso_fixed_width(self):
        """Test microseconds are always rendered."""
        dt = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
        assert format_iso(dt) == "2024-01-15T10:30:00.000000Z"

    def test_format_iso_sorts_like_datetimes(self):
        """Test string order of formatted timestamps matches time order."""
        base = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
        later = base + timedelta(microseconds=1)
        assert format_iso(base) < format_iso(later)

    def test_format_iso_none(self):
        """Test formatting None returns None."""
        assert format_iso(None) is None

    def test_normalize_timestamp(self):
        """Test any accepted input renders in the stored format."""
        expected = "2024-01-15T10:30:00.000000Z"
        assert normalize_timestamp("2024-01-15T10:30:00Z") == expected
        assert normalize_timestamp("2024-01-15T12:30:00+02:00") == expected
        assert normalize_timestamp(datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)) == expected
        assert normalize_timestamp(None) is None


class TestIdentifiers:
    """Tests for identifier helpers."""

    def test_new_id_unique(self):
        """Test generated identifiers are distinct strings."""
        ids = {new_id() for _ in range(100)}
        assert len(ids) == 100

    def test_direct_key_order_independent(self):
        """Test the key is the same whichever user comes first."""
        assert direct_key("bob", "alice") == direct_key("alice", "bob") == "alice:bob"

    def test_split_ids(self):
        """Test splitting aggregated identifier columns."""
        assert split_ids("a,b,c") == ["a", "b", "c"]
        assert split_ids("a") == ["a"]

    def test_split_ids_empty(self):
        """Test empty aggregates become empty lists."""
        assert split_ids(None) == []
        assert split_ids("") == []


class TestEscapeLike:
    """Tests for LIKE pattern escaping."""

    def test_plain_text_unchanged(self):
        assert escape_like("alice") == "alice"

    def test_wildcards_escaped(self):
        assert escape_like("50%_off") == "50\\%\\_off"

    def test_escape_character_escaped(self):
        assert escape_like("a\\b") == "a\\\\b"
