"""Unit tests for timestamp helpers."""

from datetime import datetime, timedelta, timezone

from catalog_sync.timeutils import (
    ensure_utc,
    format_iso_with_offset,
    format_source_timestamp,
    parse_timestamp,
)


class TestFormatSourceTimestamp:
    """Offsets follow the store zone's daylight-saving rules."""

    def test_summer_offset(self) -> None:
        value = datetime(2025, 5, 3, 23, 29, 51, 82000, tzinfo=timezone.utc)
        assert format_source_timestamp(value, "America/New_York") == "2025-05-03T19:29:51-04:00"

    def test_winter_offset(self) -> None:
        value = datetime(2025, 1, 3, 23, 29, 51, tzinfo=timezone.utc)
        assert format_source_timestamp(value, "America/New_York") == "2025-01-03T18:29:51-05:00"

    def test_offset_changes_across_transition(self) -> None:
        before = datetime(2025, 3, 9, 6, 0, tzinfo=timezone.utc)
        after = before + timedelta(hours=2)
        assert format_source_timestamp(before, "America/New_York").endswith("-05:00")
        assert format_source_timestamp(after, "America/New_York").endswith("-04:00")

    def test_naive_value_treated_as_utc(self) -> None:
        value = datetime(2025, 7, 1, 12, 0, 0)
        assert format_source_timestamp(value, "UTC") == "2025-07-01T12:00:00+00:00"


def test_format_iso_with_offset() -> None:
    value = datetime(2025, 5, 3, 23, 29, 51, 82000, tzinfo=timezone.utc)
    assert format_iso_with_offset(value) == "2025-05-03T23:29:51.082+00:00"


def test_parse_timestamp_accepts_z_suffix() -> None:
    parsed = parse_timestamp("2025-01-03T10:00:00Z")
    assert parsed == datetime(2025, 1, 3, 10, 0, tzinfo=timezone.utc)


def test_parse_timestamp_normalizes_offsets() -> None:
    parsed = parse_timestamp("2025-01-03T05:00:00-05:00")
    assert parsed == datetime(2025, 1, 3, 10, 0, tzinfo=timezone.utc)
    assert parsed.tzinfo == timezone.utc


def test_parse_timestamp_empty() -> None:
    assert parse_timestamp(None) is None
    assert parse_timestamp("") is None


def test_ensure_utc() -> None:
    assert ensure_utc(None) is None
    naive = datetime(2025, 1, 1, 0, 0)
    assert ensure_utc(naive).tzinfo == timezone.utc
