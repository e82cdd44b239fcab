"""Tests for utility functions."""

from datetime import date, time

import pytest

from therapy_scheduler.utils import (
    chunked,
    day_name,
    day_name_to_index,
    deterministic_id,
    format_time,
    minutes_to_time,
    parse_time,
    unique,
    week_bounds,
    week_chunks,
)


class TestTimeParsing:
    """Tests for time helpers."""

    def test_parse_short_hour(self):
        assert parse_time("9:05") == time(9, 5)

    def test_parse_drops_seconds(self):
        assert parse_time("14:30:59") == time(14, 30)

    def test_parse_invalid(self):
        with pytest.raises(ValueError):
            parse_time("930")

    def test_format_time(self):
        assert format_time(time(8, 0)) == "08:00"

    def test_minutes_to_time_outside_day(self):
        with pytest.raises(ValueError):
            minutes_to_time(24 * 60)


class TestWeeks:
    """Tests for week splitting."""

    def test_week_chunks_anchor_on_start(self):
        weeks = week_chunks(date(2025, 1, 1), date(2025, 1, 10))
        assert len(weeks) == 2
        assert weeks[0][0] == date(2025, 1, 1)
        assert weeks[0][-1] == date(2025, 1, 7)
        assert weeks[1] == [date(2025, 1, 8), date(2025, 1, 9), date(2025, 1, 10)]

    def test_week_bounds(self):
        assert week_bounds(date(2025, 1, 8)) == (date(2025, 1, 6), date(2025, 1, 12))


class TestIdentifiers:
    """Tests for deterministic ids."""

    def test_same_parts_same_id(self):
        assert deterministic_id("D1", date(2025, 1, 6), 540) == deterministic_id("D1", date(2025, 1, 6), 540)

    def test_different_parts_different_id(self):
        assert deterministic_id("D1", 540) != deterministic_id("D1", 600)


class TestMisc:
    """Tests for small helpers."""

    def test_chunked(self):
        assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]

    def test_day_names(self):
        assert day_name(0) == "monday"
        assert day_name_to_index("Wed") == 2
        assert day_name_to_index("someday") is None

    def test_unique_keeps_order(self):
        assert unique(["b", "a", "b", "c"]) == ["b", "a", "c"]
