"""Tests for CLI formatting helpers."""

import pytest

from treemirror.utils import format_duration, format_file_size


class TestFormatFileSize:
    @pytest.mark.parametrize("size, expected", [
        (0, "0 B"),
        (512, "512 B"),
        (1536, "1.5 KB"),
        (5 * 1024 ** 2, "5.0 MB"),
        (3 * 1024 ** 4, "3.0 TB"),
        (2048 * 1024 ** 4, "2048.0 TB"),
    ])
    def test_units(self, size, expected):
        assert format_file_size(size) == expected


class TestFormatDuration:
    @pytest.mark.parametrize("seconds, expected", [
        (2.5, "2.5s"),
        (90, "1m 30s"),
        (2 * 3600 + 15 * 60, "2h 15m"),
    ])
    def test_ranges(self, seconds, expected):
        assert format_duration(seconds) == expected
