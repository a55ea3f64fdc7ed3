"""Tests for trigger start-time alignment."""

import pytest

from jobspine.core.errors import ValidationError
from jobspine.core.scheduling import align_start_time, parse_period_seconds, parse_start_time_ms


class TestAlignStartTime:
    """Test align_start_time()."""

    def test_past_start_moves_to_next_grid_point(self):
        """period=60s, start=1000s, now=1305s aligns to 1360s."""
        assert align_start_time(1_000_000, 60, 1_305_000) == 1_360_000

    def test_future_start_unchanged(self):
        assert align_start_time(2_000_000, 60, 1_305_000) == 2_000_000

    def test_start_equal_to_now_unchanged(self):
        assert align_start_time(1_305_000, 60, 1_305_000) == 1_305_000

    def test_now_exactly_on_grid_moves_one_period(self):
        """A past start whose grid hits now exactly fires one period later."""
        assert align_start_time(1_000_000, 60, 1_060_000) == 1_120_000

    @pytest.mark.parametrize(
        "start,period,now",
        [
            (0, 1, 999),
            (1_000, 7, 1_000_000),
            (1_700_000_000_000, 300, 1_700_000_123_456),
            (5, 3600, 10_000_000),
        ],
    )
    def test_aligned_start_is_minimal_and_congruent(self, start, period, now):
        aligned = align_start_time(start, period, now)
        period_ms = period * 1000
        assert aligned >= now
        assert (aligned - start) % period_ms == 0
        assert aligned - period_ms < now

    @pytest.mark.parametrize("period", [0, -60])
    def test_non_positive_period_rejected(self, period):
        with pytest.raises(ValidationError) as exc_info:
            align_start_time(1_000, period, 2_000)
        assert exc_info.value.field == "period_time"


class TestParsing:
    """Test request string parsing."""

    def test_parse_period(self):
        assert parse_period_seconds("300") == 300
        assert parse_period_seconds(60) == 60
        assert parse_period_seconds("+60") == 60

    @pytest.mark.parametrize(
        "raw", ["", "abc", "1.5", None, "0", "-5", "6_0", " 60 ", "\u0666\u0660", "60\n"]
    )
    def test_parse_period_invalid(self, raw):
        with pytest.raises(ValidationError):
            parse_period_seconds(raw)

    def test_parse_start_time(self):
        assert parse_start_time_ms("1700000000000") == 1_700_000_000_000

    @pytest.mark.parametrize("raw", ["", "tomorrow", None, "12e3", "1_700_000", "\uff11\uff12"])
    def test_parse_start_time_invalid(self, raw):
        with pytest.raises(ValidationError) as exc_info:
            parse_start_time_ms(raw)
        assert exc_info.value.category.value == "VALIDATION"
