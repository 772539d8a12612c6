"""
Tests for Position Sizing
=========================
"""

import pytest

from signaldesk.position_sizing import parse_price, position_size


class TestPositionSizing:

    def test_basic_size(self):
        # 1% of 10,000 = 100 at risk, 20 per unit -> 5 units
        assert position_size(10_000, 1, 880, 860) == pytest.approx(5.0)

    def test_short_side_uses_absolute_distance(self):
        assert position_size(10_000, 2, 860, 880) == pytest.approx(10.0)

    @pytest.mark.parametrize("args", [
        (0, 1, 100, 90),
        (10_000, 0, 100, 90),
        (10_000, 1, 100, 100),
        (10_000, 1, -5, 90),
    ])
    def test_invalid_inputs(self, args):
        assert position_size(*args) is None


class TestParsePrice:

    @pytest.mark.parametrize("text,expected", [
        ("$1,234.50", 1234.5),
        ("₹2980", 2980.0),
        ("880", 880.0),
        (914.25, 914.25),
    ])
    def test_parse(self, text, expected):
        assert parse_price(text) == expected

    @pytest.mark.parametrize("text", [None, "", "N/A", "--"])
    def test_unparseable(self, text):
        assert parse_price(text) is None
