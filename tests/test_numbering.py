"""Tests for order number generation."""

from datetime import date

from cashdesk.numbering import next_order_number, order_number_prefix, parse_order_number

DAY = date(2026, 1, 18)


class TestNextOrderNumber:
    def test_first_order_of_the_day(self):
        assert next_order_number([], DAY) == "ORD-20260118-0001"

    def test_increments_highest_sequence(self):
        existing = ["ORD-20260118-0001", "ORD-20260118-0007", "ORD-20260118-0003"]
        assert next_order_number(existing, DAY) == "ORD-20260118-0008"

    def test_sequence_restarts_each_day(self):
        existing = ["ORD-20260117-0042"]
        assert next_order_number(existing, DAY) == "ORD-20260118-0001"

    def test_ignores_legacy_numbers(self):
        existing = ["ORD-001", "", "ORD-20260118-0002"]
        assert next_order_number(existing, DAY) == "ORD-20260118-0003"

    def test_grows_past_four_digits(self):
        assert next_order_number(["ORD-20260118-9999"], DAY) == "ORD-20260118-10000"

    def test_accepts_generator(self):
        numbers = (n for n in ["ORD-20260118-0001"])
        assert next_order_number(numbers, DAY) == "ORD-20260118-0002"


class TestParseOrderNumber:
    def test_valid(self):
        assert parse_order_number("ORD-20260118-0012") == ("20260118", 12)

    def test_invalid(self):
        assert parse_order_number("ORD-12") is None
        assert parse_order_number("XYZ-20260118-0001") is None

    def test_prefix(self):
        assert order_number_prefix(DAY) == "ORD-20260118-"
