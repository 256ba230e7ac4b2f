"""Tests for shared payload parsing utilities."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from integrations.parsing_utils import format_iso_datetime, parse_amount, parse_iso_datetime


class TestParseIsoDatetime:
    """Tests for parse_iso_datetime."""

    def test_none_returns_none(self):
        assert parse_iso_datetime(None) is None
        assert parse_iso_datetime("") is None

    def test_naive_datetime_passthrough(self):
        dt = datetime(2024, 6, 28, 12, 0, 0)
        assert parse_iso_datetime(dt) == dt

    def test_aware_datetime_converted_to_naive_utc(self):
        tz_minus3 = timezone(timedelta(hours=-3))
        dt = datetime(2024, 6, 28, 12, 0, 0, tzinfo=tz_minus3)
        assert parse_iso_datetime(dt) == datetime(2024, 6, 28, 15, 0, 0)

    def test_date_object(self):
        assert parse_iso_datetime(date(2024, 6, 28)) == datetime(2024, 6, 28)

    def test_z_suffix(self):
        assert parse_iso_datetime("2024-01-15T10:30:00Z") == datetime(2024, 1, 15, 10, 30)

    def test_no_colon_offset(self):
        assert parse_iso_datetime("2024-01-15T10:30:00+0000") == datetime(2024, 1, 15, 10, 30)

    def test_brasilia_offset(self):
        assert parse_iso_datetime("2024-06-28T18:42:46-03:00") == datetime(2024, 6, 28, 21, 42, 46)

    def test_date_only_string(self):
        assert parse_iso_datetime("2024-06-28") == datetime(2024, 6, 28)

    def test_garbage_returns_none(self):
        assert parse_iso_datetime("yesterday") is None


class TestParseAmount:
    def test_numeric_string(self):
        assert parse_amount("12.34") == Decimal("12.34")

    def test_float_keeps_repr_precision(self):
        assert parse_amount(0.1) == Decimal("0.1")

    def test_amount_object(self):
        assert parse_amount({"amount": "-99.90", "currency": "BRL"}) == Decimal("-99.90")

    def test_missing_or_invalid(self):
        assert parse_amount(None) is None
        assert parse_amount("") is None
        assert parse_amount({"currency": "BRL"}) is None
        assert parse_amount("twelve") is None


class TestFormatIsoDatetime:
    def test_naive_is_treated_as_utc(self):
        assert format_iso_datetime(datetime(2026, 3, 1, 8, 0)) == "2026-03-01T08:00:00+00:00"
